"""
Django Signals for denormalised counters and cache invalidation.

IMPORTANT: Signals do NOT fire on:
- bulk_create()
- QuerySet.update()

The reaction service moves like/dislike counters with QuerySet.update(), so
it schedules its own invalidation (see services.py). Everything else that
saves or deletes a Post or Comment, including the admin, comes through here.
"""

from django.contrib.auth.models import User
from django.contrib.contenttypes.models import ContentType
from django.db.models.signals import post_save, post_delete, pre_delete
from django.dispatch import receiver
from django.db.models import F

from .invalidation import invalidate_on_commit
from .models import Comment, Post, Reaction, ReactionType


@receiver(post_save, sender=Comment)
def increment_comment_count(sender, instance, created, **kwargs):
    """Post.comment_count counts top-level comments only."""
    if created and instance.parent_id is None:
        Post.objects.filter(id=instance.post_id).update(
            comment_count=F('comment_count') + 1
        )


@receiver(post_delete, sender=Comment)
def decrement_comment_count(sender, instance, **kwargs):
    """
    When the whole post is being deleted this update matches no row or a row
    about to go; either way harmless.
    """
    if instance.parent_id is None:
        Post.objects.filter(id=instance.post_id, comment_count__gt=0).update(
            comment_count=F('comment_count') - 1
        )


@receiver(post_save, sender=Post)
@receiver(post_delete, sender=Post)
def invalidate_post_views(sender, instance, **kwargs):
    # Other posts' detail views embed this one as a related/random card
    invalidate_on_commit(slug=instance.slug, all_details=True)


@receiver(post_save, sender=Comment)
@receiver(post_delete, sender=Comment)
def invalidate_comment_views(sender, instance, **kwargs):
    invalidate_on_commit(instance)


@receiver(pre_delete, sender=User)
def release_user_reactions(sender, instance, **kwargs):
    """
    A deleted user's Reaction rows go by cascade; take them out of the
    target counters first so counters keep matching the sets.
    """
    rows = list(
        Reaction.objects
        .filter(user=instance)
        .values_list('content_type_id', 'object_id', 'kind')
    )
    if not rows:
        return

    for ct_id, object_id, kind in rows:
        model = ContentType.objects.get_for_id(ct_id).model_class()
        if model is None:
            continue
        field = ReactionType(kind).count_field
        model.objects.filter(pk=object_id, **{f'{field}__gt': 0}).update(
            **{field: F(field) - 1}
        )

    # The targets may sit on any post
    invalidate_on_commit(all_details=True)
