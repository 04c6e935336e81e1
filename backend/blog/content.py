"""
Post, comment and reply writes.

Each write is one transaction. Cache invalidation is not called from here:
the post_save/post_delete handlers in signals.py schedule it for every
Post/Comment write, whichever code path made it.
"""
from django.core.exceptions import PermissionDenied
from django.db import transaction
from rest_framework.exceptions import ValidationError

from .models import Comment, Post

EDITABLE_POST_FIELDS = ('title', 'description', 'content', 'category', 'tags', 'image')


def _ensure_author(obj, user, action):
    if obj.author_id != user.id:
        raise PermissionDenied(f"You are not authorized to {action} this {obj._meta.verbose_name}.")


@transaction.atomic
def create_post(author, title, description, content, category='Article', tags=None, image=''):
    post = Post(
        author=author,
        title=title,
        description=description,
        content=content,
        category=category or 'Article',
        tags=tags or [],
        image=image or '',
    )
    post.assign_slug()
    post.save()
    return post


@transaction.atomic
def update_post(post, user, **changes):
    """
    Apply the given field changes. A new title gets a new slug; the old
    slug's cached detail view is cleared with the rest of the blog namespace.
    """
    _ensure_author(post, user, 'edit')

    for field in EDITABLE_POST_FIELDS:
        if field in changes and changes[field] is not None:
            setattr(post, field, changes[field])

    if 'title' in changes and changes['title']:
        post.assign_slug()

    post.save()
    return post


@transaction.atomic
def delete_post(post, user):
    _ensure_author(post, user, 'delete')
    post.delete()


@transaction.atomic
def add_comment(post, author, content):
    return Comment.objects.create(post=post, author=author, content=content)


@transaction.atomic
def edit_comment(comment, user, content):
    _ensure_author(comment, user, 'edit')
    comment.content = content
    comment.save(update_fields=['content', 'updated_at'])
    return comment


@transaction.atomic
def delete_comment(comment, user):
    """Deletes the comment and, by cascade, its replies."""
    _ensure_author(comment, user, 'delete')
    comment.delete()


@transaction.atomic
def add_reply(parent, author, content):
    """
    Reply to a top-level comment. Replies to replies are rejected: the tree
    is one level deep.
    """
    if parent.is_reply:
        raise ValidationError({'parent': 'Cannot reply to a reply.'})
    return Comment.objects.create(
        post_id=parent.post_id,
        parent=parent,
        author=author,
        content=content,
    )


def edit_reply(reply, user, content):
    return edit_comment(reply, user, content)


@transaction.atomic
def delete_reply(reply, user):
    _ensure_author(reply, user, 'delete')
    reply.delete()
