"""
Reaction Service
================

Like/dislike toggling for any Reactable (post, comment, reply).

TOGGLE RULES:
-------------
1. Remove the user from the opposite set
2. If the user is already in the requested set, remove them (second click
   on "like" clears the like)
3. Otherwise add them to the requested set

So a user is in at most one of likes/dislikes at any time, and two identical
toggles in a row leave the target as it was.

CONCURRENCY STRATEGY:
---------------------
Problem: load target -> check membership -> write is a read-modify-write.
Two toggles on the same target from different requests can interleave.

We take a row lock on the target (SELECT ... FOR UPDATE) for the whole
toggle, which serialises toggles per target without touching unrelated
ones. The unique constraint on Reaction backs this up at the DB level, and
counters are moved with F() expressions, never written from Python values.

On databases without row locks (SQLite) the lock is a no-op; SQLite
serialises writers anyway.

TRANSACTION STRATEGY:
--------------------
Set changes and counter updates share one transaction: either all of the
toggle is visible or none of it. Cache invalidation runs after commit.
"""
import logging
from typing import Iterable

from django.contrib.contenttypes.models import ContentType
from django.db import DatabaseError, transaction
from django.db.models import F, Q

from .exceptions import InvalidReactionType, StorageUnavailable, TargetNotFound
from .invalidation import invalidate_on_commit
from .models import Reactable, Reaction, ReactionType

logger = logging.getLogger(__name__)

_ALIASES = {
    'like': ReactionType.LIKE,
    'likes': ReactionType.LIKE,
    'dislike': ReactionType.DISLIKE,
    'dislikes': ReactionType.DISLIKE,
}


def parse_reaction_type(value) -> ReactionType:
    """Accepts 'like'/'dislike' and the plural set names used by the API."""
    if isinstance(value, ReactionType):
        return value
    try:
        return _ALIASES[value]
    except (KeyError, TypeError):
        raise InvalidReactionType(
            f"Invalid reaction type: {value!r}. Expected 'likes' or 'dislikes'."
        ) from None


class ReactionResult:
    """State of one user's reaction on a target right after a toggle."""

    def __init__(self, reaction_type: ReactionType, reacted: bool, likes_count: int, dislikes_count: int):
        self.reaction_type = reaction_type
        # The opposite set is always left without the user
        self.user_reacted = reacted
        self.user_reacted_opposite = False
        self.likes_count = likes_count
        self.dislikes_count = dislikes_count

    @property
    def user_liked(self) -> bool:
        return self.user_reacted and self.reaction_type is ReactionType.LIKE

    @property
    def user_disliked(self) -> bool:
        return self.user_reacted and self.reaction_type is ReactionType.DISLIKE

    def to_dict(self) -> dict:
        return {
            'userLiked': self.user_liked,
            'userDisliked': self.user_disliked,
            'likesCount': self.likes_count,
            'dislikesCount': self.dislikes_count,
        }


def toggle_reaction(target: Reactable, user, reaction_type) -> ReactionResult:
    """
    Toggle user's reaction on target.

    RAISES:
    - InvalidReactionType for anything but like/dislike
    - TargetNotFound if target no longer exists
    - StorageUnavailable if the database fails; nothing is written then
    """
    kind = parse_reaction_type(reaction_type)
    opposite = kind.opposite
    model = type(target)
    content_type = ContentType.objects.get_for_model(model)
    mine = Reaction.objects.filter(
        user=user,
        content_type=content_type,
        object_id=target.pk
    )

    try:
        with transaction.atomic():
            locked = model.objects.select_for_update().filter(pk=target.pk).first()
            if locked is None:
                raise TargetNotFound(f"{model._meta.verbose_name.capitalize()} {target.pk} does not exist")

            counters = {}

            removed_opposite, _ = mine.filter(kind=opposite).delete()
            if removed_opposite:
                counters[opposite.count_field] = F(opposite.count_field) - 1

            removed_same, _ = mine.filter(kind=kind).delete()
            if removed_same:
                counters[kind.count_field] = F(kind.count_field) - 1
            else:
                Reaction.objects.create(
                    user=user,
                    kind=kind,
                    content_type=content_type,
                    object_id=target.pk
                )
                counters[kind.count_field] = F(kind.count_field) + 1

            model.objects.filter(pk=target.pk).update(**counters)
            locked.refresh_from_db(fields=['like_count', 'dislike_count'])
    except DatabaseError as exc:
        logger.error("Reaction toggle on %s %s failed: %s", model.__name__, target.pk, exc)
        raise StorageUnavailable(str(exc)) from exc

    target.like_count = locked.like_count
    target.dislike_count = locked.dislike_count

    invalidate_on_commit(locked)

    return ReactionResult(
        reaction_type=kind,
        reacted=not removed_same,
        likes_count=locked.like_count,
        dislikes_count=locked.dislike_count,
    )


def reaction_sets(targets: Iterable[Reactable]) -> dict:
    """
    likes/dislikes user-id sets for many targets in ONE query.

    Returns: {(content_type_id, object_id): {'likes': [...], 'dislikes': [...]}}
    Targets without reactions are present with empty lists.
    """
    targets = list(targets)
    sets = {}
    by_type = {}
    for target in targets:
        ct = ContentType.objects.get_for_model(type(target))
        sets[(ct.id, target.pk)] = {'likes': [], 'dislikes': []}
        by_type.setdefault(ct.id, []).append(target.pk)

    if not by_type:
        return sets

    condition = Q()
    for ct_id, ids in by_type.items():
        condition |= Q(content_type_id=ct_id, object_id__in=ids)

    rows = Reaction.objects.filter(condition).order_by('created_at').values_list('content_type_id', 'object_id', 'user_id', 'kind')
    for ct_id, obj_id, user_id, kind in rows:
        sets[(ct_id, obj_id)][ReactionType(kind).set_name].append(user_id)

    return sets
