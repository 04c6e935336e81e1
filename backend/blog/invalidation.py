"""
Cache Invalidation
==================

Every write that changes something a cached read shows clears the entries
that may embed it:

- Post write (reaction, comment tree change):
    blog:<slug>, homepage:*, category:*
- Post create/update/delete:
    the above plus blog:* (every detail view embeds cards of related and
    random posts)
- Comment/reply write: resolved to its post, then the post rule.

Namespace deletes are coarse on purpose: a listing may embed any post, so
clearing the whole namespace is the only way to be sure nothing stale
survives.

TIMING:
-------
invalidate_on_commit() defers the deletes to transaction.on_commit so they
happen once the write is durable. Deleting earlier would let a concurrent
read re-cache the pre-write state.

FAILURES:
---------
A failed delete is logged and otherwise ignored. The write has already
committed; the stale entry lives until its TTL runs out.
"""
import logging

from django.db import transaction

from .cache_store import get_store
from .caching import (
    BLOG_NAMESPACE,
    CATEGORY_NAMESPACE,
    HOMEPAGE_NAMESPACE,
    blog_detail_key,
    namespace_pattern,
)

logger = logging.getLogger(__name__)


def affected_slug(target):
    """
    Slug of the post whose views embed target (a Post, comment or reply).

    Comments are resolved through post_id so a post that is being deleted
    in the same transaction still resolves; returns None if it is gone.
    """
    from .models import Post

    if isinstance(target, Post):
        return target.slug
    return (
        Post.objects
        .filter(id=target.post_id)
        .values_list('slug', flat=True)
        .first()
    )


class CacheInvalidator:

    def __init__(self, store=None):
        self._store = store

    @property
    def store(self):
        return self._store or get_store()

    def invalidate_post(self, slug, all_details=False):
        """
        Returns False if any delete failed (entries then expire by TTL).
        """
        store = self.store
        if store.client is None:
            # Running uncached
            return True
        results = []
        if all_details:
            results.append(store.delete_pattern(namespace_pattern(BLOG_NAMESPACE)))
        elif slug:
            results.append(store.delete(blog_detail_key(slug)))
        results.append(store.delete_pattern(namespace_pattern(HOMEPAGE_NAMESPACE)))
        results.append(store.delete_pattern(namespace_pattern(CATEGORY_NAMESPACE)))

        ok = all(results)
        if not ok:
            logger.warning(
                "Cache invalidation for post %r incomplete; stale entries expire by TTL",
                slug
            )
        return ok

    def invalidate_for(self, target, all_details=False):
        return self.invalidate_post(affected_slug(target), all_details=all_details)


def invalidate_on_commit(target=None, slug=None, all_details=False, store=None):
    """
    Schedule invalidation for target (or an explicit post slug) after the
    current transaction commits. Outside a transaction it runs immediately.
    """
    if slug is None and target is not None:
        slug = affected_slug(target)
    invalidator = CacheInvalidator(store)
    transaction.on_commit(
        lambda: invalidator.invalidate_post(slug, all_details=all_details)
    )
