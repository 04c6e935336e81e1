"""
Read-Through Response Cache
===========================

Wraps DRF read handlers:

    class HomeView(APIView):
        @homepage_cache
        def get(self, request): ...

HIT:  the stored bytes are returned as-is, the handler never runs.
MISS: the handler runs; a 2xx DRF Response is rendered to JSON once, stored
      with the TTL and returned as those same bytes, so a later hit is
      byte-identical to this miss.

Only GET/HEAD are cached. Errors (4xx/5xx, raised exceptions) are never
stored. Cache trouble only ever turns a hit into a miss (see cache_store).

CACHE KEYS:
-----------
"<namespace>:<request key>". The request key comes from a pure function
(request, **view_kwargs) -> str so each route picks its own granularity and
the invalidation side can rebuild the same key (see invalidation.py).
"""
import logging
from functools import wraps

from django.conf import settings
from django.http import HttpResponse
from rest_framework.renderers import JSONRenderer
from rest_framework.response import Response
from rest_framework.status import is_success

from .cache_store import get_store

logger = logging.getLogger(__name__)

HOMEPAGE_NAMESPACE = 'homepage'
BLOG_NAMESPACE = 'blog'
CATEGORY_NAMESPACE = 'category'

CACHEABLE_METHODS = ('GET', 'HEAD')
JSON_CONTENT_TYPE = 'application/json'


def make_key(namespace, request_key):
    return f'{namespace}:{request_key}'


def namespace_pattern(namespace):
    return f'{namespace}:*'


def request_path_key(request, **view_kwargs):
    """Full path including the query string, so each page is its own entry."""
    return request.get_full_path()


def slug_key(request, **view_kwargs):
    return view_kwargs.get('slug') or request.get_full_path()


def blog_detail_key(slug):
    """Key of the cached detail view of one post."""
    return make_key(BLOG_NAMESPACE, slug)


def cache_response(namespace, ttl, key_func=request_path_key, store=None):
    """
    Decorator for APIView handler methods.

    store defaults to the process-wide store, resolved per request so a
    store installed after import (connect(), tests) is picked up.
    """
    def decorator(handler):
        @wraps(handler)
        def wrapper(view, request, *args, **kwargs):
            if request.method not in CACHEABLE_METHODS:
                return handler(view, request, *args, **kwargs)

            cache = store or get_store()
            key = make_key(namespace, key_func(request, **kwargs))

            cached = cache.get(key)
            if cached is not None:
                logger.debug("Cache hit %s", key)
                response = HttpResponse(cached, content_type=JSON_CONTENT_TYPE)
                response['X-Cache'] = 'HIT'
                return response

            response = handler(view, request, *args, **kwargs)
            if not isinstance(response, Response) or not is_success(response.status_code):
                return response

            payload = JSONRenderer().render(response.data)
            if not cache.set(key, payload, ttl):
                logger.debug("Response for %s not cached", key)

            fresh = HttpResponse(payload, status=response.status_code, content_type=JSON_CONTENT_TYPE)
            fresh['X-Cache'] = 'MISS'
            return fresh
        return wrapper
    return decorator


# Standing instances
homepage_cache = cache_response(
    HOMEPAGE_NAMESPACE,
    ttl=getattr(settings, 'HOMEPAGE_CACHE_TTL', 300),
)

blog_cache = cache_response(
    BLOG_NAMESPACE,
    ttl=getattr(settings, 'BLOG_CACHE_TTL', 600),
    key_func=slug_key,
)

category_cache = cache_response(
    CATEGORY_NAMESPACE,
    ttl=getattr(settings, 'CATEGORY_CACHE_TTL', 600),
)
