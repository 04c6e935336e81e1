"""
Blog App Configuration
"""
from django.apps import AppConfig
from django.conf import settings


class BlogConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'blog'

    def ready(self):
        # Import signals when app is ready
        import blog.signals  # noqa

        self._connect_cache()

    def _connect_cache(self):
        """
        Connect the process-wide response cache.

        Without REDIS_URL the app runs uncached. A Redis that is down at
        startup is logged and bypassed; requests never wait on it.
        """
        if not settings.REDIS_URL:
            return

        from blog import cache_store
        cache_store.connect(
            settings.REDIS_URL,
            socket_timeout=settings.CACHE_SOCKET_TIMEOUT,
            retry_after=settings.CACHE_RETRY_AFTER,
        )
