"""
Domain errors and the DRF exception handler.

Provides a consistent error response format across the API:
    {"success": false, "error": "...", "details": ...}
"""
from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import status
from django.db import IntegrityError, OperationalError
import logging

logger = logging.getLogger(__name__)


class TargetNotFound(LookupError):
    """The post, comment or reply being reacted to does not exist."""


class InvalidReactionType(ValueError):
    """Reaction type other than like/dislike."""


class StorageUnavailable(Exception):
    """
    The database failed or timed out. Nothing was written; the client may
    retry the request.
    """


def _error(message, status_code, details=None):
    body = {'success': False, 'error': message}
    if details is not None:
        body['details'] = details
    return Response(body, status=status_code)


def custom_exception_handler(exc, context):
    """
    Custom exception handler that:
    1. Logs all exceptions
    2. Converts domain and Django exceptions to DRF responses
    3. Provides consistent error format
    """

    # Call DRF's default exception handler first
    response = exception_handler(exc, context)

    if response is not None:
        if not isinstance(response.data, dict) or 'error' not in response.data:
            response.data = {
                'success': False,
                'error': str(exc),
                'details': response.data
            }
        return response

    if isinstance(exc, TargetNotFound):
        return _error(str(exc), status.HTTP_404_NOT_FOUND)

    # InvalidReactionType is a ValueError
    if isinstance(exc, ValueError):
        return _error(str(exc), status.HTTP_400_BAD_REQUEST)

    if isinstance(exc, IntegrityError):
        logger.warning("IntegrityError: %s", exc)
        return _error(
            'Data integrity error. This may be a duplicate entry.',
            status.HTTP_409_CONFLICT
        )

    if isinstance(exc, (StorageUnavailable, OperationalError)):
        logger.error("Storage unavailable: %s", exc)
        return _error(
            'The service is temporarily unavailable. Please retry.',
            status.HTTP_503_SERVICE_UNAVAILABLE
        )

    logger.exception("Unhandled exception: %s", exc)

    return _error(
        'An unexpected error occurred.',
        status.HTTP_500_INTERNAL_SERVER_ERROR
    )
