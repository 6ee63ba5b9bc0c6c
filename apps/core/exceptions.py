"""
Exception hierarchy and DRF exception handler.
"""
import logging
from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import status

logger = logging.getLogger(__name__)


class PortalException(Exception):
    """Base exception for Crowd Portal errors."""

    status_code = 500
    code = 'INTERNAL_ERROR'

    def __init__(self, message, details=None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class InvalidRequest(PortalException):
    """
    Raised for malformed principals, unknown capability keys in mutations,
    and scope violations.

    Never used for a policy denial: a denial is a Decision, not an error.
    """
    status_code = 400
    code = 'INVALID_REQUEST'


class StoreUnavailable(PortalException):
    """Raised when the policy store cannot be reached."""
    status_code = 503
    code = 'STORE_UNAVAILABLE'


class NotFound(PortalException):
    """Raised when a referenced tenant or record does not exist."""
    status_code = 404
    code = 'NOT_FOUND'


def custom_exception_handler(exc, context):
    """
    Custom exception handler that logs errors and returns consistent format.
    """
    request = context.get('request')
    request_id = getattr(request, 'request_id', None) if request else None

    if isinstance(exc, PortalException):
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            f"API Exception: {exc.__class__.__name__}: {exc.message}",
            extra={
                'request_id': request_id,
                'path': request.path if request else None,
                'method': request.method if request else None,
                'details': exc.details,
            }
        )
        return Response(
            {
                'error': {
                    'code': exc.code,
                    'message': exc.message,
                    'details': exc.details,
                },
                'request_id': request_id,
            },
            status=exc.status_code
        )

    # Call DRF's default exception handler first
    response = exception_handler(exc, context)

    logger.error(
        f"API Exception: {exc.__class__.__name__}",
        extra={
            'exception': str(exc),
            'request_id': request_id,
            'path': request.path if request else None,
            'method': request.method if request else None,
        },
        exc_info=response is None
    )

    # If DRF didn't handle it, return a generic 500 error
    if response is None:
        return Response(
            {
                'error': {
                    'code': PortalException.code,
                    'message': 'An unexpected error occurred',
                },
                'request_id': request_id,
            },
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )

    # Add request_id to all error responses
    if request_id and isinstance(response.data, dict):
        response.data['request_id'] = request_id

    return response
