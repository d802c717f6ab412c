"""
Custom Exception Handler for API

Every error leaves the API as
    {"success": false, "message": ..., "code": ..., "errors": ...}
"""
from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import exceptions as drf_exceptions
from rest_framework import status
import logging

from apps.core.exceptions import (
    InsufficientStockException,
    InvalidTransitionException,
    StorefrontException,
    ValidationException,
)

logger = logging.getLogger(__name__)


def error_response(message, code, status_code, errors=None):
    return Response(
        {
            "success": False,
            "message": message,
            "code": code,
            "errors": errors,
        },
        status=status_code
    )


def _storefront_errors(exc):
    if isinstance(exc, ValidationException) and exc.field:
        return {exc.field: [exc.message]}
    if isinstance(exc, InsufficientStockException):
        return {"product": exc.product_name, "requested": exc.requested, "available": exc.available}
    if isinstance(exc, InvalidTransitionException):
        return {"current_status": exc.current, "requested_status": exc.requested}
    return None


def custom_exception_handler(exc, context):
    """
    Custom exception handler that provides consistent error responses.
    """
    if isinstance(exc, StorefrontException):
        if exc.status_code >= 500:
            logger.error(f"{exc.code}: {exc.message}")
        return error_response(exc.message, exc.code, exc.status_code, _storefront_errors(exc))

    # Call REST framework's default exception handler first
    response = exception_handler(exc, context)

    if response is not None:
        if isinstance(exc, drf_exceptions.ValidationError):
            message = "Validation failed"
            errors = response.data
        else:
            message = str(getattr(exc, 'detail', exc))
            errors = None
        code = str(getattr(exc, 'default_code', 'error')).upper()
        error = error_response(message, code, response.status_code, errors)
        for header in ('WWW-Authenticate', 'Retry-After'):
            if response.has_header(header):
                error[header] = response[header]
        return error

    # Handle unexpected exceptions
    logger.exception(f"Unhandled exception: {exc}")
    return error_response(
        "An unexpected error occurred", "INTERNAL_ERROR", status.HTTP_500_INTERNAL_SERVER_ERROR
    )
