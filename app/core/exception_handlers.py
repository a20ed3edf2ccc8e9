"""
DRF exception handler mapping application errors to HTTP responses.

Configured via REST_FRAMEWORK["EXCEPTION_HANDLER"]. DRF's own exceptions
(serializer validation, authentication, throttling) keep DRF's default
formatting; everything raised from core.exceptions is rendered as:

    {"error": "...", "error_code": "...", "details": {...}}

Status mapping:
    ValidationError         400
    PermissionDeniedError   403
    NotFoundError           404
    ConflictError           409
    UnavailableError        503 (with Retry-After)

Database driver errors that escape a service are treated as
UnavailableError. Their text is logged, never returned.
"""

from __future__ import annotations

import logging

from django.db import DatabaseError, IntegrityError
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    UnavailableError,
    ValidationError,
)

logger = logging.getLogger(__name__)

STATUS_BY_ERROR = (
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (PermissionDeniedError, status.HTTP_403_FORBIDDEN),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (UnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def status_for_error(exc: BaseApplicationError) -> int:
    """Return the HTTP status for an application error."""
    for error_class, status_code in STATUS_BY_ERROR:
        if isinstance(exc, error_class):
            return status_code
    return status.HTTP_400_BAD_REQUEST


def api_exception_handler(exc, context):
    """
    Translate application and storage errors, then defer to DRF.

    Args:
        exc: The raised exception
        context: DRF handler context (view, request, ...)

    Returns:
        Response, or None to let Django produce a 500
    """
    if isinstance(exc, DatabaseError) and not isinstance(exc, IntegrityError):
        view = context.get("view")
        logger.exception(
            f"Storage failure in {view.__class__.__name__ if view else 'view'}: {exc}"
        )
        exc = UnavailableError()

    if isinstance(exc, BaseApplicationError):
        status_code = status_for_error(exc)
        response = Response(exc.to_dict(), status=status_code)
        if isinstance(exc, UnavailableError):
            response["Retry-After"] = str(exc.retry_after)
        return response

    return exception_handler(exc, context)
