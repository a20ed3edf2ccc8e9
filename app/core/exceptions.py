"""
Base exception classes for application-wide error handling.

This module provides a standardized exception hierarchy that enables:
- Consistent error responses across the application
- Machine-readable error codes for client handling
- Detailed error information for debugging

Exception Hierarchy:
    BaseApplicationError (base)
    ├── ValidationError - Malformed or out-of-range input
    ├── NotFoundError - Resource missing or not visible to the caller
    ├── PermissionDeniedError - Actor lacks the required role
    ├── ConflictError - State conflicts (duplicates, concurrent modifications)
    └── UnavailableError - Storage/transport timeout, safe to retry

Usage:
    from core.exceptions import ValidationError, NotFoundError

    # Raise with message only
    raise ValidationError("Title is required")

    # Raise with error code for client handling
    raise NotFoundError("Conversation not found", error_code="CONVERSATION_NOT_FOUND")

    # Raise with additional details
    raise ValidationError(
        "Validation failed",
        error_code="VALIDATION_ERROR",
        details={"member_ids": ["Unknown user id 42"]}
    )

Note:
    Services raise these; core.exception_handlers maps each kind to an HTTP
    status at the API boundary. DRF handles its own API-layer exceptions
    (serialization, authentication, etc.).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Base exception for all application-specific errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable code for client-side handling
        details: Additional error context (field errors, metadata, etc.)

    Example:
        try:
            conversation = ConversationService.get_conversation(pk, user)
        except NotFoundError as e:
            logger.warning(f"Conversation lookup failed: {e.error_code}")
    """

    default_error_code: str = "APPLICATION_ERROR"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        """
        Initialize the exception.

        Args:
            message: Human-readable error description
            error_code: Machine-readable error code (defaults to class default)
            details: Additional error context
        """
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to dictionary for API response.

        Returns:
            Dict with error, error_code, and details keys

        Example:
            {
                "error": "Conversation not found",
                "error_code": "CONVERSATION_NOT_FOUND",
                "details": {"conversation_id": 123}
            }
        """
        result: dict[str, Any] = {
            "error": self.message,
            "error_code": self.error_code,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        """Return string representation with error code."""
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        """Return detailed representation for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


class ValidationError(BaseApplicationError):
    """
    Raised when input validation fails.

    Use for:
    - Out-of-range values (member counts, content length)
    - Missing required fields for a given variant (GROUP title)
    - References to records the input claims exist

    Example:
        raise ValidationError(
            "Message content cannot exceed 2000 characters",
            error_code="CONTENT_TOO_LONG",
            details={"content": ["Ensure this field has no more than 2000 characters."]}
        )

    Note:
        For DRF serializer validation, use DRF's built-in validation.
        Use this for service-layer validation logic.
    """

    default_error_code: str = "VALIDATION_ERROR"


class NotFoundError(BaseApplicationError):
    """
    Raised when a requested resource is not found.

    Also used when a resource exists but is not visible to the caller,
    so non-members cannot probe for conversation ids.

    Example:
        raise NotFoundError(
            f"Message {message_id} not found",
            error_code="MESSAGE_NOT_FOUND",
            details={"message_id": message_id}
        )
    """

    default_error_code: str = "NOT_FOUND"


class PermissionDeniedError(BaseApplicationError):
    """
    Raised when the actor lacks permission for an operation.

    Example:
        if not membership.is_admin_or_owner:
            raise PermissionDeniedError(
                "Only owners and admins can add members",
                error_code="NOT_ADMIN"
            )

    Note:
        For authentication failures (missing/invalid token), use DRF's
        AuthenticationFailed. Use this for authorization failures.
    """

    default_error_code: str = "PERMISSION_DENIED"


class ConflictError(BaseApplicationError):
    """
    Raised when operation conflicts with current resource state.

    Use for:
    - Duplicate entries that lost a uniqueness race
    - Concurrent modification conflicts (ownership transfer races)
    - Invalid state transitions (editing a deleted message)

    Note:
        HTTP 409 Conflict is the appropriate status for these errors.
        Clients may retry after refreshing their view of the resource.
    """

    default_error_code: str = "CONFLICT"


class UnavailableError(BaseApplicationError):
    """
    Raised when a storage or transport dependency times out or is unreachable.

    The operation did not take effect and is safe to retry with backoff.
    The driver-level cause is logged where it is caught and never exposed
    in the message.

    Attributes:
        retry_after: Suggested delay in seconds before retrying
    """

    default_error_code: str = "SERVICE_UNAVAILABLE"

    def __init__(
        self,
        message: str = "Service temporarily unavailable, please retry",
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
        retry_after: int = 1,
    ):
        self.retry_after = retry_after
        super().__init__(message, error_code, details)
