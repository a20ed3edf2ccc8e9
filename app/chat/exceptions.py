"""
Chat-specific error types.

Each extends one of the core.exceptions kinds so the API boundary maps
it to the right status without knowing about chat:

    InvalidConversationSpec  -> ValidationError (400)
    InvalidReference         -> ValidationError (400)
    UnsupportedOperation     -> ConflictError   (409)
    OwnershipConflict        -> ConflictError   (409)
"""

from core.exceptions import ConflictError, ValidationError


class InvalidConversationSpec(ValidationError):
    """Create request violates conversation type, roster or title rules."""

    default_error_code = "INVALID_CONVERSATION_SPEC"


class InvalidReference(ValidationError):
    """A message references a message that is missing, deleted or elsewhere."""

    default_error_code = "INVALID_REFERENCE"


class UnsupportedOperation(ConflictError):
    """Operation is not available for this conversation type."""

    default_error_code = "UNSUPPORTED_OPERATION"


class OwnershipConflict(ConflictError):
    """Operation would leave a group without exactly one owner."""

    default_error_code = "OWNERSHIP_CONFLICT"
