"""
Core Application - Infrastructure & Base Classes

This app contains infrastructure code shared by the domain apps:

- Generic, reusable base classes (no domain-specific logic)
- Clear extension points for domain apps
- Infrastructure concerns separated from business logic

Models (import from core.models):
    - BaseModel: Abstract model with timestamps (created_at, updated_at)

Model Mixins (import from core.model_mixins):
    - SoftDeleteMixin: Soft delete support (is_deleted, deleted_at)

Services (import from core.services):
    - BaseService: Base class for service layer

Exceptions (import from core.exceptions):
    - BaseApplicationError: Base exception with error codes
    - ValidationError: Input validation failures
    - NotFoundError: Resource not found or not visible
    - PermissionDeniedError: Authorization failures
    - ConflictError: State conflicts (duplicates, races)
    - UnavailableError: Retryable storage/transport failures

API boundary (import from core.exception_handlers):
    - api_exception_handler: DRF EXCEPTION_HANDLER for the errors above

Decorators (import from core.decorators):
    - translate_storage_errors: Driver errors -> UnavailableError

Helpers (import from core.helpers):
    - calculate_pagination: Pagination metadata calculation

Note:
    - Business logic should NOT go here. Extend core classes in your domain apps.
    - Django models and model mixins are NOT imported here to avoid
      AppRegistryNotReady errors. Import them directly from their modules.
"""

# Services (no Django model dependencies)
from .services import BaseService

# Exceptions (no Django dependencies)
from .exceptions import (
    BaseApplicationError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    UnavailableError,
    ValidationError,
)

# Helpers (no Django dependencies)
from .helpers import calculate_pagination

__all__ = [
    # Services
    "BaseService",
    # Exceptions
    "BaseApplicationError",
    "ValidationError",
    "NotFoundError",
    "PermissionDeniedError",
    "ConflictError",
    "UnavailableError",
    # Helpers
    "calculate_pagination",
]
