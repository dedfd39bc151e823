"""Error taxonomy & handling.

Typed engine errors, structured error responses, exception handlers
and input validators shared by every component and the API layer.
"""

from backoffice.errors.config import (
    ErrorCode,
    ErrorConfig,
    ErrorSeverity,
)
from backoffice.errors.exceptions import (
    BackOfficeError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    UnavailableError,
    ValidationError,
)
from backoffice.errors.handlers import (
    ErrorResponse,
    create_error_response,
    register_exception_handlers,
)
from backoffice.errors.middleware import ErrorHandlingMiddleware
from backoffice.errors.validators import require_text, validate_pagination

__all__ = [
    # Config
    "ErrorCode",
    "ErrorConfig",
    "ErrorSeverity",
    # Exceptions
    "BackOfficeError",
    "ConflictError",
    "ForbiddenError",
    "NotFoundError",
    "UnavailableError",
    "ValidationError",
    # Handlers
    "ErrorResponse",
    "create_error_response",
    "register_exception_handlers",
    # Middleware
    "ErrorHandlingMiddleware",
    # Validators
    "require_text",
    "validate_pagination",
]
