"""Error Configuration.

Defines error codes, severity levels, and configuration for
structured error handling across the back-office engine.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict


class ErrorCode(Enum):
    """Standardized error codes for engine and API responses."""

    # Validation errors (400)
    VALIDATION_ERROR = "VALIDATION_ERROR"
    MISSING_REQUIRED_FIELD = "MISSING_REQUIRED_FIELD"
    DUPLICATE_POSITION = "DUPLICATE_POSITION"
    INVALID_PAGINATION = "INVALID_PAGINATION"

    # Authorization errors (403)
    INSUFFICIENT_PERMISSIONS = "INSUFFICIENT_PERMISSIONS"

    # Not found errors (404)
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    BREAK_NOT_FOUND = "BREAK_NOT_FOUND"
    EXCEPTION_NOT_FOUND = "EXCEPTION_NOT_FOUND"
    REQUEST_NOT_FOUND = "REQUEST_NOT_FOUND"

    # Conflict errors (409)
    INVALID_TRANSITION = "INVALID_TRANSITION"
    DUPLICATE_SUBMISSION = "DUPLICATE_SUBMISSION"
    ALREADY_DECIDED = "ALREADY_DECIDED"
    RESOURCE_CONFLICT = "RESOURCE_CONFLICT"

    # Server errors (500)
    INTERNAL_ERROR = "INTERNAL_ERROR"

    # Service unavailable (503)
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    FEED_UNAVAILABLE = "FEED_UNAVAILABLE"


class ErrorSeverity(Enum):
    """Severity levels for error logging."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# Map error codes to HTTP status codes
ERROR_STATUS_MAP: Dict[ErrorCode, int] = {
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.MISSING_REQUIRED_FIELD: 400,
    ErrorCode.DUPLICATE_POSITION: 400,
    ErrorCode.INVALID_PAGINATION: 400,
    ErrorCode.INVALID_TRANSITION: 409,
    ErrorCode.INSUFFICIENT_PERMISSIONS: 403,
    ErrorCode.RESOURCE_NOT_FOUND: 404,
    ErrorCode.BREAK_NOT_FOUND: 404,
    ErrorCode.EXCEPTION_NOT_FOUND: 404,
    ErrorCode.REQUEST_NOT_FOUND: 404,
    ErrorCode.DUPLICATE_SUBMISSION: 409,
    ErrorCode.ALREADY_DECIDED: 409,
    ErrorCode.RESOURCE_CONFLICT: 409,
    ErrorCode.INTERNAL_ERROR: 500,
    ErrorCode.SERVICE_UNAVAILABLE: 503,
    ErrorCode.FEED_UNAVAILABLE: 503,
}

# Map error codes to severity
ERROR_SEVERITY_MAP: Dict[ErrorCode, ErrorSeverity] = {
    ErrorCode.VALIDATION_ERROR: ErrorSeverity.LOW,
    ErrorCode.MISSING_REQUIRED_FIELD: ErrorSeverity.LOW,
    ErrorCode.DUPLICATE_POSITION: ErrorSeverity.MEDIUM,
    ErrorCode.INVALID_PAGINATION: ErrorSeverity.LOW,
    ErrorCode.INVALID_TRANSITION: ErrorSeverity.MEDIUM,
    ErrorCode.INSUFFICIENT_PERMISSIONS: ErrorSeverity.MEDIUM,
    ErrorCode.RESOURCE_NOT_FOUND: ErrorSeverity.LOW,
    ErrorCode.BREAK_NOT_FOUND: ErrorSeverity.LOW,
    ErrorCode.EXCEPTION_NOT_FOUND: ErrorSeverity.LOW,
    ErrorCode.REQUEST_NOT_FOUND: ErrorSeverity.LOW,
    ErrorCode.DUPLICATE_SUBMISSION: ErrorSeverity.MEDIUM,
    ErrorCode.ALREADY_DECIDED: ErrorSeverity.MEDIUM,
    ErrorCode.RESOURCE_CONFLICT: ErrorSeverity.MEDIUM,
    ErrorCode.INTERNAL_ERROR: ErrorSeverity.CRITICAL,
    ErrorCode.SERVICE_UNAVAILABLE: ErrorSeverity.HIGH,
    ErrorCode.FEED_UNAVAILABLE: ErrorSeverity.HIGH,
}


@dataclass
class ErrorConfig:
    """Configuration for error handling."""

    include_request_id: bool = True
    log_all_errors: bool = True
    max_error_detail_length: int = 1000
    suppress_internal_details: bool = True
    custom_error_messages: Dict[str, str] = field(default_factory=dict)


DEFAULT_ERROR_CONFIG = ErrorConfig()
