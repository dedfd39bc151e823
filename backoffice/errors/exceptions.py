"""Typed engine errors.

Every component raises one of these; the API layer renders them from
``error_code`` alone, without knowing which component raised them.
"""

from typing import Any, Dict, List, Optional

from backoffice.errors.config import ERROR_STATUS_MAP, ErrorCode

Details = List[Dict[str, Any]]


class BackOfficeError(Exception):
    """Root of the hierarchy. ``status_code`` follows ``error_code``."""

    default_code = ErrorCode.INTERNAL_ERROR
    default_message = "Internal error"

    def __init__(
        self,
        message: Optional[str] = None,
        error_code: Optional[ErrorCode] = None,
        details: Optional[Details] = None,
    ):
        self.message = message or self.default_message
        self.error_code = error_code or self.default_code
        self.status_code = ERROR_STATUS_MAP.get(self.error_code, 500)
        self.details = details or []
        super().__init__(self.message)


class ValidationError(BackOfficeError):
    """A required field is missing or malformed. ``field`` names it."""

    default_code = ErrorCode.VALIDATION_ERROR
    default_message = "Validation failed"

    def __init__(
        self,
        message: Optional[str] = None,
        error_code: Optional[ErrorCode] = None,
        details: Optional[Details] = None,
        field: Optional[str] = None,
    ):
        super().__init__(message, error_code, details)
        self.field = field
        if field and not details:
            self.details = [{"field": field, "issue": self.message}]


class ForbiddenError(BackOfficeError):
    """The caller's role lacks ``capability``."""

    default_code = ErrorCode.INSUFFICIENT_PERMISSIONS
    default_message = "Insufficient permissions"

    def __init__(
        self,
        message: Optional[str] = None,
        error_code: Optional[ErrorCode] = None,
        capability: Optional[str] = None,
    ):
        super().__init__(message, error_code, [{"capability": capability}] if capability else None)
        self.capability = capability


class NotFoundError(BackOfficeError):
    default_code = ErrorCode.RESOURCE_NOT_FOUND
    default_message = "Resource not found"

    def __init__(
        self,
        message: Optional[str] = None,
        error_code: Optional[ErrorCode] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
    ):
        details = None
        if resource_type or resource_id:
            details = [{"resource_type": resource_type, "resource_id": resource_id}]
        super().__init__(message, error_code, details)


class ConflictError(BackOfficeError):
    """The entity's current state forbids the action (decided, resolved, duplicate)."""

    default_code = ErrorCode.RESOURCE_CONFLICT
    default_message = "Resource conflict"


class UnavailableError(BackOfficeError):
    """An upstream feed or ledger could not be read. ``source`` names it."""

    default_code = ErrorCode.SERVICE_UNAVAILABLE
    default_message = "Service temporarily unavailable"

    def __init__(
        self,
        message: Optional[str] = None,
        error_code: Optional[ErrorCode] = None,
        source: Optional[str] = None,
    ):
        super().__init__(message, error_code, [{"source": source}] if source else None)
        self.source = source
