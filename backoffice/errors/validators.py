"""Input Validation Utilities.

Reusable validators for required free-text fields and pagination.
"""

from typing import Optional, Tuple

from backoffice.errors.config import ErrorCode
from backoffice.errors.exceptions import ValidationError

MAX_PAGE_SIZE = 500
DEFAULT_PAGE_SIZE = 100


def require_text(value: Optional[str], field: str, message: Optional[str] = None) -> str:
    """Return ``value`` stripped, or raise if it is missing or blank.

    Args:
        value: Raw input.
        field: Field name reported back to the caller.
        message: Override for the error message. Defaults to
            "<field> is required".

    Raises:
        ValidationError: If the value is None, not a string, or blank.
    """
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(
            message=message or f"{field} is required",
            error_code=ErrorCode.MISSING_REQUIRED_FIELD,
            field=field,
        )
    return value.strip()


def validate_pagination(
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
    max_page_size: int = MAX_PAGE_SIZE,
) -> Tuple[int, int]:
    """Validate pagination parameters.

    Raises:
        ValidationError: If pagination parameters are invalid.
    """
    if not isinstance(page, int) or page < 1:
        raise ValidationError(
            message="Page must be a positive integer",
            error_code=ErrorCode.INVALID_PAGINATION,
            field="page",
        )

    if not isinstance(page_size, int) or page_size < 1:
        raise ValidationError(
            message="Page size must be a positive integer",
            error_code=ErrorCode.INVALID_PAGINATION,
            field="page_size",
        )

    if page_size > max_page_size:
        raise ValidationError(
            message=f"Page size {page_size} exceeds maximum of {max_page_size}",
            error_code=ErrorCode.INVALID_PAGINATION,
            field="page_size",
        )

    return page, page_size
