"""Exception Handlers & Error Response Builder.

Provides FastAPI exception handlers and a standardized error
response builder for consistent error formatting.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from backoffice.errors.config import (
    DEFAULT_ERROR_CONFIG,
    ERROR_SEVERITY_MAP,
    ERROR_STATUS_MAP,
    ErrorCode,
    ErrorConfig,
    ErrorSeverity,
)
from backoffice.errors.exceptions import BackOfficeError
from backoffice.logging_config.context import get_request_id

logger = logging.getLogger(__name__)


@dataclass
class ErrorResponse:
    """Structured error response envelope."""

    code: str
    message: str
    status_code: int = 500
    details: List[Dict[str, Any]] = field(default_factory=list)
    request_id: Optional[str] = None
    timestamp: str = ""

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = datetime.now(timezone.utc).isoformat()

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "error": {
                "code": self.code,
                "message": self.message,
                "timestamp": self.timestamp,
            }
        }
        if self.details:
            body["error"]["details"] = self.details
        if self.request_id:
            body["error"]["request_id"] = self.request_id
        return body


def create_error_response(
    error_code: ErrorCode,
    message: str,
    details: Optional[List[Dict[str, Any]]] = None,
    request_id: Optional[str] = None,
    status_code: Optional[int] = None,
) -> ErrorResponse:
    """Build a standardized ErrorResponse from components."""
    resolved_status = status_code or ERROR_STATUS_MAP.get(error_code, 500)

    return ErrorResponse(
        code=error_code.value,
        message=message,
        status_code=resolved_status,
        details=details or [],
        request_id=request_id,
    )


_LOG_LEVELS = {
    ErrorSeverity.CRITICAL: logging.CRITICAL,
    ErrorSeverity.HIGH: logging.ERROR,
    ErrorSeverity.MEDIUM: logging.WARNING,
    ErrorSeverity.LOW: logging.INFO,
}


def _current_request_id(config: ErrorConfig) -> Optional[str]:
    return (get_request_id() or None) if config.include_request_id else None


def handle_backoffice_error(
    exc: BackOfficeError, config: Optional[ErrorConfig] = None
) -> ErrorResponse:
    """Render a typed engine error, logged at its code's severity."""
    config = config or DEFAULT_ERROR_CONFIG
    if config.log_all_errors:
        severity = ERROR_SEVERITY_MAP.get(exc.error_code, ErrorSeverity.MEDIUM)
        logger.log(
            _LOG_LEVELS[severity],
            "%s (%d): %s",
            exc.error_code.value,
            exc.status_code,
            exc.message,
        )

    message = config.custom_error_messages.get(exc.error_code.value, exc.message)
    return create_error_response(
        error_code=exc.error_code,
        message=message[: config.max_error_detail_length],
        details=exc.details,
        request_id=_current_request_id(config),
        status_code=exc.status_code,
    )


def handle_unhandled_error(exc: Exception, config: Optional[ErrorConfig] = None) -> ErrorResponse:
    """Anything untyped becomes a 500; internals stay out of the body unless configured."""
    config = config or DEFAULT_ERROR_CONFIG
    logger.exception("Unhandled %s: %s", type(exc).__name__, exc)
    if config.suppress_internal_details:
        message = "An internal error occurred"
    else:
        message = f"{type(exc).__name__}: {exc}"
    return create_error_response(
        ErrorCode.INTERNAL_ERROR, message, request_id=_current_request_id(config)
    )


def register_exception_handlers(app: FastAPI, config: Optional[ErrorConfig] = None) -> None:
    """Render every :class:`BackOfficeError` raised by a route as JSON."""
    config = config or DEFAULT_ERROR_CONFIG
    app.state.error_config = config

    async def _render(request: Request, exc: BackOfficeError) -> JSONResponse:
        response = handle_backoffice_error(exc, config)
        return JSONResponse(status_code=response.status_code, content=response.to_dict())

    app.add_exception_handler(BackOfficeError, _render)
