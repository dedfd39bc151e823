"""Request-scoped trace fields for log records.

All fields live in one ``ContextVar`` holding an immutable-by-convention
dict: every update sets a fresh dict, so a nested context or a
concurrent request never sees another one's fields.
"""

import uuid
from contextvars import ContextVar, Token
from typing import Any, Optional

_trace_var: ContextVar[dict] = ContextVar("backoffice_trace", default={})


def generate_request_id() -> str:
    return str(uuid.uuid4())


def _update(**fields: Any) -> Token:
    return _trace_var.set({**_trace_var.get(), **fields})


def get_request_id() -> str:
    return _trace_var.get().get("request_id", "")


def get_correlation_id() -> str:
    return _trace_var.get().get("correlation_id", "")


def bind_user_id(user_id: str) -> None:
    """Attach the acting operator to log entries for the rest of the request."""
    _update(user_id=user_id)


def get_context_dict() -> dict[str, Any]:
    """Non-empty trace fields, ready to merge into a log payload."""
    return {k: v for k, v in _trace_var.get().items() if v not in (None, "")}


class RequestContext:
    """Binds trace fields for the duration of a ``with`` block.

    Example:
        with RequestContext(request_id="abc-123", user_id="checker_1") as ctx:
            ctx.bind(request="AUTH-9F2C")
            logger.info("approving")  # carries request_id, user_id, request
    """

    def __init__(
        self,
        request_id: str = "",
        correlation_id: str = "",
        user_id: Optional[str] = None,
        **extra: Any,
    ):
        self.request_id = request_id or generate_request_id()
        self.correlation_id = correlation_id or self.request_id
        self.user_id = user_id or ""
        self.extra = extra
        self._token: Optional[Token] = None

    def __enter__(self) -> "RequestContext":
        self._token = _trace_var.set({
            "request_id": self.request_id,
            "correlation_id": self.correlation_id,
            "user_id": self.user_id,
            **self.extra,
        })
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._token is not None:
            _trace_var.reset(self._token)
            self._token = None

    def bind(self, **fields: Any) -> None:
        self.extra.update(fields)
        _update(**fields)
