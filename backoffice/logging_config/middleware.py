"""Request tracing for the back-office API.

Every HTTP request runs inside a :class:`RequestContext` carrying its
request id, correlation id and the operator from ``X-User-Id``. The ids
are echoed on the response so the desk UI can quote them when raising
a support ticket.
"""

import logging
import time
from typing import Optional

from backoffice.logging_config.config import DEFAULT_LOGGING_CONFIG, LoggingConfig
from backoffice.logging_config.context import RequestContext, generate_request_id

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
CORRELATION_ID_HEADER = "X-Correlation-ID"
USER_ID_HEADER = "X-User-Id"


def _read_header(scope, name: str) -> Optional[str]:
    wanted = name.lower().encode()
    for key, value in scope.get("headers", []):
        if key == wanted and value:
            return value.decode("utf-8", errors="replace")
    return None


class RequestTracingMiddleware:
    """ASGI middleware binding trace ids to the logs of one request.

    Non-HTTP scopes (lifespan, websockets) pass straight through.
    Paths in ``config.exclude_paths`` are traced but not logged.
    """

    def __init__(self, app, config: Optional[LoggingConfig] = None):
        self.app = app
        self.config = config or DEFAULT_LOGGING_CONFIG

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_id = _read_header(scope, REQUEST_ID_HEADER) or generate_request_id()
        correlation_id = _read_header(scope, CORRELATION_ID_HEADER) or request_id
        trace_headers = [
            (REQUEST_ID_HEADER.lower().encode(), request_id.encode()),
            (CORRELATION_ID_HEADER.lower().encode(), correlation_id.encode()),
        ]
        outcome = {"status": 500}

        async def send_with_trace(message):
            if message["type"] == "http.response.start":
                outcome["status"] = message.get("status", 500)
                message = {**message, "headers": [*message.get("headers", []), *trace_headers]}
            await send(message)

        started = time.perf_counter()
        with RequestContext(
            request_id=request_id,
            correlation_id=correlation_id,
            user_id=_read_header(scope, USER_ID_HEADER),
        ):
            try:
                await self.app(scope, receive, send_with_trace)
            finally:
                self._log(scope, outcome["status"], (time.perf_counter() - started) * 1000)

    def _log(self, scope, status: int, elapsed_ms: float) -> None:
        path = scope.get("path", "")
        if path in self.config.exclude_paths:
            return
        method = scope.get("method", "")
        logger.log(
            logging.WARNING if status >= 400 else logging.INFO,
            "%s %s -> %d",
            method,
            path,
            status,
            extra={
                "method": method,
                "path": path,
                "status_code": status,
                "duration_ms": round(elapsed_ms, 2),
            },
        )
