"""Last-resort error boundary for the ASGI stack.

Route-level :class:`BackOfficeError` is normally rendered by the FastAPI
handlers; this middleware catches whatever escapes them (errors raised
in other middleware, unexpected exceptions) and answers with the same
JSON envelope. Once a response has started nothing can be rewritten,
so the error is re-raised.
"""

import json
import logging
from typing import Any, Dict, Optional

from backoffice.errors.config import DEFAULT_ERROR_CONFIG, ErrorConfig
from backoffice.errors.exceptions import BackOfficeError
from backoffice.errors.handlers import ErrorResponse, handle_backoffice_error, handle_unhandled_error

logger = logging.getLogger(__name__)


def _json_start(status: int, body: bytes) -> Dict[str, Any]:
    return {
        "type": "http.response.start",
        "status": status,
        "headers": [
            (b"content-type", b"application/json"),
            (b"content-length", str(len(body)).encode()),
        ],
    }


class ErrorHandlingMiddleware:
    def __init__(self, app: Any, config: Optional[ErrorConfig] = None):
        self.app = app
        self.config = config or DEFAULT_ERROR_CONFIG

    async def __call__(self, scope: Dict[str, Any], receive: Any, send: Any) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        started = False

        async def tracking_send(message: Dict[str, Any]) -> None:
            nonlocal started
            started = started or message["type"] == "http.response.start"
            await send(message)

        try:
            await self.app(scope, receive, tracking_send)
        except Exception as exc:
            if started:
                logger.error("Error after response start on %s: %s", scope.get("path"), exc)
                raise
            if isinstance(exc, BackOfficeError):
                response = handle_backoffice_error(exc, self.config)
            else:
                response = handle_unhandled_error(exc, self.config)
            await self._respond(send, response)

    @staticmethod
    async def _respond(send: Any, response: ErrorResponse) -> None:
        body = json.dumps(response.to_dict()).encode("utf-8")
        await send(_json_start(response.status_code, body))
        await send({"type": "http.response.body", "body": body})
