"""Back-office HTTP API.

``create_app()`` wires one :class:`BackOfficeEngine` behind the desk's
REST routes. Middleware, outermost first: security headers, request
tracing, error boundary, CORS.
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backoffice.api.config import DEFAULT_API_CONFIG, APIConfig
from backoffice.api.models import HealthResponse
from backoffice.api.routes import audit, authorizations, exceptions, reconciliations
from backoffice.engine import BackOfficeEngine
from backoffice.errors import ErrorHandlingMiddleware, register_exception_handlers
from backoffice.logging_config import configure_logging
from backoffice.logging_config.middleware import RequestTracingMiddleware

logger = logging.getLogger(__name__)

ROUTERS = (reconciliations.router, exceptions.router, authorizations.router, audit.router)

_BASE_SECURITY_HEADERS = (
    (b"x-content-type-options", b"nosniff"),
    (b"x-frame-options", b"DENY"),
    (b"referrer-policy", b"strict-origin-when-cross-origin"),
)
_HSTS = (b"strict-transport-security", b"max-age=31536000; includeSubDomains")


class SecurityHeadersMiddleware:
    """Stamps security headers on every HTTP response, error responses included.

    HSTS is only sent when ``BACKOFFICE_ENABLE_HSTS=true``.
    """

    def __init__(self, app):
        self.app = app
        self.headers = list(_BASE_SECURITY_HEADERS)
        if os.environ.get("BACKOFFICE_ENABLE_HSTS", "").lower() == "true":
            self.headers.append(_HSTS)

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        async def send_secured(message):
            if message["type"] == "http.response.start":
                message = {**message, "headers": [*message.get("headers", []), *self.headers]}
            await send(message)

        await self.app(scope, receive, send_secured)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    engine: BackOfficeEngine = app.state.engine
    if engine.settings.enable_background_tasks:
        engine.start_background_tasks()
    logger.info(
        "Back-office API up (background tasks: %s)",
        ", ".join(t.name for t in engine.background_tasks()) or "none",
    )
    try:
        yield
    finally:
        await engine.stop_background_tasks()
        engine.close()
        logger.info("Back-office API stopped")


def _cors_origins(config: APIConfig) -> list[str]:
    from_env = [o.strip() for o in os.environ.get("BACKOFFICE_CORS_ORIGINS", "").split(",")]
    return [o for o in from_env if o] or config.cors_origins


def create_app(
    engine: Optional[BackOfficeEngine] = None,
    config: Optional[APIConfig] = None,
) -> FastAPI:
    """Build the API around ``engine`` (a settings-default engine if omitted)."""
    config = config or DEFAULT_API_CONFIG

    app = FastAPI(
        title=config.title,
        version=config.version,
        description=config.description,
        docs_url=config.docs_url,
        lifespan=lifespan,
    )
    app.state.engine = engine or BackOfficeEngine()
    register_exception_handlers(app)

    # add_middleware wraps the current stack, so the last one added is outermost.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(config),
        allow_credentials=True,
        allow_methods=config.cors_methods,
        allow_headers=config.cors_headers,
    )
    app.add_middleware(ErrorHandlingMiddleware)
    app.add_middleware(RequestTracingMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)

    @app.get("/health", response_model=HealthResponse, tags=["System"])
    async def health() -> HealthResponse:
        return HealthResponse(version=config.version, **app.state.engine.health())

    for router in ROUTERS:
        app.include_router(router, prefix=config.prefix)

    return app
