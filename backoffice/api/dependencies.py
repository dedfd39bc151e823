"""FastAPI dependencies: engine access and caller identity.

Identity arrives on every request as ``X-User-Id`` / ``X-User-Role``
headers set by the upstream gateway. Session handling lives upstream;
this layer only turns the headers into a :class:`Caller`.
"""

import logging
from typing import Optional

from fastapi import Depends, Header, Request

from backoffice.authorization import Caller
from backoffice.engine import BackOfficeEngine
from backoffice.errors import ErrorCode, ValidationError
from backoffice.logging_config.context import bind_user_id

logger = logging.getLogger(__name__)

ANONYMOUS = "anonymous"


def get_engine(request: Request) -> BackOfficeEngine:
    """Return the engine attached to the application."""
    return request.app.state.engine


async def get_caller(
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
) -> Caller:
    """Caller from headers; missing identity reads as an anonymous viewer."""
    user_id = (x_user_id or "").strip() or ANONYMOUS
    caller = Caller.from_role(user_id, x_user_role)
    bind_user_id(caller.user_id)
    return caller


async def require_caller(caller: Caller = Depends(get_caller)) -> Caller:
    """Like :func:`get_caller` but rejects anonymous callers.

    Usage::

        @router.post("/exceptions/{exception_id}/resolve")
        async def resolve(..., caller: Caller = Depends(require_caller)):
            ...
    """
    if caller.user_id == ANONYMOUS:
        raise ValidationError(
            "X-User-Id header is required",
            error_code=ErrorCode.MISSING_REQUIRED_FIELD,
            field="X-User-Id",
        )
    return caller
