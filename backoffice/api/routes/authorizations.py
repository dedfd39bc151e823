"""Authorization Queue API Routes.

Maker-checker endpoints. The caller's role, taken from the request
headers, decides what each call may do.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from backoffice.api.dependencies import get_caller, get_engine, require_caller
from backoffice.api.models import (
    ApproveRequest,
    ApproveResponse,
    AuthorizationResponse,
    DecisionResponse,
    RejectRequest,
    SubmitAuthorizationRequest,
)
from backoffice.authorization import Capability, Caller
from backoffice.engine import BackOfficeEngine

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/authorizations", tags=["Authorizations"])


@router.get("", response_model=list[AuthorizationResponse])
async def list_authorizations(
    status: Optional[str] = Query(default=None),
    module: Optional[str] = Query(default=None),
    action: Optional[str] = Query(default=None),
    maker: Optional[str] = Query(default=None),
    search: Optional[str] = Query(default=None),
    engine: BackOfficeEngine = Depends(get_engine),
    caller: Caller = Depends(get_caller),
) -> list[AuthorizationResponse]:
    """List the queue. Defaults to requests awaiting a decision."""
    requests = engine.authorizations.list_pending(
        caller, status=status, module=module, action=action, maker=maker, search=search
    )
    return [AuthorizationResponse(**r.to_dict()) for r in requests]


@router.post("", response_model=AuthorizationResponse, status_code=201)
async def submit_authorization(
    request: SubmitAuthorizationRequest,
    engine: BackOfficeEngine = Depends(get_engine),
    caller: Caller = Depends(require_caller),
) -> AuthorizationResponse:
    submitted = engine.authorizations.submit(
        caller,
        subject_type=request.subject_type,
        subject_id=request.subject_id,
        payload=request.payload,
        module=request.module,
        action=request.action,
        comments=request.comments,
    )
    return AuthorizationResponse(**submitted.to_dict())


@router.get("/{request_id}", response_model=AuthorizationResponse)
async def get_authorization(
    request_id: str,
    engine: BackOfficeEngine = Depends(get_engine),
    caller: Caller = Depends(get_caller),
) -> AuthorizationResponse:
    caller.require(Capability.VIEW_ALL)
    return AuthorizationResponse(**engine.authorizations.get(request_id).to_dict())


@router.get("/{request_id}/decisions", response_model=list[DecisionResponse])
async def get_decisions(
    request_id: str,
    engine: BackOfficeEngine = Depends(get_engine),
    caller: Caller = Depends(get_caller),
) -> list[DecisionResponse]:
    caller.require(Capability.VIEW_ALL)
    engine.authorizations.get(request_id)
    return [DecisionResponse(**d.to_dict()) for d in engine.authorizations.decision_history(request_id)]


@router.post("/{request_id}/approve", response_model=ApproveResponse)
async def approve_authorization(
    request_id: str,
    body: Optional[ApproveRequest] = None,
    engine: BackOfficeEngine = Depends(get_engine),
    caller: Caller = Depends(require_caller),
) -> ApproveResponse:
    """Approve and apply the side effect. Returns the authoritative state."""
    comments = body.comments if body else ""
    approved, result = engine.authorizations.approve(caller, request_id, comments=comments)
    return ApproveResponse(request=AuthorizationResponse(**approved.to_dict()), side_effect=result)


@router.post("/{request_id}/reject", response_model=AuthorizationResponse)
async def reject_authorization(
    request_id: str,
    body: Optional[RejectRequest] = None,
    engine: BackOfficeEngine = Depends(get_engine),
    caller: Caller = Depends(require_caller),
) -> AuthorizationResponse:
    """Reject with a reason. A blank reason is refused."""
    reason = body.reason if body else None
    rejected = engine.authorizations.reject(caller, request_id, reason)
    return AuthorizationResponse(**rejected.to_dict())
