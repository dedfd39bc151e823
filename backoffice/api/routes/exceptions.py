"""Exceptions Desk API Routes."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from backoffice.api.dependencies import get_engine, require_caller
from backoffice.api.models import (
    AssignExceptionRequest,
    CreateExceptionRequest,
    ExceptionDashboardResponse,
    ExceptionResponse,
    ResolveExceptionRequest,
    SweepResponse,
)
from backoffice.authorization import Caller
from backoffice.engine import BackOfficeEngine, actor_for

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/exceptions", tags=["Exceptions"])


def _view(engine: BackOfficeEngine, exception_id: str) -> ExceptionResponse:
    return ExceptionResponse(**engine.exceptions.get_view(exception_id).to_dict())


@router.post("", response_model=ExceptionResponse, status_code=201)
async def create_exception(
    request: CreateExceptionRequest,
    engine: BackOfficeEngine = Depends(get_engine),
    caller: Caller = Depends(require_caller),
) -> ExceptionResponse:
    """Open an exception manually."""
    exc = engine.exceptions.create(
        category=request.category,
        severity=request.severity,
        description=request.description,
        created_by=actor_for(caller),
        source_break_id=request.source_break_id,
    )
    return _view(engine, exc.exception_id)


@router.get("", response_model=list[ExceptionResponse])
async def list_exceptions(
    status: Optional[str] = Query(default=None),
    severity: Optional[str] = Query(default=None),
    category: Optional[str] = Query(default=None),
    assigned_to: Optional[str] = Query(default=None),
    search: Optional[str] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    engine: BackOfficeEngine = Depends(get_engine),
) -> list[ExceptionResponse]:
    """List exceptions. ``status=breached`` selects SLA breaches."""
    views = engine.exceptions.list_views(
        status=status,
        severity=severity,
        category=category,
        assigned_to=assigned_to,
        search=search,
    )
    return [ExceptionResponse(**v.to_dict()) for v in views[:limit]]


@router.get("/dashboard/summary", response_model=ExceptionDashboardResponse)
async def dashboard_summary(engine: BackOfficeEngine = Depends(get_engine)) -> ExceptionDashboardResponse:
    now = engine.clock()
    summary = engine.exceptions.dashboard_summary(now)
    alerts = [ExceptionResponse(**v.to_dict()) for v in engine.exceptions.sla_alerts(now)]
    return ExceptionDashboardResponse(**summary, sla_alerts=alerts)


@router.post("/sweep", response_model=SweepResponse)
async def run_sweep(
    engine: BackOfficeEngine = Depends(get_engine),
    caller: Caller = Depends(require_caller),
) -> SweepResponse:
    """Run the cutoff sweep now."""
    created = engine.sweep()
    logger.info("Manual sweep by %s opened %d exceptions", caller.user_id, len(created))
    return SweepResponse(created=[_view(engine, e.exception_id) for e in created])


@router.get("/{exception_id}", response_model=ExceptionResponse)
async def get_exception(exception_id: str, engine: BackOfficeEngine = Depends(get_engine)) -> ExceptionResponse:
    return _view(engine, exception_id)


@router.post("/{exception_id}/acknowledge", response_model=ExceptionResponse)
async def acknowledge_exception(
    exception_id: str,
    engine: BackOfficeEngine = Depends(get_engine),
    caller: Caller = Depends(require_caller),
) -> ExceptionResponse:
    engine.exceptions.acknowledge(exception_id, actor_for(caller))
    return _view(engine, exception_id)


@router.post("/{exception_id}/assign", response_model=ExceptionResponse)
async def assign_exception(
    exception_id: str,
    request: AssignExceptionRequest,
    engine: BackOfficeEngine = Depends(get_engine),
    caller: Caller = Depends(require_caller),
) -> ExceptionResponse:
    engine.exceptions.assign(exception_id, request.assigned_to, actor_for(caller))
    return _view(engine, exception_id)


@router.post("/{exception_id}/resolve", response_model=ExceptionResponse)
async def resolve_exception(
    exception_id: str,
    request: ResolveExceptionRequest,
    engine: BackOfficeEngine = Depends(get_engine),
    caller: Caller = Depends(require_caller),
) -> ExceptionResponse:
    """Resolve with root cause and resolution; both are required."""
    engine.exceptions.resolve(
        exception_id,
        root_cause=request.root_cause,
        resolution=request.resolution,
        actor=actor_for(caller),
    )
    return _view(engine, exception_id)
