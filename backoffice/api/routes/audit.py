"""Audit Trail API Routes.

Read-only compliance views over the audit trail.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import PlainTextResponse

from backoffice.api.dependencies import get_caller, get_engine
from backoffice.api.models import AuditEventResponse, AuditListResponse
from backoffice.audit import AuditExporter, AuditQuery, EventCategory
from backoffice.authorization import Caller, Capability
from backoffice.engine import BackOfficeEngine
from backoffice.errors import ValidationError, validate_pagination

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/audit", tags=["Audit"])


def _build_query(
    engine: BackOfficeEngine,
    action_prefix: Optional[str],
    resource_id: Optional[str],
    actor_id: Optional[str],
    category: Optional[str],
) -> AuditQuery:
    query = AuditQuery(engine.audit)
    if action_prefix:
        query.filter_by_action_prefix(action_prefix)
    if resource_id:
        query.filter_by_resource_id(resource_id)
    if actor_id:
        query.filter_by_actor(actor_id)
    if category:
        try:
            query.filter_by_category(EventCategory(category))
        except ValueError:
            allowed = ", ".join(c.value for c in EventCategory)
            raise ValidationError(f"category must be one of {allowed}", field="category") from None
    return query


@router.get("", response_model=AuditListResponse)
async def list_audit_events(
    action_prefix: Optional[str] = Query(default=None),
    resource_id: Optional[str] = Query(default=None),
    actor_id: Optional[str] = Query(default=None),
    category: Optional[str] = Query(default=None),
    page: int = Query(default=1),
    page_size: int = Query(default=100),
    engine: BackOfficeEngine = Depends(get_engine),
    caller: Caller = Depends(get_caller),
) -> AuditListResponse:
    """Audit events, newest first."""
    caller.require(Capability.VIEW_ALL)
    page, page_size = validate_pagination(page, page_size)

    query = _build_query(engine, action_prefix, resource_id, actor_id, category)
    total = query.count()
    events = query.sort_descending().paginate(page, page_size).execute()
    return AuditListResponse(
        total=total,
        page=page,
        page_size=page_size,
        integrity_ok=engine.audit.verify_integrity(),
        events=[AuditEventResponse(**e.to_dict()) for e in events],
    )


@router.get("/export", response_class=PlainTextResponse)
async def export_audit_events(
    format: str = Query(default="jsonl", pattern="^(jsonl|csv)$"),
    action_prefix: Optional[str] = Query(default=None),
    resource_id: Optional[str] = Query(default=None),
    engine: BackOfficeEngine = Depends(get_engine),
    caller: Caller = Depends(get_caller),
) -> PlainTextResponse:
    """Export matching events as JSON Lines or CSV."""
    caller.require(Capability.VIEW_ALL)
    events = _build_query(engine, action_prefix, resource_id, None, None).execute()
    exporter = AuditExporter(events)
    if format == "csv":
        return PlainTextResponse(exporter.export_csv(), media_type="text/csv")
    return PlainTextResponse(exporter.export_json(), media_type="application/x-ndjson")
