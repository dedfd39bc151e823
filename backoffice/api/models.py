"""API Request/Response Models.

Pydantic schemas for all API endpoints. Request bodies accept both
snake_case and the front end's camelCase names. Required free-text
fields are optional here so the engine can report exactly which one is
missing.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class RequestModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ─── Common ──────────────────────────────────────────────────────────────


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str
    audit_events: int
    audit_chain_intact: bool
    open_breaks: int
    background_tasks: dict[str, bool] = Field(default_factory=dict)


# ─── Reconciliation ──────────────────────────────────────────────────────


class PositionRecordResponse(BaseModel):
    source_system: str
    instrument_id: str
    owner_id: str
    quantity: str
    notional_value: str


class MatchResponse(BaseModel):
    owner_id: str
    instrument_id: str
    reference_quantity: str
    comparison_quantity: str
    quantity_variance: str
    value_variance: str


class BreakResponse(BaseModel):
    break_id: str
    owner_id: str
    instrument_id: str
    reference_source: str
    comparison_source: str
    reference_quantity: str
    comparison_quantity: str
    reference_value: str
    comparison_value: str
    quantity_variance: str
    value_variance: str
    quantity_variance_pct: float
    severity: str
    status: str
    missing_in_comparison: bool = False
    detected_at: datetime
    age_hours: Optional[float] = None
    exception_id: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None


class CashVarianceResponse(BaseModel):
    account: str
    ledger_amount: str
    expected_amount: str
    variance: str


class ReconciliationRunResponse(BaseModel):
    run_id: str
    reference_source: str
    comparison_source: str
    reference_snapshot_id: str
    comparison_snapshot_id: str
    matches: list[MatchResponse]
    breaks: list[BreakResponse]
    comparison_only: list[PositionRecordResponse]
    summary: dict[str, Any]
    cash_variances: Optional[list[CashVarianceResponse]] = None
    warnings: list[str] = Field(default_factory=list)


# ─── Exceptions ──────────────────────────────────────────────────────────


class CreateExceptionRequest(RequestModel):
    category: Optional[str] = None
    severity: str = "medium"
    description: str = ""
    source_break_id: Optional[str] = Field(default=None, alias="sourceBreakId")


class AssignExceptionRequest(RequestModel):
    assigned_to: Optional[str] = Field(default=None, alias="assignedTo")


class ResolveExceptionRequest(RequestModel):
    root_cause: Optional[str] = Field(default=None, alias="rootCause")
    resolution: Optional[str] = None


class ExceptionResponse(BaseModel):
    exception_id: str
    category: str
    severity: str
    status: str
    display_status: str
    assigned_to: str
    description: str = ""
    created_by: str
    created_at: datetime
    sla_minutes: int
    remaining_minutes: int
    breached: bool
    at_risk: bool
    source_break_id: Optional[str] = None
    root_cause: Optional[str] = None
    resolution: Optional[str] = None
    acknowledged_at: Optional[datetime] = None
    escalated_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None


class ExceptionDashboardResponse(BaseModel):
    total: int
    by_status: dict[str, int]
    by_severity: dict[str, int]
    breached: int
    at_risk: int
    sla_alerts: list[ExceptionResponse] = Field(default_factory=list)


class SweepResponse(BaseModel):
    created: list[ExceptionResponse]


# ─── Authorizations ──────────────────────────────────────────────────────


class SubmitAuthorizationRequest(RequestModel):
    subject_type: Optional[str] = Field(default=None, alias="subjectType")
    subject_id: Optional[str] = Field(default=None, alias="subjectId")
    payload: dict[str, Any] = Field(default_factory=dict)
    module: Optional[str] = None
    action: Optional[str] = None
    comments: str = ""


class ApproveRequest(RequestModel):
    comments: str = ""


class RejectRequest(RequestModel):
    reason: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("reason", "rejectionReason", "rejection_reason"),
    )


class AuthorizationResponse(BaseModel):
    request_id: str
    subject_type: str
    subject_id: str
    maker: str
    maker_role: str
    status: str
    module: str
    action: str
    payload: dict[str, Any] = Field(default_factory=dict)
    comments: str = ""
    rejection_reason: Optional[str] = None
    submitted_at: datetime
    decided_at: Optional[datetime] = None
    decided_by: Optional[str] = None
    side_effect: Optional[dict[str, Any]] = None


class ApproveResponse(BaseModel):
    request: AuthorizationResponse
    side_effect: dict[str, Any]


class DecisionResponse(BaseModel):
    decision_id: str
    request_id: str
    approver: str
    action: str
    reason: str = ""
    timestamp: datetime


# ─── Audit ───────────────────────────────────────────────────────────────


class AuditEventResponse(BaseModel):
    event_id: str
    timestamp: datetime
    actor: Optional[dict[str, Any]] = None
    action: str
    resource: Optional[dict[str, Any]] = None
    category: str
    details: dict[str, Any] = Field(default_factory=dict)
    outcome: str
    event_hash: str
    previous_hash: str


class AuditListResponse(BaseModel):
    total: int
    page: int
    page_size: int
    integrity_ok: bool
    events: list[AuditEventResponse]
