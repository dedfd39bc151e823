"""Reconciliation API Routes.

Run the position matcher and work the resulting breaks.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from backoffice.api.dependencies import get_caller, get_engine, require_caller
from backoffice.api.models import (
    BreakResponse,
    CashVarianceResponse,
    MatchResponse,
    PositionRecordResponse,
    ReconciliationRunResponse,
)
from backoffice.authorization import Caller
from backoffice.engine import BackOfficeEngine, actor_for
from backoffice.errors import ValidationError
from backoffice.reconciliation import BreakStatus

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/reconciliations", tags=["Reconciliation"])


@router.get("/run", response_model=ReconciliationRunResponse)
def run_reconciliation(
    engine: BackOfficeEngine = Depends(get_engine),
    caller: Caller = Depends(get_caller),
) -> ReconciliationRunResponse:
    """Pull both feeds, match them and register breaks.

    A feed outage returns 503, never an empty result.
    """
    run = engine.run_reconciliation(actor=actor_for(caller))
    now = engine.clock()
    cfg = engine.reconciliation_config
    return ReconciliationRunResponse(
        run_id=run.result.run_id,
        reference_source=cfg.reference_source,
        comparison_source=cfg.comparison_source,
        reference_snapshot_id=run.result.reference_snapshot_id,
        comparison_snapshot_id=run.result.comparison_snapshot_id,
        matches=[MatchResponse(**m.to_dict()) for m in run.result.matches],
        breaks=[BreakResponse(**b.to_dict(now)) for b in run.breaks],
        comparison_only=[PositionRecordResponse(**r.to_dict()) for r in run.result.comparison_only],
        summary=run.summary,
        cash_variances=(
            [CashVarianceResponse(**c.to_dict()) for c in run.cash_variances]
            if run.cash_variances is not None
            else None
        ),
        warnings=run.warnings,
    )


@router.get("/breaks", response_model=list[BreakResponse])
async def list_breaks(
    status: Optional[str] = Query(default=None),
    engine: BackOfficeEngine = Depends(get_engine),
) -> list[BreakResponse]:
    """List tracked breaks, optionally by status."""
    parsed = None
    if status:
        try:
            parsed = BreakStatus(status)
        except ValueError:
            raise ValidationError("status must be open or resolved", field="status") from None
    now = engine.clock()
    return [BreakResponse(**b.to_dict(now)) for b in engine.breaks.list_breaks(parsed)]


@router.get("/statistics")
async def break_statistics(engine: BackOfficeEngine = Depends(get_engine)) -> dict:
    return engine.breaks.statistics()


@router.get("/breaks/{break_id}", response_model=BreakResponse)
async def get_break(break_id: str, engine: BackOfficeEngine = Depends(get_engine)) -> BreakResponse:
    return BreakResponse(**engine.breaks.get(break_id).to_dict(engine.clock()))


@router.post("/breaks/{break_id}/resolve", response_model=BreakResponse)
async def resolve_break(
    break_id: str,
    engine: BackOfficeEngine = Depends(get_engine),
    caller: Caller = Depends(require_caller),
) -> BreakResponse:
    """Resolve an unticketed break. A ticketed one answers 409; resolve its exception."""
    brk = engine.breaks.resolve(break_id, actor_for(caller))
    return BreakResponse(**brk.to_dict(engine.clock()))
