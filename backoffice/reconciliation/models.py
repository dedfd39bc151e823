"""Position Reconciliation: match and break records."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional

from .config import BreakSeverity, BreakStatus
from .feeds import PositionRecord


def make_break_id(
    reference_source: str, comparison_source: str, owner_id: str, instrument_id: str
) -> str:
    """Stable id: the same pairing always yields the same break."""
    raw = f"{reference_source}|{comparison_source}|{owner_id}|{instrument_id}"
    return "BRK-" + hashlib.sha256(raw.encode("utf-8")).hexdigest()[:12].upper()


@dataclass(frozen=True)
class PositionMatch:
    """A reference/comparison pair that agrees within tolerance."""

    owner_id: str
    instrument_id: str
    reference_quantity: Decimal
    comparison_quantity: Decimal
    quantity_variance: Decimal
    value_variance: Decimal

    def to_dict(self) -> dict:
        return {
            "owner_id": self.owner_id,
            "instrument_id": self.instrument_id,
            "reference_quantity": str(self.reference_quantity),
            "comparison_quantity": str(self.comparison_quantity),
            "quantity_variance": str(self.quantity_variance),
            "value_variance": str(self.value_variance),
        }


@dataclass
class Break:
    """A quantity/value mismatch beyond tolerance.

    Variances are ``comparison - reference``. ``detected_at`` is the
    reference snapshot's ingestion time; age is derived from it on read.
    """

    break_id: str
    owner_id: str
    instrument_id: str
    reference_source: str
    comparison_source: str
    reference_quantity: Decimal
    comparison_quantity: Decimal
    reference_value: Decimal
    comparison_value: Decimal
    quantity_variance: Decimal
    value_variance: Decimal
    severity: BreakSeverity
    detected_at: datetime
    missing_in_comparison: bool = False
    status: BreakStatus = BreakStatus.OPEN
    exception_id: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.status == BreakStatus.OPEN

    @property
    def quantity_variance_pct(self) -> Decimal:
        if self.reference_quantity == 0:
            return Decimal("0") if self.quantity_variance == 0 else Decimal("1")
        return abs(self.quantity_variance) / abs(self.reference_quantity)

    def age_hours(self, now: datetime) -> float:
        return max(0.0, (now - self.detected_at).total_seconds() / 3600.0)

    def to_dict(self, now: Optional[datetime] = None) -> dict:
        d = {
            "break_id": self.break_id,
            "owner_id": self.owner_id,
            "instrument_id": self.instrument_id,
            "reference_source": self.reference_source,
            "comparison_source": self.comparison_source,
            "reference_quantity": str(self.reference_quantity),
            "comparison_quantity": str(self.comparison_quantity),
            "reference_value": str(self.reference_value),
            "comparison_value": str(self.comparison_value),
            "quantity_variance": str(self.quantity_variance),
            "value_variance": str(self.value_variance),
            "quantity_variance_pct": float(self.quantity_variance_pct),
            "severity": self.severity.value,
            "status": self.status.value,
            "missing_in_comparison": self.missing_in_comparison,
            "detected_at": self.detected_at.isoformat(),
            "exception_id": self.exception_id,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "resolved_by": self.resolved_by,
        }
        if now is not None:
            d["age_hours"] = round(self.age_hours(now), 2)
        return d


@dataclass
class ReconciliationResult:
    """Output of one matcher run over two snapshots."""

    run_id: str
    reference_snapshot_id: str
    comparison_snapshot_id: str
    matches: list[PositionMatch] = field(default_factory=list)
    breaks: list[Break] = field(default_factory=list)
    comparison_only: list[PositionRecord] = field(default_factory=list)
