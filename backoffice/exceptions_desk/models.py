"""Exception Lifecycle: exception tickets and read views."""

import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from .config import ExceptionSeverity, ExceptionStatus

BREACHED = "breached"


def new_exception_id() -> str:
    return "EXC-" + uuid.uuid4().hex[:8].upper()


@dataclass
class OpsException:
    """An operational exception ticket.

    ``sla_minutes`` is fixed at creation. Remaining time is always derived
    from it and the clock, never stored.
    """

    category: str
    severity: ExceptionSeverity
    assigned_to: str
    created_at: datetime
    sla_minutes: int
    exception_id: str = field(default_factory=new_exception_id)
    status: ExceptionStatus = ExceptionStatus.OPEN
    description: str = ""
    created_by: str = "system"
    source_break_id: Optional[str] = None
    root_cause: Optional[str] = None
    resolution: Optional[str] = None
    acknowledged_at: Optional[datetime] = None
    escalated_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status == ExceptionStatus.RESOLVED

    def elapsed_minutes(self, now: datetime) -> float:
        # The countdown stops when the ticket is resolved.
        end = self.resolved_at if self.resolved_at is not None else now
        return max(0.0, (end - self.created_at).total_seconds() / 60.0)

    def remaining_minutes(self, now: datetime) -> float:
        return self.sla_minutes - self.elapsed_minutes(now)

    def is_breached(self, now: datetime) -> bool:
        return not self.is_terminal and self.remaining_minutes(now) <= 0


@dataclass(frozen=True)
class ExceptionView:
    """Point-in-time read view of an exception."""

    exception: OpsException
    remaining_minutes: int
    breached: bool
    at_risk: bool

    @classmethod
    def build(cls, exc: OpsException, now: datetime, threshold_minutes: int) -> "ExceptionView":
        remaining = exc.remaining_minutes(now)
        breached = exc.is_breached(now)
        return cls(
            exception=exc,
            remaining_minutes=math.floor(remaining),
            breached=breached,
            at_risk=not exc.is_terminal and not breached and remaining <= threshold_minutes,
        )

    @property
    def display_status(self) -> str:
        return BREACHED if self.breached else self.exception.status.value

    def to_dict(self) -> Dict[str, Any]:
        exc = self.exception

        def _iso(dt: Optional[datetime]) -> Optional[str]:
            return dt.isoformat() if dt else None

        return {
            "exception_id": exc.exception_id,
            "category": exc.category,
            "severity": exc.severity.value,
            "status": exc.status.value,
            "display_status": self.display_status,
            "assigned_to": exc.assigned_to,
            "description": exc.description,
            "created_by": exc.created_by,
            "created_at": _iso(exc.created_at),
            "sla_minutes": exc.sla_minutes,
            "remaining_minutes": self.remaining_minutes,
            "breached": self.breached,
            "at_risk": self.at_risk,
            "source_break_id": exc.source_break_id,
            "root_cause": exc.root_cause,
            "resolution": exc.resolution,
            "acknowledged_at": _iso(exc.acknowledged_at),
            "escalated_at": _iso(exc.escalated_at),
            "resolved_at": _iso(exc.resolved_at),
            "resolved_by": exc.resolved_by,
        }
