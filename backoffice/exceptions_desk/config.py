"""Exception Lifecycle: configuration & enums."""

from dataclasses import dataclass, field
from datetime import time
from enum import Enum
from typing import Dict


class ExceptionSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ExceptionStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    ESCALATED = "escalated"
    RESOLVED = "resolved"


TERMINAL_STATUSES = frozenset({ExceptionStatus.RESOLVED})

RECONCILIATION_CATEGORY = "reconciliation"

# Fixed category -> owner routing table.
CATEGORY_OWNERS: Dict[str, str] = {
    "settlements": "Chinenye O.",
    "reconciliation": "David K.",
    "corporate_actions": "Ify M.",
    "custody": "Bola S.",
}


@dataclass
class ExceptionConfig:
    """SLA, routing and cutoff policy for the exceptions desk."""

    sla_critical_minutes: int = 60
    sla_high_minutes: int = 120
    sla_default_minutes: int = 240
    escalation_threshold_minutes: int = 15
    triage_owner: str = "Ops Triage"
    category_owners: Dict[str, str] = field(default_factory=lambda: dict(CATEGORY_OWNERS))
    cutoff_grace_hours: float = 6.0
    daily_cutoff: time = time(16, 0)

    def sla_minutes_for(self, severity: ExceptionSeverity) -> int:
        if severity == ExceptionSeverity.CRITICAL:
            return self.sla_critical_minutes
        if severity == ExceptionSeverity.HIGH:
            return self.sla_high_minutes
        return self.sla_default_minutes

    def owner_for(self, category: str) -> str:
        return self.category_owners.get(category, self.triage_owner)
