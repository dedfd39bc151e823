"""Position Reconciliation: configuration & enums."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum


class BreakSeverity(str, Enum):
    MEDIUM = "medium"
    HIGH = "high"


class BreakStatus(str, Enum):
    OPEN = "open"
    RESOLVED = "resolved"


@dataclass
class ToleranceConfig:
    """Tolerance thresholds, as fractions of the reference side."""

    match_tolerance_pct: Decimal = Decimal("0.01")  # |variance| <= 1% is a match
    high_severity_pct: Decimal = Decimal("0.05")  # |qty variance| > 5% is high

    def __post_init__(self) -> None:
        # Floats from settings are converted via str so 0.01 stays exactly 0.01.
        self.match_tolerance_pct = Decimal(str(self.match_tolerance_pct))
        self.high_severity_pct = Decimal(str(self.high_severity_pct))


@dataclass
class ReconciliationConfig:
    """Configuration for position matching and break tracking."""

    reference_source: str = "CSCS"
    comparison_source: str = "NGX"
    tolerances: ToleranceConfig = field(default_factory=ToleranceConfig)
