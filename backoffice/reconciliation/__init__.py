"""Position Reconciliation: feed ingestion, matching and break tracking."""

from .config import (
    BreakSeverity,
    BreakStatus,
    ReconciliationConfig,
    ToleranceConfig,
)
from .feeds import (
    CashLedgerSource,
    CashVarianceRecord,
    FeedSource,
    HttpFeedSource,
    InMemoryCashLedger,
    InMemoryFeedSource,
    PositionRecord,
    PositionSnapshot,
    SnapshotStore,
)
from .models import Break, PositionMatch, ReconciliationResult, make_break_id
from .breaks import BreakClassifier, BreakManager
from .matcher import PositionMatcher

__all__ = [
    "Break",
    "BreakClassifier",
    "BreakManager",
    "BreakSeverity",
    "BreakStatus",
    "CashLedgerSource",
    "CashVarianceRecord",
    "FeedSource",
    "HttpFeedSource",
    "InMemoryCashLedger",
    "InMemoryFeedSource",
    "PositionMatch",
    "PositionMatcher",
    "PositionRecord",
    "PositionSnapshot",
    "ReconciliationConfig",
    "ReconciliationResult",
    "SnapshotStore",
    "ToleranceConfig",
    "make_break_id",
]
