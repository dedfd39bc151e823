"""Back-office engine: composition root.

Wires feeds, matcher, break tracker, exceptions desk, authorization
queue and audit trail from one :class:`Settings` and one clock, and
owns the background tasks.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from backoffice.audit import SYSTEM_ACTOR, Actor, AuditConfig, AuditRecorder, EventCategory, Resource
from backoffice.authorization import (
    AccountClosureHandler,
    AuthorizationQueue,
    Caller,
    InstructionHandler,
    SubjectType,
)
from backoffice.custody import AccountRegistry, TradeBook
from backoffice.errors import ErrorCode, UnavailableError
from backoffice.exceptions_desk import ExceptionConfig, ExceptionManager, OpsException
from backoffice.logging_config.performance import log_performance
from backoffice.reconciliation import (
    Break,
    BreakManager,
    CashLedgerSource,
    CashVarianceRecord,
    FeedSource,
    HttpFeedSource,
    InMemoryCashLedger,
    InMemoryFeedSource,
    PositionMatcher,
    PositionSnapshot,
    ReconciliationConfig,
    ReconciliationResult,
    SnapshotStore,
    ToleranceConfig,
)
from backoffice.scheduling import PeriodicTask
from backoffice.settings import Settings, get_settings

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def actor_for(caller: Caller) -> Actor:
    return Actor(actor_id=caller.user_id, actor_type="user", role=caller.role)


@dataclass
class ReconciliationRun:
    """One reconciliation run as returned to callers."""

    result: ReconciliationResult
    breaks: List[Break]
    summary: Dict[str, object]
    cash_variances: Optional[List[CashVarianceRecord]] = None
    reference: Optional[PositionSnapshot] = None
    comparison: Optional[PositionSnapshot] = None
    warnings: List[str] = field(default_factory=list)


class BackOfficeEngine:
    """Single entry point used by the API layer and background tasks."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        feed_source: Optional[FeedSource] = None,
        cash_source: Optional[CashLedgerSource] = None,
        clock: Optional[Clock] = None,
    ):
        self.settings = settings or get_settings()
        self.clock: Clock = clock or _utcnow
        s = self.settings

        self.audit = AuditRecorder(AuditConfig(buffer_size=s.audit_buffer_size))
        self.reconciliation_config = ReconciliationConfig(
            reference_source=s.reference_source,
            comparison_source=s.comparison_source,
            tolerances=ToleranceConfig(
                match_tolerance_pct=s.match_tolerance_pct,
                high_severity_pct=s.high_severity_pct,
            ),
        )
        self.exception_config = ExceptionConfig(
            sla_critical_minutes=s.sla_critical_minutes,
            sla_high_minutes=s.sla_high_minutes,
            sla_default_minutes=s.sla_default_minutes,
            escalation_threshold_minutes=s.escalation_threshold_minutes,
            triage_owner=s.triage_owner,
            cutoff_grace_hours=s.cutoff_grace_hours,
            daily_cutoff=s.daily_cutoff,
        )

        if feed_source is None:
            if s.feed_base_url:
                feed_source = HttpFeedSource(
                    s.feed_base_url, timeout=s.feed_timeout_seconds, clock=self.clock
                )
            else:
                feed_source = InMemoryFeedSource(clock=self.clock)
        self.feed_source = feed_source
        if cash_source is None:
            cash_source = feed_source if hasattr(feed_source, "fetch_cash_records") else InMemoryCashLedger()
        self.cash_source = cash_source

        self.snapshots = SnapshotStore()
        self.matcher = PositionMatcher(self.reconciliation_config)
        self.breaks = BreakManager(self.reconciliation_config, audit=self.audit, clock=self.clock)
        self.exceptions = ExceptionManager(
            self.exception_config, audit=self.audit, breaks=self.breaks, clock=self.clock
        )

        self.trades = TradeBook()
        self.accounts = AccountRegistry()
        self.authorizations = AuthorizationQueue(
            handlers={
                SubjectType.INSTRUCTION: InstructionHandler(self.trades),
                SubjectType.ACCOUNT_CLOSURE: AccountClosureHandler(self.accounts),
            },
            audit=self.audit,
            clock=self.clock,
        )

        self._tasks: List[PeriodicTask] = []

    # ── Feeds & reconciliation ───────────────────────────────────────

    def _fetch(self, source_id: str) -> PositionSnapshot:
        try:
            snapshot = self.feed_source.fetch_snapshot(source_id)
        except (TimeoutError, ConnectionError, OSError) as e:
            raise UnavailableError(
                f"Feed {source_id} is unavailable: {e}",
                error_code=ErrorCode.FEED_UNAVAILABLE,
                source=source_id,
            ) from e
        self.snapshots.put(snapshot)
        return snapshot

    def refresh_feeds(self) -> Tuple[PositionSnapshot, PositionSnapshot]:
        """Pull fresh snapshots from both configured sources."""
        cfg = self.reconciliation_config
        return self._fetch(cfg.reference_source), self._fetch(cfg.comparison_source)

    @log_performance(threshold_ms=500)
    def run_reconciliation(
        self,
        actor: Optional[Actor] = None,
        refresh: bool = True,
    ) -> ReconciliationRun:
        """Match the latest two snapshots and register the breaks found.

        Raises:
            UnavailableError: A feed could not be reached, or no snapshot
                has been ingested yet. Never reported as an empty run.
        """
        cfg = self.reconciliation_config
        if refresh:
            reference, comparison = self.refresh_feeds()
        else:
            reference = self.snapshots.latest(cfg.reference_source)
            comparison = self.snapshots.latest(cfg.comparison_source)
            missing = [
                sid for sid, snap in
                ((cfg.reference_source, reference), (cfg.comparison_source, comparison))
                if snap is None
            ]
            if missing:
                raise UnavailableError(
                    f"No snapshot ingested yet for {', '.join(missing)}",
                    error_code=ErrorCode.FEED_UNAVAILABLE,
                    source=missing[0],
                )

        result = self.matcher.reconcile(reference, comparison)
        stored = self.breaks.register(result)
        summary = self.matcher.summarize(result)

        run = ReconciliationRun(
            result=result,
            breaks=stored,
            summary=summary,
            reference=reference,
            comparison=comparison,
        )
        try:
            run.cash_variances = self.cash_source.fetch_cash_records()
        except UnavailableError as e:
            run.warnings.append(e.message)
            logger.warning("Cash ledger unavailable: %s", e.message)

        self.audit.record(
            action="reconciliation.run",
            actor=actor or SYSTEM_ACTOR,
            resource=Resource("reconciliation_run", result.run_id),
            category=EventCategory.RECONCILIATION,
            details={
                "reference_snapshot": result.reference_snapshot_id,
                "comparison_snapshot": result.comparison_snapshot_id,
                "matched": summary["matched"],
                "breaks": summary["breaks"],
            },
            timestamp=self.clock(),
        )
        return run

    # ── Periodic work ────────────────────────────────────────────────

    def sla_tick(self) -> List[str]:
        """One SLA cycle. A transient read failure skips the cycle."""
        try:
            return self.exceptions.tick(self.clock())
        except UnavailableError as e:
            logger.warning("SLA tick skipped: %s", e.message)
            return []

    def sweep(self, now: Optional[datetime] = None) -> List[OpsException]:
        return self.exceptions.sweep(now or self.clock())

    def background_tasks(self) -> List[PeriodicTask]:
        return list(self._tasks)

    def start_background_tasks(self) -> None:
        """Start SLA tick, feed refresh and cutoff sweep. Needs a running loop."""
        if self._tasks:
            return
        s = self.settings
        self._tasks = [
            PeriodicTask("sla_tick", self.sla_tick, s.sla_tick_interval),
            PeriodicTask("feed_refresh", self.refresh_feeds, s.feed_refresh_interval),
            PeriodicTask("cutoff_sweep", self.sweep, s.sweep_interval),
        ]
        for task in self._tasks:
            task.start()

    async def stop_background_tasks(self) -> None:
        for task in self._tasks:
            await task.cancel()
        self._tasks = []

    def close(self) -> None:
        self.audit.flush()
        if isinstance(self.feed_source, HttpFeedSource):
            self.feed_source.close()

    def health(self) -> Dict[str, object]:
        return {
            "status": "ok",
            "audit_events": self.audit.event_count,
            "audit_chain_intact": self.audit.verify_integrity(),
            "open_breaks": len(self.breaks.open_breaks()),
            "background_tasks": {t.name: t.is_running for t in self._tasks},
        }
