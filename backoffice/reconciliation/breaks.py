"""Position Reconciliation: break classification and tracking."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Optional

from backoffice.audit import Actor, AuditRecorder, EventCategory, Resource, SYSTEM_ACTOR
from backoffice.errors import ConflictError, ErrorCode, NotFoundError
from backoffice.locks import KeyedLocks

from .config import BreakSeverity, BreakStatus, ReconciliationConfig, ToleranceConfig
from .models import Break, ReconciliationResult

logger = logging.getLogger(__name__)


class BreakClassifier:
    """Assigns severity to variances. Age never affects severity."""

    def __init__(self, tolerances: Optional[ToleranceConfig] = None) -> None:
        self.tolerances = tolerances or ToleranceConfig()

    def severity_for(self, quantity_variance, reference_quantity) -> BreakSeverity:
        """``high`` iff |variance| > high threshold x reference, else ``medium``."""
        limit = self.tolerances.high_severity_pct * abs(reference_quantity)
        if abs(quantity_variance) > limit:
            return BreakSeverity.HIGH
        return BreakSeverity.MEDIUM

    def classify(self, brk: Break) -> BreakSeverity:
        return self.severity_for(brk.quantity_variance, brk.reference_quantity)

    @staticmethod
    def age_hours(brk: Break, now: datetime) -> float:
        return brk.age_hours(now)


class BreakManager:
    """Tracks breaks from detection to resolution.

    Breaks are keyed by their deterministic id, so registering the result
    of a re-run updates figures but never reopens a resolved break.
    """

    def __init__(
        self,
        config: Optional[ReconciliationConfig] = None,
        audit: Optional[AuditRecorder] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.config = config or ReconciliationConfig()
        self.classifier = BreakClassifier(self.config.tolerances)
        self._audit = audit or AuditRecorder()
        self._clock = clock
        self._breaks: dict[str, Break] = {}
        self._guard = threading.Lock()
        self._locks = KeyedLocks()

    def _now(self) -> datetime:
        if self._clock is None:
            return datetime.now(timezone.utc)
        return self._clock()

    def register(self, result: ReconciliationResult) -> list[Break]:
        """Store the breaks of a run. Returns the stored (authoritative) breaks."""
        stored: list[Break] = []
        for brk in result.breaks:
            with self._locks.hold(brk.break_id):
                with self._guard:
                    existing = self._breaks.get(brk.break_id)
                if existing is None:
                    with self._guard:
                        self._breaks[brk.break_id] = brk
                    self._audit.record(
                        action="break.detected",
                        actor=SYSTEM_ACTOR,
                        resource=Resource("break", brk.break_id),
                        category=EventCategory.RECONCILIATION,
                        details={
                            "owner_id": brk.owner_id,
                            "instrument_id": brk.instrument_id,
                            "quantity_variance": str(brk.quantity_variance),
                            "severity": brk.severity.value,
                        },
                        timestamp=self._now(),
                    )
                    stored.append(brk)
                    continue

                if existing.is_open:
                    existing.reference_quantity = brk.reference_quantity
                    existing.comparison_quantity = brk.comparison_quantity
                    existing.reference_value = brk.reference_value
                    existing.comparison_value = brk.comparison_value
                    existing.quantity_variance = brk.quantity_variance
                    existing.value_variance = brk.value_variance
                    existing.severity = brk.severity
                    existing.missing_in_comparison = brk.missing_in_comparison
                stored.append(existing)

        logger.info("Registered %d breaks (%d tracked)", len(stored), len(self._breaks))
        return stored

    def get(self, break_id: str) -> Break:
        with self._guard:
            brk = self._breaks.get(break_id)
        if brk is None:
            raise NotFoundError(
                f"Break not found: {break_id}",
                error_code=ErrorCode.BREAK_NOT_FOUND,
                resource_type="break",
                resource_id=break_id,
            )
        return brk

    def resolve(
        self,
        break_id: str,
        actor: Optional[Actor] = None,
        exception_id: Optional[str] = None,
    ) -> Break:
        """Mark a break resolved. Resolving twice is a successful no-op.

        A ticketed break belongs to its exception: only a call carrying
        that ``exception_id`` may resolve it.
        """
        actor = actor or SYSTEM_ACTOR
        with self._locks.hold(break_id):
            brk = self.get(break_id)
            if brk.status == BreakStatus.RESOLVED:
                return brk
            if brk.exception_id is not None and brk.exception_id != exception_id:
                raise ConflictError(
                    f"Break {break_id} is ticketed as {brk.exception_id}; resolve the exception instead",
                    error_code=ErrorCode.INVALID_TRANSITION,
                )
            now = self._now()
            brk.status = BreakStatus.RESOLVED
            brk.resolved_at = now
            brk.resolved_by = actor.actor_id
            self._audit.record(
                action="break.resolve",
                actor=actor,
                resource=Resource("break", break_id),
                category=EventCategory.RECONCILIATION,
                details={"from": BreakStatus.OPEN.value, "to": BreakStatus.RESOLVED.value},
                timestamp=now,
            )
        logger.info("Break %s resolved by %s", break_id, actor.actor_id)
        return brk

    def link_exception(self, break_id: str, exception_id: str) -> Break:
        """Attach the exception raised for a break. A break is ticketed once."""
        with self._locks.hold(break_id):
            brk = self.get(break_id)
            if brk.exception_id is not None and brk.exception_id != exception_id:
                raise ConflictError(
                    f"Break {break_id} already has exception {brk.exception_id}",
                    error_code=ErrorCode.DUPLICATE_SUBMISSION,
                )
            brk.exception_id = exception_id
        return brk

    def list_breaks(self, status: Optional[BreakStatus] = None) -> list[Break]:
        with self._guard:
            breaks = list(self._breaks.values())
        if status is not None:
            breaks = [b for b in breaks if b.status == status]
        return sorted(breaks, key=lambda b: (b.owner_id, b.instrument_id))

    def open_breaks(self) -> list[Break]:
        return self.list_breaks(BreakStatus.OPEN)

    def statistics(self) -> dict:
        breaks = self.list_breaks()
        by_severity: dict[str, int] = {}
        for b in breaks:
            by_severity[b.severity.value] = by_severity.get(b.severity.value, 0) + 1
        resolved = len([b for b in breaks if b.status == BreakStatus.RESOLVED])
        return {
            "total": len(breaks),
            "open": len(breaks) - resolved,
            "resolved": resolved,
            "ticketed": len([b for b in breaks if b.exception_id]),
            "by_severity": by_severity,
            "resolution_rate": resolved / len(breaks) if breaks else 0.0,
        }
