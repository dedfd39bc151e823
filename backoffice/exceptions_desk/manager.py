"""Exception Lifecycle: ticket creation, SLA escalation and resolution."""

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from backoffice.audit import SYSTEM_ACTOR, Actor, AuditRecorder, EventCategory, Resource
from backoffice.errors import (
    ConflictError,
    ErrorCode,
    NotFoundError,
    ValidationError,
    require_text,
)
from backoffice.locks import KeyedLocks
from backoffice.reconciliation import BreakManager, BreakSeverity

from .config import RECONCILIATION_CATEGORY, ExceptionConfig, ExceptionSeverity, ExceptionStatus
from .models import ExceptionView, OpsException, new_exception_id
from .state_machine import StateMachine, build_exception_lifecycle

logger = logging.getLogger(__name__)

_BREAK_TO_EXCEPTION_SEVERITY = {
    BreakSeverity.MEDIUM: ExceptionSeverity.MEDIUM,
    BreakSeverity.HIGH: ExceptionSeverity.HIGH,
}


def parse_severity(value) -> ExceptionSeverity:
    if isinstance(value, ExceptionSeverity):
        return value
    try:
        return ExceptionSeverity(str(value).lower())
    except ValueError:
        allowed = ", ".join(s.value for s in ExceptionSeverity)
        raise ValidationError(
            f"severity must be one of {allowed}", field="severity"
        ) from None


class ExceptionManager:
    """Owns exception tickets through open -> in_progress -> escalated/resolved.

    All transitions on one exception are serialised by a per-exception
    lock and re-check the current status under that lock, so a resolve
    racing an SLA tick always ends ``resolved``.

    Example:
        manager = ExceptionManager(breaks=break_manager)
        exc = manager.create("settlements", "high", "Failed DVP", actor)
        manager.acknowledge(exc.exception_id, actor)
        manager.tick()
    """

    def __init__(
        self,
        config: Optional[ExceptionConfig] = None,
        audit: Optional[AuditRecorder] = None,
        breaks: Optional[BreakManager] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config or ExceptionConfig()
        self.lifecycle: StateMachine = build_exception_lifecycle()
        self._audit = audit or AuditRecorder()
        self._breaks = breaks
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._exceptions: Dict[str, OpsException] = {}
        self._guard = threading.Lock()
        self._sweep_lock = threading.Lock()
        self._locks = KeyedLocks()

    # ── Creation ─────────────────────────────────────────────────────

    def create(
        self,
        category: str,
        severity,
        description: str = "",
        created_by: Optional[Actor] = None,
        source_break_id: Optional[str] = None,
    ) -> OpsException:
        """Open a new exception; SLA and owner are fixed from severity and category."""
        category = require_text(category, "category").lower()
        sev = parse_severity(severity)
        actor = created_by or SYSTEM_ACTOR

        exception_id = new_exception_id()
        if source_break_id is not None:
            if self._breaks is None:
                raise ValidationError("No break tracker configured", field="source_break_id")
            # Raises ConflictError if another exception already owns the break.
            self._breaks.link_exception(source_break_id, exception_id)

        exc = OpsException(
            exception_id=exception_id,
            category=category,
            severity=sev,
            assigned_to=self.config.owner_for(category),
            created_at=self._clock(),
            sla_minutes=self.config.sla_minutes_for(sev),
            description=description or "",
            created_by=actor.actor_id,
            source_break_id=source_break_id,
        )
        with self._guard:
            self._exceptions[exc.exception_id] = exc

        self._audit.record(
            action="exception.create",
            actor=actor,
            resource=Resource("exception", exc.exception_id),
            category=EventCategory.EXCEPTION,
            details={
                "category": exc.category,
                "severity": exc.severity.value,
                "sla_minutes": exc.sla_minutes,
                "assigned_to": exc.assigned_to,
                "source_break_id": source_break_id,
            },
            timestamp=exc.created_at,
        )
        logger.info(
            "Exception %s opened (%s/%s) for %s",
            exc.exception_id,
            exc.category,
            exc.severity.value,
            exc.assigned_to,
        )
        return exc

    def sweep(self, now: Optional[datetime] = None) -> List[OpsException]:
        """Ticket open breaks past the grace period, or all open breaks after cutoff.

        A break is ticketed at most once.
        """
        if self._breaks is None:
            return []
        now = now or self._clock()
        grace = timedelta(hours=self.config.cutoff_grace_hours)
        past_cutoff = now.time() >= self.config.daily_cutoff

        created: List[OpsException] = []
        with self._sweep_lock:
            for brk in self._breaks.open_breaks():
                if brk.exception_id is not None:
                    continue
                if not past_cutoff and now - brk.detected_at <= grace:
                    continue
                try:
                    exc = self.create(
                        category=RECONCILIATION_CATEGORY,
                        severity=_BREAK_TO_EXCEPTION_SEVERITY[brk.severity],
                        description=(
                            f"Position break {brk.instrument_id} for {brk.owner_id}: "
                            f"{brk.reference_source} {brk.reference_quantity} vs "
                            f"{brk.comparison_source} {brk.comparison_quantity}"
                        ),
                        source_break_id=brk.break_id,
                    )
                except ConflictError:
                    continue
                created.append(exc)

        if created:
            logger.info("Cutoff sweep opened %d exceptions", len(created))
        return created

    # ── Operator transitions ─────────────────────────────────────────

    def acknowledge(self, exception_id: str, actor: Actor) -> OpsException:
        """Explicit operator pickup: open -> in_progress."""
        with self._locks.hold(exception_id):
            exc = self.get(exception_id)
            self._transition(exc, ExceptionStatus.IN_PROGRESS, actor, "exception.acknowledge")
            exc.acknowledged_at = self._clock()
        return exc

    def assign(self, exception_id: str, assignee: str, actor: Actor) -> OpsException:
        assignee = require_text(assignee, "assigned_to")
        with self._locks.hold(exception_id):
            exc = self.get(exception_id)
            if exc.is_terminal:
                raise ConflictError(
                    f"Exception {exception_id} is resolved and cannot be reassigned",
                    error_code=ErrorCode.INVALID_TRANSITION,
                )
            previous = exc.assigned_to
            exc.assigned_to = assignee
            self._audit.record(
                action="exception.assign",
                actor=actor,
                resource=Resource("exception", exception_id),
                category=EventCategory.EXCEPTION,
                details={"from": previous, "to": assignee},
                timestamp=self._clock(),
            )
        return exc

    def resolve(
        self,
        exception_id: str,
        root_cause: str,
        resolution: str,
        actor: Actor,
    ) -> OpsException:
        """Close an exception with its root cause and resolution.

        Any non-terminal status goes straight to ``resolved``. The
        originating break, if any, is resolved in the same call.
        """
        root_cause = require_text(root_cause, "root_cause", "root cause is required")
        resolution = require_text(resolution, "resolution", "resolution is required")

        with self._locks.hold(exception_id):
            exc = self.get(exception_id)
            self._check_transition(exc, ExceptionStatus.RESOLVED)
            now = self._clock()
            exc.root_cause = root_cause
            exc.resolution = resolution
            exc.resolved_at = now
            exc.resolved_by = actor.actor_id
            self._transition(exc, ExceptionStatus.RESOLVED, actor, "exception.resolve",
                             {"root_cause": root_cause, "resolution": resolution}, timestamp=now)

            if exc.source_break_id and self._breaks is not None:
                self._breaks.resolve(exc.source_break_id, actor, exception_id=exc.exception_id)

        logger.info("Exception %s resolved by %s", exception_id, actor.actor_id)
        return exc

    # ── SLA tick ─────────────────────────────────────────────────────

    def tick(self, now: Optional[datetime] = None) -> List[str]:
        """Escalate in-progress exceptions within the escalation threshold.

        Returns the ids escalated by this call. Running it twice in a row
        escalates nothing the second time.
        """
        now = now or self._clock()
        threshold = self.config.escalation_threshold_minutes
        escalated: List[str] = []

        with self._guard:
            candidates = [
                e.exception_id for e in self._exceptions.values()
                if e.status == ExceptionStatus.IN_PROGRESS
            ]

        for exception_id in candidates:
            with self._locks.hold(exception_id):
                exc = self._exceptions[exception_id]
                # Re-check under the lock; a concurrent resolve wins.
                if exc.status != ExceptionStatus.IN_PROGRESS:
                    continue
                remaining = exc.remaining_minutes(now)
                if remaining > threshold:
                    continue
                self._transition(
                    exc,
                    ExceptionStatus.ESCALATED,
                    SYSTEM_ACTOR,
                    "exception.escalate",
                    {"remaining_minutes": round(remaining, 2)},
                    timestamp=now,
                )
                exc.escalated_at = now
                escalated.append(exception_id)

        if escalated:
            logger.warning("SLA tick escalated %d exceptions: %s", len(escalated), escalated)
        return escalated

    # ── Reads ────────────────────────────────────────────────────────

    def get(self, exception_id: str) -> OpsException:
        with self._guard:
            exc = self._exceptions.get(exception_id)
        if exc is None:
            raise NotFoundError(
                f"Exception not found: {exception_id}",
                error_code=ErrorCode.EXCEPTION_NOT_FOUND,
                resource_type="exception",
                resource_id=exception_id,
            )
        return exc

    def get_view(self, exception_id: str, now: Optional[datetime] = None) -> ExceptionView:
        return ExceptionView.build(
            self.get(exception_id), now or self._clock(), self.config.escalation_threshold_minutes
        )

    def list_views(
        self,
        status: Optional[str] = None,
        severity: Optional[str] = None,
        category: Optional[str] = None,
        assigned_to: Optional[str] = None,
        search: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> List[ExceptionView]:
        """Filtered views, newest first.

        ``status`` also accepts ``breached``. ``assigned_to`` and ``search``
        are case-insensitive substring matches.
        """
        now = now or self._clock()
        with self._guard:
            items = list(self._exceptions.values())

        views = [
            ExceptionView.build(e, now, self.config.escalation_threshold_minutes) for e in items
        ]
        if status:
            views = [v for v in views if v.exception.status.value == status or v.display_status == status]
        if severity:
            views = [v for v in views if v.exception.severity.value == severity]
        if category:
            views = [v for v in views if v.exception.category == category]
        if assigned_to:
            needle = assigned_to.lower()
            views = [v for v in views if needle in v.exception.assigned_to.lower()]
        if search:
            needle = search.lower()
            views = [
                v for v in views
                if needle in v.exception.exception_id.lower()
                or needle in v.exception.category.lower()
                or needle in v.exception.description.lower()
                or needle in (v.exception.source_break_id or "").lower()
            ]
        views.sort(key=lambda v: (v.exception.created_at, v.exception.exception_id), reverse=True)
        return views

    def sla_alerts(self, now: Optional[datetime] = None) -> List[ExceptionView]:
        """Unresolved exceptions within the escalation threshold, most urgent first."""
        now = now or self._clock()
        threshold = self.config.escalation_threshold_minutes
        alerts = [
            v for v in self.list_views(now=now)
            if not v.exception.is_terminal and v.exception.remaining_minutes(now) <= threshold
        ]
        alerts.sort(key=lambda v: v.exception.remaining_minutes(now))
        return alerts

    def dashboard_summary(self, now: Optional[datetime] = None) -> Dict[str, object]:
        now = now or self._clock()
        views = self.list_views(now=now)
        by_status: Dict[str, int] = {s.value: 0 for s in ExceptionStatus}
        by_severity: Dict[str, int] = {s.value: 0 for s in ExceptionSeverity}
        for v in views:
            by_status[v.exception.status.value] += 1
            by_severity[v.exception.severity.value] += 1
        return {
            "total": len(views),
            "by_status": by_status,
            "by_severity": by_severity,
            "breached": len([v for v in views if v.breached]),
            "at_risk": len([v for v in views if v.at_risk]),
        }

    # ── Internals ────────────────────────────────────────────────────

    def _transition(
        self,
        exc: OpsException,
        target: ExceptionStatus,
        actor: Actor,
        action: str,
        details: Optional[Dict[str, object]] = None,
        timestamp: Optional[datetime] = None,
    ) -> None:
        """Apply a lifecycle move. Caller must hold the exception's lock."""
        current = exc.status
        self._check_transition(exc, target)
        exc.status = target
        self._audit.record(
            action=action,
            actor=actor,
            resource=Resource("exception", exc.exception_id),
            category=EventCategory.EXCEPTION,
            details={"from": current.value, "to": target.value, **(details or {})},
            timestamp=timestamp or self._clock(),
        )
        logger.debug(
            "Exception %s: %s -> %s",
            exc.exception_id,
            current.value,
            target.value,
            extra={"entity_id": exc.exception_id, "transition": f"{current.value}->{target.value}"},
        )
