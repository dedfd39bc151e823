"""Append-only audit trail for back-office state transitions."""

import logging
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional

from .config import AuditConfig, EventCategory, EventOutcome
from .events import Actor, AuditEvent, Resource

logger = logging.getLogger(__name__)


class AuditRecorder:
    """Hash-chained, thread-safe event log.

    Each event stores the hash of its predecessor, starting from
    ``config.genesis_hash``, so editing or dropping any event breaks the
    chain from that point on. New events collect in a pending list that
    is committed every ``config.buffer_size`` events or on :meth:`flush`;
    reads always see both.

    Example:
        recorder = AuditRecorder()
        recorder.record(
            "break.resolve",
            actor=Actor("checker_1", role="checker"),
            resource=Resource("break", "BRK-5E1A90C2"),
            category=EventCategory.RECONCILIATION,
        )
        assert recorder.verify_integrity()
    """

    def __init__(self, config: Optional[AuditConfig] = None) -> None:
        self._config = config or AuditConfig()
        self._committed: List[AuditEvent] = []
        self._pending: List[AuditEvent] = []
        self._head = self._config.genesis_hash
        self._lock = threading.Lock()

    @property
    def config(self) -> AuditConfig:
        return self._config

    @property
    def event_count(self) -> int:
        with self._lock:
            return len(self._committed) + len(self._pending)

    @property
    def last_hash(self) -> str:
        with self._lock:
            return self._head

    def record(
        self,
        action: str,
        actor: Optional[Actor] = None,
        resource: Optional[Resource] = None,
        category: EventCategory = EventCategory.SYSTEM,
        details: Optional[Dict[str, Any]] = None,
        outcome: EventOutcome = EventOutcome.SUCCESS,
        timestamp: Optional[datetime] = None,
    ) -> AuditEvent:
        """Chain a new event onto the trail and return it.

        ``action`` is dotted, entity first (``exception.escalate``).
        ``details`` is copied; later changes to the caller's dict do not
        reach the trail. When recording is disabled the event is built
        but neither chained nor stored.
        """
        event = AuditEvent(
            action=action,
            actor=actor,
            resource=resource,
            category=category,
            details=dict(details or {}),
            outcome=outcome,
        )
        if timestamp is not None:
            event.timestamp = timestamp
        if not self._config.enabled:
            return event

        with self._lock:
            event.previous_hash = self._head
            event.event_hash = event.compute_hash(self._head)
            self._head = event.event_hash
            self._pending.append(event)
            if len(self._pending) >= self._config.buffer_size:
                self._commit()

        logger.debug("Audit %s on %s", action, resource.resource_id if resource else "-")
        return event

    def flush(self) -> int:
        """Commit pending events. Returns how many were committed."""
        with self._lock:
            return self._commit()

    def _commit(self) -> int:
        moved = len(self._pending)
        self._committed.extend(self._pending)
        self._pending = []
        return moved

    def get_all_events(self) -> List[AuditEvent]:
        """Committed and pending events, oldest first."""
        with self._lock:
            return self._committed + self._pending

    def first_broken_link(self) -> Optional[AuditEvent]:
        """The earliest event whose hash no longer matches the chain, if any."""
        expected_previous = self._config.genesis_hash
        for event in self.get_all_events():
            if (
                event.previous_hash != expected_previous
                or event.event_hash != event.compute_hash(expected_previous)
            ):
                return event
            expected_previous = event.event_hash
        return None

    def verify_integrity(self) -> bool:
        broken = self.first_broken_link()
        if broken is not None:
            logger.error("Audit chain broken at event %s (%s)", broken.event_id, broken.action)
            return False
        return True
