"""Chainable queries over the audit trail."""

from datetime import datetime
from typing import Callable, List, Optional

from .config import EventCategory, EventOutcome
from .events import AuditEvent
from .recorder import AuditRecorder

Predicate = Callable[[AuditEvent], bool]


class AuditQuery:
    """Filters are ANDed; ordering defaults to oldest first.

    Example:
        events = (AuditQuery(recorder)
            .filter_by_resource_id("EXC-1A2B3C")
            .filter_by_action_prefix("exception.")
            .sort_descending()
            .limit(20)
            .execute())
    """

    def __init__(self, recorder: AuditRecorder) -> None:
        self._recorder = recorder
        self._predicates: List[Predicate] = []
        self._newest_first = False
        self._limit: Optional[int] = None
        self._window: Optional[tuple] = None

    def where(self, predicate: Predicate) -> "AuditQuery":
        self._predicates.append(predicate)
        return self

    def filter_by_actor(self, actor_id: str) -> "AuditQuery":
        return self.where(lambda e: e.actor is not None and e.actor.actor_id == actor_id)

    def filter_by_action(self, action: str) -> "AuditQuery":
        return self.where(lambda e: e.action == action)

    def filter_by_action_prefix(self, prefix: str) -> "AuditQuery":
        """``"authorization."`` matches every authorization decision."""
        return self.where(lambda e: e.action.startswith(prefix))

    def filter_by_time_range(self, start: datetime, end: datetime) -> "AuditQuery":
        return self.where(lambda e: start <= e.timestamp <= end)

    def filter_by_category(self, category: EventCategory) -> "AuditQuery":
        return self.where(lambda e: e.category == category)

    def filter_by_outcome(self, outcome: EventOutcome) -> "AuditQuery":
        return self.where(lambda e: e.outcome == outcome)

    def filter_by_resource_type(self, resource_type: str) -> "AuditQuery":
        return self.where(lambda e: e.resource is not None and e.resource.resource_type == resource_type)

    def filter_by_resource_id(self, resource_id: str) -> "AuditQuery":
        return self.where(lambda e: e.resource is not None and e.resource.resource_id == resource_id)

    def sort_ascending(self) -> "AuditQuery":
        self._newest_first = False
        return self

    def sort_descending(self) -> "AuditQuery":
        self._newest_first = True
        return self

    def paginate(self, page: int = 1, page_size: int = 50) -> "AuditQuery":
        page, page_size = max(1, page), max(1, page_size)
        self._window = ((page - 1) * page_size, page * page_size)
        return self

    def limit(self, n: int) -> "AuditQuery":
        self._limit = n
        return self

    def _matching(self) -> List[AuditEvent]:
        return [
            e for e in self._recorder.get_all_events()
            if all(p(e) for p in self._predicates)
        ]

    def execute(self) -> List[AuditEvent]:
        # sorted() is stable: events sharing a timestamp keep append order.
        events = sorted(self._matching(), key=lambda e: e.timestamp, reverse=self._newest_first)
        if self._limit is not None:
            events = events[: self._limit]
        if self._window is not None:
            events = events[self._window[0]:self._window[1]]
        return events

    def count(self) -> int:
        """Matches before limit and pagination."""
        return len(self._matching())
