"""Audit event records: who did what to which entity."""

import hashlib
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .config import EventCategory, EventOutcome


@dataclass(frozen=True)
class Actor:
    """An operator (``user``) or the engine itself (``system``)."""

    actor_id: str
    actor_type: str = "user"
    role: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


SYSTEM_ACTOR = Actor(actor_id="system", actor_type="system")


@dataclass(frozen=True)
class Resource:
    """A break, exception, authorization request or account."""

    resource_type: str
    resource_id: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _new_event_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class AuditEvent:
    action: str = ""
    actor: Optional[Actor] = None
    resource: Optional[Resource] = None
    category: EventCategory = EventCategory.SYSTEM
    details: Dict[str, Any] = field(default_factory=dict)
    outcome: EventOutcome = EventOutcome.SUCCESS
    event_id: str = field(default_factory=_new_event_id)
    timestamp: datetime = field(default_factory=_utcnow)
    event_hash: str = ""
    previous_hash: str = ""

    def compute_hash(self, previous_hash: str) -> str:
        """SHA-256 over previous hash, event id, ISO timestamp and action."""
        material = "".join((previous_hash, self.event_id, self.timestamp.isoformat(), self.action))
        return hashlib.sha256(material.encode("utf-8")).hexdigest()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "timestamp": self.timestamp.isoformat(),
            "actor": self.actor.to_dict() if self.actor else None,
            "action": self.action,
            "resource": self.resource.to_dict() if self.resource else None,
            "category": self.category.value,
            "details": self.details,
            "outcome": self.outcome.value,
            "event_hash": self.event_hash,
            "previous_hash": self.previous_hash,
        }
