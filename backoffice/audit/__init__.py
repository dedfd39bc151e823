"""Audit Trail: append-only log of every state transition."""

from .config import AuditConfig, EventCategory, EventOutcome
from .events import SYSTEM_ACTOR, Actor, AuditEvent, Resource
from .export import AuditExporter
from .query import AuditQuery
from .recorder import AuditRecorder

__all__ = [
    # Config
    "AuditConfig",
    "EventCategory",
    "EventOutcome",
    # Events
    "Actor",
    "AuditEvent",
    "Resource",
    "SYSTEM_ACTOR",
    # Core
    "AuditExporter",
    "AuditQuery",
    "AuditRecorder",
]
