"""Configuration for the audit trail."""

from dataclasses import dataclass
from enum import Enum


class EventCategory(str, Enum):
    """Categories for audit events."""

    RECONCILIATION = "reconciliation"
    EXCEPTION = "exception"
    AUTHORIZATION = "authorization"
    CUSTODY = "custody"
    SYSTEM = "system"


class EventOutcome(str, Enum):
    """Possible outcomes for audited actions."""

    SUCCESS = "success"
    FAILURE = "failure"
    DENIED = "denied"
    ERROR = "error"


@dataclass
class AuditConfig:
    """Master configuration for the audit trail."""

    enabled: bool = True
    buffer_size: int = 100
    genesis_hash: str = "genesis"
