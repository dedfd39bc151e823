"""Authorization Queue (maker-checker)."""

from .config import (
    PRE_DECISION_STATUSES,
    ROLE_PERMISSIONS,
    TERMINAL_STATUSES,
    AuthorizationStatus,
    Caller,
    Capability,
    SubjectType,
    parse_subject_type,
)
from .handlers import AccountClosureHandler, IdempotencyLedger, InstructionHandler, SubjectHandler
from .models import AuthorizationRequest, Decision
from .queue import AuthorizationQueue

__all__ = [
    # Config
    "AuthorizationStatus",
    "Caller",
    "Capability",
    "PRE_DECISION_STATUSES",
    "ROLE_PERMISSIONS",
    "SubjectType",
    "TERMINAL_STATUSES",
    "parse_subject_type",
    # Models
    "AuthorizationRequest",
    "Decision",
    # Handlers
    "AccountClosureHandler",
    "IdempotencyLedger",
    "InstructionHandler",
    "SubjectHandler",
    # Queue
    "AuthorizationQueue",
]
