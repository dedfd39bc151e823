"""Exception Lifecycle Manager.

Exception tickets raised by the cutoff sweep or by operators, with an
SLA countdown fixed at creation, automatic escalation and root-cause
closure.
"""

from .config import (
    CATEGORY_OWNERS,
    RECONCILIATION_CATEGORY,
    ExceptionConfig,
    ExceptionSeverity,
    ExceptionStatus,
)
from .manager import ExceptionManager, parse_severity
from .models import BREACHED, ExceptionView, OpsException
from .state_machine import State, StateMachine, Transition, build_exception_lifecycle

__all__ = [
    # Config
    "CATEGORY_OWNERS",
    "RECONCILIATION_CATEGORY",
    "ExceptionConfig",
    "ExceptionSeverity",
    "ExceptionStatus",
    # Models
    "BREACHED",
    "ExceptionView",
    "OpsException",
    # Lifecycle
    "State",
    "StateMachine",
    "Transition",
    "build_exception_lifecycle",
    # Manager
    "ExceptionManager",
    "parse_severity",
]
