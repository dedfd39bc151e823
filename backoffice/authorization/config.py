"""Authorization Queue: configuration, roles & capabilities."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Optional

from backoffice.errors import ErrorCode, ForbiddenError, ValidationError


class AuthorizationStatus(str, Enum):
    SUBMITTED = "submitted"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"


# Same logical pre-decision state under two raw values.
PRE_DECISION_STATUSES: FrozenSet[AuthorizationStatus] = frozenset(
    {AuthorizationStatus.SUBMITTED, AuthorizationStatus.PENDING_APPROVAL}
)
TERMINAL_STATUSES: FrozenSet[AuthorizationStatus] = frozenset(
    {AuthorizationStatus.APPROVED, AuthorizationStatus.REJECTED}
)

PENDING_ALIAS = "pending"
ALL_STATUSES = "all"


class SubjectType(str, Enum):
    INSTRUCTION = "instruction"
    ACCOUNT_CLOSURE = "account_closure"


class Capability(str, Enum):
    APPROVE_INSTRUCTIONS = "approve_instructions"
    APPROVE_ACCOUNT_CLOSURES = "approve_account_closures"
    MANAGE_USERS = "manage_users"
    VIEW_ALL = "view_all"
    MANAGE_SETTINGS = "manage_settings"
    CREATE_TRADES = "create_trades"
    VIEW_TRADES = "view_trades"


ROLE_PERMISSIONS: Dict[str, FrozenSet[Capability]] = {
    "admin": frozenset({
        Capability.APPROVE_INSTRUCTIONS,
        Capability.APPROVE_ACCOUNT_CLOSURES,
        Capability.MANAGE_USERS,
        Capability.VIEW_ALL,
        Capability.MANAGE_SETTINGS,
    }),
    "maker": frozenset({Capability.CREATE_TRADES, Capability.VIEW_TRADES}),
    "checker": frozenset({Capability.APPROVE_INSTRUCTIONS, Capability.VIEW_ALL}),
    "viewer": frozenset(),
}

# Default module / action labels shown in the queue per subject type.
SUBJECT_DEFAULTS: Dict[SubjectType, Dict[str, str]] = {
    SubjectType.INSTRUCTION: {"module": "instructions", "action": "create_trade"},
    SubjectType.ACCOUNT_CLOSURE: {"module": "clients", "action": "close_account"},
}


@dataclass(frozen=True)
class Caller:
    """Identity passed explicitly into every queue call.

    Capabilities are derived from the role alone; nothing is read from
    ambient state.
    """

    user_id: str
    role: str
    capabilities: FrozenSet[Capability] = field(default=frozenset())

    @classmethod
    def from_role(cls, user_id: str, role: Optional[str]) -> "Caller":
        role = (role or "viewer").strip().lower()
        return cls(user_id=user_id, role=role, capabilities=ROLE_PERMISSIONS.get(role, frozenset()))

    def has_capability(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def require(self, capability: Capability) -> None:
        if not self.has_capability(capability):
            raise ForbiddenError(
                f"{capability.value} capability is required (role '{self.role}' does not have it)",
                capability=capability.value,
            )


def parse_subject_type(value) -> SubjectType:
    if isinstance(value, SubjectType):
        return value
    try:
        return SubjectType(str(value).lower())
    except ValueError:
        allowed = ", ".join(s.value for s in SubjectType)
        raise ValidationError(
            f"subject_type must be one of {allowed}",
            error_code=ErrorCode.VALIDATION_ERROR,
            field="subject_type",
        ) from None
