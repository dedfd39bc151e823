"""Authorization Queue: request and decision records."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from .config import PRE_DECISION_STATUSES, AuthorizationStatus, SubjectType


@dataclass
class AuthorizationRequest:
    """A submitted action waiting for a checker's decision."""

    subject_type: SubjectType
    subject_id: str
    maker: str
    maker_role: str
    submitted_at: datetime
    request_id: str = field(default_factory=lambda: "AUTH-" + uuid.uuid4().hex[:10].upper())
    status: AuthorizationStatus = AuthorizationStatus.PENDING_APPROVAL
    module: str = ""
    action: str = ""
    payload: Dict[str, Any] = field(default_factory=dict)
    comments: str = ""
    rejection_reason: Optional[str] = None
    decided_at: Optional[datetime] = None
    decided_by: Optional[str] = None
    side_effect: Optional[Dict[str, Any]] = None

    @property
    def is_pending(self) -> bool:
        return self.status in PRE_DECISION_STATUSES

    @property
    def subject_key(self) -> str:
        return f"{self.subject_type.value}:{self.subject_id}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "request_id": self.request_id,
            "subject_type": self.subject_type.value,
            "subject_id": self.subject_id,
            "maker": self.maker,
            "maker_role": self.maker_role,
            "status": self.status.value,
            "module": self.module,
            "action": self.action,
            "payload": self.payload,
            "comments": self.comments,
            "rejection_reason": self.rejection_reason,
            "submitted_at": self.submitted_at.isoformat(),
            "decided_at": self.decided_at.isoformat() if self.decided_at else None,
            "decided_by": self.decided_by,
            "side_effect": self.side_effect,
        }


@dataclass
class Decision:
    """A single approve or reject decision."""

    request_id: str
    approver: str
    action: str  # "approve" or "reject"
    timestamp: datetime
    reason: str = ""
    decision_id: str = field(default_factory=lambda: uuid.uuid4().hex[:16])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "decision_id": self.decision_id,
            "request_id": self.request_id,
            "approver": self.approver,
            "action": self.action,
            "reason": self.reason,
            "timestamp": self.timestamp.isoformat(),
        }
