"""Authorization Queue: maker-checker workflow."""

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from backoffice.audit import Actor, AuditRecorder, EventCategory, EventOutcome, Resource
from backoffice.errors import (
    ConflictError,
    ErrorCode,
    NotFoundError,
    ValidationError,
    require_text,
)
from backoffice.locks import KeyedLocks

from .config import (
    ALL_STATUSES,
    PENDING_ALIAS,
    PRE_DECISION_STATUSES,
    SUBJECT_DEFAULTS,
    AuthorizationStatus,
    Caller,
    Capability,
    SubjectType,
    parse_subject_type,
)
from .handlers import IdempotencyLedger, SubjectHandler
from .models import AuthorizationRequest, Decision

logger = logging.getLogger(__name__)


def _actor(caller: Caller) -> Actor:
    return Actor(actor_id=caller.user_id, actor_type="user", role=caller.role)


class AuthorizationQueue:
    """Holds sensitive actions until a checker approves or rejects them.

    - One non-terminal request per subject at a time.
    - A request is decided exactly once; decisions are serialised per
      request, so concurrent approve and reject yield one winner.
    - The subject's side effect runs only on approval, at most once per
      request id.

    Example:
        queue = AuthorizationQueue(handlers={SubjectType.INSTRUCTION: handler})
        req = queue.submit(maker, SubjectType.INSTRUCTION, "INS-1", payload)
        req, result = queue.approve(checker, req.request_id, comments="ok")
    """

    def __init__(
        self,
        handlers: Dict[SubjectType, SubjectHandler],
        audit: Optional[AuditRecorder] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._handlers = dict(handlers)
        self._audit = audit or AuditRecorder()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._requests: Dict[str, AuthorizationRequest] = {}
        self._active_by_subject: Dict[str, str] = {}
        self._decisions: List[Decision] = []
        self._ledger = IdempotencyLedger()
        self._guard = threading.Lock()
        self._locks = KeyedLocks()

    @property
    def ledger(self) -> IdempotencyLedger:
        return self._ledger

    # ── Submit ───────────────────────────────────────────────────────

    def submit(
        self,
        caller: Caller,
        subject_type,
        subject_id: str,
        payload: Optional[Dict[str, Any]] = None,
        module: Optional[str] = None,
        action: Optional[str] = None,
        comments: str = "",
    ) -> AuthorizationRequest:
        """Queue an action for approval.

        Raises:
            ValidationError: Unknown subject type, blank subject id or bad payload.
            ConflictError: The subject already has a pending request.
        """
        subject = parse_subject_type(subject_type)
        subject_id = require_text(subject_id, "subject_id")
        handler = self._handler_for(subject)
        defaults = SUBJECT_DEFAULTS.get(subject, {})

        request = AuthorizationRequest(
            subject_type=subject,
            subject_id=subject_id,
            maker=caller.user_id,
            maker_role=caller.role,
            submitted_at=self._clock(),
            module=module or defaults.get("module", ""),
            action=action or defaults.get("action", ""),
            payload=dict(payload or {}),
            comments=comments or "",
        )

        with self._locks.hold(f"subject:{request.subject_key}"):
            with self._guard:
                active_id = self._active_by_subject.get(request.subject_key)
            if active_id is not None:
                raise ConflictError(
                    f"{subject.value} {subject_id} already has a pending request {active_id}",
                    error_code=ErrorCode.DUPLICATE_SUBMISSION,
                )
            handler.on_submit(request)
            with self._guard:
                self._requests[request.request_id] = request
                self._active_by_subject[request.subject_key] = request.request_id

        self._audit.record(
            action="authorization.submit",
            actor=_actor(caller),
            resource=Resource("authorization", request.request_id),
            category=EventCategory.AUTHORIZATION,
            details={
                "subject_type": subject.value,
                "subject_id": subject_id,
                "status": request.status.value,
                "module": request.module,
                "action": request.action,
            },
            timestamp=request.submitted_at,
        )
        logger.info(
            "Authorization %s submitted by %s for %s",
            request.request_id,
            caller.user_id,
            request.subject_key,
        )
        return request

    # ── Decisions ────────────────────────────────────────────────────

    def approve(
        self,
        caller: Caller,
        request_id: str,
        comments: str = "",
    ) -> Tuple[AuthorizationRequest, Dict[str, Any]]:
        """Approve a pending request and apply its side effect.

        If the side effect raises, the request stays pending and the
        error propagates.
        """
        caller.require(Capability.APPROVE_INSTRUCTIONS)

        with self._locks.hold(request_id):
            request = self.get(request_id)
            self._ensure_pending(request, "approve")
            handler = self._handler_for(request.subject_type)
            now = self._clock()

            try:
                result = self._ledger.run_once(
                    request_id, lambda: handler.apply(request, caller, now)
                )
            except Exception as e:
                self._audit.record(
                    action="authorization.approve",
                    actor=_actor(caller),
                    resource=Resource("authorization", request_id),
                    category=EventCategory.AUTHORIZATION,
                    details={"error": str(e)},
                    outcome=EventOutcome.ERROR,
                    timestamp=now,
                )
                logger.error("Side effect for %s failed: %s", request_id, e)
                raise

            previous = request.status
            request.status = AuthorizationStatus.APPROVED
            request.decided_at = now
            request.decided_by = caller.user_id
            request.side_effect = result
            if comments:
                request.comments = comments
            self._close(request, Decision(request_id, caller.user_id, "approve", now, comments or ""))

            self._audit.record(
                action="authorization.approve",
                actor=_actor(caller),
                resource=Resource("authorization", request_id),
                category=EventCategory.AUTHORIZATION,
                details={
                    "from": previous.value,
                    "to": request.status.value,
                    "comments": comments,
                    "side_effect": result.get("type"),
                },
                timestamp=now,
            )

        logger.info("Authorization %s approved by %s", request_id, caller.user_id)
        return request, result

    def reject(self, caller: Caller, request_id: str, reason: str) -> AuthorizationRequest:
        """Reject a pending request. No side effect runs."""
        caller.require(Capability.APPROVE_INSTRUCTIONS)
        reason = require_text(reason, "reason", "rejection reason is required")

        with self._locks.hold(request_id):
            request = self.get(request_id)
            self._ensure_pending(request, "reject")
            now = self._clock()

            self._handler_for(request.subject_type).on_reject(request)

            previous = request.status
            request.status = AuthorizationStatus.REJECTED
            request.rejection_reason = reason
            request.decided_at = now
            request.decided_by = caller.user_id
            self._close(request, Decision(request_id, caller.user_id, "reject", now, reason))

            self._audit.record(
                action="authorization.reject",
                actor=_actor(caller),
                resource=Resource("authorization", request_id),
                category=EventCategory.AUTHORIZATION,
                details={"from": previous.value, "to": request.status.value, "reason": reason},
                timestamp=now,
            )

        logger.info("Authorization %s rejected by %s", request_id, caller.user_id)
        return request

    # ── Reads ────────────────────────────────────────────────────────

    def get(self, request_id: str) -> AuthorizationRequest:
        with self._guard:
            request = self._requests.get(request_id)
        if request is None:
            raise NotFoundError(
                f"Authorization request not found: {request_id}",
                error_code=ErrorCode.REQUEST_NOT_FOUND,
                resource_type="authorization",
                resource_id=request_id,
            )
        return request

    def list_pending(
        self,
        caller: Caller,
        status: Optional[str] = None,
        module: Optional[str] = None,
        action: Optional[str] = None,
        maker: Optional[str] = None,
        search: Optional[str] = None,
    ) -> List[AuthorizationRequest]:
        """List requests from live state.

        ``status`` defaults to the pre-decision states; ``pending`` is an
        alias for them and ``all`` disables the filter. ``module`` and
        ``action`` match exactly, ``maker`` and ``search`` by substring,
        all case-insensitive.
        """
        caller.require(Capability.VIEW_ALL)
        wanted = self._status_filter(status)

        with self._guard:
            items = list(self._requests.values())

        if wanted is not None:
            items = [r for r in items if r.status in wanted]
        if module:
            items = [r for r in items if r.module.lower() == module.lower()]
        if action:
            items = [r for r in items if r.action.lower() == action.lower()]
        if maker:
            needle = maker.lower()
            items = [r for r in items if needle in r.maker.lower()]
        if search:
            needle = search.lower()
            items = [
                r for r in items
                if needle in r.request_id.lower()
                or needle in r.subject_id.lower()
                or needle in r.maker.lower()
                or needle in r.module.lower()
                or needle in r.action.lower()
                or needle in r.status.value
            ]
        items.sort(key=lambda r: (r.submitted_at, r.request_id))
        return items

    def decision_history(self, request_id: Optional[str] = None) -> List[Decision]:
        with self._guard:
            decisions = list(self._decisions)
        if request_id:
            return [d for d in decisions if d.request_id == request_id]
        return decisions

    # ── Internals ────────────────────────────────────────────────────

    def _handler_for(self, subject: SubjectType) -> SubjectHandler:
        handler = self._handlers.get(subject)
        if handler is None:
            raise ValidationError(
                f"No handler registered for {subject.value}", field="subject_type"
            )
        return handler

    @staticmethod
    def _ensure_pending(request: AuthorizationRequest, verb: str) -> None:
        if not request.is_pending:
            raise ConflictError(
                f"Cannot {verb} request {request.request_id}: already {request.status.value}",
                error_code=ErrorCode.ALREADY_DECIDED,
            )

    def _close(self, request: AuthorizationRequest, decision: Decision) -> None:
        with self._guard:
            self._decisions.append(decision)
            if self._active_by_subject.get(request.subject_key) == request.request_id:
                del self._active_by_subject[request.subject_key]

    @staticmethod
    def _status_filter(status: Optional[str]):
        if status is None or status == "" or status == PENDING_ALIAS:
            return PRE_DECISION_STATUSES
        if status == ALL_STATUSES:
            return None
        try:
            parsed = AuthorizationStatus(status)
        except ValueError:
            allowed = ", ".join([s.value for s in AuthorizationStatus] + [PENDING_ALIAS, ALL_STATUSES])
            raise ValidationError(f"status must be one of {allowed}", field="status") from None
        if parsed in PRE_DECISION_STATUSES:
            return PRE_DECISION_STATUSES
        return frozenset({parsed})
