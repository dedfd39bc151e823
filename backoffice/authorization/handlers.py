"""Authorization Queue: per-subject side effects.

Each subject type has one handler. ``on_submit`` runs when a request is
queued, ``apply`` runs exactly once on approval and ``on_reject`` undoes
whatever ``on_submit`` reserved.
"""

import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from backoffice.custody import AccountRegistry, AccountStatus, InstructionTerms, TradeBook
from backoffice.errors import ConflictError, ErrorCode

from .config import Caller
from .models import AuthorizationRequest

logger = logging.getLogger(__name__)


class SubjectHandler:
    """Base handler; subclasses implement :meth:`apply`."""

    def on_submit(self, request: AuthorizationRequest) -> None:
        """Validate the request and reserve the subject. Raise to refuse."""

    def apply(self, request: AuthorizationRequest, approver: Caller, now: datetime) -> Dict[str, Any]:
        raise NotImplementedError

    def on_reject(self, request: AuthorizationRequest) -> None:
        """Release whatever :meth:`on_submit` reserved."""


class InstructionHandler(SubjectHandler):
    """Approved instructions book one draft trade."""

    def __init__(self, trades: TradeBook):
        self._trades = trades

    def on_submit(self, request: AuthorizationRequest) -> None:
        InstructionTerms.from_payload(request.payload)
        booked = self._trades.list_trades(request.subject_id)
        if booked:
            raise ConflictError(
                f"Instruction {request.subject_id} already booked trade {booked[0].trade_id}",
                error_code=ErrorCode.DUPLICATE_SUBMISSION,
            )

    def apply(self, request: AuthorizationRequest, approver: Caller, now: datetime) -> Dict[str, Any]:
        terms = InstructionTerms.from_payload(request.payload)
        trade = self._trades.create_draft_trade(
            instruction_id=request.subject_id,
            terms=terms,
            created_by=approver.user_id,
            created_at=now,
        )
        return {"type": "trade_created", "trade": trade.to_dict()}


class AccountClosureHandler(SubjectHandler):
    """Closure requests hold the account in ``pending_closure`` until decided."""

    def __init__(self, accounts: AccountRegistry):
        self._accounts = accounts
        self._prior_status: Dict[str, AccountStatus] = {}
        self._lock = threading.Lock()

    def on_submit(self, request: AuthorizationRequest) -> None:
        previous = self._accounts.mark_pending_closure(request.subject_id)
        with self._lock:
            self._prior_status[request.request_id] = previous

    def apply(self, request: AuthorizationRequest, approver: Caller, now: datetime) -> Dict[str, Any]:
        account = self._accounts.close(request.subject_id, closed_at=now)
        with self._lock:
            self._prior_status.pop(request.request_id, None)
        return {"type": "account_closed", "account": account.to_dict()}

    def on_reject(self, request: AuthorizationRequest) -> None:
        with self._lock:
            previous = self._prior_status.pop(request.request_id, AccountStatus.ACTIVE)
        self._accounts.revert(request.subject_id, previous)


class IdempotencyLedger:
    """Results of side effects keyed by request id.

    A result is recorded only when the side effect succeeds, so a failed
    attempt can be retried and a successful one never runs twice.
    """

    def __init__(self) -> None:
        self._results: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self._results.get(key)

    def run_once(self, key: str, fn: Callable[[], Dict[str, Any]]) -> Dict[str, Any]:
        """Caller must hold the per-request lock for ``key``."""
        existing = self.get(key)
        if existing is not None:
            logger.info("Side effect for %s already applied, reusing result", key)
            return existing
        result = fn()
        with self._lock:
            self._results[key] = result
        return result

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)
