"""Authorization Queue: maker-checker workflow tests."""

import threading
from datetime import timedelta

import pytest

from backoffice.audit import AuditQuery, AuditRecorder, EventOutcome
from backoffice.authorization import (
    AccountClosureHandler,
    AuthorizationQueue,
    AuthorizationStatus,
    Caller,
    Capability,
    IdempotencyLedger,
    InstructionHandler,
    SubjectType,
)
from backoffice.custody import AccountRegistry, AccountStatus, ClientAccount, TradeBook, TradeStatus
from backoffice.errors import ConflictError, ErrorCode, ForbiddenError, NotFoundError, ValidationError
from conftest import T0, FakeClock

MAKER = Caller.from_role("maker_1", "maker")
CHECKER = Caller.from_role("checker_1", "checker")
ADMIN = Caller.from_role("admin_1", "admin")
VIEWER = Caller.from_role("viewer_1", "viewer")


def _payload(**overrides):
    payload = {
        "client_id": "CL-100",
        "instrument_id": "NG000001",
        "side": "buy",
        "quantity": "1000",
        "price": "12.50",
    }
    payload.update(overrides)
    return payload


class TestCaller:
    def test_role_capabilities(self):
        assert CHECKER.has_capability(Capability.APPROVE_INSTRUCTIONS)
        assert CHECKER.has_capability(Capability.VIEW_ALL)
        assert not MAKER.has_capability(Capability.APPROVE_INSTRUCTIONS)
        assert ADMIN.has_capability(Capability.APPROVE_ACCOUNT_CLOSURES)
        assert VIEWER.capabilities == frozenset()

    def test_unknown_role_has_nothing(self):
        caller = Caller.from_role("x", "superuser")
        assert caller.capabilities == frozenset()

    def test_missing_role_is_viewer(self):
        assert Caller.from_role("x", None).role == "viewer"

    def test_require(self):
        with pytest.raises(ForbiddenError) as exc_info:
            MAKER.require(Capability.APPROVE_INSTRUCTIONS)
        assert exc_info.value.status_code == 403


class TestIdempotencyLedger:
    def test_runs_once(self):
        ledger = IdempotencyLedger()
        calls = []

        def effect():
            calls.append(1)
            return {"n": len(calls)}

        assert ledger.run_once("AUTH-1", effect) == {"n": 1}
        assert ledger.run_once("AUTH-1", effect) == {"n": 1}
        assert len(calls) == 1
        assert len(ledger) == 1

    def test_failure_is_not_recorded(self):
        ledger = IdempotencyLedger()

        def boom():
            raise RuntimeError("downstream")

        with pytest.raises(RuntimeError):
            ledger.run_once("AUTH-1", boom)
        assert ledger.get("AUTH-1") is None
        assert ledger.run_once("AUTH-1", lambda: {"ok": True}) == {"ok": True}


class TestAuthorizationQueue:
    def setup_method(self):
        self.clock = FakeClock()
        self.audit = AuditRecorder()
        self.trades = TradeBook()
        self.accounts = AccountRegistry()
        self.accounts.add(ClientAccount(account_id="ACC-7", client_name="Adaeze N."))
        self.queue = AuthorizationQueue(
            handlers={
                SubjectType.INSTRUCTION: InstructionHandler(self.trades),
                SubjectType.ACCOUNT_CLOSURE: AccountClosureHandler(self.accounts),
            },
            audit=self.audit,
            clock=self.clock,
        )

    def _submit(self, subject_id="INS-1", payload=None):
        return self.queue.submit(MAKER, SubjectType.INSTRUCTION, subject_id, payload or _payload())

    # ── submit ──

    def test_submit(self):
        req = self._submit()
        assert req.status == AuthorizationStatus.PENDING_APPROVAL
        assert req.maker == "maker_1"
        assert req.module == "instructions"
        assert req.action == "create_trade"
        assert req.submitted_at == T0
        assert req.request_id.startswith("AUTH-")

    def test_submit_accepts_string_subject_type(self):
        req = self.queue.submit(MAKER, "instruction", "INS-9", _payload())
        assert req.subject_type == SubjectType.INSTRUCTION

    def test_submit_unknown_subject_type(self):
        with pytest.raises(ValidationError):
            self.queue.submit(MAKER, "wire_transfer", "W-1", {})

    def test_submit_validates_instruction_terms(self):
        with pytest.raises(ValidationError):
            self._submit(payload=_payload(quantity=None))
        with pytest.raises(ValidationError):
            self._submit(payload=_payload(side="short"))
        assert self.queue.list_pending(CHECKER) == []

    def test_one_pending_request_per_subject(self):
        self._submit("INS-1")
        with pytest.raises(ConflictError) as exc_info:
            self._submit("INS-1")
        assert exc_info.value.error_code == ErrorCode.DUPLICATE_SUBMISSION
        self._submit("INS-2")
        assert len(self.queue.list_pending(CHECKER)) == 2

    def test_resubmit_after_rejection(self):
        req = self._submit("INS-1")
        self.queue.reject(CHECKER, req.request_id, "wrong price")
        again = self._submit("INS-1")
        assert again.request_id != req.request_id

    # ── approve ──

    def test_approve_creates_one_draft_trade(self):
        req = self._submit()
        self.clock.advance(minutes=10)
        approved, result = self.queue.approve(CHECKER, req.request_id, comments="terms ok")
        assert approved.status == AuthorizationStatus.APPROVED
        assert approved.decided_by == "checker_1"
        assert approved.decided_at == T0 + timedelta(minutes=10)
        assert result["type"] == "trade_created"
        trades = self.trades.list_trades("INS-1")
        assert len(trades) == 1
        assert trades[0].status == TradeStatus.DRAFT
        assert trades[0].created_by == "checker_1"
        assert result["trade"]["trade_id"] == trades[0].trade_id

    def test_second_approve_conflicts_without_side_effect(self):
        req = self._submit()
        self.queue.approve(CHECKER, req.request_id)
        with pytest.raises(ConflictError) as exc_info:
            self.queue.approve(ADMIN, req.request_id)
        assert exc_info.value.error_code == ErrorCode.ALREADY_DECIDED
        assert len(self.trades.list_trades()) == 1
        assert len(self.queue.decision_history(req.request_id)) == 1

    def test_approved_instruction_is_not_resubmittable(self):
        req = self._submit("INS-1")
        self.queue.approve(CHECKER, req.request_id)
        with pytest.raises(ConflictError, match="already booked trade") as exc_info:
            self._submit("INS-1")
        assert exc_info.value.error_code == ErrorCode.DUPLICATE_SUBMISSION
        assert self.queue.list_pending(CHECKER) == []
        assert len(self.trades.list_trades("INS-1")) == 1

    def test_maker_cannot_approve(self):
        req = self._submit()
        with pytest.raises(ForbiddenError):
            self.queue.approve(MAKER, req.request_id)
        assert self.queue.get(req.request_id).is_pending
        assert self.trades.list_trades() == []

    def test_approve_unknown(self):
        with pytest.raises(NotFoundError) as exc_info:
            self.queue.approve(CHECKER, "AUTH-NOPE")
        assert exc_info.value.error_code == ErrorCode.REQUEST_NOT_FOUND

    def test_failed_side_effect_leaves_request_pending(self):
        req = self.queue.submit(MAKER, SubjectType.ACCOUNT_CLOSURE, "ACC-7", {})
        # Account disappears behind the queue's back.
        self.accounts.close("ACC-7", closed_at=T0)
        with pytest.raises(ConflictError):
            self.queue.approve(CHECKER, req.request_id)
        assert self.queue.get(req.request_id).is_pending
        assert self.queue.ledger.get(req.request_id) is None
        errors = AuditQuery(self.audit).filter_by_outcome(EventOutcome.ERROR).execute()
        assert [e.action for e in errors] == ["authorization.approve"]

    def test_concurrent_approve_and_reject_single_winner(self):
        req = self._submit()
        barrier = threading.Barrier(2)
        outcomes = []

        def approve():
            barrier.wait()
            try:
                self.queue.approve(CHECKER, req.request_id)
                outcomes.append("approved")
            except ConflictError:
                outcomes.append("conflict")

        def reject():
            barrier.wait()
            try:
                self.queue.reject(ADMIN, req.request_id, "duplicate instruction")
                outcomes.append("rejected")
            except ConflictError:
                outcomes.append("conflict")

        threads = [threading.Thread(target=approve), threading.Thread(target=reject)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)

        assert sorted(outcomes) in (["approved", "conflict"], ["conflict", "rejected"])
        assert len(self.queue.decision_history(req.request_id)) == 1
        final = self.queue.get(req.request_id)
        expected_trades = 1 if final.status == AuthorizationStatus.APPROVED else 0
        assert len(self.trades.list_trades()) == expected_trades

    # ── reject ──

    def test_reject_requires_reason(self):
        req = self._submit()
        for reason in (None, "", "   "):
            with pytest.raises(ValidationError, match="rejection reason is required"):
                self.queue.reject(CHECKER, req.request_id, reason)
        assert self.queue.get(req.request_id).is_pending

    def test_reject(self):
        req = self._submit()
        rejected = self.queue.reject(CHECKER, req.request_id, "wrong price")
        assert rejected.status == AuthorizationStatus.REJECTED
        assert rejected.rejection_reason == "wrong price"
        assert self.trades.list_trades() == []
        with pytest.raises(ConflictError):
            self.queue.approve(CHECKER, req.request_id)

    # ── account closure ──

    def test_closure_holds_account_until_approved(self):
        req = self.queue.submit(MAKER, SubjectType.ACCOUNT_CLOSURE, "ACC-7", {})
        assert req.module == "clients"
        assert req.action == "close_account"
        assert self.accounts.get("ACC-7").status == AccountStatus.PENDING_CLOSURE
        _, result = self.queue.approve(CHECKER, req.request_id)
        assert result["type"] == "account_closed"
        assert self.accounts.get("ACC-7").status == AccountStatus.CLOSED

    def test_closure_rejection_restores_account(self):
        req = self.queue.submit(MAKER, SubjectType.ACCOUNT_CLOSURE, "ACC-7", {})
        self.queue.reject(CHECKER, req.request_id, "client still has holdings")
        assert self.accounts.get("ACC-7").status == AccountStatus.ACTIVE

    def test_closure_of_unknown_account(self):
        with pytest.raises(NotFoundError):
            self.queue.submit(MAKER, SubjectType.ACCOUNT_CLOSURE, "ACC-404", {})

    # ── reads ──

    def test_list_requires_view_all(self):
        with pytest.raises(ForbiddenError):
            self.queue.list_pending(MAKER)

    def test_list_status_filters(self):
        a = self._submit("INS-1")
        self.clock.advance(minutes=1)
        b = self._submit("INS-2")
        self.queue.approve(CHECKER, a.request_id)

        assert self.queue.list_pending(CHECKER) == [b]
        assert self.queue.list_pending(CHECKER, status="pending") == [b]
        assert self.queue.list_pending(CHECKER, status="submitted") == [b]
        assert self.queue.list_pending(CHECKER, status="approved") == [a]
        assert self.queue.list_pending(CHECKER, status="all") == [a, b]
        with pytest.raises(ValidationError):
            self.queue.list_pending(CHECKER, status="bogus")

    def test_list_other_filters(self):
        self._submit("INS-1")
        closure = self.queue.submit(ADMIN, SubjectType.ACCOUNT_CLOSURE, "ACC-7", {})
        assert self.queue.list_pending(CHECKER, module="CLIENTS") == [closure]
        assert self.queue.list_pending(CHECKER, action="close_account") == [closure]
        assert self.queue.list_pending(CHECKER, maker="ADMIN") == [closure]
        assert self.queue.list_pending(CHECKER, search="acc-7") == [closure]

    def test_decisions_audited(self):
        req = self._submit()
        self.queue.approve(CHECKER, req.request_id, comments="ok")
        events = AuditQuery(self.audit).filter_by_resource_id(req.request_id).execute()
        assert [e.action for e in events] == ["authorization.submit", "authorization.approve"]
        assert events[1].details["from"] == "pending_approval"
        assert events[1].details["to"] == "approved"
        assert events[1].actor.actor_id == "checker_1"
