"""Exception Lifecycle: creation, SLA, escalation, sweep and closure tests."""

from datetime import timedelta

import pytest

from backoffice.audit import Actor, AuditQuery, AuditRecorder
from backoffice.errors import ConflictError, ErrorCode, NotFoundError, ValidationError
from backoffice.exceptions_desk import (
    BREACHED,
    ExceptionConfig,
    ExceptionManager,
    ExceptionSeverity,
    ExceptionStatus,
    build_exception_lifecycle,
    parse_severity,
)
from backoffice.reconciliation import BreakManager, BreakStatus, PositionMatcher, PositionSnapshot
from conftest import T0, FakeClock, make_position

OPERATOR = Actor(actor_id="ops_1", actor_type="user", role="maker")


def _break_run(cmp_qty="510000", owners=("ACC-001",), ingested_at=T0):
    reference = PositionSnapshot(
        source_id="CSCS",
        records=tuple(make_position(owner=o) for o in owners),
        ingested_at=ingested_at,
    )
    comparison = PositionSnapshot(
        source_id="NGX",
        records=tuple(make_position("NGX", owner=o, quantity=cmp_qty) for o in owners),
        ingested_at=ingested_at,
    )
    return PositionMatcher().reconcile(reference, comparison)


class TestExceptionConfig:
    def test_sla_by_severity(self):
        config = ExceptionConfig()
        assert config.sla_minutes_for(ExceptionSeverity.CRITICAL) == 60
        assert config.sla_minutes_for(ExceptionSeverity.HIGH) == 120
        assert config.sla_minutes_for(ExceptionSeverity.MEDIUM) == 240
        assert config.sla_minutes_for(ExceptionSeverity.LOW) == 240

    def test_owner_routing(self):
        config = ExceptionConfig()
        assert config.owner_for("settlements") == "Chinenye O."
        assert config.owner_for("reconciliation") == "David K."
        assert config.owner_for("corporate_actions") == "Ify M."
        assert config.owner_for("custody") == "Bola S."
        assert config.owner_for("something_else") == "Ops Triage"

    def test_parse_severity(self):
        assert parse_severity("HIGH") == ExceptionSeverity.HIGH
        assert parse_severity(ExceptionSeverity.LOW) == ExceptionSeverity.LOW
        with pytest.raises(ValidationError):
            parse_severity("urgent")


class TestLifecycle:
    def test_definition_is_valid(self):
        assert build_exception_lifecycle().validate() == []

    def test_transitions(self):
        sm = build_exception_lifecycle()
        assert sm.can_transition(ExceptionStatus.OPEN, ExceptionStatus.IN_PROGRESS)
        assert sm.can_transition(ExceptionStatus.IN_PROGRESS, ExceptionStatus.ESCALATED)
        assert sm.can_transition(ExceptionStatus.ESCALATED, ExceptionStatus.RESOLVED)
        assert sm.can_transition(ExceptionStatus.OPEN, ExceptionStatus.RESOLVED)
        assert not sm.can_transition(ExceptionStatus.OPEN, ExceptionStatus.ESCALATED)
        assert not sm.can_transition(ExceptionStatus.RESOLVED, ExceptionStatus.OPEN)
        assert sm.is_terminal(ExceptionStatus.RESOLVED)

    def test_only_escalation_is_automatic(self):
        sm = build_exception_lifecycle()
        automatic = [(t.from_state, t.to_state) for t in sm.transitions if t.automatic]
        assert automatic == [(ExceptionStatus.IN_PROGRESS, ExceptionStatus.ESCALATED)]

    def test_visualize(self):
        adj = build_exception_lifecycle().visualize()
        assert adj["resolved"] == []
        assert set(adj["open"]) == {"in_progress", "resolved"}


class TestExceptionManager:
    def setup_method(self):
        self.clock = FakeClock()
        self.audit = AuditRecorder()
        self.breaks = BreakManager(audit=self.audit, clock=self.clock)
        self.manager = ExceptionManager(audit=self.audit, breaks=self.breaks, clock=self.clock)

    def _create(self, severity="medium", category="settlements", **kwargs):
        return self.manager.create(category, severity, "Failed DVP", OPERATOR, **kwargs)

    # ── creation ──

    def test_create_fixes_sla_and_owner(self):
        exc = self._create("critical")
        assert exc.sla_minutes == 60
        assert exc.assigned_to == "Chinenye O."
        assert exc.status == ExceptionStatus.OPEN
        assert exc.created_at == T0
        assert exc.exception_id.startswith("EXC-")
        assert exc.created_by == "ops_1"

    def test_create_requires_category(self):
        with pytest.raises(ValidationError):
            self.manager.create("  ", "high", "x", OPERATOR)

    def test_create_audited(self):
        exc = self._create()
        events = AuditQuery(self.audit).filter_by_resource_id(exc.exception_id).execute()
        assert [e.action for e in events] == ["exception.create"]
        assert events[0].details["sla_minutes"] == 240

    def test_get_unknown(self):
        with pytest.raises(NotFoundError) as exc_info:
            self.manager.get("EXC-NOPE")
        assert exc_info.value.error_code == ErrorCode.EXCEPTION_NOT_FOUND

    # ── SLA countdown ──

    def test_remaining_is_monotonic(self):
        exc = self._create("high")
        readings = []
        for minutes in (0, 1, 30, 90, 119, 120, 200):
            readings.append(exc.remaining_minutes(T0 + timedelta(minutes=minutes)))
        assert readings == sorted(readings, reverse=True)
        assert readings[0] == 120

    def test_breached_is_derived(self):
        exc = self._create("critical")
        view = self.manager.get_view(exc.exception_id, now=T0 + timedelta(minutes=60))
        assert view.breached is True
        assert view.display_status == BREACHED
        assert exc.status == ExceptionStatus.OPEN

    def test_sla_sticks_after_creation(self):
        exc = self._create("high")
        self.manager.config.sla_high_minutes = 5
        assert self.manager.get(exc.exception_id).sla_minutes == 120

    def test_view_floors_remaining(self):
        exc = self._create("critical")
        view = self.manager.get_view(exc.exception_id, now=T0 + timedelta(seconds=90))
        assert view.remaining_minutes == 58

    def test_at_risk(self):
        exc = self._create("critical")
        view = self.manager.get_view(exc.exception_id, now=T0 + timedelta(minutes=46))
        assert view.at_risk is True
        assert view.breached is False

    # ── transitions ──

    def test_acknowledge(self):
        exc = self._create()
        self.clock.advance(minutes=3)
        self.manager.acknowledge(exc.exception_id, OPERATOR)
        assert exc.status == ExceptionStatus.IN_PROGRESS
        assert exc.acknowledged_at == T0 + timedelta(minutes=3)

    def test_acknowledge_twice_conflicts(self):
        exc = self._create()
        self.manager.acknowledge(exc.exception_id, OPERATOR)
        with pytest.raises(ConflictError) as exc_info:
            self.manager.acknowledge(exc.exception_id, OPERATOR)
        assert exc_info.value.error_code == ErrorCode.INVALID_TRANSITION

    def test_assign(self):
        exc = self._create()
        self.manager.assign(exc.exception_id, "Tunde A.", OPERATOR)
        assert exc.assigned_to == "Tunde A."
        with pytest.raises(ValidationError):
            self.manager.assign(exc.exception_id, "", OPERATOR)

    def test_resolve_requires_root_cause(self):
        exc = self._create()
        with pytest.raises(ValidationError, match="root cause is required"):
            self.manager.resolve(exc.exception_id, "", "fixed", OPERATOR)
        assert exc.status == ExceptionStatus.OPEN

    def test_resolve_requires_resolution(self):
        exc = self._create()
        with pytest.raises(ValidationError, match="resolution is required"):
            self.manager.resolve(exc.exception_id, "late SSI", "   ", OPERATOR)
        assert exc.status == ExceptionStatus.OPEN

    def test_resolve_from_each_open_state(self):
        for prepare in ("open", "in_progress", "escalated"):
            exc = self._create("critical")
            if prepare in ("in_progress", "escalated"):
                self.manager.acknowledge(exc.exception_id, OPERATOR)
            if prepare == "escalated":
                self.manager.tick(T0 + timedelta(minutes=50))
                assert exc.status == ExceptionStatus.ESCALATED
            self.manager.resolve(exc.exception_id, "late SSI", "re-sent SSI", OPERATOR)
            assert exc.status == ExceptionStatus.RESOLVED

    def test_resolve_twice_conflicts(self):
        exc = self._create()
        self.manager.resolve(exc.exception_id, "late SSI", "re-sent", OPERATOR)
        with pytest.raises(ConflictError):
            self.manager.resolve(exc.exception_id, "again", "again", Actor(actor_id="ops_2"))
        assert exc.root_cause == "late SSI"
        assert exc.resolution == "re-sent"
        assert exc.resolved_by == "ops_1"

    def test_resolved_exception_carries_closure_fields(self):
        exc = self._create()
        self.clock.advance(minutes=20)
        self.manager.resolve(exc.exception_id, "late SSI", "re-sent", OPERATOR)
        view = self.manager.get_view(exc.exception_id)
        assert view.exception.status == ExceptionStatus.RESOLVED
        assert view.exception.root_cause == "late SSI"
        assert view.exception.resolution == "re-sent"
        assert view.exception.resolved_at == T0 + timedelta(minutes=20)
        event = AuditQuery(self.audit).filter_by_action("exception.resolve").execute()[0]
        assert event.timestamp == exc.resolved_at

    def test_resolve_freezes_countdown(self):
        exc = self._create("high")
        self.clock.advance(minutes=30)
        self.manager.resolve(exc.exception_id, "late SSI", "re-sent", OPERATOR)
        later = T0 + timedelta(days=2)
        view = self.manager.get_view(exc.exception_id, now=later)
        assert view.remaining_minutes == 90
        assert view.breached is False
        assert view.display_status == "resolved"

    def test_cannot_assign_resolved(self):
        exc = self._create()
        self.manager.resolve(exc.exception_id, "rc", "fix", OPERATOR)
        with pytest.raises(ConflictError):
            self.manager.assign(exc.exception_id, "Someone", OPERATOR)

    def test_transitions_audited_with_states(self):
        exc = self._create()
        self.manager.acknowledge(exc.exception_id, OPERATOR)
        self.manager.resolve(exc.exception_id, "rc", "fix", OPERATOR)
        events = (
            AuditQuery(self.audit)
            .filter_by_resource_id(exc.exception_id)
            .filter_by_action_prefix("exception.")
            .execute()
        )
        assert [e.action for e in events] == [
            "exception.create",
            "exception.acknowledge",
            "exception.resolve",
        ]
        assert events[2].details["from"] == "in_progress"
        assert events[2].details["to"] == "resolved"
        assert events[2].details["root_cause"] == "rc"

    # ── SLA tick ──

    def test_tick_escalates_in_progress_within_threshold(self):
        exc = self._create("critical")
        self.manager.acknowledge(exc.exception_id, OPERATOR)
        assert self.manager.tick(T0 + timedelta(minutes=44)) == []
        assert self.manager.tick(T0 + timedelta(minutes=45)) == [exc.exception_id]
        assert exc.status == ExceptionStatus.ESCALATED
        assert exc.escalated_at == T0 + timedelta(minutes=45)

    def test_tick_ignores_open_exceptions(self):
        exc = self._create("critical")
        assert self.manager.tick(T0 + timedelta(minutes=59)) == []
        assert exc.status == ExceptionStatus.OPEN

    def test_tick_is_idempotent(self):
        exc = self._create("critical")
        self.manager.acknowledge(exc.exception_id, OPERATOR)
        now = T0 + timedelta(minutes=50)
        assert self.manager.tick(now) == [exc.exception_id]
        assert self.manager.tick(now) == []
        assert exc.status == ExceptionStatus.ESCALATED
        events = AuditQuery(self.audit).filter_by_action("exception.escalate").execute()
        assert len(events) == 1

    def test_tick_skips_resolved(self):
        exc = self._create("critical")
        self.manager.acknowledge(exc.exception_id, OPERATOR)
        self.manager.resolve(exc.exception_id, "rc", "fix", OPERATOR)
        assert self.manager.tick(T0 + timedelta(minutes=59)) == []
        assert exc.status == ExceptionStatus.RESOLVED

    # ── reads ──

    def test_list_views_filters(self):
        a = self._create("critical", category="settlements")
        self.clock.advance(minutes=1)
        b = self._create("low", category="custody")
        self.manager.acknowledge(b.exception_id, OPERATOR)

        assert [v.exception.exception_id for v in self.manager.list_views()] == [
            b.exception_id,
            a.exception_id,
        ]
        assert [v.exception for v in self.manager.list_views(status="in_progress")] == [b]
        assert [v.exception for v in self.manager.list_views(severity="critical")] == [a]
        assert [v.exception for v in self.manager.list_views(category="custody")] == [b]
        assert [v.exception for v in self.manager.list_views(assigned_to="bola")] == [b]
        assert [v.exception for v in self.manager.list_views(search="DVP")] == [b, a]

    def test_list_views_breached_filter(self):
        a = self._create("critical")
        self._create("low")
        later = T0 + timedelta(minutes=61)
        assert [v.exception for v in self.manager.list_views(status="breached", now=later)] == [a]

    def test_sla_alerts_and_dashboard(self):
        urgent = self._create("critical")
        self._create("low")
        now = T0 + timedelta(minutes=50)
        alerts = self.manager.sla_alerts(now)
        assert [v.exception for v in alerts] == [urgent]

        summary = self.manager.dashboard_summary(now)
        assert summary["total"] == 2
        assert summary["by_status"]["open"] == 2
        assert summary["by_severity"]["critical"] == 1
        assert summary["at_risk"] == 1
        assert summary["breached"] == 0

    # ── break linkage & cutoff sweep ──

    def test_create_from_break_links_it(self):
        brk = self.breaks.register(_break_run())[0]
        exc = self.manager.create("reconciliation", "medium", "break", OPERATOR, source_break_id=brk.break_id)
        assert self.breaks.get(brk.break_id).exception_id == exc.exception_id
        with pytest.raises(ConflictError):
            self.manager.create("reconciliation", "medium", "dup", OPERATOR, source_break_id=brk.break_id)
        assert len(self.manager.list_views()) == 1

    def test_create_from_unknown_break(self):
        with pytest.raises(NotFoundError):
            self.manager.create("reconciliation", "medium", "x", OPERATOR, source_break_id="BRK-NOPE")
        assert self.manager.list_views() == []

    def test_resolve_resolves_source_break(self):
        brk = self.breaks.register(_break_run())[0]
        exc = self.manager.create("reconciliation", "medium", "b", OPERATOR, source_break_id=brk.break_id)
        self.manager.resolve(exc.exception_id, "late booking", "rebooked", OPERATOR)
        assert self.breaks.get(brk.break_id).status == BreakStatus.RESOLVED

    def test_ticketed_break_cannot_be_resolved_directly(self):
        brk = self.breaks.register(_break_run())[0]
        exc = self.manager.sweep(T0 + timedelta(hours=6, minutes=1))[0]
        with pytest.raises(ConflictError, match="resolve the exception instead") as raised:
            self.breaks.resolve(brk.break_id, OPERATOR)
        assert raised.value.error_code == ErrorCode.INVALID_TRANSITION
        assert raised.value.status_code == 409
        assert self.breaks.get(brk.break_id).status == BreakStatus.OPEN
        assert exc.status == ExceptionStatus.OPEN

        self.manager.resolve(exc.exception_id, "late booking", "rebooked", OPERATOR)
        assert self.breaks.get(brk.break_id).status == BreakStatus.RESOLVED

    def test_sweep_waits_for_grace_period(self):
        self.breaks.register(_break_run())
        assert self.manager.sweep(T0 + timedelta(hours=6)) == []

    def test_sweep_after_grace_period(self):
        brk = self.breaks.register(_break_run())[0]
        created = self.manager.sweep(T0 + timedelta(hours=6, minutes=1))
        assert len(created) == 1
        exc = created[0]
        assert exc.category == "reconciliation"
        assert exc.severity == ExceptionSeverity.MEDIUM
        assert exc.sla_minutes == 240
        assert exc.assigned_to == "David K."
        assert exc.source_break_id == brk.break_id
        assert "NG000001" in exc.description

    def test_sweep_after_daily_cutoff(self):
        self.breaks.register(_break_run("600000", ingested_at=T0.replace(hour=15, minute=30)))
        assert self.manager.sweep(T0.replace(hour=15, minute=59)) == []
        created = self.manager.sweep(T0.replace(hour=16, minute=0))
        assert len(created) == 1
        assert created[0].severity == ExceptionSeverity.HIGH
        assert created[0].sla_minutes == 120

    def test_sweep_tickets_each_break_once(self):
        self.breaks.register(_break_run(owners=("A", "B")))
        later = T0 + timedelta(hours=8)
        assert len(self.manager.sweep(later)) == 2
        assert self.manager.sweep(later) == []
        assert len(self.manager.list_views()) == 2

    def test_sweep_skips_resolved_breaks(self):
        brk = self.breaks.register(_break_run())[0]
        self.breaks.resolve(brk.break_id, OPERATOR)
        assert self.manager.sweep(T0 + timedelta(hours=8)) == []

    def test_sweep_without_break_tracker(self):
        manager = ExceptionManager(clock=self.clock)
        assert manager.sweep() == []
