"""
Visit state machine tests.

Verifies:
- Single pass issuance: a second approval fails and mints nothing
- Guard completeness: every event outside the transition table fails with
  InvalidTransition and leaves the row untouched
- Extension monotonicity
- Blacklist cascade only touches pending/future visits
- Role guards (Forbidden) run before status guards
- Effects are dispatched after commit and a failing dispatcher never fails
  the transition
"""

import json
import re
from datetime import timedelta

import pytest

from vms.errors import (
    BlacklistedVisitor,
    Forbidden,
    InvalidSignature,
    InvalidTransition,
    TokenExpired,
    TokenVisitMismatch,
    ValidationError,
)
from vms.extensions import db
from vms.models import ActivityLog, Visit, Visitor
from vms.services import pass_codec
from vms.services.visit_state_machine import (
    TRANSITIONS,
    Actor,
    PassSettings,
    VisitStateMachine,
    can_transition,
    get_state_machine,
)


PASS_NUMBER_RE = re.compile(r"^[A-Z]+-[0-9A-Z]+-[0-9A-F]+$")

ALL_STATUSES = [
    "INVITED",
    "PENDING_DETAILS",
    "PENDING_APPROVAL",
    "APPROVED",
    "REJECTED",
    "CHECKED_IN",
    "CHECKED_OUT",
    "CANCELLED",
]


def _reload(visit_id):
    return db.session.get(Visit, visit_id, populate_existing=True)


def _actions(visit_id):
    return [row.action for row in db.session.query(ActivityLog).filter_by(visit_id=visit_id).all()]


# =============================================================================
# TRANSITION TABLE
# =============================================================================


class TestTransitionTable:
    def test_sources(self):
        assert can_transition("INVITED", "complete_registration")
        assert can_transition("PENDING_DETAILS", "complete_registration")
        assert can_transition("PENDING_APPROVAL", "approve")
        assert can_transition("APPROVED", "check_in")
        assert can_transition("CHECKED_IN", "extend")
        assert not can_transition("REJECTED", "cancel")
        assert not can_transition("CHECKED_IN", "cancel")
        assert not can_transition("APPROVED", "unknown_event")

    def test_terminal_statuses_have_no_outgoing_events(self):
        for status in ("REJECTED", "CHECKED_OUT", "CANCELLED"):
            assert not any(can_transition(status, event) for event in TRANSITIONS)


# =============================================================================
# REGISTRATION -> APPROVAL
# =============================================================================


class TestRegistrationAndApproval:
    def test_invited_to_approved(self, machine, make_visit, approver, as_actor, dispatcher):
        visit = make_visit("INVITED")

        visit = machine.complete_registration(visit.id, {"phone": "+1-555-0100", "id_type": "PASSPORT"})
        assert visit.status == "PENDING_APPROVAL"
        assert visit.visitor.phone == "+1-555-0100"
        assert visit.visitor.id_type == "PASSPORT"
        assert dispatcher.kinds() == ["VISIT_APPROVAL_REQUIRED"]
        assert dispatcher.calls[0][1]["notify_roles"] == ["ADMIN", "PROCESS_ADMIN", "SECURITY_MANAGER"]

        visit = machine.approve(visit.id, as_actor(approver))
        assert visit.status == "APPROVED"
        assert PASS_NUMBER_RE.match(visit.pass_number)
        assert visit.qr_code
        assert visit.approved_by_id == approver.id
        assert visit.approved_at is not None

        claims = pass_codec.verify_token(visit.qr_code, secret=machine.pass_settings.secret, now=machine.clock())
        assert claims.visit_id == visit.id
        assert claims.pass_number == visit.pass_number

        assert _actions(visit.id) == ["VISIT_REGISTRATION_COMPLETED", "VISIT_APPROVED"]

    def test_approval_effects_notify_host_and_email_visitor(self, machine, make_visit, approver, as_actor, dispatcher, host):
        visit = machine.approve(make_visit("PENDING_APPROVAL").id, as_actor(approver))

        kind, payload = dispatcher.calls[-1]
        assert kind == "VISIT_APPROVED"
        assert payload["notify_users"] == [host.id]
        assert payload["email"]["to"] == "visitor@example.com"
        assert payload["email"]["context"]["pass_number"] == visit.pass_number
        assert payload["email"]["context"]["qr_code"] == visit.qr_code

    def test_second_approval_fails_and_keeps_first_pass(self, machine, make_visit, approver, security_manager, as_actor):
        visit = make_visit("PENDING_APPROVAL")
        first = machine.approve(visit.id, as_actor(approver))
        pass_number, qr_code = first.pass_number, first.qr_code

        with pytest.raises(InvalidTransition) as exc:
            machine.approve(visit.id, as_actor(security_manager))
        assert exc.value.current_status == "APPROVED"
        assert exc.value.event == "approve"

        reloaded = _reload(visit.id)
        assert reloaded.pass_number == pass_number
        assert reloaded.qr_code == qr_code
        assert reloaded.approved_by_id == approver.id

    def test_registration_refused_for_blacklisted_visitor(self, machine, make_visit, visitor):
        visit = make_visit("PENDING_DETAILS")
        visitor.is_blacklisted = True
        db.session.commit()

        with pytest.raises(BlacklistedVisitor):
            machine.complete_registration(visit.id)
        assert _reload(visit.id).status == "PENDING_DETAILS"

    def test_registration_is_public(self, machine, make_visit):
        visit = machine.complete_registration(make_visit("INVITED").id)
        assert visit.status == "PENDING_APPROVAL"
        assert db.session.query(ActivityLog).filter_by(visit_id=visit.id).one().actor_id is None

    def test_pass_number_collision_is_regenerated(self, machine, make_visit, approver, as_actor, monkeypatch):
        taken = make_visit("APPROVED")
        visit = make_visit("PENDING_APPROVAL")

        numbers = iter([taken.pass_number, "VMS-FRESH1-ABCDEF"])
        monkeypatch.setattr(pass_codec, "generate_pass_number", lambda prefix, now=None: next(numbers))

        approved = machine.approve(visit.id, as_actor(approver))
        assert approved.pass_number == "VMS-FRESH1-ABCDEF"
        assert _reload(taken.id).pass_number == taken.pass_number

    def test_reject_records_reason(self, machine, make_visit, approver, as_actor, dispatcher, host):
        visit = machine.reject(make_visit("PENDING_APPROVAL").id, as_actor(approver), "  No escort available ")

        assert visit.status == "REJECTED"
        assert visit.rejection_reason == "No escort available"
        assert visit.pass_number is None
        kind, payload = dispatcher.calls[-1]
        assert kind == "VISIT_REJECTED"
        assert payload["notify_users"] == [host.id]


# =============================================================================
# CHECK-IN
# =============================================================================


class TestCheckIn:
    def test_manual_check_in(self, app, dispatcher, make_visit, guard, as_actor, host):
        machine = VisitStateMachine(dispatcher, pass_settings=PassSettings.from_config(app.config))
        visit = make_visit("APPROVED")

        before = machine.clock()
        checked_in = machine.check_in(visit.id, as_actor(guard))

        assert checked_in.status == "CHECKED_IN"
        assert abs((checked_in.actual_time_in - before).total_seconds()) <= 1
        assert dispatcher.kinds() == ["VISITOR_ARRIVED"]
        assert dispatcher.calls[0][1]["notify_users"] == [host.id]

        with pytest.raises(InvalidTransition) as exc:
            machine.check_in(visit.id, as_actor(guard))
        assert exc.value.current_status == "CHECKED_IN"

    def test_blacklisted_visitor_cannot_check_in(self, machine, make_visit, visitor, guard, as_actor, dispatcher):
        visit = make_visit("APPROVED")
        visitor.is_blacklisted = True
        db.session.commit()

        with pytest.raises(BlacklistedVisitor):
            machine.check_in(visit.id, as_actor(guard))

        reloaded = _reload(visit.id)
        assert reloaded.status == "APPROVED"
        assert reloaded.actual_time_in is None
        assert dispatcher.calls == []

    def test_check_in_by_token(self, machine, make_visit, guard, as_actor):
        visit = make_visit("APPROVED")
        checked_in = machine.check_in_by_token(visit.qr_code, as_actor(guard))

        assert checked_in.id == visit.id
        assert checked_in.status == "CHECKED_IN"
        assert _actions(visit.id) == ["VISITOR_CHECKED_IN_QR"]

    def test_token_for_superseded_pass_rejected(self, machine, make_visit, guard, as_actor):
        visit = make_visit("APPROVED")
        stale = pass_codec.issue_token(
            visit.id,
            "VMS-OLDPASS-000000",
            secret=machine.pass_settings.secret,
            now=machine.clock(),
        ).token

        with pytest.raises(TokenVisitMismatch):
            machine.check_in_by_token(stale, as_actor(guard))
        assert _reload(visit.id).status == "APPROVED"

    def test_forged_token_rejected(self, machine, make_visit, guard, as_actor):
        visit = make_visit("APPROVED")
        forged = pass_codec.issue_token(visit.id, visit.pass_number, secret="attacker", now=machine.clock()).token

        with pytest.raises(InvalidSignature):
            machine.check_in_by_token(forged, as_actor(guard))
        assert _reload(visit.id).status == "APPROVED"

    def test_expired_token_rejected(self, machine, make_visit, guard, as_actor, clock):
        visit = make_visit("APPROVED", issued_at=clock.now - timedelta(days=8))

        with pytest.raises(TokenExpired):
            machine.check_in_by_token(visit.qr_code, as_actor(guard))

    def test_token_for_already_checked_in_visit(self, machine, make_visit, guard, as_actor):
        visit = make_visit("CHECKED_IN")
        with pytest.raises(InvalidTransition):
            machine.check_in_by_token(visit.qr_code, as_actor(guard))

    def test_host_cannot_check_in(self, machine, make_visit, host, as_actor):
        visit = make_visit("APPROVED")
        with pytest.raises(Forbidden):
            machine.check_in(visit.id, as_actor(host))


# =============================================================================
# CHECK-OUT
# =============================================================================


class TestCheckOut:
    def test_check_out_then_idempotent_repeat(self, machine, make_visit, guard, as_actor, dispatcher, clock):
        visit = make_visit("CHECKED_IN")

        checked_out = machine.check_out(visit.id, as_actor(guard))
        assert checked_out.status == "CHECKED_OUT"
        assert checked_out.actual_time_out == clock.now
        snapshot = checked_out.to_dict()
        assert dispatcher.kinds() == ["VISITOR_CHECKED_OUT"]

        clock.advance(minutes=5)
        again = machine.check_out(visit.id, as_actor(guard))
        assert again.to_dict() == snapshot
        assert dispatcher.kinds() == ["VISITOR_CHECKED_OUT"]
        assert _actions(visit.id) == ["VISITOR_CHECKED_OUT"]

    def test_host_check_out_does_not_notify_host(self, machine, make_visit, host, as_actor, dispatcher):
        visit = machine.check_out(make_visit("CHECKED_IN").id, as_actor(host))
        assert visit.status == "CHECKED_OUT"
        assert dispatcher.calls == []

    def test_unrelated_host_forbidden(self, machine, make_visit, db_session, as_actor):
        from vms.models import User

        other = User(email="other@corp.test", first_name="Oz", last_name="Other", role="HOST_EMPLOYEE")
        db_session.add(other)
        db_session.commit()

        with pytest.raises(Forbidden):
            machine.check_out(make_visit("CHECKED_IN").id, as_actor(other))

    def test_check_out_before_check_in(self, machine, make_visit, guard, as_actor):
        with pytest.raises(InvalidTransition):
            machine.check_out(make_visit("APPROVED").id, as_actor(guard))


# =============================================================================
# EXTENSION
# =============================================================================


class TestExtend:
    def test_extend_fifteen_minutes(self, machine, make_visit, host, as_actor, clock):
        visit = make_visit("CHECKED_IN")
        original_out = visit.scheduled_time_out

        extended = machine.extend(visit.id, 15, as_actor(host))

        assert extended.scheduled_time_out == original_out + timedelta(minutes=15)
        assert extended.extension_count == 1
        assert extended.last_extended_at == clock.now
        assert extended.status == "CHECKED_IN"

    @pytest.mark.parametrize("minutes", [15, 45, 120])
    def test_extension_monotonic(self, machine, make_visit, minutes):
        visit = make_visit("CHECKED_IN", extension_count=4)
        original_out = visit.scheduled_time_out

        extended = machine.extend(visit.id, minutes)

        assert extended.extension_count == 5
        assert extended.scheduled_time_out == original_out + timedelta(minutes=minutes)

    def test_engine_does_not_cap_extension_count(self, machine, make_visit):
        visit = make_visit("CHECKED_IN", extension_count=50)
        assert machine.extend(visit.id, 30).extension_count == 51

    @pytest.mark.parametrize("minutes", [0, 14, 121, -15, 20.5, "30", True])
    def test_minutes_out_of_bounds(self, machine, make_visit, minutes):
        visit = make_visit("CHECKED_IN")
        with pytest.raises(ValidationError):
            machine.extend(visit.id, minutes)
        assert _reload(visit.id).extension_count == 0

    def test_extend_requires_checked_in(self, machine, make_visit):
        with pytest.raises(InvalidTransition):
            machine.extend(make_visit("APPROVED").id, 30)


# =============================================================================
# MEETING PROMPT
# =============================================================================


class TestMeetingPrompt:
    def test_over_checks_out(self, machine, make_visit, host, as_actor):
        visit = machine.respond_to_meeting_prompt(make_visit("CHECKED_IN").id, as_actor(host), True)
        assert visit.status == "CHECKED_OUT"

    def test_not_over_extends(self, machine, make_visit, host, as_actor):
        visit = make_visit("CHECKED_IN")
        original_out = visit.scheduled_time_out

        extended = machine.respond_to_meeting_prompt(visit.id, as_actor(host), False)
        assert extended.status == "CHECKED_IN"
        assert extended.extension_count == 1
        assert extended.scheduled_time_out == original_out + timedelta(minutes=15)

    def test_only_host_may_answer(self, machine, make_visit, guard, as_actor):
        with pytest.raises(Forbidden):
            machine.respond_to_meeting_prompt(make_visit("CHECKED_IN").id, as_actor(guard), True)


# =============================================================================
# CANCELLATION / BLACKLIST CASCADE
# =============================================================================


class TestCancel:
    @pytest.mark.parametrize("status", ["INVITED", "PENDING_DETAILS", "PENDING_APPROVAL", "APPROVED"])
    def test_host_cancels(self, machine, make_visit, host, as_actor, status):
        visit = machine.cancel(make_visit(status).id, as_actor(host))
        assert visit.status == "CANCELLED"

    def test_admin_cancels(self, machine, make_visit, admin, as_actor):
        assert machine.cancel(make_visit("APPROVED").id, as_actor(admin)).status == "CANCELLED"

    def test_guard_cannot_cancel(self, machine, make_visit, guard, as_actor):
        visit = make_visit("APPROVED")
        with pytest.raises(Forbidden):
            machine.cancel(visit.id, as_actor(guard))
        assert _reload(visit.id).status == "APPROVED"

    def test_cannot_cancel_checked_in(self, machine, make_visit, host, as_actor):
        with pytest.raises(InvalidTransition):
            machine.cancel(make_visit("CHECKED_IN").id, as_actor(host))


class TestBlacklistCascade:
    def test_cancels_only_pending_and_future(self, machine, make_visit):
        cancellable = [make_visit(status) for status in ("INVITED", "PENDING_DETAILS", "PENDING_APPROVAL", "APPROVED")]
        untouched = {
            status: make_visit(status)
            for status in ("CHECKED_IN", "CHECKED_OUT", "REJECTED", "CANCELLED")
        }
        snapshots = {v.id: v.to_dict() for v in untouched.values()}

        count = machine.cancel_all_for_blacklisted_visitor(cancellable[0].visitor_id)

        assert count == 4
        for visit in cancellable:
            assert _reload(visit.id).status == "CANCELLED"
            assert "VISIT_CANCELLED_BLACKLIST" in _actions(visit.id)
        for visit_id, snapshot in snapshots.items():
            assert _reload(visit_id).to_dict() == snapshot

    def test_other_visitors_untouched(self, machine, make_visit, db_session):
        other = Visitor(email="other@example.com", first_name="Otto", last_name="Other")
        db_session.add(other)
        db_session.commit()
        mine = make_visit("APPROVED")
        theirs = make_visit("APPROVED", visitor_id=other.id)

        assert machine.cancel_all_for_blacklisted_visitor(mine.visitor_id) == 1
        assert _reload(theirs.id).status == "APPROVED"

    def test_no_visits(self, machine, visitor):
        assert machine.cancel_all_for_blacklisted_visitor(visitor.id) == 0


# =============================================================================
# GUARD COMPLETENESS
# =============================================================================


def _invoke(machine, event, visit, users):
    if event == "complete_registration":
        return machine.complete_registration(visit.id)
    if event == "approve":
        return machine.approve(visit.id, users["approver"])
    if event == "reject":
        return machine.reject(visit.id, users["approver"], "nope")
    if event == "check_in":
        return machine.check_in(visit.id, users["guard"])
    if event == "check_out":
        return machine.check_out(visit.id, users["guard"])
    if event == "extend":
        return machine.extend(visit.id, 30, users["host"])
    if event == "cancel":
        return machine.cancel(visit.id, users["host"])
    raise AssertionError(event)


INVALID_PAIRS = [
    (status, event)
    for status in ALL_STATUSES
    for event in ("complete_registration", "approve", "reject", "check_in", "check_out", "extend", "cancel")
    if not can_transition(status, event)
    and not (status == "CHECKED_OUT" and event == "check_out")
]


class TestGuardCompleteness:
    @pytest.mark.parametrize("status,event", INVALID_PAIRS)
    def test_invalid_pair(self, machine, make_visit, host, approver, guard, as_actor, dispatcher, status, event):
        visit = make_visit(status)
        snapshot = visit.to_dict()
        users = {"host": as_actor(host), "approver": as_actor(approver), "guard": as_actor(guard)}

        with pytest.raises(InvalidTransition) as exc:
            _invoke(machine, event, visit, users)

        assert exc.value.current_status == status
        assert exc.value.event == event
        assert exc.value.to_dict()["error"] == "INVALID_TRANSITION"
        assert _reload(visit.id).to_dict() == snapshot
        assert _actions(visit.id) == []
        assert dispatcher.calls == []


# =============================================================================
# ROLE GUARDS
# =============================================================================


class TestRoleGuards:
    @pytest.mark.parametrize("role", ["HOST_EMPLOYEE", "SECURITY_GUARD", None])
    def test_approve_requires_approver_role(self, machine, make_visit, role):
        visit = make_visit("PENDING_APPROVAL")
        with pytest.raises(Forbidden):
            machine.approve(visit.id, Actor("someone", role))
        assert _reload(visit.id).pass_number is None

    def test_forbidden_checked_before_status(self, machine, make_visit, host, as_actor):
        visit = make_visit("CHECKED_OUT")
        with pytest.raises(Forbidden):
            machine.approve(visit.id, as_actor(host))

    @pytest.mark.parametrize("role", ["ADMIN", "PROCESS_ADMIN", "SECURITY_MANAGER"])
    def test_approver_roles(self, machine, make_visit, role):
        visit = machine.approve(make_visit("PENDING_APPROVAL").id, Actor("approver-x", role))
        assert visit.status == "APPROVED"


# =============================================================================
# EFFECT ISOLATION
# =============================================================================


class TestEffectIsolation:
    def test_failing_dispatcher_does_not_fail_transition(self, machine, make_visit, guard, as_actor, dispatcher):
        dispatcher.fail_kinds.add("VISITOR_ARRIVED")
        visit = make_visit("APPROVED")

        checked_in = machine.check_in(visit.id, as_actor(guard))

        assert checked_in.status == "CHECKED_IN"
        assert _reload(visit.id).status == "CHECKED_IN"
        assert dispatcher.calls == []

    def test_get_state_machine_uses_app_dispatcher(self, app, dispatcher):
        machine = get_state_machine()
        assert machine.dispatcher is dispatcher
        assert machine.pass_settings.secret == app.config["PASS_QR_SECRET"]
        assert machine.meeting_extension_minutes == 15

    def test_qr_code_embeds_visit_id(self, machine, make_visit, approver, as_actor):
        visit = machine.approve(make_visit("PENDING_APPROVAL").id, as_actor(approver))
        assert json.loads(visit.qr_code)["visitId"] == visit.id
