# Overview: Visit state machine; guards and executes transitions, then emits effect intents.

"""
Visit State Machine

================================================================================
PURPOSE: Move a visit through its lifecycle, one guarded transition at a time
================================================================================

STATES:
    INVITED, PENDING_DETAILS        invitation sent, visitor has not registered
    PENDING_APPROVAL                waiting for an approver
    APPROVED                        pass minted, visitor may arrive
    CHECKED_IN                      on site
    CHECKED_OUT, REJECTED, CANCELLED   terminal

TRANSITIONS (event: from -> to):
    complete_registration   INVITED | PENDING_DETAILS -> PENDING_APPROVAL
    approve                 PENDING_APPROVAL -> APPROVED     (mints pass + token)
    reject                  PENDING_APPROVAL -> REJECTED
    check_in                APPROVED -> CHECKED_IN           (manual or token)
    check_out               CHECKED_IN -> CHECKED_OUT        (idempotent on CHECKED_OUT)
    extend                  CHECKED_IN -> CHECKED_IN
    cancel                  INVITED | PENDING_DETAILS | PENDING_APPROVAL | APPROVED -> CANCELLED
    blacklist_cancel        same sources as cancel, applied per visit of a visitor

RULES:
1. Guard order: actor role/relation (Forbidden) -> current status
   (InvalidTransition) -> domain checks (BlacklistedVisitor).
2. A wrong status is never a silent no-op. The single exception is
   check-out of an already CHECKED_OUT visit, which succeeds unchanged so
   duplicate gate scans are harmless.
3. Every write is a conditional update pinned to the status the guard saw;
   a lost race reloads and re-runs the guard once.
4. Approval is the only place a pass number and token are minted.
5. Effects are dispatched after commit and can never fail a transition.
6. The engine does not cap extension_count; that policy lives with callers.
================================================================================
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Callable

from flask import current_app

from ..constants import (
    APPROVAL_NOTIFY_ROLES,
    APPROVER_ROLES,
    CANCELLABLE_STATUSES,
    CHECK_OUT_ROLES,
    EVENT_APPROVE,
    EVENT_BLACKLIST_CANCEL,
    EVENT_CANCEL,
    EVENT_CHECK_IN,
    EVENT_CHECK_OUT,
    EVENT_COMPLETE_REGISTRATION,
    EVENT_EXTEND,
    EVENT_REJECT,
    GATE_ROLES,
    NOTIFY_APPROVAL_REQUIRED,
    NOTIFY_CHECKOUT,
    NOTIFY_VISIT_APPROVED,
    NOTIFY_VISIT_REJECTED,
    NOTIFY_VISITOR_ARRIVED,
    ROLE_ADMIN,
    STATUS_APPROVED,
    STATUS_CANCELLED,
    STATUS_CHECKED_IN,
    STATUS_CHECKED_OUT,
    STATUS_INVITED,
    STATUS_PENDING_APPROVAL,
    STATUS_PENDING_DETAILS,
    STATUS_REJECTED,
)
from ..errors import (
    BlacklistedVisitor,
    Forbidden,
    InvalidTransition,
    PassNumberConflict,
    TokenVisitMismatch,
    ValidationError,
)
from ..models import Visit
from . import pass_codec
from .concurrency import run_with_retry
from .dispatcher import Dispatcher, EffectIntent, dispatch_effects
from .visit_store import VisitStore
from vms.time_utils import add_minutes, to_utc_z, utcnow


TRANSITIONS: dict[str, tuple[frozenset, str]] = {
    EVENT_COMPLETE_REGISTRATION: (frozenset({STATUS_INVITED, STATUS_PENDING_DETAILS}), STATUS_PENDING_APPROVAL),
    EVENT_APPROVE: (frozenset({STATUS_PENDING_APPROVAL}), STATUS_APPROVED),
    EVENT_REJECT: (frozenset({STATUS_PENDING_APPROVAL}), STATUS_REJECTED),
    EVENT_CHECK_IN: (frozenset({STATUS_APPROVED}), STATUS_CHECKED_IN),
    EVENT_CHECK_OUT: (frozenset({STATUS_CHECKED_IN}), STATUS_CHECKED_OUT),
    EVENT_EXTEND: (frozenset({STATUS_CHECKED_IN}), STATUS_CHECKED_IN),
    EVENT_CANCEL: (CANCELLABLE_STATUSES, STATUS_CANCELLED),
    EVENT_BLACKLIST_CANCEL: (CANCELLABLE_STATUSES, STATUS_CANCELLED),
}

PASS_MINT_ATTEMPTS = 3


def can_transition(current_status: str, event: str) -> bool:
    """True if event is allowed from current_status according to TRANSITIONS."""
    rule = TRANSITIONS.get(event)
    return rule is not None and current_status in rule[0]


def source_statuses(event: str) -> frozenset:
    return TRANSITIONS[event][0]


def target_status(event: str) -> str:
    return TRANSITIONS[event][1]


@dataclass(frozen=True)
class Actor:
    """Identity supplied by the authentication collaborator; trusted as-is."""

    actor_id: str | None
    role: str | None = None

    def has_role(self, roles) -> bool:
        return self.role in roles


@dataclass(frozen=True)
class PassSettings:
    secret: str
    prefix: str = pass_codec.DEFAULT_PREFIX
    signature_length: int = pass_codec.DEFAULT_SIGNATURE_LENGTH
    max_age: timedelta = pass_codec.DEFAULT_MAX_AGE

    @classmethod
    def from_config(cls, config) -> "PassSettings":
        return cls(
            secret=config["PASS_QR_SECRET"],
            prefix=config.get("PASS_NUMBER_PREFIX", pass_codec.DEFAULT_PREFIX),
            signature_length=config.get("PASS_SIGNATURE_LENGTH", pass_codec.DEFAULT_SIGNATURE_LENGTH),
            max_age=timedelta(days=config.get("PASS_TOKEN_MAX_AGE_DAYS", 7)),
        )


class VisitStateMachine:
    """
    Validates and executes visit transitions.

    Collaborators are injected: the record store (atomic writes), the
    dispatcher (effects), pass settings (codec secret) and a clock.
    """

    def __init__(
        self,
        dispatcher: Dispatcher,
        *,
        pass_settings: PassSettings,
        store: VisitStore | None = None,
        clock: Callable = utcnow,
        min_extension_minutes: int = 15,
        max_extension_minutes: int = 120,
        meeting_extension_minutes: int = 15,
    ):
        self.dispatcher = dispatcher
        self.pass_settings = pass_settings
        self.store = store or VisitStore()
        self.clock = clock
        self.min_extension_minutes = min_extension_minutes
        self.max_extension_minutes = max_extension_minutes
        self.meeting_extension_minutes = meeting_extension_minutes

    # =========================================================================
    # GUARDS
    # =========================================================================

    @staticmethod
    def _require_role(actor: Actor, roles, action: str) -> None:
        if not actor.has_role(roles):
            raise Forbidden(
                f"Role {actor.role or 'NONE'} is not allowed to {action}",
                required_roles=sorted(roles),
            )

    @staticmethod
    def _require_status(visit: Visit, event: str) -> None:
        if not can_transition(visit.status, event):
            raise InvalidTransition(visit.status, event)

    def _require_visitor_not_blacklisted(self, visit: Visit) -> None:
        visitor = self.store.load_visitor(visit.visitor_id)
        if visitor.is_blacklisted:
            raise BlacklistedVisitor(
                "Visitor is blacklisted",
                visitor_id=visitor.id,
            )

    def _dispatch(self, intents: list[EffectIntent]) -> None:
        if intents:
            dispatch_effects(self.dispatcher, intents)

    # =========================================================================
    # REGISTRATION
    # =========================================================================

    def complete_registration(self, visit_id: str, visitor_details: dict | None = None) -> Visit:
        """
        Visitor submitted the invitation form (INVITED/PENDING_DETAILS -> PENDING_APPROVAL).

        Public action: there is no actor. Optional visitor_details (phone,
        company, designation, id_type, id_number) are applied to the visitor
        in the same commit.
        """
        details = {
            key: value
            for key, value in (visitor_details or {}).items()
            if key in {"phone", "company", "designation", "id_type", "id_number"} and value
        }

        def _op():
            visit = self.store.load_visit(visit_id)
            self._require_status(visit, EVENT_COMPLETE_REGISTRATION)
            visitor = self.store.load_visitor(visit.visitor_id)
            if visitor.is_blacklisted:
                raise BlacklistedVisitor("Visitor is blacklisted", visitor_id=visitor.id)

            for key, value in details.items():
                setattr(visitor, key, value)

            updated = self.store.conditional_update(
                visit.id,
                visit.status,
                {"status": STATUS_PENDING_APPROVAL},
            )
            self.store.record_activity(
                action="VISIT_REGISTRATION_COMPLETED",
                visit_id=visit.id,
                visitor_id=visitor.id,
                description=f"Registration completed by {visitor.email}",
            )
            self.store.commit()
            return updated

        visit = run_with_retry(_op)
        self._dispatch([self._approval_required_intent(visit, "has completed their registration and is awaiting approval.")])
        return visit

    # =========================================================================
    # APPROVAL
    # =========================================================================

    def approve(self, visit_id: str, actor: Actor) -> Visit:
        """
        Approve a pending visit (PENDING_APPROVAL -> APPROVED) and mint its pass.

        The status guard plus the conditional update guarantee at-most-once
        pass issuance: a second approval sees APPROVED and fails.
        """
        self._require_role(actor, APPROVER_ROLES, "approve visits")

        def _op():
            visit = self.store.load_visit(visit_id)
            self._require_status(visit, EVENT_APPROVE)
            now = self.clock()

            updated = None
            for attempt in range(PASS_MINT_ATTEMPTS):
                pass_number = pass_codec.generate_pass_number(self.pass_settings.prefix, now=now)
                issued = pass_codec.issue_token(
                    visit_id,
                    pass_number,
                    secret=self.pass_settings.secret,
                    now=now,
                    signature_length=self.pass_settings.signature_length,
                )
                try:
                    updated = self.store.conditional_update(
                        visit_id,
                        STATUS_PENDING_APPROVAL,
                        {
                            "status": STATUS_APPROVED,
                            "pass_number": pass_number,
                            "qr_code": issued.token,
                            "approved_by_id": actor.actor_id,
                            "approved_at": now,
                        },
                    )
                    break
                except PassNumberConflict:
                    current_app.logger.warning(
                        "Pass number collision for visit %s (attempt %d)", visit_id, attempt + 1
                    )
                    if attempt >= PASS_MINT_ATTEMPTS - 1:
                        raise

            self.store.record_activity(
                action="VISIT_APPROVED",
                actor_id=actor.actor_id,
                visit_id=visit_id,
                visitor_id=updated.visitor_id,
                description=f"Visit approved, pass {updated.pass_number}",
            )
            self.store.commit()
            return updated

        visit = run_with_retry(_op)
        self._dispatch(self._approved_intents(visit))
        return visit

    def reject(self, visit_id: str, actor: Actor, reason: str | None = None) -> Visit:
        """Reject a pending visit (PENDING_APPROVAL -> REJECTED)."""
        self._require_role(actor, APPROVER_ROLES, "reject visits")
        reason = (reason or "").strip() or None

        def _op():
            visit = self.store.load_visit(visit_id)
            self._require_status(visit, EVENT_REJECT)
            now = self.clock()
            updated = self.store.conditional_update(
                visit.id,
                STATUS_PENDING_APPROVAL,
                {
                    "status": STATUS_REJECTED,
                    "rejection_reason": reason,
                    "approved_by_id": actor.actor_id,
                    "approved_at": now,
                },
            )
            self.store.record_activity(
                action="VISIT_REJECTED",
                actor_id=actor.actor_id,
                visit_id=visit.id,
                visitor_id=visit.visitor_id,
                description=f"Visit rejected. Reason: {reason or 'Not specified'}",
            )
            self.store.commit()
            return updated

        visit = run_with_retry(_op)
        visitor = visit.visitor
        suffix = f" Reason: {reason}" if reason else ""
        self._dispatch([EffectIntent(NOTIFY_VISIT_REJECTED, {
            "visit_id": visit.id,
            "title": "Visit Rejected",
            "message": f"Visit for {visitor.full_name} has been rejected.{suffix}",
            "notify_users": [visit.host_employee_id],
            "reason": reason,
        })])
        return visit

    # =========================================================================
    # GATE: CHECK-IN / CHECK-OUT
    # =========================================================================

    def check_in(self, visit_id: str, actor: Actor) -> Visit:
        """Manual check-in by gate staff (APPROVED -> CHECKED_IN)."""
        self._require_role(actor, GATE_ROLES, "check visitors in")
        return self._check_in(visit_id, actor)

    def check_in_by_token(self, token: str, actor: Actor) -> Visit:
        """
        Check-in from a scanned pass token.

        The token must verify (signature, age) and its pass number must equal
        the visit's current one before the manual check-in guards apply. This
        rejects forged tokens and tokens replayed against another visit.
        """
        self._require_role(actor, GATE_ROLES, "check visitors in")
        claims = pass_codec.verify_token(
            token,
            secret=self.pass_settings.secret,
            now=self.clock(),
            max_age=self.pass_settings.max_age,
            signature_length=self.pass_settings.signature_length,
        )
        return self._check_in(claims.visit_id, actor, pass_number=claims.pass_number)

    def _check_in(self, visit_id: str, actor: Actor, *, pass_number: str | None = None) -> Visit:
        via_token = pass_number is not None

        def _op():
            visit = self.store.load_visit(visit_id)
            if via_token and visit.pass_number != pass_number:
                raise TokenVisitMismatch(
                    "Pass token does not match this visit",
                    visit_id=visit.id,
                )
            self._require_status(visit, EVENT_CHECK_IN)
            self._require_visitor_not_blacklisted(visit)

            now = self.clock()
            updated = self.store.conditional_update(
                visit.id,
                STATUS_APPROVED,
                {"status": STATUS_CHECKED_IN, "actual_time_in": now},
            )
            self.store.record_activity(
                action="VISITOR_CHECKED_IN_QR" if via_token else "VISITOR_CHECKED_IN",
                actor_id=actor.actor_id,
                visit_id=visit.id,
                visitor_id=visit.visitor_id,
                description="Visitor checked in via QR" if via_token else "Visitor checked in",
            )
            self.store.commit()
            return updated

        visit = run_with_retry(_op)
        visitor = visit.visitor
        host = visit.host_employee
        self._dispatch([EffectIntent(NOTIFY_VISITOR_ARRIVED, {
            "visit_id": visit.id,
            "title": "Visitor Arrived",
            "message": f"{visitor.full_name} has checked in and is waiting for you.",
            "notify_users": [visit.host_employee_id],
            "email": {
                "to": host.email if host else None,
                "template": "visitor_arrived",
                "context": {
                    "visitor_name": visitor.full_name,
                    "company": visitor.company,
                    "check_in_time": to_utc_z(visit.actual_time_in),
                },
            },
        })])
        return visit

    def check_out(self, visit_id: str, actor: Actor) -> Visit:
        """
        Check a visitor out (CHECKED_IN -> CHECKED_OUT).

        Allowed for the visit's host and for gate/admin roles. Checking out an
        already CHECKED_OUT visit returns it unchanged.
        """

        def _op():
            visit = self.store.load_visit(visit_id)
            if actor.actor_id != visit.host_employee_id:
                self._require_role(actor, CHECK_OUT_ROLES, "check visitors out")
            if visit.status == STATUS_CHECKED_OUT:
                return visit, False
            self._require_status(visit, EVENT_CHECK_OUT)

            now = self.clock()
            updated = self.store.conditional_update(
                visit.id,
                STATUS_CHECKED_IN,
                {"status": STATUS_CHECKED_OUT, "actual_time_out": now},
            )
            self.store.record_activity(
                action="VISITOR_CHECKED_OUT",
                actor_id=actor.actor_id,
                visit_id=visit.id,
                visitor_id=visit.visitor_id,
                description="Visitor checked out",
            )
            self.store.commit()
            return updated, True

        visit, changed = run_with_retry(_op)
        if changed and actor.actor_id != visit.host_employee_id:
            self._dispatch([EffectIntent(NOTIFY_CHECKOUT, {
                "visit_id": visit.id,
                "title": "Visitor Checked Out",
                "message": f"{visit.visitor.full_name} has checked out at the gate.",
                "notify_users": [visit.host_employee_id],
            })])
        return visit

    # =========================================================================
    # EXTENSION
    # =========================================================================

    def extend(self, visit_id: str, minutes: int, actor: Actor | None = None) -> Visit:
        """
        Push scheduled_time_out back by `minutes` (CHECKED_IN self-loop).

        The update is pinned to the extension_count the guard saw, so two
        concurrent extensions are applied one after the other, never merged.
        """
        if isinstance(minutes, bool) or not isinstance(minutes, int):
            raise ValidationError("Extension minutes must be an integer")
        if minutes < self.min_extension_minutes or minutes > self.max_extension_minutes:
            raise ValidationError(
                f"Extension must be {self.min_extension_minutes}-{self.max_extension_minutes} minutes",
                minutes=minutes,
            )

        def _op():
            visit = self.store.load_visit(visit_id)
            self._require_status(visit, EVENT_EXTEND)
            now = self.clock()
            updated = self.store.conditional_update(
                visit.id,
                STATUS_CHECKED_IN,
                {
                    "scheduled_time_out": add_minutes(visit.scheduled_time_out, minutes),
                    "extension_count": Visit.extension_count + 1,
                    "last_extended_at": now,
                },
                expected_fields={"extension_count": visit.extension_count},
            )
            self.store.record_activity(
                action="VISIT_EXTENDED",
                actor_id=actor.actor_id if actor else None,
                visit_id=visit.id,
                visitor_id=visit.visitor_id,
                description=f"Visit extended by {minutes} minutes",
                details={"minutes": minutes},
            )
            self.store.commit()
            return updated

        return run_with_retry(_op)

    def respond_to_meeting_prompt(self, visit_id: str, actor: Actor, is_over: bool) -> Visit:
        """
        Host's answer to the "is your meeting over?" prompt.

        Not a state of its own: over -> check_out, otherwise extend by the
        configured prompt extension.
        """
        visit = self.store.load_visit(visit_id)
        if actor.actor_id != visit.host_employee_id:
            raise Forbidden("Only host can update meeting status")
        if is_over:
            return self.check_out(visit_id, actor)
        return self.extend(visit_id, self.meeting_extension_minutes, actor)

    # =========================================================================
    # CANCELLATION
    # =========================================================================

    def cancel(self, visit_id: str, actor: Actor) -> Visit:
        """Cancel a visit that has not started (host or ADMIN only)."""

        def _op():
            visit = self.store.load_visit(visit_id)
            if actor.actor_id != visit.host_employee_id and actor.role != ROLE_ADMIN:
                raise Forbidden("Not authorized to cancel this visit")
            self._require_status(visit, EVENT_CANCEL)
            updated = self.store.conditional_update(
                visit.id,
                visit.status,
                {"status": STATUS_CANCELLED},
            )
            self.store.record_activity(
                action="VISIT_CANCELLED",
                actor_id=actor.actor_id,
                visit_id=visit.id,
                visitor_id=visit.visitor_id,
                description="Visit cancelled",
            )
            self.store.commit()
            return updated

        return run_with_retry(_op)

    def cancel_all_for_blacklisted_visitor(
        self,
        visitor_id: str,
        actor: Actor | None = None,
        *,
        description: str = "Visit cancelled because the visitor was blacklisted",
    ) -> int:
        """
        Cancel every pending/future visit of a visitor.

        Each visit is cancelled independently; a visit that moved on
        (e.g. was checked in) meanwhile is skipped, not fatal.

        Returns:
            Number of visits cancelled
        """
        self.store.load_visitor(visitor_id)
        return self.store.bulk_update_by_visitor_and_statuses(
            visitor_id,
            source_statuses(EVENT_BLACKLIST_CANCEL),
            {"status": target_status(EVENT_BLACKLIST_CANCEL)},
            activity={
                "action": "VISIT_CANCELLED_BLACKLIST",
                "actor_id": actor.actor_id if actor else None,
                "description": description,
            },
        )

    # =========================================================================
    # EFFECTS
    # =========================================================================

    def _approval_required_intent(self, visit: Visit, what: str) -> EffectIntent:
        return EffectIntent(NOTIFY_APPROVAL_REQUIRED, {
            "visit_id": visit.id,
            "title": "Visit Pending Approval",
            "message": f"{visit.visitor.full_name} {what}",
            "notify_roles": list(APPROVAL_NOTIFY_ROLES),
        })

    def _approved_intents(self, visit: Visit) -> list[EffectIntent]:
        visitor = visit.visitor
        return [
            EffectIntent(NOTIFY_VISIT_APPROVED, {
                "visit_id": visit.id,
                "title": "Visit Approved",
                "message": f"Visit for {visitor.full_name} has been approved.",
                "notify_users": [visit.host_employee_id],
                "email": {
                    "to": visitor.email,
                    "template": "visit_approved",
                    "context": {
                        "visitor_name": visitor.full_name,
                        "pass_number": visit.pass_number,
                        "qr_code": visit.qr_code,
                        "scheduled_time_in": to_utc_z(visit.scheduled_time_in),
                        "scheduled_time_out": to_utc_z(visit.scheduled_time_out),
                    },
                },
            }),
        ]


def get_state_machine() -> VisitStateMachine:
    """State machine wired from the current app's config and dispatcher."""
    config = current_app.config
    return VisitStateMachine(
        current_app.extensions["vms.dispatcher"],
        pass_settings=PassSettings.from_config(config),
        min_extension_minutes=config["VISIT_EXTENSION_MIN_MINUTES"],
        max_extension_minutes=config["VISIT_EXTENSION_MAX_MINUTES"],
        meeting_extension_minutes=config["MEETING_PROMPT_EXTENSION_MINUTES"],
    )
