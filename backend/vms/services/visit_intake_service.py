# Overview: Visit creation entry points, visitor blacklist management and action requests.

"""
Visit Intake Service

WHY: A visit enters the lifecycle in one of three ways, each with its own
starting status. They are separate functions rather than one constructor
with a "skip invitation" flag:

    create_from_invitation   host invites a (possibly new) visitor  -> INVITED
    create_from_reinvite     host re-invites a known visitor        -> PENDING_APPROVAL
    create_from_walk_in      gate staff registers an arrival        -> PENDING_APPROVAL

Every entry point refuses blacklisted visitors and normalises the guest
manifest before the row is written.

Blacklisting lives here too: flagging a visitor is a visitor-level write,
followed by the state machine's per-visit cancellation cascade.
Staff who may not blacklist directly file a BLOCK or BLACKLIST request; an
admin decision reuses the same cascade.
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from ..constants import (
    ACTION_BLACKLIST,
    APPROVAL_NOTIFY_ROLES,
    BLACKLIST_ROLES,
    CANCELLABLE_STATUSES,
    EVENT_COMPLETE_REGISTRATION,
    EVENT_UPDATE_GUESTS,
    GATE_ROLES,
    NOTIFY_APPROVAL_REQUIRED,
    NOTIFY_REQUEST_PROCESSED,
    NOTIFY_VISITOR_ACTION_REQUEST,
    NOTIFY_VISITOR_INVITED,
    NOTIFY_WALKIN_APPROVAL_REQUIRED,
    REQUEST_APPROVED,
    REQUEST_PENDING,
    REQUEST_PROCESS_ROLES,
    REQUEST_REJECTED,
    ROLE_ADMIN,
    STATUS_INVITED,
    STATUS_PENDING_APPROVAL,
    STATUS_PENDING_DETAILS,
    VISITOR_REQUEST_ACTIONS,
)
from ..errors import BlacklistedVisitor, Forbidden, InvalidTransition, ValidationError
from ..models import User, Visit, Visitor, VisitorRequest
from ..validation import GuestInput, ScheduleInput, VisitorInput, WalkInInput
from .concurrency import run_with_retry
from .dispatcher import Dispatcher, EffectIntent, dispatch_effects
from .guest_service import normalize_guest_manifest
from .visit_state_machine import Actor, VisitStateMachine, get_state_machine
from .visit_store import VisitStore
from vms.time_utils import add_minutes, to_utc_z, utcnow


store = VisitStore()

INVITATION_STATUSES = frozenset({STATUS_INVITED, STATUS_PENDING_DETAILS})


@dataclass(frozen=True)
class BlacklistResult:
    visitor: Visitor
    cancelled_visits: int


def _dispatcher(dispatcher: Dispatcher | None) -> Dispatcher:
    return dispatcher or current_app.extensions["vms.dispatcher"]


def _refuse_blacklisted(visitor: Visitor | None) -> None:
    if visitor is not None and visitor.is_blacklisted:
        raise BlacklistedVisitor(
            "This visitor is blacklisted and cannot be invited",
            visitor_id=visitor.id,
        )


def _new_visit(
    *,
    visitor: Visitor,
    host: User,
    status: str,
    schedule: ScheduleInput,
    guests: GuestInput | None,
) -> Visit:
    manifest = normalize_guest_manifest(
        guests.number_of_guests if guests else 0,
        guests.guests if guests else None,
    )
    return Visit(
        visitor_id=visitor.id,
        host_employee_id=host.id,
        status=status,
        purpose=schedule.purpose,
        purpose_details=schedule.purpose_details,
        vehicle_number=schedule.vehicle_number,
        special_instructions=schedule.special_instructions,
        scheduled_date=schedule.scheduled_date,
        scheduled_time_in=schedule.scheduled_time_in,
        scheduled_time_out=schedule.scheduled_time_out,
        number_of_guests=manifest.number_of_guests,
        guest_details=manifest.guest_details,
    )


def _commit_or_rollback() -> None:
    try:
        store.commit()
    except Exception:
        store.rollback()
        raise


# =============================================================================
# CREATION
# =============================================================================

def create_from_invitation(
    actor: Actor,
    visitor_input: VisitorInput,
    schedule: ScheduleInput,
    guests: GuestInput | None = None,
    *,
    dispatcher: Dispatcher | None = None,
) -> Visit:
    """
    Host invites a visitor. The visit starts INVITED and the visitor gets a
    link to the registration form.

    An existing visitor (matched by email) is reused as-is.

    Raises:
        NotFound: actor is not a known user
        BlacklistedVisitor: the email belongs to a blacklisted visitor
    """
    host = store.load_user(actor.actor_id)
    visitor = store.find_visitor_by_email(visitor_input.email)
    _refuse_blacklisted(visitor)

    try:
        if visitor is None:
            visitor = store.add(Visitor(
                email=visitor_input.email,
                first_name=visitor_input.first_name,
                last_name=visitor_input.last_name,
                **visitor_input.profile_fields(),
            ))

        visit = store.add(_new_visit(
            visitor=visitor,
            host=host,
            status=STATUS_INVITED,
            schedule=schedule,
            guests=guests,
        ))
        store.record_activity(
            action="VISIT_INVITATION_SENT",
            actor_id=host.id,
            visit_id=visit.id,
            visitor_id=visitor.id,
            description=f"Invitation sent to {visitor.email}",
        )
    except Exception:
        store.rollback()
        raise
    _commit_or_rollback()

    form_url = f"{current_app.config['FRONTEND_URL']}/visitor/complete/{visit.id}"
    dispatch_effects(_dispatcher(dispatcher), [EffectIntent(NOTIFY_VISITOR_INVITED, {
        "visit_id": visit.id,
        "email": {
            "to": visitor.email,
            "template": "visitor_invitation",
            "context": {
                "visitor_name": visitor.full_name,
                "host_name": host.full_name,
                "scheduled_time_in": to_utc_z(visit.scheduled_time_in),
                "form_url": form_url,
            },
        },
    })])
    return visit


def create_from_reinvite(
    actor: Actor,
    visitor_id: str,
    schedule: ScheduleInput,
    guests: GuestInput | None = None,
    *,
    dispatcher: Dispatcher | None = None,
) -> Visit:
    """
    Host re-invites a known visitor. Registration is skipped: the visit
    starts PENDING_APPROVAL and approvers are notified.
    """
    host = store.load_user(actor.actor_id)
    visitor = store.load_visitor(visitor_id)
    _refuse_blacklisted(visitor)

    try:
        visit = store.add(_new_visit(
            visitor=visitor,
            host=host,
            status=STATUS_PENDING_APPROVAL,
            schedule=schedule,
            guests=guests,
        ))
        store.record_activity(
            action="VISITOR_REINVITED",
            actor_id=host.id,
            visit_id=visit.id,
            visitor_id=visitor.id,
            description=f"Re-invited visitor {visitor.email}",
        )
    except Exception:
        store.rollback()
        raise
    _commit_or_rollback()

    dispatch_effects(_dispatcher(dispatcher), [EffectIntent(NOTIFY_APPROVAL_REQUIRED, {
        "visit_id": visit.id,
        "title": "Visit Pending Approval",
        "message": f"{visitor.full_name} has been re-invited by {host.full_name}.",
        "notify_roles": list(APPROVAL_NOTIFY_ROLES),
    })])
    return visit


def create_from_walk_in(
    actor: Actor,
    visitor_input: VisitorInput,
    walk_in: WalkInInput,
    guests: GuestInput | None = None,
    *,
    dispatcher: Dispatcher | None = None,
) -> Visit:
    """
    Gate staff registers a visitor who arrived unannounced.

    The visit is scheduled from now for WALK_IN_DEFAULT_DURATION_MINUTES and
    waits for approval. A returning visitor's contact and ID fields are
    refreshed from what was captured at the gate.

    Raises:
        Forbidden: actor is not SECURITY_GUARD / SECURITY_MANAGER
        BlacklistedVisitor: visitor is blacklisted
        NotFound: host employee does not exist
    """
    if not actor.has_role(GATE_ROLES):
        raise Forbidden("Only security staff can register walk-in visitors")

    visitor = store.find_visitor_by_email(visitor_input.email)
    if visitor is not None and visitor.is_blacklisted:
        raise BlacklistedVisitor("This visitor is blacklisted", visitor_id=visitor.id)
    host = store.load_user(walk_in.host_employee_id)

    now = utcnow()
    schedule = ScheduleInput(
        scheduled_date=now,
        scheduled_time_in=now,
        scheduled_time_out=add_minutes(now, current_app.config["WALK_IN_DEFAULT_DURATION_MINUTES"]),
        purpose=walk_in.purpose,
        purpose_details=walk_in.purpose_details,
        vehicle_number=walk_in.vehicle_number,
    )

    try:
        if visitor is None:
            visitor = store.add(Visitor(
                email=visitor_input.email,
                first_name=visitor_input.first_name,
                last_name=visitor_input.last_name,
                **visitor_input.profile_fields(),
            ))
        else:
            for key, value in visitor_input.profile_fields().items():
                setattr(visitor, key, value)

        visit = _new_visit(
            visitor=visitor,
            host=host,
            status=STATUS_PENDING_APPROVAL,
            schedule=schedule,
            guests=guests,
        )
        visit.is_walk_in = True
        visit.walk_in_created_by = actor.actor_id
        store.add(visit)
        store.record_activity(
            action="WALKIN_CREATED",
            actor_id=actor.actor_id,
            visit_id=visit.id,
            visitor_id=visitor.id,
            description=f"Walk-in visitor registered: {visitor.email}",
        )
    except Exception:
        store.rollback()
        raise
    _commit_or_rollback()

    dispatch_effects(_dispatcher(dispatcher), [EffectIntent(NOTIFY_WALKIN_APPROVAL_REQUIRED, {
        "visit_id": visit.id,
        "title": "Walk-in Visitor Awaiting Approval",
        "message": f"{visitor.full_name} has arrived at the gate as a walk-in to see you.",
        "notify_users": [host.id],
    })])
    return visit


# =============================================================================
# INVITATION FORM / GUESTS
# =============================================================================

def get_invitation(visit_id: str) -> Visit:
    """Public, read-only view of an invitation that is still awaiting the visitor."""
    visit = store.load_visit(visit_id)
    if visit.status not in INVITATION_STATUSES:
        raise InvalidTransition(
            visit.status,
            EVENT_COMPLETE_REGISTRATION,
            "Invitation is no longer valid",
        )
    return visit


def update_guests(visit_id: str, actor: Actor, guests: GuestInput) -> Visit:
    """
    Replace a visit's guest manifest (host or ADMIN, before check-in).

    The manifest is normalised, so the stored row always satisfies
    len(guest_details) == number_of_guests.
    """
    manifest = normalize_guest_manifest(guests.number_of_guests, guests.guests)

    def _op():
        visit = store.load_visit(visit_id)
        if actor.actor_id != visit.host_employee_id and actor.role != ROLE_ADMIN:
            raise Forbidden("Not authorized to update guests for this visit")
        if visit.status not in CANCELLABLE_STATUSES:
            raise InvalidTransition(visit.status, EVENT_UPDATE_GUESTS)

        updated = store.conditional_update(
            visit.id,
            visit.status,
            {
                "number_of_guests": manifest.number_of_guests,
                "guest_details": manifest.guest_details,
            },
        )
        store.record_activity(
            action="VISIT_GUESTS_UPDATED",
            actor_id=actor.actor_id,
            visit_id=visit.id,
            visitor_id=visit.visitor_id,
            description=f"Guest list updated ({manifest.number_of_guests} guests)",
        )
        store.commit()
        return updated

    return run_with_retry(_op)


# =============================================================================
# BLACKLIST
# =============================================================================

def blacklist_visitor(
    visitor_id: str,
    actor: Actor,
    reason: str | None = None,
    *,
    state_machine: VisitStateMachine | None = None,
) -> BlacklistResult:
    """
    Flag a visitor as blacklisted, then cancel their pending/future visits.

    The flag is committed first. The cascade is best-effort per visit, so
    the returned count may be lower than the number of visits that were
    cancellable when the call started.
    """
    if not actor.has_role(BLACKLIST_ROLES):
        raise Forbidden("Not authorized to blacklist visitors")

    visitor = store.load_visitor(visitor_id)
    visitor.is_blacklisted = True
    visitor.blacklist_reason = reason
    visitor.blacklisted_at = utcnow()
    visitor.blacklisted_by = actor.actor_id
    store.record_activity(
        action="VISITOR_BLACKLISTED",
        actor_id=actor.actor_id,
        visitor_id=visitor.id,
        description=f"Visitor {visitor.email} blacklisted. Reason: {reason or 'Not specified'}",
    )
    _commit_or_rollback()

    machine = state_machine or get_state_machine()
    cancelled = machine.cancel_all_for_blacklisted_visitor(visitor.id, actor)
    current_app.logger.info(
        "Visitor %s blacklisted by %s; %d visits cancelled", visitor.id, actor.actor_id, cancelled
    )
    return BlacklistResult(visitor=store.load_visitor(visitor.id), cancelled_visits=cancelled)


def unblacklist_visitor(visitor_id: str, actor: Actor) -> Visitor:
    """Clear the blacklist flag. Cancelled visits stay cancelled."""
    if actor.role != ROLE_ADMIN:
        raise Forbidden("Only administrators can remove a visitor from the blacklist")

    visitor = store.load_visitor(visitor_id)
    visitor.is_blacklisted = False
    visitor.blacklist_reason = None
    visitor.blacklisted_at = None
    visitor.blacklisted_by = None
    store.record_activity(
        action="VISITOR_UNBLACKLISTED",
        actor_id=actor.actor_id,
        visitor_id=visitor.id,
        description=f"Visitor {visitor.email} removed from blacklist",
    )
    _commit_or_rollback()
    return visitor


# =============================================================================
# VISITOR ACTION REQUESTS
# =============================================================================

@dataclass(frozen=True)
class RequestDecision:
    request: VisitorRequest
    cancelled_visits: int


def request_visitor_action(
    visitor_id: str,
    actor: Actor,
    action: str,
    reason: str,
    *,
    dispatcher: Dispatcher | None = None,
) -> VisitorRequest:
    """
    File a BLOCK or BLACKLIST request for an admin to decide.

    Any known staff member may ask. Admins are notified once the request
    is stored.
    """
    if action not in VISITOR_REQUEST_ACTIONS:
        raise ValidationError(f"Unknown visitor action {action}", field="action")

    visitor = store.load_visitor(visitor_id)
    requester = store.load_user(actor.actor_id)

    request = store.add(VisitorRequest(
        visitor_id=visitor.id,
        request_type=action,
        reason=reason,
        status=REQUEST_PENDING,
        requested_by_id=requester.id,
    ))
    store.record_activity(
        action="VISITOR_ACTION_REQUESTED",
        actor_id=requester.id,
        visitor_id=visitor.id,
        description=f"Requested {action} for visitor: {visitor.email}",
        details={"request_id": request.id, "action": action, "reason": reason},
    )
    _commit_or_rollback()

    dispatch_effects(_dispatcher(dispatcher), [EffectIntent(NOTIFY_VISITOR_ACTION_REQUEST, {
        "title": f"Visitor {action} Request",
        "message": (
            f"{requester.full_name} has requested to {action.lower()} visitor "
            f"{visitor.full_name}. Reason: {reason}"
        ),
        "notify_roles": sorted(REQUEST_PROCESS_ROLES),
    })])
    return request


def list_pending_requests(actor: Actor) -> list[VisitorRequest]:
    """Pending requests, newest first."""
    if not actor.has_role(REQUEST_PROCESS_ROLES):
        raise Forbidden("Only administrators can review visitor requests")
    return store.pending_visitor_requests()


def process_visitor_request(
    request_id: str,
    actor: Actor,
    approved: bool,
    *,
    state_machine: VisitStateMachine | None = None,
    dispatcher: Dispatcher | None = None,
) -> RequestDecision:
    """
    Approve or reject a pending request.

    Approval of BLACKLIST flags the visitor; approval of either action then
    cancels the visitor's pending/future visits through the state machine
    cascade. The requester is notified of the outcome either way.
    """
    if not actor.has_role(REQUEST_PROCESS_ROLES):
        raise Forbidden("Only administrators can process visitor requests")

    try:
        request = store.decide_visitor_request(
            request_id,
            REQUEST_APPROVED if approved else REQUEST_REJECTED,
            actor.actor_id,
        )
        if approved:
            visitor = store.load_visitor(request.visitor_id)
            if request.request_type == ACTION_BLACKLIST:
                visitor.is_blacklisted = True
                visitor.blacklist_reason = request.reason
                visitor.blacklisted_at = utcnow()
                visitor.blacklisted_by = actor.actor_id
            store.record_activity(
                action=f"VISITOR_{request.request_type}",
                actor_id=actor.actor_id,
                visitor_id=visitor.id,
                description=f"Visitor {request.request_type.lower()}: {visitor.email}",
                details={"request_id": request.id, "reason": request.reason},
            )
        store.commit()
    except Exception:
        store.rollback()
        raise

    cancelled = 0
    if approved:
        machine = state_machine or get_state_machine()
        cancelled = machine.cancel_all_for_blacklisted_visitor(
            request.visitor_id,
            actor,
            description=f"Visit cancelled by approved {request.request_type} request",
        )
        current_app.logger.info(
            "Visitor request %s (%s) approved by %s; %d visits cancelled",
            request.id, request.request_type, actor.actor_id, cancelled,
        )

    outcome = "Approved" if approved else "Rejected"
    dispatch_effects(_dispatcher(dispatcher), [EffectIntent(NOTIFY_REQUEST_PROCESSED, {
        "title": f"Visitor {request.request_type} Request {outcome}",
        "message": (
            f"Your request to {request.request_type.lower()} the visitor "
            f"has been {outcome.lower()}."
        ),
        "notify_users": [request.requested_by_id],
    })])
    return RequestDecision(request=store.load_visitor_request(request.id), cancelled_visits=cancelled)
