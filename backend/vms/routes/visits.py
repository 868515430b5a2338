# Overview: Flask API routes for visit creation and lifecycle transitions; parses input and returns JSON responses.

# backend/vms/routes/visits.py
"""
Visit API Routes

WHY: Front door of the visit lifecycle. Each route parses its body into a
typed input, calls exactly one service operation and serialises the result.

DESIGN:
- Creation: invite (INVITED), re-invite and walk-in (PENDING_APPROVAL)
- Transitions: approve, reject, check-in (manual / pass token), check-out,
  extend, cancel, meeting-status
- Guest manifest is validated strictly here, then normalised by the service

SECURITY:
- Every route requires an actor (X-Actor-Id / X-Actor-Role headers)
- Role and host-relation checks are enforced by the services
- The extension cap (VISIT_MAX_EXTENSION_COUNT) is enforced here, not in the
  state machine
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor
from ..errors import ExtensionLimitReached, VisitError
from ..models import Visit
from ..services import visit_intake_service
from ..services.entry_pass_service import build_entry_pass
from ..services.visit_state_machine import get_state_machine
from ..services.visit_store import VisitStore
from ..validation import (
    parse_extension_minutes,
    parse_guest_input,
    parse_meeting_status,
    parse_reason,
    parse_schedule_input,
    parse_visitor_input,
    parse_walk_in_input,
    require_body,
)


visits_bp = Blueprint("visits", __name__, url_prefix="/api/visits")


def _error_response(e: VisitError):
    return jsonify(e.to_dict()), e.http_status


def _internal_error(action: str):
    current_app.logger.exception("Failed to %s", action)
    return jsonify({"error": "Internal server error"}), 500


def _visit_payload(visit: Visit) -> dict:
    payload = visit.to_dict()
    payload["visitor"] = visit.visitor.to_dict() if visit.visitor else None
    host = visit.host_employee
    payload["host"] = {
        "id": host.id,
        "name": host.full_name,
        "department": host.department,
        "email": host.email,
    } if host else None
    return payload


def _enforce_extension_cap(visit_id: str) -> None:
    limit = current_app.config.get("VISIT_MAX_EXTENSION_COUNT", 0)
    if not limit:
        return
    visit = VisitStore().load_visit(visit_id)
    if visit.extension_count >= limit:
        raise ExtensionLimitReached(
            f"Visit has already been extended {visit.extension_count} times (limit {limit})",
            extension_count=visit.extension_count,
            limit=limit,
        )


# =============================================================================
# CREATION
# =============================================================================

@visits_bp.post("/invite")
@require_actor
def invite_visitor_route():
    """
    Invite a visitor. The visit starts INVITED and the visitor receives a
    link to the registration form.

    Request body:
    {
        "visitor": {"email": "...", "first_name": "...", "last_name": "...", "phone": "...", "company": "..."},
        "purpose": "MEETING",
        "scheduled_time_in": "2026-05-01T09:00:00Z",
        "scheduled_time_out": "2026-05-01T11:00:00Z",
        "number_of_guests": 1,
        "guests": [{"name": "...", "contact": "..."}]
    }
    """
    try:
        data = request.get_json(silent=True)
        visitor_input = parse_visitor_input(require_body(data).get("visitor"))
        schedule = parse_schedule_input(data)
        guests = parse_guest_input(data)

        visit = visit_intake_service.create_from_invitation(g.actor, visitor_input, schedule, guests)
        return jsonify({"visit": _visit_payload(visit)}), 201

    except VisitError as e:
        return _error_response(e)
    except Exception:
        return _internal_error("create invitation")


@visits_bp.post("/reinvite")
@require_actor
def reinvite_visitor_route():
    """
    Re-invite a known visitor. Skips registration: starts PENDING_APPROVAL.

    Request body: same schedule/guest fields as /invite plus "visitor_id".
    """
    try:
        data = request.get_json(silent=True)
        schedule = parse_schedule_input(data)
        guests = parse_guest_input(data)
        visitor_id = data.get("visitor_id")
        if not visitor_id:
            return jsonify({"error": "VALIDATION_ERROR", "message": "visitor_id is required"}), 400

        visit = visit_intake_service.create_from_reinvite(g.actor, str(visitor_id), schedule, guests)
        return jsonify({"visit": _visit_payload(visit)}), 201

    except VisitError as e:
        return _error_response(e)
    except Exception:
        return _internal_error("re-invite visitor")


@visits_bp.post("/walkin")
@require_actor
def create_walk_in_route():
    """
    Register a walk-in visitor at the gate.

    Available to: SECURITY_GUARD, SECURITY_MANAGER

    Request body:
    {
        "visitor": {"email": "...", "first_name": "...", "last_name": "...", "id_type": "...", "id_number": "..."},
        "host_employee_id": "...",
        "purpose": "DELIVERY",
        "number_of_guests": 0
    }
    """
    try:
        data = request.get_json(silent=True)
        visitor_input = parse_visitor_input(require_body(data).get("visitor"))
        walk_in = parse_walk_in_input(data)
        guests = parse_guest_input(data)

        visit = visit_intake_service.create_from_walk_in(g.actor, visitor_input, walk_in, guests)
        return jsonify({"visit": _visit_payload(visit)}), 201

    except VisitError as e:
        return _error_response(e)
    except Exception:
        return _internal_error("create walk-in visit")


# =============================================================================
# READ
# =============================================================================

@visits_bp.get("/<visit_id>")
@require_actor
def get_visit_route(visit_id):
    """Visit detail including visitor and host."""
    try:
        visit = VisitStore().load_visit(visit_id)
        return jsonify({"visit": _visit_payload(visit)}), 200

    except VisitError as e:
        return _error_response(e)
    except Exception:
        return _internal_error("load visit")


@visits_bp.get("/<visit_id>/entry-pass")
@require_actor
def get_entry_pass_route(visit_id):
    """Printable pass data for a checked-in (or checked-out) visit."""
    try:
        return jsonify({"entry_pass": build_entry_pass(visit_id)}), 200

    except VisitError as e:
        return _error_response(e)
    except Exception:
        return _internal_error("build entry pass")


# =============================================================================
# APPROVAL
# =============================================================================

@visits_bp.post("/<visit_id>/approve")
@require_actor
def approve_visit_route(visit_id):
    """
    Approve a pending visit and issue its pass.

    Available to: ADMIN, PROCESS_ADMIN, SECURITY_MANAGER
    """
    try:
        visit = get_state_machine().approve(visit_id, g.actor)
        return jsonify({"visit": _visit_payload(visit)}), 200

    except VisitError as e:
        return _error_response(e)
    except Exception:
        return _internal_error("approve visit")


@visits_bp.post("/<visit_id>/reject")
@require_actor
def reject_visit_route(visit_id):
    """
    Reject a pending visit.

    Available to: ADMIN, PROCESS_ADMIN, SECURITY_MANAGER

    Request body (optional): {"reason": "..."}
    """
    try:
        reason = parse_reason(request.get_json(silent=True))
        visit = get_state_machine().reject(visit_id, g.actor, reason)
        return jsonify({"visit": _visit_payload(visit)}), 200

    except VisitError as e:
        return _error_response(e)
    except Exception:
        return _internal_error("reject visit")


# =============================================================================
# GATE
# =============================================================================

@visits_bp.post("/<visit_id>/checkin")
@require_actor
def check_in_route(visit_id):
    """
    Manual check-in at the gate.

    Available to: SECURITY_GUARD, SECURITY_MANAGER
    """
    try:
        visit = get_state_machine().check_in(visit_id, g.actor)
        return jsonify({"visit": _visit_payload(visit)}), 200

    except VisitError as e:
        return _error_response(e)
    except Exception:
        return _internal_error("check in visitor")


@visits_bp.post("/checkin-qr")
@require_actor
def check_in_by_token_route():
    """
    Check-in from a scanned pass.

    Available to: SECURITY_GUARD, SECURITY_MANAGER

    Request body: {"token": "<scanned QR payload>"}
    """
    try:
        data = request.get_json(silent=True) or {}
        token = data.get("token") or data.get("qr_data")
        if not token or not isinstance(token, str):
            return jsonify({"error": "VALIDATION_ERROR", "message": "token is required"}), 400

        visit = get_state_machine().check_in_by_token(token, g.actor)
        return jsonify({"visit": _visit_payload(visit)}), 200

    except VisitError as e:
        return _error_response(e)
    except Exception:
        return _internal_error("check in visitor by pass token")


@visits_bp.post("/<visit_id>/checkout")
@require_actor
def check_out_route(visit_id):
    """
    Check a visitor out. Repeating the call on a checked-out visit succeeds
    without changes.

    Available to: the visit's host, ADMIN, PROCESS_ADMIN, SECURITY_MANAGER, SECURITY_GUARD
    """
    try:
        visit = get_state_machine().check_out(visit_id, g.actor)
        return jsonify({"visit": _visit_payload(visit)}), 200

    except VisitError as e:
        return _error_response(e)
    except Exception:
        return _internal_error("check out visitor")


# =============================================================================
# EXTENSION / MEETING PROMPT
# =============================================================================

@visits_bp.post("/<visit_id>/extend")
@require_actor
def extend_visit_route(visit_id):
    """
    Extend a checked-in visit.

    Request body: {"minutes": 30}   (15-120)

    Refused with EXTENSION_LIMIT_REACHED once the visit has been extended
    VISIT_MAX_EXTENSION_COUNT times (0 disables the cap).
    """
    try:
        minutes = parse_extension_minutes(request.get_json(silent=True))
        _enforce_extension_cap(visit_id)
        visit = get_state_machine().extend(visit_id, minutes, g.actor)
        return jsonify({"visit": _visit_payload(visit)}), 200

    except VisitError as e:
        return _error_response(e)
    except Exception:
        return _internal_error("extend visit")


@visits_bp.post("/<visit_id>/meeting-status")
@require_actor
def meeting_status_route(visit_id):
    """
    Host answers the "is your meeting over?" prompt.

    Request body: {"is_over": true}   -> check out
                  {"is_over": false}  -> extend by MEETING_PROMPT_EXTENSION_MINUTES
    """
    try:
        is_over = parse_meeting_status(request.get_json(silent=True))
        visit = get_state_machine().respond_to_meeting_prompt(visit_id, g.actor, is_over)
        return jsonify({"visit": _visit_payload(visit)}), 200

    except VisitError as e:
        return _error_response(e)
    except Exception:
        return _internal_error("update meeting status")


# =============================================================================
# CANCELLATION / GUESTS
# =============================================================================

@visits_bp.post("/<visit_id>/cancel")
@require_actor
def cancel_visit_route(visit_id):
    """
    Cancel a visit that has not started.

    Available to: the visit's host, ADMIN
    """
    try:
        visit = get_state_machine().cancel(visit_id, g.actor)
        return jsonify({"visit": _visit_payload(visit)}), 200

    except VisitError as e:
        return _error_response(e)
    except Exception:
        return _internal_error("cancel visit")


@visits_bp.put("/<visit_id>/guests")
@require_actor
def update_guests_route(visit_id):
    """
    Replace the guest manifest.

    Available to: the visit's host, ADMIN (before check-in)

    Request body: {"number_of_guests": 2, "guests": [{"name": "...", "contact": "..."}, ...]}
    """
    try:
        guests = parse_guest_input(request.get_json(silent=True))
        visit = visit_intake_service.update_guests(visit_id, g.actor, guests)
        return jsonify({"visit": _visit_payload(visit)}), 200

    except VisitError as e:
        return _error_response(e)
    except Exception:
        return _internal_error("update guests")
