# Overview: Flask API routes for the visitor invitation form, blacklist management and action requests.

# backend/vms/routes/visitors.py
"""
Visitor API Routes

PUBLIC (no actor):
- GET  /api/visitors/invitation/<visit_id>           invitation form data
- POST /api/visitors/invitation/<visit_id>/complete  submit the form

ACTOR REQUIRED:
- POST /api/visitors/<visitor_id>/blacklist          ADMIN, SECURITY_MANAGER
- POST /api/visitors/<visitor_id>/unblacklist        ADMIN
- POST /api/visitors/<visitor_id>/request-action     any known user
- GET  /api/visitors/requests/pending                ADMIN
- POST /api/visitors/requests/<request_id>/process   ADMIN
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor
from ..errors import VisitError
from ..services import visit_intake_service
from ..services.visit_state_machine import get_state_machine
from ..validation import (
    parse_reason,
    parse_request_decision,
    parse_visitor_action,
    parse_visitor_details,
)
from vms.time_utils import to_utc_z


visitors_bp = Blueprint("visitors", __name__, url_prefix="/api/visitors")


@visitors_bp.get("/invitation/<visit_id>")
def get_invitation_route(visit_id):
    """
    Invitation details shown on the visitor registration form.

    Only available while the visit is INVITED or PENDING_DETAILS.
    """
    try:
        visit = visit_intake_service.get_invitation(visit_id)
        visitor = visit.visitor
        host = visit.host_employee
        return jsonify({
            "invitation": {
                "visit_id": visit.id,
                "status": visit.status,
                "purpose": visit.purpose,
                "scheduled_date": to_utc_z(visit.scheduled_date),
                "scheduled_time_in": to_utc_z(visit.scheduled_time_in),
                "scheduled_time_out": to_utc_z(visit.scheduled_time_out),
                "number_of_guests": visit.number_of_guests,
                "visitor": {
                    "email": visitor.email,
                    "first_name": visitor.first_name,
                    "last_name": visitor.last_name,
                    "phone": visitor.phone,
                    "company": visitor.company,
                },
                "host": {
                    "name": host.full_name,
                    "department": host.department,
                } if host else None,
            }
        }), 200

    except VisitError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load invitation")
        return jsonify({"error": "Internal server error"}), 500


@visitors_bp.post("/invitation/<visit_id>/complete")
def complete_invitation_route(visit_id):
    """
    Visitor submits the registration form; the visit moves to PENDING_APPROVAL.

    Request body (all optional):
    {"phone": "...", "company": "...", "designation": "...", "id_type": "...", "id_number": "..."}
    """
    try:
        details = parse_visitor_details(request.get_json(silent=True))
        visit = get_state_machine().complete_registration(visit_id, details)
        return jsonify({"visit": visit.to_dict()}), 200

    except VisitError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to complete invitation")
        return jsonify({"error": "Internal server error"}), 500


@visitors_bp.post("/<visitor_id>/blacklist")
@require_actor
def blacklist_visitor_route(visitor_id):
    """
    Blacklist a visitor and cancel their pending/future visits.

    Request body (optional): {"reason": "..."}
    """
    try:
        reason = parse_reason(request.get_json(silent=True))
        result = visit_intake_service.blacklist_visitor(visitor_id, g.actor, reason)
        return jsonify({
            "visitor": result.visitor.to_dict(),
            "cancelled_visits": result.cancelled_visits,
        }), 200

    except VisitError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to blacklist visitor")
        return jsonify({"error": "Internal server error"}), 500


@visitors_bp.post("/<visitor_id>/unblacklist")
@require_actor
def unblacklist_visitor_route(visitor_id):
    """Remove a visitor from the blacklist (ADMIN only)."""
    try:
        visitor = visit_intake_service.unblacklist_visitor(visitor_id, g.actor)
        return jsonify({"visitor": visitor.to_dict()}), 200

    except VisitError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to remove visitor from blacklist")
        return jsonify({"error": "Internal server error"}), 500


@visitors_bp.post("/<visitor_id>/request-action")
@require_actor
def request_visitor_action_route(visitor_id):
    """
    Ask an admin to BLOCK or BLACKLIST a visitor.

    Request body:
    {"action": "BLOCK" | "BLACKLIST", "reason": "..."}
    """
    try:
        action, reason = parse_visitor_action(request.get_json(silent=True))
        visitor_request = visit_intake_service.request_visitor_action(visitor_id, g.actor, action, reason)
        return jsonify({
            "message": f"{action} request submitted for admin approval",
            "request": visitor_request.to_dict(),
        }), 201

    except VisitError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to submit visitor action request")
        return jsonify({"error": "Internal server error"}), 500


@visitors_bp.get("/requests/pending")
@require_actor
def pending_requests_route():
    """Pending visitor action requests with visitor and requester details (ADMIN only)."""
    try:
        requests = visit_intake_service.list_pending_requests(g.actor)
        return jsonify({"requests": [r.to_dict(include_visitor=True) for r in requests]}), 200

    except VisitError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list visitor requests")
        return jsonify({"error": "Internal server error"}), 500


@visitors_bp.post("/requests/<request_id>/process")
@require_actor
def process_request_route(request_id):
    """
    Approve or reject a visitor action request (ADMIN only).

    Request body:
    {"approved": true | false}
    """
    try:
        approved = parse_request_decision(request.get_json(silent=True))
        decision = visit_intake_service.process_visitor_request(request_id, g.actor, approved)
        return jsonify({
            "message": f"Request {'approved' if approved else 'rejected'} successfully",
            "request": decision.request.to_dict(),
            "cancelled_visits": decision.cancelled_visits,
        }), 200

    except VisitError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to process visitor request")
        return jsonify({"error": "Internal server error"}), 500
