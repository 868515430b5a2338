# Overview: Printable entry pass data for visits that have reached the gate.

from __future__ import annotations

from flask import current_app

from ..constants import STATUS_CHECKED_IN, STATUS_CHECKED_OUT
from ..errors import InvalidTransition
from . import pass_codec
from .visit_state_machine import PassSettings
from .visit_store import VisitStore
from vms.time_utils import to_utc_z, utcnow


EVENT_ENTRY_PASS = "entry_pass"

PASS_STATUSES = frozenset({STATUS_CHECKED_IN, STATUS_CHECKED_OUT})

INSTRUCTIONS = (
    "Carry a valid photo ID and cooperate with security checks.",
    "Keep this entry pass visible at all times while on-site.",
    "Stay with your host and avoid restricted areas without an escort.",
    "Follow all safety and emergency instructions from staff.",
    "Return this visitor pass to security during gate checkout.",
)


def build_entry_pass(visit_id: str, *, pass_settings: PassSettings | None = None, now=None) -> dict:
    """
    Collect everything a printed entry pass shows.

    Read-only. Only a visit that has been checked in (or out) and holds a
    pass number has a pass; anything else raises InvalidTransition. The
    verification token is freshly issued so the printed QR carries a full
    validity window.
    """
    visit = VisitStore().load_visit(visit_id)
    if visit.status not in PASS_STATUSES or not visit.pass_number:
        raise InvalidTransition(
            visit.status,
            EVENT_ENTRY_PASS,
            "Entry pass is available only after check-in",
        )

    settings = pass_settings or PassSettings.from_config(current_app.config)
    issued = pass_codec.issue_token(
        visit.id,
        visit.pass_number,
        secret=settings.secret,
        now=now or utcnow(),
        signature_length=settings.signature_length,
    )

    visitor = visit.visitor
    host = visit.host_employee
    return {
        "visit_id": visit.id,
        "pass_number": visit.pass_number,
        "status": visit.status,
        "visitor": {
            "name": visitor.full_name,
            "company": visitor.company,
            "phone": visitor.phone,
        },
        "host": {
            "name": host.full_name if host else None,
            "department": host.department if host else None,
            "email": host.email if host else None,
        },
        "purpose": visit.purpose,
        "scheduled_date": to_utc_z(visit.scheduled_date),
        "scheduled_time_in": to_utc_z(visit.scheduled_time_in),
        "scheduled_time_out": to_utc_z(visit.scheduled_time_out),
        "check_in_time": to_utc_z(visit.actual_time_in or visit.scheduled_time_in),
        "number_of_guests": visit.number_of_guests,
        "instructions": list(INSTRUCTIONS),
        "verification_token": issued.token,
    }
