"""
Request body parsing for the visit API.

Each route turns its JSON body into one of the frozen input dataclasses
below before calling a service, so services only ever receive typed,
trimmed values. Anything that cannot be coerced raises ValidationError
(or GuestManifestInvalid for the guest manifest).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from vms.time_utils import parse_iso_datetime

from .constants import VALID_PURPOSES, VISITOR_REQUEST_ACTIONS
from .errors import ValidationError
from .services.guest_service import validate_guest_manifest


@dataclass(frozen=True)
class VisitorInput:
    email: str
    first_name: str
    last_name: str
    phone: str | None = None
    company: str | None = None
    designation: str | None = None
    id_type: str | None = None
    id_number: str | None = None

    def profile_fields(self) -> dict:
        """Optional contact/identity fields that were actually supplied."""
        fields = {
            "phone": self.phone,
            "company": self.company,
            "designation": self.designation,
            "id_type": self.id_type,
            "id_number": self.id_number,
        }
        return {key: value for key, value in fields.items() if value}


@dataclass(frozen=True)
class ScheduleInput:
    scheduled_date: datetime
    scheduled_time_in: datetime
    scheduled_time_out: datetime
    purpose: str = "OTHER"
    purpose_details: str | None = None
    vehicle_number: str | None = None
    special_instructions: str | None = None


@dataclass(frozen=True)
class GuestInput:
    number_of_guests: int = 0
    guests: list[dict] = field(default_factory=list)


@dataclass(frozen=True)
class WalkInInput:
    host_employee_id: str
    purpose: str = "OTHER"
    purpose_details: str | None = None
    vehicle_number: str | None = None


# =============================================================================
# FIELD COERCION
# =============================================================================

def require_body(data: Any) -> dict:
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _optional_str(data: dict, key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, (str, int)) or isinstance(value, bool):
        raise ValidationError(f"{key} must be a string")
    value = str(value).strip()
    return value or None


def _require_str(data: dict, key: str) -> str:
    value = _optional_str(data, key)
    if value is None:
        raise ValidationError(f"{key} is required", field=key)
    return value


def _parse_datetime(data: dict, key: str, *, required: bool = True) -> datetime | None:
    raw = data.get(key)
    if raw is None or raw == "":
        if required:
            raise ValidationError(f"{key} is required", field=key)
        return None
    if not isinstance(raw, str):
        raise ValidationError(f"{key} must be an ISO-8601 datetime", field=key)
    try:
        return parse_iso_datetime(raw)
    except ValueError:
        raise ValidationError(f"{key} must be an ISO-8601 datetime", field=key)


def _parse_purpose(data: dict) -> str:
    purpose = (_optional_str(data, "purpose") or "OTHER").upper()
    if purpose not in VALID_PURPOSES:
        raise ValidationError(
            f"purpose must be one of {', '.join(sorted(VALID_PURPOSES))}",
            field="purpose",
        )
    return purpose


def parse_int(value: Any, key: str) -> int:
    """Strict integer: rejects bools, floats and decimal strings."""
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be an integer", field=key)
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    raise ValidationError(f"{key} must be an integer", field=key)


# =============================================================================
# REQUEST BODIES
# =============================================================================

def parse_visitor_input(data: Any) -> VisitorInput:
    data = require_body(data)
    email = _require_str(data, "email").lower()
    if "@" not in email or email.startswith("@") or email.endswith("@"):
        raise ValidationError("email must be a valid email address", field="email")
    return VisitorInput(
        email=email,
        first_name=_require_str(data, "first_name"),
        last_name=_require_str(data, "last_name"),
        phone=_optional_str(data, "phone"),
        company=_optional_str(data, "company"),
        designation=_optional_str(data, "designation"),
        id_type=_optional_str(data, "id_type"),
        id_number=_optional_str(data, "id_number"),
    )


def parse_schedule_input(data: Any) -> ScheduleInput:
    data = require_body(data)
    time_in = _parse_datetime(data, "scheduled_time_in")
    time_out = _parse_datetime(data, "scheduled_time_out")
    if time_out <= time_in:
        raise ValidationError("scheduled_time_out must be after scheduled_time_in")

    scheduled_date = _parse_datetime(data, "scheduled_date", required=False)
    if scheduled_date is None:
        scheduled_date = time_in.replace(hour=0, minute=0, second=0, microsecond=0)

    return ScheduleInput(
        scheduled_date=scheduled_date,
        scheduled_time_in=time_in,
        scheduled_time_out=time_out,
        purpose=_parse_purpose(data),
        purpose_details=_optional_str(data, "purpose_details"),
        vehicle_number=_optional_str(data, "vehicle_number"),
        special_instructions=_optional_str(data, "special_instructions"),
    )


def parse_guest_input(data: Any) -> GuestInput:
    """
    Strict guest manifest check at the API boundary.

    Raises GuestManifestInvalid when the count is outside 0..10, the list
    length differs from the count, or a guest lacks name/contact.
    """
    data = require_body(data)
    count = data.get("number_of_guests")
    guests = data.get("guests", data.get("guest_details"))
    if isinstance(count, str) and count.strip().isdigit():
        count = int(count.strip())
    validate_guest_manifest(count, guests)
    return GuestInput(number_of_guests=count or 0, guests=list(guests or []))


def parse_walk_in_input(data: Any) -> WalkInInput:
    data = require_body(data)
    return WalkInInput(
        host_employee_id=_require_str(data, "host_employee_id"),
        purpose=_parse_purpose(data),
        purpose_details=_optional_str(data, "purpose_details"),
        vehicle_number=_optional_str(data, "vehicle_number"),
    )


def parse_extension_minutes(data: Any) -> int:
    data = require_body(data)
    if data.get("minutes") is None:
        raise ValidationError("minutes is required", field="minutes")
    return parse_int(data["minutes"], "minutes")


def parse_meeting_status(data: Any) -> bool:
    data = require_body(data)
    is_over = data.get("is_over")
    if not isinstance(is_over, bool):
        raise ValidationError("is_over must be true or false", field="is_over")
    return is_over


def parse_reason(data: Any) -> str | None:
    if data is None:
        return None
    return _optional_str(require_body(data), "reason")


def parse_visitor_details(data: Any) -> dict:
    """Optional profile fields a visitor may fill in on the invitation form."""
    data = require_body(data or {})
    details = {
        key: _optional_str(data, key)
        for key in ("phone", "company", "designation", "id_type", "id_number")
    }
    return {key: value for key, value in details.items() if value}


def parse_visitor_action(data: Any) -> tuple[str, str]:
    """Body of a visitor action request: {"action": "BLOCK" | "BLACKLIST", "reason": "..."}."""
    data = require_body(data)
    action = (_optional_str(data, "action") or "").upper()
    if action not in VISITOR_REQUEST_ACTIONS:
        raise ValidationError(
            f"action must be one of {', '.join(sorted(VISITOR_REQUEST_ACTIONS))}",
            field="action",
        )
    return action, _require_str(data, "reason")


def parse_request_decision(data: Any) -> bool:
    data = require_body(data)
    approved = data.get("approved")
    if not isinstance(approved, bool):
        raise ValidationError("approved must be true or false", field="approved")
    return approved
