# Overview: Guest manifest normalization (core) and strict validation (API boundary).

"""
Guest Manifest

A visit may bring up to 10 accompanying guests, each recorded as
{"name": str, "contact": str}, in the order supplied.

Two entry points with deliberately different failure modes:

- normalize_guest_manifest(): never raises. Clamps the count, drops blank
  entries, trims strings and pads/truncates so that
  len(guest_details) == number_of_guests always holds.
- validate_guest_manifest(): used where requests enter the system. A count
  outside 0..10, a list whose length differs from the count, or a guest
  missing name/contact raises GuestManifestInvalid instead of being fixed up.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from ..constants import MAX_GUESTS
from ..errors import GuestManifestInvalid


@dataclass(frozen=True)
class GuestManifest:
    number_of_guests: int = 0
    guest_details: list[dict] = field(default_factory=list)


def _coerce_guest_count(value: Any) -> int:
    """Integer in [0, MAX_GUESTS]; anything non-integer or negative is 0."""
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        count = value
    elif isinstance(value, float) and value.is_integer():
        count = int(value)
    elif isinstance(value, str) and value.strip().isdigit():
        count = int(value.strip())
    else:
        return 0
    if count < 0:
        return 0
    return min(count, MAX_GUESTS)


def _clean(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _clean_guest(entry: Any) -> dict | None:
    if not isinstance(entry, dict):
        return None
    name = _clean(entry.get("name"))
    contact = _clean(entry.get("contact"))
    if not name and not contact:
        return None
    return {"name": name, "contact": contact}


def normalize_guest_manifest(number_of_guests: Any, guests: Any = None) -> GuestManifest:
    """
    Convert caller-supplied (count, guests) into a canonical manifest.

    Deterministic and side-effect free. Excess guests are dropped; missing
    ones are padded with blank entries.
    """
    count = _coerce_guest_count(number_of_guests)
    if count == 0:
        return GuestManifest()

    cleaned = []
    for entry in guests if isinstance(guests, (list, tuple)) else []:
        guest = _clean_guest(entry)
        if guest is not None:
            cleaned.append(guest)

    details = cleaned[:count]
    while len(details) < count:
        details.append({"name": "", "contact": ""})

    return GuestManifest(number_of_guests=count, guest_details=details)


def validate_guest_manifest(number_of_guests: Any, guests: Any = None) -> None:
    """
    Reject manifests that do not already satisfy the invariant.

    Raises:
        GuestManifestInvalid: count outside 0..10, length mismatch, or a
            guest without both name and contact
    """
    if number_of_guests is None:
        number_of_guests = 0

    if isinstance(number_of_guests, bool) or not isinstance(number_of_guests, int):
        raise GuestManifestInvalid("Number of guests must be an integer between 0 and 10")
    if number_of_guests < 0 or number_of_guests > MAX_GUESTS:
        raise GuestManifestInvalid("Number of guests must be between 0 and 10")

    if number_of_guests == 0:
        return

    if not isinstance(guests, list) or len(guests) != number_of_guests:
        raise GuestManifestInvalid(
            "Provide guest name and contact for each guest",
            expected=number_of_guests,
            received=len(guests) if isinstance(guests, list) else 0,
        )

    for index, guest in enumerate(guests):
        if not isinstance(guest, dict) or not _clean(guest.get("name")) or not _clean(guest.get("contact")):
            raise GuestManifestInvalid(f"Guest {index + 1} name and contact required", index=index)
