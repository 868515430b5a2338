# Overview: Pass identity and signed token codec; pure functions, no storage access.

"""
Pass Codec

WHY: An approved visit gets a human-presentable pass number plus a signed
token (rendered as a QR code) that gate staff scan at check-in. The token is
never stored separately: it is verified cryptographically, then the caller
cross-checks the embedded pass number against the visit row.

PASS NUMBER:
    <PREFIX>-<base36 epoch millis>-<6 uppercase hex>
    e.g. VMS-LZ3K8Q1A-9F03BC
    Collision probability is negligible but not zero; the store enforces
    uniqueness and the caller regenerates on conflict.

TOKEN (compact JSON, keys in this order):
    {"visitId":..., "passNumber":..., "timestamp":<epoch ms>, "signature":<hex>}

    signature = HMAC-SHA256(secret, canonical({visitId, passNumber, timestamp}))
                truncated to `signature_length` hex characters.

VERIFICATION ORDER:
    1. parse            -> MalformedToken
    2. signature        -> InvalidSignature
    3. age <= max_age   -> TokenExpired
"""

from __future__ import annotations

import hashlib
import hmac
import json
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

from ..errors import InvalidSignature, MalformedToken, TokenExpired
from vms.time_utils import from_epoch_millis, to_epoch_millis, utcnow


DEFAULT_PREFIX = "VMS"
DEFAULT_SIGNATURE_LENGTH = 16
DEFAULT_MAX_AGE = timedelta(days=7)

_BASE36_DIGITS = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


@dataclass(frozen=True)
class IssuedToken:
    token: str
    timestamp: datetime  # visible issue time (UTC-naive)


@dataclass(frozen=True)
class TokenClaims:
    visit_id: str
    pass_number: str
    issued_at: datetime


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36_DIGITS[rem])
    return "".join(reversed(digits))


def generate_pass_number(prefix: str = DEFAULT_PREFIX, *, now: datetime | None = None) -> str:
    """Return PREFIX-<base36 timestamp>-<random hex>."""
    moment = now or utcnow()
    stamp = _to_base36(to_epoch_millis(moment))
    random_part = secrets.token_hex(3).upper()
    return f"{prefix.upper()}-{stamp}-{random_part}"


def _canonical(visit_id: str, pass_number: str, timestamp: int) -> bytes:
    data = {"visitId": visit_id, "passNumber": pass_number, "timestamp": timestamp}
    return json.dumps(data, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def _sign(secret: str, payload: bytes, length: int) -> str:
    digest = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()
    return digest[:length]


def issue_token(
    visit_id: str,
    pass_number: str,
    *,
    secret: str,
    now: datetime | None = None,
    signature_length: int = DEFAULT_SIGNATURE_LENGTH,
) -> IssuedToken:
    """
    Build a signed token bound to (visit_id, pass_number).

    Deterministic for identical inputs, secret and timestamp.
    """
    moment = now or utcnow()
    timestamp = to_epoch_millis(moment)
    signature = _sign(secret, _canonical(visit_id, pass_number, timestamp), signature_length)
    token = json.dumps(
        {
            "visitId": visit_id,
            "passNumber": pass_number,
            "timestamp": timestamp,
            "signature": signature,
        },
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return IssuedToken(token=token, timestamp=from_epoch_millis(timestamp))


def verify_token(
    token: str,
    *,
    secret: str,
    now: datetime | None = None,
    max_age: timedelta = DEFAULT_MAX_AGE,
    signature_length: int = DEFAULT_SIGNATURE_LENGTH,
) -> TokenClaims:
    """
    Verify a token and return its embedded claims.

    Does NOT look up storage. Matching the embedded pass number against the
    visit's current pass number is the caller's job.

    Raises:
        MalformedToken: not JSON, or missing/mistyped fields
        InvalidSignature: signature does not match the embedded fields
        TokenExpired: issued more than max_age ago
    """
    if not isinstance(token, str) or not token.strip():
        raise MalformedToken("Invalid QR code format")

    try:
        data = json.loads(token)
    except ValueError:
        raise MalformedToken("Invalid QR code format")

    if not isinstance(data, dict):
        raise MalformedToken("Invalid QR code format")

    visit_id = data.get("visitId")
    pass_number = data.get("passNumber")
    timestamp = data.get("timestamp")
    signature = data.get("signature")

    if not isinstance(visit_id, str) or not isinstance(pass_number, str):
        raise MalformedToken("Invalid QR code format")
    if not isinstance(timestamp, int) or isinstance(timestamp, bool):
        raise MalformedToken("Invalid QR code format")
    if not isinstance(signature, str):
        raise MalformedToken("Invalid QR code format")

    expected = _sign(secret, _canonical(visit_id, pass_number, timestamp), signature_length)
    if not hmac.compare_digest(signature.encode("utf-8"), expected.encode("ascii")):
        raise InvalidSignature("Invalid QR signature")

    moment = now or utcnow()
    age_ms = to_epoch_millis(moment) - timestamp
    if age_ms > max_age.total_seconds() * 1000:
        raise TokenExpired("QR code expired")

    return TokenClaims(
        visit_id=visit_id,
        pass_number=pass_number,
        issued_at=from_epoch_millis(timestamp),
    )
