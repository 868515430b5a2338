# Overview: Domain error taxonomy shared by the store, codec, state machine and routes.

"""
Visit domain errors.

Every error carries a stable machine-readable ``kind`` and a human message.
Clients branch on ``kind`` (and the structured details), never on message text.
"""

from __future__ import annotations

from typing import Any


class VisitError(Exception):
    """Base class for every error surfaced to callers of the visit core."""

    kind = "VISIT_ERROR"
    http_status = 400

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        payload = {"error": self.kind, "message": self.message}
        payload.update(self.details)
        return payload


class NotFound(VisitError):
    kind = "NOT_FOUND"
    http_status = 404


class InvalidTransition(VisitError):
    """
    Current status does not permit the requested event.

    Carries the observed status and the event so callers can react without
    parsing the message.
    """

    kind = "INVALID_TRANSITION"
    http_status = 409

    def __init__(self, current_status: str, event: str, message: str | None = None):
        super().__init__(
            message or f"Cannot {event.replace('_', ' ')}: visit status is {current_status}",
            current_status=current_status,
            event=event,
        )
        self.current_status = current_status
        self.event = event


class Forbidden(VisitError):
    kind = "FORBIDDEN"
    http_status = 403


class BlacklistedVisitor(VisitError):
    kind = "BLACKLISTED_VISITOR"
    http_status = 403


class InvalidToken(VisitError):
    """Pass token failed verification."""

    kind = "INVALID_TOKEN"
    http_status = 400
    reason = "invalid"

    def __init__(self, message: str):
        super().__init__(message, reason=self.reason)


class InvalidSignature(InvalidToken):
    reason = "signature"


class MalformedToken(InvalidSignature):
    """A token that cannot even be parsed cannot carry a valid signature."""

    reason = "malformed"


class TokenExpired(InvalidToken):
    reason = "expired"


class TokenVisitMismatch(VisitError):
    kind = "TOKEN_VISIT_MISMATCH"
    http_status = 400


class GuestManifestInvalid(VisitError):
    kind = "GUEST_MANIFEST_INVALID"
    http_status = 400


class ValidationError(VisitError):
    """400-level input problem at the API boundary."""

    kind = "VALIDATION_ERROR"
    http_status = 400


class ExtensionLimitReached(VisitError):
    kind = "EXTENSION_LIMIT_REACHED"
    http_status = 409


class StoreConflict(VisitError):
    """Conditional update lost a race; reload and retry once."""

    kind = "STORE_CONFLICT"
    http_status = 409


class PassNumberConflict(StoreConflict):
    """Generated pass number collided with an existing one."""


class RequestAlreadyProcessed(VisitError):
    """Visitor action request was decided before this call."""

    kind = "REQUEST_ALREADY_PROCESSED"
    http_status = 409
