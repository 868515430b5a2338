# Overview: Effect dispatcher; delivers notification/email intents after a transition commits.

"""
Effect Dispatcher

WHY: A visit transition is committed before anyone is told about it. Telling
people (in-app notifications, emails) is best-effort: a broken mail relay
must never undo an approval or fail a gate check-in.

INTENTS:
    EffectIntent(kind, payload) is produced by the state machine. Payload keys:
        visit_id        Visit the effect is about
        title, message  Human text for in-app notifications
        notify_users    User ids to notify individually
        notify_roles    Role names to notify (every holder of the role)
        email           Optional {"to", "template", "context"} for the mailer

DELIVERY:
    dispatch_effects() hands each intent to Dispatcher.notify() and logs,
    never raises, on failure. Nothing is retried.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from flask import current_app

from ..extensions import db
from ..models import Notification


TARGET_USER = "USER"
TARGET_ROLE = "ROLE"


@dataclass(frozen=True)
class EffectIntent:
    kind: str
    payload: dict = field(default_factory=dict)


class Dispatcher(Protocol):
    def notify(self, kind: str, payload: dict) -> None:
        ...


class Mailer(Protocol):
    def send(self, to: str, template: str, context: dict) -> None:
        ...


class LoggingMailer:
    """Outbound email is an external collaborator; record the hand-off only."""

    def send(self, to: str, template: str, context: dict) -> None:
        current_app.logger.info("Email '%s' queued for %s", template, to)


class NotificationDispatcher:
    """
    Default dispatcher: persists Notification rows, then hands any email
    intent to the mailer.

    Commits its own unit of work, separate from the visit transition.
    """

    def __init__(self, mailer: Mailer | None = None):
        self.mailer = mailer or LoggingMailer()

    def notify(self, kind: str, payload: dict) -> None:
        title = payload.get("title") or kind.replace("_", " ").title()
        message = payload.get("message") or ""
        visit_id = payload.get("visit_id")

        targets = [(TARGET_USER, user_id) for user_id in payload.get("notify_users", ()) if user_id]
        targets += [(TARGET_ROLE, role) for role in payload.get("notify_roles", ())]

        if targets:
            try:
                for target_type, target_id in targets:
                    db.session.add(Notification(
                        kind=kind,
                        title=title,
                        message=message,
                        target_type=target_type,
                        target_id=target_id,
                        visit_id=visit_id,
                    ))
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise

        email = payload.get("email")
        if email and email.get("to"):
            self.mailer.send(email["to"], email["template"], email.get("context", {}))


def dispatch_effects(dispatcher: Dispatcher, intents: list[EffectIntent]) -> int:
    """
    Deliver intents one by one; a failing intent does not stop the rest.

    Returns:
        Number of intents delivered without error
    """
    delivered = 0
    for intent in intents:
        try:
            dispatcher.notify(intent.kind, intent.payload)
            delivered += 1
        except Exception:
            current_app.logger.exception(
                "Failed to dispatch %s for visit %s",
                intent.kind,
                intent.payload.get("visit_id"),
            )
    return delivered
