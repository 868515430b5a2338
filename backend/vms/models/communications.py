from __future__ import annotations

from ..extensions import db
from vms.time_utils import to_utc_z
from ._ids import new_id


class Notification(db.Model):
    """
    In-app notification produced by the effect dispatcher.

    Targets a single user (target_type USER, target_id = user id) or every
    holder of a role (target_type ROLE, target_id = role name).
    Written after the visit transition commits; never part of it.
    """
    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("ix_notifications_target", "target_type", "target_id"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    kind = db.Column(db.String(64), nullable=False, index=True)
    title = db.Column(db.String(255), nullable=False)
    message = db.Column(db.Text, nullable=False)

    target_type = db.Column(db.String(16), nullable=False)  # USER, ROLE
    target_id = db.Column(db.String(64), nullable=False)

    visit_id = db.Column(db.String(36), db.ForeignKey("visits.id"), nullable=True, index=True)
    is_read = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self):
        return {
            "id": self.id,
            "kind": self.kind,
            "title": self.title,
            "message": self.message,
            "target_type": self.target_type,
            "target_id": self.target_id,
            "visit_id": self.visit_id,
            "is_read": self.is_read,
            "created_at": to_utc_z(self.created_at),
        }
