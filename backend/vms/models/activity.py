from __future__ import annotations

from ..extensions import db
from vms.time_utils import to_utc_z
from ._ids import new_id


class ActivityLog(db.Model):
    """
    Audit trail of visit transitions and visitor actions.

    IMMUTABLE: Never update or delete. Written in the same commit as the
    state change it describes.
    """
    __tablename__ = "activity_logs"
    __table_args__ = (
        db.Index("ix_activity_logs_visit_created", "visit_id", "created_at"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    actor_id = db.Column(db.String(36), nullable=True, index=True)  # Null for public actions
    visit_id = db.Column(db.String(36), db.ForeignKey("visits.id"), nullable=True)
    visitor_id = db.Column(db.String(36), db.ForeignKey("visitors.id"), nullable=True, index=True)

    action = db.Column(db.String(64), nullable=False, index=True)  # VISIT_APPROVED, VISITOR_BLACKLISTED, ...
    description = db.Column(db.Text, nullable=True)
    details = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self):
        return {
            "id": self.id,
            "actor_id": self.actor_id,
            "visit_id": self.visit_id,
            "visitor_id": self.visitor_id,
            "action": self.action,
            "description": self.description,
            "details": self.details,
            "created_at": to_utc_z(self.created_at),
        }
