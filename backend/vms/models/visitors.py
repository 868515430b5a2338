from __future__ import annotations

from ..extensions import db
from vms.time_utils import to_utc_z
from ._ids import new_id


class Visitor(db.Model):
    """
    Reusable visitor identity, keyed by email.

    BLACKLIST: is_blacklisted gates every new visit for this identity and
    blocks check-in of visits already approved. Blacklisting cascades a
    cancellation over the visitor's pending/future visits.
    """
    __tablename__ = "visitors"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    first_name = db.Column(db.String(128), nullable=False)
    last_name = db.Column(db.String(128), nullable=False)
    phone = db.Column(db.String(32), nullable=True)
    company = db.Column(db.String(255), nullable=True)
    designation = db.Column(db.String(128), nullable=True)
    id_type = db.Column(db.String(64), nullable=True)
    id_number = db.Column(db.String(128), nullable=True)

    is_blacklisted = db.Column(db.Boolean, nullable=False, default=False, index=True)
    blacklist_reason = db.Column(db.Text, nullable=True)
    blacklisted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    blacklisted_by = db.Column(db.String(36), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "phone": self.phone,
            "company": self.company,
            "designation": self.designation,
            "id_type": self.id_type,
            "id_number": self.id_number,
            "is_blacklisted": self.is_blacklisted,
            "blacklist_reason": self.blacklist_reason,
            "blacklisted_at": to_utc_z(self.blacklisted_at),
            "created_at": to_utc_z(self.created_at),
        }


class VisitorRequest(db.Model):
    """
    A staff request to BLOCK or BLACKLIST a visitor, decided by an admin.

    BLOCK cancels the visitor's pending/future visits. BLACKLIST also flags
    the visitor. A request is decided once: PENDING -> APPROVED | REJECTED.
    """
    __tablename__ = "visitor_requests"
    __table_args__ = (
        db.CheckConstraint("request_type IN ('BLOCK', 'BLACKLIST')", name="ck_visitor_requests_type"),
        db.CheckConstraint(
            "status IN ('PENDING', 'APPROVED', 'REJECTED')", name="ck_visitor_requests_status"
        ),
        db.Index("ix_visitor_requests_status_created", "status", "created_at"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    visitor_id = db.Column(db.String(36), db.ForeignKey("visitors.id"), nullable=False, index=True)
    request_type = db.Column(db.String(16), nullable=False)
    reason = db.Column(db.Text, nullable=False)
    status = db.Column(db.String(16), nullable=False, default="PENDING")

    requested_by_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False)
    processed_by_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    visitor = db.relationship("Visitor")
    requested_by = db.relationship("User", foreign_keys=[requested_by_id])

    def to_dict(self, include_visitor: bool = False):
        data = {
            "id": self.id,
            "visitor_id": self.visitor_id,
            "request_type": self.request_type,
            "reason": self.reason,
            "status": self.status,
            "requested_by_id": self.requested_by_id,
            "processed_by_id": self.processed_by_id,
            "processed_at": to_utc_z(self.processed_at),
            "created_at": to_utc_z(self.created_at),
        }
        if include_visitor:
            data["visitor"] = self.visitor.to_dict() if self.visitor else None
            requester = self.requested_by
            data["requested_by"] = {
                "first_name": requester.first_name,
                "last_name": requester.last_name,
                "email": requester.email,
            } if requester else None
        return data
