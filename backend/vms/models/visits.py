from __future__ import annotations

from ..extensions import db
from vms.time_utils import to_utc_z
from ._ids import new_id


class Visit(db.Model):
    """
    One scheduled or walk-in appointment between a Visitor and a host.

    LIFECYCLE:
        INVITED / PENDING_DETAILS -> PENDING_APPROVAL -> APPROVED -> CHECKED_IN -> CHECKED_OUT
        PENDING_APPROVAL -> REJECTED
        INVITED / PENDING_DETAILS / PENDING_APPROVAL / APPROVED -> CANCELLED

    INVARIANTS:
    - pass_number and qr_code are both null or both set; minted once, on approval
    - actual_time_in is set only entering CHECKED_IN, actual_time_out only entering CHECKED_OUT
    - extension_count grows by exactly 1 per extension
    - len(guest_details) == number_of_guests

    APPEND-ONLY: visits are never deleted. Cancellation and rejection are statuses.
    """
    __tablename__ = "visits"
    __table_args__ = (
        db.CheckConstraint(
            "(pass_number IS NULL AND qr_code IS NULL) OR "
            "(pass_number IS NOT NULL AND qr_code IS NOT NULL)",
            name="ck_visits_pass_pair",
        ),
        db.CheckConstraint(
            "number_of_guests >= 0 AND number_of_guests <= 10",
            name="ck_visits_guest_count",
        ),
        db.CheckConstraint("extension_count >= 0", name="ck_visits_extension_count"),
        # Composite index for per-visitor sweeps (blacklist cascade)
        db.Index("ix_visits_visitor_status", "visitor_id", "status"),
        db.Index("ix_visits_host_scheduled", "host_employee_id", "scheduled_date"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)

    # Parties
    visitor_id = db.Column(db.String(36), db.ForeignKey("visitors.id"), nullable=False, index=True)
    host_employee_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False, index=True)
    approved_by_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    status = db.Column(db.String(32), nullable=False, index=True)

    purpose = db.Column(db.String(32), nullable=False, default="OTHER")
    purpose_details = db.Column(db.Text, nullable=True)
    vehicle_number = db.Column(db.String(32), nullable=True)
    special_instructions = db.Column(db.Text, nullable=True)

    # Scheduling (UTC-naive)
    scheduled_date = db.Column(db.DateTime(timezone=True), nullable=False)
    scheduled_time_in = db.Column(db.DateTime(timezone=True), nullable=False)
    scheduled_time_out = db.Column(db.DateTime(timezone=True), nullable=False)
    actual_time_in = db.Column(db.DateTime(timezone=True), nullable=True)
    actual_time_out = db.Column(db.DateTime(timezone=True), nullable=True)

    extension_count = db.Column(db.Integer, nullable=False, default=0)
    last_extended_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Pass
    pass_number = db.Column(db.String(64), nullable=True, unique=True)
    qr_code = db.Column(db.Text, nullable=True)

    # Guest manifest: ordered list of {"name": str, "contact": str}
    number_of_guests = db.Column(db.Integer, nullable=False, default=0)
    guest_details = db.Column(db.JSON, nullable=False, default=list)

    # Provenance
    is_walk_in = db.Column(db.Boolean, nullable=False, default=False)
    walk_in_created_by = db.Column(db.String(36), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    visitor = db.relationship("Visitor", backref=db.backref("visits", lazy=True))
    host_employee = db.relationship("User", foreign_keys=[host_employee_id])
    approved_by = db.relationship("User", foreign_keys=[approved_by_id])

    def to_dict(self):
        return {
            "id": self.id,
            "visitor_id": self.visitor_id,
            "host_employee_id": self.host_employee_id,
            "approved_by_id": self.approved_by_id,
            "approved_at": to_utc_z(self.approved_at),
            "status": self.status,
            "purpose": self.purpose,
            "purpose_details": self.purpose_details,
            "vehicle_number": self.vehicle_number,
            "special_instructions": self.special_instructions,
            "scheduled_date": to_utc_z(self.scheduled_date),
            "scheduled_time_in": to_utc_z(self.scheduled_time_in),
            "scheduled_time_out": to_utc_z(self.scheduled_time_out),
            "actual_time_in": to_utc_z(self.actual_time_in),
            "actual_time_out": to_utc_z(self.actual_time_out),
            "extension_count": self.extension_count,
            "last_extended_at": to_utc_z(self.last_extended_at),
            "pass_number": self.pass_number,
            "qr_code": self.qr_code,
            "number_of_guests": self.number_of_guests,
            "guest_details": list(self.guest_details or []),
            "is_walk_in": self.is_walk_in,
            "walk_in_created_by": self.walk_in_created_by,
            "rejection_reason": self.rejection_reason,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
