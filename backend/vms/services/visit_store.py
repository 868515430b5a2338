# Overview: Visit record store; loads rows and applies conditional (compare-and-set) updates.

"""
Visit Record Store

WHY: Two gate scans or two approvers can hit the same visit at once. A
read-then-write would let both pass their status guard and, for approvals,
mint two pass numbers. Every state change here is a single conditional
UPDATE whose WHERE clause re-checks the expected status:

    UPDATE visits SET ... WHERE id = :id AND status IN (:expected)

Zero rows affected means the guard no longer holds: the row is reloaded to
tell NotFound from StoreConflict. The statement runs inside the session's
transaction; the caller adds audit rows and commits once.

The store knows nothing about transitions or roles. It only owns atomicity.
"""

from __future__ import annotations

from collections.abc import Iterable

from flask import current_app
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..constants import REQUEST_PENDING
from ..models import ActivityLog, User, Visit, Visitor, VisitorRequest
from ..errors import NotFound, PassNumberConflict, RequestAlreadyProcessed, StoreConflict
from vms.time_utils import utcnow


def _is_pass_number_violation(exc: IntegrityError) -> bool:
    """True when the driver reports the pass_number unique constraint.

    SQLite: "UNIQUE constraint failed: visits.pass_number"
    PostgreSQL: duplicate key value violates unique constraint "visits_pass_number_key"
    """
    message = str(exc.orig).lower()
    return "pass_number" in message and ("unique" in message or "duplicate" in message)


class VisitStore:
    """SQLAlchemy-backed store bound to the Flask-SQLAlchemy session."""

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def load_visit(self, visit_id: str) -> Visit:
        visit = db.session.get(Visit, visit_id, populate_existing=True)
        if visit is None:
            raise NotFound(f"Visit {visit_id} not found", visit_id=visit_id)
        return visit

    def load_visitor(self, visitor_id: str) -> Visitor:
        visitor = db.session.get(Visitor, visitor_id, populate_existing=True)
        if visitor is None:
            raise NotFound(f"Visitor {visitor_id} not found", visitor_id=visitor_id)
        return visitor

    def find_visitor_by_email(self, email: str) -> Visitor | None:
        return db.session.execute(
            select(Visitor).where(Visitor.email == email.strip().lower())
        ).scalar_one_or_none()

    def load_user(self, user_id: str) -> User:
        user = db.session.get(User, user_id)
        if user is None:
            raise NotFound(f"User {user_id} not found", user_id=user_id)
        return user

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def add(self, row):
        db.session.add(row)
        db.session.flush()
        return row

    def conditional_update(
        self,
        visit_id: str,
        expected_status: str | Iterable[str],
        patch: dict,
        *,
        expected_fields: dict | None = None,
    ) -> Visit:
        """
        Apply patch only if the visit is still in expected_status.

        Args:
            visit_id: Visit to update
            expected_status: Status (or statuses) the caller's guard observed
            patch: Column -> value; values may be SQL expressions
            expected_fields: Extra column == value predicates pinned in the
                same WHERE clause (e.g. extension_count for extensions)

        Returns:
            The freshly reloaded visit

        Raises:
            NotFound: the visit does not exist
            StoreConflict: the row no longer matches the predicates
            PassNumberConflict: the patch's pass_number is already taken
        """
        stmt = update(Visit).where(Visit.id == visit_id)
        if isinstance(expected_status, str):
            stmt = stmt.where(Visit.status == expected_status)
        else:
            stmt = stmt.where(Visit.status.in_(list(expected_status)))
        for column, value in (expected_fields or {}).items():
            stmt = stmt.where(getattr(Visit, column) == value)

        values = dict(patch)
        values.setdefault("updated_at", utcnow())
        stmt = stmt.values(**values).execution_options(synchronize_session=False)

        try:
            result = db.session.execute(stmt)
        except IntegrityError as exc:
            db.session.rollback()
            if "pass_number" in patch and _is_pass_number_violation(exc):
                raise PassNumberConflict(
                    f"Pass number {patch['pass_number']} already issued",
                    visit_id=visit_id,
                ) from exc
            raise

        if result.rowcount == 0:
            current = db.session.get(Visit, visit_id, populate_existing=True)
            if current is None:
                raise NotFound(f"Visit {visit_id} not found", visit_id=visit_id)
            raise StoreConflict(
                f"Visit {visit_id} changed concurrently (status is now {current.status})",
                visit_id=visit_id,
                current_status=current.status,
            )

        return self.load_visit(visit_id)

    def bulk_update_by_visitor_and_statuses(
        self,
        visitor_id: str,
        from_statuses: Iterable[str],
        patch: dict,
        *,
        activity: dict | None = None,
    ) -> int:
        """
        Apply patch to each of the visitor's visits currently in from_statuses.

        No cross-visit atomicity: each visit is updated and committed on its
        own. A visit that left from_statuses in the meantime, or whose update
        fails, is logged and skipped.

        Returns:
            Number of visits updated
        """
        statuses = list(from_statuses)
        visit_ids = db.session.execute(
            select(Visit.id).where(
                Visit.visitor_id == visitor_id,
                Visit.status.in_(statuses),
            )
        ).scalars().all()

        updated = 0
        for visit_id in visit_ids:
            try:
                self.conditional_update(visit_id, statuses, patch)
                if activity:
                    self.record_activity(visit_id=visit_id, visitor_id=visitor_id, **activity)
                self.commit()
                updated += 1
            except StoreConflict as exc:
                db.session.rollback()
                current_app.logger.warning(
                    "Skipped visit %s during bulk update: %s", visit_id, exc.message
                )
            except SQLAlchemyError:
                db.session.rollback()
                current_app.logger.exception("Failed to bulk-update visit %s", visit_id)
        return updated

    # -------------------------------------------------------------------------
    # Visitor action requests
    # -------------------------------------------------------------------------

    def load_visitor_request(self, request_id: str) -> VisitorRequest:
        request = db.session.get(VisitorRequest, request_id, populate_existing=True)
        if request is None:
            raise NotFound(f"Request {request_id} not found", request_id=request_id)
        return request

    def pending_visitor_requests(self) -> list[VisitorRequest]:
        return list(db.session.execute(
            select(VisitorRequest)
            .where(VisitorRequest.status == REQUEST_PENDING)
            .order_by(VisitorRequest.created_at.desc(), VisitorRequest.id)
        ).scalars())

    def decide_visitor_request(self, request_id: str, status: str, processed_by_id: str | None) -> VisitorRequest:
        """
        Move a request out of PENDING with one conditional UPDATE.

        Raises:
            NotFound: the request does not exist
            RequestAlreadyProcessed: another decision got there first
        """
        result = db.session.execute(
            update(VisitorRequest)
            .where(VisitorRequest.id == request_id, VisitorRequest.status == REQUEST_PENDING)
            .values(status=status, processed_by_id=processed_by_id, processed_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            current = self.load_visitor_request(request_id)
            raise RequestAlreadyProcessed(
                "Request already processed", request_id=request_id, status=current.status
            )
        return self.load_visitor_request(request_id)

    def record_activity(
        self,
        *,
        action: str,
        actor_id: str | None = None,
        visit_id: str | None = None,
        visitor_id: str | None = None,
        description: str | None = None,
        details: dict | None = None,
    ) -> ActivityLog:
        entry = ActivityLog(
            actor_id=actor_id,
            visit_id=visit_id,
            visitor_id=visitor_id,
            action=action,
            description=description,
            details=details,
        )
        db.session.add(entry)
        return entry

    def commit(self) -> None:
        db.session.commit()

    def rollback(self) -> None:
        db.session.rollback()
