"""
Visit record store tests.

Verifies:
- conditional_update applies the patch only while the expected status holds
- A lost guard surfaces as StoreConflict carrying the current status
- Extra pinned fields take part in the WHERE clause
- Duplicate pass numbers surface as PassNumberConflict; other integrity errors propagate
- run_with_retry reloads and retries exactly once on StoreConflict
"""

import pytest
from sqlalchemy.exc import IntegrityError

from vms.errors import NotFound, PassNumberConflict, StoreConflict
from vms.extensions import db
from vms.models import ActivityLog, Visit
from vms.services.concurrency import run_with_retry
from vms.services.visit_store import VisitStore, _is_pass_number_violation


@pytest.fixture
def store():
    return VisitStore()


class TestLoad:
    def test_load_missing_visit(self, store, db_session):
        with pytest.raises(NotFound) as exc:
            store.load_visit("does-not-exist")
        assert exc.value.http_status == 404
        assert exc.value.to_dict() == {
            "error": "NOT_FOUND",
            "message": "Visit does-not-exist not found",
            "visit_id": "does-not-exist",
        }

    def test_find_visitor_by_email_is_case_insensitive(self, store, visitor):
        assert store.find_visitor_by_email("  VISITOR@Example.com ").id == visitor.id
        assert store.find_visitor_by_email("nobody@example.com") is None


class TestConditionalUpdate:
    def test_applies_patch(self, store, make_visit):
        visit = make_visit("APPROVED")
        updated = store.conditional_update(visit.id, "APPROVED", {"status": "CHECKED_IN"})
        store.commit()

        assert updated.status == "CHECKED_IN"
        assert db.session.get(Visit, visit.id, populate_existing=True).status == "CHECKED_IN"

    def test_accepts_status_set(self, store, make_visit):
        visit = make_visit("PENDING_DETAILS")
        updated = store.conditional_update(visit.id, {"INVITED", "PENDING_DETAILS"}, {"status": "CANCELLED"})
        assert updated.status == "CANCELLED"

    def test_conflict_when_status_moved(self, store, make_visit):
        visit = make_visit("CHECKED_IN")

        with pytest.raises(StoreConflict) as exc:
            store.conditional_update(visit.id, "APPROVED", {"status": "CHECKED_IN"})
        assert exc.value.details["current_status"] == "CHECKED_IN"
        assert exc.value.kind == "STORE_CONFLICT"

    def test_not_found(self, store, db_session):
        with pytest.raises(NotFound):
            store.conditional_update("missing", "APPROVED", {"status": "CHECKED_IN"})

    def test_pinned_fields(self, store, make_visit):
        visit = make_visit("CHECKED_IN", extension_count=2)

        with pytest.raises(StoreConflict):
            store.conditional_update(
                visit.id,
                "CHECKED_IN",
                {"extension_count": Visit.extension_count + 1},
                expected_fields={"extension_count": 1},
            )

        updated = store.conditional_update(
            visit.id,
            "CHECKED_IN",
            {"extension_count": Visit.extension_count + 1},
            expected_fields={"extension_count": 2},
        )
        assert updated.extension_count == 3

    def test_duplicate_pass_number(self, store, make_visit):
        taken = make_visit("APPROVED")
        visit = make_visit("PENDING_APPROVAL")

        with pytest.raises(PassNumberConflict) as exc:
            store.conditional_update(
                visit.id,
                "PENDING_APPROVAL",
                {"status": "APPROVED", "pass_number": taken.pass_number, "qr_code": "{}"},
            )
        assert isinstance(exc.value, StoreConflict)
        assert db.session.get(Visit, visit.id, populate_existing=True).status == "PENDING_APPROVAL"

    def test_other_integrity_errors_propagate(self, store, make_visit):
        visit = make_visit("PENDING_APPROVAL")

        # A pass number without its token breaks ck_visits_pass_pair, not uniqueness
        with pytest.raises(IntegrityError) as exc:
            store.conditional_update(
                visit.id,
                "PENDING_APPROVAL",
                {"status": "APPROVED", "pass_number": "VMS-TEST-0001", "qr_code": None},
            )
        assert not isinstance(exc.value, PassNumberConflict)
        assert db.session.get(Visit, visit.id, populate_existing=True).status == "PENDING_APPROVAL"

    @pytest.mark.parametrize(
        "driver_message, expected",
        [
            ("UNIQUE constraint failed: visits.pass_number", True),
            ('duplicate key value violates unique constraint "visits_pass_number_key"', True),
            ("FOREIGN KEY constraint failed", False),
            ("CHECK constraint failed: ck_visits_pass_pair", False),
            ("NOT NULL constraint failed: visits.visitor_id", False),
        ],
    )
    def test_pass_number_violation_classification(self, driver_message, expected):
        exc = IntegrityError("UPDATE visits SET ...", {}, Exception(driver_message))
        assert _is_pass_number_violation(exc) is expected


class TestBulkUpdate:
    def test_updates_and_audits_each_visit(self, store, make_visit, visitor):
        visits = [make_visit("INVITED"), make_visit("APPROVED"), make_visit("CHECKED_OUT")]

        count = store.bulk_update_by_visitor_and_statuses(
            visitor.id,
            ["INVITED", "APPROVED"],
            {"status": "CANCELLED"},
            activity={"action": "VISIT_CANCELLED_BLACKLIST", "description": "test"},
        )

        assert count == 2
        statuses = [db.session.get(Visit, v.id, populate_existing=True).status for v in visits]
        assert statuses == ["CANCELLED", "CANCELLED", "CHECKED_OUT"]
        assert db.session.query(ActivityLog).filter_by(action="VISIT_CANCELLED_BLACKLIST").count() == 2


class TestRunWithRetry:
    def test_retries_once_after_conflict(self, db_session):
        attempts = []

        def _op():
            attempts.append(1)
            if len(attempts) == 1:
                raise StoreConflict("lost the race", current_status="CHECKED_IN")
            return "ok"

        assert run_with_retry(_op, backoff_base=0) == "ok"
        assert len(attempts) == 2

    def test_second_conflict_surfaces(self, db_session):
        def _op():
            raise StoreConflict("lost the race again")

        with pytest.raises(StoreConflict):
            run_with_retry(_op, backoff_base=0)

    def test_other_errors_not_retried(self, db_session):
        attempts = []

        def _op():
            attempts.append(1)
            raise NotFound("gone")

        with pytest.raises(NotFound):
            run_with_retry(_op, backoff_base=0)
        assert len(attempts) == 1
