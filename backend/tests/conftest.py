"""
Pytest fixtures for VMS backend tests.

Provides test database setup, a recording dispatcher, user/visitor/visit
factories, and test client.
"""

from datetime import timedelta

import pytest
from vms import create_app
from vms.extensions import db
from vms.models import User, Visit, Visitor
from vms.models._ids import new_id
from vms.services import pass_codec
from vms.services.visit_state_machine import Actor, PassSettings, VisitStateMachine
from vms.time_utils import utcnow


TEST_QR_SECRET = "test-qr-secret"


class RecordingDispatcher:
    """Fake effect dispatcher: records every notify() call."""

    def __init__(self):
        self.calls = []
        self.fail_kinds = set()

    def notify(self, kind, payload):
        if kind in self.fail_kinds:
            raise RuntimeError(f"dispatcher down for {kind}")
        self.calls.append((kind, payload))

    def kinds(self):
        return [kind for kind, _ in self.calls]


class FrozenClock:
    """Callable clock the state machine can be driven with."""

    def __init__(self, now=None):
        self.now = now or utcnow().replace(microsecond=0)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'PASS_QR_SECRET': TEST_QR_SECRET,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def dispatcher(app):
    """Install a recording dispatcher for the duration of a test."""
    original = app.extensions["vms.dispatcher"]
    recorder = RecordingDispatcher()
    app.extensions["vms.dispatcher"] = recorder
    yield recorder
    app.extensions["vms.dispatcher"] = original


@pytest.fixture(scope='function')
def clock():
    return FrozenClock()


@pytest.fixture(scope='function')
def machine(app, dispatcher, clock):
    """State machine wired to the recording dispatcher and a frozen clock."""
    return VisitStateMachine(
        dispatcher,
        pass_settings=PassSettings.from_config(app.config),
        clock=clock,
    )


def _make_user(db_session, email, role, first_name, last_name="Tester"):
    user = User(
        email=email,
        first_name=first_name,
        last_name=last_name,
        department="Operations",
        role=role,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def host(db_session):
    """Host employee who invites visitors."""
    return _make_user(db_session, "host@corp.test", "HOST_EMPLOYEE", "Hana")


@pytest.fixture(scope='function')
def approver(db_session):
    return _make_user(db_session, "approver@corp.test", "PROCESS_ADMIN", "Priya")


@pytest.fixture(scope='function')
def guard(db_session):
    return _make_user(db_session, "guard@corp.test", "SECURITY_GUARD", "Gil")


@pytest.fixture(scope='function')
def security_manager(db_session):
    return _make_user(db_session, "secmgr@corp.test", "SECURITY_MANAGER", "Sam")


@pytest.fixture(scope='function')
def admin(db_session):
    return _make_user(db_session, "admin@corp.test", "ADMIN", "Ada")


@pytest.fixture(scope='function')
def visitor(db_session):
    visitor = Visitor(
        email="visitor@example.com",
        first_name="Vera",
        last_name="Visitor",
        company="Example Ltd",
    )
    db_session.add(visitor)
    db_session.commit()
    return visitor


@pytest.fixture(scope='function')
def make_visit(app, db_session, host, visitor):
    """
    Factory inserting a visit directly in the requested status.

    APPROVED and later statuses get a real pass number and signed token.
    """
    def _make(status="PENDING_APPROVAL", *, visitor_id=None, issued_at=None, **overrides):
        now = utcnow().replace(microsecond=0)
        fields = dict(
            visitor_id=visitor_id or visitor.id,
            host_employee_id=host.id,
            status=status,
            purpose="MEETING",
            scheduled_date=now.replace(hour=0, minute=0, second=0),
            scheduled_time_in=now,
            scheduled_time_out=now + timedelta(hours=2),
            number_of_guests=0,
            guest_details=[],
        )
        if status in ("APPROVED", "CHECKED_IN", "CHECKED_OUT"):
            fields["pass_number"] = pass_codec.generate_pass_number()
        if status in ("CHECKED_IN", "CHECKED_OUT"):
            fields["actual_time_in"] = now
        if status == "CHECKED_OUT":
            fields["actual_time_out"] = now + timedelta(hours=1)
        fields.update(overrides)
        fields.setdefault("id", new_id())
        if fields.get("pass_number") and not fields.get("qr_code"):
            fields["qr_code"] = pass_codec.issue_token(
                fields["id"],
                fields["pass_number"],
                secret=app.config["PASS_QR_SECRET"],
                now=issued_at or now,
            ).token

        visit = Visit(**fields)
        db_session.add(visit)
        db_session.commit()
        return visit

    return _make


@pytest.fixture(scope='function')
def as_actor():
    """Turn a User row into the Actor the auth collaborator would supply."""
    def _actor(user):
        return Actor(actor_id=user.id, role=user.role)
    return _actor


@pytest.fixture(scope='function')
def headers_for():
    """Identity headers the gateway forwards for a user."""
    def _headers(user):
        return {'X-Actor-Id': user.id, 'X-Actor-Role': user.role}
    return _headers
