"""
Shared pytest fixtures for the Client Engagement Portal test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - notifications: RecordingTransport behind a real NotificationDispatcher
    - identity_provider: FakeIdentityProvider installed as the Phase 2 collaborator
    - portal_client / delivery: pre-created records
"""

import threading

import pytest

from portal import create_app
from portal.core.exceptions import DependencyFailure
from portal.models import db as _db
from portal.models.client import Client
from portal.services.notification import NotificationDispatcher


# ── Fake collaborators ───────────────────────────────────────────────────


class RecordingTransport:
    """Notification transport that keeps every event it is given.

    Set ``fail_with`` to an exception to simulate a dispatcher outage, or
    ``block`` to a threading.Event to simulate a send that never returns
    in time.
    """

    def __init__(self):
        self.events = []
        self.fail_with = None
        self.block = None
        self._lock = threading.Lock()

    def send(self, event):
        if self.block is not None:
            self.block.wait(timeout=5)
        if self.fail_with is not None:
            raise self.fail_with
        with self._lock:
            self.events.append(event)

    def types(self):
        return [e["event_type"] for e in self.events]


class FakeIdentityProvider:
    """In-memory identity provider with a switchable outage."""

    def __init__(self, identities=()):
        self.identities = set(identities)
        self.calls = []
        self.outage = False

    def delete_identity(self, identity_id):
        self.calls.append(identity_id)
        if self.outage:
            raise DependencyFailure("identity_provider", "simulated provider outage",
                                    context={"identity_id": identity_id})
        if identity_id in self.identities:
            self.identities.discard(identity_id)
            return "deleted"
        return "not_found"


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture(autouse=True)
def _collaborators(app):
    """Install fresh fake collaborators for every test and restore the originals."""
    original = {
        key: app.extensions[key] for key in ("notifications", "identity_provider")
    }
    transport = RecordingTransport()
    dispatcher = NotificationDispatcher(transport, timeout=2.0)
    provider = FakeIdentityProvider()
    app.extensions["notifications"] = dispatcher
    app.extensions["identity_provider"] = provider
    yield {"transport": transport, "identity_provider": provider}
    dispatcher.shutdown()
    app.extensions.update(original)


@pytest.fixture()
def notifications(_collaborators):
    """The RecordingTransport behind the active dispatcher."""
    return _collaborators["transport"]


@pytest.fixture()
def identity_provider(_collaborators):
    return _collaborators["identity_provider"]


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def portal_client():
    """A committed Client with no deliveries."""
    c = Client(name="Dana Reyes", email="dana@example.com", service_type="resume_pro")
    _db.session.add(c)
    _db.session.commit()
    return c


@pytest.fixture()
def delivery(portal_client):
    """A 'Resume' delivery in ``delivered`` for ``portal_client``."""
    from portal.services.delivery_lifecycle import submit_for_review

    result = submit_for_review(
        portal_client.id,
        document_title="Resume",
        file_ref="deliveries/dana/resume-v1.pdf",
        document_type="resume",
        file_size=48213,
    )
    from portal.models.delivery import Delivery
    return _db.session.get(Delivery, result["delivery"]["id"])
