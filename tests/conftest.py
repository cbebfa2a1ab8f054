"""Pytest configuration and shared fixtures.

Every test gets its own SQLite database file under ``tmp_path``. The
lifecycle controller and authoring service open their own sessions, so
fixtures hand them the session factory rather than a session.
"""

from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from ptw.core.authoring import PermitAuthoringService
from ptw.core.config import Settings
from ptw.core.lifecycle.controller import PermitLifecycleController
from ptw.core.lifecycle.states import UserRole
from ptw.core.security import create_access_token
from ptw.db.session import build_engine, build_session_factory, init_db

from tests.factories import create_user


class RecordingSink:
    """Notification sink that keeps every event it is given."""

    def __init__(self):
        self.events = []

    def send(self, event):
        self.events.append(event)

    def categories(self):
        return [e.category.value for e in self.events]

    def for_user(self, user_id):
        return [e for e in self.events if e.recipient_user_id == user_id]


class FailingSink:
    """Notification sink that always fails."""

    def __init__(self):
        self.attempts = 0

    def send(self, event):
        self.attempts += 1
        raise RuntimeError("notification backend unavailable")


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        database_url=f"sqlite:///{tmp_path / 'ptw.db'}",
        sqlite_busy_timeout=10.0,
        secret_key="test-secret-key",
        notification_webhook_url=None,
    )


@pytest.fixture
def db_engine(settings):
    engine = build_engine(settings.database_url, busy_timeout=settings.sqlite_busy_timeout)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return build_session_factory(db_engine)


@pytest.fixture
def db_session(session_factory):
    """Session for test setup; factories commit, so it never holds the write lock."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def read_db(session_factory):
    """Run ``fn(db)`` in a short-lived session and return its result."""

    def _read(fn):
        with session_factory() as db:
            return fn(db)

    return _read


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def controller(session_factory, sink):
    return PermitLifecycleController(session_factory, sink=sink)


@pytest.fixture
def authoring(session_factory, sink, settings):
    return PermitAuthoringService(session_factory, sink=sink, settings=settings)


# Users

@pytest.fixture
def requester(db_session):
    return create_user(db_session, role=UserRole.REQUESTER, full_name="Rita Requester")


@pytest.fixture
def other_requester(db_session):
    return create_user(db_session, role=UserRole.REQUESTER, full_name="Oscar Other")


@pytest.fixture
def area_manager(db_session):
    return create_user(db_session, role=UserRole.AREA_MANAGER, full_name="Amal Area")


@pytest.fixture
def safety_officer(db_session):
    return create_user(db_session, role=UserRole.SAFETY_OFFICER, full_name="Sam Safety")


@pytest.fixture
def site_leader(db_session):
    return create_user(db_session, role=UserRole.SITE_LEADER, full_name="Lee Leader")


@pytest.fixture
def admin(db_session):
    return create_user(db_session, role=UserRole.ADMIN, full_name="Ada Admin")


@pytest.fixture
def now():
    return datetime(2026, 3, 2, 8, 0, 0)


@pytest.fixture
def work_window(now):
    return now + timedelta(hours=1), now + timedelta(hours=9)


# API

@pytest.fixture
def app(settings, session_factory):
    from ptw.api.deps import get_session_factory
    from ptw.api.main import create_app
    from ptw.core.config import get_settings

    application = create_app(create_schema=False)
    application.dependency_overrides[get_session_factory] = lambda: session_factory
    application.dependency_overrides[get_settings] = lambda: settings
    return application


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def auth_headers(settings):
    """Build an Authorization header for a user."""

    def _headers(user):
        token = create_access_token(user.id, user.role, settings=settings)
        return {"Authorization": f"Bearer {token}"}

    return _headers
