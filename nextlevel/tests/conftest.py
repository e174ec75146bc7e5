"""
Pytest configuration and fixtures for backend tests.

Provides shared fixtures for:
- Test database sessions
- User, notification and push subscription factories
- Connection registry and recording live senders
- FastAPI test client with signed session cookies
"""

import json
import os
from base64 import b64encode

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment variables before importing app modules
os.environ['NEXTLEVEL_DB_URL'] = 'sqlite:///:memory:'
os.environ['SESSION_SECRET_KEY'] = 'test-session-secret'
os.environ['RATE_LIMIT_ENABLED'] = 'false'
os.environ['VAPID_PUBLIC_KEY'] = ''
os.environ['VAPID_PRIVATE_KEY'] = ''
os.environ['VAPID_SUBJECT'] = ''

from itsdangerous import TimestampSigner

from nextlevel.src.models import (
    Base,
    Notification,
    PushSubscription,
    User,
    UserRole,
    UserSettings,
)
from nextlevel.src.utils.connection_registry import ChannelKind, ConnectionRegistry, LiveSender


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture(scope='function')
def test_db_engine():
    """Create an in-memory SQLite database engine for testing."""
    from sqlalchemy import event

    engine = create_engine(
        'sqlite:///:memory:',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )

    # Enable foreign key constraints for SQLite
    # This must be set for each connection
    def _fk_pragma_on_connect(dbapi_con, con_record):
        dbapi_con.execute('pragma foreign_keys=ON')

    event.listen(engine, 'connect', _fk_pragma_on_connect)

    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope='function')
def test_session_factory(test_db_engine):
    """sessionmaker bound to the test engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=test_db_engine)


@pytest.fixture(scope='function')
def test_db_session(test_session_factory):
    """Create a test database session."""
    session = test_session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


# ============================================================================
# Sample Data Factories
# ============================================================================

@pytest.fixture
def create_user(test_db_session):
    """Factory for creating users (with optional delivery preferences)."""
    _counter = [0]

    def _create(
        role=UserRole.CLIENT,
        name=None,
        is_active=True,
        push_notifications=None,
        message_notifications=None,
    ):
        _counter[0] += 1
        user = User(
            email=f"user{_counter[0]}@nextlevel.test",
            name=name or f"User {_counter[0]}",
            role=role,
            is_active=is_active,
        )
        test_db_session.add(user)
        test_db_session.commit()

        if push_notifications is not None or message_notifications is not None:
            settings = UserSettings(
                user_id=user.id,
                push_notifications=True if push_notifications is None else push_notifications,
                message_notifications=True if message_notifications is None else message_notifications,
            )
            test_db_session.add(settings)
            test_db_session.commit()

        test_db_session.refresh(user)
        return user
    return _create


@pytest.fixture
def test_coach(create_user):
    return create_user(role=UserRole.COACH, name="Coach Carter")


@pytest.fixture
def test_client_user(create_user):
    return create_user(role=UserRole.CLIENT, name="Alex Athlete")


@pytest.fixture
def create_notification(test_db_session):
    """Factory for creating notification rows directly."""
    def _create(
        user,
        notification_type="SYSTEM",
        title="Test Notification",
        message="Test message",
        data=None,
        is_read=False,
        read_at=None,
        created_at=None,
    ):
        notification = Notification(
            user_id=user.id,
            type=notification_type,
            title=title,
            message=message,
            data=data or {},
            is_read=is_read,
            read_at=read_at,
        )
        if created_at is not None:
            notification.created_at = created_at
        test_db_session.add(notification)
        test_db_session.commit()
        test_db_session.refresh(notification)
        return notification
    return _create


@pytest.fixture
def create_subscription(test_db_session):
    """Factory for creating push subscriptions."""
    _counter = [0]

    def _create(user, endpoint=None):
        _counter[0] += 1
        sub = PushSubscription(
            user_id=user.id,
            endpoint=endpoint or f"https://push.example.com/sub/{_counter[0]}",
            p256dh_key="test-p256dh-key",
            auth_key="test-auth-key",
            user_agent="Test Browser",
        )
        test_db_session.add(sub)
        test_db_session.commit()
        test_db_session.refresh(sub)
        return sub
    return _create


# ============================================================================
# Live Channel Fixtures
# ============================================================================

class RecordingSender(LiveSender):
    """Live sender that records every frame; optionally fails on send."""

    def __init__(self, kind="websocket", fail=False):
        super().__init__()
        self.kind = ChannelKind(kind)
        self.fail = fail
        self.sent = []

    async def send(self, text):
        if self.fail:
            raise ConnectionError("peer went away")
        self.sent.append(json.loads(text))

    async def close(self):
        self.closed = True


@pytest.fixture
def registry():
    """Fresh connection registry per test."""
    return ConnectionRegistry()


@pytest.fixture
def recording_sender():
    """Factory for RecordingSender instances."""
    def _create(kind="websocket", fail=False):
        return RecordingSender(kind=kind, fail=fail)
    return _create


# ============================================================================
# FastAPI Test Client Fixture
# ============================================================================

def session_cookie_for(user) -> str:
    """Signed Starlette session cookie value logging ``user`` in."""
    from nextlevel.src.config.settings import get_settings

    signer = TimestampSigner(str(get_settings().session_secret_key))
    data = b64encode(json.dumps({"user_guid": user.guid}).encode("utf-8"))
    return signer.sign(data).decode("utf-8")


@pytest.fixture
def auth_headers():
    """Factory for request headers carrying a user's session cookie."""
    from nextlevel.src.config.settings import get_settings

    def _create(user):
        cookie_name = get_settings().session_cookie_name
        return {"Cookie": f"{cookie_name}={session_cookie_for(user)}"}
    return _create


@pytest.fixture
def test_client(test_db_session, test_session_factory):
    """Create a test client for FastAPI application."""
    from fastapi.testclient import TestClient
    from nextlevel.src.main import app

    # Override dependencies
    def get_test_db():
        try:
            yield test_db_session
        finally:
            pass

    def get_test_session_factory():
        return test_session_factory

    from nextlevel.src.db.database import get_db
    from nextlevel.src.middleware.auth import get_session_factory

    app.dependency_overrides[get_db] = get_test_db
    app.dependency_overrides[get_session_factory] = get_test_session_factory

    with TestClient(app) as client:
        yield client

    # Clear overrides
    app.dependency_overrides.clear()


@pytest.fixture
def app_registry(test_client):
    """The connection registry owned by the running test application."""
    return test_client.app.state.connection_registry
