import time
from datetime import date, datetime, timezone
from typing import Generator
from unittest.mock import Mock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from rooster.db.custom_types import new_uuid
from rooster.db.models import Base, EventLog, EventLogStatus, User
from rooster.services.events.registry import create_default_registry


# Test database setup
TEST_DATABASE_URL = "sqlite:///:memory:"

# 2025-01-15 14:00 UTC: 09:00 in New York, 14:00 in London, 23:00 in Tokyo
FIXED_NOW = datetime(2025, 1, 15, 14, 0, tzinfo=timezone.utc)


class FakeRedis:
    """In-process stand-in for the handful of Redis commands the lock uses."""

    def __init__(self):
        self._store = {}

    def _expire(self, key):
        entry = self._store.get(key)
        if entry and entry[1] is not None and entry[1] <= time.monotonic():
            del self._store[key]

    def set(self, key, value, nx=False, px=None):
        self._expire(key)
        if nx and key in self._store:
            return None
        expires_at = time.monotonic() + px / 1000 if px else None
        self._store[key] = (value, expires_at)
        return True

    def get(self, key):
        self._expire(key)
        entry = self._store.get(key)
        return entry[0] if entry else None

    def delete(self, *keys):
        removed = 0
        for key in keys:
            if self._store.pop(key, None) is not None:
                removed += 1
        return removed


@pytest.fixture
def test_engine():
    """Create a fresh in-memory database per test."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return sessionmaker(bind=test_engine, class_=Session, expire_on_commit=False)


@pytest.fixture
def db_session(session_factory) -> Generator[Session, None, None]:
    """Create a database session for each test."""
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def patch_sync_session(monkeypatch, session_factory):
    """
    Point a task module's get_sync_session at the test database.

    Usage: patch_sync_session("rooster.tasks.cron.event_recovery")
    """

    def _patch(module_path: str):
        def _get_sync_session():
            session = session_factory()
            try:
                yield session
            finally:
                session.close()

        monkeypatch.setattr(f"{module_path}.get_sync_session", _get_sync_session)

    return _patch


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def fixed_now():
    return FIXED_NOW


@pytest.fixture
def registry():
    return create_default_registry()


@pytest.fixture
def mock_celery_task():
    """Mock Celery task for testing retry behavior."""
    mock_task = Mock()
    mock_task.request.retries = 0
    mock_task.retry = Mock(side_effect=Exception("Retry called"))
    return mock_task


# Test data factories
@pytest.fixture
def make_user(db_session: Session):
    def _make_user(
        first_name: str = "Ada",
        last_name: str = "Lovelace",
        birthday: date = date(1990, 1, 15),
        timezone: str = "America/New_York",
        anniversary_date=None,
    ) -> User:
        user = User(
            id=new_uuid(),
            first_name=first_name,
            last_name=last_name,
            birthday=birthday,
            timezone=timezone,
            anniversary_date=anniversary_date,
        )
        db_session.add(user)
        db_session.commit()
        return user

    return _make_user


@pytest.fixture
def make_event_log(db_session: Session):
    def _make_event_log(
        user: User,
        event_type: str = "birthday",
        event_year: int = 2025,
        status: EventLogStatus = EventLogStatus.PENDING,
        retry_count: int = 0,
        metadata=None,
        created_at=None,
        updated_at=None,
    ) -> EventLog:
        event_log = EventLog(
            id=new_uuid(),
            user_id=user.id,
            event_type=event_type,
            event_year=event_year,
            status=status,
            retry_count=retry_count,
            event_metadata=metadata,
        )
        if created_at is not None:
            event_log.created_at = created_at
        if updated_at is not None:
            event_log.updated_at = updated_at
        db_session.add(event_log)
        db_session.commit()
        return event_log

    return _make_event_log


@pytest.fixture
def birthday_user(make_user) -> User:
    """New York user whose birthday is 15 January."""
    return make_user()
