"""
Shared pytest fixtures.

Every test runs against an in-memory SQLite database and an in-memory calendar
provider, so no Google, Microsoft, Postgres or Redis service is needed.
"""
import os

# Must be set before app modules read settings
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("ENCRYPTION_KEY", "test-encryption-key")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret")
os.environ.setdefault("FRONTEND_URL", "http://dashboard.test")

from datetime import datetime, timedelta, timezone
from typing import Dict, List

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.exceptions import CalendarProviderError
from app.models import (
    Base,
    CalendarConnection,
    CalendarProvider,
    User,
    UserRole,
)
from app.services.calendar.base import CalendarEvent, CalendarProviderAdapter, CreatedEvent
from app.services.calendar.registry import CalendarProviderRegistry
from app.utils.encryption import TokenCipher


class FakeCalendarAdapter(CalendarProviderAdapter):
    """In-memory provider keeping events per user"""

    provider = CalendarProvider.GOOGLE
    display_name = "Google Calendar"

    def __init__(self, db, cipher, oauth_configs=None, timeout_seconds=10.0):
        super().__init__(db, cipher, oauth_configs, timeout_seconds=timeout_seconds)
        self.events: Dict[str, Dict[str, CalendarEvent]] = {}
        self.fail_create = False
        self.fail_list = False
        self.fail_update = False
        self.fail_delete = False
        self.deleted: List[str] = []
        self._next_id = 1

    def add_event(self, user_id: str, event: CalendarEvent) -> CalendarEvent:
        self.events.setdefault(user_id, {})[event.id] = event
        return event

    async def get_auth_url(self, user_id: str) -> str:
        return f"https://accounts.example.test/auth?state={user_id}"

    async def handle_oauth_callback(self, code: str, user_id: str):
        return {"success": True}

    def _refresh_access_token(self, config, refresh_token):
        return {"access_token": "refreshed-access-token"}

    async def list_events(self, user_id: str, start: datetime, end: datetime) -> List[CalendarEvent]:
        if self.fail_list:
            raise CalendarProviderError("Google Calendar did not respond within 10s")
        return sorted(
            (
                event for event in self.events.get(user_id, {}).values()
                if event.start < end and event.end > start
            ),
            key=lambda event: event.start,
        )

    async def create_event(self, user_id, title, start, end, description=None,
                           attendee_email=None, location=None) -> CreatedEvent:
        if self.fail_create:
            raise RuntimeError("provider unavailable")
        event_id = f"evt-{self._next_id}"
        self._next_id += 1
        self.add_event(user_id, CalendarEvent(
            id=event_id,
            title=title,
            start=start,
            end=end,
            description=description,
            attendees=[attendee_email] if attendee_email else [],
        ))
        return CreatedEvent(id=event_id)

    async def update_event(self, user_id, event_id, title=None, start=None, end=None,
                           description=None) -> CreatedEvent:
        if self.fail_update:
            raise CalendarProviderError("Google Calendar API error (503)")
        event = self.events[user_id][event_id]
        if title is not None:
            event.title = title
        if start is not None:
            event.start = start
        if end is not None:
            event.end = end
        if description is not None:
            event.description = description
        return CreatedEvent(id=event_id)

    async def delete_event(self, user_id: str, event_id: str) -> bool:
        if self.fail_delete:
            raise CalendarProviderError("Google Calendar API error (503)")
        self.events.get(user_id, {}).pop(event_id, None)
        self.deleted.append(event_id)
        return True


class FakeProviderRegistry(CalendarProviderRegistry):
    """Registry whose Google adapter is the in-memory fake"""

    def __init__(self, db, cipher):
        super().__init__(db, cipher, timeout_seconds=5)
        self.fake = FakeCalendarAdapter(db, cipher, self.oauth_configs)
        self._adapters[CalendarProvider.GOOGLE] = self.fake


@pytest.fixture
def db_session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def cipher():
    return TokenCipher("test-encryption-key")


def _make_user(db, email: str, role: UserRole = UserRole.CLIENT) -> User:
    user = User(email=email, full_name=email.split("@")[0], role=role)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def user(db_session):
    return _make_user(db_session, "owner@clinic.test")


@pytest.fixture
def other_user(db_session):
    return _make_user(db_session, "someone@else.test")


@pytest.fixture
def admin_user(db_session):
    return _make_user(db_session, "admin@platform.test", role=UserRole.ADMIN)


def make_connection(db, cipher, user_id: str, provider=CalendarProvider.GOOGLE,
                    expires_in: timedelta = timedelta(hours=1),
                    is_active: bool = True) -> CalendarConnection:
    connection = CalendarConnection(
        user_id=user_id,
        provider=provider,
        is_active=is_active,
        access_token=cipher.encrypt("access-token"),
        refresh_token=cipher.encrypt("refresh-token"),
        token_expiry=datetime.now(timezone.utc) + expires_in,
        calendar_id="primary",
        email="owner@clinic.test",
    )
    db.add(connection)
    db.commit()
    db.refresh(connection)
    return connection


@pytest.fixture
def google_connection(db_session, cipher, user):
    return make_connection(db_session, cipher, user.id)


@pytest.fixture
def registry(db_session, cipher):
    return FakeProviderRegistry(db_session, cipher)


@pytest.fixture
def fake_calendar(registry) -> FakeCalendarAdapter:
    return registry.fake


def fixed_clock(instant: datetime):
    def clock() -> datetime:
        return instant
    return clock


@pytest.fixture
def now() -> datetime:
    return datetime(2025, 11, 1, tzinfo=timezone.utc)


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)
