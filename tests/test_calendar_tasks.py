from unittest.mock import AsyncMock, patch

import pytest

from app.core.exceptions import CalendarAuthError
from app.models import CalendarProvider
from app.tasks import calendar_tasks
from tests.conftest import make_connection


@pytest.fixture
def task_session(db_session):
    with patch.object(calendar_tasks, "SessionLocal", return_value=db_session):
        yield db_session


class TestSyncAllActiveCalendars:

    def test_queues_one_task_per_connected_user(self, task_session, cipher, user, other_user, admin_user):
        make_connection(task_session, cipher, user.id)
        make_connection(task_session, cipher, user.id, provider=CalendarProvider.OUTLOOK)
        make_connection(task_session, cipher, other_user.id, is_active=False)
        user_id = user.id

        with patch.object(calendar_tasks.sync_user_calendars, "delay") as delay:
            result = calendar_tasks.sync_all_active_calendars()

        assert result == {"queued": 1}
        delay.assert_called_once_with(user_id)


class TestSyncUserCalendars:

    def test_reports_counts(self, task_session, user):
        with patch.object(
            calendar_tasks.CalendarSyncService,
            "sync_all_connections",
            new=AsyncMock(return_value={"synced": 3, "imported": 1, "cancelled": 0}),
        ):
            result = calendar_tasks.sync_user_calendars(user.id)

        assert result == {"status": "success", "synced": 3, "imported": 1, "cancelled": 0}

    def test_revoked_credentials_are_not_retried(self, task_session, user):
        with patch.object(
            calendar_tasks.CalendarSyncService,
            "sync_all_connections",
            new=AsyncMock(side_effect=CalendarAuthError("Failed to refresh Google Calendar token. Please reconnect.")),
        ):
            result = calendar_tasks.sync_user_calendars(user.id)

        assert result["status"] == "failed"
        assert "Please reconnect" in result["reason"]
