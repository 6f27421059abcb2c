from datetime import datetime, timezone

import pytest

from app.models import Appointment, AppointmentStatus, CalendarConnection, CalendarProvider
from app.services.calendar.base import CalendarEvent
from app.services.calendar.sync_service import CalendarSyncService, extract_phone

NOW = datetime(2025, 11, 1, tzinfo=timezone.utc)


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def linked_appointment(db, user_id, event_id, start, status=AppointmentStatus.SCHEDULED):
    appointment = Appointment(
        booking_reference=f"BK-2025-{db.query(Appointment).count() + 500001:06d}",
        user_id=user_id,
        customer_name="Jane Doe",
        customer_phone="+61400000000",
        title="Consultation",
        start_time=start,
        end_time=start.replace(hour=start.hour + 1),
        status=status,
        provider=CalendarProvider.GOOGLE,
        external_event_id=event_id,
    )
    db.add(appointment)
    db.commit()
    return appointment


@pytest.fixture
def sync_service(db_session, registry):
    return CalendarSyncService(db_session, registry, window_months=3)


class TestExtractPhone:

    def test_reads_phone_line(self):
        assert extract_phone("Appointment with Jane\nPhone: +61 400 000 000\nEmail: j@x.com") == "+61 400 000 000"

    def test_missing(self):
        assert extract_phone("No contact details") is None
        assert extract_phone(None) is None


class TestSyncCalendarToAppointments:

    @pytest.mark.asyncio
    async def test_imports_new_timed_events(self, sync_service, db_session, user, google_connection, fake_calendar):
        fake_calendar.add_event(user.id, CalendarEvent(
            id="g-1",
            title="Walk-in booking",
            start=utc(2025, 11, 10, 1),
            end=utc(2025, 11, 10, 2),
            description="Phone: 0400 111 222",
            attendees=["walkin@example.com"],
        ))

        result = await sync_service.sync_calendar_to_appointments(user.id, CalendarProvider.GOOGLE, now=NOW)

        assert result == {"synced": 1, "imported": 1, "cancelled": 0}
        imported = db_session.query(Appointment).filter(Appointment.external_event_id == "g-1").one()
        assert imported.status == AppointmentStatus.CONFIRMED
        assert imported.customer_name == "Walk-in booking"
        assert imported.customer_phone == "0400 111 222"
        assert imported.customer_email == "walkin@example.com"
        assert imported.provider == CalendarProvider.GOOGLE

    @pytest.mark.asyncio
    async def test_untitled_event_gets_placeholder_values(self, sync_service, db_session, user, google_connection,
                                                          fake_calendar):
        fake_calendar.add_event(user.id, CalendarEvent(
            id="g-2", title=None, start=utc(2025, 11, 10, 1), end=utc(2025, 11, 10, 2)
        ))

        await sync_service.sync_calendar_to_appointments(user.id, CalendarProvider.GOOGLE, now=NOW)

        imported = db_session.query(Appointment).filter(Appointment.external_event_id == "g-2").one()
        assert imported.customer_name == "Google Calendar Event"
        assert imported.customer_phone == "N/A"
        assert imported.title == "Imported Event"

    @pytest.mark.asyncio
    async def test_skips_all_day_events(self, sync_service, db_session, user, google_connection, fake_calendar):
        fake_calendar.add_event(user.id, CalendarEvent(
            id="holiday", title="Public holiday", start=utc(2025, 11, 10), end=utc(2025, 11, 11), all_day=True
        ))

        result = await sync_service.sync_calendar_to_appointments(user.id, CalendarProvider.GOOGLE, now=NOW)

        assert result["imported"] == 0
        assert db_session.query(Appointment).count() == 0

    @pytest.mark.asyncio
    async def test_cancels_appointments_whose_event_was_deleted(self, sync_service, db_session, user,
                                                                google_connection):
        appointment = linked_appointment(db_session, user.id, "gone", utc(2025, 11, 20, 1))

        result = await sync_service.sync_calendar_to_appointments(user.id, CalendarProvider.GOOGLE, now=NOW)

        assert result["cancelled"] == 1
        db_session.refresh(appointment)
        assert appointment.status == AppointmentStatus.CANCELLED
        assert appointment.cancellation_reason == "Deleted from Google Calendar"

    @pytest.mark.asyncio
    async def test_leaves_appointments_outside_the_window(self, sync_service, db_session, user, google_connection):
        appointment = linked_appointment(db_session, user.id, "far-future", utc(2026, 6, 1, 1))

        result = await sync_service.sync_calendar_to_appointments(user.id, CalendarProvider.GOOGLE, now=NOW)

        assert result["cancelled"] == 0
        db_session.refresh(appointment)
        assert appointment.status == AppointmentStatus.SCHEDULED

    @pytest.mark.asyncio
    async def test_appointment_starting_at_window_end_is_kept(self, sync_service, db_session, user,
                                                              google_connection):
        appointment = linked_appointment(db_session, user.id, "edge", utc(2026, 2, 1))

        result = await sync_service.sync_calendar_to_appointments(user.id, CalendarProvider.GOOGLE, now=NOW)

        assert result == {"synced": 0, "imported": 0, "cancelled": 0}
        db_session.refresh(appointment)
        assert appointment.status == AppointmentStatus.SCHEDULED

    @pytest.mark.asyncio
    async def test_synced_counts_checked_appointments_not_events(self, sync_service, db_session, user,
                                                                 google_connection, fake_calendar):
        for event_id, day in (("g-1", 10), ("g-2", 11), ("g-3", 12)):
            fake_calendar.add_event(user.id, CalendarEvent(
                id=event_id, title="Booking", start=utc(2025, 11, day, 1), end=utc(2025, 11, day, 2)
            ))
        fake_calendar.add_event(user.id, CalendarEvent(
            id="holiday", title="Public holiday", start=utc(2025, 11, 14), end=utc(2025, 11, 15), all_day=True
        ))

        result = await sync_service.sync_calendar_to_appointments(user.id, CalendarProvider.GOOGLE, now=NOW)

        assert result == {"synced": 3, "imported": 3, "cancelled": 0}

    @pytest.mark.asyncio
    async def test_second_run_changes_nothing(self, sync_service, db_session, user, google_connection,
                                              fake_calendar):
        fake_calendar.add_event(user.id, CalendarEvent(
            id="g-1", title="Walk-in", start=utc(2025, 11, 10, 1), end=utc(2025, 11, 10, 2)
        ))
        linked_appointment(db_session, user.id, "gone", utc(2025, 11, 20, 1))

        first = await sync_service.sync_calendar_to_appointments(user.id, CalendarProvider.GOOGLE, now=NOW)
        second = await sync_service.sync_calendar_to_appointments(user.id, CalendarProvider.GOOGLE, now=NOW)

        assert first == {"synced": 2, "imported": 1, "cancelled": 1}
        assert second == {"synced": 1, "imported": 0, "cancelled": 0}
        assert db_session.query(Appointment).count() == 2

    @pytest.mark.asyncio
    async def test_records_last_synced_at(self, sync_service, db_session, user, google_connection):
        await sync_service.sync_calendar_to_appointments(user.id, CalendarProvider.GOOGLE, now=NOW)

        connection = db_session.query(CalendarConnection).filter(CalendarConnection.user_id == user.id).one()
        assert connection.last_synced_at == NOW

    @pytest.mark.asyncio
    async def test_sync_all_skips_users_without_connections(self, sync_service, user):
        assert await sync_service.sync_all_connections(user.id, now=NOW) == {
            "synced": 0, "imported": 0, "cancelled": 0
        }
