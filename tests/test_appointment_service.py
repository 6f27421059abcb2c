import re
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from app.core.exceptions import CalendarProviderError, ForbiddenError, InvalidRequestError, NotFoundError
from app.models import Appointment, AppointmentStatus, CalendarProvider, UserRole
from app.schemas.appointment import AppointmentCreate, AppointmentUpdate
from app.services.appointment.appointment_service import AppointmentService
from app.services.appointment.booking_reference import REFERENCE_PATTERN, BookingReferenceGenerator
from app.services.calendar.base import CalendarEvent
from tests.conftest import fixed_clock

NOW = datetime(2025, 11, 1, tzinfo=timezone.utc)


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def seed(db, user_id, start, end, status=AppointmentStatus.SCHEDULED, reference=None, **extra):
    appointment = Appointment(
        booking_reference=reference or f"BK-2025-{db.query(Appointment).count() + 900001:06d}",
        user_id=user_id,
        customer_name="Jane Doe",
        customer_phone="+61400000000",
        title="Consultation",
        start_time=start,
        end_time=end,
        status=status,
        **extra,
    )
    db.add(appointment)
    db.commit()
    db.refresh(appointment)
    return appointment


def booking(start=utc(2025, 12, 5, 3, 0), minutes=60, **overrides):
    data = dict(
        customer_name="Jane Doe",
        customer_phone="+61400000000",
        customer_email="jane@example.com",
        title="Consultation",
        start_time=start,
        end_time=start + timedelta(minutes=minutes),
    )
    data.update(overrides)
    return AppointmentCreate(**data)


@pytest.fixture
def service(db_session, registry):
    return AppointmentService(db_session, registry, clock=fixed_clock(NOW))


class TestFindConflicts:

    @pytest.fixture(autouse=True)
    def existing(self, db_session, user):
        self.user_id = user.id
        return seed(db_session, user.id, utc(2025, 12, 5, 10), utc(2025, 12, 5, 11))

    @pytest.mark.parametrize("start,end", [
        (utc(2025, 12, 5, 10, 30), utc(2025, 12, 5, 11, 30)),  # overlaps the end
        (utc(2025, 12, 5, 9, 30), utc(2025, 12, 5, 10, 30)),   # overlaps the start
        (utc(2025, 12, 5, 9), utc(2025, 12, 5, 12)),           # contains it
        (utc(2025, 12, 5, 10, 15), utc(2025, 12, 5, 10, 45)),  # inside it
        (utc(2025, 12, 5, 10), utc(2025, 12, 5, 11)),          # identical
    ])
    def test_overlapping_windows_conflict(self, service, start, end):
        assert len(service.find_conflicts(self.user_id, start, end)) == 1

    @pytest.mark.parametrize("start,end", [
        (utc(2025, 12, 5, 11), utc(2025, 12, 5, 12)),
        (utc(2025, 12, 5, 9), utc(2025, 12, 5, 10)),
    ])
    def test_touching_windows_do_not_conflict(self, service, start, end):
        assert service.find_conflicts(self.user_id, start, end) == []

    def test_cancelled_appointments_do_not_block(self, service, db_session, existing):
        existing.status = AppointmentStatus.CANCELLED
        db_session.commit()
        assert service.find_conflicts(self.user_id, utc(2025, 12, 5, 10), utc(2025, 12, 5, 11)) == []

    def test_other_tenants_do_not_block(self, service, other_user):
        assert service.find_conflicts(other_user.id, utc(2025, 12, 5, 10), utc(2025, 12, 5, 11)) == []

    def test_excluded_appointment_is_ignored(self, service, existing):
        conflicts = service.find_conflicts(
            self.user_id, utc(2025, 12, 5, 10), utc(2025, 12, 5, 11), exclude_appointment_id=existing.id
        )
        assert conflicts == []


class TestCheckAvailability:

    @pytest.mark.asyncio
    async def test_ledger_conflict_skips_provider(self, service, db_session, user, fake_calendar):
        seed(db_session, user.id, utc(2025, 12, 5, 10), utc(2025, 12, 5, 11))
        fake_calendar.fail_list = True

        result = await service.check_availability(
            user.id, utc(2025, 12, 5, 10), utc(2025, 12, 5, 11),
            provider=CalendarProvider.GOOGLE, raise_provider_errors=True,
        )

        assert result.is_available is False
        assert len(result.conflicts) == 1

    @pytest.mark.asyncio
    async def test_provider_event_blocks_slot(self, service, user, fake_calendar):
        fake_calendar.add_event(user.id, CalendarEvent(
            id="external", title="Dentist", start=utc(2025, 12, 5, 10), end=utc(2025, 12, 5, 11)
        ))

        result = await service.check_availability(
            user.id, utc(2025, 12, 5, 10, 30), utc(2025, 12, 5, 11, 30), provider=CalendarProvider.GOOGLE
        )

        assert result.is_available is False

    @pytest.mark.asyncio
    async def test_all_day_and_ignored_events_do_not_block(self, service, user, fake_calendar):
        fake_calendar.add_event(user.id, CalendarEvent(
            id="holiday", title="Holiday", start=utc(2025, 12, 5), end=utc(2025, 12, 6), all_day=True
        ))
        fake_calendar.add_event(user.id, CalendarEvent(
            id="own", title="Own booking", start=utc(2025, 12, 5, 10), end=utc(2025, 12, 5, 11)
        ))

        result = await service.check_availability(
            user.id, utc(2025, 12, 5, 10), utc(2025, 12, 5, 11),
            provider=CalendarProvider.GOOGLE, ignore_event_ids=["own"],
        )

        assert result.is_available is True

    @pytest.mark.asyncio
    async def test_provider_failure_counts_as_free_unless_asked_to_raise(self, service, user, fake_calendar):
        fake_calendar.fail_list = True
        start, end = utc(2025, 12, 5, 10), utc(2025, 12, 5, 11)

        result = await service.check_availability(user.id, start, end, provider=CalendarProvider.GOOGLE)
        assert result.is_available is True

        with pytest.raises(CalendarProviderError):
            await service.check_availability(
                user.id, start, end, provider=CalendarProvider.GOOGLE, raise_provider_errors=True
            )

    @pytest.mark.asyncio
    async def test_inverted_window_is_rejected(self, service, user):
        with pytest.raises(InvalidRequestError):
            await service.check_availability(user.id, utc(2025, 12, 5, 11), utc(2025, 12, 5, 10))


class TestCreateAppointment:

    @pytest.mark.asyncio
    async def test_creates_scheduled_appointment_with_reference(self, service, user):
        appointment = await service.create_appointment(user.id, booking())

        assert appointment.status == AppointmentStatus.SCHEDULED
        assert appointment.booking_reference == "BK-2025-000001"
        assert appointment.provider is None
        assert appointment.external_event_id is None

    @pytest.mark.asyncio
    async def test_mirrors_to_calendar_when_requested(self, service, user, google_connection, fake_calendar):
        appointment = await service.create_appointment(
            user.id, booking(provider=CalendarProvider.GOOGLE, sync_to_calendar=True)
        )

        assert appointment.provider == CalendarProvider.GOOGLE
        assert appointment.external_event_id in fake_calendar.events[user.id]
        assert appointment.calendar_synced_at == NOW

    @pytest.mark.asyncio
    async def test_calendar_failure_still_books(self, service, user, google_connection, fake_calendar):
        fake_calendar.fail_create = True

        appointment = await service.create_appointment(
            user.id, booking(provider=CalendarProvider.GOOGLE, sync_to_calendar=True)
        )

        assert appointment.id is not None
        assert appointment.provider is None
        assert appointment.external_event_id is None

    @pytest.mark.asyncio
    async def test_rejects_past_start(self, service, user):
        with pytest.raises(InvalidRequestError, match="past"):
            await service.create_appointment(user.id, booking(start=NOW - timedelta(minutes=1)))

    @pytest.mark.asyncio
    async def test_rejects_inverted_times(self, service, user):
        data = booking()
        data.end_time = data.start_time - timedelta(minutes=30)
        with pytest.raises(InvalidRequestError, match="End time must be after start time"):
            await service.create_appointment(user.id, data)

    @pytest.mark.asyncio
    async def test_sequence_counts_this_years_bookings(self, service, user):
        first = await service.create_appointment(user.id, booking())
        second = await service.create_appointment(user.id, booking(start=utc(2025, 12, 6, 3, 0)))

        assert first.booking_reference == "BK-2025-000001"
        assert second.booking_reference == "BK-2025-000002"


class TestBookingReferenceGenerator:

    def test_collision_gets_random_suffix(self, db_session, user):
        seed(
            db_session, user.id, utc(2025, 12, 5, 10), utc(2025, 12, 5, 11),
            reference="BK-2025-000001", created_at=utc(2024, 6, 1),
        )
        generator = BookingReferenceGenerator(db_session, rng=Mock(randrange=Mock(return_value=42)))

        reference = generator.generate(now=NOW)

        assert reference == "BK-2025-000001042"
        assert re.match(REFERENCE_PATTERN, reference)

    def test_counts_only_the_current_year(self, db_session, user):
        seed(db_session, user.id, utc(2025, 12, 5, 10), utc(2025, 12, 5, 11), created_at=utc(2024, 6, 1))
        generator = BookingReferenceGenerator(db_session)

        assert generator.generate(now=NOW) == "BK-2025-000001"
        assert generator.generate(now=utc(2024, 12, 31)) == "BK-2024-000002"


class TestUpdateAndCancel:

    @pytest.mark.asyncio
    async def test_reschedule_moves_calendar_event(self, service, user, google_connection, fake_calendar):
        appointment = await service.create_appointment(
            user.id, booking(provider=CalendarProvider.GOOGLE, sync_to_calendar=True)
        )
        new_start = utc(2025, 12, 5, 4, 0)

        updated = await service.update_appointment(
            appointment.id, user.id, UserRole.CLIENT,
            AppointmentUpdate(start_time=new_start, end_time=new_start + timedelta(hours=1), sync_to_calendar=True),
        )

        assert updated.start_time == new_start
        assert fake_calendar.events[user.id][appointment.external_event_id].start == new_start

    @pytest.mark.asyncio
    async def test_cancel_deletes_calendar_event(self, service, user, google_connection, fake_calendar):
        appointment = await service.create_appointment(
            user.id, booking(provider=CalendarProvider.GOOGLE, sync_to_calendar=True)
        )

        cancelled = await service.cancel_appointment(appointment.id, user.id, UserRole.CLIENT, reason="Sick")

        assert cancelled.status == AppointmentStatus.CANCELLED
        assert cancelled.cancellation_reason == "Sick"
        assert cancelled.cancelled_at == NOW
        assert fake_calendar.deleted == [appointment.external_event_id]

    @pytest.mark.asyncio
    async def test_cancel_twice_is_rejected(self, service, user):
        appointment = await service.create_appointment(user.id, booking())
        await service.cancel_appointment(appointment.id, user.id, UserRole.CLIENT)

        with pytest.raises(InvalidRequestError, match="already cancelled"):
            await service.cancel_appointment(appointment.id, user.id, UserRole.CLIENT)

    @pytest.mark.asyncio
    async def test_cancelled_appointment_cannot_be_rescheduled(self, service, user):
        appointment = await service.create_appointment(user.id, booking())
        await service.cancel_appointment(appointment.id, user.id, UserRole.CLIENT)

        with pytest.raises(InvalidRequestError, match="Cannot reschedule a cancelled appointment"):
            await service.update_appointment(
                appointment.id, user.id, UserRole.CLIENT,
                AppointmentUpdate(start_time=utc(2025, 12, 7, 3), end_time=utc(2025, 12, 7, 4)),
            )

    @pytest.mark.asyncio
    async def test_completed_cannot_go_back_to_scheduled(self, service, user):
        appointment = await service.create_appointment(user.id, booking())
        await service.update_appointment(
            appointment.id, user.id, UserRole.CLIENT, AppointmentUpdate(status=AppointmentStatus.COMPLETED)
        )

        with pytest.raises(InvalidRequestError, match="Cannot change status from COMPLETED to SCHEDULED"):
            await service.update_appointment(
                appointment.id, user.id, UserRole.CLIENT, AppointmentUpdate(status=AppointmentStatus.SCHEDULED)
            )

    @pytest.mark.asyncio
    async def test_confirm_is_idempotent(self, service, user):
        appointment = await service.create_appointment(user.id, booking())

        service.confirm_appointment(appointment.id, user.id, UserRole.CLIENT)
        confirmed = service.confirm_appointment(appointment.id, user.id, UserRole.CLIENT)

        assert confirmed.status == AppointmentStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_other_tenant_is_forbidden_but_admin_is_not(self, service, user, other_user, admin_user):
        appointment = await service.create_appointment(user.id, booking())

        with pytest.raises(ForbiddenError):
            service.get_appointment(appointment.id, other_user.id, UserRole.CLIENT)
        assert service.get_appointment(appointment.id, admin_user.id, UserRole.ADMIN).id == appointment.id

    @pytest.mark.asyncio
    async def test_missing_appointment(self, service, user):
        assert service.get_appointment("missing", user.id, UserRole.CLIENT) is None
        with pytest.raises(NotFoundError):
            await service.cancel_appointment("missing", user.id, UserRole.CLIENT)

    @pytest.mark.asyncio
    async def test_find_by_reference_normalizes_and_checks_tenant(self, service, user, other_user):
        appointment = await service.create_appointment(user.id, booking())

        assert service.find_by_booking_reference(" bk-2025-000001 ", user.id).id == appointment.id
        with pytest.raises(ForbiddenError):
            service.find_by_booking_reference("BK-2025-000001", other_user.id)
        with pytest.raises(NotFoundError, match="BK-2025-999999"):
            service.find_by_booking_reference("BK-2025-999999")
