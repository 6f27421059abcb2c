# ============================================================================
# app/services/appointment/appointment_service.py
# ============================================================================
"""Appointment ledger: booking, changes and cancellation with calendar mirroring"""
import logging
from datetime import datetime
from typing import Callable, Iterable, Optional

from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.exceptions import ForbiddenError, InvalidRequestError, NotFoundError
from app.models.appointment import (
    ACTIVE_STATUSES,
    ALLOWED_STATUS_TRANSITIONS,
    Appointment,
    AppointmentStatus,
    CalendarProvider,
)
from app.models.user import UserRole
from app.schemas.appointment import AppointmentCreate, AppointmentUpdate
from app.services.appointment.booking_reference import BookingReferenceGenerator
from app.services.calendar.base import AvailabilityResult, ensure_utc
from app.services.calendar.registry import CalendarProviderRegistry
from app.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

REFERENCE_INSERT_ATTEMPTS = 3


class AppointmentService:
    """Handles appointment operations"""

    def __init__(
            self,
            db: Session,
            providers: CalendarProviderRegistry,
            references: Optional[BookingReferenceGenerator] = None,
            clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.providers = providers
        self.references = references or BookingReferenceGenerator(db)
        self.clock = clock

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    @staticmethod
    def _check_access(appointment: Appointment, user_id: str, role: UserRole) -> None:
        if role != UserRole.ADMIN and appointment.user_id != user_id:
            raise ForbiddenError("Access denied")

    def get_appointment(self, appointment_id: str, user_id: str, role: UserRole) -> Optional[Appointment]:
        """Returns None if missing, raises Forbidden for another tenant's appointment"""
        appointment = self.db.query(Appointment).filter(Appointment.id == appointment_id).first()
        if appointment is None:
            return None
        self._check_access(appointment, user_id, role)
        return appointment

    def _get_for_change(self, appointment_id: str, user_id: str, role: UserRole) -> Appointment:
        appointment = self.get_appointment(appointment_id, user_id, role)
        if appointment is None:
            raise NotFoundError("Appointment not found")
        return appointment

    def find_by_booking_reference(self, booking_reference: str, user_id: Optional[str] = None) -> Appointment:
        appointment = self.db.query(Appointment).filter(
            Appointment.booking_reference == booking_reference.strip().upper()
        ).first()
        if appointment is None:
            raise NotFoundError(f"Appointment {booking_reference} not found")
        if user_id is not None and appointment.user_id != user_id:
            raise ForbiddenError("Access denied")
        return appointment

    # ------------------------------------------------------------------
    # Availability
    # ------------------------------------------------------------------

    def find_conflicts(
            self,
            user_id: str,
            start: datetime,
            end: datetime,
            exclude_appointment_id: Optional[str] = None,
    ):
        """Active appointments overlapping [start, end); touching edges do not conflict"""
        query = self.db.query(Appointment).filter(
            Appointment.user_id == user_id,
            Appointment.status.in_(ACTIVE_STATUSES),
            or_(
                and_(Appointment.start_time <= start, Appointment.end_time > start),
                and_(Appointment.start_time < end, Appointment.end_time >= end),
                and_(Appointment.start_time >= start, Appointment.end_time <= end),
            ),
        )
        if exclude_appointment_id:
            query = query.filter(Appointment.id != exclude_appointment_id)
        return query.order_by(Appointment.start_time.asc()).all()

    async def check_availability(
            self,
            user_id: str,
            start: datetime,
            end: datetime,
            provider: Optional[CalendarProvider] = None,
            exclude_appointment_id: Optional[str] = None,
            ignore_event_ids: Iterable[str] = (),
            raise_provider_errors: bool = False,
    ) -> AvailabilityResult:
        """
        Ledger first, then the live calendar.

        Any ledger conflict answers the question without a provider call. Provider
        failures are logged and treated as free unless raise_provider_errors is set.
        """
        start, end = ensure_utc(start), ensure_utc(end)
        if start >= end:
            raise InvalidRequestError("End time must be after start time")

        conflicts = self.find_conflicts(user_id, start, end, exclude_appointment_id)
        if conflicts:
            return AvailabilityResult(is_available=False, conflicts=conflicts)

        if provider is None:
            return AvailabilityResult(is_available=True)

        try:
            return await self.providers.get(provider).check_availability(
                user_id, start, end, ignore_event_ids=set(ignore_event_ids)
            )
        except Exception as e:
            if raise_provider_errors:
                raise
            logger.warning(f"Calendar availability check failed for user {user_id}: {e}")
            return AvailabilityResult(is_available=True)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create_appointment(self, user_id: str, data: AppointmentCreate) -> Appointment:
        """Create a new appointment"""
        if not data.customer_name or not data.customer_phone:
            raise InvalidRequestError("Customer name and phone are required")

        start, end = ensure_utc(data.start_time), ensure_utc(data.end_time)
        if start >= end:
            raise InvalidRequestError("End time must be after start time")
        if start < self.clock():
            raise InvalidRequestError("Cannot create appointment in the past")

        external_event_id = None
        calendar_synced_at = None
        if data.sync_to_calendar and data.provider:
            try:
                event = await self.providers.get(data.provider).create_event(
                    user_id,
                    title=data.title,
                    start=start,
                    end=end,
                    description=data.description,
                    attendee_email=data.customer_email,
                )
                external_event_id = event.id
                calendar_synced_at = self.clock()
            except Exception as e:
                logger.warning(
                    f"Failed to create {data.provider.value} event for user {user_id}, "
                    f"booking without calendar link: {e}"
                )

        for attempt in range(1, REFERENCE_INSERT_ATTEMPTS + 1):
            appointment = Appointment(
                booking_reference=self.references.generate(now=self.clock()),
                user_id=user_id,
                vapi_call_id=data.vapi_call_id,
                customer_name=data.customer_name,
                customer_phone=data.customer_phone,
                customer_email=data.customer_email,
                title=data.title,
                description=data.description,
                start_time=start,
                end_time=end,
                timezone=data.timezone or "UTC",
                notes=data.notes,
                status=AppointmentStatus.SCHEDULED,
                provider=data.provider if external_event_id else None,
                external_event_id=external_event_id,
                calendar_synced_at=calendar_synced_at,
                created_at=self.clock(),
            )
            self.db.add(appointment)
            try:
                self.db.commit()
                break
            except IntegrityError:
                self.db.rollback()
                if attempt == REFERENCE_INSERT_ATTEMPTS:
                    raise
                logger.warning(
                    f"Booking reference {appointment.booking_reference} was taken concurrently, retrying"
                )

        self.db.refresh(appointment)
        logger.info(f"Created appointment {appointment.booking_reference} for user {user_id}")
        return appointment

    async def update_appointment(
            self,
            appointment_id: str,
            user_id: str,
            role: UserRole,
            data: AppointmentUpdate,
    ) -> Appointment:
        appointment = self._get_for_change(appointment_id, user_id, role)

        changes = {
            key: value
            for key, value in data.model_dump(exclude_unset=True, exclude={"sync_to_calendar"}).items()
            if value is not None
        }

        new_status = changes.pop("status", None)
        if new_status is not None and new_status != appointment.status:
            if new_status not in ALLOWED_STATUS_TRANSITIONS[appointment.status]:
                raise InvalidRequestError(
                    f"Cannot change status from {appointment.status.value} to {new_status.value}"
                )

        if "start_time" in changes or "end_time" in changes:
            if appointment.status == AppointmentStatus.CANCELLED:
                raise InvalidRequestError("Cannot reschedule a cancelled appointment")
            changes["start_time"] = ensure_utc(changes.get("start_time", appointment.start_time))
            changes["end_time"] = ensure_utc(changes.get("end_time", appointment.end_time))
            if changes["start_time"] >= changes["end_time"]:
                raise InvalidRequestError("End time must be after start time")

        for key, value in changes.items():
            setattr(appointment, key, value)

        if new_status is not None and new_status != appointment.status:
            appointment.status = new_status
            if new_status == AppointmentStatus.CANCELLED:
                appointment.cancelled_at = self.clock()

        if data.sync_to_calendar and appointment.external_event_id and appointment.provider:
            try:
                await self.providers.get(appointment.provider).update_event(
                    appointment.user_id,
                    appointment.external_event_id,
                    title=changes.get("title"),
                    start=changes.get("start_time"),
                    end=changes.get("end_time"),
                    description=changes.get("description"),
                )
                appointment.calendar_synced_at = self.clock()
            except Exception as e:
                logger.warning(
                    f"Failed to update calendar event for appointment {appointment.booking_reference}: {e}"
                )

        self.db.commit()
        self.db.refresh(appointment)
        logger.info(f"Updated appointment {appointment.booking_reference}")
        return appointment

    async def _delete_calendar_event(self, appointment: Appointment) -> None:
        if not (appointment.external_event_id and appointment.provider):
            return
        try:
            await self.providers.get(appointment.provider).delete_event(
                appointment.user_id, appointment.external_event_id
            )
        except Exception as e:
            logger.warning(
                f"Failed to delete calendar event for appointment {appointment.booking_reference}: {e}"
            )

    async def cancel_appointment(
            self,
            appointment_id: str,
            user_id: str,
            role: UserRole,
            reason: Optional[str] = None,
    ) -> Appointment:
        appointment = self._get_for_change(appointment_id, user_id, role)

        if appointment.status == AppointmentStatus.CANCELLED:
            raise InvalidRequestError("Appointment already cancelled")
        if appointment.status == AppointmentStatus.COMPLETED:
            raise InvalidRequestError("Completed appointments cannot be cancelled")

        await self._delete_calendar_event(appointment)

        appointment.status = AppointmentStatus.CANCELLED
        appointment.cancellation_reason = reason
        appointment.cancelled_at = self.clock()
        self.db.commit()
        self.db.refresh(appointment)

        logger.info(f"Cancelled appointment {appointment.booking_reference}")
        return appointment

    def confirm_appointment(self, appointment_id: str, user_id: str, role: UserRole) -> Appointment:
        appointment = self._get_for_change(appointment_id, user_id, role)

        if appointment.status == AppointmentStatus.CONFIRMED:
            return appointment
        if AppointmentStatus.CONFIRMED not in ALLOWED_STATUS_TRANSITIONS[appointment.status]:
            raise InvalidRequestError(
                f"Cannot confirm a {appointment.status.value.lower()} appointment"
            )

        appointment.status = AppointmentStatus.CONFIRMED
        self.db.commit()
        self.db.refresh(appointment)
        return appointment

    async def delete_appointment(self, appointment_id: str, user_id: str, role: UserRole) -> None:
        appointment = self._get_for_change(appointment_id, user_id, role)

        await self._delete_calendar_event(appointment)

        self.db.delete(appointment)
        self.db.commit()
        logger.info(f"Deleted appointment {appointment.booking_reference}")
