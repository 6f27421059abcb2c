# app/services/calendar/sync_service.py
"""
Reconciles a provider calendar with the appointment ledger.

Import pass: provider events without a ledger row become CONFIRMED appointments.
Cancel pass: active linked appointments in the window whose event disappeared
from the provider are cancelled. Both passes work off a single event listing,
so running twice in a row changes nothing the second time.
"""
import logging
import re
from datetime import datetime
from typing import Dict, Optional, Set

from sqlalchemy.orm import Session

from app.config.settings import get_settings
from app.models import Appointment, AppointmentStatus, CalendarConnection, CalendarProvider
from app.models.appointment import ACTIVE_STATUSES
from app.services.appointment.booking_reference import BookingReferenceGenerator
from app.services.calendar.base import CalendarEvent
from app.services.calendar.registry import CalendarProviderRegistry
from app.utils.time_utils import add_months, utcnow

logger = logging.getLogger(__name__)

_PHONE_PATTERN = re.compile(r"Phone:\s*(.+)")

PROVIDER_LABELS = {
    CalendarProvider.GOOGLE: "Google Calendar",
    CalendarProvider.OUTLOOK: "Outlook Calendar",
}


def extract_phone(description: Optional[str]) -> Optional[str]:
    """Phone number from a 'Phone: ...' line in an event description"""
    if not description:
        return None
    match = _PHONE_PATTERN.search(description)
    return match.group(1).strip() if match else None


class CalendarSyncService:

    def __init__(
            self,
            db: Session,
            providers: CalendarProviderRegistry,
            window_months: Optional[int] = None,
    ):
        self.db = db
        self.providers = providers
        self.window_months = window_months or get_settings().CALENDAR_SYNC_WINDOW_MONTHS
        self.references = BookingReferenceGenerator(db)

    def _linked_event_ids(self, user_id: str, provider: CalendarProvider) -> Set[str]:
        rows = self.db.query(Appointment.external_event_id).filter(
            Appointment.user_id == user_id,
            Appointment.provider == provider,
            Appointment.external_event_id.isnot(None),
        ).all()
        return {row[0] for row in rows}

    def _import_event(self, user_id: str, provider: CalendarProvider, event: CalendarEvent) -> Appointment:
        label = PROVIDER_LABELS[provider]
        appointment = Appointment(
            booking_reference=self.references.generate(),
            user_id=user_id,
            customer_name=event.title or f"{label} Event",
            customer_phone=extract_phone(event.description) or "N/A",
            customer_email=event.attendees[0] if event.attendees else None,
            title=event.title or "Imported Event",
            description=event.description,
            start_time=event.start,
            end_time=event.end,
            timezone="UTC",
            status=AppointmentStatus.CONFIRMED,
            provider=provider,
            external_event_id=event.id,
            calendar_synced_at=utcnow(),
        )
        self.db.add(appointment)
        self.db.commit()
        return appointment

    async def sync_calendar_to_appointments(
            self,
            user_id: str,
            provider: CalendarProvider,
            now: Optional[datetime] = None,
    ) -> Dict[str, int]:
        now = now or utcnow()
        window_start = add_months(now, -self.window_months)
        window_end = add_months(now, self.window_months)

        events = await self.providers.get(provider).list_events(user_id, window_start, window_end)
        current_event_ids = {event.id for event in events}
        linked = self._linked_event_ids(user_id, provider)

        imported = 0
        for event in events:
            if event.id in linked or event.all_day:
                continue
            try:
                self._import_event(user_id, provider, event)
                linked.add(event.id)
                imported += 1
            except Exception as e:
                self.db.rollback()
                logger.warning(f"Failed to import {provider.value} event {event.id} for user {user_id}: {e}")

        stale = self.db.query(Appointment).filter(
            Appointment.user_id == user_id,
            Appointment.provider == provider,
            Appointment.external_event_id.isnot(None),
            Appointment.status.in_(ACTIVE_STATUSES),
            Appointment.start_time >= window_start,
            Appointment.start_time < window_end,
        ).all()

        cancelled = 0
        reason = f"Deleted from {PROVIDER_LABELS[provider]}"
        for appointment in stale:
            if appointment.external_event_id in current_event_ids:
                continue
            appointment.status = AppointmentStatus.CANCELLED
            appointment.cancellation_reason = reason
            appointment.cancelled_at = now
            cancelled += 1

        connection = self.db.query(CalendarConnection).filter(
            CalendarConnection.user_id == user_id,
            CalendarConnection.provider == provider,
        ).first()
        if connection is not None:
            connection.last_synced_at = now
        self.db.commit()

        logger.info(
            f"Calendar sync for user {user_id} ({provider.value}): "
            f"{len(events)} events, {imported} imported, {cancelled} cancelled"
        )
        return {"synced": len(stale), "imported": imported, "cancelled": cancelled}

    async def sync_all_connections(self, user_id: str, now: Optional[datetime] = None) -> Dict[str, int]:
        """Sync every active connection of the user and sum the counts"""
        totals = {"synced": 0, "imported": 0, "cancelled": 0}
        for provider in self.providers.active_providers(user_id):
            result = await self.sync_calendar_to_appointments(user_id, provider, now=now)
            for key in totals:
                totals[key] += result[key]
        return totals
