# ============================================================================
# app/services/appointment/appointment_query_service.py
# Read side of the ledger - no FastAPI dependencies, fully testable
# ============================================================================
import math
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models.appointment import ACTIVE_STATUSES, Appointment, AppointmentStatus
from app.models.user import UserRole
from app.utils.time_utils import end_of_day, start_of_day, utcnow


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def serialize_appointment(appointment: Appointment) -> Dict[str, Any]:
    return {
        "id": appointment.id,
        "bookingReference": appointment.booking_reference,
        "userId": appointment.user_id,
        "customerName": appointment.customer_name,
        "customerPhone": appointment.customer_phone,
        "customerEmail": appointment.customer_email,
        "title": appointment.title,
        "description": appointment.description,
        "startTime": _iso(appointment.start_time),
        "endTime": _iso(appointment.end_time),
        "timezone": appointment.timezone,
        "status": appointment.status.value,
        "notes": appointment.notes,
        "provider": appointment.provider.value if appointment.provider else None,
        "externalEventId": appointment.external_event_id,
        "calendarSyncedAt": _iso(appointment.calendar_synced_at),
        "cancellationReason": appointment.cancellation_reason,
        "cancelledAt": _iso(appointment.cancelled_at),
        "vapiCallId": appointment.vapi_call_id,
        "createdAt": _iso(appointment.created_at),
        "updatedAt": _iso(appointment.updated_at),
    }


class AppointmentQueryService:
    """Service layer for appointment listing and dashboard stats."""

    DEFAULT_LIMIT = 50

    @staticmethod
    def list_appointments(
            db: Session,
            user_id: str,
            role: UserRole,
            status: Optional[AppointmentStatus] = None,
            start_date: Optional[datetime] = None,
            end_date: Optional[datetime] = None,
            page: int = 1,
            limit: int = DEFAULT_LIMIT,
            include_cancelled: bool = False,
    ) -> Dict[str, Any]:
        """Get paginated list of appointments with filters."""
        query = db.query(Appointment)

        if role == UserRole.CLIENT:
            query = query.filter(Appointment.user_id == user_id)

        if status:
            query = query.filter(Appointment.status == status)
        elif not include_cancelled:
            query = query.filter(Appointment.status != AppointmentStatus.CANCELLED)

        if start_date:
            query = query.filter(Appointment.start_time >= start_date)
        if end_date:
            query = query.filter(Appointment.start_time <= end_date)

        total = query.count()
        appointments = (
            query.order_by(Appointment.start_time.asc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )

        return {
            "appointments": [serialize_appointment(appt) for appt in appointments],
            "total": total,
            "page": page,
            "limit": limit,
            "totalPages": math.ceil(total / limit) if total else 0,
        }

    @staticmethod
    def get_appointment_stats(
            db: Session,
            user_id: str,
            role: UserRole,
            days_filter: Optional[int] = None,
            now: Optional[datetime] = None,
    ) -> Dict[str, int]:
        """
        Status counts for the dashboard.

        With days_filter only appointments starting between the start of today
        (minus N days when N > 1) and the end of today are counted. ``total``
        leaves out cancelled appointments.
        """
        now = now or utcnow()

        base = db.query(Appointment.status, func.count(Appointment.id))
        if role == UserRole.CLIENT:
            base = base.filter(Appointment.user_id == user_id)

        if days_filter:
            range_start = start_of_day(now)
            if days_filter > 1:
                range_start -= timedelta(days=days_filter)
            base = base.filter(
                Appointment.start_time >= range_start,
                Appointment.start_time <= end_of_day(now),
            )

        counts = {status: 0 for status in AppointmentStatus}
        for status, count in base.group_by(Appointment.status).all():
            counts[status] = count

        upcoming = base.filter(
            Appointment.start_time >= now,
            Appointment.status.in_(ACTIVE_STATUSES),
        ).with_entities(func.count(Appointment.id)).scalar() or 0

        return {
            "total": sum(counts.values()) - counts[AppointmentStatus.CANCELLED],
            "scheduled": counts[AppointmentStatus.SCHEDULED],
            "confirmed": counts[AppointmentStatus.CONFIRMED],
            "cancelled": counts[AppointmentStatus.CANCELLED],
            "completed": counts[AppointmentStatus.COMPLETED],
            "upcoming": upcoming,
        }
