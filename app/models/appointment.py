# ===== app/models/appointment.py =====
import enum

from sqlalchemy import Column, String, Text, ForeignKey, Enum as SQLEnum, Index
from sqlalchemy.orm import relationship

from app.models.base import Base, UTCDateTime, generate_uuid, utcnow


class AppointmentStatus(str, enum.Enum):
    SCHEDULED = "SCHEDULED"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"


class CalendarProvider(str, enum.Enum):
    GOOGLE = "GOOGLE"
    OUTLOOK = "OUTLOOK"


# Statuses that block a time slot
ACTIVE_STATUSES = (AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED)

ALLOWED_STATUS_TRANSITIONS = {
    AppointmentStatus.SCHEDULED: {
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
    },
    AppointmentStatus.CONFIRMED: {
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
    },
    AppointmentStatus.COMPLETED: set(),
    AppointmentStatus.CANCELLED: set(),
}


class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    booking_reference = Column(String(32), unique=True, nullable=False, index=True)

    # References
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    vapi_call_id = Column(String, nullable=True)

    # Customer info
    customer_name = Column(String, nullable=False)
    customer_phone = Column(String, nullable=False)
    customer_email = Column(String, nullable=True)

    # Appointment details
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    start_time = Column(UTCDateTime, nullable=False, index=True)
    end_time = Column(UTCDateTime, nullable=False)
    timezone = Column(String, nullable=False, default="UTC")
    notes = Column(Text, nullable=True)

    # Status tracking
    status = Column(SQLEnum(AppointmentStatus), nullable=False, default=AppointmentStatus.SCHEDULED)
    cancellation_reason = Column(Text, nullable=True)
    cancelled_at = Column(UTCDateTime, nullable=True)

    # Calendar sync (soft link, the connection may be removed independently)
    provider = Column(SQLEnum(CalendarProvider), nullable=True)
    external_event_id = Column(String, nullable=True)
    calendar_synced_at = Column(UTCDateTime, nullable=True)

    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="appointments")

    __table_args__ = (
        Index("ix_appointments_user_status_start", "user_id", "status", "start_time"),
        Index("ix_appointments_user_provider_event", "user_id", "provider", "external_event_id"),
    )

    def __repr__(self):
        return f"<Appointment(ref={self.booking_reference}, status={self.status}, start={self.start_time})>"
