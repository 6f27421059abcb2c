# ===== app/models/calendar_connection.py =====
from sqlalchemy import Column, String, Boolean, Text, ForeignKey, UniqueConstraint, Enum as SQLEnum
from sqlalchemy.orm import relationship

from app.models.appointment import CalendarProvider
from app.models.base import Base, UTCDateTime, generate_uuid, utcnow


class CalendarConnection(Base):
    __tablename__ = "calendar_connections"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    provider = Column(SQLEnum(CalendarProvider), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    # OAuth tokens, encrypted with TokenCipher
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=False)
    token_expiry = Column(UTCDateTime, nullable=False)

    calendar_id = Column(String, nullable=False, default="primary")
    calendar_name = Column(String, nullable=True)
    email = Column(String, nullable=True)

    last_synced_at = Column(UTCDateTime, nullable=True)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="calendar_connections")

    __table_args__ = (
        UniqueConstraint("user_id", "provider", name="uq_calendar_connections_user_provider"),
    )
