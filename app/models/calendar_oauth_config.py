# ===== app/models/calendar_oauth_config.py =====
from sqlalchemy import Column, String, Boolean, Text, Enum as SQLEnum

from app.models.appointment import CalendarProvider
from app.models.base import Base, UTCDateTime, generate_uuid, utcnow


class CalendarOAuthConfig(Base):
    """OAuth application credentials entered by a platform admin"""
    __tablename__ = "calendar_oauth_configs"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    provider = Column(SQLEnum(CalendarProvider), unique=True, nullable=False)

    client_id = Column(String, nullable=False)
    client_secret = Column(Text, nullable=False)  # encrypted with TokenCipher
    redirect_uri = Column(String, nullable=False)
    scopes = Column(Text, nullable=False)  # comma separated
    is_enabled = Column(Boolean, default=True, nullable=False)

    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)
