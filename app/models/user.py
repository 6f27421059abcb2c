# ============================================================================
# FILE: app/models/user.py
# Tenant accounts. Registration and credentials live in the auth service;
# this table is read for ownership and role checks.
# ============================================================================
from sqlalchemy import Column, String, Boolean, Enum as SQLEnum
from sqlalchemy.orm import relationship
import enum
from app.models.base import Base, UTCDateTime, generate_uuid, utcnow


class UserRole(str, enum.Enum):
    """Platform-level user roles."""
    ADMIN = "ADMIN"    # Platform admin - sees every tenant, manages OAuth apps
    CLIENT = "CLIENT"  # Call-center tenant - sees only its own appointments


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    email = Column(String(255), unique=True, nullable=False, index=True)
    full_name = Column(String(255), nullable=True)

    role = Column(
        SQLEnum(UserRole),
        default=UserRole.CLIENT,
        nullable=False,
        index=True
    )

    # Status flags
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    appointments = relationship(
        "Appointment",
        back_populates="user",
        cascade="all, delete-orphan",
    )
    calendar_connections = relationship(
        "CalendarConnection",
        back_populates="user",
        cascade="all, delete-orphan",
    )

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"
