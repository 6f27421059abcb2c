# app/models/__init__.py
from .base import Base
from .user import User, UserRole
from .appointment import Appointment, AppointmentStatus, CalendarProvider
from .calendar_connection import CalendarConnection
from .calendar_oauth_config import CalendarOAuthConfig

__all__ = [
    "Base",
    "User",
    "UserRole",
    "Appointment",
    "AppointmentStatus",
    "CalendarProvider",
    "CalendarConnection",
    "CalendarOAuthConfig",
]
