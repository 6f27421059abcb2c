# app/schemas/__init__.py
from .appointment import (
    AppointmentCreate,
    AppointmentUpdate,
    CancelAppointmentRequest,
)

from .calendar import (
    OAuthConfigRequest,
)

from .vapi import (
    VapiFunctionCall,
)

__all__ = [
    "AppointmentCreate",
    "AppointmentUpdate",
    "CancelAppointmentRequest",
    "OAuthConfigRequest",
    "VapiFunctionCall",
]
