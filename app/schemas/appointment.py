# app/schemas/appointment.py
"""
Request and response schemas for the appointment ledger.

The dashboard speaks camelCase JSON; services read the snake_case attributes.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.models.appointment import AppointmentStatus, CalendarProvider


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AppointmentCreate(CamelModel):
    """Schema for booking a new appointment"""
    customer_name: str = Field(..., min_length=1)
    customer_phone: str = Field(..., min_length=1)
    customer_email: Optional[str] = None
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    start_time: datetime
    end_time: datetime
    timezone: str = "UTC"
    notes: Optional[str] = None
    vapi_call_id: Optional[str] = None
    provider: Optional[CalendarProvider] = None
    sync_to_calendar: bool = False


class AppointmentUpdate(CamelModel):
    """Partial update; unset fields are left alone"""
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_email: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    timezone: Optional[str] = None
    notes: Optional[str] = None
    status: Optional[AppointmentStatus] = None
    sync_to_calendar: bool = False


class CancelAppointmentRequest(BaseModel):
    reason: Optional[str] = None
