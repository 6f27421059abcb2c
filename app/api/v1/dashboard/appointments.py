# ============================================================================
# FILE: app/api/v1/dashboard/appointments.py
# JWT authenticated endpoints - thin HTTP layer
# IMPORTANT: Specific routes MUST come before parameterized routes
# ============================================================================
from fastapi import APIRouter, Body, Depends, HTTPException, Query, Path
from sqlalchemy.orm import Session
from datetime import datetime
from typing import Optional

from app.config.database import get_db
from app.models.appointment import AppointmentStatus
from app.models.user import User
from app.api.dependencies import get_appointment_service, get_current_user, get_sync_service
from app.schemas.appointment import AppointmentCreate, AppointmentUpdate, CancelAppointmentRequest
from app.services.appointment.appointment_query_service import AppointmentQueryService, serialize_appointment
from app.services.appointment.appointment_service import AppointmentService
from app.services.calendar.sync_service import CalendarSyncService

router = APIRouter(prefix="/appointments", tags=["dashboard-appointments"])


@router.get("")
async def list_appointments(
        status: Optional[AppointmentStatus] = Query(None, description="Filter by status"),
        start_date: Optional[datetime] = Query(None, alias="startDate", description="Appointments starting at or after"),
        end_date: Optional[datetime] = Query(None, alias="endDate", description="Appointments starting at or before"),
        page: int = Query(1, ge=1),
        limit: int = Query(50, ge=1, le=200),
        include_cancelled: bool = Query(False, alias="includeCancelled"),
        current_user: User = Depends(get_current_user),
        db: Session = Depends(get_db)
):
    """
    List appointments. Clients see their own, admins see everyone's.
    Cancelled appointments are hidden unless asked for.
    """
    result = AppointmentQueryService.list_appointments(
        db=db,
        user_id=current_user.id,
        role=current_user.role,
        status=status,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit,
        include_cancelled=include_cancelled,
    )
    return {"success": True, **result}


@router.get("/stats/overview")
async def get_appointment_stats(
        days: Optional[int] = Query(None, ge=1, description="Only count the trailing N days up to today"),
        current_user: User = Depends(get_current_user),
        db: Session = Depends(get_db)
):
    stats = AppointmentQueryService.get_appointment_stats(
        db=db,
        user_id=current_user.id,
        role=current_user.role,
        days_filter=days,
    )
    return {"success": True, "stats": stats}


@router.post("/sync")
async def sync_calendar(
        current_user: User = Depends(get_current_user),
        sync_service: CalendarSyncService = Depends(get_sync_service),
):
    """Pull events from every connected calendar and cancel ones deleted upstream"""
    result = await sync_service.sync_all_connections(current_user.id)
    return {
        "success": True,
        "message": f"Imported {result['imported']} new events, cancelled {result['cancelled']} deleted events",
        **result,
    }


@router.get("/{appointment_id}")
async def get_appointment(
        appointment_id: str = Path(..., description="The appointment ID"),
        current_user: User = Depends(get_current_user),
        service: AppointmentService = Depends(get_appointment_service),
):
    appointment = service.get_appointment(appointment_id, current_user.id, current_user.role)
    if appointment is None:
        raise HTTPException(status_code=404, detail="Appointment not found")

    return {"success": True, "appointment": serialize_appointment(appointment)}


@router.post("", status_code=201)
async def create_appointment(
        data: AppointmentCreate,
        current_user: User = Depends(get_current_user),
        service: AppointmentService = Depends(get_appointment_service),
):
    appointment = await service.create_appointment(current_user.id, data)
    return {"success": True, "appointment": serialize_appointment(appointment)}


@router.put("/{appointment_id}")
async def update_appointment(
        data: AppointmentUpdate,
        appointment_id: str = Path(..., description="The appointment ID"),
        current_user: User = Depends(get_current_user),
        service: AppointmentService = Depends(get_appointment_service),
):
    appointment = await service.update_appointment(
        appointment_id, current_user.id, current_user.role, data
    )
    return {"success": True, "appointment": serialize_appointment(appointment)}


@router.delete("/{appointment_id}")
async def delete_appointment(
        appointment_id: str = Path(..., description="The appointment ID"),
        current_user: User = Depends(get_current_user),
        service: AppointmentService = Depends(get_appointment_service),
):
    await service.delete_appointment(appointment_id, current_user.id, current_user.role)
    return {"success": True, "message": "Appointment deleted"}


@router.post("/{appointment_id}/cancel")
async def cancel_appointment(
        appointment_id: str = Path(..., description="The appointment ID"),
        body: Optional[CancelAppointmentRequest] = Body(None),
        current_user: User = Depends(get_current_user),
        service: AppointmentService = Depends(get_appointment_service),
):
    appointment = await service.cancel_appointment(
        appointment_id,
        current_user.id,
        current_user.role,
        reason=body.reason if body else None,
    )
    return {"success": True, "appointment": serialize_appointment(appointment)}


@router.post("/{appointment_id}/confirm")
async def confirm_appointment(
        appointment_id: str = Path(..., description="The appointment ID"),
        current_user: User = Depends(get_current_user),
        service: AppointmentService = Depends(get_appointment_service),
):
    appointment = service.confirm_appointment(appointment_id, current_user.id, current_user.role)
    return {"success": True, "appointment": serialize_appointment(appointment)}
