"""Scheduling router - FastAPI endpoints for appointments, resources and staff availability"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...database import get_db
from .schemas import (
    AppointmentCreate,
    AppointmentResponse,
    AppointmentsCreatedResponse,
    AppointmentUpdate,
    ResourceAvailabilityRequest,
    ResourceAvailabilityResponse,
    StaffAvailabilityResponse,
)
from .service import AppointmentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/appointments", tags=["Appointments"])
resources_router = APIRouter(prefix="/resources", tags=["Resources"])
staff_router = APIRouter(prefix="/staff", tags=["Staff"])


def get_appointment_service(db: Session = Depends(get_db)) -> AppointmentService:
    """Dependency injection for AppointmentService"""
    return AppointmentService(db)


# ============================================================================
# APPOINTMENTS
# ============================================================================


@router.get("", response_model=list[AppointmentResponse])
async def list_appointments(
    service: AppointmentService = Depends(get_appointment_service),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    staff_id: Optional[int] = Query(None),
    client_id: Optional[int] = Query(None),
    status: Optional[str] = Query(None),
):
    """List appointments with optional filters"""
    return service.list_appointments(date_from, date_to, staff_id, client_id, status)


@router.get("/{appointment_id}", response_model=AppointmentResponse)
async def get_appointment(
    appointment_id: int,
    service: AppointmentService = Depends(get_appointment_service),
):
    return service.get_appointment(appointment_id)


@router.post("", response_model=AppointmentsCreatedResponse, status_code=201)
async def create_appointments(
    data: AppointmentCreate,
    service: AppointmentService = Depends(get_appointment_service),
):
    """Book one appointment, or a group when several items are sent"""
    return service.create_appointments(data)


@router.put("/{appointment_id}", response_model=AppointmentResponse)
async def update_appointment(
    appointment_id: int,
    data: AppointmentUpdate,
    service: AppointmentService = Depends(get_appointment_service),
):
    """Change status or confirmation, or edit staff/service/time while pending"""
    return service.update_appointment(appointment_id, data)


@router.delete("/{appointment_id}", response_model=AppointmentResponse)
async def cancel_appointment(
    appointment_id: int,
    service: AppointmentService = Depends(get_appointment_service),
):
    """Cancel an appointment; appointments are never physically removed"""
    return service.cancel_appointment(appointment_id)


# ============================================================================
# RESOURCES
# ============================================================================


@resources_router.post("/availability", response_model=ResourceAvailabilityResponse)
async def check_resource_availability(
    data: ResourceAvailabilityRequest,
    service: AppointmentService = Depends(get_appointment_service),
):
    """Report resources that would be exceeded by the given services at a start time"""
    return {"conflicts": service.check_resources(data)}


# ============================================================================
# STAFF AVAILABILITY
# ============================================================================


@staff_router.get("/{staff_id}/availability", response_model=StaffAvailabilityResponse)
async def get_staff_availability(
    staff_id: int,
    day: date = Query(..., alias="date"),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Working windows and blocked intervals of a staff member for a date"""
    result = service.get_staff_availability(staff_id, day)
    return {
        **result,
        "windows": [{"start": start, "end": end} for start, end in result["windows"]],
    }


__all__ = ["router", "resources_router", "staff_router"]
