"""Appointment router - FastAPI endpoints for reservations and appointment status"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ...auth import CurrentUser, get_current_user
from ...database import get_db
from ...rate_limiter import rate_limit_reservation
from .reservation_service import ReservationDetails, ReservationOutcome, ReservationService
from .schemas import AppointmentResponse, AppointmentStatusUpdate, ReservationRequest
from .service import AppointmentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/appointments", tags=["Appointments"])

RESERVATION_ERROR_STATUS = {
    ReservationOutcome.SLOT_NOT_FOUND: 404,
    ReservationOutcome.SLOT_UNAVAILABLE: 409,
    ReservationOutcome.INVALID_DATE: 400,
}


def get_reservation_service(db: Session = Depends(get_db)) -> ReservationService:
    """Dependency injection for ReservationService"""
    return ReservationService(db)


def get_appointment_service(db: Session = Depends(get_db)) -> AppointmentService:
    """Dependency injection for AppointmentService"""
    return AppointmentService(db)


@router.post("", response_model=AppointmentResponse, status_code=201)
def reserve_appointment(
    data: ReservationRequest,
    user: CurrentUser = Depends(get_current_user),
    service: ReservationService = Depends(get_reservation_service),
    _: None = Depends(rate_limit_reservation),
):
    """Reserve a seat in a slot; the appointment stays pending until paid"""
    if not user.can_act_for_patient(data.patientId):
        raise HTTPException(status_code=403, detail="Cannot book appointments for another patient")

    result = service.reserve(
        data.slotId,
        data.patientId,
        ReservationDetails(
            appointment_date=data.appointmentDate,
            start_time=data.startTime,
            duration=data.duration,
            reason=data.reason,
        ),
    )
    if not result.ok:
        raise HTTPException(
            status_code=RESERVATION_ERROR_STATUS[result.outcome],
            detail={"outcome": result.outcome.value, "field": result.field, "reason": result.reason},
        )
    return AppointmentResponse.from_appointment(result.appointment)


@router.get("", response_model=list[AppointmentResponse])
def list_appointments(
    patientId: Optional[int] = Query(None),
    user: CurrentUser = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service),
):
    return [AppointmentResponse.from_appointment(a) for a in service.list_appointments(user, patientId)]


@router.get("/{appointment_id}", response_model=AppointmentResponse)
def get_appointment(
    appointment_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service),
):
    return AppointmentResponse.from_appointment(service.get_appointment(appointment_id, user))


@router.patch("/{appointment_id}", response_model=AppointmentResponse)
def update_appointment_status(
    appointment_id: str,
    data: AppointmentStatusUpdate,
    user: CurrentUser = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Cancel, complete or mark a no-show"""
    return AppointmentResponse.from_appointment(service.update_status(appointment_id, data, user))
