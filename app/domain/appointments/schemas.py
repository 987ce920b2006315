"""Appointment domain schemas - Pydantic models for validation"""

from datetime import date as date_type
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

from ...models import APPOINTMENT_STATUSES
from ..scheduling.schemas import normalize_time


class ReservationRequest(BaseModel):
    """Schema for reserving a seat in a slot.

    ``appointmentDate`` stays a string here: an unparseable or past date is a
    reservation outcome (400), not a request-shape error (422).
    """

    slotId: int
    patientId: int
    appointmentDate: str
    startTime: Optional[str] = None
    duration: Optional[int] = None
    reason: Optional[str] = None

    @field_validator("startTime")
    @classmethod
    def validate_start_time(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return normalize_time(v)

    @field_validator("duration")
    @classmethod
    def validate_duration(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v <= 0:
            raise ValueError("duration must be a positive number of minutes")
        return v


class AppointmentStatusUpdate(BaseModel):
    """Schema for a manual status change (cancel / complete / no-show)"""

    status: str
    notes: Optional[str] = None

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in APPOINTMENT_STATUSES:
            raise ValueError(f"status must be one of: {', '.join(APPOINTMENT_STATUSES)}")
        return v


class AppointmentResponse(BaseModel):
    """Schema for appointment response"""

    model_config = ConfigDict(from_attributes=True)

    id: str
    slotId: int
    patientId: int
    appointmentDate: date_type
    startTime: str
    duration: int
    fee: float
    reason: Optional[str] = None
    notes: Optional[str] = None
    status: str
    paymentStatus: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_appointment(cls, appointment) -> "AppointmentResponse":
        return cls(
            id=appointment.id,
            slotId=appointment.slot_id,
            patientId=appointment.patient_id,
            appointmentDate=appointment.appointment_date,
            startTime=appointment.start_time,
            duration=appointment.duration,
            fee=appointment.fee,
            reason=appointment.reason,
            notes=appointment.notes,
            status=appointment.status,
            paymentStatus=appointment.payment_status,
            created_at=appointment.created_at,
            updated_at=appointment.updated_at,
        )
