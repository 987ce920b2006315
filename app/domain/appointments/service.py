"""Appointment service - Business logic for appointment reads and status changes"""

import logging
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ...auth import CurrentUser
from ...models import (
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_NO_SHOW,
    STATUS_PENDING,
    STATUS_SCHEDULED,
    UNSETTLED_PAYMENT_STATUSES,
    Appointment,
)
from .repository import AppointmentRepository
from .reservation_service import ReservationService
from .schemas import AppointmentStatusUpdate

logger = logging.getLogger(__name__)

# pending -> scheduled only happens through payment reconciliation.
# A paid appointment is scheduled or completed, so only an unpaid one can be a no-show.
MANUAL_TRANSITIONS = {
    STATUS_PENDING: {STATUS_CANCELLED, STATUS_NO_SHOW},
    STATUS_SCHEDULED: {STATUS_CANCELLED, STATUS_COMPLETED},
}
ADMIN_ONLY_STATUSES = {STATUS_COMPLETED, STATUS_NO_SHOW}


class AppointmentService:
    """Service layer for appointment business logic"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = AppointmentRepository()
        self.reservations = ReservationService(db)

    def get_appointment(self, appointment_id: str, user: CurrentUser) -> Appointment:
        """Get an appointment the caller is allowed to see"""
        appointment = self.repo.get_appointment(self.db, appointment_id)
        if not appointment:
            raise HTTPException(status_code=404, detail="Appointment not found")
        if not user.can_act_for_patient(appointment.patient_id):
            raise HTTPException(status_code=403, detail="Not allowed to access this appointment")
        return appointment

    def list_appointments(self, user: CurrentUser, patient_id: Optional[int] = None) -> list[Appointment]:
        """Admins may filter by patient; patients only ever see their own"""
        if not user.is_admin:
            if user.patient_id is None:
                return []
            patient_id = user.patient_id
        return self.repo.list_appointments(self.db, patient_id)

    def update_status(self, appointment_id: str, data: AppointmentStatusUpdate, user: CurrentUser) -> Appointment:
        """Apply a manual status change; cancelling gives the seat back"""
        appointment = self.get_appointment(appointment_id, user)
        current = appointment.status
        target = data.status

        if target == current:
            return appointment

        if target not in MANUAL_TRANSITIONS.get(current, set()):
            raise HTTPException(
                status_code=409, detail=f"Cannot change appointment status from {current} to {target}"
            )
        if target in ADMIN_ONLY_STATUSES and not user.is_admin:
            raise HTTPException(status_code=403, detail=f"Only staff can mark an appointment as {target}")

        values = {"status": target}
        if data.notes is not None:
            values["notes"] = data.notes

        try:
            from_payment_statuses = UNSETTLED_PAYMENT_STATUSES if target == STATUS_NO_SHOW else None
            if not self.repo.transition(self.db, appointment.id, (current,), from_payment_statuses, **values):
                self.db.rollback()
                logger.warning(f"⚠️ Appointment {appointment.id} changed while moving {current} -> {target}")
                raise HTTPException(
                    status_code=409, detail="Appointment was modified concurrently, reload and retry"
                )
            if target == STATUS_CANCELLED:
                self.reservations.release(appointment)
            self.db.commit()
        except HTTPException:
            raise
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(appointment)
        logger.info(f"📝 Appointment {appointment.id}: {current} -> {target} by {user.user_id}")
        return appointment
