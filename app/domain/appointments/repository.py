"""Appointment repository - Database operations for appointments"""

from typing import Optional

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from ...models import STATUS_CANCELLED, Appointment


class AppointmentRepository:
    """Repository for appointment database operations"""

    @staticmethod
    def get_appointment(db: Session, appointment_id: str) -> Optional[Appointment]:
        """Get appointment by ID"""
        return db.query(Appointment).filter(Appointment.id == appointment_id).first()

    @staticmethod
    def get_appointment_for_update(db: Session, appointment_id: str) -> Optional[Appointment]:
        """Get appointment by ID, locking the row until the transaction ends"""
        return (
            db.query(Appointment)
            .filter(Appointment.id == appointment_id)
            .populate_existing()
            .with_for_update()
            .first()
        )

    @staticmethod
    def list_appointments(db: Session, patient_id: Optional[int] = None, limit: int = 100) -> list[Appointment]:
        query = db.query(Appointment)
        if patient_id is not None:
            query = query.filter(Appointment.patient_id == patient_id)
        return (
            query.order_by(Appointment.appointment_date.desc(), Appointment.start_time.desc())
            .limit(limit)
            .all()
        )

    @staticmethod
    def count_active_for_slot(db: Session, slot_id: int) -> int:
        """Appointments holding a seat (everything except cancelled).

        Not used on the request path; tests compare it with ``booked_count``.
        """
        return (
            db.query(func.count(Appointment.id))
            .filter(Appointment.slot_id == slot_id, Appointment.status != STATUS_CANCELLED)
            .scalar()
        )

    @staticmethod
    def add_appointment(db: Session, **appointment_data) -> Appointment:
        """Stage a new appointment in the current transaction (no commit)"""
        appointment = Appointment(**appointment_data)
        db.add(appointment)
        db.flush()
        return appointment

    @staticmethod
    def transition(
        db: Session,
        appointment_id: str,
        from_statuses: tuple[str, ...],
        from_payment_statuses: Optional[tuple[str, ...]] = None,
        **values,
    ) -> bool:
        """Compare-and-set the appointment state (no commit).

        Only applies when the stored status is still one of ``from_statuses``;
        returns False when another writer got there first.
        """
        criteria = [Appointment.id == appointment_id, Appointment.status.in_(from_statuses)]
        if from_payment_statuses is not None:
            criteria.append(Appointment.payment_status.in_(from_payment_statuses))

        result = db.execute(
            update(Appointment)
            .where(*criteria)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
