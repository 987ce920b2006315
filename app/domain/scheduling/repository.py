"""Slot repository - Database operations for appointment slots"""

from datetime import date
from typing import Optional

from sqlalchemy import and_, case, func, update
from sqlalchemy.orm import Session

from ...models import Appointment, AppointmentSlot


class SlotRepository:
    """Repository for appointment slot database operations.

    The two counter statements (``claim_seat`` / ``release_seat``) are the only
    writers of ``booked_count``; they are called from ReservationService and
    never commit on their own.
    """

    @staticmethod
    def get_slot(db: Session, slot_id: int) -> Optional[AppointmentSlot]:
        """Get slot by ID"""
        return db.query(AppointmentSlot).filter(AppointmentSlot.id == slot_id).first()

    @staticmethod
    def get_slot_by_start(db: Session, slot_date: date, start_time: str) -> Optional[AppointmentSlot]:
        """Get the slot starting at a given date and time"""
        return (
            db.query(AppointmentSlot)
            .filter(AppointmentSlot.date == slot_date, AppointmentSlot.start_time == start_time)
            .first()
        )

    @staticmethod
    def list_available(
        db: Session,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> list[AppointmentSlot]:
        """Slots that can still take a booking, optionally bounded by date (inclusive)"""
        query = db.query(AppointmentSlot).filter(
            AppointmentSlot.is_available.is_(True),
            AppointmentSlot.booked_count < AppointmentSlot.capacity,
        )
        if start is not None:
            query = query.filter(AppointmentSlot.date >= start)
        if end is not None:
            query = query.filter(AppointmentSlot.date <= end)
        return query.order_by(AppointmentSlot.date.asc(), AppointmentSlot.start_time.asc()).all()

    @staticmethod
    def list_slots(
        db: Session, slot_date: Optional[date] = None, available: Optional[bool] = None
    ) -> list[AppointmentSlot]:
        """All slots for the admin view"""
        query = db.query(AppointmentSlot)
        if slot_date is not None:
            query = query.filter(AppointmentSlot.date == slot_date)
        if available is not None:
            query = query.filter(AppointmentSlot.is_available.is_(available))
        return query.order_by(AppointmentSlot.date.asc(), AppointmentSlot.start_time.asc()).all()

    @staticmethod
    def count_appointments_by_status(db: Session, slot_id: int) -> dict[str, int]:
        rows = (
            db.query(Appointment.status, func.count(Appointment.id))
            .filter(Appointment.slot_id == slot_id)
            .group_by(Appointment.status)
            .all()
        )
        return {status: count for status, count in rows}

    @staticmethod
    def create_slot(db: Session, **slot_data) -> AppointmentSlot:
        """Create a new slot"""
        slot = AppointmentSlot(booked_count=0, **slot_data)
        db.add(slot)
        db.commit()
        db.refresh(slot)
        return slot

    @staticmethod
    def update_slot(db: Session, slot: AppointmentSlot, **updates) -> AppointmentSlot:
        """Update slot fields other than the booking counter"""
        for key, value in updates.items():
            if value is not None and hasattr(slot, key):
                setattr(slot, key, value)
        db.flush()
        # Recompute from the stored counter, which a concurrent reservation may have moved
        db.execute(
            update(AppointmentSlot)
            .where(AppointmentSlot.id == slot.id)
            .values(
                is_available=and_(
                    AppointmentSlot.disabled.is_(False),
                    AppointmentSlot.booked_count < AppointmentSlot.capacity,
                )
            )
            .execution_options(synchronize_session=False)
        )

        db.commit()
        db.refresh(slot)
        return slot

    @staticmethod
    def delete_slot(db: Session, slot: AppointmentSlot) -> None:
        db.delete(slot)
        db.commit()

    @staticmethod
    def claim_seat(db: Session, slot_id: int) -> bool:
        """Atomically take one seat. Returns False when the slot is full or closed.

        A single conditional UPDATE; SET expressions see the pre-update row, and the
        row (or database) write lock serializes concurrent claims on one slot.
        """
        result = db.execute(
            update(AppointmentSlot)
            .where(
                and_(
                    AppointmentSlot.id == slot_id,
                    AppointmentSlot.is_available.is_(True),
                    AppointmentSlot.disabled.is_(False),
                    AppointmentSlot.booked_count < AppointmentSlot.capacity,
                )
            )
            .values(
                booked_count=AppointmentSlot.booked_count + 1,
                is_available=AppointmentSlot.booked_count + 1 < AppointmentSlot.capacity,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    def release_seat(db: Session, slot_id: int) -> bool:
        """Atomically give one seat back. Returns False if there was nothing to release."""
        result = db.execute(
            update(AppointmentSlot)
            .where(AppointmentSlot.id == slot_id, AppointmentSlot.booked_count > 0)
            .values(
                booked_count=AppointmentSlot.booked_count - 1,
                is_available=case(
                    (AppointmentSlot.disabled.is_(True), False),
                    else_=AppointmentSlot.booked_count - 1 < AppointmentSlot.capacity,
                ),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
