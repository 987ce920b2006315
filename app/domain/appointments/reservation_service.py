"""
Reservation service - the only writer of slot seat counters.

A reservation is one transaction: a conditional seat claim on the slot row
followed by the appointment insert. Both land together or neither does.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Optional, Union

from sqlalchemy.orm import Session

from ...config import DEFAULT_APPOINTMENT_DURATION, DEFAULT_APPOINTMENT_FEE
from ...models import PAYMENT_UNPAID, STATUS_PENDING, Appointment
from ..scheduling.repository import SlotRepository
from .repository import AppointmentRepository

logger = logging.getLogger(__name__)

DEFAULT_REASON = "Physiotherapy session"

# Accepted appointment date spellings besides ISO 8601
_DATE_FORMATS = ("%B %d, %Y", "%b %d, %Y", "%d/%m/%Y")


class ReservationOutcome(str, Enum):
    RESERVED = "reserved"
    SLOT_NOT_FOUND = "slot_not_found"
    SLOT_UNAVAILABLE = "slot_unavailable"
    INVALID_DATE = "invalid_date"


@dataclass
class ReservationDetails:
    """Patient supplied details of the appointment being reserved"""

    appointment_date: Union[str, date]
    start_time: Optional[str] = None
    duration: Optional[int] = None
    reason: Optional[str] = None
    fee: Optional[float] = None


@dataclass
class ReservationResult:
    outcome: ReservationOutcome
    appointment: Optional[Appointment] = None
    field: Optional[str] = None
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome == ReservationOutcome.RESERVED


def parse_appointment_date(value: Union[str, date, None]) -> Optional[date]:
    """Parse a date or ISO timestamp; returns None when it cannot be read"""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value).strip()
    if not text:
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


class ReservationService:
    """Atomic check + create + increment against a slot's capacity"""

    def __init__(self, db: Session):
        self.db = db
        self.slots = SlotRepository()
        self.appointments = AppointmentRepository()

    def reserve(
        self,
        slot_id: int,
        patient_id: int,
        details: ReservationDetails,
        today: Optional[date] = None,
    ) -> ReservationResult:
        """Reserve one seat and create a pending, unpaid appointment"""
        try:
            result = self.reserve_in_transaction(slot_id, patient_id, details, today=today)
            if not result.ok:
                self.db.rollback()
                return result
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(result.appointment)
        logger.info(
            f"✅ Reserved slot {slot_id} for patient {patient_id}: appointment {result.appointment.id}"
        )
        return result

    def reserve_in_transaction(
        self,
        slot_id: int,
        patient_id: int,
        details: ReservationDetails,
        today: Optional[date] = None,
    ) -> ReservationResult:
        """Same as ``reserve`` but leaves the transaction open.

        The caller commits, or rolls back on any outcome other than RESERVED.
        """
        appointment_date = parse_appointment_date(details.appointment_date)
        if appointment_date is None:
            return ReservationResult(
                ReservationOutcome.INVALID_DATE, field="appointmentDate", reason="Invalid appointment date"
            )
        if appointment_date < (today or date.today()):
            return ReservationResult(
                ReservationOutcome.INVALID_DATE,
                field="appointmentDate",
                reason="Appointment date is in the past",
            )

        slot = self.slots.get_slot(self.db, slot_id)
        if slot is None:
            return ReservationResult(
                ReservationOutcome.SLOT_NOT_FOUND, field="slotId", reason="Appointment slot not found"
            )
        if slot.date != appointment_date:
            return ReservationResult(
                ReservationOutcome.INVALID_DATE,
                field="appointmentDate",
                reason=f"Appointment date does not match the slot date ({slot.date.isoformat()})",
            )

        if not self.slots.claim_seat(self.db, slot_id):
            logger.info(f"🚫 Slot {slot_id} has no remaining capacity")
            return ReservationResult(
                ReservationOutcome.SLOT_UNAVAILABLE,
                field="slotId",
                reason="This time slot is no longer available",
            )

        appointment = self.appointments.add_appointment(
            self.db,
            slot_id=slot.id,
            patient_id=patient_id,
            appointment_date=appointment_date,
            start_time=details.start_time or slot.start_time,
            duration=details.duration or DEFAULT_APPOINTMENT_DURATION,
            fee=details.fee if details.fee is not None else DEFAULT_APPOINTMENT_FEE,
            reason=details.reason or DEFAULT_REASON,
            status=STATUS_PENDING,
            payment_status=PAYMENT_UNPAID,
        )
        return ReservationResult(ReservationOutcome.RESERVED, appointment=appointment)

    def release(self, appointment: Appointment) -> bool:
        """Give the appointment's seat back (no commit)"""
        released = self.slots.release_seat(self.db, appointment.slot_id)
        if released:
            logger.info(f"↩️ Released seat on slot {appointment.slot_id} from appointment {appointment.id}")
        else:
            logger.warning(
                f"⚠️ Slot {appointment.slot_id} had no booked seat to release for appointment {appointment.id}"
            )
        return released
