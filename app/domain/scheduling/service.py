"""Slot service - Business logic for slot queries and slot administration"""

import logging
from datetime import date, timedelta
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ...config import SLOT_WINDOW_DAYS
from ...models import STATUS_PENDING, STATUS_SCHEDULED, AppointmentSlot
from .repository import SlotRepository
from .schemas import SlotCreate, SlotDetailResponse, SlotResponse, SlotUpdate

logger = logging.getLogger(__name__)


def parse_date_filter(value: Optional[str]) -> Optional[date]:
    """Parse a YYYY-MM-DD query parameter"""
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise HTTPException(
            status_code=400, detail={"field": "date", "reason": "Invalid date format, expected YYYY-MM-DD"}
        ) from None


class SlotService:
    """Service layer for slot queries (public) and slot management (admin)"""

    def __init__(self, db: Session, window_days: int = SLOT_WINDOW_DAYS):
        self.db = db
        self.repo = SlotRepository()
        self.window_days = window_days

    def list_available(
        self, date_filter: Optional[date] = None, show_all: bool = False, today: Optional[date] = None
    ) -> list[SlotResponse]:
        """Bookable slots, each decorated with its remaining capacity.

        A date filter selects that single day. Without one, results are limited to
        the rolling window starting today unless ``show_all`` is set.
        """
        if date_filter is not None:
            slots = self.repo.list_available(self.db, start=date_filter, end=date_filter)
        elif show_all:
            slots = self.repo.list_available(self.db)
        else:
            start = today or date.today()
            slots = self.repo.list_available(
                self.db, start=start, end=start + timedelta(days=self.window_days)
            )
        return [SlotResponse.from_slot(slot) for slot in slots]

    def get_slot(self, slot_id: int) -> AppointmentSlot:
        slot = self.repo.get_slot(self.db, slot_id)
        if not slot:
            raise HTTPException(status_code=404, detail="Appointment slot not found")
        return slot

    def get_slot_detail(self, slot_id: int) -> SlotDetailResponse:
        """Slot with appointment counts by status"""
        slot = self.get_slot(slot_id)
        counts = self.repo.count_appointments_by_status(self.db, slot.id)
        pending = counts.get(STATUS_PENDING, 0)
        scheduled = counts.get(STATUS_SCHEDULED, 0)
        return SlotDetailResponse(
            **SlotResponse.from_slot(slot).model_dump(),
            appointmentCount=sum(counts.values()),
            pendingAppointments=pending,
            scheduledAppointments=scheduled,
            activeAppointments=pending + scheduled,
        )

    def list_slots(self, slot_date: Optional[date] = None, available: Optional[bool] = None) -> list[SlotResponse]:
        return [SlotResponse.from_slot(s) for s in self.repo.list_slots(self.db, slot_date, available)]

    def create_slot(self, data: SlotCreate) -> AppointmentSlot:
        """Create a new slot; date + start time must be unique"""
        if self.repo.get_slot_by_start(self.db, data.date, data.startTime):
            raise HTTPException(
                status_code=409, detail="A slot with this date and start time already exists"
            )

        slot = self.repo.create_slot(
            self.db,
            date=data.date,
            start_time=data.startTime,
            end_time=data.endTime,
            capacity=data.capacity,
            disabled=not data.isAvailable,
            is_available=data.isAvailable,
        )
        logger.info(f"📅 Created slot {slot.id} on {slot.date} at {slot.start_time} (capacity={slot.capacity})")
        return slot

    def update_slot(self, slot_id: int, data: SlotUpdate) -> AppointmentSlot:
        """Update slot details; capacity may not drop below seats already booked"""
        slot = self.get_slot(slot_id)

        if data.capacity is not None and data.capacity < slot.booked_count:
            raise HTTPException(
                status_code=400, detail="Cannot reduce capacity below current booking count"
            )

        new_date = data.date or slot.date
        new_start = data.startTime or slot.start_time
        new_end = data.endTime or slot.end_time
        if new_end <= new_start:
            raise HTTPException(status_code=400, detail="endTime must be after startTime")
        if (new_date, new_start) != (slot.date, slot.start_time):
            clash = self.repo.get_slot_by_start(self.db, new_date, new_start)
            if clash and clash.id != slot.id:
                raise HTTPException(
                    status_code=409, detail="A slot with this date and start time already exists"
                )

        updates = {
            "date": data.date,
            "start_time": data.startTime,
            "end_time": data.endTime,
            "capacity": data.capacity,
        }
        if data.isAvailable is not None:
            updates["disabled"] = not data.isAvailable

        slot = self.repo.update_slot(self.db, slot, **updates)
        logger.info(f"📝 Updated slot {slot.id}: {', '.join(k for k, v in updates.items() if v is not None)}")
        return slot

    def delete_slot(self, slot_id: int) -> dict:
        """Delete a slot that no appointment references"""
        slot = self.get_slot(slot_id)
        if sum(self.repo.count_appointments_by_status(self.db, slot.id).values()) > 0:
            raise HTTPException(status_code=400, detail="Cannot delete slot with existing appointments")

        self.repo.delete_slot(self.db, slot)
        logger.info(f"🗑️ Deleted slot {slot_id}")
        return {"message": "Appointment slot deleted successfully"}
