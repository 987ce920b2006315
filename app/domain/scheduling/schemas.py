"""Scheduling domain schemas - Pydantic models for validation"""

import re
from datetime import date as date_type
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

TIME_PATTERN = re.compile(r"^([01]?[0-9]|2[0-3]):[0-5][0-9]$")


def normalize_time(value: str) -> str:
    """Validate an HH:MM string and zero-pad the hour"""
    if not value or not TIME_PATTERN.match(value):
        raise ValueError("Time must be in HH:MM format")
    hours, minutes = value.split(":")
    return f"{int(hours):02d}:{minutes}"


class SlotCreate(BaseModel):
    """Schema for creating a slot (admin)"""

    date: date_type
    startTime: str
    endTime: str
    capacity: int = 1
    isAvailable: bool = True

    @field_validator("startTime", "endTime")
    @classmethod
    def validate_time(cls, v: str) -> str:
        return normalize_time(v)

    @field_validator("capacity")
    @classmethod
    def validate_capacity(cls, v: int) -> int:
        if v < 1:
            raise ValueError("capacity must be at least 1")
        return v

    @model_validator(mode="after")
    def validate_window(self):
        if self.endTime <= self.startTime:
            raise ValueError("endTime must be after startTime")
        return self


class SlotUpdate(BaseModel):
    """Schema for updating a slot (admin); counters are not editable"""

    date: Optional[date_type] = None
    startTime: Optional[str] = None
    endTime: Optional[str] = None
    capacity: Optional[int] = None
    isAvailable: Optional[bool] = None

    @field_validator("startTime", "endTime")
    @classmethod
    def validate_time(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return normalize_time(v)

    @field_validator("capacity")
    @classmethod
    def validate_capacity(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 1:
            raise ValueError("capacity must be at least 1")
        return v


class SlotResponse(BaseModel):
    """Slot as exposed to clients, decorated with remaining capacity"""

    model_config = ConfigDict(from_attributes=True)

    id: int
    date: date_type
    startTime: str
    endTime: str
    capacity: int
    bookedCount: int
    isAvailable: bool
    remainingCapacity: int
    isFull: bool
    created_at: Optional[datetime] = None

    @classmethod
    def from_slot(cls, slot) -> "SlotResponse":
        return cls(
            id=slot.id,
            date=slot.date,
            startTime=slot.start_time,
            endTime=slot.end_time,
            capacity=slot.capacity,
            bookedCount=slot.booked_count,
            isAvailable=slot.is_available,
            remainingCapacity=slot.remaining_capacity,
            isFull=slot.is_full,
            created_at=slot.created_at,
        )


class SlotDetailResponse(SlotResponse):
    """Admin view of a slot with appointment counts by status"""

    appointmentCount: int = 0
    pendingAppointments: int = 0
    scheduledAppointments: int = 0
    activeAppointments: int = 0
