"""Slot router - FastAPI endpoints for slot availability and administration"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import CurrentUser, require_admin
from ...database import get_db
from .schemas import SlotCreate, SlotDetailResponse, SlotResponse, SlotUpdate
from .service import SlotService, parse_date_filter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/slots", tags=["Slots"])
admin_router = APIRouter(prefix="/admin/slots", tags=["Admin Slots"])


def get_slot_service(db: Session = Depends(get_db)) -> SlotService:
    """Dependency injection for SlotService"""
    return SlotService(db)


# ============================================================================
# PUBLIC AVAILABILITY
# ============================================================================


@router.get("/available", response_model=list[SlotResponse])
def get_available_slots(
    date: Optional[str] = Query(None, description="Single day, YYYY-MM-DD"),
    showAll: bool = Query(False, description="Ignore the rolling booking window"),
    service: SlotService = Depends(get_slot_service),
):
    """Bookable slots with their remaining capacity"""
    return service.list_available(date_filter=parse_date_filter(date), show_all=showAll)


# ============================================================================
# ADMIN SLOT MANAGEMENT
# ============================================================================


@admin_router.get("", response_model=list[SlotResponse])
def list_slots(
    date: Optional[str] = Query(None),
    available: Optional[bool] = Query(None),
    admin: CurrentUser = Depends(require_admin),
    service: SlotService = Depends(get_slot_service),
):
    return service.list_slots(parse_date_filter(date), available)


@admin_router.get("/{slot_id}", response_model=SlotDetailResponse)
def get_slot(
    slot_id: int,
    admin: CurrentUser = Depends(require_admin),
    service: SlotService = Depends(get_slot_service),
):
    """Slot with appointment counts by status"""
    return service.get_slot_detail(slot_id)


@admin_router.post("", response_model=SlotResponse, status_code=201)
def create_slot(
    data: SlotCreate,
    admin: CurrentUser = Depends(require_admin),
    service: SlotService = Depends(get_slot_service),
):
    slot = service.create_slot(data)
    return SlotResponse.from_slot(slot)


@admin_router.put("/{slot_id}", response_model=SlotResponse)
def update_slot(
    slot_id: int,
    data: SlotUpdate,
    admin: CurrentUser = Depends(require_admin),
    service: SlotService = Depends(get_slot_service),
):
    slot = service.update_slot(slot_id, data)
    return SlotResponse.from_slot(slot)


@admin_router.delete("/{slot_id}")
def delete_slot(
    slot_id: int,
    admin: CurrentUser = Depends(require_admin),
    service: SlotService = Depends(get_slot_service),
):
    return service.delete_slot(slot_id)
