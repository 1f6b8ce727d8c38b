from uuid import UUID
from typing import List, Optional
from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.api.deps import get_engine
from app.models.waitlist import WaitlistStatus
from app.services.engine import SchedulingEngine
from app.utils.clock import as_utc
from app.schemas.waitlist import WaitlistAdminJoin, WaitlistEntry as WaitlistEntrySchema

router = APIRouter(prefix="/admin/waitlist", tags=["Admin - Waitlist"])


@router.get("/", response_model=List[WaitlistEntrySchema])
def list_waitlist(
    business_id: Optional[UUID] = None,
    status_filter: Optional[WaitlistStatus] = Query(None, alias="status"),
    db: Session = Depends(get_db),
    engine: SchedulingEngine = Depends(get_engine),
):
    """Entries in offer order (VIP first, then queue position)."""
    return engine.list_entries(db, business_id, status_filter)


@router.post("/", response_model=WaitlistEntrySchema, status_code=status.HTTP_201_CREATED)
def add_to_waitlist(
    data: WaitlistAdminJoin,
    db: Session = Depends(get_db),
    engine: SchedulingEngine = Depends(get_engine),
):
    preferences = data.model_dump(exclude={"business_id"})
    return engine.join_waitlist(db, data.business_id, **preferences)


@router.post("/reallocate", response_model=Optional[WaitlistEntrySchema])
def reallocate_range(
    resource_id: UUID,
    start: datetime,
    end: datetime,
    db: Session = Depends(get_db),
    engine: SchedulingEngine = Depends(get_engine),
):
    """Run the allocator by hand for a range, e.g. after fixing a calendar mistake."""
    return engine.on_slot_freed(db, resource_id, as_utc(start), as_utc(end))
