from uuid import UUID
from typing import List, Optional
from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.api.deps import get_engine
from app.models.business import BusinessType
from app.services.engine import SchedulingEngine
from app.schemas.availability import Slot, NextAvailable

router = APIRouter(prefix="/availability", tags=["Availability"])


# ---------------------------------------------------------------------------
# GET /availability: candidate slots over a local date range
# ---------------------------------------------------------------------------


@router.get("/", response_model=List[Slot])
def get_availability(
    start_date: date,
    end_date: Optional[date] = None,
    business_id: Optional[UUID] = None,
    business_type: Optional[BusinessType] = None,
    resource_id: Optional[UUID] = None,
    bookable_type_id: Optional[UUID] = None,
    party_size: Optional[int] = Query(None, ge=1),
    duration_mins: Optional[int] = Query(None, ge=1),
    only_available: bool = False,
    db: Session = Depends(get_db),
    engine: SchedulingEngine = Depends(get_engine),
):
    slots = engine.resolve(
        db,
        start_date,
        end_date,
        business_id=business_id,
        business_type=business_type,
        resource_id=resource_id,
        bookable_type_id=bookable_type_id,
        party_size=party_size,
        duration_mins=duration_mins,
    )
    if only_available:
        slots = [s for s in slots if s.available]
    return slots


# ---------------------------------------------------------------------------
# GET /availability/next: first open slots per business and bookable type
# ---------------------------------------------------------------------------


@router.get("/next", response_model=List[NextAvailable])
def get_next_available(
    business_id: Optional[UUID] = None,
    business_type: Optional[BusinessType] = None,
    bookable_type_id: Optional[UUID] = None,
    n: Optional[int] = Query(None, ge=1, le=20),
    db: Session = Depends(get_db),
    engine: SchedulingEngine = Depends(get_engine),
):
    return engine.next_available(
        db,
        business_id=business_id,
        business_type=business_type,
        bookable_type_id=bookable_type_id,
        n=n,
    )
