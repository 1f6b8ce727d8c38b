from uuid import UUID
from typing import Optional
from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session, selectinload
from sqlalchemy import func

from app.db.session import get_db
from app.api.deps import get_engine
from app.models.booking import Booking, BookingStatus
from app.services.engine import SchedulingEngine
from app.utils.clock import as_utc
from app.schemas.booking import (
    BookingCreate,
    BookingStatusUpdate,
    Booking as BookingSchema,
)
from app.schemas.common import PaginatedResponse

router = APIRouter(prefix="/admin/bookings", tags=["Admin - Bookings"])


# ---------------------------------------------------------------------------
# POST /admin/bookings: book resources directly (walk-ins, phone bookings)
# ---------------------------------------------------------------------------


@router.post("/", response_model=BookingSchema, status_code=status.HTTP_201_CREATED)
def create_booking(
    data: BookingCreate,
    db: Session = Depends(get_db),
    engine: SchedulingEngine = Depends(get_engine),
):
    fields = data.model_dump(exclude={"resource_ids", "start", "end"})
    return engine.create_booking(db, data.resource_ids, data.start, data.end, actor="admin", **fields)


# ---------------------------------------------------------------------------
# GET /admin/bookings: paginated list
# ---------------------------------------------------------------------------


@router.get("/", response_model=PaginatedResponse[BookingSchema])
def list_bookings(
    business_id: Optional[UUID] = None,
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    start_after: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    query = db.query(Booking)
    if business_id:
        query = query.filter(Booking.business_id == business_id)
    if status_filter:
        query = query.filter(Booking.status == status_filter)
    if start_after:
        query = query.filter(Booking.start_datetime >= as_utc(start_after))

    total = query.with_entities(func.count(Booking.id)).scalar()
    rows = (
        query.options(selectinload(Booking.resources))
        .order_by(Booking.start_datetime)
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    return PaginatedResponse(
        data=[BookingSchema.model_validate(b) for b in rows],
        total=total,
        page=page,
        limit=limit,
        total_pages=-(-total // limit) if total else 0,
    )


# ---------------------------------------------------------------------------
# GET /admin/bookings/{id}
# ---------------------------------------------------------------------------


@router.get("/{id}", response_model=BookingSchema)
def get_booking(
    id: UUID,
    db: Session = Depends(get_db),
    engine: SchedulingEngine = Depends(get_engine),
):
    return engine.ledger.get(db, id)


# ---------------------------------------------------------------------------
# PATCH /admin/bookings/{id}/status: approve, deny, cancel, check in, ...
# ---------------------------------------------------------------------------


@router.patch("/{id}/status", response_model=BookingSchema)
def update_booking_status(
    id: UUID,
    data: BookingStatusUpdate,
    db: Session = Depends(get_db),
    engine: SchedulingEngine = Depends(get_engine),
):
    return engine.transition_booking(db, id, data.status, actor=data.actor or "admin")
