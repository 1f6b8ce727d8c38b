from uuid import UUID
from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.api.deps import get_engine
from app.services.engine import SchedulingEngine
from app.schemas.hold import HoldCreate, HoldConvert, Hold as HoldSchema
from app.schemas.booking import Booking as BookingSchema

router = APIRouter(prefix="/holds", tags=["Holds"])


# ---------------------------------------------------------------------------
# POST /holds: start checkout on a slot
# ---------------------------------------------------------------------------


@router.post("/", response_model=HoldSchema, status_code=status.HTTP_201_CREATED)
def acquire_hold(
    data: HoldCreate,
    db: Session = Depends(get_db),
    engine: SchedulingEngine = Depends(get_engine),
):
    return engine.acquire_hold(
        db,
        data.resource_id,
        data.start,
        data.end,
        data.holder,
        bookable_type_id=data.bookable_type_id,
        party_size=data.party_size,
    )


# ---------------------------------------------------------------------------
# POST /holds/{id}/renew: extend the checkout window
# ---------------------------------------------------------------------------


@router.post("/{id}/renew", response_model=HoldSchema)
def renew_hold(
    id: UUID,
    holder: Optional[str] = None,
    db: Session = Depends(get_db),
    engine: SchedulingEngine = Depends(get_engine),
):
    return engine.renew_hold(db, id, holder)


# ---------------------------------------------------------------------------
# DELETE /holds/{id}: customer abandoned checkout
# ---------------------------------------------------------------------------


@router.delete("/{id}", response_model=HoldSchema)
def release_hold(
    id: UUID,
    holder: Optional[str] = None,
    db: Session = Depends(get_db),
    engine: SchedulingEngine = Depends(get_engine),
):
    return engine.release_hold(db, id, holder)


# ---------------------------------------------------------------------------
# POST /holds/{id}/convert: checkout succeeded, confirm the booking
# ---------------------------------------------------------------------------


@router.post("/{id}/convert", response_model=BookingSchema, status_code=status.HTTP_201_CREATED)
def convert_hold(
    id: UUID,
    data: HoldConvert,
    db: Session = Depends(get_db),
    engine: SchedulingEngine = Depends(get_engine),
):
    guest = data.model_dump(exclude={"holder"})
    return engine.convert_hold(db, id, data.holder, **guest)
