from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.api.deps import get_engine
from app.services.engine import SchedulingEngine
from app.schemas.waitlist import (
    WaitlistJoin,
    WaitlistEntry as WaitlistEntrySchema,
    ClaimRequest,
    ClaimResponse,
    DeclineRequest,
)
from app.schemas.booking import Booking as BookingSchema

router = APIRouter(prefix="/waitlist", tags=["Waitlist"])


# ---------------------------------------------------------------------------
# POST /waitlist: join a business's waitlist
# ---------------------------------------------------------------------------


@router.post("/", response_model=WaitlistEntrySchema, status_code=status.HTTP_201_CREATED)
def join_waitlist(
    data: WaitlistJoin,
    db: Session = Depends(get_db),
    engine: SchedulingEngine = Depends(get_engine),
):
    preferences = data.model_dump(exclude={"business_id"})
    return engine.join_waitlist(db, data.business_id, **preferences)


# ---------------------------------------------------------------------------
# GET /waitlist/{id}: entry status and queue position
# ---------------------------------------------------------------------------


@router.get("/{id}", response_model=WaitlistEntrySchema)
def get_waitlist_entry(
    id: UUID,
    db: Session = Depends(get_db),
    engine: SchedulingEngine = Depends(get_engine),
):
    return engine.get_entry(db, id)


# ---------------------------------------------------------------------------
# POST /waitlist/{id}/claim: accept an offered slot
# ---------------------------------------------------------------------------


@router.post("/{id}/claim", response_model=ClaimResponse)
def claim_offer(
    id: UUID,
    data: ClaimRequest,
    db: Session = Depends(get_db),
    engine: SchedulingEngine = Depends(get_engine),
):
    entry, booking = engine.claim_offer(db, id, data.token)
    return ClaimResponse(
        entry=WaitlistEntrySchema.model_validate(entry),
        booking=BookingSchema.model_validate(booking),
    )


# ---------------------------------------------------------------------------
# POST /waitlist/{id}/decline: turn an offer down
# ---------------------------------------------------------------------------


@router.post("/{id}/decline", response_model=WaitlistEntrySchema)
def decline_offer(
    id: UUID,
    data: DeclineRequest,
    db: Session = Depends(get_db),
    engine: SchedulingEngine = Depends(get_engine),
):
    return engine.decline_offer(db, id, data.token)
