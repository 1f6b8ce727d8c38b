from __future__ import annotations

from typing import Annotated, Optional, List
from pydantic import BaseModel, Field, UUID4, field_validator
from datetime import datetime

from app.models.booking import BookingStatus
from app.schemas.common import require_aware


# Booking: Create (POST /admin/bookings)
class BookingCreate(BaseModel):
    resource_ids: Annotated[List[UUID4], Field(min_length=1, max_length=20)]
    start: datetime
    end: datetime
    status: BookingStatus = BookingStatus.pending
    bookable_type_id: Optional[UUID4] = None
    guest_name: Optional[str] = None
    guest_email: Optional[str] = None
    guest_phone: Optional[str] = None
    party_size: int = Field(1, ge=1)
    notes: Optional[str] = None

    @field_validator("start", "end")
    @classmethod
    def require_timezone(cls, v: datetime):
        return require_aware(v)


# Booking: Status change (PATCH /admin/bookings/{id}/status)
class BookingStatusUpdate(BaseModel):
    status: BookingStatus
    actor: Optional[str] = None


# Booking: Full response
class Booking(BaseModel):
    id: UUID4
    business_id: UUID4
    bookable_type_id: Optional[UUID4] = None
    resource_ids: List[UUID4] = []
    start_datetime: datetime
    end_datetime: datetime
    status: BookingStatus
    guest_name: Optional[str] = None
    guest_email: Optional[str] = None
    guest_phone: Optional[str] = None
    party_size: int
    source_hold_id: Optional[UUID4] = None
    notes: Optional[str] = None
    cancelled_at: Optional[datetime] = None

    class Config:
        from_attributes = True
