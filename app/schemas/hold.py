from typing import Optional
from pydantic import BaseModel, UUID4, Field, field_validator
from datetime import datetime

from app.models.slot_hold import SlotHoldStatus, SlotHoldPurpose
from app.schemas.common import require_aware


# Hold: Create (POST /holds)
class HoldCreate(BaseModel):
    resource_id: UUID4
    start: datetime
    end: datetime
    holder: str = Field(..., min_length=1, max_length=255)  # user id or guest session id
    bookable_type_id: Optional[UUID4] = None
    party_size: Optional[int] = Field(None, ge=1)

    @field_validator("start", "end")
    @classmethod
    def require_timezone(cls, v: datetime):
        return require_aware(v)


# Hold: Convert (POST /holds/{id}/convert)
class HoldConvert(BaseModel):
    holder: Optional[str] = None
    guest_name: Optional[str] = None
    guest_email: Optional[str] = None
    guest_phone: Optional[str] = None
    party_size: int = Field(1, ge=1)
    notes: Optional[str] = None


class Hold(BaseModel):
    id: UUID4
    resource_id: UUID4
    business_id: UUID4
    bookable_type_id: Optional[UUID4] = None
    start_datetime: datetime
    end_datetime: datetime
    status: SlotHoldStatus
    purpose: SlotHoldPurpose
    holder_ref: str
    booking_id: Optional[UUID4] = None
    created_at: datetime
    expires_at: datetime

    class Config:
        from_attributes = True
