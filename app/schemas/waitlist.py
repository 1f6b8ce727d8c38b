from typing import Optional
from pydantic import BaseModel, UUID4, Field, model_validator
from datetime import date, datetime, time

from app.models.waitlist import WaitlistStatus
from app.schemas.booking import Booking


# Waitlist: Join (POST /waitlist)
class WaitlistJoin(BaseModel):
    business_id: UUID4
    resource_id: Optional[UUID4] = None
    bookable_type_id: Optional[UUID4] = None
    preferred_date: Optional[date] = None
    flexibility_days: int = Field(0, ge=0)
    preferred_time_start: Optional[time] = None
    preferred_time_end: Optional[time] = None
    party_size: int = Field(1, ge=1)
    guest_name: Optional[str] = None
    guest_email: Optional[str] = None
    guest_phone: Optional[str] = None
    user_ref: Optional[str] = None

    @model_validator(mode="after")
    def check_contact(self):
        if not (self.guest_email or self.guest_phone or self.user_ref):
            raise ValueError("guest_email, guest_phone or user_ref is required")
        return self


# Admin join also sets VIP priority
class WaitlistAdminJoin(WaitlistJoin):
    is_vip: bool = False


# Claim token travels only through the notification channel, never in responses
class WaitlistEntry(BaseModel):
    id: UUID4
    business_id: UUID4
    resource_id: Optional[UUID4] = None
    bookable_type_id: Optional[UUID4] = None
    preferred_date: Optional[date] = None
    flexibility_days: int
    preferred_time_start: Optional[time] = None
    preferred_time_end: Optional[time] = None
    party_size: int
    guest_name: Optional[str] = None
    is_vip: bool
    position: int
    status: WaitlistStatus
    claim_expires_at: Optional[datetime] = None
    notified_at: Optional[datetime] = None
    claimed_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ClaimRequest(BaseModel):
    token: str = Field(..., min_length=1)


class DeclineRequest(BaseModel):
    token: Optional[str] = None


class ClaimResponse(BaseModel):
    entry: WaitlistEntry
    booking: Booking
