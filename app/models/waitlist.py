import uuid
import enum
from sqlalchemy import Column, String, Boolean, Date, Time, Integer, ForeignKey, Uuid, Enum as SAEnum
from sqlalchemy.orm import relationship
from app.db.session import Base
from app.db.types import UTCDateTime

class WaitlistStatus(str, enum.Enum):
    waiting = "waiting"
    offered = "offered"
    claimed = "claimed"
    expired = "expired"
    declined = "declined"

class OfferStatus(str, enum.Enum):
    outstanding = "outstanding"
    claimed = "claimed"
    expired = "expired"
    declined = "declined"

class WaitlistEntry(Base):
    __tablename__ = "waitlist_entries"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    business_id = Column(Uuid, ForeignKey("businesses.id"), nullable=False, index=True)
    resource_id = Column(Uuid, ForeignKey("resources.id"), nullable=True)         # NULL -> any resource
    bookable_type_id = Column(Uuid, ForeignKey("bookable_types.id"), nullable=True) # NULL -> any type
    preferred_date = Column(Date, nullable=True)
    flexibility_days = Column(Integer, nullable=False, default=0)
    preferred_time_start = Column(Time, nullable=True)
    preferred_time_end = Column(Time, nullable=True)
    party_size = Column(Integer, nullable=False, default=1)
    guest_name = Column(String(255), nullable=True)
    guest_email = Column(String(255), nullable=True)
    guest_phone = Column(String(50), nullable=True)
    user_ref = Column(String(255), nullable=True)
    is_vip = Column(Boolean, nullable=False, default=False)
    position = Column(Integer, nullable=False)
    status = Column(SAEnum(WaitlistStatus, native_enum=False), nullable=False, default=WaitlistStatus.waiting, index=True)
    claim_token = Column(String(64), nullable=True)
    claim_expires_at = Column(UTCDateTime, nullable=True, index=True)
    current_offer_id = Column(Uuid, nullable=True)
    notified_at = Column(UTCDateTime, nullable=True)
    claimed_at = Column(UTCDateTime, nullable=True)
    created_at = Column(UTCDateTime, nullable=False)

    offers = relationship("WaitlistOffer", back_populates="entry", order_by="WaitlistOffer.created_at")

class WaitlistOffer(Base):
    """History of every slot offered to an entry, one row per offer."""
    __tablename__ = "waitlist_offers"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    entry_id = Column(Uuid, ForeignKey("waitlist_entries.id"), nullable=False, index=True)
    hold_id = Column(Uuid, ForeignKey("slot_holds.id"), nullable=True)
    resource_id = Column(Uuid, ForeignKey("resources.id"), nullable=False, index=True)
    start_datetime = Column(UTCDateTime, nullable=False)
    end_datetime = Column(UTCDateTime, nullable=False)
    claim_token = Column(String(64), nullable=False)
    expires_at = Column(UTCDateTime, nullable=False)
    status = Column(SAEnum(OfferStatus, native_enum=False), nullable=False, default=OfferStatus.outstanding)
    booking_id = Column(Uuid, ForeignKey("bookings.id"), nullable=True)
    created_at = Column(UTCDateTime, nullable=False)
    resolved_at = Column(UTCDateTime, nullable=True)

    entry = relationship("WaitlistEntry", back_populates="offers")
    hold = relationship("SlotHold")
