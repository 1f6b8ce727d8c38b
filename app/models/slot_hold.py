import uuid
import enum
from sqlalchemy import Column, String, ForeignKey, Uuid, Enum as SAEnum
from sqlalchemy.orm import relationship
from app.db.session import Base
from app.db.types import UTCDateTime

class SlotHoldStatus(str, enum.Enum):
    active = "active"
    converted = "converted"
    expired = "expired"
    released = "released"

class SlotHoldPurpose(str, enum.Enum):
    checkout = "checkout"
    waitlist_offer = "waitlist_offer"

class SlotHold(Base):
    __tablename__ = "slot_holds"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    resource_id = Column(Uuid, ForeignKey("resources.id"), nullable=False, index=True)
    business_id = Column(Uuid, ForeignKey("businesses.id"), nullable=False, index=True)
    bookable_type_id = Column(Uuid, ForeignKey("bookable_types.id"), nullable=True)
    start_datetime = Column(UTCDateTime, nullable=False)
    end_datetime = Column(UTCDateTime, nullable=False)
    status = Column(SAEnum(SlotHoldStatus, native_enum=False), nullable=False, default=SlotHoldStatus.active, index=True)
    purpose = Column(SAEnum(SlotHoldPurpose, native_enum=False), nullable=False, default=SlotHoldPurpose.checkout)
    holder_ref = Column(String(255), nullable=False) # user id, guest session id or waitlist entry id
    booking_id = Column(Uuid, ForeignKey("bookings.id"), nullable=True)
    created_at = Column(UTCDateTime, nullable=False)
    expires_at = Column(UTCDateTime, nullable=False, index=True)
    resolved_at = Column(UTCDateTime, nullable=True)

    resource = relationship("Resource")
    booking = relationship("Booking")
