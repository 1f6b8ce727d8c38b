import uuid
import enum
from sqlalchemy import Column, String, DateTime, func, Integer, ForeignKey, Text, Uuid, UniqueConstraint, Enum as SAEnum
from sqlalchemy.orm import relationship
from app.db.session import Base
from app.db.types import UTCDateTime

class BookingStatus(str, enum.Enum):
    pending = "pending"
    confirmed = "confirmed"
    in_progress = "in_progress"
    completed = "completed"
    cancelled = "cancelled"
    denied = "denied"
    no_show = "no_show"

# Statuses that take a resource-time range. Everything else frees it.
OCCUPYING_STATUSES = (BookingStatus.pending, BookingStatus.confirmed, BookingStatus.in_progress)

# Allowed status moves; terminal statuses have no entry.
BOOKING_TRANSITIONS = {
    BookingStatus.pending: {BookingStatus.confirmed, BookingStatus.denied, BookingStatus.cancelled},
    BookingStatus.confirmed: {BookingStatus.in_progress, BookingStatus.cancelled, BookingStatus.no_show},
    BookingStatus.in_progress: {BookingStatus.completed},
}

class Booking(Base):
    __tablename__ = "bookings"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    business_id = Column(Uuid, ForeignKey("businesses.id"), nullable=False, index=True)
    bookable_type_id = Column(Uuid, ForeignKey("bookable_types.id"), nullable=True, index=True)
    start_datetime = Column(UTCDateTime, nullable=False, index=True)
    end_datetime = Column(UTCDateTime, nullable=False)
    status = Column(SAEnum(BookingStatus, native_enum=False), nullable=False, default=BookingStatus.pending, index=True)
    guest_name = Column(String(255), nullable=True)
    guest_email = Column(String(255), nullable=True)
    guest_phone = Column(String(50), nullable=True)
    party_size = Column(Integer, nullable=False, default=1)
    source_hold_id = Column(Uuid, nullable=True) # hold this booking was converted from
    notes = Column(Text, nullable=True)
    cancelled_at = Column(UTCDateTime, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    resources = relationship("BookingResource", back_populates="booking", cascade="all, delete-orphan")
    bookable_type = relationship("BookableType")

    @property
    def resource_ids(self):
        return [br.resource_id for br in self.resources]

class BookingResource(Base):
    __tablename__ = "booking_resources"
    __table_args__ = (UniqueConstraint("booking_id", "resource_id", name="uq_booking_resource"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_id = Column(Uuid, ForeignKey("bookings.id"), nullable=False, index=True)
    resource_id = Column(Uuid, ForeignKey("resources.id"), nullable=False, index=True)

    booking = relationship("Booking", back_populates="resources")
    resource = relationship("Resource")
