import uuid
from sqlalchemy import Column, ForeignKey, Uuid, UniqueConstraint, CheckConstraint
from app.db.session import Base
from app.db.types import UTCDateTime

class OccupancyClaim(Base):
    """
    One normalised time bucket of one resource, owned by exactly one hold or
    booking. The unique constraint is what makes acquire atomic.
    """
    __tablename__ = "occupancy_claims"
    __table_args__ = (
        UniqueConstraint("resource_id", "bucket_start", name="uq_occupancy_resource_bucket"),
        CheckConstraint(
            "(hold_id IS NULL) <> (booking_id IS NULL)",
            name="ck_occupancy_single_owner",
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    resource_id = Column(Uuid, ForeignKey("resources.id"), nullable=False)
    bucket_start = Column(UTCDateTime, nullable=False)
    hold_id = Column(Uuid, ForeignKey("slot_holds.id"), nullable=True, index=True)
    booking_id = Column(Uuid, ForeignKey("bookings.id"), nullable=True, index=True)
