import uuid
from datetime import time
from sqlalchemy import Column, String, Boolean, Date, Time, Integer, ForeignKey, Text, JSON, Uuid, CheckConstraint
from sqlalchemy.orm import relationship, validates
from app.core.config import settings
from app.db.session import Base
from app.db.types import UTCDateTime
from app.utils.timeslots import time_on_grid

class AvailabilityWindow(Base):
    __tablename__ = "availability_windows"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    business_id = Column(Uuid, ForeignKey("businesses.id"), nullable=False, index=True)
    resource_id = Column(Uuid, ForeignKey("resources.id"), nullable=True, index=True)
    bookable_type_id = Column(Uuid, ForeignKey("bookable_types.id"), nullable=True)
    day_of_week = Column(Integer, nullable=False) # 0 = Monday ... 6 = Sunday
    start_time = Column(Time, nullable=False)     # local business time
    end_time = Column(Time, nullable=False)
    is_active = Column(Boolean, default=True)

    business = relationship("Business")
    resource = relationship("Resource")

    @validates("start_time", "end_time")
    def validate_time(self, key, value):
        if value is not None and not time_on_grid(value, settings.OCCUPANCY_BUCKET_MINUTES):
            raise ValueError(f"{key} must fall on a {settings.OCCUPANCY_BUCKET_MINUTES}-minute boundary")
        return value

class AvailabilityOverride(Base):
    __tablename__ = "availability_overrides"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    business_id = Column(Uuid, ForeignKey("businesses.id"), nullable=False, index=True)
    resource_id = Column(Uuid, ForeignKey("resources.id"), nullable=True)
    override_date = Column(Date, nullable=False, index=True)
    is_unavailable = Column(Boolean, nullable=False, default=False)
    windows = Column(JSON, nullable=True) # [{"start": "10:00", "end": "14:00"}, ...]
    notes = Column(Text, nullable=True)

    @validates("windows")
    def validate_windows(self, key, value):
        for window in value or ():
            for edge in ("start", "end"):
                if not time_on_grid(time.fromisoformat(window[edge]), settings.OCCUPANCY_BUCKET_MINUTES):
                    raise ValueError(f"override window {edge} must fall on a {settings.OCCUPANCY_BUCKET_MINUTES}-minute boundary")
        return value

class BlackoutPeriod(Base):
    __tablename__ = "blackout_periods"
    __table_args__ = (
        CheckConstraint(
            "business_id IS NOT NULL OR resource_id IS NOT NULL",
            name="ck_blackout_has_scope",
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    business_id = Column(Uuid, ForeignKey("businesses.id"), nullable=True, index=True)
    resource_id = Column(Uuid, ForeignKey("resources.id"), nullable=True, index=True)
    start_datetime = Column(UTCDateTime, nullable=False, index=True)
    end_datetime = Column(UTCDateTime, nullable=False, index=True)
    reason = Column(String(255), nullable=True)
