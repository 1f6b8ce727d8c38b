import uuid
import enum
from sqlalchemy import Column, String, Boolean, DateTime, func, Integer, ForeignKey, Uuid, Enum as SAEnum
from sqlalchemy.orm import relationship, validates
from app.core.config import settings
from app.db.session import Base

class BusinessType(str, enum.Enum):
    coworking = "coworking"
    spa = "spa"
    fitness = "fitness"
    event_hall = "event_hall"

class Business(Base):
    __tablename__ = "businesses"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), unique=True, nullable=False, index=True)
    type = Column(SAEnum(BusinessType, native_enum=False), nullable=False, index=True)
    timezone = Column(String(64), nullable=True) # IANA name, falls back to settings.DEFAULT_TIMEZONE
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    bookable_types = relationship("BookableType", back_populates="business", cascade="all, delete-orphan")
    resources = relationship("Resource", back_populates="business", cascade="all, delete-orphan")

class BookableType(Base):
    __tablename__ = "bookable_types"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    business_id = Column(Uuid, ForeignKey("businesses.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=False)
    slot_increment_mins = Column(Integer, nullable=True) # NULL -> settings.DEFAULT_SLOT_INCREMENT_MINUTES
    slot_duration_mins = Column(Integer, nullable=True)  # NULL -> same as increment
    buffer_after_mins = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, default=True)

    business = relationship("Business", back_populates="bookable_types")
    resources = relationship("Resource", back_populates="bookable_type")

    @validates("slot_increment_mins", "slot_duration_mins", "buffer_after_mins")
    def validate_minutes(self, key, value):
        if value is not None and value % settings.OCCUPANCY_BUCKET_MINUTES:
            raise ValueError(f"{key} must be a multiple of {settings.OCCUPANCY_BUCKET_MINUTES} minutes")
        return value
