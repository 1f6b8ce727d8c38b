from typing import Optional, List
from pydantic import BaseModel, UUID4, Field, field_validator, model_validator
from datetime import date, datetime, time

from app.models.business import BusinessType
from app.schemas.common import require_aware, require_bucket_multiple, require_bucket_time


# Business Schemas
class BusinessBase(BaseModel):
    name: str
    slug: str
    type: BusinessType
    timezone: Optional[str] = None


class BusinessCreate(BusinessBase):
    pass


class Business(BusinessBase):
    id: UUID4
    is_active: bool

    class Config:
        from_attributes = True


# Bookable Type Schemas
class BookableTypeBase(BaseModel):
    name: str
    slug: str
    slot_increment_mins: Optional[int] = Field(None, ge=1)
    slot_duration_mins: Optional[int] = Field(None, ge=1)
    buffer_after_mins: int = Field(0, ge=0)

    @field_validator("slot_increment_mins", "slot_duration_mins", "buffer_after_mins")
    @classmethod
    def on_bucket_grid(cls, v):
        return require_bucket_multiple(v)


class BookableTypeCreate(BookableTypeBase):
    business_id: UUID4


class BookableType(BookableTypeBase):
    id: UUID4
    business_id: UUID4
    is_active: bool

    class Config:
        from_attributes = True


# Resource Schemas
class ResourceBase(BaseModel):
    name: str
    type: str
    capacity: int = Field(1, ge=1)


class ResourceCreate(ResourceBase):
    business_id: UUID4
    bookable_type_id: Optional[UUID4] = None


class Resource(ResourceBase):
    id: UUID4
    business_id: UUID4
    bookable_type_id: Optional[UUID4] = None
    is_active: bool

    class Config:
        from_attributes = True


# Availability Window Schemas
class AvailabilityWindowCreate(BaseModel):
    business_id: UUID4
    resource_id: Optional[UUID4] = None
    bookable_type_id: Optional[UUID4] = None
    day_of_week: int = Field(..., ge=0, le=6)  # 0 = Monday
    start_time: time
    end_time: time  # 00:00 means midnight

    @field_validator("start_time", "end_time")
    @classmethod
    def on_bucket_grid(cls, v: time):
        return require_bucket_time(v)

    @model_validator(mode="after")
    def check_times(self):
        if self.end_time != time(0) and self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class AvailabilityWindow(AvailabilityWindowCreate):
    id: UUID4
    is_active: bool

    class Config:
        from_attributes = True


# Override Schemas
class OverrideWindow(BaseModel):
    start: time
    end: time

    @field_validator("start", "end")
    @classmethod
    def on_bucket_grid(cls, v: time):
        return require_bucket_time(v)


class AvailabilityOverrideCreate(BaseModel):
    business_id: UUID4
    resource_id: Optional[UUID4] = None
    override_date: date
    is_unavailable: bool = False
    windows: List[OverrideWindow] = []
    notes: Optional[str] = None


class AvailabilityOverride(BaseModel):
    id: UUID4
    business_id: UUID4
    resource_id: Optional[UUID4] = None
    override_date: date
    is_unavailable: bool
    windows: Optional[List[OverrideWindow]] = None
    notes: Optional[str] = None

    class Config:
        from_attributes = True


# Blackout Schemas
class BlackoutPeriodCreate(BaseModel):
    business_id: Optional[UUID4] = None
    resource_id: Optional[UUID4] = None
    start_datetime: datetime
    end_datetime: datetime
    reason: Optional[str] = None

    @field_validator("start_datetime", "end_datetime")
    @classmethod
    def require_timezone(cls, v: datetime):
        return require_aware(v)

    @model_validator(mode="after")
    def check_scope(self):
        if self.business_id is None and self.resource_id is None:
            raise ValueError("business_id or resource_id is required")
        if self.end_datetime <= self.start_datetime:
            raise ValueError("end_datetime must be after start_datetime")
        return self


class BlackoutPeriod(BaseModel):
    id: UUID4
    business_id: Optional[UUID4] = None
    resource_id: Optional[UUID4] = None
    start_datetime: datetime
    end_datetime: datetime
    reason: Optional[str] = None

    class Config:
        from_attributes = True
