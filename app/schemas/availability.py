from typing import Optional, List
from pydantic import BaseModel, UUID4
from datetime import datetime


class Slot(BaseModel):
    resource_id: UUID4
    resource_name: str
    business_id: UUID4
    bookable_type_id: Optional[UUID4] = None
    start: datetime
    end: datetime
    available: bool
    reason: Optional[str] = None  # blackout | booked | held | capacity

    class Config:
        from_attributes = True


class NextAvailable(BaseModel):
    business_id: UUID4
    bookable_type_id: Optional[UUID4] = None
    slots: List[Slot]

    class Config:
        from_attributes = True
