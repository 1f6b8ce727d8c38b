from typing import Optional, List, Generic, TypeVar, Dict
from pydantic import BaseModel

from app.core.config import settings
from app.utils.timeslots import time_on_grid

T = TypeVar("T")


# Paginated response wrapper: used by all list endpoints
class PaginatedResponse(BaseModel, Generic[T]):
    data: List[T]
    total: int
    page: int
    limit: int
    total_pages: int


# Error responses
class ErrorResponse(BaseModel):
    error: str
    message: str
    details: Optional[Dict[str, str]] = None


def require_aware(v):
    """Datetimes crossing the API must carry an explicit offset."""
    if v is not None and v.tzinfo is None:
        raise ValueError("datetime must include a timezone offset")
    return v


def require_bucket_multiple(v):
    """Slot lengths and buffers are whole occupancy buckets."""
    bucket = settings.OCCUPANCY_BUCKET_MINUTES
    if v is not None and v % bucket:
        raise ValueError(f"must be a multiple of {bucket} minutes")
    return v


def require_bucket_time(v):
    bucket = settings.OCCUPANCY_BUCKET_MINUTES
    if v is not None and not time_on_grid(v, bucket):
        raise ValueError(f"must fall on a {bucket}-minute boundary")
    return v
