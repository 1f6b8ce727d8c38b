from app.schemas.common import PaginatedResponse, ErrorResponse
from app.schemas.calendar import (
    Business, BusinessCreate,
    BookableType, BookableTypeCreate,
    Resource, ResourceCreate,
    AvailabilityWindow, AvailabilityWindowCreate,
    AvailabilityOverride, AvailabilityOverrideCreate, OverrideWindow,
    BlackoutPeriod, BlackoutPeriodCreate,
)
from app.schemas.availability import Slot, NextAvailable
from app.schemas.hold import Hold, HoldCreate, HoldConvert
from app.schemas.booking import Booking, BookingCreate, BookingStatusUpdate
from app.schemas.waitlist import (
    WaitlistEntry, WaitlistJoin, WaitlistAdminJoin,
    ClaimRequest, ClaimResponse, DeclineRequest,
)
from app.schemas.audit import AuditLogEntry
from app.schemas.sweep import SweepResult
