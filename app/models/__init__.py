from app.models.business import Business, BookableType, BusinessType
from app.models.resource import Resource
from app.models.calendar import AvailabilityWindow, AvailabilityOverride, BlackoutPeriod
from app.models.booking import Booking, BookingResource, BookingStatus
from app.models.slot_hold import SlotHold, SlotHoldStatus, SlotHoldPurpose
from app.models.occupancy import OccupancyClaim
from app.models.waitlist import WaitlistEntry, WaitlistOffer, WaitlistStatus, OfferStatus
from app.models.audit_log import AuditLog
