from app.db.session import Base
from app.models.business import Business, BookableType
from app.models.resource import Resource
from app.models.calendar import AvailabilityWindow, AvailabilityOverride, BlackoutPeriod
from app.models.booking import Booking, BookingResource
from app.models.slot_hold import SlotHold
from app.models.occupancy import OccupancyClaim
from app.models.waitlist import WaitlistEntry, WaitlistOffer
from app.models.audit_log import AuditLog
