"""
Booking Ledger: source of truth for confirmed and pending bookings.

A booking in an occupying state (pending, confirmed, in_progress) owns
occupancy claims on each of its resources. Moving it out of those states drops
the claims and announces the freed range so the waitlist can be consulted.
"""
import logging
from datetime import datetime
from typing import Callable, Optional, Sequence
from uuid import UUID

from sqlalchemy.orm import Session, joinedload

from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.models.booking import (
    Booking,
    BookingResource,
    BookingStatus,
    BOOKING_TRANSITIONS,
    OCCUPYING_STATUSES,
)
from app.models.slot_hold import SlotHold
from app.services import audit
from app.services.availability import AvailabilityResolver
from app.services.calendar_store import CalendarStore
from app.services.events import (
    BOOKING_CREATED,
    BOOKING_STATUS_CHANGED,
    SLOT_FREED,
    EventDispatcher,
)
from app.services.occupancy import OccupancyLedger
from app.utils.timeslots import footprint

logger = logging.getLogger(__name__)

_AUDIT_FIELDS = ("status", "start_datetime", "end_datetime", "party_size", "cancelled_at")


class BookingLedger:
    def __init__(
        self,
        calendar: CalendarStore,
        resolver: AvailabilityResolver,
        occupancy: OccupancyLedger,
        events: EventDispatcher,
        clock,
    ):
        self.calendar = calendar
        self.resolver = resolver
        self.occupancy = occupancy
        self.events = events
        self.clock = clock
        # Set by the engine: expires overdue holds on a resource before it is claimed
        self.expire_stale_holds: Optional[Callable[[Session, UUID], None]] = None

    def get(self, db: Session, booking_id: UUID) -> Booking:
        booking = (
            db.query(Booking)
            .options(joinedload(Booking.resources), joinedload(Booking.bookable_type))
            .filter(Booking.id == booking_id)
            .first()
        )
        if not booking:
            raise NotFoundError("Booking not found", booking_id=booking_id)
        return booking

    def create(
        self,
        db: Session,
        resource_ids: Sequence[UUID],
        start: datetime,
        end: datetime,
        status: BookingStatus = BookingStatus.pending,
        bookable_type_id: Optional[UUID] = None,
        guest_name: Optional[str] = None,
        guest_email: Optional[str] = None,
        guest_phone: Optional[str] = None,
        party_size: int = 1,
        notes: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> Booking:
        """
        Book one or more resources directly, without a prior hold.

        Occupying bookings claim their footprint on every resource atomically;
        a taken range raises ConflictError.
        """
        if end <= start:
            raise ValidationError("end must be after start")
        if not resource_ids:
            raise ValidationError("At least one resource is required")
        if party_size < 1:
            raise ValidationError("party_size must be at least 1")

        resources = []
        for resource_id in dict.fromkeys(resource_ids):
            resource = self.calendar.get_resource(db, resource_id)
            if not resource:
                raise NotFoundError("Resource not found", resource_id=resource_id)
            resources.append(resource)
        business_ids = {r.business_id for r in resources}
        if len(business_ids) != 1:
            raise ValidationError("All resources of a booking must belong to one business")

        bookable_type = self.calendar.get_bookable_type(db, bookable_type_id) or resources[0].bookable_type
        buffer_mins = self.calendar.buffer_for(bookable_type)
        fstart, fend = footprint(start, end, buffer_mins)

        if status in OCCUPYING_STATUSES:
            self.occupancy.require_aligned(start, end)
            for resource in resources:
                if self.expire_stale_holds is not None:
                    self.expire_stale_holds(db, resource.id)
                reason = self.resolver.check_range(db, resource, start, end, party_size)
                if reason:
                    raise ConflictError(
                        f"Resource {resource.name} is not available ({reason})",
                        resource_id=resource.id,
                        reason=reason,
                    )
                self.occupancy.require_free(db, resource.id, fstart, fend)

        booking = Booking(
            business_id=business_ids.pop(),
            bookable_type_id=bookable_type.id if bookable_type else None,
            start_datetime=start,
            end_datetime=end,
            status=status,
            guest_name=guest_name,
            guest_email=guest_email,
            guest_phone=guest_phone,
            party_size=party_size,
            notes=notes,
        )
        with db.begin_nested():
            db.add(booking)
            db.flush()  # get booking.id
            for resource in resources:
                db.add(BookingResource(booking_id=booking.id, resource_id=resource.id))
            db.flush()
            if status in OCCUPYING_STATUSES:
                for resource in resources:
                    self.occupancy.claim(db, resource.id, fstart, fend, booking_id=booking.id)

        self._created(db, booking, [r.id for r in resources], actor)
        return booking

    def create_from_hold(
        self,
        db: Session,
        hold: SlotHold,
        guest_name: Optional[str] = None,
        guest_email: Optional[str] = None,
        guest_phone: Optional[str] = None,
        party_size: int = 1,
        notes: Optional[str] = None,
        status: BookingStatus = BookingStatus.confirmed,
    ) -> Booking:
        """
        Record the booking a hold turns into. The caller has already moved the
        hold to `converted`; its claims are handed over unchanged.
        """
        booking = Booking(
            business_id=hold.business_id,
            bookable_type_id=hold.bookable_type_id,
            start_datetime=hold.start_datetime,
            end_datetime=hold.end_datetime,
            status=status,
            guest_name=guest_name,
            guest_email=guest_email,
            guest_phone=guest_phone,
            party_size=party_size,
            source_hold_id=hold.id,
            notes=notes,
        )
        db.add(booking)
        db.flush()
        db.add(BookingResource(booking_id=booking.id, resource_id=hold.resource_id))
        self.occupancy.transfer_hold_to_booking(db, hold.id, booking.id)
        hold.booking_id = booking.id
        db.flush()

        self._created(db, booking, [hold.resource_id], actor=hold.holder_ref)
        return booking

    def transition(self, db: Session, booking_id: UUID, new_status: BookingStatus, actor: Optional[str] = None) -> Booking:
        """
        Move a booking along its lifecycle (approval, cancellation, check-in…).

        Leaving an occupying state releases the booking's claims and emits a
        slot.freed event per resource.
        """
        booking = self.get(db, booking_id)
        old_status = booking.status
        if new_status == old_status:
            return booking
        if new_status not in BOOKING_TRANSITIONS.get(old_status, set()):
            raise ConflictError(
                f"Cannot move booking from '{old_status.value}' to '{new_status.value}'",
                booking_id=booking_id,
            )

        now = self.clock()
        before = audit.snapshot(booking, _AUDIT_FIELDS)
        updated = (
            db.query(Booking)
            .filter(Booking.id == booking_id, Booking.status == old_status)
            .update({"status": new_status}, synchronize_session=False)
        )
        if updated != 1:
            raise ConflictError("Booking changed concurrently, retry", booking_id=booking_id)
        booking.status = new_status
        if new_status == BookingStatus.cancelled:
            booking.cancelled_at = now

        frees = old_status in OCCUPYING_STATUSES and new_status not in OCCUPYING_STATUSES
        if frees:
            self.occupancy.release_booking(db, booking.id)
        db.flush()

        audit.record(
            db, "booking", booking.id, new_status.value, now,
            before=before, after=audit.snapshot(booking, _AUDIT_FIELDS), actor=actor,
        )
        self.events.emit(
            db, BOOKING_STATUS_CHANGED,
            booking_id=booking.id, old_status=old_status.value, new_status=new_status.value,
        )
        logger.info("Booking %s: %s -> %s", booking.id, old_status.value, new_status.value)

        if frees:
            for resource_id in booking.resource_ids:
                self.events.emit(
                    db, SLOT_FREED,
                    resource_id=resource_id,
                    start=booking.start_datetime,
                    end=booking.end_datetime,
                    exclude=(),
                    cascade=False,
                )
        return booking

    def _created(self, db: Session, booking: Booking, resource_ids, actor: Optional[str]) -> None:
        audit.record(
            db, "booking", booking.id, "created", self.clock(),
            after=audit.snapshot(booking, _AUDIT_FIELDS), actor=actor,
        )
        self.events.emit(
            db, BOOKING_CREATED,
            booking_id=booking.id,
            resource_ids=list(resource_ids),
            start=booking.start_datetime,
            end=booking.end_datetime,
            status=booking.status.value,
        )
        logger.info("Booking %s created (%s)", booking.id, booking.status.value)
