"""
Hold Manager: short-lived soft reservations taken while a customer checks out.

acquire() re-validates availability and then inserts the hold together with
its occupancy claims in one SAVEPOINT. The claims' unique constraint makes the
insert the real arbiter, so two concurrent acquires of overlapping ranges on
the same resource can never both succeed.

Every terminal move (converted, expired, released) is a conditional UPDATE on
`status = 'active'`; whichever caller flips the row first wins and the loser
sees a ConflictError or a no-op.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.models.booking import Booking, BookingStatus
from app.models.slot_hold import SlotHold, SlotHoldPurpose, SlotHoldStatus
from app.services import audit
from app.services.availability import AvailabilityResolver, REASON_BLACKOUT
from app.services.booking_ledger import BookingLedger
from app.services.calendar_store import CalendarStore
from app.services.events import (
    HOLD_ACQUIRED,
    HOLD_CONVERTED,
    HOLD_EXPIRED,
    HOLD_RELEASED,
    HOLD_RENEWED,
    SLOT_FREED,
    EventDispatcher,
)
from app.services.occupancy import OccupancyLedger
from app.utils.timeslots import footprint

logger = logging.getLogger(__name__)

_AUDIT_FIELDS = ("status", "resource_id", "start_datetime", "end_datetime", "expires_at", "holder_ref")


class HoldManager:
    def __init__(
        self,
        calendar: CalendarStore,
        resolver: AvailabilityResolver,
        occupancy: OccupancyLedger,
        ledger: BookingLedger,
        events: EventDispatcher,
        clock,
        ttl_minutes: int,
    ):
        self.calendar = calendar
        self.resolver = resolver
        self.occupancy = occupancy
        self.ledger = ledger
        self.events = events
        self.clock = clock
        self.ttl = timedelta(minutes=ttl_minutes)
        # purpose -> callable(db, hold) that expires holds owned by another component
        self.expiry_delegates: Dict[SlotHoldPurpose, Callable[[Session, SlotHold], bool]] = {}

    # -- reads --------------------------------------------------------------

    def get(self, db: Session, hold_id: UUID) -> SlotHold:
        hold = db.query(SlotHold).filter(SlotHold.id == hold_id).first()
        if not hold:
            raise NotFoundError("Hold not found", hold_id=hold_id)
        return hold

    def _get_active(self, db: Session, hold_id: UUID, holder: Optional[str]) -> SlotHold:
        hold = db.query(SlotHold).filter(SlotHold.id == hold_id).first()
        if not hold or hold.status != SlotHoldStatus.active:
            raise NotFoundError("Hold not found or no longer active", hold_id=hold_id)
        if holder is not None and hold.holder_ref != holder:
            raise NotFoundError("Hold not found or no longer active", hold_id=hold_id)
        return hold

    def overdue_ids(self, db: Session) -> List[UUID]:
        """Active checkout holds whose TTL has elapsed."""
        now = self.clock()
        rows = (
            db.query(SlotHold.id)
            .filter(
                SlotHold.status == SlotHoldStatus.active,
                SlotHold.purpose == SlotHoldPurpose.checkout,
                SlotHold.expires_at <= now,
            )
            .order_by(SlotHold.expires_at)
            .all()
        )
        return [r.id for r in rows]

    # -- acquire ------------------------------------------------------------

    def acquire(
        self,
        db: Session,
        resource_id: UUID,
        start: datetime,
        end: datetime,
        holder: str,
        bookable_type_id: Optional[UUID] = None,
        purpose: SlotHoldPurpose = SlotHoldPurpose.checkout,
        expires_at: Optional[datetime] = None,
        party_size: Optional[int] = None,
    ) -> SlotHold:
        now = self.clock()
        if end <= start:
            raise ValidationError("end must be after start")
        if start <= now:
            raise ValidationError("Cannot hold a slot that has already started")
        if not holder:
            raise ValidationError("holder is required")

        resource = self.calendar.get_resource(db, resource_id)
        if not resource:
            raise NotFoundError("Resource not found", resource_id=resource_id)

        bookable_type = self.calendar.get_bookable_type(db, bookable_type_id) or resource.bookable_type
        self.occupancy.require_aligned(start, end)
        fstart, fend = footprint(start, end, self.calendar.buffer_for(bookable_type))

        self.expire_stale(db, resource_id)

        reason = self.resolver.check_range(db, resource, start, end, party_size)
        if reason:
            message = "Slot falls in a blackout period" if reason == REASON_BLACKOUT else "Slot is no longer available"
            raise ConflictError(message, resource_id=resource_id, reason=reason)
        self.occupancy.require_free(db, resource.id, fstart, fend)

        hold = SlotHold(
            resource_id=resource.id,
            business_id=resource.business_id,
            bookable_type_id=bookable_type.id if bookable_type else None,
            start_datetime=start,
            end_datetime=end,
            status=SlotHoldStatus.active,
            purpose=purpose,
            holder_ref=holder,
            created_at=now,
            expires_at=expires_at or now + self.ttl,
        )
        # Hold row and claims commit together or not at all
        with db.begin_nested():
            db.add(hold)
            db.flush()
            self.occupancy.claim(db, resource.id, fstart, fend, hold_id=hold.id)

        audit.record(db, "slot_hold", hold.id, "acquired", now, after=audit.snapshot(hold, _AUDIT_FIELDS), actor=holder)
        self.events.emit(
            db, HOLD_ACQUIRED,
            hold_id=hold.id, resource_id=hold.resource_id,
            start=start, end=end, expires_at=hold.expires_at, holder=holder,
        )
        logger.info("Hold %s acquired on resource %s [%s, %s)", hold.id, resource.id, start, end)
        return hold

    def expire_stale(self, db: Session, resource_id: UUID) -> None:
        """Expire overdue holds on the resource that the sweeper has not reached yet."""
        now = self.clock()
        stale = (
            db.query(SlotHold)
            .filter(
                SlotHold.resource_id == resource_id,
                SlotHold.status == SlotHoldStatus.active,
                SlotHold.expires_at <= now,
            )
            .all()
        )
        for hold in stale:
            delegate = self.expiry_delegates.get(hold.purpose)
            if delegate is not None:
                delegate(db, hold)
            else:
                self.expire(db, hold.id)

    # -- renew / release ----------------------------------------------------

    def renew(self, db: Session, hold_id: UUID, holder: Optional[str] = None) -> SlotHold:
        now = self.clock()
        hold = self._get_active(db, hold_id, holder)
        if hold.purpose != SlotHoldPurpose.checkout:
            raise ValidationError("Offer holds follow their offer deadline and cannot be renewed")

        new_expiry = now + self.ttl
        updated = (
            db.query(SlotHold)
            .filter(
                SlotHold.id == hold_id,
                SlotHold.status == SlotHoldStatus.active,
                SlotHold.expires_at > now,
            )
            .update({"expires_at": new_expiry}, synchronize_session=False)
        )
        if updated != 1:
            raise NotFoundError("Hold has expired", hold_id=hold_id)
        db.refresh(hold)

        audit.record(db, "slot_hold", hold.id, "renewed", now, after=audit.snapshot(hold, _AUDIT_FIELDS), actor=holder)
        self.events.emit(db, HOLD_RENEWED, hold_id=hold.id, expires_at=hold.expires_at)
        return hold

    def release(self, db: Session, hold_id: UUID, holder: Optional[str] = None) -> SlotHold:
        """Customer abandoned checkout: same effect as expiry, immediately."""
        hold = self._get_active(db, hold_id, holder)
        if hold.purpose != SlotHoldPurpose.checkout:
            raise ValidationError("Offer holds are released by declining the offer")
        if not self.finish(db, hold, SlotHoldStatus.released, actor=holder):
            raise NotFoundError("Hold not found or no longer active", hold_id=hold_id)

        self.events.emit(db, HOLD_RELEASED, hold_id=hold.id, resource_id=hold.resource_id)
        self._announce_freed(db, hold)
        return hold

    def expire(self, db: Session, hold_id: UUID) -> bool:
        """
        Expire one overdue checkout hold. Idempotent: returns False when the
        hold is already terminal or not yet due.
        """
        now = self.clock()
        hold = db.query(SlotHold).filter(SlotHold.id == hold_id).first()
        if not hold or hold.expires_at > now:
            return False
        if not self.finish(db, hold, SlotHoldStatus.expired, require_overdue=True):
            return False

        self.events.emit(
            db, HOLD_EXPIRED,
            hold_id=hold.id, resource_id=hold.resource_id, holder=hold.holder_ref,
            start=hold.start_datetime, end=hold.end_datetime,
        )
        self._announce_freed(db, hold)
        return True

    def finish(
        self,
        db: Session,
        hold: SlotHold,
        status: SlotHoldStatus,
        actor: Optional[str] = None,
        require_overdue: bool = False,
    ) -> bool:
        """Compare-and-swap an active hold to a terminal status and drop its claims."""
        now = self.clock()
        before = audit.snapshot(hold, _AUDIT_FIELDS)
        query = db.query(SlotHold).filter(
            SlotHold.id == hold.id,
            SlotHold.status == SlotHoldStatus.active,
        )
        if require_overdue:
            query = query.filter(SlotHold.expires_at <= now)
        if query.update({"status": status, "resolved_at": now}, synchronize_session=False) != 1:
            return False
        self.occupancy.release_hold(db, hold.id)
        db.refresh(hold)

        audit.record(
            db, "slot_hold", hold.id, status.value, now,
            before=before, after=audit.snapshot(hold, _AUDIT_FIELDS), actor=actor,
        )
        logger.info("Hold %s %s", hold.id, status.value)
        return True

    def _announce_freed(self, db: Session, hold: SlotHold) -> None:
        self.events.emit(
            db, SLOT_FREED,
            resource_id=hold.resource_id,
            start=hold.start_datetime,
            end=hold.end_datetime,
            exclude=(),
            cascade=False,
        )

    # -- conversion ---------------------------------------------------------

    def convert(
        self,
        db: Session,
        hold_id: UUID,
        holder: Optional[str] = None,
        guest_name: Optional[str] = None,
        guest_email: Optional[str] = None,
        guest_phone: Optional[str] = None,
        party_size: int = 1,
        notes: Optional[str] = None,
        status: BookingStatus = BookingStatus.confirmed,
    ) -> Booking:
        """
        Turn an active, unexpired hold into a booking (checkout succeeded).

        Races against the sweeper: if the hold expired first, ConflictError.
        """
        now = self.clock()
        hold = db.query(SlotHold).filter(SlotHold.id == hold_id).first()
        if not hold or (holder is not None and hold.holder_ref != holder):
            raise NotFoundError("Hold not found", hold_id=hold_id)
        before = audit.snapshot(hold, _AUDIT_FIELDS)

        updated = (
            db.query(SlotHold)
            .filter(
                SlotHold.id == hold_id,
                SlotHold.status == SlotHoldStatus.active,
                SlotHold.expires_at > now,
            )
            .update({"status": SlotHoldStatus.converted, "resolved_at": now}, synchronize_session=False)
        )
        if updated != 1:
            raise ConflictError("Hold is no longer active", hold_id=hold_id)
        db.refresh(hold)

        booking = self.ledger.create_from_hold(
            db, hold,
            guest_name=guest_name,
            guest_email=guest_email,
            guest_phone=guest_phone,
            party_size=party_size,
            notes=notes,
            status=status,
        )
        audit.record(
            db, "slot_hold", hold.id, "converted", now,
            before=before, after=audit.snapshot(hold, _AUDIT_FIELDS), actor=hold.holder_ref,
        )
        self.events.emit(db, HOLD_CONVERTED, hold_id=hold.id, booking_id=booking.id)
        logger.info("Hold %s converted into booking %s", hold.id, booking.id)
        return booking
