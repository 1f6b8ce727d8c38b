"""
Waitlist Allocator: hands a freed resource-time range to the best-matching
waiting customer.

Ranking is (is_vip desc, position asc, created_at asc). The first entry whose
PreferencePredicate accepts the freed range gets an offer; entries that were
already offered this exact range are skipped so a declined or expired offer
moves on to the next customer instead of bouncing back.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Iterable, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from app.core.errors import ConflictError, ValidationError
from app.models.resource import Resource
from app.models.waitlist import WaitlistEntry, WaitlistOffer, WaitlistStatus
from app.services import audit
from app.services.availability import AvailabilityResolver
from app.services.calendar_store import CalendarStore
from app.services.offers import OfferStateMachine
from app.utils.timeslots import minutes_of

logger = logging.getLogger(__name__)

_AUDIT_FIELDS = ("status", "position", "is_vip", "preferred_date", "flexibility_days", "resource_id", "bookable_type_id")


@dataclass(frozen=True)
class FreedSlot:
    """A freed range seen in the owning business's local time."""
    resource_id: UUID
    bookable_type_id: Optional[UUID]
    capacity: int
    local_date: date
    start_minute: int  # minutes from local midnight of local_date
    end_minute: int

    @classmethod
    def build(cls, resource: Resource, start: datetime, end: datetime, tz) -> "FreedSlot":
        local_start = start.astimezone(tz)
        duration = int((end - start).total_seconds() // 60)
        start_minute = minutes_of(local_start.time())
        return cls(
            resource_id=resource.id,
            bookable_type_id=resource.bookable_type_id,
            capacity=resource.capacity or 0,
            local_date=local_start.date(),
            start_minute=start_minute,
            end_minute=start_minute + duration,
        )


@dataclass(frozen=True)
class PreferencePredicate:
    """
    What a waitlist entry will accept. Every field is optional and an unset
    field matches anything.
    """
    preferred_date: Optional[date] = None
    flexibility_days: int = 0
    resource_id: Optional[UUID] = None
    bookable_type_id: Optional[UUID] = None
    time_start: Optional[time] = None
    time_end: Optional[time] = None
    party_size: Optional[int] = None

    @classmethod
    def from_entry(cls, entry: WaitlistEntry) -> "PreferencePredicate":
        return cls(
            preferred_date=entry.preferred_date,
            flexibility_days=entry.flexibility_days or 0,
            resource_id=entry.resource_id,
            bookable_type_id=entry.bookable_type_id,
            time_start=entry.preferred_time_start,
            time_end=entry.preferred_time_end,
            party_size=entry.party_size,
        )

    def matches(self, slot: FreedSlot) -> bool:
        if self.preferred_date is not None:
            if abs((slot.local_date - self.preferred_date).days) > self.flexibility_days:
                return False

        if self.resource_id is not None and self.resource_id != slot.resource_id:
            return False

        # An untyped resource serves every bookable type of its business
        if self.bookable_type_id is not None and slot.bookable_type_id is not None:
            if self.bookable_type_id != slot.bookable_type_id:
                return False

        if self.time_start is not None and slot.start_minute < minutes_of(self.time_start):
            return False
        if self.time_end is not None and slot.end_minute > (minutes_of(self.time_end) or 24 * 60):
            return False

        if self.party_size is not None and slot.capacity < self.party_size:
            return False
        return True


class WaitlistAllocator:
    def __init__(
        self,
        calendar: CalendarStore,
        resolver: AvailabilityResolver,
        offers: OfferStateMachine,
        clock,
    ):
        self.calendar = calendar
        self.resolver = resolver
        self.offers = offers
        self.clock = clock

    # -- queue --------------------------------------------------------------

    def join(
        self,
        db: Session,
        business_id: UUID,
        resource_id: Optional[UUID] = None,
        bookable_type_id: Optional[UUID] = None,
        preferred_date: Optional[date] = None,
        flexibility_days: int = 0,
        preferred_time_start: Optional[time] = None,
        preferred_time_end: Optional[time] = None,
        party_size: int = 1,
        guest_name: Optional[str] = None,
        guest_email: Optional[str] = None,
        guest_phone: Optional[str] = None,
        user_ref: Optional[str] = None,
        is_vip: bool = False,
    ) -> WaitlistEntry:
        """Append a customer to the back of a business's waitlist."""
        business = self.calendar.get_business(db, business_id)
        if not business:
            raise ValidationError("Unknown business", business_id=business_id)
        if resource_id is not None:
            resource = self.calendar.get_resource(db, resource_id)
            if not resource or resource.business_id != business.id:
                raise ValidationError("Unknown resource for this business", resource_id=resource_id)
        if bookable_type_id is not None:
            bookable_type = self.calendar.get_bookable_type(db, bookable_type_id)
            if not bookable_type or bookable_type.business_id != business.id:
                raise ValidationError("Unknown bookable type for this business", bookable_type_id=bookable_type_id)
        if flexibility_days < 0:
            raise ValidationError("flexibility_days cannot be negative")
        if party_size < 1:
            raise ValidationError("party_size must be at least 1")
        if preferred_time_start and preferred_time_end and preferred_time_end != time(0):
            if preferred_time_end <= preferred_time_start:
                raise ValidationError("preferred_time_end must be after preferred_time_start")
        if not (guest_email or guest_phone or user_ref):
            raise ValidationError("An email, phone number or user reference is required")

        now = self.clock()
        entry = WaitlistEntry(
            business_id=business.id,
            resource_id=resource_id,
            bookable_type_id=bookable_type_id,
            preferred_date=preferred_date,
            flexibility_days=flexibility_days,
            preferred_time_start=preferred_time_start,
            preferred_time_end=preferred_time_end,
            party_size=party_size,
            guest_name=guest_name,
            guest_email=guest_email,
            guest_phone=guest_phone,
            user_ref=user_ref,
            is_vip=is_vip,
            position=self.offers.next_position(db, business.id),
            status=WaitlistStatus.waiting,
            created_at=now,
        )
        db.add(entry)
        db.flush()

        audit.record(db, "waitlist_entry", entry.id, "joined", now, after=audit.snapshot(entry, _AUDIT_FIELDS), actor=user_ref)
        logger.info("Waitlist entry %s joined business %s at position %s", entry.id, business.id, entry.position)
        return entry

    def rank(self, db: Session, business_id: UUID) -> List[WaitlistEntry]:
        """Waiting entries of a business in offer order."""
        return (
            db.query(WaitlistEntry)
            .filter(
                WaitlistEntry.business_id == business_id,
                WaitlistEntry.status == WaitlistStatus.waiting,
            )
            .order_by(
                WaitlistEntry.is_vip.desc(),
                WaitlistEntry.position.asc(),
                WaitlistEntry.created_at.asc(),
            )
            .all()
        )

    def get_entry(self, db: Session, entry_id: UUID) -> WaitlistEntry:
        """Read an entry; an offer past its deadline is expired first."""
        entry = self.offers.get_entry(db, entry_id)
        if entry.status == WaitlistStatus.offered and entry.claim_expires_at <= self.clock():
            self.offers.expire(db, entry.id)
            db.refresh(entry)
        return entry

    def list_entries(
        self,
        db: Session,
        business_id: Optional[UUID] = None,
        status: Optional[WaitlistStatus] = None,
    ) -> List[WaitlistEntry]:
        for entry_id in self.offers.overdue_entry_ids(db):
            self.offers.expire(db, entry_id)

        query = db.query(WaitlistEntry)
        if business_id is not None:
            query = query.filter(WaitlistEntry.business_id == business_id)
        if status is not None:
            query = query.filter(WaitlistEntry.status == status)
        return query.order_by(
            WaitlistEntry.is_vip.desc(),
            WaitlistEntry.position.asc(),
            WaitlistEntry.created_at.asc(),
        ).all()

    # -- allocation ---------------------------------------------------------

    def on_slot_freed(
        self,
        db: Session,
        resource_id: UUID,
        start: datetime,
        end: datetime,
        exclude: Iterable[UUID] = (),
    ) -> Optional[WaitlistEntry]:
        """
        Offer a freed range to the first eligible waiting entry.

        Returns the offered entry, or None when the range is in the past, has
        been taken again, or nobody on the waitlist wants it.
        """
        if start <= self.clock():
            return None

        resource = self.calendar.get_resource(db, resource_id)
        if not resource:
            return None
        if self.resolver.check_range(db, resource, start, end):
            logger.info("Freed range on resource %s was taken again, no offer", resource_id)
            return None

        excluded = set(exclude)
        already_offered = {
            row.entry_id
            for row in db.query(WaitlistOffer.entry_id).filter(
                WaitlistOffer.resource_id == resource_id,
                WaitlistOffer.start_datetime == start,
                WaitlistOffer.end_datetime == end,
            )
        }
        freed = FreedSlot.build(resource, start, end, self.calendar.zone_for(resource.business))

        for entry in self.rank(db, resource.business_id):
            if entry.id in excluded or entry.id in already_offered:
                continue
            if not PreferencePredicate.from_entry(entry).matches(freed):
                continue
            try:
                with db.begin_nested():
                    self.offers.offer(db, entry, resource, start, end)
                return entry
            except ConflictError:
                if self.resolver.check_range(db, resource, start, end):
                    logger.info("Freed range on resource %s was taken during the offer", resource_id)
                    return None
                # Entry moved on concurrently; try the next one
                continue

        logger.info("No waitlist entry matches resource %s [%s, %s)", resource_id, start, end)
        return None

