"""
Availability Resolver.

The slot computation itself (`compute_slots`) is a pure function over an
immutable CalendarSnapshot, so it can be exercised without a database.
`AvailabilityResolver` only loads the snapshot: resources in scope, their
windows, overrides, blackouts, occupying bookings and live holds.

A candidate slot is available iff
  1. no blackout for its resource or business overlaps it,
  2. no occupying booking footprint overlaps its footprint,
  3. no active, unexpired hold footprint overlaps its footprint,
  4. the resource capacity covers the requested party size.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, List, Optional, Sequence, Tuple
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session, joinedload

from app.core.errors import ValidationError
from app.models.booking import Booking, BookingResource, OCCUPYING_STATUSES
from app.models.calendar import AvailabilityWindow
from app.models.resource import Resource
from app.models.slot_hold import SlotHold, SlotHoldStatus
from app.services.calendar_store import AvailabilityScope, CalendarStore
from app.utils.timeslots import (
    footprint,
    iter_days,
    iter_slot_starts,
    local_offset_to_utc,
    overlaps,
)

REASON_BLACKOUT = "blackout"
REASON_BOOKED = "booked"
REASON_HELD = "held"
REASON_CAPACITY = "capacity"

# Enough slack around a local-date range to cover any UTC offset and buffer.
_QUERY_MARGIN = timedelta(days=1)


# ---------------------------------------------------------------------------
# Snapshot types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Slot:
    resource_id: UUID
    resource_name: str
    business_id: UUID
    bookable_type_id: Optional[UUID]
    start: datetime
    end: datetime
    available: bool
    reason: Optional[str] = None


@dataclass(frozen=True)
class WindowSpec:
    start: time
    end: time


@dataclass(frozen=True)
class BusyInterval:
    start: datetime
    end: datetime  # footprint end, buffer included
    kind: str      # REASON_BOOKED | REASON_HELD


@dataclass(frozen=True)
class ResourceCalendar:
    resource_id: UUID
    resource_name: str
    business_id: UUID
    bookable_type_id: Optional[UUID]
    capacity: int
    tz: ZoneInfo
    increment_mins: int
    duration_mins: int
    buffer_after_mins: int
    # weekday -> windows; resource-specific windows win over business-wide ones
    resource_windows: Dict[int, Tuple[WindowSpec, ...]] = field(default_factory=dict)
    business_windows: Dict[int, Tuple[WindowSpec, ...]] = field(default_factory=dict)


@dataclass(frozen=True)
class OverrideSpec:
    is_unavailable: bool
    windows: Tuple[WindowSpec, ...] = ()


@dataclass(frozen=True)
class BlackoutSpec:
    business_id: Optional[UUID]
    resource_id: Optional[UUID]
    start: datetime
    end: datetime

    def applies_to(self, resource: ResourceCalendar) -> bool:
        if self.resource_id is not None:
            return self.resource_id == resource.resource_id
        return self.business_id == resource.business_id


@dataclass(frozen=True)
class CalendarSnapshot:
    resources: Tuple[ResourceCalendar, ...]
    # (business_id, resource_id or None, date) -> override
    overrides: Dict[Tuple[UUID, Optional[UUID], date], OverrideSpec] = field(default_factory=dict)
    blackouts: Tuple[BlackoutSpec, ...] = ()
    busy: Dict[UUID, Tuple[BusyInterval, ...]] = field(default_factory=dict)


@dataclass(frozen=True)
class NextAvailable:
    business_id: UUID
    bookable_type_id: Optional[UUID]
    slots: Tuple[Slot, ...]


# ---------------------------------------------------------------------------
# Pure computation
# ---------------------------------------------------------------------------


def windows_on(snapshot: CalendarSnapshot, resource: ResourceCalendar, day: date) -> Sequence[WindowSpec]:
    """Open hours of a resource on one local date."""
    override = snapshot.overrides.get((resource.business_id, resource.resource_id, day))
    if override is None:
        override = snapshot.overrides.get((resource.business_id, None, day))
    if override is not None:
        return () if override.is_unavailable else override.windows

    weekday = day.weekday()
    specific = resource.resource_windows.get(weekday)
    if specific:
        return specific
    return resource.business_windows.get(weekday, ())


def slot_reason(
    snapshot: CalendarSnapshot,
    resource: ResourceCalendar,
    start: datetime,
    end: datetime,
    party_size: Optional[int] = None,
) -> Optional[str]:
    """Why [start, end) on this resource cannot be booked, or None if it can."""
    for blackout in snapshot.blackouts:
        if blackout.applies_to(resource) and overlaps(start, end, blackout.start, blackout.end):
            return REASON_BLACKOUT

    fstart, fend = footprint(start, end, resource.buffer_after_mins)
    busy = snapshot.busy.get(resource.resource_id, ())
    for kind in (REASON_BOOKED, REASON_HELD):
        if any(b.kind == kind and overlaps(fstart, fend, b.start, b.end) for b in busy):
            return kind

    if party_size is not None and resource.capacity < party_size:
        return REASON_CAPACITY
    return None


def compute_slots(
    snapshot: CalendarSnapshot,
    start_date: date,
    end_date: date,
    party_size: Optional[int] = None,
    duration_mins: Optional[int] = None,
) -> List[Slot]:
    """Every candidate slot for every resource on local dates in [start_date, end_date)."""
    slots: List[Slot] = []
    for resource in snapshot.resources:
        duration = duration_mins or resource.duration_mins
        for day in iter_days(start_date, end_date):
            for window in windows_on(snapshot, resource, day):
                for offset in iter_slot_starts(window.start, window.end, resource.increment_mins, duration):
                    start = local_offset_to_utc(day, offset, resource.tz)
                    end = local_offset_to_utc(day, offset + duration, resource.tz)
                    reason = slot_reason(snapshot, resource, start, end, party_size)
                    slots.append(Slot(
                        resource_id=resource.resource_id,
                        resource_name=resource.resource_name,
                        business_id=resource.business_id,
                        bookable_type_id=resource.bookable_type_id,
                        start=start,
                        end=end,
                        available=reason is None,
                        reason=reason,
                    ))

    # Windows may overlap; keep one candidate per resource and start
    unique: Dict[Tuple[UUID, datetime, datetime], Slot] = {}
    for slot in slots:
        unique.setdefault((slot.resource_id, slot.start, slot.end), slot)
    return sorted(unique.values(), key=lambda s: (s.start, s.resource_name, str(s.resource_id)))


def first_available(slots: Sequence[Slot], after: datetime, per_group: int) -> List[NextAvailable]:
    """First `per_group` available future slots per (business, bookable type)."""
    groups: Dict[Tuple[UUID, Optional[UUID]], List[Slot]] = {}
    for slot in slots:
        if not slot.available or slot.start <= after:
            continue
        bucket = groups.setdefault((slot.business_id, slot.bookable_type_id), [])
        if len(bucket) < per_group:
            bucket.append(slot)
    return [
        NextAvailable(business_id=business_id, bookable_type_id=type_id, slots=tuple(found))
        for (business_id, type_id), found in groups.items()
    ]


# ---------------------------------------------------------------------------
# Snapshot loading
# ---------------------------------------------------------------------------


def _parse_window(raw) -> WindowSpec:
    return WindowSpec(start=time.fromisoformat(raw["start"]), end=time.fromisoformat(raw["end"]))


class AvailabilityResolver:
    def __init__(self, calendar: CalendarStore, clock, max_days: int, next_count: int, next_horizon_days: int, bucket_mins: int):
        self.calendar = calendar
        self.bucket_mins = bucket_mins
        self.clock = clock
        self.max_days = max_days
        self.next_count = next_count
        self.next_horizon_days = next_horizon_days

    def resolve(
        self,
        db: Session,
        scope: AvailabilityScope,
        start_date: date,
        end_date: Optional[date] = None,
        party_size: Optional[int] = None,
        duration_mins: Optional[int] = None,
    ) -> List[Slot]:
        """Ordered candidate slots for the scope over local dates [start_date, end_date)."""
        end_date = end_date or start_date + timedelta(days=1)
        if end_date <= start_date:
            raise ValidationError("end_date must be after start_date", start_date=start_date, end_date=end_date)
        if (end_date - start_date).days > self.max_days:
            raise ValidationError(f"Date range may not exceed {self.max_days} days")
        if party_size is not None and party_size < 1:
            raise ValidationError("party_size must be at least 1")
        if duration_mins is not None and duration_mins < 1:
            raise ValidationError("duration_mins must be positive")
        if duration_mins is not None and duration_mins % self.bucket_mins:
            raise ValidationError(f"duration_mins must be a multiple of {self.bucket_mins}")

        snapshot = self.load_snapshot(db, scope, start_date, end_date)
        return compute_slots(snapshot, start_date, end_date, party_size, duration_mins)

    def next_available(self, db: Session, scope: AvailabilityScope, n: Optional[int] = None) -> List[NextAvailable]:
        now = self.clock()
        start_date = (now - _QUERY_MARGIN).date()
        end_date = now.date() + timedelta(days=self.next_horizon_days)
        snapshot = self.load_snapshot(db, scope, start_date, end_date)
        slots = compute_slots(snapshot, start_date, end_date)
        return first_available(slots, after=now, per_group=n or self.next_count)

    def check_range(
        self,
        db: Session,
        resource: Resource,
        start: datetime,
        end: datetime,
        party_size: Optional[int] = None,
    ) -> Optional[str]:
        """Reason an arbitrary range on one resource is not free, or None."""
        snapshot = self._snapshot_for(db, [resource], start - _QUERY_MARGIN, end + _QUERY_MARGIN, overrides=[])
        return slot_reason(snapshot, snapshot.resources[0], start, end, party_size)

    # -- loading ------------------------------------------------------------

    def load_snapshot(self, db: Session, scope: AvailabilityScope, start_date: date, end_date: date) -> CalendarSnapshot:
        requested_type = self.calendar.get_bookable_type(db, scope.bookable_type_id)
        resources = self.calendar.find_resources(db, scope)
        utc_start = datetime.combine(start_date, time(0), tzinfo=timezone.utc) - _QUERY_MARGIN
        utc_end = datetime.combine(end_date, time(0), tzinfo=timezone.utc) + _QUERY_MARGIN
        overrides = self.calendar.overrides_for(db, (r.business_id for r in resources), start_date, end_date)
        return self._snapshot_for(db, resources, utc_start, utc_end, overrides, requested_type)

    def _snapshot_for(self, db, resources, utc_start, utc_end, overrides, requested_type=None) -> CalendarSnapshot:
        business_ids = [r.business_id for r in resources]
        resource_ids = [r.id for r in resources]
        windows = self.calendar.windows_for(db, business_ids)

        calendars = tuple(
            self._resource_calendar(resource, windows, requested_type) for resource in resources
        )
        override_map = {
            (o.business_id, o.resource_id, o.override_date): OverrideSpec(
                is_unavailable=bool(o.is_unavailable),
                windows=tuple(_parse_window(w) for w in (o.windows or [])),
            )
            for o in overrides
        }
        blackouts = tuple(
            BlackoutSpec(b.business_id, b.resource_id, b.start_datetime, b.end_datetime)
            for b in self.calendar.blackouts_for(db, business_ids, resource_ids, utc_start, utc_end)
        )
        return CalendarSnapshot(
            resources=calendars,
            overrides=override_map,
            blackouts=blackouts,
            busy=self._busy_intervals(db, resource_ids, utc_start, utc_end),
        )

    def _resource_calendar(self, resource: Resource, windows: List[AvailabilityWindow], requested_type) -> ResourceCalendar:
        bookable_type = self.calendar.effective_type(resource, requested_type)
        type_id = bookable_type.id if bookable_type else None

        resource_windows: Dict[int, List[WindowSpec]] = {}
        business_windows: Dict[int, List[WindowSpec]] = {}
        for w in windows:
            if w.business_id != resource.business_id:
                continue
            spec = WindowSpec(w.start_time, w.end_time)
            if w.resource_id is not None:
                if w.resource_id == resource.id:
                    resource_windows.setdefault(w.day_of_week, []).append(spec)
            elif w.bookable_type_id is None or w.bookable_type_id == type_id:
                business_windows.setdefault(w.day_of_week, []).append(spec)

        return ResourceCalendar(
            resource_id=resource.id,
            resource_name=resource.name,
            business_id=resource.business_id,
            bookable_type_id=type_id,
            capacity=resource.capacity or 0,
            tz=self.calendar.zone_for(resource.business),
            increment_mins=self.calendar.increment_for(bookable_type),
            duration_mins=self.calendar.duration_for(bookable_type),
            buffer_after_mins=self.calendar.buffer_for(bookable_type),
            resource_windows={k: tuple(v) for k, v in resource_windows.items()},
            business_windows={k: tuple(v) for k, v in business_windows.items()},
        )

    def _busy_intervals(self, db: Session, resource_ids, utc_start: datetime, utc_end: datetime) -> Dict[UUID, Tuple[BusyInterval, ...]]:
        busy: Dict[UUID, List[BusyInterval]] = {}
        if not resource_ids:
            return {}

        bookings = (
            db.query(Booking, BookingResource.resource_id)
            .join(BookingResource, BookingResource.booking_id == Booking.id)
            .options(joinedload(Booking.bookable_type))
            .filter(
                BookingResource.resource_id.in_(resource_ids),
                Booking.status.in_(OCCUPYING_STATUSES),
                Booking.start_datetime < utc_end,
                Booking.end_datetime > utc_start,
            )
            .all()
        )
        for booking, resource_id in bookings:
            fstart, fend = footprint(
                booking.start_datetime,
                booking.end_datetime,
                self.calendar.buffer_for(booking.bookable_type),
            )
            busy.setdefault(resource_id, []).append(BusyInterval(fstart, fend, REASON_BOOKED))

        now = self.clock()
        holds = (
            db.query(SlotHold)
            .filter(
                SlotHold.resource_id.in_(resource_ids),
                SlotHold.status == SlotHoldStatus.active,
                SlotHold.expires_at > now,
                SlotHold.start_datetime < utc_end,
                SlotHold.end_datetime > utc_start,
            )
            .all()
        )
        for hold in holds:
            bookable_type = self.calendar.get_bookable_type(db, hold.bookable_type_id)
            fstart, fend = footprint(hold.start_datetime, hold.end_datetime, self.calendar.buffer_for(bookable_type))
            busy.setdefault(hold.resource_id, []).append(BusyInterval(fstart, fend, REASON_HELD))

        return {k: tuple(v) for k, v in busy.items()}
