"""
Tests for the Availability Resolver: the pure slot computation first, then the
database-backed resolver.
"""
import uuid
from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from app.core.errors import ValidationError
from app.models.business import BusinessType
from app.models.calendar import AvailabilityOverride, BlackoutPeriod
from app.services.availability import (
    BlackoutSpec,
    BusyInterval,
    CalendarSnapshot,
    OverrideSpec,
    REASON_BLACKOUT,
    REASON_BOOKED,
    REASON_CAPACITY,
    REASON_HELD,
    ResourceCalendar,
    WindowSpec,
    compute_slots,
    first_available,
)

from conftest import MONDAY, at, seed_venue

BUSINESS = uuid.uuid4()
ROOM = uuid.uuid4()
TUESDAY = MONDAY + timedelta(days=1)


def _calendar(**overrides) -> ResourceCalendar:
    fields = dict(
        resource_id=ROOM,
        resource_name="Room 1",
        business_id=BUSINESS,
        bookable_type_id=None,
        capacity=4,
        tz=ZoneInfo("UTC"),
        increment_mins=60,
        duration_mins=60,
        buffer_after_mins=0,
        business_windows={d: (WindowSpec(time(9), time(17)),) for d in range(7)},
    )
    fields.update(overrides)
    return ResourceCalendar(**fields)


def _slots(snapshot, day=MONDAY, **kwargs):
    return compute_slots(snapshot, day, day + timedelta(days=1), **kwargs)


def _by_hour(slots):
    return {s.start.hour: s for s in slots}


# ---------------------------------------------------------------------------
# Pure computation
# ---------------------------------------------------------------------------


def test_open_day_yields_hourly_slots():
    """A 09:00-17:00 window at 60-minute increments gives eight slots."""
    slots = _slots(CalendarSnapshot(resources=(_calendar(),)))
    assert [s.start for s in slots] == [at(h) for h in range(9, 17)]
    assert all(s.available and s.reason is None for s in slots)
    assert all(s.end - s.start == timedelta(hours=1) for s in slots)


def test_live_hold_marks_slot_held():
    """A busy hold interval makes only its own slot unavailable."""
    snapshot = CalendarSnapshot(
        resources=(_calendar(),),
        busy={ROOM: (BusyInterval(at(10), at(11), REASON_HELD),)},
    )
    slots = _by_hour(_slots(snapshot))
    assert slots[10].reason == REASON_HELD
    assert slots[9].available and slots[11].available


def test_buffer_extends_candidate_footprint():
    """With a cleanup buffer a slot ending right before a booking is blocked."""
    snapshot = CalendarSnapshot(
        resources=(_calendar(buffer_after_mins=30),),
        busy={ROOM: (BusyInterval(at(12, 15), at(13, 30), REASON_BOOKED),)},
    )
    slots = _by_hour(_slots(snapshot))
    assert slots[11].reason == REASON_BOOKED
    assert slots[12].reason == REASON_BOOKED
    assert slots[13].reason == REASON_BOOKED
    assert slots[14].available


def test_blackout_wins_over_other_reasons():
    """A blackout is reported even where the slot is also booked."""
    snapshot = CalendarSnapshot(
        resources=(_calendar(),),
        blackouts=(BlackoutSpec(BUSINESS, None, at(12, 30), at(13, 30)),),
        busy={ROOM: (BusyInterval(at(12), at(13), REASON_BOOKED),)},
    )
    slots = _by_hour(_slots(snapshot))
    assert slots[12].reason == REASON_BLACKOUT
    assert slots[13].reason == REASON_BLACKOUT
    assert slots[11].available


def test_blackout_for_other_resource_does_not_apply():
    """Resource-level blackouts only affect their own resource."""
    snapshot = CalendarSnapshot(
        resources=(_calendar(),),
        blackouts=(BlackoutSpec(None, uuid.uuid4(), at(9), at(17)),),
    )
    assert all(s.available for s in _slots(snapshot))


def test_capacity_checked_against_party_size():
    """A party larger than the resource's capacity cannot book it."""
    slots = _slots(CalendarSnapshot(resources=(_calendar(capacity=4),)), party_size=5)
    assert {s.reason for s in slots} == {REASON_CAPACITY}


def test_resource_windows_take_precedence():
    """Resource-specific hours replace business hours for that weekday only."""
    calendar = _calendar(resource_windows={MONDAY.weekday(): (WindowSpec(time(13), time(15)),)})
    snapshot = CalendarSnapshot(resources=(calendar,))
    assert [s.start for s in _slots(snapshot)] == [at(13), at(14)]
    assert len(_slots(snapshot, day=TUESDAY)) == 8


def test_business_override_closes_day():
    """An unavailable override removes every slot on its date."""
    snapshot = CalendarSnapshot(
        resources=(_calendar(),),
        overrides={(BUSINESS, None, MONDAY): OverrideSpec(is_unavailable=True)},
    )
    assert _slots(snapshot) == []
    assert len(_slots(snapshot, day=TUESDAY)) == 8


def test_resource_override_beats_business_override():
    """A resource-level override wins over the business-wide one."""
    snapshot = CalendarSnapshot(
        resources=(_calendar(),),
        overrides={
            (BUSINESS, None, MONDAY): OverrideSpec(is_unavailable=True),
            (BUSINESS, ROOM, MONDAY): OverrideSpec(False, (WindowSpec(time(10), time(12)),)),
        },
    )
    assert [s.start for s in _slots(snapshot)] == [at(10), at(11)]


def test_requested_duration_changes_candidates():
    """Longer durations still start on the increment but must fit the window."""
    slots = _slots(CalendarSnapshot(resources=(_calendar(),)), duration_mins=120)
    assert [s.start for s in slots] == [at(h) for h in range(9, 16)]
    assert all(s.end - s.start == timedelta(hours=2) for s in slots)


def test_slots_ordered_by_start_then_name():
    """Ties on start time are broken by resource name."""
    zeta = _calendar(resource_id=uuid.uuid4(), resource_name="Zeta")
    alpha = _calendar(resource_id=uuid.uuid4(), resource_name="Alpha")
    slots = _slots(CalendarSnapshot(resources=(zeta, alpha)))
    assert [s.resource_name for s in slots[:4]] == ["Alpha", "Zeta", "Alpha", "Zeta"]


def test_local_windows_use_business_timezone():
    """Windows are local time; slots come back in UTC."""
    snapshot = CalendarSnapshot(resources=(_calendar(tz=ZoneInfo("Europe/Prague")),))
    slots = _slots(snapshot)
    assert slots[0].start == datetime(2030, 1, 7, 8, 0, tzinfo=timezone.utc)
    assert slots[-1].end == datetime(2030, 1, 7, 16, 0, tzinfo=timezone.utc)


def test_first_available_per_group():
    """Only future, available slots count, limited per group."""
    snapshot = CalendarSnapshot(
        resources=(_calendar(),),
        busy={ROOM: (BusyInterval(at(12), at(13), REASON_BOOKED),)},
    )
    found = first_available(_slots(snapshot), after=at(10, 30), per_group=3)
    assert len(found) == 1
    assert [s.start for s in found[0].slots] == [at(11), at(13), at(14)]


# ---------------------------------------------------------------------------
# Database-backed resolver
# ---------------------------------------------------------------------------


def test_resolve_room_one(engine, db, venue):
    """Room 1 open 09:00-17:00 resolves to eight free hourly slots."""
    slots = engine.resolve(db, MONDAY, resource_id=venue.room)
    assert [s.start for s in slots] == [at(h) for h in range(9, 17)]
    assert all(s.available for s in slots)
    assert {s.bookable_type_id for s in slots} == {venue.bookable_type_id}


def test_resolve_rejects_inverted_range(engine, db, venue):
    """end_date must be after start_date."""
    with pytest.raises(ValidationError):
        engine.resolve(db, MONDAY, MONDAY, business_id=venue.business_id)


def test_resolve_rejects_overlong_range(engine, db, venue, settings):
    """Ranges longer than the configured maximum are refused."""
    with pytest.raises(ValidationError):
        engine.resolve(db, MONDAY, MONDAY + timedelta(days=settings.MAX_RESOLVE_DAYS + 1))


def test_resolve_rejects_unknown_scope(engine, db, venue):
    """Unknown scope references are validation errors, not empty results."""
    with pytest.raises(ValidationError):
        engine.resolve(db, MONDAY, business_id=uuid.uuid4())
    with pytest.raises(ValidationError):
        engine.resolve(db, MONDAY, bookable_type_id=uuid.uuid4())


def test_resolve_filters_by_business_type(engine, db, venue):
    """A business_type scope only returns that kind of business."""
    spa = seed_venue(db, slug="spa", resources=("Suite",), business_type=BusinessType.spa)
    slots = engine.resolve(db, MONDAY, business_type=BusinessType.spa)
    assert {s.resource_id for s in slots} == {spa.resources["Suite"]}


def test_resolve_multi_day_range(engine, db, venue):
    """A two-day range yields both days' slots."""
    slots = engine.resolve(db, MONDAY, MONDAY + timedelta(days=2), resource_id=venue.room)
    assert len(slots) == 16


def test_resolve_applies_stored_blackout_and_override(engine, db, venue):
    """Blackouts and overrides stored in the calendar are honoured."""
    db.add(BlackoutPeriod(resource_id=venue.room, start_datetime=at(9), end_datetime=at(11), reason="Cleaning"))
    db.add(AvailabilityOverride(
        business_id=venue.business_id,
        override_date=TUESDAY,
        windows=[{"start": "10:00", "end": "12:00"}],
    ))
    db.commit()

    monday = _by_hour(engine.resolve(db, MONDAY, resource_id=venue.room))
    assert monday[9].reason == REASON_BLACKOUT
    assert monday[10].reason == REASON_BLACKOUT
    assert monday[11].available

    tuesday = engine.resolve(db, TUESDAY, resource_id=venue.room)
    assert [s.start.hour for s in tuesday] == [10, 11]


def test_next_available_skips_past_and_taken(engine, db, venue, clock):
    """next_available returns the first open future slots."""
    clock.now = at(10, 30)
    engine.create_booking(db, [venue.room], at(12), at(13))
    found = engine.next_available(db, business_id=venue.business_id, n=3)
    assert len(found) == 1
    assert [s.start for s in found[0].slots] == [at(11), at(13), at(14)]
