"""
Tests for the Booking Ledger.
"""
import uuid

import pytest

from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.models.booking import BookingStatus
from app.models.occupancy import OccupancyClaim
from app.models.slot_hold import SlotHold, SlotHoldStatus
from app.services.events import BOOKING_CREATED, BOOKING_STATUS_CHANGED, SLOT_FREED

from conftest import MONDAY, at, event_names, last_event, seed_venue


def test_create_booking_claims_resources(engine, db, venue, events):
    """A direct booking takes every resource it names."""
    venue = seed_venue(db, slug="studio", resources=("A", "B"))
    booking = engine.create_booking(
        db, [venue.resources["A"], venue.resources["B"]], at(10), at(11),
        guest_name="Ada", guest_email="ada@example.com",
    )

    assert booking.status == BookingStatus.pending
    assert sorted(booking.resource_ids) == sorted(venue.resources.values())
    assert db.query(OccupancyClaim).filter(OccupancyClaim.booking_id == booking.id).count() == 8
    assert last_event(events, BOOKING_CREATED).payload["booking_id"] == booking.id


def test_double_booking_is_refused(engine, db, venue):
    """Two occupying bookings can never overlap on one resource."""
    engine.create_booking(db, [venue.room], at(10), at(11))
    with pytest.raises(ConflictError):
        engine.create_booking(db, [venue.room], at(10, 30), at(11, 30))
    engine.create_booking(db, [venue.room], at(11), at(12))


def test_booking_blocks_holds(engine, db, venue):
    """A booked range cannot be held."""
    engine.create_booking(db, [venue.room], at(10), at(11), status=BookingStatus.confirmed)
    with pytest.raises(ConflictError):
        engine.acquire_hold(db, venue.room, at(10), at(11), "guest-1")


def test_buffer_blocks_back_to_back(engine, db):
    """The cleanup buffer after a booking keeps the next start free."""
    venue = seed_venue(db, slug="salon", buffer_after_mins=15)
    engine.create_booking(db, [venue.room], at(10), at(11))
    with pytest.raises(ConflictError):
        engine.create_booking(db, [venue.room], at(11), at(12))
    engine.create_booking(db, [venue.room], at(11, 15), at(12))


def test_booking_takes_range_of_lapsed_hold(engine, db, venue, clock):
    """Once a hold's TTL is over its range can be booked before any sweep."""
    hold = engine.acquire_hold(db, venue.room, at(10), at(11), "guest-1")
    hold_id = hold.id
    clock.advance(minutes=10)

    slots = engine.resolve(db, MONDAY, resource_id=venue.room)
    assert next(s for s in slots if s.start == at(10)).available

    booking = engine.create_booking(db, [venue.room], at(10), at(11), status=BookingStatus.confirmed)
    assert db.get(SlotHold, hold_id).status == SlotHoldStatus.expired
    claims = db.query(OccupancyClaim).filter(OccupancyClaim.resource_id == venue.room).all()
    assert len(claims) == 4
    assert all(c.booking_id == booking.id for c in claims)


def test_create_validates_input(engine, db, venue):
    """Inverted ranges, empty resource lists and unknown resources fail."""
    with pytest.raises(ValidationError):
        engine.create_booking(db, [venue.room], at(11), at(10))
    with pytest.raises(ValidationError):
        engine.create_booking(db, [], at(10), at(11))
    with pytest.raises(ValidationError):
        engine.create_booking(db, [venue.room], at(10), at(11), party_size=0)
    with pytest.raises(NotFoundError):
        engine.create_booking(db, [uuid.uuid4()], at(10), at(11))


def test_resources_of_one_business_only(engine, db, venue):
    """A booking cannot span two businesses."""
    other = seed_venue(db, slug="annex")
    with pytest.raises(ValidationError):
        engine.create_booking(db, [venue.room, other.room], at(10), at(11))


def test_non_occupying_booking_takes_nothing(engine, db, venue):
    """A booking recorded as cancelled does not claim the range."""
    engine.create_booking(db, [venue.room], at(10), at(11), status=BookingStatus.cancelled)
    engine.create_booking(db, [venue.room], at(10), at(11))


def test_valid_transitions(engine, db, venue, events):
    """pending -> confirmed -> in_progress -> completed."""
    booking = engine.create_booking(db, [venue.room], at(10), at(11))
    booking_id = booking.id
    for status in (BookingStatus.confirmed, BookingStatus.in_progress, BookingStatus.completed):
        booking = engine.transition_booking(db, booking_id, status, actor="staff")
        assert booking.status == status
    assert event_names(events).count(BOOKING_STATUS_CHANGED) == 3


def test_invalid_transition(engine, db, venue):
    """Terminal bookings stay terminal; skipping states is refused."""
    booking = engine.create_booking(db, [venue.room], at(10), at(11))
    booking_id = booking.id
    with pytest.raises(ConflictError):
        engine.transition_booking(db, booking_id, BookingStatus.completed)
    engine.transition_booking(db, booking_id, BookingStatus.denied)
    with pytest.raises(ConflictError):
        engine.transition_booking(db, booking_id, BookingStatus.confirmed)


def test_transition_unknown_booking(engine, db, venue):
    """Unknown ids are NotFound."""
    with pytest.raises(NotFoundError):
        engine.transition_booking(db, uuid.uuid4(), BookingStatus.confirmed)


def test_cancel_frees_range(engine, db, venue, events):
    """Cancelling drops the claims and announces the freed slot."""
    booking = engine.create_booking(db, [venue.room], at(10), at(11), status=BookingStatus.confirmed)
    booking_id = booking.id
    cancelled = engine.transition_booking(db, booking_id, BookingStatus.cancelled)

    assert cancelled.status == BookingStatus.cancelled
    assert cancelled.cancelled_at is not None
    assert db.query(OccupancyClaim).filter(OccupancyClaim.booking_id == booking_id).count() == 0

    freed = last_event(events, SLOT_FREED)
    assert freed.payload["resource_id"] == venue.room
    assert freed.payload["start"] == at(10)

    slots = engine.resolve(db, MONDAY, resource_id=venue.room)
    assert next(s for s in slots if s.start == at(10)).available
    engine.create_booking(db, [venue.room], at(10), at(11))


def test_completed_booking_does_not_free(engine, db, venue, events):
    """Moving between occupying states keeps the claims."""
    booking = engine.create_booking(db, [venue.room], at(10), at(11))
    engine.transition_booking(db, booking.id, BookingStatus.confirmed)
    engine.transition_booking(db, booking.id, BookingStatus.in_progress)
    assert SLOT_FREED not in event_names(events)
    with pytest.raises(ConflictError):
        engine.create_booking(db, [venue.room], at(10), at(11))
