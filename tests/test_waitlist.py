"""
Tests for the Waitlist Allocator and the Offer/Claim State Machine.
"""
import uuid
from datetime import time, timedelta

import pytest

from app.core.config import Settings
from app.core.errors import (
    ConflictError,
    InvalidTokenError,
    OfferExpiredError,
    ValidationError,
)
from app.models.audit_log import AuditLog
from app.models.booking import BookingStatus
from app.models.slot_hold import SlotHold, SlotHoldPurpose, SlotHoldStatus
from app.models.waitlist import OfferStatus, WaitlistOffer, WaitlistStatus
from app.services.availability import REASON_HELD
from app.services.engine import SchedulingEngine
from app.services.events import (
    OFFER_CLAIMED,
    OFFER_CREATED,
    OFFER_DECLINED,
    OFFER_EXPIRED,
)
from app.services.waitlist import FreedSlot, PreferencePredicate

from conftest import MONDAY, at, event_names, last_event

ROOM = uuid.uuid4()
ROOM_TYPE = uuid.uuid4()


def _freed(day=MONDAY, start=600, end=660, capacity=4, resource_id=ROOM, bookable_type_id=ROOM_TYPE):
    return FreedSlot(resource_id, bookable_type_id, capacity, day, start, end)


def _join(engine, db, venue, name, **prefs):
    prefs.setdefault("guest_email", f"{name.lower()}@example.com")
    entry = engine.join_waitlist(db, venue.business_id, guest_name=name, **prefs)
    return entry.id


def _free_ten(engine, db, venue):
    """Book Room 1 10:00-11:00 and cancel it, announcing the freed slot."""
    booking = engine.create_booking(db, [venue.room], at(10), at(11), status=BookingStatus.confirmed)
    engine.transition_booking(db, booking.id, BookingStatus.cancelled)


def _token(events, entry_id):
    offers = [e for e in events if e.name == OFFER_CREATED and e.payload["entry_id"] == entry_id]
    assert offers, "entry was never offered"
    return offers[-1].payload["token"]


# ---------------------------------------------------------------------------
# PreferencePredicate
# ---------------------------------------------------------------------------


def test_empty_preferences_match_anything():
    """Unset fields never filter."""
    assert PreferencePredicate().matches(_freed())


def test_date_flexibility():
    """A slot within +/- flexibility_days of the preferred date matches."""
    predicate = PreferencePredicate(preferred_date=MONDAY, flexibility_days=1)
    assert predicate.matches(_freed(day=MONDAY - timedelta(days=1)))
    assert predicate.matches(_freed(day=MONDAY + timedelta(days=1)))
    assert not predicate.matches(_freed(day=MONDAY + timedelta(days=2)))
    assert not PreferencePredicate(preferred_date=MONDAY).matches(_freed(day=MONDAY + timedelta(days=1)))


def test_time_window():
    """The slot must sit entirely inside the preferred local window."""
    predicate = PreferencePredicate(time_start=time(9), time_end=time(12))
    assert predicate.matches(_freed(start=600, end=660))
    assert predicate.matches(_freed(start=660, end=720))
    assert not predicate.matches(_freed(start=480, end=540))
    assert not predicate.matches(_freed(start=690, end=750))


def test_time_window_to_midnight():
    """A preferred end of 00:00 means the end of the day."""
    predicate = PreferencePredicate(time_start=time(20), time_end=time(0))
    assert predicate.matches(_freed(start=23 * 60, end=24 * 60))


def test_resource_and_type_filters():
    """Resource must match exactly; an untyped resource serves any type."""
    assert PreferencePredicate(resource_id=ROOM).matches(_freed())
    assert not PreferencePredicate(resource_id=uuid.uuid4()).matches(_freed())
    assert PreferencePredicate(bookable_type_id=ROOM_TYPE).matches(_freed())
    assert not PreferencePredicate(bookable_type_id=uuid.uuid4()).matches(_freed())
    assert PreferencePredicate(bookable_type_id=uuid.uuid4()).matches(_freed(bookable_type_id=None))


def test_party_size_against_capacity():
    """The resource has to seat the whole party."""
    assert PreferencePredicate(party_size=4).matches(_freed(capacity=4))
    assert not PreferencePredicate(party_size=5).matches(_freed(capacity=4))


# ---------------------------------------------------------------------------
# Joining and ranking
# ---------------------------------------------------------------------------


def test_join_appends_to_back(engine, db, venue):
    """Positions grow by one per business."""
    first = _join(engine, db, venue, "Ann")
    second = _join(engine, db, venue, "Bob")
    entries = engine.list_entries(db, venue.business_id)
    assert [e.id for e in entries] == [first, second]
    assert [e.position for e in entries] == [1, 2]
    assert all(e.status == WaitlistStatus.waiting for e in entries)


def test_join_validates_preferences(engine, db, venue):
    """Bad references, windows and missing contact details are rejected."""
    with pytest.raises(ValidationError):
        engine.join_waitlist(db, uuid.uuid4(), guest_email="x@example.com")
    with pytest.raises(ValidationError):
        engine.join_waitlist(db, venue.business_id, resource_id=uuid.uuid4(), guest_email="x@example.com")
    with pytest.raises(ValidationError):
        engine.join_waitlist(db, venue.business_id, flexibility_days=-1, guest_email="x@example.com")
    with pytest.raises(ValidationError):
        engine.join_waitlist(db, venue.business_id, party_size=0, guest_email="x@example.com")
    with pytest.raises(ValidationError):
        engine.join_waitlist(
            db, venue.business_id,
            preferred_time_start=time(12), preferred_time_end=time(10),
            guest_email="x@example.com",
        )
    with pytest.raises(ValidationError):
        engine.join_waitlist(db, venue.business_id, guest_name="Anonymous")


def test_vip_ranks_first(engine, db, venue):
    """A VIP is listed before earlier regular entries."""
    regular = _join(engine, db, venue, "Ann")
    vip = _join(engine, db, venue, "Bob", is_vip=True)
    assert [e.id for e in engine.list_entries(db, venue.business_id)] == [vip, regular]


# ---------------------------------------------------------------------------
# Allocation and offers
# ---------------------------------------------------------------------------


def test_vip_priority_gets_the_offer(engine, db, venue, events):
    """A freed slot goes to the VIP even though they joined later."""
    ann = _join(engine, db, venue, "Ann")
    bob = _join(engine, db, venue, "Bob", is_vip=True)

    _free_ten(engine, db, venue)

    offered = last_event(events, OFFER_CREATED)
    assert offered.payload["entry_id"] == bob
    assert offered.payload["resource_id"] == venue.room
    assert offered.payload["start"] == at(10)
    assert engine.get_entry(db, bob).status == WaitlistStatus.offered
    assert engine.get_entry(db, ann).status == WaitlistStatus.waiting


def test_offer_is_well_formed(engine, db, venue, clock, events):
    """The offer carries a token, a 24h deadline and a hold on the slot."""
    ann = _join(engine, db, venue, "Ann")
    _free_ten(engine, db, venue)

    entry = engine.get_entry(db, ann)
    assert entry.status == WaitlistStatus.offered
    assert entry.claim_token == _token(events, ann)
    assert entry.claim_expires_at == clock() + timedelta(hours=24)
    assert entry.notified_at == clock()

    hold = db.query(SlotHold).filter(SlotHold.purpose == SlotHoldPurpose.waitlist_offer).one()
    assert hold.status == SlotHoldStatus.active
    assert hold.expires_at == entry.claim_expires_at

    slots = engine.resolve(db, MONDAY, resource_id=venue.room)
    assert next(s for s in slots if s.start == at(10)).reason == REASON_HELD
    with pytest.raises(ConflictError):
        engine.acquire_hold(db, venue.room, at(10), at(11), "walk-in")

    actions = [row.action_type for row in db.query(AuditLog).filter(AuditLog.entity_id == ann)]
    assert "slot_offered" in actions


def test_preferences_filter_candidates(engine, db, venue, events):
    """Entries whose window does not fit are skipped in rank order."""
    early = _join(engine, db, venue, "Early", preferred_time_start=time(6), preferred_time_end=time(9))
    fits = _join(engine, db, venue, "Fits", preferred_date=MONDAY, preferred_time_start=time(9))

    _free_ten(engine, db, venue)

    assert last_event(events, OFFER_CREATED).payload["entry_id"] == fits
    assert engine.get_entry(db, early).status == WaitlistStatus.waiting


def test_released_hold_feeds_waitlist(engine, db, venue, events):
    """Abandoned checkout holds are offered to the waitlist too."""
    ann = _join(engine, db, venue, "Ann")
    hold = engine.acquire_hold(db, venue.room, at(14), at(15), "guest-1")
    engine.release_hold(db, hold.id, "guest-1")
    assert last_event(events, OFFER_CREATED).payload["entry_id"] == ann


def test_claim_creates_booking(engine, db, venue, events):
    """A valid claim confirms a booking from the offer hold."""
    ann = _join(engine, db, venue, "Ann")
    _free_ten(engine, db, venue)

    entry, booking = engine.claim_offer(db, ann, _token(events, ann))

    assert entry.status == WaitlistStatus.claimed
    assert entry.claim_token is None
    assert booking.status == BookingStatus.confirmed
    assert booking.guest_email == "ann@example.com"
    assert booking.resource_ids == [venue.room]

    offer = db.query(WaitlistOffer).filter(WaitlistOffer.entry_id == ann).one()
    assert offer.status == OfferStatus.claimed
    assert offer.booking_id == booking.id
    assert db.get(SlotHold, offer.hold_id).status == SlotHoldStatus.converted
    assert OFFER_CLAIMED in event_names(events)


def test_claim_with_wrong_token(engine, db, venue):
    """A wrong token is refused and leaves the offer outstanding."""
    ann = _join(engine, db, venue, "Ann")
    _free_ten(engine, db, venue)

    with pytest.raises(InvalidTokenError):
        engine.claim_offer(db, ann, "not-the-token")
    with pytest.raises(InvalidTokenError):
        engine.claim_offer(db, ann, "")
    assert engine.get_entry(db, ann).status == WaitlistStatus.offered


def test_double_claim_conflicts(engine, db, venue, events):
    """The same token cannot be used twice."""
    ann = _join(engine, db, venue, "Ann")
    _free_ten(engine, db, venue)
    token = _token(events, ann)

    engine.claim_offer(db, ann, token)
    with pytest.raises(ConflictError):
        engine.claim_offer(db, ann, token)


def test_claim_after_deadline(engine, db, venue, clock, events):
    """A late claim fails, demotes the entry and moves the slot on."""
    ann = _join(engine, db, venue, "Ann")
    bob = _join(engine, db, venue, "Bob")
    _free_ten(engine, db, venue)
    token = _token(events, ann)

    clock.advance(hours=24)
    with pytest.raises(OfferExpiredError):
        engine.claim_offer(db, ann, token)

    entry = engine.get_entry(db, ann)
    assert entry.status == WaitlistStatus.waiting
    assert entry.position == 3
    assert OFFER_EXPIRED in event_names(events)
    assert engine.get_entry(db, bob).status == WaitlistStatus.offered

    # The old token stays dead
    with pytest.raises(OfferExpiredError):
        engine.claim_offer(db, ann, token)


def test_expired_offer_cascades_on_read(engine, db, venue, clock, events):
    """Reading an overdue entry demotes it and offers the slot to the next one."""
    ann = _join(engine, db, venue, "Ann")
    bob = _join(engine, db, venue, "Bob", is_vip=True)
    _free_ten(engine, db, venue)
    assert last_event(events, OFFER_CREATED).payload["entry_id"] == bob

    clock.advance(hours=24)
    demoted = engine.get_entry(db, bob)
    assert demoted.status == WaitlistStatus.waiting
    assert demoted.position == 3
    assert demoted.claim_token is None
    assert engine.get_entry(db, ann).status == WaitlistStatus.offered

    expired_offer = db.query(WaitlistOffer).filter(WaitlistOffer.entry_id == bob).one()
    assert expired_offer.status == OfferStatus.expired
    assert db.get(SlotHold, expired_offer.hold_id).status == SlotHoldStatus.expired


def test_decline_cascades(engine, db, venue, events):
    """Declining frees the slot for the next entry."""
    ann = _join(engine, db, venue, "Ann")
    bob = _join(engine, db, venue, "Bob")
    _free_ten(engine, db, venue)

    entry = engine.decline_offer(db, ann, _token(events, ann))
    assert entry.status == WaitlistStatus.waiting
    assert OFFER_DECLINED in event_names(events)
    assert last_event(events, OFFER_CREATED).payload["entry_id"] == bob


def test_declined_range_does_not_bounce_back(engine, db, venue, events):
    """Once everybody passed on a range it stays free for direct booking."""
    ann = _join(engine, db, venue, "Ann")
    bob = _join(engine, db, venue, "Bob")
    _free_ten(engine, db, venue)

    engine.decline_offer(db, ann, _token(events, ann))
    engine.decline_offer(db, bob, _token(events, bob))

    assert len([e for e in events if e.name == OFFER_CREATED]) == 2
    assert engine.get_entry(db, ann).status == WaitlistStatus.waiting
    assert engine.get_entry(db, bob).status == WaitlistStatus.waiting
    engine.acquire_hold(db, venue.room, at(10), at(11), "walk-in")


def test_decline_validation(engine, db, venue, events):
    """Only outstanding offers can be declined, with the right token."""
    ann = _join(engine, db, venue, "Ann")
    with pytest.raises(ConflictError):
        engine.decline_offer(db, ann)
    _free_ten(engine, db, venue)
    with pytest.raises(InvalidTokenError):
        engine.decline_offer(db, ann, "wrong")


def test_cascade_can_be_disabled(session_factory, db, venue, clock):
    """With cascading off a declined slot is not re-offered."""
    settings = Settings(DATABASE_URL="sqlite://", CREATE_DATABASE_ON_STARTUP=False, WAITLIST_CASCADE=False)
    engine = SchedulingEngine(session_factory=session_factory, settings=settings, clock=clock)
    received = []
    engine.events.subscribe(OFFER_CREATED, received.append)

    ann = _join(engine, db, venue, "Ann")
    _join(engine, db, venue, "Bob")
    _free_ten(engine, db, venue)
    assert len(received) == 1

    engine.decline_offer(db, ann, received[0].payload["token"])
    assert len(received) == 1
    slots = engine.resolve(db, MONDAY, resource_id=venue.room)
    assert next(s for s in slots if s.start == at(10)).available


def test_past_range_is_ignored(engine, db, venue, clock):
    """A slot that already started is never offered."""
    _join(engine, db, venue, "Ann")
    clock.now = at(12)
    assert engine.on_slot_freed(db, venue.room, at(10), at(11)) is None


def test_taken_range_is_ignored(engine, db, venue):
    """A range booked again before allocation runs is not offered."""
    _join(engine, db, venue, "Ann")
    engine.create_booking(db, [venue.room], at(10), at(11))
    assert engine.on_slot_freed(db, venue.room, at(10), at(11)) is None


def test_manual_offer(engine, db, venue, events):
    """Staff can offer a specific range to a specific entry."""
    _join(engine, db, venue, "Ann", is_vip=True)
    bob = _join(engine, db, venue, "Bob")
    entry = engine.offer(db, bob, venue.room, at(15), at(16))
    assert entry.status == WaitlistStatus.offered
    assert last_event(events, OFFER_CREATED).payload["entry_id"] == bob


def test_sweep_expires_overdue_offers(engine, db, venue, clock, sweep):
    """The sweeper demotes overdue offers and is idempotent."""
    ann = _join(engine, db, venue, "Ann")
    bob = _join(engine, db, venue, "Bob")
    _free_ten(engine, db, venue)

    clock.advance(hours=25)
    result = sweep()
    assert result.offers_expired == 1
    assert result.holds_expired == 0
    assert engine.get_entry(db, ann).status == WaitlistStatus.waiting
    assert engine.get_entry(db, bob).status == WaitlistStatus.offered

    assert sweep().offers_expired == 0


def test_failed_reallocation_is_retried_by_sweep(engine, db, venue, sweep, monkeypatch):
    """A freed slot whose reallocation crashed is offered on the next sweep."""
    entry_id = _join(engine, db, venue, "Ann")
    on_slot_freed = engine.waitlist.on_slot_freed
    calls = []

    def flaky(*args, **kwargs):
        calls.append(args)
        if len(calls) == 1:
            raise RuntimeError("connection lost")
        return on_slot_freed(*args, **kwargs)

    monkeypatch.setattr(engine.waitlist, "on_slot_freed", flaky)
    _free_ten(engine, db, venue)
    assert engine.get_entry(db, entry_id).status == WaitlistStatus.waiting
    assert len(engine.failed_reallocations) == 1

    result = sweep()
    assert result.reallocated == 1
    assert result.failures == 0
    assert not engine.failed_reallocations
    assert engine.get_entry(db, entry_id).status == WaitlistStatus.offered


def test_stale_reallocation_is_dropped(engine, db, venue, clock, sweep, monkeypatch):
    """Retries stop once the freed range has started."""
    entry_id = _join(engine, db, venue, "Ann")

    def broken(*args, **kwargs):
        raise RuntimeError("connection lost")

    monkeypatch.setattr(engine.waitlist, "on_slot_freed", broken)
    _free_ten(engine, db, venue)
    assert len(engine.failed_reallocations) == 1

    clock.advance(days=3)
    result = sweep()
    assert result.reallocated == 0
    assert result.failures == 0
    assert not engine.failed_reallocations
    assert engine.get_entry(db, entry_id).status == WaitlistStatus.waiting
