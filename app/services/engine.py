"""
Wiring and transaction boundary for the scheduling components.

Every public operation runs inside `transaction(db)`: commit on success, then
publish the queued events, then feed each `slot.freed` event to the waitlist
allocator in a fresh session of its own. A rollback discards the events.
"""
import logging
from collections import deque
from contextlib import contextmanager
from datetime import date, datetime
from typing import Deque, Iterator, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy.orm import Session

from app.core.config import Settings, settings as default_settings
from app.core.errors import NotFoundError, OfferExpiredError
from app.db.session import SessionLocal
from app.models.booking import Booking, BookingStatus
from app.models.business import BusinessType
from app.models.slot_hold import SlotHold, SlotHoldPurpose
from app.models.waitlist import WaitlistEntry, WaitlistStatus
from app.services.availability import AvailabilityResolver, NextAvailable, Slot
from app.services.booking_ledger import BookingLedger
from app.services.calendar_store import AvailabilityScope, CalendarStore
from app.services.events import ALL_EVENTS, SLOT_FREED, EngineEvent, EventDispatcher, log_event
from app.services.holds import HoldManager
from app.services.occupancy import OccupancyLedger
from app.services.offers import OfferStateMachine
from app.services.sweeper import SweepResult, run_sweep
from app.services.waitlist import WaitlistAllocator
from app.utils.clock import utcnow

logger = logging.getLogger(__name__)


class SchedulingEngine:
    def __init__(self, session_factory=SessionLocal, settings: Settings = default_settings, clock=utcnow, events: Optional[EventDispatcher] = None):
        self.session_factory = session_factory
        self.settings = settings
        self.clock = clock
        self.events = events or EventDispatcher()
        self.cascade = settings.WAITLIST_CASCADE
        # slot.freed events whose reallocation failed; retried by the sweeper
        self.failed_reallocations: Deque[EngineEvent] = deque()

        self.calendar = CalendarStore(settings.DEFAULT_TIMEZONE, settings.DEFAULT_SLOT_INCREMENT_MINUTES)
        self.occupancy = OccupancyLedger(settings.OCCUPANCY_BUCKET_MINUTES)
        self.resolver = AvailabilityResolver(
            self.calendar,
            clock,
            max_days=settings.MAX_RESOLVE_DAYS,
            next_count=settings.NEXT_AVAILABLE_COUNT,
            next_horizon_days=settings.NEXT_AVAILABLE_HORIZON_DAYS,
            bucket_mins=settings.OCCUPANCY_BUCKET_MINUTES,
        )
        self.ledger = BookingLedger(self.calendar, self.resolver, self.occupancy, self.events, clock)
        self.holds = HoldManager(
            self.calendar, self.resolver, self.occupancy, self.ledger, self.events, clock,
            ttl_minutes=settings.HOLD_TTL_MINUTES,
        )
        self.offers = OfferStateMachine(self.holds, self.events, clock, settings.OFFER_WINDOW_HOURS)
        self.waitlist = WaitlistAllocator(self.calendar, self.resolver, self.offers, clock)
        self.holds.expiry_delegates[SlotHoldPurpose.waitlist_offer] = self.offers.expire_hold
        self.ledger.expire_stale_holds = self.holds.expire_stale

    # -- unit of work -------------------------------------------------------

    @contextmanager
    def session(self) -> Iterator[Session]:
        db = self.session_factory()
        try:
            yield db
        finally:
            db.close()

    @contextmanager
    def transaction(self, db: Session) -> Iterator[Session]:
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            self.events.discard(db)
            raise
        self._after_commit(db)

    def _after_commit(self, db: Session) -> None:
        published = self.events.pending(db)
        self.events.flush(db)
        for event in published:
            if event.name == SLOT_FREED:
                self._reallocate(event)

    def _reallocate(self, event: EngineEvent) -> bool:
        payload = event.payload
        if payload.get("cascade") and not self.cascade:
            return True
        try:
            with self.session() as db:
                with self.transaction(db):
                    self.waitlist.on_slot_freed(
                        db,
                        payload["resource_id"],
                        payload["start"],
                        payload["end"],
                        exclude=payload.get("exclude", ()),
                    )
        except Exception:
            # The range stays free for direct booking until the next sweep retries it
            logger.exception("Waitlist reallocation failed for resource %s", payload.get("resource_id"))
            self.failed_reallocations.append(event)
            return False
        return True

    def retry_reallocations(self) -> Tuple[int, int]:
        """
        Re-run every reallocation that failed before this call, once.

        Ranges that have started meanwhile are dropped. Returns (retried, failed).
        """
        retried = failed = 0
        for _ in range(len(self.failed_reallocations)):
            try:
                event = self.failed_reallocations.popleft()
            except IndexError:
                break
            if event.payload["start"] <= self.clock():
                continue
            if self._reallocate(event):
                retried += 1
            else:
                failed += 1
        return retried, failed

    # -- availability -------------------------------------------------------

    def resolve(
        self,
        db: Session,
        start_date: date,
        end_date: Optional[date] = None,
        business_id: Optional[UUID] = None,
        business_type: Optional[BusinessType] = None,
        resource_id: Optional[UUID] = None,
        bookable_type_id: Optional[UUID] = None,
        party_size: Optional[int] = None,
        duration_mins: Optional[int] = None,
    ) -> List[Slot]:
        scope = AvailabilityScope(business_id, business_type, resource_id, bookable_type_id)
        try:
            return self.resolver.resolve(db, scope, start_date, end_date, party_size, duration_mins)
        finally:
            db.rollback()

    def next_available(
        self,
        db: Session,
        business_id: Optional[UUID] = None,
        business_type: Optional[BusinessType] = None,
        bookable_type_id: Optional[UUID] = None,
        n: Optional[int] = None,
    ) -> List[NextAvailable]:
        scope = AvailabilityScope(business_id, business_type, None, bookable_type_id)
        try:
            return self.resolver.next_available(db, scope, n)
        finally:
            db.rollback()

    # -- holds --------------------------------------------------------------

    def acquire_hold(
        self,
        db: Session,
        resource_id: UUID,
        start: datetime,
        end: datetime,
        holder: str,
        bookable_type_id: Optional[UUID] = None,
        party_size: Optional[int] = None,
    ) -> SlotHold:
        with self.transaction(db):
            return self.holds.acquire(
                db, resource_id, start, end, holder,
                bookable_type_id=bookable_type_id,
                party_size=party_size,
            )

    def renew_hold(self, db: Session, hold_id: UUID, holder: Optional[str] = None) -> SlotHold:
        with self.transaction(db):
            return self.holds.renew(db, hold_id, holder)

    def release_hold(self, db: Session, hold_id: UUID, holder: Optional[str] = None) -> SlotHold:
        with self.transaction(db):
            return self.holds.release(db, hold_id, holder)

    def convert_hold(self, db: Session, hold_id: UUID, holder: Optional[str] = None, **guest) -> Booking:
        with self.transaction(db):
            return self.holds.convert(db, hold_id, holder, **guest)

    # -- bookings -----------------------------------------------------------

    def create_booking(self, db: Session, resource_ids: Sequence[UUID], start: datetime, end: datetime, **fields) -> Booking:
        with self.transaction(db):
            return self.ledger.create(db, resource_ids, start, end, **fields)

    def transition_booking(self, db: Session, booking_id: UUID, status: BookingStatus, actor: Optional[str] = None) -> Booking:
        with self.transaction(db):
            return self.ledger.transition(db, booking_id, status, actor)

    # -- waitlist -----------------------------------------------------------

    def join_waitlist(self, db: Session, business_id: UUID, **preferences) -> WaitlistEntry:
        with self.transaction(db):
            return self.waitlist.join(db, business_id, **preferences)

    def get_entry(self, db: Session, entry_id: UUID) -> WaitlistEntry:
        with self.transaction(db):
            return self.waitlist.get_entry(db, entry_id)

    def list_entries(
        self,
        db: Session,
        business_id: Optional[UUID] = None,
        status: Optional[WaitlistStatus] = None,
    ) -> List[WaitlistEntry]:
        with self.transaction(db):
            return self.waitlist.list_entries(db, business_id, status)

    def on_slot_freed(self, db: Session, resource_id: UUID, start: datetime, end: datetime, exclude: Sequence[UUID] = ()) -> Optional[WaitlistEntry]:
        with self.transaction(db):
            return self.waitlist.on_slot_freed(db, resource_id, start, end, exclude)

    def offer(self, db: Session, entry_id: UUID, resource_id: UUID, start: datetime, end: datetime) -> WaitlistEntry:
        """Offer a specific range to a specific entry, bypassing ranking."""
        with self.transaction(db):
            entry = self.offers.get_entry(db, entry_id)
            resource = self.calendar.get_resource(db, resource_id)
            if resource is None:
                raise NotFoundError("Resource not found", resource_id=resource_id)
            return self.offers.offer(db, entry, resource, start, end)

    def claim_offer(self, db: Session, entry_id: UUID, token: str) -> Tuple[WaitlistEntry, Booking]:
        try:
            with self.transaction(db):
                return self.offers.claim(db, entry_id, token)
        except OfferExpiredError:
            with self.transaction(db):
                self.offers.expire(db, entry_id)
            raise

    def decline_offer(self, db: Session, entry_id: UUID, token: Optional[str] = None) -> WaitlistEntry:
        with self.transaction(db):
            return self.offers.decline(db, entry_id, token)

    # -- expiry -------------------------------------------------------------

    def sweep(self) -> SweepResult:
        return run_sweep(self)


def build_engine(session_factory=SessionLocal, settings: Settings = default_settings, clock=utcnow) -> SchedulingEngine:
    engine = SchedulingEngine(session_factory=session_factory, settings=settings, clock=clock)
    engine.events.subscribe(ALL_EVENTS, log_event)
    return engine
