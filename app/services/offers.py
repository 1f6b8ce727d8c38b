"""
Offer/Claim State Machine for one waitlist entry.

    waiting --offer--> offered --claim--> claimed
                          |
                          +--decline / deadline--> waiting (demoted)

An outstanding offer is backed by a `waitlist_offer` hold whose expires_at is
the claim deadline, so nobody else can book the slot while the customer
decides. Every move is a conditional UPDATE on the entry's current status; the
first caller to flip the row wins.
"""
import logging
import secrets
from datetime import datetime, timedelta
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.errors import ConflictError, InvalidTokenError, NotFoundError, OfferExpiredError
from app.models.booking import Booking
from app.models.resource import Resource
from app.models.slot_hold import SlotHold, SlotHoldPurpose, SlotHoldStatus
from app.models.waitlist import OfferStatus, WaitlistEntry, WaitlistOffer, WaitlistStatus
from app.services import audit
from app.services.events import (
    OFFER_CLAIMED,
    OFFER_CREATED,
    OFFER_DECLINED,
    OFFER_EXPIRED,
    SLOT_FREED,
    EventDispatcher,
)
from app.services.holds import HoldManager

logger = logging.getLogger(__name__)

_AUDIT_FIELDS = ("status", "position", "claim_expires_at", "current_offer_id")

TOKEN_BYTES = 32


def holder_ref_for(entry: WaitlistEntry) -> str:
    return f"waitlist:{entry.id}"


class OfferStateMachine:
    def __init__(self, holds: HoldManager, events: EventDispatcher, clock, offer_window_hours: int):
        self.holds = holds
        self.events = events
        self.clock = clock
        self.window = timedelta(hours=offer_window_hours)

    # -- helpers ------------------------------------------------------------

    def get_entry(self, db: Session, entry_id: UUID) -> WaitlistEntry:
        entry = db.query(WaitlistEntry).filter(WaitlistEntry.id == entry_id).first()
        if not entry:
            raise NotFoundError("Waitlist entry not found", entry_id=entry_id)
        return entry

    def current_offer(self, db: Session, entry: WaitlistEntry) -> Optional[WaitlistOffer]:
        if entry.current_offer_id is None:
            return None
        return db.query(WaitlistOffer).filter(WaitlistOffer.id == entry.current_offer_id).first()

    def next_position(self, db: Session, business_id: UUID) -> int:
        """Back of the business's queue."""
        highest = (
            db.query(func.max(WaitlistEntry.position))
            .filter(WaitlistEntry.business_id == business_id)
            .scalar()
        )
        return (highest or 0) + 1

    def overdue_entry_ids(self, db: Session) -> List[UUID]:
        now = self.clock()
        rows = (
            db.query(WaitlistEntry.id)
            .filter(
                WaitlistEntry.status == WaitlistStatus.offered,
                WaitlistEntry.claim_expires_at <= now,
            )
            .order_by(WaitlistEntry.claim_expires_at)
            .all()
        )
        return [r.id for r in rows]

    # -- waiting -> offered -------------------------------------------------

    def offer(self, db: Session, entry: WaitlistEntry, resource: Resource, start: datetime, end: datetime) -> WaitlistEntry:
        """
        Offer [start, end) on `resource` to a waiting entry.

        Raises ConflictError if the range is no longer free or the entry is
        not waiting any more. Callers run this inside a savepoint so a failed
        offer leaves nothing behind.
        """
        now = self.clock()
        deadline = now + self.window
        token = secrets.token_urlsafe(TOKEN_BYTES)
        before = audit.snapshot(entry, _AUDIT_FIELDS)

        hold = self.holds.acquire(
            db, resource.id, start, end,
            holder=holder_ref_for(entry),
            bookable_type_id=entry.bookable_type_id,
            purpose=SlotHoldPurpose.waitlist_offer,
            expires_at=deadline,
            party_size=entry.party_size,
        )
        offer = WaitlistOffer(
            entry_id=entry.id,
            hold_id=hold.id,
            resource_id=resource.id,
            start_datetime=start,
            end_datetime=end,
            claim_token=token,
            expires_at=deadline,
            status=OfferStatus.outstanding,
            created_at=now,
        )
        db.add(offer)
        db.flush()

        updated = (
            db.query(WaitlistEntry)
            .filter(WaitlistEntry.id == entry.id, WaitlistEntry.status == WaitlistStatus.waiting)
            .update(
                {
                    "status": WaitlistStatus.offered,
                    "claim_token": token,
                    "claim_expires_at": deadline,
                    "current_offer_id": offer.id,
                    "notified_at": now,
                },
                synchronize_session=False,
            )
        )
        if updated != 1:
            raise ConflictError("Waitlist entry is no longer waiting", entry_id=entry.id)
        db.refresh(entry)

        audit.record(
            db, "waitlist_entry", entry.id, "slot_offered", now,
            before=before, after=audit.snapshot(entry, _AUDIT_FIELDS),
        )
        self.events.emit(
            db, OFFER_CREATED,
            entry_id=entry.id,
            offer_id=offer.id,
            token=token,
            deadline=deadline,
            resource_id=resource.id,
            start=start,
            end=end,
            guest_email=entry.guest_email,
            guest_phone=entry.guest_phone,
        )
        logger.info("Offered resource %s [%s, %s) to waitlist entry %s", resource.id, start, end, entry.id)
        return entry

    # -- offered -> claimed -------------------------------------------------

    def claim(self, db: Session, entry_id: UUID, token: str) -> Tuple[WaitlistEntry, Booking]:
        """
        Accept an outstanding offer. Checks the token before the deadline so a
        wrong token never reveals whether an offer is still live.

        Raises OfferExpiredError when the deadline has passed; the caller is
        responsible for running `expire` for the entry afterwards.
        """
        now = self.clock()
        entry = self.get_entry(db, entry_id)
        if entry.status != WaitlistStatus.offered or not entry.claim_token:
            self._reject_stale_token(db, entry, token)
        if not token or not secrets.compare_digest(entry.claim_token, token):
            raise InvalidTokenError("Claim token does not match", entry_id=entry_id)
        if entry.claim_expires_at <= now:
            raise OfferExpiredError("Offer has expired", entry_id=entry_id)

        before = audit.snapshot(entry, _AUDIT_FIELDS)
        updated = (
            db.query(WaitlistEntry)
            .filter(
                WaitlistEntry.id == entry_id,
                WaitlistEntry.status == WaitlistStatus.offered,
                WaitlistEntry.claim_token == token,
                WaitlistEntry.claim_expires_at > now,
            )
            .update(
                {"status": WaitlistStatus.claimed, "claim_token": None, "claimed_at": now},
                synchronize_session=False,
            )
        )
        if updated != 1:
            raise ConflictError("Offer was resolved concurrently", entry_id=entry_id)
        db.refresh(entry)

        offer = self.current_offer(db, entry)
        if offer is None or offer.hold_id is None:
            raise ConflictError("Offer has no hold to convert", entry_id=entry_id)
        booking = self.holds.convert(
            db, offer.hold_id,
            guest_name=entry.guest_name,
            guest_email=entry.guest_email,
            guest_phone=entry.guest_phone,
            party_size=entry.party_size,
        )
        offer.status = OfferStatus.claimed
        offer.booking_id = booking.id
        offer.resolved_at = now
        db.flush()

        audit.record(
            db, "waitlist_entry", entry.id, "claimed", now,
            before=before, after=audit.snapshot(entry, _AUDIT_FIELDS), actor=entry.user_ref,
        )
        self.events.emit(db, OFFER_CLAIMED, entry_id=entry.id, offer_id=offer.id, booking_id=booking.id)
        logger.info("Waitlist entry %s claimed its offer, booking %s", entry.id, booking.id)
        return entry, booking

    def _reject_stale_token(self, db: Session, entry: WaitlistEntry, token: str) -> None:
        """Explain why a token for an entry that is not `offered` cannot be used."""
        past = None
        if token:
            past = (
                db.query(WaitlistOffer)
                .filter(WaitlistOffer.entry_id == entry.id, WaitlistOffer.claim_token == token)
                .first()
            )
        if past is None:
            raise InvalidTokenError("Claim token does not match", entry_id=entry.id)
        if past.status == OfferStatus.expired:
            raise OfferExpiredError("Offer has expired", entry_id=entry.id)
        raise ConflictError(f"Offer was already {past.status.value}", entry_id=entry.id)

    # -- offered -> waiting (demoted) ---------------------------------------

    def decline(self, db: Session, entry_id: UUID, token: Optional[str] = None) -> WaitlistEntry:
        """Customer turned the offer down. A token, when given, must match."""
        entry = self.get_entry(db, entry_id)
        if entry.status != WaitlistStatus.offered:
            raise ConflictError(f"Waitlist entry is {entry.status.value}, nothing to decline", entry_id=entry_id)
        if token is not None and not secrets.compare_digest(entry.claim_token or "", token):
            raise InvalidTokenError("Claim token does not match", entry_id=entry_id)

        if not self._back_to_waiting(db, entry, OfferStatus.declined, SlotHoldStatus.released, require_overdue=False):
            raise ConflictError("Offer was resolved concurrently", entry_id=entry_id)
        return entry

    def expire(self, db: Session, entry_id: UUID) -> bool:
        """
        Demote one entry whose claim deadline has passed. Idempotent: False
        when the entry is not offered or not yet due.
        """
        entry = db.query(WaitlistEntry).filter(WaitlistEntry.id == entry_id).first()
        if not entry or entry.status != WaitlistStatus.offered:
            return False
        if entry.claim_expires_at is not None and entry.claim_expires_at > self.clock():
            return False
        return self._back_to_waiting(db, entry, OfferStatus.expired, SlotHoldStatus.expired, require_overdue=True)

    def expire_hold(self, db: Session, hold: SlotHold) -> bool:
        """Expire the offer that owns an overdue `waitlist_offer` hold."""
        offer = db.query(WaitlistOffer).filter(WaitlistOffer.hold_id == hold.id).first()
        if offer is not None and self.expire(db, offer.entry_id):
            return True
        # Orphaned or already resolved offer: drop the hold on its own
        return self.holds.finish(db, hold, SlotHoldStatus.expired, require_overdue=True)

    def _back_to_waiting(
        self,
        db: Session,
        entry: WaitlistEntry,
        outcome: OfferStatus,
        hold_status: SlotHoldStatus,
        require_overdue: bool,
    ) -> bool:
        now = self.clock()
        before = audit.snapshot(entry, _AUDIT_FIELDS)
        new_position = self.next_position(db, entry.business_id)

        query = db.query(WaitlistEntry).filter(
            WaitlistEntry.id == entry.id,
            WaitlistEntry.status == WaitlistStatus.offered,
        )
        if require_overdue:
            query = query.filter(WaitlistEntry.claim_expires_at <= now)
        updated = query.update(
            {
                "status": WaitlistStatus.waiting,
                "position": new_position,
                "claim_token": None,
                "claim_expires_at": None,
                "current_offer_id": None,
            },
            synchronize_session=False,
        )
        if updated != 1:
            return False

        offer = self.current_offer(db, entry)
        db.refresh(entry)
        if offer is not None:
            offer.status = outcome
            offer.resolved_at = now
            hold = db.query(SlotHold).filter(SlotHold.id == offer.hold_id).first() if offer.hold_id else None
            if hold is not None and hold.status == SlotHoldStatus.active:
                self.holds.finish(db, hold, hold_status)
        db.flush()

        action = "declined" if outcome == OfferStatus.declined else "expired"
        audit.record(
            db, "waitlist_entry", entry.id, action, now,
            before=before, after=audit.snapshot(entry, _AUDIT_FIELDS),
            actor=entry.user_ref if outcome == OfferStatus.declined else None,
        )
        self.events.emit(
            db, OFFER_DECLINED if outcome == OfferStatus.declined else OFFER_EXPIRED,
            entry_id=entry.id,
            offer_id=offer.id if offer else None,
            position=entry.position,
            guest_email=entry.guest_email,
        )
        logger.info("Waitlist entry %s %s its offer, demoted to position %s", entry.id, action, entry.position)

        if offer is not None:
            self.events.emit(
                db, SLOT_FREED,
                resource_id=offer.resource_id,
                start=offer.start_datetime,
                end=offer.end_datetime,
                exclude=(entry.id,),
                cascade=True,
            )
        return True
