"""
Event dispatch for external collaborators (notification dispatcher, audit
consumers).

Events are queued on the SQLAlchemy session while a unit of work runs and are
handed to subscribers only after the transaction commits. A rollback discards
them. Subscriber failures are logged and never reach the caller.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List

from sqlalchemy.orm import Session

from app.utils.clock import utcnow

logger = logging.getLogger(__name__)

_PENDING_KEY = "pending_engine_events"

HOLD_ACQUIRED = "hold.acquired"
HOLD_RENEWED = "hold.renewed"
HOLD_RELEASED = "hold.released"
HOLD_EXPIRED = "hold.expired"
HOLD_CONVERTED = "hold.converted"
BOOKING_CREATED = "booking.created"
BOOKING_STATUS_CHANGED = "booking.status_changed"
SLOT_FREED = "slot.freed"
OFFER_CREATED = "offer.created"
OFFER_CLAIMED = "offer.claimed"
OFFER_EXPIRED = "offer.expired"
OFFER_DECLINED = "offer.declined"

ALL_EVENTS = "*"


@dataclass(frozen=True)
class EngineEvent:
    name: str
    payload: Dict[str, Any]
    occurred_at: datetime = field(default_factory=utcnow)


Handler = Callable[[EngineEvent], None]


class EventDispatcher:
    """Fan-out of engine events. Many handlers per event name."""

    def __init__(self):
        self._handlers: Dict[str, List[Handler]] = defaultdict(list)

    def subscribe(self, name: str, handler: Handler) -> None:
        """Register a handler for one event name, or ALL_EVENTS for every event."""
        self._handlers[name].append(handler)

    def emit(self, db: Session, name: str, **payload) -> None:
        db.info.setdefault(_PENDING_KEY, []).append(EngineEvent(name=name, payload=payload))

    def pending(self, db: Session) -> List[EngineEvent]:
        return list(db.info.get(_PENDING_KEY, []))

    def discard(self, db: Session) -> None:
        dropped = db.info.pop(_PENDING_KEY, [])
        if dropped:
            logger.warning("Rolled back, discarding %d engine event(s).", len(dropped))

    def flush(self, db: Session) -> None:
        """Publish everything queued on this session. Call after commit."""
        events = db.info.pop(_PENDING_KEY, [])
        for event in events:
            self.publish(event)

    def publish(self, event: EngineEvent) -> None:
        for handler in self._handlers.get(event.name, []) + self._handlers.get(ALL_EVENTS, []):
            try:
                handler(event)
            except Exception:
                logger.exception("Event handler failed for %s", event.name)


def log_event(event: EngineEvent) -> None:
    """Default subscriber: write every event to the application log."""
    logger.info("event %s %s", event.name, event.payload)
