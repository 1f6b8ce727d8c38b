"""
Pytest configuration and shared fixtures.

Every test gets its own SQLite database file so that separate sessions (the
sweeper, waitlist reallocation, concurrent workers) use separate connections,
as they would against PostgreSQL.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("CREATE_DATABASE_ON_STARTUP", "false")

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, Optional
from uuid import UUID

import pytest
from sqlalchemy.orm import sessionmaker

from app.core.config import Settings
from app.db.base import Base
from app.db.session import make_engine
from app.models.business import Business, BookableType, BusinessType
from app.models.calendar import AvailabilityWindow
from app.models.resource import Resource
from app.services.engine import SchedulingEngine
from app.services.events import ALL_EVENTS

# Monday. The clock starts on the Saturday before so the whole Monday, plus a
# full offer window, lies in the future.
MONDAY = date(2030, 1, 7)
START = datetime(2030, 1, 5, 8, 0, tzinfo=timezone.utc)


def at(hour: int, minute: int = 0, day: date = MONDAY) -> datetime:
    """UTC datetime on the test Monday (or another day)."""
    return datetime.combine(day, time(hour, minute), tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@dataclass
class Venue:
    business_id: UUID
    bookable_type_id: UUID
    resources: Dict[str, UUID] = field(default_factory=dict)

    @property
    def room(self) -> UUID:
        return self.resources["Room 1"]


def seed_venue(
    db,
    slug: str = "hive",
    tz: str = "UTC",
    opens: time = time(9),
    closes: time = time(17),
    resources=("Room 1",),
    capacity: int = 1,
    buffer_after_mins: int = 0,
    increment_mins: Optional[int] = 60,
    business_type: BusinessType = BusinessType.coworking,
) -> Venue:
    """A business open every day between `opens` and `closes`, committed."""
    business = Business(name=slug.title(), slug=slug, type=business_type, timezone=tz)
    db.add(business)
    db.flush()
    bookable_type = BookableType(
        business_id=business.id,
        name="Meeting room",
        slug=f"{slug}-meeting-room",
        slot_increment_mins=increment_mins,
        buffer_after_mins=buffer_after_mins,
    )
    db.add(bookable_type)
    db.flush()

    venue = Venue(business_id=business.id, bookable_type_id=bookable_type.id)
    for name in resources:
        resource = Resource(
            business_id=business.id,
            bookable_type_id=bookable_type.id,
            name=name,
            type="room",
            capacity=capacity,
        )
        db.add(resource)
        db.flush()
        venue.resources[name] = resource.id

    for day in range(7):
        db.add(AvailabilityWindow(business_id=business.id, day_of_week=day, start_time=opens, end_time=closes))
    db.commit()
    return venue


@pytest.fixture
def clock():
    return FakeClock(START)


@pytest.fixture
def db_engine(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'scheduling.db'}", connect_args={"timeout": 30})
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def settings():
    return Settings(DATABASE_URL="sqlite://", CREATE_DATABASE_ON_STARTUP=False)


@pytest.fixture
def engine(session_factory, settings, clock):
    return SchedulingEngine(session_factory=session_factory, settings=settings, clock=clock)


@pytest.fixture
def events(engine):
    """Every event published after commit, in order."""
    received = []
    engine.events.subscribe(ALL_EVENTS, received.append)
    return received


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def venue(db):
    return seed_venue(db)


@pytest.fixture
def sweep(engine, db):
    """Run a sweep after ending the test session's read transaction."""
    def _sweep():
        db.rollback()
        return engine.sweep()
    return _sweep


def event_names(events):
    return [e.name for e in events]


def last_event(events, name):
    matching = [e for e in events if e.name == name]
    assert matching, f"no {name} event published"
    return matching[-1]
