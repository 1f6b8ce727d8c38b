"""
Calendar Store: read model over businesses, bookable types, resources,
recurring availability windows, date overrides and blackout periods.
"""
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, List, Optional
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy import or_
from sqlalchemy.orm import Session, joinedload

from app.core.errors import ValidationError
from app.models.business import Business, BookableType, BusinessType
from app.models.calendar import AvailabilityWindow, AvailabilityOverride, BlackoutPeriod
from app.models.resource import Resource
from app.utils.timeslots import business_zone


@dataclass(frozen=True)
class AvailabilityScope:
    """Which resources a query covers. Unset fields do not filter."""
    business_id: Optional[UUID] = None
    business_type: Optional[BusinessType] = None
    resource_id: Optional[UUID] = None
    bookable_type_id: Optional[UUID] = None


class CalendarStore:
    def __init__(self, default_timezone: str, default_increment_mins: int):
        self.default_timezone = default_timezone
        self.default_increment_mins = default_increment_mins

    # -- lookups ------------------------------------------------------------

    def get_business(self, db: Session, business_id: UUID) -> Optional[Business]:
        return db.query(Business).filter(Business.id == business_id).first()

    def get_resource(self, db: Session, resource_id: UUID, active_only: bool = True) -> Optional[Resource]:
        query = (
            db.query(Resource)
            .options(joinedload(Resource.business), joinedload(Resource.bookable_type))
            .filter(Resource.id == resource_id)
        )
        if active_only:
            query = query.filter(Resource.is_active == True)  # noqa: E712
        return query.first()

    def get_bookable_type(self, db: Session, bookable_type_id: Optional[UUID]) -> Optional[BookableType]:
        if bookable_type_id is None:
            return None
        return db.query(BookableType).filter(BookableType.id == bookable_type_id).first()

    def zone_for(self, business: Business) -> ZoneInfo:
        return business_zone(business.timezone, self.default_timezone)

    def effective_type(self, resource: Resource, requested: Optional[BookableType] = None) -> Optional[BookableType]:
        """The bookable type whose slot rules apply to a resource."""
        return requested or resource.bookable_type

    def increment_for(self, bookable_type: Optional[BookableType]) -> int:
        if bookable_type and bookable_type.slot_increment_mins:
            return bookable_type.slot_increment_mins
        return self.default_increment_mins

    def duration_for(self, bookable_type: Optional[BookableType]) -> int:
        if bookable_type and bookable_type.slot_duration_mins:
            return bookable_type.slot_duration_mins
        return self.increment_for(bookable_type)

    @staticmethod
    def buffer_for(bookable_type: Optional[BookableType]) -> int:
        return (bookable_type.buffer_after_mins or 0) if bookable_type else 0

    # -- scoped reads -------------------------------------------------------

    def find_resources(self, db: Session, scope: AvailabilityScope) -> List[Resource]:
        """
        Active resources matching the scope.

        Raises ValidationError when the scope names a business, resource or
        bookable type that does not exist.
        """
        query = (
            db.query(Resource)
            .join(Business, Business.id == Resource.business_id)
            .options(joinedload(Resource.business), joinedload(Resource.bookable_type))
            .filter(Resource.is_active == True, Business.is_active == True)  # noqa: E712
        )

        if scope.business_id is not None:
            if not self.get_business(db, scope.business_id):
                raise ValidationError("Unknown business", business_id=scope.business_id)
            query = query.filter(Resource.business_id == scope.business_id)

        if scope.business_type is not None:
            query = query.filter(Business.type == scope.business_type)

        if scope.resource_id is not None:
            if not db.query(Resource.id).filter(Resource.id == scope.resource_id).first():
                raise ValidationError("Unknown resource", resource_id=scope.resource_id)
            query = query.filter(Resource.id == scope.resource_id)

        if scope.bookable_type_id is not None:
            bookable_type = self.get_bookable_type(db, scope.bookable_type_id)
            if not bookable_type:
                raise ValidationError("Unknown bookable type", bookable_type_id=scope.bookable_type_id)
            # Untyped resources serve every bookable type of their business
            query = query.filter(
                or_(
                    Resource.bookable_type_id == bookable_type.id,
                    (Resource.bookable_type_id.is_(None)) & (Resource.business_id == bookable_type.business_id),
                )
            )

        return query.order_by(Resource.name, Resource.id).all()

    def windows_for(self, db: Session, business_ids: Iterable[UUID]) -> List[AvailabilityWindow]:
        ids = list(set(business_ids))
        if not ids:
            return []
        return (
            db.query(AvailabilityWindow)
            .filter(
                AvailabilityWindow.business_id.in_(ids),
                AvailabilityWindow.is_active == True,  # noqa: E712
            )
            .all()
        )

    def overrides_for(self, db: Session, business_ids: Iterable[UUID], start: date, end: date) -> List[AvailabilityOverride]:
        """Overrides whose date falls in [start, end)."""
        ids = list(set(business_ids))
        if not ids:
            return []
        return (
            db.query(AvailabilityOverride)
            .filter(
                AvailabilityOverride.business_id.in_(ids),
                AvailabilityOverride.override_date >= start,
                AvailabilityOverride.override_date < end,
            )
            .all()
        )

    def blackouts_for(
        self,
        db: Session,
        business_ids: Iterable[UUID],
        resource_ids: Iterable[UUID],
        start: datetime,
        end: datetime,
    ) -> List[BlackoutPeriod]:
        """Blackouts for any of the businesses or resources overlapping [start, end)."""
        business_ids = list(set(business_ids))
        resource_ids = list(set(resource_ids))
        return (
            db.query(BlackoutPeriod)
            .filter(
                or_(
                    BlackoutPeriod.business_id.in_(business_ids),
                    BlackoutPeriod.resource_id.in_(resource_ids),
                ),
                BlackoutPeriod.start_datetime < end,
                BlackoutPeriod.end_datetime > start,
            )
            .all()
        )
