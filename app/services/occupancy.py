"""
Storage-level occupancy locks.

Every hold and every occupying booking owns one OccupancyClaim row per
normalised time bucket it touches. UNIQUE(resource_id, bucket_start) turns
"is this range free? then take it" into a single insert: when two callers race
for overlapping ranges on the same resource, the database rejects the second
insert and the caller sees a ConflictError.
"""
import logging
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import ConflictError, ValidationError
from app.models.occupancy import OccupancyClaim
from app.utils.timeslots import bucket_starts, on_grid

logger = logging.getLogger(__name__)


class OccupancyLedger:
    def __init__(self, bucket_mins: int):
        self.bucket_mins = bucket_mins

    def buckets(self, start: datetime, end: datetime) -> List[datetime]:
        return list(bucket_starts(start, end, self.bucket_mins))

    def require_aligned(self, start: datetime, end: datetime) -> None:
        """Claimed ranges must start and end on bucket boundaries."""
        if not (on_grid(start, self.bucket_mins) and on_grid(end, self.bucket_mins)):
            raise ValidationError(
                f"Times must fall on a {self.bucket_mins}-minute boundary",
                start=start.isoformat(),
                end=end.isoformat(),
            )

    def require_free(self, db: Session, resource_id: UUID, start: datetime, end: datetime) -> None:
        """Refuse early when another hold or booking still owns part of the range."""
        taken = self.claims_in_range(db, resource_id, start, end)
        if taken:
            raise ConflictError(
                "Requested time range is no longer available",
                resource_id=resource_id,
                reason="held" if any(c.hold_id for c in taken) else "booked",
            )

    def claim(
        self,
        db: Session,
        resource_id: UUID,
        start: datetime,
        end: datetime,
        hold_id: Optional[UUID] = None,
        booking_id: Optional[UUID] = None,
    ) -> int:
        """
        Insert the claims for [start, end) on one resource.

        Runs inside a SAVEPOINT so a losing insert leaves the surrounding
        transaction usable. Returns the number of buckets claimed.
        """
        rows = [
            OccupancyClaim(
                resource_id=resource_id,
                bucket_start=bucket,
                hold_id=hold_id,
                booking_id=booking_id,
            )
            for bucket in self.buckets(start, end)
        ]
        try:
            with db.begin_nested():
                db.add_all(rows)
                db.flush()
        except IntegrityError as exc:
            logger.info(
                "Occupancy claim rejected for resource %s [%s, %s)", resource_id, start, end
            )
            raise ConflictError(
                "Requested time range is no longer available",
                resource_id=resource_id,
                start=start.isoformat(),
                end=end.isoformat(),
            ) from exc
        return len(rows)

    def release_hold(self, db: Session, hold_id: UUID) -> int:
        return (
            db.query(OccupancyClaim)
            .filter(OccupancyClaim.hold_id == hold_id)
            .delete(synchronize_session=False)
        )

    def release_booking(self, db: Session, booking_id: UUID) -> int:
        return (
            db.query(OccupancyClaim)
            .filter(OccupancyClaim.booking_id == booking_id)
            .delete(synchronize_session=False)
        )

    def transfer_hold_to_booking(self, db: Session, hold_id: UUID, booking_id: UUID) -> int:
        """Hand a hold's claims to the booking it was converted into, in place."""
        return (
            db.query(OccupancyClaim)
            .filter(OccupancyClaim.hold_id == hold_id)
            .update(
                {"hold_id": None, "booking_id": booking_id},
                synchronize_session=False,
            )
        )

    def claims_in_range(self, db: Session, resource_id: UUID, start: datetime, end: datetime) -> List[OccupancyClaim]:
        buckets = self.buckets(start, end)
        if not buckets:
            return []
        return (
            db.query(OccupancyClaim)
            .filter(
                OccupancyClaim.resource_id == resource_id,
                OccupancyClaim.bucket_start.in_(buckets),
            )
            .all()
        )
