"""
Expiry sweeper for overdue checkout holds and overdue waitlist offers. It also
retries waitlist reallocations that failed after an earlier commit.

Each record is expired in its own transaction so one failure never blocks the
rest; a failed record stays overdue and is picked up again on the next tick.
Re-running a sweep over already-expired records is a no-op.
"""
import asyncio
import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    holds_expired: int = 0
    offers_expired: int = 0
    reallocated: int = 0
    failures: int = 0

    @property
    def total(self) -> int:
        return self.holds_expired + self.offers_expired


def _expire_each(engine, ids, expire, label: str, result: SweepResult) -> int:
    expired = 0
    for record_id in ids:
        try:
            with engine.session() as db:
                with engine.transaction(db):
                    if expire(db, record_id):
                        expired += 1
        except Exception:
            result.failures += 1
            logger.exception("Failed to expire %s %s, will retry on the next sweep.", label, record_id)
    return expired


def run_sweep(engine) -> SweepResult:
    """One pass over everything that is due. Safe to call concurrently with claims and conversions."""
    result = SweepResult()

    with engine.session() as db:
        hold_ids = engine.holds.overdue_ids(db)
        entry_ids = engine.offers.overdue_entry_ids(db)
        db.rollback()

    result.holds_expired = _expire_each(engine, hold_ids, engine.holds.expire, "hold", result)
    result.offers_expired = _expire_each(engine, entry_ids, engine.offers.expire, "waitlist offer", result)

    retried, failed = engine.retry_reallocations()
    result.reallocated = retried
    result.failures += failed

    if result.total or result.reallocated or result.failures:
        logger.info(
            "Sweep expired %d hold(s) and %d offer(s), retried %d reallocation(s), %d failure(s).",
            result.holds_expired, result.offers_expired, result.reallocated, result.failures,
        )
    return result


async def expiry_sweep_loop(engine, interval_seconds: int) -> None:
    """Background task: run the expiry sweep every `interval_seconds`."""
    while True:
        try:
            await asyncio.to_thread(run_sweep, engine)
        except Exception:
            logger.exception("Error during expiry sweep.")
        await asyncio.sleep(interval_seconds)
