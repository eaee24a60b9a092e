"""
Background Offer Sweeper
========================

Runs every ``SWEEP_INTERVAL_SECONDS`` (default 5 s).

Each cycle
----------
1. Offers and driver counter-offers past ``offer_expires_at`` are timed
   out: the driver joins the ride's rejections and the ride is offered to
   the next candidate (expiry is treated exactly like a reject).
2. Passenger-side counter proposals past ``negotiation_expires_at`` default
   to a rejected negotiation.

Concurrency safety
------------------
* **Redis distributed lock** ensures only one instance sweeps per cycle
  across multiple API processes.
* The sweep itself uses the same conditional updates as the request path,
  so a driver answering at the last moment and the sweeper can race
  without either corrupting the ride.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import async_sessionmaker

from ridecore.config import settings
from ridecore.infrastructure.database import async_session_factory, utcnow
from ridecore.infrastructure.locks import DistributedLock
from ridecore.infrastructure.redis_client import get_redis
from ridecore.infrastructure.repositories import RideRepository
from ridecore.services.assignment import AssignmentCoordinator

logger = logging.getLogger(__name__)

_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None


# ── Public API ────────────────────────────────────────────────────────


async def start_sweeper_loop() -> None:
    global _task, _stop_event
    _stop_event = asyncio.Event()
    _task = asyncio.create_task(_loop())
    logger.info(
        "Offer sweeper started (interval=%ds)", settings.sweep_interval_seconds
    )


async def stop_sweeper_loop() -> None:
    if _stop_event:
        _stop_event.set()
    if _task:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
    logger.info("Offer sweeper stopped")


# ── Internals ─────────────────────────────────────────────────────────


async def _loop() -> None:
    """Periodic loop: run a sweep cycle then sleep."""
    assert _stop_event is not None
    while not _stop_event.is_set():
        try:
            await run_sweep_cycle()
        except Exception:
            logger.exception("Unhandled error in sweep cycle")
        try:
            await asyncio.wait_for(
                _stop_event.wait(), timeout=settings.sweep_interval_seconds
            )
            break
        except asyncio.TimeoutError:
            pass  # next cycle


async def run_sweep_cycle(
    session_factory: Optional[async_sessionmaker] = None,
    redis: Optional[aioredis.Redis] = None,
) -> int:
    """Execute one sweep.  Returns the number of offers timed out."""
    redis = redis or await get_redis()
    lock = DistributedLock(redis, "offer_sweeper", ttl_seconds=60)

    if not await lock.acquire():
        logger.debug("Lock held by another worker – skipping cycle")
        return 0

    expired = 0
    try:
        async with (session_factory or async_session_factory)() as session:
            now = utcnow()
            expired = await AssignmentCoordinator(session, settings).expire_offers(now)
            lapsed = await RideRepository(session).expire_counter_proposals(now)
            await session.commit()
            if expired or lapsed:
                logger.info(
                    "Sweep cycle: %d offers timed out, %d counter proposals lapsed",
                    expired, lapsed,
                )
    except Exception:
        logger.exception("Error in sweep cycle")
        expired = 0
    finally:
        await lock.release()

    return expired
