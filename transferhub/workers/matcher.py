"""
Background Matching Worker
==========================

Optional (``AUTO_ASSIGN_ENABLED``).  Runs every
``MATCHING_INTERVAL_SECONDS`` (default 30 s).

Concurrency safety
------------------
* **Redis distributed lock** ensures only one instance runs a sweep at a
  time across multiple API processes.
* Every assignment still goes through ``AssignmentCoordinator``, whose
  conditional write rejects a trip that an admin bound in the meantime.

Algorithm per cycle
-------------------
1. Fetch pending, unassigned trips scheduled within
   ``MATCHING_HORIZON_HOURS``, earliest first.
2. Fetch verified drivers who marked themselves available.
3. For each trip, pick the driver with the fewest active trips
   (ties broken by driver id) and assign as the system actor.
4. A ``Conflict`` on one trip is skipped; the rest of the sweep continues.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from transferhub.config import settings
from transferhub.domain.clock import Clock, SystemClock
from transferhub.domain.enums import TripStatus, VerificationStatus
from transferhub.domain.errors import EngineError
from transferhub.domain.roles import SYSTEM_ACTOR
from transferhub.engine.assignment import AssignmentCoordinator
from transferhub.infrastructure.change_feed import ChangeFeed, drain_changes
from transferhub.infrastructure.database import async_session_factory
from transferhub.infrastructure.locks import DistributedLock
from transferhub.infrastructure.redis_client import get_redis
from transferhub.infrastructure.repositories import DriverRepository, TripRepository

logger = logging.getLogger(__name__)

_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None


# ── Public API ────────────────────────────────────────────────────────


async def start_matching_loop() -> None:
    global _task, _stop_event
    _stop_event = asyncio.Event()
    _task = asyncio.create_task(_loop())
    logger.info(
        "Matching worker started (interval=%ds)", settings.matching_interval_seconds
    )


async def stop_matching_loop() -> None:
    if _stop_event:
        _stop_event.set()
    if _task:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
    logger.info("Matching worker stopped")


# ── Internals ─────────────────────────────────────────────────────────


async def _loop() -> None:
    """Periodic loop: run a matching cycle then sleep."""
    assert _stop_event is not None
    while not _stop_event.is_set():
        try:
            await run_matching_cycle()
        except Exception:
            logger.exception("Unhandled error in matching cycle")
        try:
            await asyncio.wait_for(
                _stop_event.wait(), timeout=settings.matching_interval_seconds
            )
            break
        except asyncio.TimeoutError:
            pass


async def run_matching_cycle(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    clock: Optional[Clock] = None,
) -> int:
    """Execute one matching cycle.  Returns the number of trips assigned."""
    redis = await get_redis()
    lock = DistributedLock(redis, "matching_engine", ttl_seconds=60)

    if not await lock.acquire():
        logger.debug("Lock held by another worker - skipping cycle")
        return 0

    try:
        async with (session_factory or async_session_factory)() as session:
            matched = await assign_pending_trips(session, clock or SystemClock())
            await session.commit()
            await ChangeFeed(redis).publish(drain_changes(session))
    finally:
        await lock.release()

    if matched:
        logger.info("Matching cycle: %d trips assigned", matched)
    return matched


async def assign_pending_trips(session: AsyncSession, clock: Clock) -> int:
    """One sweep of pending trips against available drivers (no locking)."""
    trip_repo = TripRepository(session)
    driver_repo = DriverRepository(session)
    coordinator = AssignmentCoordinator(session, clock)

    horizon = clock.now() + timedelta(hours=settings.matching_horizon_hours)
    pending = await trip_repo.list(
        status=TripStatus.PENDING, unassigned=True, scheduled_before=horizon
    )
    if not pending:
        return 0

    drivers = await driver_repo.list(status=VerificationStatus.VERIFIED, available=True)
    if not drivers:
        logger.debug("%d pending trips but no available drivers", len(pending))
        return 0
    load = await trip_repo.count_active_by_driver(d.id for d in drivers)

    matched = 0
    for trip in pending:
        driver_id = min(load, key=lambda d: (load[d], d))
        try:
            await coordinator.assign(trip.id, driver_id, SYSTEM_ACTOR)
        except EngineError as exc:
            logger.info("Skipping trip %s: %s", trip.id, exc)
            continue
        load[driver_id] += 1
        matched += 1
    return matched
