"""Automatic matcher: driver selection and the locked cycle."""

from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest

from transferhub.domain.enums import TripStatus, VerificationStatus
from transferhub.engine.assignment import AssignmentCoordinator
from transferhub.engine.trip_machine import TripStateMachine
from transferhub.workers.matcher import assign_pending_trips, run_matching_cycle
from tests.conftest import ADMIN, NOW, make_driver, make_trip


def _redis(lock_free: bool = True) -> AsyncMock:
    client = AsyncMock()
    client.set = AsyncMock(return_value=lock_free)
    client.eval = AsyncMock(return_value=1)
    return client


class TestAssignPendingTrips:
    @pytest.mark.asyncio
    async def test_least_loaded_driver_first_ties_by_id(self, db_session, clock):
        busy = await make_driver(db_session, "partner-1", available=True)
        idle = await make_driver(db_session, "partner-2", available=True)
        existing = await make_trip(db_session, scheduled_at=NOW + timedelta(hours=1))
        await AssignmentCoordinator(db_session, clock).assign(existing.id, busy.id, ADMIN)

        first = await make_trip(db_session, scheduled_at=NOW + timedelta(hours=2))
        second = await make_trip(db_session, scheduled_at=NOW + timedelta(hours=3))

        assert await assign_pending_trips(db_session, clock) == 2
        machine = TripStateMachine(db_session, clock)
        assert (await machine.get(first.id)).driver_id == idle.id
        assert (await machine.get(second.id)).driver_id == min(busy.id, idle.id)

    @pytest.mark.asyncio
    async def test_assigned_trips_stay_pending(self, db_session, clock):
        await make_driver(db_session, available=True)
        trip = await make_trip(db_session)
        await assign_pending_trips(db_session, clock)
        stored = await TripStateMachine(db_session, clock).get(trip.id)
        assert stored.status == TripStatus.PENDING
        assert stored.driver_acknowledged is False

    @pytest.mark.asyncio
    async def test_only_available_verified_drivers(self, db_session, clock):
        await make_driver(db_session, "partner-1", available=False)
        await make_driver(db_session, "partner-2", VerificationStatus.PENDING)
        trip = await make_trip(db_session)

        assert await assign_pending_trips(db_session, clock) == 0
        assert (await TripStateMachine(db_session, clock).get(trip.id)).driver_id is None

    @pytest.mark.asyncio
    async def test_trips_beyond_horizon_wait(self, db_session, clock):
        await make_driver(db_session, available=True)
        far = await make_trip(db_session, scheduled_at=NOW + timedelta(days=30))
        assert await assign_pending_trips(db_session, clock) == 0
        assert (await TripStateMachine(db_session, clock).get(far.id)).driver_id is None

    @pytest.mark.asyncio
    async def test_cancelled_trips_ignored(self, db_session, clock):
        await make_driver(db_session, available=True)
        trip = await make_trip(db_session)
        await TripStateMachine(db_session, clock).cancel(trip.id, ADMIN)
        assert await assign_pending_trips(db_session, clock) == 0


class TestMatchingCycle:
    @pytest.mark.asyncio
    async def test_cycle_commits_and_publishes(self, session_factory, clock):
        async with session_factory() as setup:
            driver = await make_driver(setup, available=True)
            trip = await make_trip(setup)
            await setup.commit()

        redis = _redis()
        with patch("transferhub.workers.matcher.get_redis", AsyncMock(return_value=redis)):
            assert await run_matching_cycle(session_factory, clock) == 1

        async with session_factory() as check:
            assert (await TripStateMachine(check, clock).get(trip.id)).driver_id == driver.id
        channels = [c.args[0] for c in redis.publish.await_args_list]
        assert f"changes:trips:driver_id={driver.id}" in channels
        redis.eval.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_cycle_skipped_when_lock_held(self, session_factory, clock):
        async with session_factory() as setup:
            await make_driver(setup, available=True)
            trip = await make_trip(setup)
            await setup.commit()

        redis = _redis(lock_free=False)
        with patch("transferhub.workers.matcher.get_redis", AsyncMock(return_value=redis)):
            assert await run_matching_cycle(session_factory, clock) == 0

        async with session_factory() as check:
            assert (await TripStateMachine(check, clock).get(trip.id)).driver_id is None
        redis.eval.assert_not_awaited()
