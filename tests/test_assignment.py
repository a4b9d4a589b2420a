"""
Assignment coordinator and trip state machine against a real (SQLite) store.

Includes the lost-update race: two admins assign different drivers to the
same pending trip from separate sessions; exactly one wins.
"""

from datetime import timedelta

import pytest

from transferhub.domain.enums import TripStatus, VerificationStatus
from transferhub.domain.errors import (
    Conflict,
    DriverNotReady,
    InvalidState,
    NotFound,
    PermissionDenied,
)
from transferhub.engine.assignment import AssignmentCoordinator
from transferhub.engine.trip_machine import TripStateMachine
from transferhub.infrastructure.repositories import ActivityLogRepository
from tests.conftest import (
    ADMIN,
    CUSTOMER,
    NOW,
    OTHER_CUSTOMER,
    SUPPORT,
    make_driver,
    make_trip,
    partner,
)


class TestAssign:
    @pytest.mark.asyncio
    async def test_assign_verified_driver_keeps_trip_pending(self, db_session, clock):
        driver = await make_driver(db_session)
        trip = await make_trip(db_session)

        trip = await AssignmentCoordinator(db_session, clock).assign(trip.id, driver.id, ADMIN)
        assert trip.status == TripStatus.PENDING
        assert trip.driver_id == driver.id
        assert trip.driver_acknowledged is False

    @pytest.mark.asyncio
    async def test_unavailable_verified_driver_can_be_assigned(self, db_session, clock):
        driver = await make_driver(db_session, available=False)
        trip = await make_trip(db_session)
        trip = await AssignmentCoordinator(db_session, clock).assign(trip.id, driver.id, ADMIN)
        assert trip.driver_id == driver.id

        entries = await ActivityLogRepository(db_session).list_for_driver(driver.id)
        assert entries[0].action == "trip_assigned"
        assert entries[0].details == {"available": False}

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status",
        [VerificationStatus.UNVERIFIED, VerificationStatus.PENDING, VerificationStatus.DECLINED],
    )
    async def test_unverified_driver_rejected(self, db_session, clock, status):
        driver = await make_driver(db_session, status=status)
        trip = await make_trip(db_session)
        with pytest.raises(DriverNotReady):
            await AssignmentCoordinator(db_session, clock).assign(trip.id, driver.id, ADMIN)
        machine = TripStateMachine(db_session, clock)
        assert (await machine.get(trip.id)).driver_id is None

    @pytest.mark.asyncio
    async def test_missing_trip_or_driver(self, db_session, clock):
        coordinator = AssignmentCoordinator(db_session, clock)
        driver = await make_driver(db_session)
        trip = await make_trip(db_session)
        with pytest.raises(NotFound):
            await coordinator.assign(9999, driver.id, ADMIN)
        with pytest.raises(NotFound):
            await coordinator.assign(trip.id, 9999, ADMIN)

    @pytest.mark.asyncio
    async def test_already_assigned_conflicts(self, db_session, clock):
        first = await make_driver(db_session, "partner-1")
        second = await make_driver(db_session, "partner-2")
        trip = await make_trip(db_session)
        coordinator = AssignmentCoordinator(db_session, clock)
        await coordinator.assign(trip.id, first.id, ADMIN)
        with pytest.raises(Conflict):
            await coordinator.assign(trip.id, second.id, ADMIN)

    @pytest.mark.asyncio
    async def test_non_pending_trip_rejected(self, db_session, clock):
        driver = await make_driver(db_session)
        trip = await make_trip(db_session)
        machine = TripStateMachine(db_session, clock)
        await machine.cancel(trip.id, CUSTOMER)
        with pytest.raises(InvalidState):
            await AssignmentCoordinator(db_session, clock).assign(trip.id, driver.id, ADMIN)

    @pytest.mark.asyncio
    async def test_customer_cannot_assign(self, db_session, clock):
        driver = await make_driver(db_session)
        trip = await make_trip(db_session)
        with pytest.raises(PermissionDenied):
            await AssignmentCoordinator(db_session, clock).assign(trip.id, driver.id, CUSTOMER)


class TestAssignmentRace:
    @pytest.mark.asyncio
    async def test_concurrent_assignments_one_wins(self, session_factory, clock):
        async with session_factory() as setup:
            d1 = await make_driver(setup, "partner-1")
            d2 = await make_driver(setup, "partner-2")
            trip = await make_trip(setup)
            await setup.commit()

        # Both admins read the trip while it is still unassigned.
        async with session_factory() as s1, session_factory() as s2:
            m1, m2 = TripStateMachine(s1, clock), TripStateMachine(s2, clock)
            seen_by_1 = await m1.get(trip.id)
            seen_by_2 = await m2.get(trip.id)
            driver_1 = await m1.drivers.get(d1.id)
            driver_2 = await m2.drivers.get(d2.id)

            await m1.assign_driver(seen_by_1, driver_1)
            await s1.commit()

            with pytest.raises(Conflict):
                await m2.assign_driver(seen_by_2, driver_2)
            await s2.rollback()

        async with session_factory() as check:
            final = await TripStateMachine(check, clock).get(trip.id)
        assert final.driver_id == d1.id
        assert final.status == TripStatus.PENDING

    @pytest.mark.asyncio
    async def test_cancel_racing_accept(self, session_factory, clock):
        async with session_factory() as setup:
            driver = await make_driver(setup)
            trip = await make_trip(setup)
            await AssignmentCoordinator(setup, clock).assign(trip.id, driver.id, ADMIN)
            await setup.commit()

        async with session_factory() as s1, session_factory() as s2:
            stale = await TripStateMachine(s2, clock).get(trip.id)
            await TripStateMachine(s1, clock).cancel(trip.id, CUSTOMER)
            await s1.commit()

            expected = stale.guard()
            stale.accept(clock.now())
            assert not await TripStateMachine(s2, clock).trips.save_if(stale, expected)
            await s2.rollback()

        async with session_factory() as check:
            final = await TripStateMachine(check, clock).get(trip.id)
        assert final.status == TripStatus.CANCELLED
        assert final.driver_id is None


class TestDriverLifecycle:
    @pytest.mark.asyncio
    async def test_assigned_driver_runs_trip_to_completion(self, db_session, clock):
        driver = await make_driver(db_session)
        trip = await make_trip(db_session)
        await AssignmentCoordinator(db_session, clock).assign(trip.id, driver.id, ADMIN)
        machine = TripStateMachine(db_session, clock)
        me = partner()

        trip = await machine.acknowledge(trip.id, me)
        assert trip.driver_acknowledged and trip.status == TripStatus.PENDING
        trip = await machine.accept(trip.id, me)
        assert trip.status == TripStatus.ACCEPTED
        clock.advance(600)
        trip = await machine.start(trip.id, me)
        clock.advance(3000)
        trip = await machine.complete(trip.id, me)

        stored = await machine.get(trip.id)
        assert stored.status == TripStatus.COMPLETED
        assert stored.driver_id == driver.id
        assert stored.started_at == NOW + timedelta(seconds=600)
        assert stored.completed_at == NOW + timedelta(seconds=3600)

    @pytest.mark.asyncio
    async def test_other_driver_cannot_accept(self, db_session, clock):
        driver = await make_driver(db_session, "partner-1")
        await make_driver(db_session, "partner-2")
        trip = await make_trip(db_session)
        await AssignmentCoordinator(db_session, clock).assign(trip.id, driver.id, ADMIN)
        with pytest.raises(PermissionDenied):
            await TripStateMachine(db_session, clock).accept(trip.id, partner("partner-2"))

    @pytest.mark.asyncio
    async def test_start_before_accept_fails(self, db_session, clock):
        driver = await make_driver(db_session)
        trip = await make_trip(db_session)
        await AssignmentCoordinator(db_session, clock).assign(trip.id, driver.id, ADMIN)
        with pytest.raises(InvalidState):
            await TripStateMachine(db_session, clock).start(trip.id, partner())

    @pytest.mark.asyncio
    async def test_driver_cancel_clears_assignment(self, db_session, clock):
        driver = await make_driver(db_session)
        trip = await make_trip(db_session)
        await AssignmentCoordinator(db_session, clock).assign(trip.id, driver.id, ADMIN)
        trip = await TripStateMachine(db_session, clock).cancel(trip.id, partner())
        assert trip.status == TripStatus.CANCELLED
        assert trip.driver_id is None


class TestCancelAndOverride:
    @pytest.mark.asyncio
    async def test_cancel_is_idempotent(self, db_session, clock):
        trip = await make_trip(db_session)
        machine = TripStateMachine(db_session, clock)
        first = await machine.cancel(trip.id, CUSTOMER)
        second = await machine.cancel(trip.id, CUSTOMER)
        assert first.status == second.status == TripStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_driver_repeat_cancel_is_noop(self, db_session, clock):
        driver = await make_driver(db_session)
        trip = await make_trip(db_session)
        await AssignmentCoordinator(db_session, clock).assign(trip.id, driver.id, ADMIN)
        machine = TripStateMachine(db_session, clock)

        first = await machine.cancel(trip.id, partner())
        second = await machine.cancel(trip.id, partner())
        assert first.status == second.status == TripStatus.CANCELLED
        assert second.driver_id is None
        assert (await machine.get(trip.id)).status == TripStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_other_customer_cannot_cancel(self, db_session, clock):
        trip = await make_trip(db_session)
        with pytest.raises(PermissionDenied):
            await TripStateMachine(db_session, clock).cancel(trip.id, OTHER_CUSTOMER)

    @pytest.mark.asyncio
    async def test_completed_trip_cannot_be_cancelled(self, db_session, clock):
        trip = await make_trip(db_session)
        machine = TripStateMachine(db_session, clock)
        await machine.admin_override_status(trip.id, TripStatus.COMPLETED, ADMIN)
        with pytest.raises(InvalidState):
            await machine.cancel(trip.id, ADMIN)

    @pytest.mark.asyncio
    async def test_override_is_logged_with_note(self, db_session, clock):
        driver = await make_driver(db_session)
        trip = await make_trip(db_session)
        await AssignmentCoordinator(db_session, clock).assign(trip.id, driver.id, ADMIN)
        machine = TripStateMachine(db_session, clock)
        await machine.admin_override_status(
            trip.id, TripStatus.IN_PROGRESS, ADMIN, note="Driver phoned in"
        )
        entries = await ActivityLogRepository(db_session).list_for_driver(driver.id)
        assert entries[0].action == "trip_status_override"
        assert entries[0].details["old_status"] == "pending"
        assert entries[0].details["new_status"] == "in_progress"

    @pytest.mark.asyncio
    async def test_support_cannot_override(self, db_session, clock):
        trip = await make_trip(db_session)
        with pytest.raises(PermissionDenied):
            await TripStateMachine(db_session, clock).admin_override_status(
                trip.id, TripStatus.CANCELLED, SUPPORT
            )

    @pytest.mark.asyncio
    async def test_reassign_accepted_trip(self, db_session, clock):
        first = await make_driver(db_session, "partner-1")
        second = await make_driver(db_session, "partner-2")
        trip = await make_trip(db_session)
        coordinator = AssignmentCoordinator(db_session, clock)
        await coordinator.assign(trip.id, first.id, ADMIN)
        await coordinator.machine.accept(trip.id, partner("partner-1"))

        trip = await coordinator.reassign(trip.id, second.id, ADMIN)
        assert trip.driver_id == second.id
        assert trip.status == TripStatus.PENDING


class TestVisibility:
    @pytest.mark.asyncio
    async def test_customer_sees_only_own_trips(self, db_session, clock):
        await make_trip(db_session, customer_id=CUSTOMER.user_id)
        await make_trip(db_session, customer_id=OTHER_CUSTOMER.user_id)
        trips = await TripStateMachine(db_session, clock).list_for_actor(CUSTOMER)
        assert [t.customer_id for t in trips] == [CUSTOMER.user_id]

    @pytest.mark.asyncio
    async def test_driver_list_ends_tomorrow_night(self, db_session, clock):
        driver = await make_driver(db_session)
        soon = await make_trip(db_session, scheduled_at=NOW + timedelta(hours=30))
        later = await make_trip(db_session, scheduled_at=NOW + timedelta(days=3))
        coordinator = AssignmentCoordinator(db_session, clock)
        await coordinator.assign(soon.id, driver.id, ADMIN)
        await coordinator.assign(later.id, driver.id, ADMIN)

        trips = await TripStateMachine(db_session, clock).list_for_driver(partner())
        assert [t.id for t in trips] == [soon.id]
