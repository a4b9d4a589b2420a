"""
Trip State Machine
==================

Owns the authoritative status of a trip:

    pending --accept--> accepted --start--> in_progress --complete--> completed
       \\                  \\                     \\
        +------------------+---------------------+--cancel--> cancelled

* Assignment binds a driver but leaves the trip ``pending``; the driver
  then ``acknowledge``s (seen it) and ``accept``s (pending -> accepted).
* ``completed`` and ``cancelled`` are terminal, even for admin overrides.
* Every write is conditioned on the status and driver observed at read
  time; losing that race raises ``Conflict``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from transferhub.domain.clock import Clock, SystemClock
from transferhub.domain.entities import ActivityEntry, Driver, Trip
from transferhub.domain.enums import TripStatus
from transferhub.domain.errors import (
    Conflict,
    DriverNotReady,
    NotFound,
    PermissionDenied,
)
from transferhub.domain.roles import Actor, Capability, Role, require
from transferhub.infrastructure.repositories import (
    ActivityLogRepository,
    DriverRepository,
    TripRepository,
)

logger = logging.getLogger(__name__)


class TripStateMachine:
    def __init__(self, session: AsyncSession, clock: Optional[Clock] = None):
        self.session = session
        self.clock = clock or SystemClock()
        self.trips = TripRepository(session)
        self.drivers = DriverRepository(session)
        self.activity = ActivityLogRepository(session)

    # ── reads ─────────────────────────────────────────────────────────

    async def get(self, trip_id: int) -> Trip:
        trip = await self.trips.get(trip_id)
        if trip is None:
            raise NotFound(f"Trip {trip_id} not found")
        return trip

    async def view(self, trip_id: int, actor: Actor) -> Trip:
        trip = await self.get(trip_id)
        if actor.can(Capability.VIEW_ALL) or trip.customer_id == actor.user_id:
            return trip
        driver = await self._driver_for(actor)
        if driver is not None and trip.driver_id == driver.id:
            return trip
        raise PermissionDenied(f"Trip {trip_id} is not visible to this user")

    async def list_for_actor(self, actor: Actor, **filters) -> list[Trip]:
        if actor.can(Capability.VIEW_ALL):
            return await self.trips.list(**filters)
        if actor.role == Role.PARTNER:
            return await self.list_for_driver(actor)
        require(actor, Capability.BOOK_TRIP)
        filters.pop("customer_id", None)
        return await self.trips.list(customer_id=actor.user_id, **filters)

    async def list_for_driver(
        self, actor: Actor, until: Optional[datetime] = None
    ) -> list[Trip]:
        """The driver's trips up to the end of tomorrow, all statuses."""
        require(actor, Capability.DRIVE_TRIP)
        driver = await self._driver_for(actor)
        if driver is None:
            raise NotFound("No driver profile for this account")
        if until is None:
            tomorrow = self.clock.now() + timedelta(days=1)
            until = tomorrow.replace(hour=23, minute=59, second=59, microsecond=0)
        return await self.trips.list(driver_id=driver.id, scheduled_before=until)

    # ── transitions ───────────────────────────────────────────────────

    async def assign_driver(self, trip: Trip, driver: Driver) -> Trip:
        """Bind *driver* to a pending, unassigned *trip*.  Status is unchanged."""
        if not driver.is_verified:
            raise DriverNotReady(
                f"Driver {driver.id} is {driver.verification_status.value}"
            )
        expected = trip.guard()
        trip.assign_driver(driver.id)
        await self._save(trip, expected)
        return trip

    async def reassign_driver(self, trip: Trip, driver: Driver) -> Trip:
        if not driver.is_verified:
            raise DriverNotReady(
                f"Driver {driver.id} is {driver.verification_status.value}"
            )
        expected = trip.guard()
        trip.reassign_driver(driver.id)
        await self._save(trip, expected)
        return trip

    async def acknowledge(self, trip_id: int, actor: Actor) -> Trip:
        trip = await self._load_as_assigned_driver(trip_id, actor)
        expected = trip.guard()
        trip.acknowledge()
        await self._save(trip, expected)
        return trip

    async def accept(self, trip_id: int, actor: Actor) -> Trip:
        trip = await self._load_as_assigned_driver(trip_id, actor)
        expected = trip.guard()
        trip.accept(self.clock.now())
        await self._save(trip, expected)
        logger.info("Trip %s accepted by driver %s", trip.id, trip.driver_id)
        return trip

    async def start(self, trip_id: int, actor: Actor) -> Trip:
        trip = await self._load_as_assigned_driver(trip_id, actor)
        expected = trip.guard()
        trip.start(self.clock.now())
        await self._save(trip, expected)
        return trip

    async def complete(self, trip_id: int, actor: Actor) -> Trip:
        trip = await self._load_as_assigned_driver(trip_id, actor)
        expected = trip.guard()
        trip.complete(self.clock.now())
        await self._save(trip, expected)
        logger.info("Trip %s completed", trip.id)
        return trip

    async def cancel(self, trip_id: int, actor: Actor, reason: Optional[str] = None) -> Trip:
        trip = await self.get(trip_id)
        # A cancelled trip no longer names its driver, so a driver's repeat
        # cancel cannot be matched by ownership.
        if trip.status == TripStatus.CANCELLED and actor.can(Capability.DRIVE_TRIP):
            return trip
        await self._require_cancel_rights(trip, actor)
        expected = trip.guard()
        previous_driver = trip.driver_id
        if not trip.cancel(self.clock.now()):
            return trip
        await self._save(trip, expected)
        if actor.can(Capability.CANCEL_ANY_TRIP):
            await self._log(
                actor,
                "trip_cancelled",
                trip,
                driver_id=previous_driver,
                reason=reason,
            )
        logger.info("Trip %s cancelled by %s", trip.id, actor.role.value)
        return trip

    async def admin_override_status(
        self,
        trip_id: int,
        new_status: TripStatus,
        actor: Actor,
        note: Optional[str] = None,
    ) -> Trip:
        require(actor, Capability.OVERRIDE_TRIP)
        trip = await self.get(trip_id)
        expected = trip.guard()
        previous = trip.status
        trip.override_status(new_status, self.clock.now())
        await self._save(trip, expected)
        await self._log(
            actor,
            "trip_status_override",
            trip,
            old_status=previous.value,
            new_status=new_status.value,
            note=note,
        )
        return trip

    # ── internals ─────────────────────────────────────────────────────

    async def _save(self, trip: Trip, expected: dict) -> None:
        if not await self.trips.save_if(trip, expected):
            raise Conflict(f"Trip {trip.id} was modified concurrently")

    async def _driver_for(self, actor: Actor) -> Optional[Driver]:
        if actor.role != Role.PARTNER:
            return None
        return await self.drivers.get_by_account(actor.user_id)

    async def _load_as_assigned_driver(self, trip_id: int, actor: Actor) -> Trip:
        require(actor, Capability.DRIVE_TRIP)
        trip = await self.get(trip_id)
        driver = await self._driver_for(actor)
        if driver is None or trip.driver_id != driver.id:
            raise PermissionDenied(f"Trip {trip_id} is not assigned to this driver")
        return trip

    async def _require_cancel_rights(self, trip: Trip, actor: Actor) -> None:
        if actor.can(Capability.CANCEL_ANY_TRIP):
            return
        if actor.role == Role.CUSTOMER and trip.customer_id == actor.user_id:
            return
        driver = await self._driver_for(actor)
        if driver is not None and trip.driver_id == driver.id:
            return
        raise PermissionDenied(f"Not allowed to cancel trip {trip.id}")

    async def _log(
        self,
        actor: Actor,
        action: str,
        trip: Trip,
        driver_id: Optional[int] = None,
        **details,
    ) -> None:
        await self.activity.add(
            ActivityEntry(
                actor_id=actor.user_id,
                action=action,
                trip_id=trip.id,
                driver_id=driver_id if driver_id is not None else trip.driver_id,
                details={k: v for k, v in details.items() if v is not None},
            )
        )
