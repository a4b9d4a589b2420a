"""
Assignment Coordinator
======================

Admin (or matcher) entry point that binds a driver to a trip:

1. load the trip                        -> ``NotFound``
2. trip must be ``pending``             -> ``InvalidState``
   and not already bound                -> ``Conflict``
3. load the driver, must be verified    -> ``NotFound`` / ``DriverNotReady``
4. ``TripStateMachine.assign_driver``
5. conditional write on (pending, no driver); losing it -> ``Conflict``

Availability is advisory only: a verified driver marked unavailable can
still be assigned deliberately.  Assignment never moves the trip to
``accepted``; that is the driver's own ``accept``.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from transferhub.domain.clock import Clock
from transferhub.domain.entities import ActivityEntry, Trip
from transferhub.domain.enums import TripStatus
from transferhub.domain.errors import Conflict, InvalidState, NotFound
from transferhub.domain.roles import Actor, Capability, require
from .trip_machine import TripStateMachine

logger = logging.getLogger(__name__)


class AssignmentCoordinator:
    def __init__(self, session: AsyncSession, clock: Optional[Clock] = None):
        self.machine = TripStateMachine(session, clock)

    async def assign(self, trip_id: int, driver_id: int, actor: Actor) -> Trip:
        require(actor, Capability.ASSIGN_TRIP)
        trip = await self.machine.get(trip_id)
        if trip.status != TripStatus.PENDING:
            raise InvalidState(
                f"Trip {trip_id} is {trip.status.value}; only pending trips can be assigned"
            )
        if trip.driver_id is not None:
            raise Conflict(f"Trip {trip_id} is already assigned to driver {trip.driver_id}")
        driver = await self.machine.drivers.get(driver_id)
        if driver is None:
            raise NotFound(f"Driver {driver_id} not found")

        await self.machine.assign_driver(trip, driver)
        await self._log(actor, "trip_assigned", trip, available=driver.is_available)
        logger.info(
            "Trip %s assigned to driver %s by %s", trip.id, driver.id, actor.user_id
        )
        return trip

    async def reassign(self, trip_id: int, driver_id: int, actor: Actor) -> Trip:
        require(actor, Capability.OVERRIDE_TRIP)
        trip = await self.machine.get(trip_id)
        previous = trip.driver_id
        driver = await self.machine.drivers.get(driver_id)
        if driver is None:
            raise NotFound(f"Driver {driver_id} not found")

        await self.machine.reassign_driver(trip, driver)
        await self._log(actor, "trip_reassigned", trip, previous_driver_id=previous)
        logger.info(
            "Trip %s reassigned from driver %s to %s", trip.id, previous, driver.id
        )
        return trip

    async def _log(self, actor: Actor, action: str, trip: Trip, **details) -> None:
        await self.machine.activity.add(
            ActivityEntry(
                actor_id=actor.user_id,
                action=action,
                trip_id=trip.id,
                driver_id=trip.driver_id,
                details={k: v for k, v in details.items() if v is not None},
            )
        )
