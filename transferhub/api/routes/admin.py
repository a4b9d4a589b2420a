"""
Admin / operations endpoints
============================

POST /api/v1/admin/trips/{trip_id}/assign      -- bind a verified driver to a pending trip
POST /api/v1/admin/trips/{trip_id}/reassign    -- swap the driver of a pending / accepted trip
PUT  /api/v1/admin/trips/{trip_id}/status      -- override status (terminal states stay put)
POST /api/v1/admin/trips/{trip_id}/cancel      -- cancel any trip
GET  /api/v1/admin/trips                       -- filterable trip list
GET  /api/v1/admin/drivers                     -- filterable driver list
POST /api/v1/admin/drivers/{driver_id}/approve
POST /api/v1/admin/drivers/{driver_id}/decline
PUT  /api/v1/admin/drivers/{driver_id}/availability
GET  /api/v1/admin/drivers/{driver_id}/documents
GET  /api/v1/admin/drivers/{driver_id}/readiness
GET  /api/v1/admin/drivers/{driver_id}/activity -- last decisions taken on a driver
GET  /api/v1/admin/invites                     -- invite links, stale ones shown expired
POST /api/v1/admin/invites
GET  /api/v1/admin/health                      -- simple health check
"""

from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from transferhub.api.dependencies import (
    get_actor,
    get_clock,
    get_db,
    get_profile_cache,
    get_session_factory,
)
from transferhub.api.middleware import DEFAULT_RATE, limiter
from transferhub.api.schemas import (
    ActivityResponse,
    AssignRequest,
    AvailabilityRequest,
    CancelRequest,
    DeclineRequest,
    DocumentResponse,
    DriverResponse,
    HealthResponse,
    InviteCreateRequest,
    InviteResponse,
    ReadinessResponse,
    StatusOverrideRequest,
    TripResponse,
)
from transferhub.config import settings
from transferhub.domain.clock import Clock
from transferhub.domain.enums import InviteStatus, TripStatus, VerificationStatus
from transferhub.domain.roles import Actor, Capability, require
from transferhub.engine.assignment import AssignmentCoordinator
from transferhub.engine.cache import TTLCache
from transferhub.engine.driver_machine import DriverStateMachine
from transferhub.engine.invites import InviteSweeper
from transferhub.engine.trip_machine import TripStateMachine

router = APIRouter(prefix="/admin", tags=["admin"])


def get_coordinator(
    db: AsyncSession = Depends(get_db), clock: Clock = Depends(get_clock)
) -> AssignmentCoordinator:
    return AssignmentCoordinator(db, clock)


def get_driver_machine(
    db: AsyncSession = Depends(get_db), clock: Clock = Depends(get_clock)
) -> DriverStateMachine:
    return DriverStateMachine(db, clock)


def get_sweeper(
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    clock: Clock = Depends(get_clock),
) -> InviteSweeper:
    return InviteSweeper(factory, clock)


# ── Trips ─────────────────────────────────────────────────────────────


@router.post(
    "/trips/{trip_id}/assign",
    response_model=TripResponse,
    summary="Assign a driver",
    description=(
        "The trip stays ``pending`` until the driver accepts.  Drivers who "
        "marked themselves unavailable can still be assigned deliberately."
    ),
)
@limiter.limit(DEFAULT_RATE)
async def assign_driver(
    request: Request,
    trip_id: int,
    body: AssignRequest,
    actor: Actor = Depends(get_actor),
    coordinator: AssignmentCoordinator = Depends(get_coordinator),
):
    return await coordinator.assign(trip_id, body.driver_id, actor)


@router.post(
    "/trips/{trip_id}/reassign", response_model=TripResponse, summary="Reassign a driver"
)
@limiter.limit(DEFAULT_RATE)
async def reassign_driver(
    request: Request,
    trip_id: int,
    body: AssignRequest,
    actor: Actor = Depends(get_actor),
    coordinator: AssignmentCoordinator = Depends(get_coordinator),
):
    return await coordinator.reassign(trip_id, body.driver_id, actor)


@router.put(
    "/trips/{trip_id}/status", response_model=TripResponse, summary="Override status"
)
@limiter.limit(DEFAULT_RATE)
async def override_status(
    request: Request,
    trip_id: int,
    body: StatusOverrideRequest,
    actor: Actor = Depends(get_actor),
    coordinator: AssignmentCoordinator = Depends(get_coordinator),
):
    return await coordinator.machine.admin_override_status(
        trip_id, body.status, actor, body.note
    )


@router.post(
    "/trips/{trip_id}/cancel", response_model=TripResponse, summary="Cancel a trip"
)
@limiter.limit(DEFAULT_RATE)
async def cancel_trip(
    request: Request,
    trip_id: int,
    body: Optional[CancelRequest] = None,
    actor: Actor = Depends(get_actor),
    coordinator: AssignmentCoordinator = Depends(get_coordinator),
):
    require(actor, Capability.CANCEL_ANY_TRIP)
    return await coordinator.machine.cancel(trip_id, actor, body.reason if body else None)


@router.get("/trips", response_model=list[TripResponse], summary="List trips")
@limiter.limit(DEFAULT_RATE)
async def list_trips(
    request: Request,
    status: Optional[TripStatus] = None,
    driver_id: Optional[int] = None,
    unassigned: bool = False,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    require(actor, Capability.VIEW_ALL)
    return await TripStateMachine(db, clock).trips.list(
        status=status,
        driver_id=driver_id,
        unassigned=unassigned,
        limit=limit,
        offset=offset,
    )


# ── Drivers ───────────────────────────────────────────────────────────


@router.get("/drivers", response_model=list[DriverResponse], summary="List drivers")
@limiter.limit(DEFAULT_RATE)
async def list_drivers(
    request: Request,
    status: Optional[VerificationStatus] = None,
    available: Optional[bool] = None,
    actor: Actor = Depends(get_actor),
    machine: DriverStateMachine = Depends(get_driver_machine),
):
    return await machine.list(actor, status=status, available=available)


@router.post(
    "/drivers/{driver_id}/approve", response_model=DriverResponse, summary="Approve a driver"
)
@limiter.limit(DEFAULT_RATE)
async def approve_driver(
    request: Request,
    driver_id: int,
    actor: Actor = Depends(get_actor),
    machine: DriverStateMachine = Depends(get_driver_machine),
    cache: TTLCache = Depends(get_profile_cache),
):
    driver = await machine.approve(driver_id, actor)
    cache.put(driver.account_id, driver)
    return driver


@router.post(
    "/drivers/{driver_id}/decline", response_model=DriverResponse, summary="Decline a driver"
)
@limiter.limit(DEFAULT_RATE)
async def decline_driver(
    request: Request,
    driver_id: int,
    body: Optional[DeclineRequest] = None,
    actor: Actor = Depends(get_actor),
    machine: DriverStateMachine = Depends(get_driver_machine),
    cache: TTLCache = Depends(get_profile_cache),
):
    driver = await machine.decline(driver_id, actor, body.reason if body else None)
    cache.put(driver.account_id, driver)
    return driver


@router.put(
    "/drivers/{driver_id}/availability",
    response_model=DriverResponse,
    summary="Set a driver's availability",
)
@limiter.limit(DEFAULT_RATE)
async def set_driver_availability(
    request: Request,
    driver_id: int,
    body: AvailabilityRequest,
    actor: Actor = Depends(get_actor),
    machine: DriverStateMachine = Depends(get_driver_machine),
    cache: TTLCache = Depends(get_profile_cache),
):
    driver = await machine.set_availability(driver_id, body.is_available, actor, body.note)
    cache.put(driver.account_id, driver)
    return driver


@router.get(
    "/drivers/{driver_id}/documents",
    response_model=list[DocumentResponse],
    summary="A driver's documents",
)
@limiter.limit(DEFAULT_RATE)
async def driver_documents(
    request: Request,
    driver_id: int,
    actor: Actor = Depends(get_actor),
    machine: DriverStateMachine = Depends(get_driver_machine),
):
    now = machine.clock.now()
    return [
        DocumentResponse.from_document(d, now, settings.expiring_soon_days)
        for d in await machine.list_documents(driver_id, actor)
    ]


@router.get(
    "/drivers/{driver_id}/readiness",
    response_model=ReadinessResponse,
    summary="Document readiness of a driver",
)
@limiter.limit(DEFAULT_RATE)
async def driver_readiness(
    request: Request,
    driver_id: int,
    actor: Actor = Depends(get_actor),
    machine: DriverStateMachine = Depends(get_driver_machine),
):
    require(actor, Capability.REVIEW_DRIVERS)
    await machine.get(driver_id)
    return await machine.readiness(driver_id)


@router.get(
    "/drivers/{driver_id}/activity",
    response_model=list[ActivityResponse],
    summary="Recent decisions on a driver",
)
@limiter.limit(DEFAULT_RATE)
async def driver_activity(
    request: Request,
    driver_id: int,
    limit: int = Query(10, ge=1, le=100),
    actor: Actor = Depends(get_actor),
    machine: DriverStateMachine = Depends(get_driver_machine),
):
    return await machine.activity_log(driver_id, actor, limit=limit)


# ── Invites ───────────────────────────────────────────────────────────


@router.get("/invites", response_model=list[InviteResponse], summary="List invites")
@limiter.limit(DEFAULT_RATE)
async def list_invites(
    request: Request,
    status: Optional[InviteStatus] = None,
    actor: Actor = Depends(get_actor),
    sweeper: InviteSweeper = Depends(get_sweeper),
):
    return await sweeper.list(actor, status)


@router.post(
    "/invites", status_code=201, response_model=InviteResponse, summary="Create an invite"
)
@limiter.limit(DEFAULT_RATE)
async def create_invite(
    request: Request,
    body: InviteCreateRequest,
    actor: Actor = Depends(get_actor),
    sweeper: InviteSweeper = Depends(get_sweeper),
):
    ttl = timedelta(hours=body.ttl_hours) if body.ttl_hours else None
    return await sweeper.create(actor, body.role, ttl)


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health():
    return HealthResponse()
