"""
Partner (driver) endpoints
==========================

GET  /api/v1/partner/profile        -- own profile, created unverified on first visit
PUT  /api/v1/partner/profile/license
GET  /api/v1/partner/documents      -- documents with display state
POST /api/v1/partner/documents      -- upload / replace one document type
GET  /api/v1/partner/readiness      -- which required documents are missing
POST /api/v1/partner/submit         -- request verification review
PUT  /api/v1/partner/availability   -- go on / off duty (verified only)
GET  /api/v1/partner/trips          -- assigned trips up to the end of tomorrow
WS   /api/v1/partner/trips/ws       -- pushes the trip list whenever it changes
"""

import logging

from fastapi import (
    APIRouter,
    Depends,
    HTTPException,
    Request,
    WebSocket,
    WebSocketDisconnect,
    status,
)
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from transferhub.api.dependencies import (
    actor_from_headers,
    get_actor,
    get_clock,
    get_db,
    get_profile_cache,
    get_session_factory,
)
from transferhub.api.middleware import DEFAULT_RATE, limiter
from transferhub.api.schemas import (
    AvailabilityRequest,
    DocumentResponse,
    DocumentUploadRequest,
    DriverResponse,
    LicenseUpdateRequest,
    ReadinessResponse,
    TripResponse,
)
from transferhub.config import settings
from transferhub.domain.clock import Clock, SystemClock, as_utc
from transferhub.domain.entities import Driver
from transferhub.domain.errors import EngineError
from transferhub.domain.roles import Actor
from transferhub.engine.cache import TTLCache
from transferhub.engine.driver_machine import DriverStateMachine
from transferhub.engine.trip_machine import TripStateMachine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/partner", tags=["partner"])


def get_driver_machine(
    db: AsyncSession = Depends(get_db), clock: Clock = Depends(get_clock)
) -> DriverStateMachine:
    return DriverStateMachine(db, clock)


async def _profile(
    cache: TTLCache, actor: Actor, machine: DriverStateMachine, *, force: bool = False
) -> Driver:
    return await cache.get(actor.user_id, lambda: machine.profile_for(actor), force=force)


@router.get("/profile", response_model=DriverResponse, summary="Own driver profile")
@limiter.limit(DEFAULT_RATE)
async def get_profile(
    request: Request,
    refresh: bool = False,
    actor: Actor = Depends(get_actor),
    machine: DriverStateMachine = Depends(get_driver_machine),
    cache: TTLCache = Depends(get_profile_cache),
):
    return await _profile(cache, actor, machine, force=refresh)


@router.put(
    "/profile/license", response_model=DriverResponse, summary="Update license number"
)
@limiter.limit(DEFAULT_RATE)
async def update_license(
    request: Request,
    body: LicenseUpdateRequest,
    actor: Actor = Depends(get_actor),
    machine: DriverStateMachine = Depends(get_driver_machine),
    cache: TTLCache = Depends(get_profile_cache),
):
    driver = await machine.profile_for(actor)
    driver = await machine.update_license(driver.id, body.license_number, actor)
    cache.put(actor.user_id, driver)
    return driver


@router.get(
    "/documents", response_model=list[DocumentResponse], summary="Own documents"
)
@limiter.limit(DEFAULT_RATE)
async def list_documents(
    request: Request,
    actor: Actor = Depends(get_actor),
    machine: DriverStateMachine = Depends(get_driver_machine),
):
    driver = await machine.profile_for(actor)
    now = machine.clock.now()
    return [
        DocumentResponse.from_document(d, now, settings.expiring_soon_days)
        for d in await machine.list_documents(driver.id, actor)
    ]


@router.post(
    "/documents",
    status_code=201,
    response_model=DocumentResponse,
    summary="Upload a document",
    description=(
        "Replaces any earlier upload of the same type.  A verified driver "
        "goes back to pending review and off duty."
    ),
)
@limiter.limit(DEFAULT_RATE)
async def upload_document(
    request: Request,
    body: DocumentUploadRequest,
    actor: Actor = Depends(get_actor),
    machine: DriverStateMachine = Depends(get_driver_machine),
    cache: TTLCache = Depends(get_profile_cache),
):
    driver = await machine.profile_for(actor)
    document = await machine.upload_document(
        driver.id,
        body.doc_type,
        body.storage_location,
        actor,
        name=body.name,
        expiry_date=as_utc(body.expiry_date),
    )
    cache.invalidate(actor.user_id)
    return DocumentResponse.from_document(
        document, machine.clock.now(), settings.expiring_soon_days
    )


@router.get(
    "/readiness", response_model=ReadinessResponse, summary="Document readiness"
)
@limiter.limit(DEFAULT_RATE)
async def readiness(
    request: Request,
    actor: Actor = Depends(get_actor),
    machine: DriverStateMachine = Depends(get_driver_machine),
):
    driver = await machine.profile_for(actor)
    return await machine.readiness(driver.id)


@router.post(
    "/submit", response_model=DriverResponse, summary="Submit for verification"
)
@limiter.limit(DEFAULT_RATE)
async def submit_for_review(
    request: Request,
    actor: Actor = Depends(get_actor),
    machine: DriverStateMachine = Depends(get_driver_machine),
    cache: TTLCache = Depends(get_profile_cache),
):
    driver = await machine.profile_for(actor)
    driver = await machine.submit_for_review(driver.id, actor)
    cache.put(actor.user_id, driver)
    return driver


@router.put(
    "/availability", response_model=DriverResponse, summary="Set own availability"
)
@limiter.limit(DEFAULT_RATE)
async def set_availability(
    request: Request,
    body: AvailabilityRequest,
    actor: Actor = Depends(get_actor),
    machine: DriverStateMachine = Depends(get_driver_machine),
    cache: TTLCache = Depends(get_profile_cache),
):
    driver = await machine.profile_for(actor)
    driver = await machine.set_availability(driver.id, body.is_available, actor)
    cache.put(actor.user_id, driver)
    return driver


@router.get(
    "/trips", response_model=list[TripResponse], summary="Own upcoming trips"
)
@limiter.limit(DEFAULT_RATE)
async def list_own_trips(
    request: Request,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    return await TripStateMachine(db, clock).list_for_driver(actor)


@router.websocket("/trips/ws")
async def watch_own_trips(
    websocket: WebSocket,
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """Send the trip list on connect and again after every change to it."""
    feed = getattr(websocket.app.state, "change_feed", None)
    try:
        actor = actor_from_headers(websocket.headers)
    except HTTPException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    if feed is None:
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        return

    await websocket.accept()

    async def snapshot() -> list[dict]:
        async with factory() as session:
            trips = await TripStateMachine(session, SystemClock()).list_for_driver(actor)
        return [TripResponse.model_validate(t).model_dump(mode="json") for t in trips]

    try:
        async with factory() as session:
            driver = await DriverStateMachine(session).profile_for(actor)
            await session.commit()
        await websocket.send_json(await snapshot())
        async for _ in feed.subscribe("trips", "driver_id", driver.id):
            await websocket.send_json(await snapshot())
    except WebSocketDisconnect:
        logger.debug("Trip watcher for %s disconnected", actor.user_id)
    except EngineError as exc:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=exc.message)
