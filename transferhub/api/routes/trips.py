"""
Trip endpoints
==============

GET  /api/v1/trips                     -- trips visible to the caller
GET  /api/v1/trips/{trip_id}           -- one trip
POST /api/v1/trips/{trip_id}/acknowledge  -- assigned driver has seen it
POST /api/v1/trips/{trip_id}/accept    -- assigned driver commits (pending -> accepted)
POST /api/v1/trips/{trip_id}/start     -- accepted -> in_progress
POST /api/v1/trips/{trip_id}/complete  -- in_progress -> completed
POST /api/v1/trips/{trip_id}/cancel    -- customer, assigned driver or admin
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from transferhub.api.dependencies import get_actor, get_clock, get_db
from transferhub.api.middleware import DEFAULT_RATE, limiter
from transferhub.api.schemas import CancelRequest, TripResponse
from transferhub.domain.clock import Clock
from transferhub.domain.enums import TripStatus
from transferhub.domain.roles import Actor
from transferhub.engine.trip_machine import TripStateMachine

router = APIRouter(prefix="/trips", tags=["trips"])


def get_trip_machine(
    db: AsyncSession = Depends(get_db), clock: Clock = Depends(get_clock)
) -> TripStateMachine:
    return TripStateMachine(db, clock)


@router.get("", response_model=list[TripResponse], summary="List trips")
@limiter.limit(DEFAULT_RATE)
async def list_trips(
    request: Request,
    status: Optional[TripStatus] = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(get_actor),
    machine: TripStateMachine = Depends(get_trip_machine),
):
    return await machine.list_for_actor(actor, status=status, limit=limit, offset=offset)


@router.get("/{trip_id}", response_model=TripResponse, summary="Get a trip")
@limiter.limit(DEFAULT_RATE)
async def get_trip(
    request: Request,
    trip_id: int,
    actor: Actor = Depends(get_actor),
    machine: TripStateMachine = Depends(get_trip_machine),
):
    return await machine.view(trip_id, actor)


@router.post(
    "/{trip_id}/acknowledge",
    response_model=TripResponse,
    summary="Acknowledge an assignment",
)
@limiter.limit(DEFAULT_RATE)
async def acknowledge_trip(
    request: Request,
    trip_id: int,
    actor: Actor = Depends(get_actor),
    machine: TripStateMachine = Depends(get_trip_machine),
):
    return await machine.acknowledge(trip_id, actor)


@router.post("/{trip_id}/accept", response_model=TripResponse, summary="Accept a trip")
@limiter.limit(DEFAULT_RATE)
async def accept_trip(
    request: Request,
    trip_id: int,
    actor: Actor = Depends(get_actor),
    machine: TripStateMachine = Depends(get_trip_machine),
):
    return await machine.accept(trip_id, actor)


@router.post("/{trip_id}/start", response_model=TripResponse, summary="Start a trip")
@limiter.limit(DEFAULT_RATE)
async def start_trip(
    request: Request,
    trip_id: int,
    actor: Actor = Depends(get_actor),
    machine: TripStateMachine = Depends(get_trip_machine),
):
    return await machine.start(trip_id, actor)


@router.post(
    "/{trip_id}/complete", response_model=TripResponse, summary="Complete a trip"
)
@limiter.limit(DEFAULT_RATE)
async def complete_trip(
    request: Request,
    trip_id: int,
    actor: Actor = Depends(get_actor),
    machine: TripStateMachine = Depends(get_trip_machine),
):
    return await machine.complete(trip_id, actor)


@router.post(
    "/{trip_id}/cancel",
    response_model=TripResponse,
    summary="Cancel a trip",
    description="Idempotent: cancelling a cancelled trip returns it unchanged.",
)
@limiter.limit(DEFAULT_RATE)
async def cancel_trip(
    request: Request,
    trip_id: int,
    body: Optional[CancelRequest] = None,
    actor: Actor = Depends(get_actor),
    machine: TripStateMachine = Depends(get_trip_machine),
):
    return await machine.cancel(trip_id, actor, body.reason if body else None)
