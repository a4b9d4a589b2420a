"""
Invite endpoints
================

GET  /api/v1/invites/{code}         -- inspect an invite (expired if past its date)
POST /api/v1/invites/{code}/redeem  -- consume it for the calling user
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from transferhub.api.dependencies import get_actor, get_clock, get_session_factory
from transferhub.api.middleware import DEFAULT_RATE, limiter
from transferhub.api.schemas import InviteResponse
from transferhub.domain.clock import Clock
from transferhub.domain.roles import Actor
from transferhub.engine.invites import InviteSweeper

router = APIRouter(prefix="/invites", tags=["invites"])


def get_sweeper(
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    clock: Clock = Depends(get_clock),
) -> InviteSweeper:
    return InviteSweeper(factory, clock)


@router.get("/{code}", response_model=InviteResponse, summary="Look up an invite")
@limiter.limit(DEFAULT_RATE)
async def get_invite(
    request: Request,
    code: str,
    sweeper: InviteSweeper = Depends(get_sweeper),
):
    return await sweeper.lookup(code)


@router.post(
    "/{code}/redeem", response_model=InviteResponse, summary="Redeem an invite"
)
@limiter.limit(DEFAULT_RATE)
async def redeem_invite(
    request: Request,
    code: str,
    actor: Actor = Depends(get_actor),
    sweeper: InviteSweeper = Depends(get_sweeper),
):
    return await sweeper.redeem(code, actor.user_id)
