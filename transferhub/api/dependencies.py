"""FastAPI dependency injection helpers."""

from typing import AsyncGenerator

from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.datastructures import Headers

from transferhub.config import settings
from transferhub.domain.clock import Clock, SystemClock
from transferhub.domain.entities import Driver
from transferhub.domain.roles import Actor, Role
from transferhub.engine.cache import TTLCache
from transferhub.infrastructure.change_feed import drain_changes
from transferhub.infrastructure.database import async_session_factory
from transferhub.infrastructure.payment_gateway import PaymentGateway


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return async_session_factory


async def get_db(
    request: Request,
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> AsyncGenerator[AsyncSession, None]:
    """Yield an async DB session; commit on success, rollback on error.

    Change notices recorded during the request are published only after
    the commit went through.
    """
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            drain_changes(session)
            raise
        feed = getattr(request.app.state, "change_feed", None)
        notices = drain_changes(session)
        if feed is not None and notices:
            await feed.publish(notices)


def get_clock() -> Clock:
    return SystemClock()


def get_gateway(request: Request) -> PaymentGateway:
    return request.app.state.gateway


def get_profile_cache(
    request: Request, clock: Clock = Depends(get_clock)
) -> TTLCache[str, Driver]:
    """Partner profiles keyed by account id, built on first use with the request clock."""
    cache = getattr(request.app.state, "profile_cache", None)
    if cache is None:
        cache = TTLCache(settings.profile_cache_ttl_seconds, clock)
        request.app.state.profile_cache = cache
    return cache


def actor_from_headers(headers: Headers) -> Actor:
    user_id = headers.get("x-user-id")
    role = headers.get("x-user-role")
    if not user_id or not role:
        raise HTTPException(
            status_code=401, detail="X-User-Id and X-User-Role headers are required"
        )
    try:
        parsed = Role(role.lower())
    except ValueError:
        raise HTTPException(status_code=401, detail=f"Unknown role '{role}'")
    if parsed == Role.SYSTEM:
        raise HTTPException(status_code=403, detail="The system role is internal")
    return Actor(user_id=user_id, role=parsed)


def get_actor(request: Request) -> Actor:
    return actor_from_headers(request.headers)
