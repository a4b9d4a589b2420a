"""
Invite links and the lazy expiry sweeper.

There is no scheduler.  Every read of the invite collection reclassifies
``active`` links whose ``expires_at`` has passed as ``expired`` in the
returned view, then issues one batched conditional update for exactly
those rows.  If that write fails the caller still gets the corrected view;
the next read simply tries again.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from datetime import timedelta
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from transferhub.domain.clock import Clock, SystemClock
from transferhub.domain.entities import InviteLink
from transferhub.domain.enums import InviteStatus
from transferhub.domain.errors import Conflict, InvalidState, NotFound
from transferhub.domain.roles import Actor, Capability, Role, require
from transferhub.infrastructure.repositories import InviteLinkRepository

logger = logging.getLogger(__name__)


class InviteSweeper:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Optional[Clock] = None,
        persist_timeout: float = 5.0,
    ):
        self.session_factory = session_factory
        self.clock = clock or SystemClock()
        self.persist_timeout = persist_timeout

    async def list(self, actor: Actor, status: Optional[InviteStatus] = None) -> list[InviteLink]:
        require(actor, Capability.MANAGE_INVITES)
        async with self.session_factory() as session:
            invites = await InviteLinkRepository(session).list()
        await self._sweep(invites)
        if status is not None:
            invites = [i for i in invites if i.status == status]
        return invites

    async def lookup(self, code: str) -> InviteLink:
        async with self.session_factory() as session:
            invite = await InviteLinkRepository(session).get(code)
        if invite is None:
            raise NotFound(f"Invite {code} not found")
        await self._sweep([invite])
        return invite

    async def create(
        self,
        actor: Actor,
        role: Role,
        ttl: Optional[timedelta] = None,
    ) -> InviteLink:
        require(actor, Capability.MANAGE_INVITES)
        if role == Role.SYSTEM:
            raise InvalidState("Cannot invite the system role")
        invite = InviteLink(
            code=secrets.token_urlsafe(16),
            role=role.value,
            created_by=actor.user_id,
            expires_at=self.clock.now() + ttl if ttl else None,
        )
        async with self.session_factory() as session:
            async with session.begin():
                invite = await InviteLinkRepository(session).create(invite)
        logger.info("Invite created for role %s by %s", role.value, actor.user_id)
        return invite

    async def redeem(self, code: str, user_id: str) -> InviteLink:
        invite = await self.lookup(code)
        if invite.status != InviteStatus.ACTIVE:
            raise InvalidState(f"Invite {code} is {invite.status.value}")
        invite.redeem(user_id, self.clock.now())
        async with self.session_factory() as session:
            async with session.begin():
                saved = await InviteLinkRepository(session).save_if(
                    invite, InviteStatus.ACTIVE
                )
        if not saved:
            raise Conflict(f"Invite {code} was redeemed concurrently")
        logger.info("Invite %s redeemed by %s", code, user_id)
        return invite

    # ── internals ─────────────────────────────────────────────────────

    async def _sweep(self, invites: list[InviteLink]) -> list[InviteLink]:
        now = self.clock.now()
        stale = [i for i in invites if i.is_stale(now)]
        for invite in stale:
            invite.expire()
        if stale:
            await self._persist_expired([i.code for i in stale], now)
        return stale

    async def _persist_expired(self, codes: list[str], now) -> None:
        try:
            written = await asyncio.wait_for(
                self._write_expired(codes, now), timeout=self.persist_timeout
            )
            logger.info("Marked %d of %d stale invites expired", written, len(codes))
        except (SQLAlchemyError, OSError, asyncio.TimeoutError) as exc:
            logger.warning(
                "Could not persist %d expired invites, will retry on next read: %s",
                len(codes),
                exc,
            )

    async def _write_expired(self, codes: list[str], now) -> int:
        async with self.session_factory() as session:
            async with session.begin():
                return await InviteLinkRepository(session).expire_many(codes, now)
