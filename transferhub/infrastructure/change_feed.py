"""
Realtime change-notification channel over Redis pub/sub.

Channels are keyed by table and filter, e.g. ``changes:trips:driver_id=7``.
Messages only tell subscribers to re-fetch; they are never a source of
truth, and a failed publish is logged and dropped.

Writers do not publish directly.  Repositories record a ``ChangeNotice``
on the session (``record_change``) and the unit-of-work owner publishes
the batch after a successful commit (``drain_changes``), so subscribers
are not woken for rolled-back writes.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Iterable

import redis.asyncio as aioredis
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

_SESSION_KEY = "pending_changes"


@dataclass(frozen=True)
class ChangeNotice:
    table: str
    column: str
    value: str

    @property
    def channel(self) -> str:
        return channel_name(self.table, self.column, self.value)


def channel_name(table: str, column: str, value) -> str:
    return f"changes:{table}:{column}={value}"


def record_change(session: AsyncSession, table: str, **filters) -> None:
    pending: list[ChangeNotice] = session.info.setdefault(_SESSION_KEY, [])
    for column, value in filters.items():
        if value is None:
            continue
        notice = ChangeNotice(table, column, str(value))
        if notice not in pending:
            pending.append(notice)


def drain_changes(session: AsyncSession) -> list[ChangeNotice]:
    return session.info.pop(_SESSION_KEY, [])


class ChangeFeed:
    def __init__(self, client: aioredis.Redis):
        self.redis = client

    async def publish(self, notices: Iterable[ChangeNotice]) -> None:
        for notice in notices:
            try:
                await self.redis.publish(
                    notice.channel,
                    json.dumps({"table": notice.table, notice.column: notice.value}),
                )
            except RedisError:
                logger.warning("Change feed publish failed for %s", notice.channel)

    async def subscribe(self, table: str, column: str, value) -> AsyncIterator[dict]:
        """Yield one payload per change on ``table`` where ``column == value``."""
        pubsub = self.redis.pubsub()
        await pubsub.subscribe(channel_name(table, column, value))
        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                yield json.loads(message["data"])
        finally:
            await pubsub.unsubscribe()
            await pubsub.aclose()
