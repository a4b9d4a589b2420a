"""
Session-token refresh with bounded retry, cooldown and fallback.

``SessionRefresher.token()`` returns a cached token while fresh.  Once it
goes stale a refresh is attempted under the retry policy, but never more
often than the cooldown window allows.  If the refresh exhausts its
retries (or the cooldown is still running) the last good token is
returned; with nothing cached the caller gets ``Unavailable``.

The HTTP service itself takes identity from request headers and never
holds a provider session.  This class is the client-side boundary: SDK
and worker code that calls the API or an identity provider with a
short-lived token builds one with ``SessionRefresher.from_settings`` so
its refresh loop shares the service's retry and cooldown settings.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional

from transferhub.config import Settings
from transferhub.domain.clock import Clock, SystemClock
from transferhub.domain.errors import Unavailable
from .cache import TTLCache
from .retry import Cooldown, RetryPolicy, is_transient

logger = logging.getLogger(__name__)

_KEY = "session"


class SessionRefresher:
    def __init__(
        self,
        refresh: Callable[[], Awaitable[str]],
        *,
        policy: Optional[RetryPolicy] = None,
        ttl_seconds: float = 300.0,
        cooldown_seconds: float = 10.0,
        clock: Optional[Clock] = None,
    ):
        clock = clock or SystemClock()
        self._refresh = refresh
        self.policy = policy or RetryPolicy()
        self.cache: TTLCache[str, str] = TTLCache(ttl_seconds, clock)
        self.cooldown = Cooldown(cooldown_seconds, clock)

    @classmethod
    def from_settings(
        cls,
        refresh: Callable[[], Awaitable[str]],
        settings: Settings,
        clock: Optional[Clock] = None,
    ) -> "SessionRefresher":
        return cls(
            refresh,
            policy=RetryPolicy.from_settings(settings),
            cooldown_seconds=settings.session_refresh_cooldown_seconds,
            clock=clock,
        )

    async def token(self, *, force: bool = False) -> str:
        if not force and self.cache.is_fresh(_KEY):
            return self.cache.peek(_KEY)

        last_good = self.cache.peek(_KEY)
        if not self.cooldown.ready:
            if last_good is not None:
                return last_good
            raise Unavailable(
                f"Session refresh cooling down for {self.cooldown.remaining():.1f}s"
            )

        self.cooldown.mark()
        try:
            fresh = await self.policy.run(self._refresh)
        except Exception as exc:
            if not is_transient(exc):
                raise
            if last_good is not None:
                logger.warning("Session refresh failed, using cached token: %s", exc)
                return last_good
            raise Unavailable("Session refresh exhausted retries") from exc

        self.cache.put(_KEY, fresh)
        return fresh

    def invalidate(self) -> None:
        self.cache.invalidate(_KEY)
        self.cooldown.reset()
