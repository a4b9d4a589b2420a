"""
Reusable retry policy and cooldown window.

    delay(n) = min(base_delay * multiplier ** (n - 1), max_delay) * (1 ± jitter)

Only infrastructure failures are retried: ``Unavailable`` and
``GatewayError`` flagged retryable.  Everything else (state-machine and
gate errors, terminal gateway errors) propagates on the first attempt.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, TypeVar

from transferhub.config import Settings
from transferhub.domain.clock import Clock, SystemClock
from transferhub.domain.errors import GatewayError, Unavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, GatewayError):
        return exc.retryable
    return isinstance(exc, Unavailable)


@dataclass
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 0.5
    multiplier: float = 2.0
    max_delay: float = 8.0
    jitter: float = 0.1
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, repr=False)
    rng: random.Random = field(default_factory=random.Random, repr=False)

    @classmethod
    def from_settings(cls, settings: Settings, **overrides) -> "RetryPolicy":
        params = dict(
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay,
            multiplier=settings.retry_multiplier,
            max_delay=settings.retry_max_delay,
            jitter=settings.retry_jitter,
        )
        params.update(overrides)
        return cls(**params)

    def delay_for(self, attempt: int) -> float:
        """Back-off before retry number *attempt* (1-based)."""
        delay = min(self.base_delay * self.multiplier ** (attempt - 1), self.max_delay)
        if self.jitter:
            delay *= 1 + self.rng.uniform(-self.jitter, self.jitter)
        return max(delay, 0.0)

    async def run(
        self,
        fn: Callable[..., Awaitable[T]],
        *args,
        retry_if: Callable[[BaseException], bool] = is_transient,
        **kwargs,
    ) -> T:
        attempt = 1
        while True:
            try:
                return await fn(*args, **kwargs)
            except Exception as exc:
                if attempt >= self.max_attempts or not retry_if(exc):
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    "%s failed (attempt %d/%d): %s; retrying in %.2fs",
                    getattr(fn, "__qualname__", fn),
                    attempt,
                    self.max_attempts,
                    exc,
                    delay,
                )
                await self.sleep(delay)
                attempt += 1


class Cooldown:
    """Minimum spacing between independent attempts of one operation."""

    def __init__(self, window_seconds: float, clock: Optional[Clock] = None):
        self.window = window_seconds
        self.clock = clock or SystemClock()
        self._last: Optional[float] = None

    @property
    def ready(self) -> bool:
        return self._last is None or self.clock.monotonic() - self._last >= self.window

    def remaining(self) -> float:
        if self._last is None:
            return 0.0
        return max(0.0, self.window - (self.clock.monotonic() - self._last))

    def mark(self) -> None:
        self._last = self.clock.monotonic()

    def reset(self) -> None:
        self._last = None
