# signal_pipeline/rate_limiter.py
import asyncio
import time
from typing import Callable

from .errors import ConfigError


class RateLimiter:
    """
    Token bucket guarding calls to the upstream market data provider.
    Holds up to `burst` tokens and refills at `rate` tokens per second.

    acquire() never sleeps itself: it returns how long the caller should wait.
    Use throttle() to acquire and wait in one step.
    """
    def __init__(self, rate: float, burst: float, clock: Callable[[], float] = time.monotonic):
        if rate <= 0 or burst <= 0:
            raise ConfigError(f"Rate limiter needs positive rate and burst (rate={rate}, burst={burst})")
        self.rate = float(rate)
        self.burst = float(burst)
        self._clock = clock
        self._tokens = float(burst)
        self._last_update = clock()
        self._lock = asyncio.Lock()

    async def acquire(self) -> float:
        """Takes one token. Returns 0.0 if one was available, otherwise the seconds to wait."""
        async with self._lock:
            now = self._clock()
            elapsed = max(0.0, now - self._last_update)
            self._tokens = min(self._tokens + elapsed * self.rate, self.burst)
            self._last_update = now

            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return 0.0

            wait = (1.0 - self._tokens) / self.rate
            self._tokens = 0.0
            return wait

    async def throttle(self) -> float:
        wait = await self.acquire()
        if wait > 0:
            await asyncio.sleep(wait)
        return wait

    @property
    def available_tokens(self) -> float:
        return self._tokens
