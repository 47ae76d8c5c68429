import asyncio
import time
from trending.utils.logging_config import logger

class AsyncRateLimiter:
    """
    Token bucket shared by every caller of one external API.

    Usable as `await limiter.acquire()` or `async with limiter:`. Callers that find the
    bucket empty queue on the lock and are released one token at a time.
    """
    def __init__(self, max_calls: int, period: float = 60, name: str = "api"):
        if max_calls <= 0 or period <= 0:
            raise ValueError("max_calls and period must be positive")
        self.max_calls = max_calls
        self.period = period
        self.name = name
        self.tokens = float(max_calls)
        self.last_updated = time.monotonic()
        self.throttled = 0
        self._lock = asyncio.Lock()

    @property
    def refill_interval(self) -> float:
        """Seconds to earn back one call."""
        return self.period / self.max_calls

    def _refill(self):
        now = time.monotonic()
        self.tokens = min(self.max_calls, self.tokens + (now - self.last_updated) / self.refill_interval)
        self.last_updated = now

    async def acquire(self):
        async with self._lock:
            self._refill()
            if self.tokens >= 1:
                self.tokens -= 1
                return

            wait_time = (1 - self.tokens) * self.refill_interval
            self.throttled += 1
            logger.debug("Rate limit hit", limiter=self.name, wait_seconds=round(wait_time, 2))
            await asyncio.sleep(wait_time)
            self.tokens = 0
            self.last_updated = time.monotonic()

    async def __aenter__(self):
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False
