"""Rate limiting for shared ledger endpoints.

Public RPC nodes throttle aggressively, and every payment monitor shares
one gateway, so all RPC calls pass through a single token bucket.
"""

import asyncio
import logging
import time
from typing import Optional

logger = logging.getLogger(__name__)


class AsyncRateLimiter:
    """Token bucket limiter usable as an async context manager.

    One token is added every ``every`` seconds, up to ``burst`` tokens.
    An ``every`` of 0 disables limiting.

    Example:
        limiter = AsyncRateLimiter(every=1.0, burst=5)
        async with limiter:
            await client.get_balance(...)
    """

    def __init__(self, every: float, burst: int = 1, name: str = "rpc"):
        self.every = max(0.0, every)
        self.burst = max(1, burst)
        self.name = name
        self._tokens = float(self.burst)
        self._updated = time.monotonic()
        self._lock: Optional[asyncio.Lock] = None

    def _refill(self) -> None:
        now = time.monotonic()
        if self.every > 0:
            self._tokens = min(self.burst, self._tokens + (now - self._updated) / self.every)
        self._updated = now

    async def acquire(self) -> None:
        """Wait until a token is available and take it."""
        if self.every == 0:
            return

        if self._lock is None:
            self._lock = asyncio.Lock()

        # Waiters queue on the lock so tokens are handed out in arrival order
        async with self._lock:
            while True:
                self._refill()
                if self._tokens >= 1:
                    self._tokens -= 1
                    return
                delay = (1 - self._tokens) * self.every
                logger.debug(f"Rate limit reached for {self.name}, waiting {delay:.2f}s")
                await asyncio.sleep(delay)

    async def __aenter__(self) -> "AsyncRateLimiter":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False
