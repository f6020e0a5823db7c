# rate_limit.py
import asyncio
import os
import time


def _env_float(name, default):
    try:
        return float(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


class TokenBucket:
    """Asynchronous token bucket shared by every exchange write.

    The bucket holds up to ``capacity`` tokens and regains
    ``refill_per_sec`` tokens each second.  :meth:`acquire` takes tokens,
    sleeping until enough have accumulated.  Waiters are served in arrival
    order because acquisition happens under a lock.
    """

    def __init__(self, capacity: float, refill_per_sec: float):
        if capacity <= 0 or refill_per_sec <= 0:
            raise ValueError("capacity and refill_per_sec must be positive")
        self.capacity = capacity
        self.tokens = float(capacity)
        self.refill_per_sec = refill_per_sec
        self._lock = asyncio.Lock()
        self._last = time.monotonic()

    def _refill(self) -> None:
        now = time.monotonic()
        self.tokens = min(self.capacity, self.tokens + (now - self._last) * self.refill_per_sec)
        self._last = now

    async def acquire(self, n: float = 1) -> None:
        if n > self.capacity:
            raise ValueError("cannot acquire more tokens than the bucket holds")
        async with self._lock:
            while True:
                self._refill()
                if self.tokens >= n:
                    self.tokens -= n
                    return
                await asyncio.sleep(max((n - self.tokens) / self.refill_per_sec, 0.005))


def build_rate_limiter() -> TokenBucket:
    """Create the bucket from ``GRID_RATE_LIMIT_RPS`` / ``GRID_RATE_LIMIT_BURST``.

    Defaults to 8 requests per second with a burst of twice that.
    """
    rps = _env_float("GRID_RATE_LIMIT_RPS", 8)
    burst = _env_float("GRID_RATE_LIMIT_BURST", rps * 2)
    return TokenBucket(capacity=burst, refill_per_sec=rps)
