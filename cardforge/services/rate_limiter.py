"""
Token Bucket: Request Rate Admission Control.

Bounds how FAST requests are issued against the upstream API. It does not
bound how many jobs run at once; that is the orchestrator's semaphore.

The sliding-window accounting is pyrate-limiter's in-memory bucket. This
module adds asyncio waiting and arrival-order fairness on top of it.

INVARIANTS:
- No caller is granted a token while the bucket is full
- Waiters are served strictly in arrival order (no starvation)
- With capacity 1, grants are spaced at least 1/rate seconds apart, so no
  1-second window ever holds more than `rate` grants
"""

import asyncio
import logging
import math

from pyrate_limiter import Duration, Limiter, Rate
from pyrate_limiter.buckets import InMemoryBucket

logger = logging.getLogger(__name__)

# Longest single sleep between non-blocking acquisition attempts
MAX_POLL_SECONDS = 0.025

BUCKET_NAME = "cardforge"


class TokenBucket:
    """
    Asyncio token bucket shared by every request the fetcher issues.

    Admits `capacity` grants per window of `capacity / rate` seconds.
    A capacity above 1 allows bursts of that size after idle periods,
    trading the sliding-window guarantee for throughput.

    Windows are tracked in whole milliseconds, so rates above 1000 per
    second behave like 1000 per second at capacity 1.
    """

    def __init__(self, rate: float, capacity: int = 1) -> None:
        if rate <= 0:
            raise ValueError(f"Rate must be positive, got {rate}")
        if capacity < 1:
            raise ValueError(f"Capacity must be at least 1, got {capacity}")

        self.rate = rate
        self.capacity = capacity
        self.granted = 0

        interval_ms = max(1, math.ceil(int(Duration.SECOND) * capacity / rate))
        self._poll = min(MAX_POLL_SECONDS, interval_ms / int(Duration.SECOND) / 4)
        self._limiter = Limiter(
            InMemoryBucket([Rate(capacity, interval_ms)]),
            raise_when_fail=False,
            max_delay=None,
        )
        # asyncio.Lock wakes waiters in FIFO order
        self._lock = asyncio.Lock()

    async def acquire(self) -> float:
        """
        Wait until the window has room and take a token.

        Returns:
            Event loop time at which the token was granted.
        """
        loop = asyncio.get_running_loop()
        async with self._lock:
            waited = False
            while not self._limiter.try_acquire(BUCKET_NAME, weight=1):
                if not waited:
                    logger.debug("RATE_LIMIT_WAIT", extra={"rate": self.rate})
                    waited = True
                await asyncio.sleep(self._poll)

            self.granted += 1
            return loop.time()
