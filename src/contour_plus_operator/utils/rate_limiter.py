"""
Rate limiting for Certificate applies.

A single process-wide token bucket bounds how fast Certificates that would
be created or re-issued are sent to the API server. cert-manager turns each
of those applies into an ACME order, so the bucket protects the issuer's
quota when many HTTPProxies change at once (for example on startup).
"""

import asyncio
import math
import time
from dataclasses import dataclass, field


@dataclass
class TokenBucket:
    """
    Async token bucket implementation for rate limiting.

    Uses the token bucket algorithm with continuous token refill.
    Safe for concurrent use via an asyncio lock.
    """

    rate: float  # tokens per second
    capacity: int  # maximum burst capacity
    tokens: float = field(init=False)
    last_update: float = field(init=False)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def __post_init__(self):
        if self.rate <= 0:
            raise ValueError("rate must be positive")
        if self.capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.tokens = float(self.capacity)
        self.last_update = time.monotonic()

    @classmethod
    def for_rate(cls, rate: float) -> "TokenBucket":
        """Bucket whose burst is the rate rounded up, and at least one."""
        return cls(rate=rate, capacity=max(math.ceil(rate), 1))

    async def acquire(self, timeout: float | None = None) -> bool:
        """
        Acquire a token, waiting if necessary.

        Args:
            timeout: Maximum time to wait for token (seconds). None = wait forever.

        Returns:
            True if token acquired, False if timeout reached
        """
        start_time = time.monotonic()

        async with self.lock:
            while True:
                now = time.monotonic()
                elapsed = now - self.last_update

                self.tokens = min(self.capacity, self.tokens + elapsed * self.rate)
                self.last_update = now

                if self.tokens >= 1.0:
                    self.tokens -= 1.0
                    return True

                wait_time = (1.0 - self.tokens) / self.rate

                if timeout is not None:
                    remaining = timeout - (time.monotonic() - start_time)
                    if remaining <= 0:
                        return False
                    wait_time = min(wait_time, remaining)

                await asyncio.sleep(wait_time)

    def available_tokens(self) -> float:
        """Get current number of available tokens (not synchronized)."""
        now = time.monotonic()
        elapsed = now - self.last_update
        return min(self.capacity, self.tokens + elapsed * self.rate)
