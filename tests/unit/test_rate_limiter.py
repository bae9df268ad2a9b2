"""
Unit tests for rate limiter module.

Tests the token bucket algorithm, burst sizing for Certificate applies
and concurrent access patterns.
"""

import asyncio
import time

import pytest

from contour_plus_operator.utils.rate_limiter import TokenBucket


class TestTokenBucket:
    """Test token bucket implementation."""

    @pytest.mark.asyncio
    async def test_token_bucket_initialization(self):
        """Test token bucket initializes with correct capacity."""
        bucket = TokenBucket(rate=10.0, capacity=20)

        assert bucket.rate == 10.0
        assert bucket.capacity == 20
        assert bucket.tokens == 20  # Starts full

    @pytest.mark.asyncio
    async def test_token_bucket_acquire_single(self):
        """Test acquiring a single token."""
        bucket = TokenBucket(rate=10.0, capacity=20)

        # Should succeed immediately
        result = await bucket.acquire(timeout=1.0)
        assert result is True
        assert bucket.tokens == 19  # One token consumed

    @pytest.mark.asyncio
    async def test_token_bucket_acquire_depletes_tokens(self):
        """Test that acquiring tokens depletes the bucket."""
        bucket = TokenBucket(rate=10.0, capacity=5)

        # Acquire all tokens
        for i in range(5):
            result = await bucket.acquire(timeout=0.1)
            assert result is True
            # Tokens may refill slightly between iterations due to timing
            assert bucket.tokens < 5 - i

        # Bucket should be nearly empty (allow for tiny refill)
        assert bucket.tokens < 0.1

    @pytest.mark.asyncio
    async def test_token_bucket_refill(self):
        """Test that tokens refill over time."""
        bucket = TokenBucket(rate=10.0, capacity=10)  # 10 tokens/second

        # Consume some tokens but not all
        for _ in range(5):
            result = await bucket.acquire(timeout=0.1)
            assert result is True

        # Check available tokens method
        available_before = bucket.available_tokens()

        # Wait for refill (200ms = 2 tokens at 10/s)
        await asyncio.sleep(0.25)

        # Check available tokens after wait
        available_after = bucket.available_tokens()

        # Should have gained at least 2 tokens
        tokens_gained = available_after - available_before
        assert tokens_gained >= 1.5, (
            f"Expected >= 1.5 tokens gained, got {tokens_gained}"
        )

    @pytest.mark.asyncio
    async def test_token_bucket_timeout(self):
        """Test that acquire times out when no tokens available."""
        bucket = TokenBucket(rate=1.0, capacity=1)  # Very slow refill

        # Acquire the only token
        await bucket.acquire(timeout=0.1)
        assert bucket.tokens == 0

        # Second acquire should timeout
        start_time = time.monotonic()
        result = await bucket.acquire(timeout=0.2)
        elapsed = time.monotonic() - start_time

        assert result is False
        assert elapsed >= 0.19  # Should wait full timeout
        assert elapsed <= 0.3  # Allow some overhead

    @pytest.mark.asyncio
    async def test_token_bucket_burst_capacity(self):
        """Test that tokens don't exceed burst capacity."""
        bucket = TokenBucket(rate=100.0, capacity=10)

        # Wait for potential overflow
        await asyncio.sleep(0.2)  # Would generate 20 tokens without cap

        # Tokens should be capped at burst
        assert bucket.tokens <= 10

    @pytest.mark.asyncio
    async def test_token_bucket_concurrent_access(self):
        """Test concurrent token acquisition."""
        bucket = TokenBucket(rate=10.0, capacity=20)

        results = []

        async def acquire_token():
            result = await bucket.acquire(timeout=1.0)
            results.append(result)

        # Launch 20 concurrent acquisitions (exactly burst capacity)
        tasks = [acquire_token() for _ in range(20)]
        await asyncio.gather(*tasks)

        # All should succeed
        assert all(results)
        assert len(results) == 20
        # Bucket should be nearly empty (allow for tiny refill during execution)
        assert bucket.tokens < 0.5

    @pytest.mark.asyncio
    async def test_token_bucket_concurrent_timeout(self):
        """Test concurrent access beyond capacity."""
        bucket = TokenBucket(rate=1.0, capacity=5)

        results = []

        async def acquire_token():
            result = await bucket.acquire(timeout=0.1)
            results.append(result)

        # Try to acquire 10 tokens but only 5 available
        tasks = [acquire_token() for _ in range(10)]
        await asyncio.gather(*tasks)

        # First 5 should succeed, rest should timeout
        successful = sum(1 for r in results if r)
        failed = sum(1 for r in results if not r)

        assert successful == 5
        assert failed == 5

    def test_token_bucket_rejects_invalid_parameters(self):
        """Test that a non-positive rate or an empty bucket is rejected."""
        with pytest.raises(ValueError):
            TokenBucket(rate=0.0, capacity=1)
        with pytest.raises(ValueError):
            TokenBucket(rate=1.0, capacity=0)


class TestTokenBucketForRate:
    """Test bucket sizing from a configured apply rate."""

    @pytest.mark.parametrize(
        "rate,capacity",
        [(0.1, 1), (1.0, 1), (2.5, 3), (10.0, 10)],
    )
    def test_burst_is_rate_rounded_up(self, rate, capacity):
        """Test that the burst is the rate rounded up, and at least one."""
        bucket = TokenBucket.for_rate(rate)

        assert bucket.rate == rate
        assert bucket.capacity == capacity
        assert bucket.tokens == capacity

    @pytest.mark.asyncio
    async def test_fractional_rate_spaces_acquisitions(self):
        """Test that a sub-second rate admits one token and then waits."""
        bucket = TokenBucket.for_rate(0.5)

        assert await bucket.acquire(timeout=0.1) is True
        assert await bucket.acquire(timeout=0.1) is False
