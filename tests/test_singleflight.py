"""
Tests for single-flight request coalescing.
"""

import asyncio

import pytest

from velumx.cache.memory_cache import InMemoryCache
from velumx.cache.read_through import ReadThroughCache
from velumx.cache.singleflight import SingleFlight


# =============================================================================
# COALESCING
# =============================================================================

class TestCoalescing:
    """Test that concurrent callers share one computation."""

    @pytest.mark.asyncio
    async def test_concurrent_misses_call_producer_once(self):
        """Ten simultaneous misses for one key produce exactly once."""
        cache = ReadThroughCache(InMemoryCache())
        calls = 0

        async def slow_producer():
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.2)
            return {"tvl": 5_000_000}

        results = await asyncio.gather(*(
            cache.with_cache("pool:analytics:STX-USDCx", slow_producer, ttl=300)
            for _ in range(10)
        ))

        assert calls == 1
        assert all(r == {"tvl": 5_000_000} for r in results)
        assert cache.get_stats()["single_flight"]["requests_coalesced"] == 9

    @pytest.mark.asyncio
    async def test_different_keys_run_independently(self):
        """Coalescing is per key."""
        flight = SingleFlight()
        calls = []

        async def produce(key):
            calls.append(key)
            await asyncio.sleep(0.01)
            return key

        results = await asyncio.gather(
            flight.do("a", lambda: produce("a")),
            flight.do("b", lambda: produce("b")),
            flight.do("a", lambda: produce("a")),
        )

        assert results == ["a", "b", "a"]
        assert sorted(calls) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_entry_removed_after_completion(self):
        """Once finished, the next call starts a fresh computation."""
        flight = SingleFlight()
        calls = 0

        async def produce():
            nonlocal calls
            calls += 1
            return calls

        assert await flight.do("k", produce) == 1
        await asyncio.sleep(0)
        assert len(flight) == 0
        assert await flight.do("k", produce) == 2


# =============================================================================
# FAILURES AND CANCELLATION
# =============================================================================

class TestFailures:
    """Test error sharing and cancellation isolation."""

    @pytest.mark.asyncio
    async def test_error_delivered_to_every_waiter(self):
        """All callers of a failed computation see the same exception."""
        flight = SingleFlight()
        error = RuntimeError("chain unreachable")

        async def failing():
            await asyncio.sleep(0.05)
            raise error

        results = await asyncio.gather(
            *(flight.do("k", failing) for _ in range(5)),
            return_exceptions=True,
        )

        assert all(r is error for r in results)
        await asyncio.sleep(0)
        assert len(flight) == 0

    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_cancel_others(self):
        """Cancelling one waiter leaves the shared computation running."""
        flight = SingleFlight()
        release = asyncio.Event()

        async def produce():
            await release.wait()
            return "done"

        first = asyncio.create_task(flight.do("k", produce))
        second = asyncio.create_task(flight.do("k", produce))
        await asyncio.sleep(0)

        first.cancel()
        with pytest.raises(asyncio.CancelledError):
            await first

        release.set()
        assert await second == "done"

    @pytest.mark.asyncio
    async def test_forget_detaches_running_computation(self):
        """After forget() a new caller does not join the old computation."""
        flight = SingleFlight()
        release = asyncio.Event()

        async def old():
            await release.wait()
            return "old"

        async def new():
            return "new"

        pending = asyncio.create_task(flight.do("k", old))
        await asyncio.sleep(0)

        assert flight.forget("k") is True
        assert await flight.do("k", new) == "new"

        release.set()
        assert await pending == "old"

    @pytest.mark.asyncio
    async def test_forget_pattern_matches_globs(self):
        """forget_pattern() only detaches matching keys."""
        flight = SingleFlight()
        release = asyncio.Event()

        async def wait():
            await release.wait()

        tasks = [
            asyncio.create_task(flight.do(key, wait))
            for key in ("user:positions:A", "user:portfolio:A", "pool:list")
        ]
        await asyncio.sleep(0)

        assert flight.forget_pattern("user:*:A") == 2
        assert flight.active_keys() == ["pool:list"]

        release.set()
        await asyncio.gather(*tasks)
