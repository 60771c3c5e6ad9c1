"""
Single-flight coordination for async producers.

When several coroutines ask for the same key while a computation for it
is already running, they all attach to that computation instead of
starting their own. Exactly one upstream call is made per key at a time.

The shared computation runs as its own task and callers await it through
asyncio.shield, so a caller that gets cancelled (client disconnect,
request timeout) never cancels the work other callers are waiting on.
"""

import asyncio
import fnmatch
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional


logger = logging.getLogger(__name__)


@dataclass
class InFlightRequest:
    """Tracks an in-progress computation for one key."""
    key: str
    task: asyncio.Task
    started_at: float = field(default_factory=time.monotonic)
    waiter_count: int = 1


class SingleFlight:
    """
    Per-key request coalescer.

    Usage:
        flight = SingleFlight()
        value = await flight.do("pool:analytics:STX-USDCx", compute)

    Check-and-register happens without an await in between, which makes it
    atomic on the event loop. The entry is removed as soon as the task
    finishes, success or failure, so the next caller starts fresh.
    """

    def __init__(self):
        self._in_flight: Dict[str, InFlightRequest] = {}
        self._started = 0
        self._coalesced = 0

    async def do(self, key: str, fn: Callable[[], Awaitable[Any]]) -> Any:
        """
        Join the running computation for key or start one.

        Every caller receives the same result, or the same exception if the
        computation fails.
        """
        in_flight = self._in_flight.get(key)
        if in_flight is not None:
            in_flight.waiter_count += 1
            self._coalesced += 1
            logger.debug(
                f"Coalescing request for {key} "
                f"(waiters: {in_flight.waiter_count})"
            )
        else:
            task = asyncio.ensure_future(fn())
            in_flight = InFlightRequest(key=key, task=task)
            self._in_flight[key] = in_flight
            self._started += 1
            task.add_done_callback(lambda t, k=key: self._finished(k, t))

        return await asyncio.shield(in_flight.task)

    def _finished(self, key: str, task: asyncio.Task):
        current = self._in_flight.get(key)
        if current is not None and current.task is task:
            del self._in_flight[key]
            elapsed = time.monotonic() - current.started_at
            logger.debug(
                f"Flight for {key} finished in {elapsed * 1000:.1f}ms "
                f"({current.waiter_count} callers)"
            )
        if not task.cancelled() and task.exception() is not None:
            # Marks the exception retrieved even if every caller went away
            logger.debug(f"Flight for {key} failed: {task.exception()!r}")

    def is_current(self, key: str, task: Optional[asyncio.Task]) -> bool:
        """True while `task` is still the registered computation for key."""
        current = self._in_flight.get(key)
        return current is not None and current.task is task

    def forget(self, key: str) -> bool:
        """
        Detach the running computation for key.

        Callers already attached still get its result; new callers start a
        new computation.
        """
        return self._in_flight.pop(key, None) is not None

    def forget_pattern(self, pattern: str) -> int:
        matched = [k for k in self._in_flight if fnmatch.fnmatchcase(k, pattern)]
        for k in matched:
            del self._in_flight[k]
        return len(matched)

    def forget_all(self) -> int:
        count = len(self._in_flight)
        self._in_flight.clear()
        return count

    def active_keys(self) -> list:
        return list(self._in_flight)

    def __len__(self) -> int:
        return len(self._in_flight)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "in_flight": len(self._in_flight),
            "flights_started": self._started,
            "requests_coalesced": self._coalesced,
        }
