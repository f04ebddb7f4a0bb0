"""
Request coalescing to prevent duplicate remote calls.

When several reads need the same key while a fetch for it is outstanding,
only one remote call is made and every requester shares its result.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict

logger = logging.getLogger("cache.coalescer")


@dataclass
class InFlightRequest:
    """Tracks an in-progress remote fetch."""
    task: "asyncio.Future[Any]"
    started_at: float = field(default_factory=time.time)
    waiter_count: int = 0


class RequestCoalescer:
    """
    Ensures concurrent requests for the same cache key share one remote call.

    Pattern:
    - First request for a key starts the fetch as a task and records it
    - Later requests for the same key join the recorded task
    - The record is dropped when the task finishes, success or failure

    Everything runs on one event loop, so the in-flight map is only touched
    between suspension points and needs no lock.

    Usage:
        coalescer = RequestCoalescer()
        result = await coalescer.get_or_fetch(
            cache_key="marketplace_listings:list:all",
            fetch_fn=lambda: remote.list("marketplace_listings"),
        )
    """

    def __init__(self, timeout: float = 30.0):
        """
        Args:
            timeout: Max seconds to wait for an in-flight request
        """
        self._in_flight: Dict[str, InFlightRequest] = {}
        self._timeout = timeout

    def start(
        self,
        cache_key: str,
        fetch_fn: Callable[[], Awaitable[Any]],
    ) -> "asyncio.Future[Any]":
        """
        Join the in-flight fetch for a key, or launch one.

        Returns:
            The task producing the result (shared among all callers)
        """
        in_flight = self._in_flight.get(cache_key)
        if in_flight is not None:
            in_flight.waiter_count += 1
            logger.debug(
                f"Coalescing request for {cache_key} "
                f"(waiters: {in_flight.waiter_count})"
            )
            return in_flight.task

        logger.debug(f"Initiating fetch for {cache_key}")
        task = asyncio.ensure_future(fetch_fn())
        self._in_flight[cache_key] = InFlightRequest(task=task)
        task.add_done_callback(lambda done, key=cache_key: self._finish(key, done))
        return task

    async def get_or_fetch(
        self,
        cache_key: str,
        fetch_fn: Callable[[], Awaitable[Any]],
    ) -> Any:
        """
        Either join an existing in-flight request or initiate a new one.

        Raises:
            TimeoutError: If waiting for the in-flight request times out
            Exception: Any error from fetch_fn is propagated
        """
        task = self.start(cache_key, fetch_fn)
        try:
            # shield: one waiter timing out must not cancel the shared fetch
            return await asyncio.wait_for(asyncio.shield(task), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.error(f"Timeout waiting for coalesced request: {cache_key}")
            raise TimeoutError(f"Request for {cache_key} timed out after {self._timeout}s")

    def is_in_flight(self, cache_key: str) -> bool:
        return cache_key in self._in_flight

    def _finish(self, cache_key: str, task: "asyncio.Future[Any]") -> None:
        in_flight = self._in_flight.get(cache_key)
        if in_flight is not None and in_flight.task is task:
            del self._in_flight[cache_key]
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"Fetch failed for {cache_key}: {task.exception()}")

    @property
    def active_requests(self) -> int:
        """Number of currently in-flight requests."""
        return len(self._in_flight)

    def get_stats(self) -> Dict[str, Any]:
        """Get coalescer statistics."""
        return {
            "active_requests": len(self._in_flight),
            "active_keys": list(self._in_flight.keys()),
        }
