"""
In-process remote data source.

Behaves like the managed store at its boundary: assigns ids and
timestamps, filters and orders lists, and pushes change events to
subscribers. Used for local development and in tests, where failures and
latency can be injected.
"""
import asyncio
import copy
import itertools
import logging
import time
from collections import Counter, defaultdict, deque
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Deque, Dict, List, Optional, Tuple

from community_hub.errors import NotFoundError
from community_hub.sync.models import EventKind, RealtimeEvent

from .base import matches_filters, sort_rows

logger = logging.getLogger("remote.memory")

Subscription = Tuple[Optional[Dict[str, Any]], "asyncio.Queue[Optional[RealtimeEvent]]"]


class InMemoryRemoteSource:
    """
    Dict-backed collections with realtime fan-out.

    Every change gets the next value of one global sequence, used as both
    event id and per-entity version.
    """

    def __init__(self, latency: float = 0.0, clock: Callable[[], float] = time.time):
        """
        Args:
            latency: Seconds each call sleeps before answering
            clock: Epoch-seconds source for created_at/updated_at
        """
        self.latency = latency
        self._clock = clock
        self._tables: Dict[str, Dict[str, Dict[str, Any]]] = defaultdict(dict)
        self._subscribers: Dict[str, List[Subscription]] = defaultdict(list)
        self._failures: Dict[str, Deque[Exception]] = defaultdict(deque)
        self._sequence = itertools.count(1)
        self._ids = itertools.count(1)
        self._last_timestamp = 0.0
        self.calls: Counter = Counter()

    # ------------------------------------------------------------------
    # Test and dev helpers
    # ------------------------------------------------------------------

    def seed(self, collection: str, rows: List[Dict[str, Any]]) -> List[str]:
        """Insert rows without publishing events; returns their ids."""
        ids = []
        for row in rows:
            entity_id = str(row["id"]) if row.get("id") is not None else self._next_id(collection)
            stamp = self._timestamp()
            self._tables[collection][entity_id] = {
                "created_at": stamp,
                "updated_at": stamp,
                **copy.deepcopy(row),
                "id": entity_id,
            }
            ids.append(entity_id)
        return ids

    def fail_next(self, operation: str, error: Exception) -> None:
        """Make the next call of operation ("list", "create", ...) raise error."""
        self._failures[operation].append(error)

    def rows(self, collection: str) -> List[Dict[str, Any]]:
        return copy.deepcopy(list(self._tables[collection].values()))

    def disconnect(self, collection: Optional[str] = None) -> None:
        """End every subscription stream (of one collection, or all)."""
        names = [collection] if collection else list(self._subscribers)
        for name in names:
            for _, queue in self._subscribers.get(name, []):
                queue.put_nowait(None)

    def subscriber_count(self, collection: str) -> int:
        return len(self._subscribers.get(collection, []))

    # ------------------------------------------------------------------
    # RemoteDataSource
    # ------------------------------------------------------------------

    async def list(
        self,
        collection: str,
        filters: Optional[Dict[str, Any]] = None,
        order: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        await self._enter("list")
        rows = [r for r in self._tables[collection].values() if matches_filters(r, filters)]
        return copy.deepcopy(sort_rows(rows, order))

    async def get_by_id(self, collection: str, entity_id: str) -> Optional[Dict[str, Any]]:
        await self._enter("get_by_id")
        row = self._tables[collection].get(str(entity_id))
        return copy.deepcopy(row) if row is not None else None

    async def create(self, collection: str, payload: Dict[str, Any]) -> str:
        await self._enter("create")
        entity_id = self._next_id(collection)
        stamp = self._timestamp()
        row = {
            **copy.deepcopy(payload),
            "id": entity_id,
            "created_at": stamp,
            "updated_at": stamp,
        }
        self._tables[collection][entity_id] = row
        self._publish(collection, EventKind.INSERTED, row)
        return entity_id

    async def update(self, collection: str, entity_id: str, patch: Dict[str, Any]) -> None:
        await self._enter("update")
        row = self._require(collection, entity_id)
        row.update(copy.deepcopy(patch))
        row["updated_at"] = self._timestamp()
        self._publish(collection, EventKind.UPDATED, row)

    async def delete(self, collection: str, entity_id: str) -> None:
        await self._enter("delete")
        row = self._require(collection, entity_id)
        del self._tables[collection][str(entity_id)]
        self._publish(collection, EventKind.DELETED, row)

    def subscribe(
        self,
        collection: str,
        filters: Optional[Dict[str, Any]] = None,
    ) -> AsyncIterator[RealtimeEvent]:
        # Registered now, not on first iteration, so no event slips past
        queue: "asyncio.Queue[Optional[RealtimeEvent]]" = asyncio.Queue()
        subscription = (filters, queue)
        self._subscribers[collection].append(subscription)
        logger.debug(f"Subscribed to {collection} (filters={filters})")
        return self._stream(collection, subscription)

    async def _stream(self, collection: str, subscription: Subscription) -> AsyncIterator[RealtimeEvent]:
        _, queue = subscription
        try:
            while True:
                event = await queue.get()
                if event is None:
                    return
                yield event
        finally:
            self._subscribers[collection].remove(subscription)
            logger.debug(f"Unsubscribed from {collection}")

    # ------------------------------------------------------------------

    async def _enter(self, operation: str) -> None:
        self.calls[operation] += 1
        if self.latency:
            await asyncio.sleep(self.latency)
        else:
            await asyncio.sleep(0)
        if self._failures[operation]:
            raise self._failures[operation].popleft()

    def _next_id(self, collection: str) -> str:
        entity_id = str(next(self._ids))
        while entity_id in self._tables[collection]:
            entity_id = str(next(self._ids))
        return entity_id

    def _require(self, collection: str, entity_id: str) -> Dict[str, Any]:
        row = self._tables[collection].get(str(entity_id))
        if row is None:
            raise NotFoundError(f"{collection}/{entity_id} not found")
        return row

    def _publish(self, collection: str, kind: EventKind, row: Dict[str, Any]) -> None:
        sequence = next(self._sequence)
        for filters, queue in list(self._subscribers.get(collection, [])):
            if not matches_filters(row, filters):
                continue
            queue.put_nowait(RealtimeEvent(
                kind=kind,
                collection=collection,
                entity_id=str(row["id"]),
                entity=copy.deepcopy(row) if kind is not EventKind.DELETED else None,
                event_id=str(sequence),
                version=sequence,
            ))

    def _timestamp(self) -> str:
        # Strictly increasing so created_at ordering is stable
        now = max(self._clock(), self._last_timestamp + 0.000001)
        self._last_timestamp = now
        return datetime.fromtimestamp(now, tz=timezone.utc).isoformat()
