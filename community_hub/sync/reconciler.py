"""
Realtime event reconciler.

Folds server-pushed inserted/updated/deleted events into the same
CollectionView the coordinator mutates:

- An inserted event carrying the correlation attribute of a pending create
  replaces that temp row instead of adding a second one.
- Updated/deleted events for an entity with a pending optimistic mutation
  wait in a per-entity queue until the mutation resolves, then apply in
  arrival order (after any rollback).
- Events are delivered at least once; repeats are dropped by event id and
  by per-entity version.
"""
import logging
from collections import OrderedDict, defaultdict, deque
from typing import Any, AsyncIterator, Deque, Dict, Optional
from enum import Enum

from community_hub.cache import TTLCacheStore, key_for, list_prefix
from community_hub.errors import RemoteError

from .collection import CollectionView
from .coordinator import OptimisticCoordinator
from .models import EventKind, OptimisticRecord, RealtimeEvent

logger = logging.getLogger("sync.reconciler")


class Outcome(Enum):
    """What happened to one incoming event."""
    APPLIED = "applied"      # Changed the view directly
    MERGED = "merged"        # Replaced a pending optimistic row
    QUEUED = "queued"        # Waiting for a pending mutation to resolve
    DUPLICATE = "duplicate"  # Already seen, or older than what is applied
    IGNORED = "ignored"      # Nothing to change (entity not in view)


class RealtimeReconciler:
    """
    Applies realtime events for one collection.

    Usage:
        reconciler = RealtimeReconciler(view, coordinator, store)
        task = asyncio.create_task(
            reconciler.consume(remote.subscribe("marketplace_listings"))
        )
    """

    def __init__(
        self,
        view: CollectionView,
        coordinator: OptimisticCoordinator,
        store: Optional[TTLCacheStore] = None,
        dedupe_capacity: int = 1024,
    ):
        """
        Args:
            view: CollectionView shared with the coordinator
            coordinator: Source of pending-mutation and identity information
            store: Cache store whose keys are invalidated when events apply
            dedupe_capacity: How many recent event ids are remembered
        """
        self.view = view
        self.coordinator = coordinator
        self.store = store
        self._dedupe_capacity = dedupe_capacity

        self._queues: Dict[str, Deque[RealtimeEvent]] = defaultdict(deque)
        self._versions: Dict[str, Any] = {}
        self._seen_event_ids: "OrderedDict[str, None]" = OrderedDict()

        self._stats = {outcome.value: 0 for outcome in Outcome}

        coordinator.add_resolution_listener(self._on_resolved)

    @property
    def collection(self) -> str:
        return self.coordinator.collection

    # ------------------------------------------------------------------

    def apply(self, event: RealtimeEvent) -> Outcome:
        """Fold one event into the view."""
        if self._seen(event):
            return self._count(Outcome.DUPLICATE)

        if self._must_wait(event):
            self._queues[event.entity_id].append(event)
            logger.debug(
                f"Queued {event.kind.value} for {event.entity_id} on {self.collection} "
                f"(pending optimistic write)"
            )
            return self._count(Outcome.QUEUED)

        return self._count(self._apply_now(event))

    async def consume(self, stream: AsyncIterator[RealtimeEvent]) -> None:
        """
        Apply events from a subscription until it ends.

        A broken stream is logged, not raised: reads keep working through
        the TTL/refresh path until a new subscription is started.
        """
        try:
            async for event in stream:
                self.apply(event)
        except RemoteError as e:
            logger.warning(f"Realtime stream for {self.collection} ended: {e}")
        except Exception as e:
            logger.error(f"Realtime stream for {self.collection} failed: {e}", exc_info=True)

    def queued_count(self, entity_id: Optional[str] = None) -> int:
        if entity_id is not None:
            return len(self._queues.get(entity_id, ()))
        return sum(len(q) for q in self._queues.values())

    def get_stats(self) -> Dict[str, Any]:
        """Get reconciler statistics."""
        return {
            "collection": self.collection,
            "queued_now": self.queued_count(),
            **self._stats,
        }

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def _must_wait(self, event: RealtimeEvent) -> bool:
        if event.kind is EventKind.INSERTED:
            # Inserts matching a pending create are merged, not queued
            if event.entity and self.coordinator.pending_create_for(event.entity):
                return False
            return self.coordinator.has_pending(event.entity_id)
        if self.coordinator.has_pending(event.entity_id):
            return True
        # Unknown id while a create is unresolved: it may be that create's real id
        return event.entity_id not in self.view and self.coordinator.has_unresolved_creates()

    def _apply_now(self, event: RealtimeEvent) -> Outcome:
        if self._is_stale(event):
            return Outcome.DUPLICATE

        if event.kind is EventKind.INSERTED:
            outcome = self._apply_insert(event)
        elif event.kind is EventKind.UPDATED:
            outcome = self._apply_update(event)
        else:
            outcome = self._apply_delete(event)

        if event.version is not None:
            self._versions[event.entity_id] = event.version
        if outcome is not Outcome.IGNORED:
            self._invalidate(event.entity_id)
        return outcome

    def _apply_insert(self, event: RealtimeEvent) -> Outcome:
        entity = dict(event.entity or {})
        entity.setdefault(self.view.id_field, event.entity_id)

        record = self.coordinator.pending_create_for(entity)
        if record is not None:
            index = self.view.index_of(record.row_id)
            self.coordinator.resolve_real_id(record, event.entity_id)
            if index is not None:
                self.view.replace_at(index, entity)
                logger.debug(f"Merged own insert {record.temp_id} -> {event.entity_id}")
                return Outcome.MERGED

        index = self.view.index_of(event.entity_id)
        if index is not None:
            # Already present (echo of a confirmed create, or redelivery)
            self.view.replace_at(index, entity)
            return Outcome.APPLIED

        if self.coordinator.insert_at_front:
            self.view.prepend(entity)
        else:
            self.view.append(entity)
        return Outcome.APPLIED

    def _apply_update(self, event: RealtimeEvent) -> Outcome:
        index = self.view.index_of(event.entity_id)
        if index is None:
            return Outcome.IGNORED
        self.view.patch_at(index, event.entity or {})
        return Outcome.APPLIED

    def _apply_delete(self, event: RealtimeEvent) -> Outcome:
        if self.view.remove(event.entity_id) is None:
            return Outcome.IGNORED
        return Outcome.APPLIED

    # ------------------------------------------------------------------
    # Queue drain
    # ------------------------------------------------------------------

    def _on_resolved(self, record: OptimisticRecord) -> None:
        """Apply held-back events for every entity that has nothing pending any more."""
        for entity_id in list(self._queues):
            if self.coordinator.has_pending(entity_id):
                continue
            if entity_id not in self.view and self.coordinator.has_unresolved_creates():
                continue
            queue = self._queues.pop(entity_id)
            logger.debug(
                f"Draining {len(queue)} queued events for {entity_id} after "
                f"{record.kind.value} {record.row_id} {record.state.value}"
            )
            while queue:
                self._count(self._apply_now(queue.popleft()))

    # ------------------------------------------------------------------
    # Deduplication
    # ------------------------------------------------------------------

    def _seen(self, event: RealtimeEvent) -> bool:
        if event.event_id is None:
            return False
        if event.event_id in self._seen_event_ids:
            return True
        self._seen_event_ids[event.event_id] = None
        if len(self._seen_event_ids) > self._dedupe_capacity:
            self._seen_event_ids.popitem(last=False)
        return False

    def _is_stale(self, event: RealtimeEvent) -> bool:
        if event.version is None:
            return False
        last = self._versions.get(event.entity_id)
        return last is not None and event.version <= last

    def _invalidate(self, entity_id: str) -> None:
        if self.store is None:
            return
        self.store.remove(key_for(self.collection, entity_id))
        self.store.remove_by_prefix(list_prefix(self.collection))

    def _count(self, outcome: Outcome) -> Outcome:
        self._stats[outcome.value] += 1
        return outcome
