"""
Tests for folding realtime events into a view shared with the coordinator.
"""
import asyncio

import pytest

from community_hub.cache import key_for
from community_hub.errors import NetworkError
from community_hub.sync import (
    CollectionView,
    EventKind,
    OptimisticCoordinator,
    Outcome,
    RealtimeEvent,
    RealtimeReconciler,
    TEMP_ID_PREFIX,
)

from conftest import settle

COLLECTION = "posts"

POSTS = [
    {"id": "1", "content": "first", "has_liked": False, "likes_count": 2},
    {"id": "2", "content": "second", "has_liked": False, "likes_count": 0},
]


@pytest.fixture
def setup(slow_remote, store):
    slow_remote.seed(COLLECTION, POSTS)
    view = CollectionView(COLLECTION)
    view.reset(POSTS)
    coordinator = OptimisticCoordinator(COLLECTION, view, store, slow_remote)
    reconciler = RealtimeReconciler(view, coordinator, store)
    return view, coordinator, reconciler, slow_remote


def event(kind, entity_id, event_id, version, **fields):
    entity = {"id": entity_id, **fields} if kind is not EventKind.DELETED else None
    return RealtimeEvent(
        kind=kind,
        collection=COLLECTION,
        entity_id=entity_id,
        entity=entity,
        event_id=event_id,
        version=version,
    )


async def failing_after(delay=0.01):
    await asyncio.sleep(delay)
    raise NetworkError("offline")


# =============================================================================
# Direct application
# =============================================================================

class TestApply:

    def test_insert_of_unknown_entity_is_added(self, setup):
        view, _, reconciler, _ = setup
        outcome = reconciler.apply(event(EventKind.INSERTED, "9", "e1", 1, content="new"))
        assert outcome is Outcome.APPLIED
        assert view.ids() == ["9", "1", "2"]

    def test_update_patches_row(self, setup):
        view, _, reconciler, _ = setup
        reconciler.apply(event(EventKind.UPDATED, "1", "e1", 1, likes_count=7))
        assert view.get("1")["likes_count"] == 7
        assert view.get("1")["content"] == "first"

    def test_update_of_absent_entity_is_ignored(self, setup):
        view, _, reconciler, _ = setup
        assert reconciler.apply(event(EventKind.UPDATED, "404", "e1", 1)) is Outcome.IGNORED
        assert view.ids() == ["1", "2"]

    def test_delete_removes_row(self, setup):
        view, _, reconciler, _ = setup
        assert reconciler.apply(event(EventKind.DELETED, "2", "e1", 1)) is Outcome.APPLIED
        assert view.ids() == ["1"]

    def test_applied_event_invalidates_cache(self, setup, store):
        _, _, reconciler, _ = setup
        store.set(key_for(COLLECTION, "1"), POSTS[0])
        store.set(key_for(COLLECTION), POSTS)

        reconciler.apply(event(EventKind.UPDATED, "1", "e1", 1, content="edited"))

        assert store.get(key_for(COLLECTION, "1")) is None
        assert store.get(key_for(COLLECTION)) is None

    def test_event_needs_an_entity_id(self):
        with pytest.raises(ValueError):
            RealtimeEvent(kind=EventKind.DELETED, collection=COLLECTION)


# =============================================================================
# Deduplication
# =============================================================================

class TestDeduplication:

    def test_redelivered_event_is_dropped(self, setup):
        view, _, reconciler, _ = setup
        insert = event(EventKind.INSERTED, "9", "e1", 1, content="new")
        reconciler.apply(insert)
        assert reconciler.apply(insert) is Outcome.DUPLICATE
        assert view.ids().count("9") == 1

    def test_older_version_is_dropped(self, setup):
        view, _, reconciler, _ = setup
        reconciler.apply(event(EventKind.UPDATED, "1", "e2", 2, content="newer"))
        outcome = reconciler.apply(event(EventKind.UPDATED, "1", "e1", 1, content="older"))
        assert outcome is Outcome.DUPLICATE
        assert view.get("1")["content"] == "newer"

    def test_dedupe_memory_is_bounded(self, slow_remote, store):
        view = CollectionView(COLLECTION)
        coordinator = OptimisticCoordinator(COLLECTION, view, store, slow_remote)
        reconciler = RealtimeReconciler(view, coordinator, store, dedupe_capacity=2)
        for i in range(3):
            reconciler.apply(event(EventKind.INSERTED, str(i), f"e{i}", None))
        reconciler.apply(event(EventKind.DELETED, "0", "e0", None))
        # e0 was evicted, so the repeated id is treated as a new event
        assert "0" not in view


# =============================================================================
# Interaction with pending optimistic writes
# =============================================================================

class TestPendingWrites:

    def test_own_insert_event_merges_with_temp_row(self, setup):
        view, coordinator, reconciler, remote = setup

        async def scenario():
            task = asyncio.create_task(coordinator.create({"content": "hello"}))
            await asyncio.sleep(0)
            temp_id = coordinator.pending_records()[0].temp_id
            # The server's insert event overtakes the create response
            outcome = reconciler.apply(event(
                EventKind.INSERTED, "3", "e1", 1, content="hello", client_ref=temp_id
            ))
            merged_ids = view.ids()
            created = await task
            return outcome, merged_ids, created

        outcome, merged_ids, created = asyncio.run(scenario())

        assert outcome is Outcome.MERGED
        assert merged_ids == ["3", "1", "2"]
        assert created["id"] == "3"
        assert view.ids() == ["3", "1", "2"]

    def test_echo_after_confirmation_does_not_duplicate(self, setup):
        view, coordinator, reconciler, remote = setup

        async def scenario():
            consumer = asyncio.create_task(reconciler.consume(remote.subscribe(COLLECTION)))
            await settle()
            created = await coordinator.create({"content": "hello"})
            await settle()
            remote.disconnect()
            await consumer
            return created

        created = asyncio.run(scenario())
        assert view.ids().count(created["id"]) == 1
        assert not any(i.startswith(TEMP_ID_PREFIX) for i in view.ids())

    def test_update_for_pending_entity_waits_then_applies(self, setup):
        view, coordinator, reconciler, _ = setup

        async def scenario():
            task = asyncio.create_task(coordinator.update("1", {"content": "mine"}))
            await asyncio.sleep(0)
            outcome = reconciler.apply(event(EventKind.UPDATED, "1", "e1", 100, likes_count=5))
            queued = reconciler.queued_count("1")
            untouched = view.get("1")["likes_count"]
            await task
            return outcome, queued, untouched

        outcome, queued, untouched = asyncio.run(scenario())

        assert outcome is Outcome.QUEUED
        assert queued == 1
        assert untouched == 2
        assert reconciler.queued_count() == 0
        assert view.get("1")["likes_count"] == 5
        assert view.get("1")["content"] == "mine"

    def test_rollback_then_queued_events_in_arrival_order(self, setup):
        view, coordinator, reconciler, _ = setup

        async def scenario():
            task = asyncio.create_task(coordinator.toggle(
                "1", "has_liked", counter_field="likes_count", remote_call=failing_after
            ))
            await asyncio.sleep(0)
            reconciler.apply(event(EventKind.UPDATED, "1", "e1", 10, content="server edit"))
            reconciler.apply(event(EventKind.UPDATED, "1", "e2", 11, likes_count=9))
            with pytest.raises(NetworkError):
                await task

        asyncio.run(scenario())

        row = view.get("1")
        assert row["has_liked"] is False
        assert row["content"] == "server edit"
        assert row["likes_count"] == 9

    def test_delete_event_for_pending_update_applies_after_resolution(self, setup):
        view, coordinator, reconciler, _ = setup

        async def scenario():
            task = asyncio.create_task(coordinator.update("2", {"content": "edit"}))
            await asyncio.sleep(0)
            outcome = reconciler.apply(event(EventKind.DELETED, "2", "e1", 50))
            still_there = "2" in view
            await task
            return outcome, still_there

        outcome, still_there = asyncio.run(scenario())
        assert outcome is Outcome.QUEUED
        assert still_there
        assert "2" not in view

    def test_unknown_id_waits_while_create_unresolved(self, setup):
        view, coordinator, reconciler, _ = setup

        async def scenario():
            task = asyncio.create_task(coordinator.create({"content": "hello"}))
            await asyncio.sleep(0)
            # May be the real id of the pending create
            outcome = reconciler.apply(event(EventKind.UPDATED, "3", "e1", 5, likes_count=1))
            created = await task
            return outcome, created

        outcome, created = asyncio.run(scenario())
        assert outcome is Outcome.QUEUED
        assert created["id"] == "3"
        assert view.get("3")["likes_count"] == 1
        assert reconciler.queued_count() == 0


# =============================================================================
# Stream consumption
# =============================================================================

class TestConsume:

    def test_stream_error_ends_consumption_quietly(self, setup):
        view, _, reconciler, _ = setup

        async def broken_stream():
            yield event(EventKind.INSERTED, "9", "e1", 1, content="before failure")
            raise NetworkError("socket closed")

        asyncio.run(reconciler.consume(broken_stream()))
        assert "9" in view

    def test_unexpected_stream_error_is_logged(self, setup, caplog):
        view, _, reconciler, _ = setup

        async def malformed_stream():
            yield event(EventKind.INSERTED, "9", "e1", 1, content="before failure")
            raise KeyError("id")

        with caplog.at_level("ERROR", logger="sync.reconciler"):
            asyncio.run(reconciler.consume(malformed_stream()))

        assert "9" in view
        assert "Realtime stream for posts failed" in caplog.text

    def test_events_from_other_clients_arrive(self, setup):
        view, _, reconciler, remote = setup

        async def scenario():
            consumer = asyncio.create_task(reconciler.consume(remote.subscribe(COLLECTION)))
            await settle()
            new_id = await remote.create(COLLECTION, {"content": "from elsewhere"})
            await remote.update(COLLECTION, "1", {"likes_count": 40})
            await remote.delete(COLLECTION, "2")
            await settle()
            remote.disconnect()
            await consumer
            return new_id

        new_id = asyncio.run(scenario())
        assert view.ids() == [new_id, "1"]
        assert view.get("1")["likes_count"] == 40
        assert reconciler.get_stats()["applied"] == 3
        assert remote.subscriber_count(COLLECTION) == 0
