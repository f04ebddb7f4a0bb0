"""
Optimistic mutation coordinator.

Every write follows the same protocol: apply the change to the
CollectionView synchronously, invalidate affected cache keys, call the
remote source, then confirm or roll back. A failed write takes back its own
effect on the view (and nothing else) and re-raises the error, whatever its
type.
"""
import logging
import uuid
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional, Tuple

from community_hub.cache import TTLCacheStore, key_for, list_prefix

from .collection import CollectionView
from .models import MutationKind, MutationState, OptimisticRecord

if TYPE_CHECKING:
    from community_hub.remote.base import RemoteDataSource

logger = logging.getLogger("sync.coordinator")

TEMP_ID_PREFIX = "temp-"
DEFAULT_CORRELATION_FIELD = "client_ref"

ResolutionListener = Callable[[OptimisticRecord], None]


class OptimisticCoordinator:
    """
    Generic apply -> call-remote -> confirm-or-rollback for one collection.

    The coordinator owns the lifecycle of OptimisticRecord values: one per
    mutation, keyed by a temp id that is never reused, discarded once the
    mutation is confirmed or rolled back. Creates stamp the temp id into a
    correlation attribute sent to the server, which lets the reconciler
    recognize the server's insert event for a row created here.

    Usage:
        coordinator = OptimisticCoordinator("marketplace_listings", view, store, remote)
        listing = await coordinator.create({"title": "Desk", "price": 40})
        await coordinator.toggle(listing["id"], "is_favorited", counter_field="favorite_count")
    """

    def __init__(
        self,
        collection: str,
        view: CollectionView,
        store: TTLCacheStore,
        remote: "RemoteDataSource",
        correlation_field: str = DEFAULT_CORRELATION_FIELD,
        insert_at_front: bool = True,
    ):
        """
        Args:
            collection: Remote collection name (also the cache namespace)
            view: The CollectionView this coordinator mutates
            store: Cache store to invalidate
            remote: Remote data source
            correlation_field: Attribute carrying the temp id to the server
            insert_at_front: New rows go first (feeds) or last (chats)
        """
        self.collection = collection
        self.view = view
        self.store = store
        self.remote = remote
        self.correlation_field = correlation_field
        self.insert_at_front = insert_at_front

        self._records: Dict[str, OptimisticRecord] = {}
        # (row id, field) -> in-flight mutation that wrote the field last
        self._writers: Dict[Tuple[str, str], OptimisticRecord] = {}
        self._listeners: List[ResolutionListener] = []

        self._stats = {
            "applied": 0,
            "confirmed": 0,
            "rolled_back": 0,
        }

    # ------------------------------------------------------------------
    # Identity resolution (shared with the reconciler)
    # ------------------------------------------------------------------

    @staticmethod
    def new_temp_id() -> str:
        return f"{TEMP_ID_PREFIX}{uuid.uuid4().hex}"

    def pending_records(self) -> List[OptimisticRecord]:
        """Pending records in the order they were issued."""
        return [r for r in self._records.values() if r.is_pending]

    def pending_for(self, entity_id: str) -> List[OptimisticRecord]:
        return [r for r in self.pending_records() if r.row_id == entity_id]

    def has_pending(self, entity_id: str) -> bool:
        return any(r.row_id == entity_id for r in self.pending_records())

    def has_unresolved_creates(self) -> bool:
        """True while some pending create does not know its real id yet."""
        return any(
            r.kind is MutationKind.CREATE and r.real_id is None for r in self.pending_records()
        )

    def pending_create_for(self, entity: Dict[str, Any]) -> Optional[OptimisticRecord]:
        """The pending create a server row corresponds to, matched by correlation attribute."""
        correlation = entity.get(self.correlation_field)
        if correlation is None:
            return None
        record = self._records.get(str(correlation))
        if record is not None and record.kind is MutationKind.CREATE and record.is_pending:
            return record
        return None

    def resolve_real_id(self, record: OptimisticRecord, real_id: str) -> None:
        """Record the authoritative id of a pending create (tempId -> realId)."""
        if record.real_id is None:
            logger.debug(f"Resolved {record.temp_id} -> {real_id}")
        record.real_id = real_id

    def add_resolution_listener(self, listener: ResolutionListener) -> None:
        """Call listener(record) after each mutation is confirmed or rolled back."""
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Insert a temp row, call the remote create, then swap in the real id.

        Returns:
            The confirmed row

        Raises:
            RemoteError: After the temp row has been removed again
        """
        temp_id = self.new_temp_id()
        row = {**payload, self.view.id_field: temp_id, self.correlation_field: temp_id}
        record = OptimisticRecord(temp_id=temp_id, kind=MutationKind.CREATE, payload=row)

        self._records[temp_id] = record
        if self.insert_at_front:
            self.view.prepend(row)
        else:
            self.view.append(row)
        self._applied(record)
        self.store.remove_by_prefix(list_prefix(self.collection))

        try:
            real_id = await self.remote.create(
                self.collection, {**payload, self.correlation_field: temp_id}
            )
        except BaseException as e:
            self._rollback_create(record)
            self._finish(record, MutationState.ROLLED_BACK, e)
            raise

        self._confirm_create(record, str(real_id))
        self._finish(record, MutationState.CONFIRMED)
        return self.view.get(str(real_id)) or {**row, self.view.id_field: str(real_id)}

    async def update(self, entity_id: Any, patch: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Apply patch locally, then remotely; undo the patched fields on failure.

        Returns:
            The updated row, or None if the entity is not in the view
        """
        entity_id = str(entity_id)
        return await self._mutate_existing(
            MutationKind.UPDATE,
            entity_id,
            patch,
            lambda: self.remote.update(self.collection, entity_id, patch),
        )

    async def toggle(
        self,
        entity_id: Any,
        field: str,
        counter_field: Optional[str] = None,
        remote_call: Optional[Callable[[], Awaitable[Optional[Dict[str, Any]]]]] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Flip a boolean flag and adjust its counter by one in the same step.

        The flag and the counter change together locally, so the view never
        shows e.g. favorited=False with an incremented count. Counters are
        clamped at zero.

        Args:
            entity_id: Row to toggle
            field: Boolean attribute to flip
            counter_field: Counter moving with the flag (+1 when set, -1 when cleared)
            remote_call: Custom remote operation; a returned dict is merged as
                the authoritative state. Defaults to a remote update of the patch.

        Returns:
            The updated row, or None if the entity is not in the view
        """
        entity_id = str(entity_id)
        current = self.view.get(entity_id)
        if current is None:
            logger.debug(f"Toggle skipped, {entity_id} not in {self.collection}")
            return None

        new_value = not bool(current.get(field))
        patch: Dict[str, Any] = {field: new_value}
        if counter_field:
            count = int(current.get(counter_field) or 0)
            patch[counter_field] = max(0, count + (1 if new_value else -1))

        def default_call():
            return self.remote.update(self.collection, entity_id, patch)

        return await self._mutate_existing(
            MutationKind.TOGGLE, entity_id, patch, remote_call or default_call
        )

    async def delete(self, entity_id: Any) -> None:
        """
        Remove the row locally, then remotely; re-insert it at its original
        position on failure.
        """
        entity_id = str(entity_id)
        if entity_id.startswith(TEMP_ID_PREFIX) and entity_id in self._records:
            raise ValueError(f"{entity_id} is still being created")

        record = OptimisticRecord(
            temp_id=self.new_temp_id(),
            kind=MutationKind.DELETE,
            payload={},
            real_id=entity_id,
        )
        removed = self.view.remove(entity_id)
        if removed is not None:
            record.original_index, record.snapshot = removed

        self._records[record.temp_id] = record
        self._applied(record)
        self._invalidate_entity(entity_id)

        try:
            await self.remote.delete(self.collection, entity_id)
        except BaseException as e:
            if record.snapshot is not None and entity_id not in self.view:
                self.view.insert(record.original_index, record.snapshot)
            self._finish(record, MutationState.ROLLED_BACK, e)
            raise

        self._invalidate_entity(entity_id)
        self._finish(record, MutationState.CONFIRMED)

    # ------------------------------------------------------------------
    # Bulk load
    # ------------------------------------------------------------------

    def load(self, entities: List[Dict[str, Any]]) -> None:
        """
        Replace the view with rows fresh from the remote, keeping every
        pending optimistic effect on top of them.
        """
        rows = [dict(e) for e in entities]
        id_field = self.view.id_field

        def index_in(rows_: List[Dict[str, Any]], entity_id: str) -> Optional[int]:
            for i, r in enumerate(rows_):
                if r.get(id_field) is not None and str(r[id_field]) == entity_id:
                    return i
            return None

        for record in self.pending_records():
            if record.kind is MutationKind.CREATE:
                server_index = next(
                    (i for i, r in enumerate(rows) if r.get(self.correlation_field) == record.temp_id),
                    None,
                )
                if server_index is not None:
                    self.resolve_real_id(record, str(rows[server_index][id_field]))
                    continue
                current = self.view.get(record.row_id)
                if current is not None and index_in(rows, record.row_id) is None:
                    if self.insert_at_front:
                        rows.insert(0, current)
                    else:
                        rows.append(current)
            elif record.kind is MutationKind.DELETE:
                index = index_in(rows, record.row_id)
                if index is not None:
                    rows.pop(index)
            else:
                current = self.view.get(record.row_id)
                index = index_in(rows, record.row_id)
                if current is not None and index is not None:
                    rows[index] = current

        self.view.reset(rows)

    def adopt(self, entity: Dict[str, Any]) -> bool:
        """
        Add a row read outside a list query (e.g. a detail fetch) so it can
        be mutated optimistically. Returns False if the row is already present.
        """
        entity_id = self.view.identity(entity)
        if entity_id is None or entity_id in self.view:
            return False
        if self.insert_at_front:
            self.view.prepend(entity)
        else:
            self.view.append(entity)
        return True

    def get_stats(self) -> Dict[str, Any]:
        """Get coordinator statistics."""
        return {
            "collection": self.collection,
            "pending": len(self.pending_records()),
            **self._stats,
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _mutate_existing(
        self,
        kind: MutationKind,
        entity_id: str,
        patch: Dict[str, Any],
        remote_call: Callable[[], Awaitable[Any]],
    ) -> Optional[Dict[str, Any]]:
        record = OptimisticRecord(
            temp_id=self.new_temp_id(),
            kind=kind,
            payload=dict(patch),
            real_id=entity_id,
        )
        index = self.view.index_of(entity_id)
        if index is not None:
            record.snapshot = self.view.get(entity_id)
            record.original_index = index
            self.view.patch_at(index, patch)
            for name in patch:
                record.prior_writers[name] = self._writers.get((entity_id, name))
                self._writers[(entity_id, name)] = record

        self._records[record.temp_id] = record
        self._applied(record)
        self._invalidate_entity(entity_id)

        try:
            result = await remote_call()
        except BaseException as e:
            self._rollback_fields(record)
            self._finish(record, MutationState.ROLLED_BACK, e)
            raise

        if isinstance(result, dict) and result:
            current = self.view.index_of(entity_id)
            if current is not None:
                self.view.patch_at(current, result)

        self._release_fields(record)
        self._invalidate_entity(entity_id)
        self._finish(record, MutationState.CONFIRMED)
        return self.view.get(entity_id)

    def _later_writers(self, record: OptimisticRecord, name: str) -> List[OptimisticRecord]:
        return [
            r for r in self._records.values()
            if r is not record and r.prior_writers.get(name) is record
        ]

    def _rollback_fields(self, record: OptimisticRecord) -> None:
        """
        Undo one update/toggle field by field.

        A field still owned by this mutation goes back to its pre-mutation
        value. A field that a later mutation has since written keeps the
        later value; that mutation inherits this one's pre-mutation value
        as its own rollback target.
        """
        if record.snapshot is None:
            return
        entity_id = record.row_id
        restore: Dict[str, Any] = {}
        dropped: List[str] = []

        for name in record.payload:
            key = (entity_id, name)
            prior = record.prior_writers.get(name)
            if self._writers.get(key) is record:
                if name in record.snapshot:
                    restore[name] = record.snapshot[name]
                else:
                    dropped.append(name)
                if prior is None:
                    self._writers.pop(key, None)
                else:
                    self._writers[key] = prior
                continue
            for later in self._later_writers(record, name):
                later.prior_writers[name] = prior
                if later.snapshot is None:
                    continue
                if name in record.snapshot:
                    later.snapshot[name] = record.snapshot[name]
                else:
                    later.snapshot.pop(name, None)

        index = self.view.index_of(entity_id)
        if index is None:
            return
        row = {**self.view.get(entity_id), **restore}
        for name in dropped:
            row.pop(name, None)
        self.view.replace_at(index, row)

    def _release_fields(self, record: OptimisticRecord) -> None:
        """A confirmed value is the server's; later rollbacks stop at it."""
        entity_id = record.row_id
        for name in record.payload:
            if self._writers.get((entity_id, name)) is record:
                del self._writers[(entity_id, name)]
            for later in self._later_writers(record, name):
                later.prior_writers[name] = None

    def _confirm_create(self, record: OptimisticRecord, real_id: str) -> None:
        self.resolve_real_id(record, real_id)
        temp_index = self.view.index_of(record.temp_id)
        real_index = self.view.index_of(real_id)

        if temp_index is not None and real_index is not None:
            # Server row already folded in by the reconciler
            self.view.remove_at(temp_index)
        elif temp_index is not None:
            confirmed = self.view.get(record.temp_id)
            confirmed[self.view.id_field] = real_id
            self.view.replace_at(temp_index, confirmed)

        self._invalidate_entity(real_id)

    def _rollback_create(self, record: OptimisticRecord) -> None:
        self.view.remove(record.temp_id)

    def _invalidate_entity(self, entity_id: str) -> None:
        self.store.remove(key_for(self.collection, entity_id))
        self.store.remove_by_prefix(list_prefix(self.collection))

    def _applied(self, record: OptimisticRecord) -> None:
        record.state = MutationState.APPLIED
        self._stats["applied"] += 1
        logger.debug(f"Applied {record.kind.value} {record.row_id} on {self.collection}")

    def _finish(
        self,
        record: OptimisticRecord,
        state: MutationState,
        error: Optional[BaseException] = None,
    ) -> None:
        record.state = state
        self._records.pop(record.temp_id, None)
        if state is MutationState.CONFIRMED:
            self._stats["confirmed"] += 1
            logger.debug(f"Confirmed {record.kind.value} {record.row_id} on {self.collection}")
        else:
            self._stats["rolled_back"] += 1
            logger.warning(
                f"Rolled back {record.kind.value} {record.row_id} on {self.collection}: {error}"
            )
        for listener in list(self._listeners):
            listener(record)
