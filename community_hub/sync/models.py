"""
Data models for optimistic mutations and realtime events.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from enum import Enum
import time


class MutationKind(Enum):
    """Kinds of optimistic writes."""
    CREATE = "create"
    UPDATE = "update"
    TOGGLE = "toggle"
    DELETE = "delete"


class MutationState(Enum):
    """
    Lifecycle of one mutation.

    idle -> applied -> confirmed | rolled_back. The last two are terminal.
    """
    IDLE = "idle"
    APPLIED = "applied"
    CONFIRMED = "confirmed"
    ROLLED_BACK = "rolled_back"


class RecordStatus(Enum):
    """Status of an optimistic record as seen by the reconciler."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


_STATUS_BY_STATE = {
    MutationState.IDLE: RecordStatus.PENDING,
    MutationState.APPLIED: RecordStatus.PENDING,
    MutationState.CONFIRMED: RecordStatus.CONFIRMED,
    MutationState.ROLLED_BACK: RecordStatus.FAILED,
}


@dataclass
class OptimisticRecord:
    """
    One in-flight optimistic write.

    temp_id identifies the mutation and, for creates, the temporary row.
    real_id is the entity id once known (immediately for update/toggle/
    delete, when the remote answers or the server's insert event is matched
    for create).
    """
    temp_id: str
    kind: MutationKind
    payload: Dict[str, Any]
    real_id: Optional[str] = None
    state: MutationState = MutationState.IDLE
    snapshot: Optional[Dict[str, Any]] = None  # Pre-mutation row
    original_index: Optional[int] = None       # Pre-mutation position
    # Field -> earlier in-flight mutation that last wrote it before this one
    prior_writers: Dict[str, Optional["OptimisticRecord"]] = field(
        default_factory=dict, repr=False, compare=False
    )
    created_at: float = field(default_factory=time.time)

    @property
    def status(self) -> RecordStatus:
        return _STATUS_BY_STATE[self.state]

    @property
    def is_pending(self) -> bool:
        return self.status is RecordStatus.PENDING

    @property
    def row_id(self) -> str:
        """Id of the row this mutation currently affects in the view."""
        return self.real_id if self.real_id is not None else self.temp_id


class EventKind(Enum):
    """Realtime change notifications."""
    INSERTED = "inserted"
    UPDATED = "updated"
    DELETED = "deleted"


@dataclass
class RealtimeEvent:
    """
    A server-pushed change for one entity of a collection.

    entity carries the full row for inserted/updated events; deleted events
    may carry only entity_id. version is monotonically comparable per
    entity (sequence number or commit timestamp) and drives deduplication.
    """
    kind: EventKind
    collection: str
    entity_id: Optional[str] = None
    entity: Optional[Dict[str, Any]] = None
    event_id: Optional[str] = None
    version: Optional[Any] = None

    def __post_init__(self):
        if self.entity_id is None and self.entity is not None and "id" in self.entity:
            self.entity_id = str(self.entity["id"])
        if self.entity_id is None:
            raise ValueError("realtime event needs an entity id")
