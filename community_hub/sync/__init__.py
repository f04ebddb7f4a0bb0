"""
Optimistic mutations and realtime reconciliation over in-memory collections.
"""
from .models import (
    MutationKind,
    MutationState,
    RecordStatus,
    OptimisticRecord,
    EventKind,
    RealtimeEvent,
)
from .collection import CollectionView
from .coordinator import OptimisticCoordinator, TEMP_ID_PREFIX
from .reconciler import RealtimeReconciler, Outcome

__all__ = [
    # Models
    "MutationKind",
    "MutationState",
    "RecordStatus",
    "OptimisticRecord",
    "EventKind",
    "RealtimeEvent",
    # Collection
    "CollectionView",
    # Coordinator
    "OptimisticCoordinator",
    "TEMP_ID_PREFIX",
    # Reconciler
    "RealtimeReconciler",
    "Outcome",
]
