"""
Ordered in-memory collection of entity snapshots.

Ordering is insertion/recency order, not cache-key order. Only the
coordinator and the reconciler mutate a CollectionView; everything else
reads snapshots.
"""
import copy
from typing import Any, Dict, Iterator, List, Optional, Tuple


class CollectionView:
    """Ordered rows identified by their id field."""

    def __init__(self, name: str, id_field: str = "id"):
        self.name = name
        self.id_field = id_field
        self._rows: List[Dict[str, Any]] = []

    def identity(self, row: Dict[str, Any]) -> Optional[str]:
        value = row.get(self.id_field)
        return None if value is None else str(value)

    def index_of(self, entity_id: str) -> Optional[int]:
        for index, row in enumerate(self._rows):
            if self.identity(row) == entity_id:
                return index
        return None

    def find(self, attribute: str, value: Any) -> Optional[int]:
        """Index of the first row whose attribute equals value."""
        if value is None:
            return None
        for index, row in enumerate(self._rows):
            if row.get(attribute) == value:
                return index
        return None

    def get(self, entity_id: str) -> Optional[Dict[str, Any]]:
        index = self.index_of(entity_id)
        return copy.deepcopy(self._rows[index]) if index is not None else None

    def __contains__(self, entity_id: str) -> bool:
        return self.index_of(entity_id) is not None

    def insert(self, index: int, row: Dict[str, Any]) -> None:
        """Insert at index, clamped to the current bounds."""
        index = max(0, min(index, len(self._rows)))
        self._rows.insert(index, copy.deepcopy(row))

    def prepend(self, row: Dict[str, Any]) -> None:
        self.insert(0, row)

    def append(self, row: Dict[str, Any]) -> None:
        self.insert(len(self._rows), row)

    def replace_at(self, index: int, row: Dict[str, Any]) -> None:
        self._rows[index] = copy.deepcopy(row)

    def patch_at(self, index: int, patch: Dict[str, Any]) -> Dict[str, Any]:
        """Merge patch into the row at index; returns the new row."""
        updated = {**self._rows[index], **copy.deepcopy(patch)}
        self._rows[index] = updated
        return copy.deepcopy(updated)

    def remove_at(self, index: int) -> Dict[str, Any]:
        return self._rows.pop(index)

    def remove(self, entity_id: str) -> Optional[Tuple[int, Dict[str, Any]]]:
        """Remove a row by id; returns (original index, row) or None."""
        index = self.index_of(entity_id)
        if index is None:
            return None
        return index, self._rows.pop(index)

    def reset(self, rows: List[Dict[str, Any]]) -> None:
        self._rows = copy.deepcopy(list(rows))

    def snapshot(self) -> List[Dict[str, Any]]:
        """Deep copy of all rows, in order."""
        return copy.deepcopy(self._rows)

    def ids(self) -> List[Optional[str]]:
        return [self.identity(row) for row in self._rows]

    def __iter__(self) -> Iterator[Dict[str, Any]]:
        return iter(self.snapshot())

    def __len__(self) -> int:
        return len(self._rows)
