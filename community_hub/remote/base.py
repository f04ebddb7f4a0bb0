"""
Remote data source interface.

The managed store is an injected collaborator: the cache and sync layers
only ever talk to it through this protocol.
"""
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol

from community_hub.sync.models import RealtimeEvent


class RemoteDataSource(Protocol):
    """
    Interface for remote stores.

    Implementations:
    - InMemoryRemoteSource: in-process store with push events (dev, tests)
    - RestRemoteSource: PostgREST-style HTTP API with polled change events

    Failures are raised as NetworkError, RejectedError or NotFoundError.
    """

    async def list(
        self,
        collection: str,
        filters: Optional[Dict[str, Any]] = None,
        order: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        List rows of a collection.

        Args:
            collection: Table name
            filters: Equality filters; None values are ignored
            order: "<field>.asc" or "<field>.desc"
        """
        ...

    async def get_by_id(self, collection: str, entity_id: str) -> Optional[Dict[str, Any]]:
        """Fetch one row, or None if it does not exist."""
        ...

    async def create(self, collection: str, payload: Dict[str, Any]) -> str:
        """Insert a row and return its id."""
        ...

    async def update(self, collection: str, entity_id: str, patch: Dict[str, Any]) -> None:
        ...

    async def delete(self, collection: str, entity_id: str) -> None:
        ...

    def subscribe(
        self,
        collection: str,
        filters: Optional[Dict[str, Any]] = None,
    ) -> AsyncIterator[RealtimeEvent]:
        """
        Stream change events for rows matching filters.

        The stream ends (or raises a RemoteError) on disconnect.
        """
        ...


def matches_filters(row: Dict[str, Any], filters: Optional[Dict[str, Any]]) -> bool:
    """Equality match on every non-None filter attribute."""
    if not filters:
        return True
    for key, value in filters.items():
        if value is None:
            continue
        if row.get(key) != value:
            return False
    return True


def sort_rows(rows: List[Dict[str, Any]], order: Optional[str]) -> List[Dict[str, Any]]:
    """Sort by "<field>.<asc|desc>"; rows missing the field sort last."""
    if not order:
        return rows
    field, _, direction = order.partition(".")
    descending = direction.lower() == "desc"
    present = [r for r in rows if r.get(field) is not None]
    missing = [r for r in rows if r.get(field) is None]
    present.sort(key=lambda r: r[field], reverse=descending)
    return present + missing
