"""
REST client for a PostgREST-style managed store.

Blocking requests calls run in worker threads so the event loop keeps
serving reads. Realtime changes are approximated by polling: each poll of a
collection is diffed against the previous one. Polls are numbered by one
counter per source, so event versions keep growing across subscriptions.
"""
import asyncio
import itertools
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import requests
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from community_hub.errors import NetworkError, NotFoundError, RejectedError
from community_hub.sync.models import EventKind, RealtimeEvent
from config.settings import settings

logger = logging.getLogger("remote.rest")


def _eq_params(filters: Optional[Dict[str, Any]]) -> Dict[str, str]:
    """PostgREST equality filters: ?field=eq.value"""
    params = {}
    for key, value in (filters or {}).items():
        if value is None:
            continue
        if isinstance(value, bool):
            value = "true" if value else "false"
        params[key] = f"eq.{value}"
    return params


class RestRemoteSource:
    """
    RemoteDataSource over HTTP.

    GET/PATCH/DELETE are retried on NetworkError with exponential backoff.
    POST is sent once: a lost response would otherwise create a duplicate.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = (base_url or settings.remote_base_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.remote_api_key
        self.timeout = timeout or settings.remote_timeout_seconds
        self.poll_interval = poll_interval or settings.realtime_poll_interval_seconds
        self._session = session or requests.Session()
        self._polls = itertools.count(1)

    # ------------------------------------------------------------------
    # RemoteDataSource
    # ------------------------------------------------------------------

    async def list(
        self,
        collection: str,
        filters: Optional[Dict[str, Any]] = None,
        order: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        params = {"select": "*", **_eq_params(filters)}
        if order:
            params["order"] = order
        return await asyncio.to_thread(self._send_idempotent, "GET", collection, params=params)

    async def get_by_id(self, collection: str, entity_id: str) -> Optional[Dict[str, Any]]:
        rows = await asyncio.to_thread(
            self._send_idempotent, "GET", collection,
            params={"select": "*", "id": f"eq.{entity_id}"},
        )
        return rows[0] if rows else None

    async def create(self, collection: str, payload: Dict[str, Any]) -> str:
        rows = await asyncio.to_thread(
            self._send, "POST", collection,
            json=payload, headers={"Prefer": "return=representation"},
        )
        try:
            return str(rows[0]["id"])
        except (IndexError, KeyError, TypeError) as e:
            raise RejectedError(f"create on {collection} returned no row: {rows!r}") from e

    async def update(self, collection: str, entity_id: str, patch: Dict[str, Any]) -> None:
        rows = await asyncio.to_thread(
            self._send_idempotent, "PATCH", collection,
            params={"id": f"eq.{entity_id}"},
            json=patch, headers={"Prefer": "return=representation"},
        )
        if not rows:
            raise NotFoundError(f"{collection}/{entity_id} not found")

    async def delete(self, collection: str, entity_id: str) -> None:
        rows = await asyncio.to_thread(
            self._send_idempotent, "DELETE", collection,
            params={"id": f"eq.{entity_id}"},
            headers={"Prefer": "return=representation"},
        )
        if not rows:
            raise NotFoundError(f"{collection}/{entity_id} not found")

    async def subscribe(
        self,
        collection: str,
        filters: Optional[Dict[str, Any]] = None,
    ) -> AsyncIterator[RealtimeEvent]:
        """
        Poll the collection and yield the differences between snapshots.

        The first poll only records a baseline. A failing poll raises the
        RemoteError, which ends the stream.
        """
        previous: Optional[Dict[str, Dict[str, Any]]] = None
        while True:
            rows = await self.list(collection, filters)
            poll = next(self._polls)
            current = {str(row["id"]): row for row in rows}
            if previous is not None:
                for event in self._diff(collection, previous, current, poll):
                    yield event
            previous = current
            await asyncio.sleep(self.poll_interval)

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["apikey"] = self.api_key
            headers["Authorization"] = f"Bearer {self.api_key}"
        headers.update(extra or {})
        return headers

    @retry(
        retry=retry_if_exception_type(NetworkError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        reraise=True,
    )
    def _send_idempotent(self, method: str, collection: str, **kwargs) -> Any:
        return self._send(method, collection, **kwargs)

    def _send(
        self,
        method: str,
        collection: str,
        params: Optional[Dict[str, str]] = None,
        json: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        url = f"{self.base_url}/rest/v1/{collection}"
        try:
            response = self._session.request(
                method,
                url,
                params=params,
                json=json,
                headers=self._headers(headers),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.warning(f"{method} {collection} failed: {e}")
            raise NetworkError(f"{method} {collection}: {e}") from e

        status = response.status_code
        if status == 404:
            raise NotFoundError(f"{method} {collection}: not found", status_code=status)
        if 400 <= status < 500:
            raise RejectedError(f"{method} {collection}: {response.text}", status_code=status)
        if status >= 500:
            raise NetworkError(f"{method} {collection}: server error {status}", status_code=status)

        if not response.content:
            return []
        try:
            return response.json()
        except ValueError as e:
            raise RejectedError(f"{method} {collection}: malformed response body") from e

    @staticmethod
    def _diff(
        collection: str,
        previous: Dict[str, Dict[str, Any]],
        current: Dict[str, Dict[str, Any]],
        poll: int,
    ) -> List[RealtimeEvent]:
        events = []
        for entity_id, row in current.items():
            if entity_id not in previous:
                kind = EventKind.INSERTED
            elif row != previous[entity_id]:
                kind = EventKind.UPDATED
            else:
                continue
            events.append(RealtimeEvent(
                kind=kind,
                collection=collection,
                entity_id=entity_id,
                entity=row,
                event_id=f"{collection}:{entity_id}:{poll}",
                version=poll,
            ))
        for entity_id in previous:
            if entity_id not in current:
                events.append(RealtimeEvent(
                    kind=EventKind.DELETED,
                    collection=collection,
                    entity_id=entity_id,
                    event_id=f"{collection}:{entity_id}:{poll}",
                    version=poll,
                ))
        return events
