import logging
import uuid
from typing import Any, Mapping, Optional

import httpx
from postgrest.exceptions import APIError
from supabase import AsyncClient

from ..core.errors import DuplicateRowError, StoreError
from .base import (
    ChangeEvent,
    EventCallback,
    FeedStatus,
    Filters,
    OrderBy,
    StatusCallback,
    Store,
    Subscription,
    order_columns,
    unique_key,
)

logger = logging.getLogger(__name__)

# Postgres unique_violation
UNIQUE_VIOLATION = "23505"

_STATUS_MAP = {
    "SUBSCRIBED": FeedStatus.LIVE,
    "TIMED_OUT": FeedStatus.DEGRADED,
    "CHANNEL_ERROR": FeedStatus.FAILED,
    "CLOSED": FeedStatus.FAILED,
}


def map_realtime_state(state: Any) -> FeedStatus:
    """Translate a Realtime subscribe state (enum or raw string) to a FeedStatus."""
    raw = str(getattr(state, "value", state)).upper()
    return _STATUS_MAP.get(raw, FeedStatus.CONNECTING)


def event_from_payload(payload: Mapping[str, Any]) -> Optional[ChangeEvent]:
    """
    Normalize a postgres_changes payload. The Python Realtime client wraps the
    change in ``data`` with ``record``/``old_record``; older servers send the
    JS-style ``eventType``/``new``/``old`` keys.
    """
    data = payload.get("data", payload) if isinstance(payload, Mapping) else None
    if not isinstance(data, Mapping):
        return None
    kind = data.get("type") or data.get("eventType")
    new = data.get("record", data.get("new"))
    old = data.get("old_record", data.get("old"))
    if not kind:
        return None
    return ChangeEvent(type=str(kind).upper(), new=new or None, old=old or None)


def realtime_filter(filters: Optional[Filters]) -> Optional[str]:
    # Realtime accepts one server-side predicate; ChangeFeed applies the rest
    if not filters:
        return None
    column, value = next(iter(filters.items()))
    return f"{column}=eq.{value}"


class _SupabaseSubscription(Subscription):
    def __init__(self, client: AsyncClient, channel) -> None:
        self.client = client
        self.channel = channel
        self._closed = False

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self.client.remove_channel(self.channel)
        except Exception as e:  # the socket may already be gone
            logger.debug("remove_channel failed: %s", e)


class SupabaseStore(Store):
    def __init__(self, client: AsyncClient, schema: str = "public") -> None:
        self.client = client
        self.schema = schema

    async def _execute(self, query, action: str, collection: str):
        try:
            return await query.execute()
        except APIError as e:
            raise StoreError(f"{action} {collection} failed: {e.message}") from e
        except httpx.HTTPError as e:
            raise StoreError(f"{action} {collection} failed: {e}") from e

    async def get(
        self,
        collection: str,
        filters: Optional[Filters] = None,
        *,
        order_by: OrderBy = None,
        desc: bool = False,
        limit: Optional[int] = None,
    ) -> list[dict]:
        q = self.client.table(collection).select("*")
        for column, value in (filters or {}).items():
            q = q.eq(column, value)
        for column in order_columns(order_by):
            q = q.order(column, desc=desc)
        if limit is not None:
            q = q.limit(limit)
        res = await self._execute(q, "select", collection)
        return res.data or []

    async def insert(self, collection: str, fields: Mapping[str, Any]) -> dict:
        # no .select()/.single() after insert: v2 returns the representation in data
        q = self.client.table(collection).insert(dict(fields))
        try:
            res = await q.execute()
        except APIError as e:
            if e.code == UNIQUE_VIOLATION:
                raise DuplicateRowError(collection, unique_key(collection, fields) or ()) from e
            raise StoreError(f"insert {collection} failed: {e.message}") from e
        except httpx.HTTPError as e:
            raise StoreError(f"insert {collection} failed: {e}") from e

        if not res.data or not isinstance(res.data, list) or "id" not in res.data[0]:
            raise StoreError(f"insert {collection} failed: no returned id")
        return res.data[0]

    async def update(self, collection: str, filters: Filters, fields: Mapping[str, Any]) -> list[dict]:
        if not filters:
            raise ValueError("refusing an unfiltered update")
        q = self.client.table(collection).update(dict(fields))
        for column, value in filters.items():
            q = q.eq(column, value)
        res = await self._execute(q, "update", collection)
        return res.data or []

    async def subscribe(
        self,
        collection: str,
        filters: Optional[Filters],
        on_event: EventCallback,
        on_status: StatusCallback,
    ) -> Subscription:
        channel = self.client.channel(f"{collection}-{uuid.uuid4().hex[:8]}")

        def _on_change(payload):
            event = event_from_payload(payload)
            if event is None:
                logger.debug("ignoring unrecognized realtime payload on %s", collection)
                return
            on_event(event)

        def _on_state(state, err=None):
            status = map_realtime_state(state)
            if err is not None:
                logger.warning("realtime %s on %s: %s", state, collection, err)
            on_status(status)

        channel.on_postgres_changes(
            "*",
            schema=self.schema,
            table=collection,
            filter=realtime_filter(filters),
            callback=_on_change,
        )
        await channel.subscribe(_on_state)
        return _SupabaseSubscription(self.client, channel)
