import asyncio
import json
import logging
import time
import uuid
from contextlib import suppress
from typing import Any, Mapping, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError, WatchError

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
    matches,
    order_columns,
    unique_key,
)

logger = logging.getLogger(__name__)

REDIS_PREFIX = "livequiz:"


def _sort_key(value: Any):
    # None sorts last in ascending order, mixed types never compare
    return (value is None, str(type(value).__name__), value if value is not None else 0)


class _RedisSubscription(Subscription):
    def __init__(self, pubsub, task: asyncio.Task) -> None:
        self.pubsub = pubsub
        self.task = task
        self._closed = False

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.task.cancel()
        with suppress(asyncio.CancelledError):
            await self.task
        try:
            await self.pubsub.unsubscribe()
            await self.pubsub.aclose()
        except RedisError as e:
            logger.debug("pubsub close failed: %s", e)


class RedisStore(Store):
    """
    Collections as Redis hashes (row id -> JSON), unique keys as a side hash
    claimed with HSETNX, and change events published on one channel per
    collection.
    """

    def __init__(self, redis: Redis, prefix: str = REDIS_PREFIX) -> None:
        self.redis = redis
        self.prefix = prefix

    # --- keys ---

    def k_rows(self, collection: str) -> str:
        return f"{self.prefix}{collection}"

    def k_unique(self, collection: str) -> str:
        return f"{self.prefix}{collection}:unique"

    def k_changes(self, collection: str) -> str:
        return f"{self.prefix}changes:{collection}"

    async def _publish(self, collection: str, kind: str, new: Optional[dict], old: Optional[dict]) -> None:
        message = json.dumps({"type": kind, "record": new, "old_record": old})
        await self.redis.publish(self.k_changes(collection), message)

    async def get(
        self,
        collection: str,
        filters: Optional[Filters] = None,
        *,
        order_by: OrderBy = None,
        desc: bool = False,
        limit: Optional[int] = None,
    ) -> list[dict]:
        try:
            raw_rows = await self.redis.hvals(self.k_rows(collection))
        except RedisError as e:
            raise StoreError(f"select {collection} failed: {e}") from e
        rows = [json.loads(r) for r in raw_rows]
        rows = [r for r in rows if matches(r, filters)]
        # stable insertion order first, then the requested columns
        rows.sort(key=lambda r: r.get("_seq", 0))
        for column in reversed(order_columns(order_by)):
            rows.sort(key=lambda r: _sort_key(r.get(column)), reverse=desc)
        if limit is not None:
            rows = rows[:limit]
        return rows

    async def insert(self, collection: str, fields: Mapping[str, Any]) -> dict:
        row = dict(fields)
        row.setdefault("id", str(uuid.uuid4()))
        row["_seq"] = time.time_ns()
        key = unique_key(collection, row)
        try:
            if key is not None:
                claimed = await self.redis.hsetnx(self.k_unique(collection), json.dumps(list(key)), row["id"])
                if not claimed:
                    raise DuplicateRowError(collection, key)
            await self.redis.hset(self.k_rows(collection), row["id"], json.dumps(row))
            await self._publish(collection, "INSERT", row, None)
        except RedisError as e:
            raise StoreError(f"insert {collection} failed: {e}") from e
        return row

    async def update(self, collection: str, filters: Filters, fields: Mapping[str, Any]) -> list[dict]:
        if not filters:
            raise ValueError("refusing an unfiltered update")
        key = self.k_rows(collection)
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                while True:
                    try:
                        # WATCH makes the read-modify-write a single atomic write
                        await pipe.watch(key)
                        raw_rows = await pipe.hvals(key)
                        before = [json.loads(r) for r in raw_rows]
                        before = [r for r in before if matches(r, filters)]
                        after = [{**r, **fields} for r in before]
                        pipe.multi()
                        for row in after:
                            pipe.hset(key, row["id"], json.dumps(row))
                        await pipe.execute()
                        break
                    except WatchError:
                        logger.debug("concurrent write on %s, retrying update", collection)
                        continue
            for old, new in zip(before, after):
                await self._publish(collection, "UPDATE", new, old)
        except RedisError as e:
            raise StoreError(f"update {collection} failed: {e}") from e
        return after

    async def subscribe(
        self,
        collection: str,
        filters: Optional[Filters],
        on_event: EventCallback,
        on_status: StatusCallback,
    ) -> Subscription:
        pubsub = self.redis.pubsub()
        try:
            await pubsub.subscribe(self.k_changes(collection))
        except RedisError as e:
            raise StoreError(f"subscribe {collection} failed: {e}") from e
        on_status(FeedStatus.LIVE)
        task = asyncio.create_task(
            self._listen(pubsub, collection, filters, on_event, on_status),
            name=f"redis-feed:{collection}",
        )
        return _RedisSubscription(pubsub, task)

    async def _listen(self, pubsub, collection, filters, on_event, on_status) -> None:
        try:
            while True:
                message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if message is None or message.get("type") != "message":
                    continue
                data = json.loads(message["data"])
                event = ChangeEvent(
                    type=data.get("type", "UPDATE"),
                    new=data.get("record"),
                    old=data.get("old_record"),
                )
                if matches(event.row, filters):
                    on_event(event)
        except (RedisError, OSError) as e:
            logger.warning("redis change feed for %s dropped: %s", collection, e)
            on_status(FeedStatus.FAILED)
