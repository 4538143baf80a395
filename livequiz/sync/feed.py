"""Push change feed over a store subscription, with health reporting."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from typing import Optional

from ..repositories.base import (
    ChangeEvent,
    EventCallback,
    FeedStatus,
    StatusCallback,
    Store,
    Subscription,
    matches,
)
from .topics import Topic

logger = logging.getLogger(__name__)


class ChangeFeed:
    """
    One push subscription restricted to a topic's collection and predicate.

    Reports ``connecting`` on open, then whatever the transport reports.
    A failed subscription is retried with exponential backoff
    (``retry_delay * 2**attempt``) up to ``max_retries`` times; the feed then
    stays ``failed`` until closed. Subscription errors are never raised to the
    caller.
    """

    def __init__(
        self,
        store: Store,
        topic: Topic,
        on_event: EventCallback,
        on_status: StatusCallback,
        *,
        max_retries: int = 3,
        retry_delay: float = 2.0,
    ) -> None:
        self.store = store
        self.topic = topic
        self.on_event = on_event
        self.on_status = on_status
        self.max_retries = max_retries
        self.retry_delay = retry_delay

        self._status: Optional[FeedStatus] = None
        self._subscription: Optional[Subscription] = None
        self._retry_task: Optional[asyncio.Task] = None
        self._attempts = 0
        self._closed = False

    @property
    def status(self) -> Optional[FeedStatus]:
        return self._status

    @property
    def closed(self) -> bool:
        return self._closed

    async def open(self) -> "ChangeFeed":
        self._set_status(FeedStatus.CONNECTING)
        await self._subscribe()
        return self

    async def _subscribe(self) -> None:
        try:
            subscription = await self.store.subscribe(
                self.topic.collection,
                self.topic.filters,
                self._handle_event,
                self._handle_status,
            )
        except Exception as e:  # any transport error downgrades the feed
            logger.warning("subscribe %s failed: %s", self.topic.name, e)
            self._handle_status(FeedStatus.FAILED)
            return
        if self._closed:
            await subscription.close()
            return
        self._subscription = subscription

    def _set_status(self, status: FeedStatus) -> None:
        if status == self._status:
            return
        previous, self._status = self._status, status
        logger.info("feed %s: %s -> %s", self.topic.name, previous and previous.value, status.value)
        self.on_status(status)

    def _handle_status(self, status: FeedStatus) -> None:
        if self._closed:
            return
        self._set_status(status)
        if status is FeedStatus.LIVE:
            self._attempts = 0
        elif status is FeedStatus.FAILED:
            self._schedule_retry()

    def _handle_event(self, event: ChangeEvent) -> None:
        if self._closed:
            return
        # transports may only filter on one column server-side
        if not matches(event.row, self.topic.filters):
            return
        self.on_event(event)

    def _schedule_retry(self) -> None:
        if self._retry_task is not None and not self._retry_task.done():
            return
        if self._attempts >= self.max_retries:
            logger.error("feed %s: giving up after %d retries", self.topic.name, self._attempts)
            return
        delay = self.retry_delay * (2 ** self._attempts)
        self._attempts += 1
        logger.info("feed %s: retry %d/%d in %.1fs", self.topic.name, self._attempts, self.max_retries, delay)
        self._retry_task = asyncio.create_task(self._retry(delay), name=f"feed-retry:{self.topic.name}")

    async def _retry(self, delay: float) -> None:
        await asyncio.sleep(delay)
        if self._closed:
            return
        # a failure inside this attempt must be able to schedule the next one
        self._retry_task = None
        old, self._subscription = self._subscription, None
        if old is not None:
            await old.close()
        self._set_status(FeedStatus.CONNECTING)
        await self._subscribe()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._retry_task is not None:
            self._retry_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._retry_task
            self._retry_task = None
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            await self.store.unsubscribe(subscription)


async def open_feed(
    store: Store,
    topic: Topic,
    on_event: EventCallback,
    on_status: StatusCallback,
    **kwargs,
) -> ChangeFeed:
    feed = ChangeFeed(store, topic, on_event, on_status, **kwargs)
    return await feed.open()
