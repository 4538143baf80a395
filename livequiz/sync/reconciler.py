"""Dual-channel reconciliation of push and poll updates per topic.

Each ``Reconciler`` runs one ``ChangeFeed`` and one ``SnapshotPoller`` for a
topic and emits a single de-duplicated stream of values to its observer.
Which source is authoritative is decided by ``TopicState``, an immutable value
moved between modes by the pure functions below:

    connecting --(feed live / push event)--> live
    connecting --(grace period elapsed)----> fallback   (degraded)
    live       --(feed degraded / failed)--> fallback   (degraded)
    fallback   --(feed live / push event)--> live

While ``live`` poll snapshots are discarded; the poller keeps running as a
hot standby so the topic can fall back again at any time.
"""

from __future__ import annotations

import asyncio
import enum
import inspect
import logging
import time
from contextlib import suppress
from dataclasses import dataclass, replace
from typing import Any, Callable, Optional

from ..repositories.base import ChangeEvent, FeedStatus, Store
from .feed import ChangeFeed, open_feed
from .poller import SnapshotPoller
from .topics import Topic

logger = logging.getLogger(__name__)


class TopicMode(str, enum.Enum):
    CONNECTING = "connecting"
    LIVE = "live"
    FALLBACK = "fallback"


class Source(str, enum.Enum):
    PUSH = "push"
    POLL = "poll"


class ConnectionQuality(str, enum.Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    POOR = "poor"
    OFFLINE = "offline"


_QUALITY_ORDER = [
    ConnectionQuality.EXCELLENT,
    ConnectionQuality.GOOD,
    ConnectionQuality.POOR,
    ConnectionQuality.OFFLINE,
]


@dataclass(frozen=True)
class TopicState:
    mode: TopicMode = TopicMode.CONNECTING
    feed_status: FeedStatus = FeedStatus.CONNECTING
    degraded: bool = False
    last_update: Optional[float] = None
    last_source: Optional[Source] = None

    @property
    def is_push(self) -> bool:
        return self.mode is TopicMode.LIVE


def on_feed_status(state: TopicState, status: FeedStatus) -> TopicState:
    if status is FeedStatus.LIVE:
        return replace(state, mode=TopicMode.LIVE, feed_status=status, degraded=False)
    if status in (FeedStatus.DEGRADED, FeedStatus.FAILED):
        return replace(state, mode=TopicMode.FALLBACK, feed_status=status, degraded=True)
    # reconnect attempts do not change who is authoritative
    return replace(state, feed_status=status)


def on_push_event(state: TopicState) -> TopicState:
    # a delivered event proves the feed is live
    return replace(state, mode=TopicMode.LIVE, feed_status=FeedStatus.LIVE, degraded=False)


def on_grace_expired(state: TopicState) -> TopicState:
    if state.mode is TopicMode.CONNECTING:
        return replace(state, mode=TopicMode.FALLBACK, degraded=True)
    return state


def accepts(state: TopicState, source: Source) -> bool:
    if source is Source.PUSH:
        return True
    # a live topic ignores polls once it holds a value
    return state.mode is not TopicMode.LIVE or state.last_update is None


def stamp(state: TopicState, source: Source, now: float) -> TopicState:
    return replace(state, last_update=now, last_source=source)


def classify_quality(state: TopicState, now: float, opened_at: float) -> ConnectionQuality:
    since = now - (state.last_update if state.last_update is not None else opened_at)
    if state.is_push:
        if since < 2:
            return ConnectionQuality.EXCELLENT
        if since < 5:
            return ConnectionQuality.GOOD
        return ConnectionQuality.POOR
    if since < 3:
        return ConnectionQuality.GOOD
    if since < 10:
        return ConnectionQuality.POOR
    return ConnectionQuality.OFFLINE


def worst_quality(qualities) -> ConnectionQuality:
    qualities = list(qualities)
    if not qualities:
        return ConnectionQuality.GOOD
    return max(qualities, key=_QUALITY_ORDER.index)


class Reconciler:
    def __init__(
        self,
        store: Store,
        topic: Topic,
        on_update: Callable[[Any], Any],
        *,
        grace_period: float = 2.0,
        feed_retries: int = 3,
        feed_retry_delay: float = 2.0,
        on_state_change: Optional[Callable[[TopicState], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.topic = topic
        self.on_update = on_update
        self.grace_period = grace_period
        self.feed_retries = feed_retries
        self.feed_retry_delay = feed_retry_delay
        self.on_state_change = on_state_change
        self.clock = clock

        self.state = TopicState()
        self.value: Any = None
        self._has_value = False
        self._opened_at = clock()
        self._lock = asyncio.Lock()
        self._tasks: set[asyncio.Task] = set()
        self._feed: Optional[ChangeFeed] = None
        self._poller: Optional[SnapshotPoller] = None
        self._grace_task: Optional[asyncio.Task] = None
        self._fetch_seq = 0
        self._applied_seq = 0
        self._closed = False

    # --- lifecycle ---

    async def open(self) -> "Reconciler":
        self._opened_at = self.clock()
        self._grace_task = asyncio.create_task(self._grace(), name=f"grace:{self.topic.name}")
        self._feed = await open_feed(
            self.store,
            self.topic,
            self._on_feed_event,
            self._on_feed_status,
            max_retries=self.feed_retries,
            retry_delay=self.feed_retry_delay,
        )
        self._poller = SnapshotPoller(
            lambda: self.topic.fetch(self.store),
            self.topic.poll_interval,
            self._on_snapshot,
            dedupe=self.topic.is_collection,
            name=self.topic.name,
        )
        self._poller.start()
        return self

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._poller is not None:
            self._poller.stop()
        current = asyncio.current_task()
        tasks = [t for t in [self._grace_task, *self._tasks] if t is not None and t is not current]
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError):
                await task
        self._tasks.clear()
        if self._feed is not None:
            await self._feed.close()
        logger.debug("closed topic %s", self.topic.name)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def degraded(self) -> bool:
        return self.state.degraded

    def quality(self, now: Optional[float] = None) -> ConnectionQuality:
        return classify_quality(self.state, self.clock() if now is None else now, self._opened_at)

    # --- state transitions ---

    def _transition(self, new_state: TopicState) -> None:
        old, self.state = self.state, new_state
        if old.mode is not new_state.mode:
            logger.info("topic %s: %s -> %s", self.topic.name, old.mode.value, new_state.mode.value)
        if self.on_state_change is not None and (old.mode, old.degraded) != (new_state.mode, new_state.degraded):
            self.on_state_change(new_state)

    async def _grace(self) -> None:
        await asyncio.sleep(self.grace_period)
        if self.state.mode is TopicMode.CONNECTING:
            logger.warning(
                "topic %s: push not live after %.1fs, polling is authoritative",
                self.topic.name,
                self.grace_period,
            )
        self._transition(on_grace_expired(self.state))

    def _on_feed_status(self, status: FeedStatus) -> None:
        if self._closed:
            return
        self._transition(on_feed_status(self.state, status))

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # --- inputs ---

    def _on_feed_event(self, event: ChangeEvent) -> None:
        if self._closed:
            return
        self._transition(on_push_event(self.state))
        if self.topic.is_collection:
            # re-read the full view so aggregates (ranking order) match the store
            self._spawn(self._refetch())
            return
        if event.new is None:
            logger.debug("topic %s: ignoring %s without a new row", self.topic.name, event.type)
            return
        value = self.topic.narrow(event.new)
        if value is not None:
            self._spawn(self._apply(Source.PUSH, value))

    async def _refetch(self) -> None:
        self._fetch_seq += 1
        seq = self._fetch_seq
        try:
            value = await self.topic.fetch(self.store)
        except Exception as e:
            logger.warning("topic %s: re-fetch after push event failed: %s", self.topic.name, e)
            return
        if seq < self._applied_seq:
            # a newer re-fetch already landed
            return
        self._applied_seq = seq
        await self._apply(Source.PUSH, value)

    async def _on_snapshot(self, value: Any) -> bool:
        if self._closed or value is None:
            return False
        if not accepts(self.state, Source.POLL):
            logger.debug("topic %s: discarding poll snapshot while live", self.topic.name)
            return False
        await self._apply(Source.POLL, value)
        return True

    async def _apply(self, source: Source, value: Any) -> None:
        async with self._lock:
            if self._closed:
                return
            self._transition(stamp(self.state, source, self.clock()))
            if self._has_value and value == self.value:
                return
            self.value = value
            self._has_value = True
            try:
                result = self.on_update(value)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("topic %s: observer failed", self.topic.name)


async def open_topic(store: Store, topic: Topic, on_update: Callable[[Any], Any], **kwargs) -> Reconciler:
    reconciler = Reconciler(store, topic, on_update, **kwargs)
    return await reconciler.open()
