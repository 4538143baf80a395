import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

_UNSET = object()


class SnapshotPoller:
    """
    Re-fetches a view on a fixed interval: one immediate fetch, then one per
    ``interval`` seconds. ``on_snapshot`` runs on every tick unless ``dedupe``
    is set, in which case snapshots equal to the last one the handler took are
    dropped. A handler that returns False has not taken the snapshot.
    A failing fetch is logged and skipped; the loop keeps running.
    """

    def __init__(
        self,
        fetch: Callable[[], Awaitable[Any]],
        interval: float,
        on_snapshot: Callable[[Any], Any],
        *,
        dedupe: bool = False,
        name: str = "poller",
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.fetch = fetch
        self.interval = interval
        self.on_snapshot = on_snapshot
        self.dedupe = dedupe
        self.name = name
        self._last: Any = _UNSET
        self._task: Optional[asyncio.Task] = None
        self._stopped = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> Callable[[], None]:
        if self._task is None and not self._stopped:
            self._task = asyncio.create_task(self._run(), name=f"poll:{self.name}")
        return self.stop

    def stop(self) -> None:
        self._stopped = True
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _run(self) -> None:
        while True:
            await self.tick()
            await asyncio.sleep(self.interval)

    async def tick(self) -> None:
        try:
            data = await self.fetch()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("poll %s failed, skipping tick: %s", self.name, e)
            return

        if self.dedupe and self._last is not _UNSET and data == self._last:
            return

        try:
            result = self.on_snapshot(data)
            if inspect.isawaitable(result):
                result = await result
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("poll %s: snapshot handler failed", self.name)
            return
        # a handler returning False discarded the snapshot; keep comparing
        # against the last one it took
        if result is not False:
            self._last = data
