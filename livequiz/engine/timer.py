import asyncio
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

from ..services.typing import utcnow

logger = logging.getLogger(__name__)


def remaining_ms(question_start: datetime, time_limit_s: float, now: datetime) -> int:
    """Milliseconds left on a question; every client computes the same value from the shared start."""
    elapsed = (now - question_start) / timedelta(milliseconds=1)
    return max(0, int(time_limit_s * 1000 - elapsed))


class QuestionTimer:
    """
    Local countdown for the current question.

    ``on_expire`` fires at most once per question index: the first tick with
    ``remaining <= threshold_ms`` and no recorded answer sets the attempted
    flag, which only a different question index clears.
    """

    def __init__(
        self,
        *,
        on_tick: Optional[Callable[[int], None]] = None,
        on_expire: Optional[Callable[[int], Awaitable[None]]] = None,
        tick_interval: float = 0.1,
        threshold_ms: int = 100,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.on_tick = on_tick
        self.on_expire = on_expire
        self.tick_interval = tick_interval
        self.threshold_ms = threshold_ms
        self.clock = clock

        self.question_index: Optional[int] = None
        self.question_start: Optional[datetime] = None
        self.time_limit: float = 0
        self.attempted = False
        self.answered = False
        self._task: Optional[asyncio.Task] = None
        self._expire_task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def reset(self, question_index: int, question_start: datetime, time_limit_s: float) -> None:
        if question_index != self.question_index:
            self.question_index = question_index
            self.attempted = False
            self.answered = False
        self.question_start = question_start
        self.time_limit = time_limit_s
        if not self.running:
            self._task = asyncio.create_task(self._run(), name=f"question-timer:{question_index}")

    def mark_answered(self, question_index: int) -> None:
        if question_index == self.question_index:
            self.answered = True

    def retry_expiry(self, question_index: int) -> None:
        """Let the next tick fire again after a failed auto-submit."""
        if question_index == self.question_index and not self.answered:
            self.attempted = False

    def remaining(self) -> int:
        if self.question_start is None:
            return 0
        return remaining_ms(self.question_start, self.time_limit, self.clock())

    def tick(self) -> int:
        remaining = self.remaining()
        if self.on_tick is not None:
            self.on_tick(remaining)
        if (
            remaining <= self.threshold_ms
            and not self.answered
            and not self.attempted
            and self.question_index is not None
            and self.on_expire is not None
        ):
            self.attempted = True
            logger.info("question %d: deadline reached", self.question_index)
            self._expire_task = asyncio.create_task(self._fire(self.question_index))
        return remaining

    async def _fire(self, question_index: int) -> None:
        try:
            await self.on_expire(question_index)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("question %d: expiry handler failed", question_index)

    async def _run(self) -> None:
        while True:
            self.tick()
            await asyncio.sleep(self.tick_interval)

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
        if self.on_tick is not None:
            self.on_tick(0)

    async def aclose(self) -> None:
        self.stop()
        if self._expire_task is not None and not self._expire_task.done():
            self._expire_task.cancel()
        self._expire_task = None
