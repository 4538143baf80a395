"""Client-side synchronized view of one live session.

A ``LiveSessionView`` is what a host screen or a participant screen runs: it
opens one reconciled topic for the session record, one for the participant
roster and one for the answers of the current question, and turns observed
records into observer callbacks, answer-state resets and timer resets. It
never changes phase locally; it only reacts to what the store reports.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from ..core.config import Settings, settings
from ..core.errors import InvalidTransitionError, LiveQuizError
from ..domain.model import Answer, Participant, Session
from ..engine.state_machine import AnswerResetTracker
from ..engine.timer import QuestionTimer
from ..repositories.base import Store
from ..sync.reconciler import ConnectionQuality, Reconciler, TopicState, open_topic, worst_quality
from ..sync.topics import answers_topic, participants_topic, session_topic
from .quiz_service import QuizService

logger = logging.getLogger(__name__)

Observer = Callable[[Any], Any]


@dataclass(frozen=True)
class SyncOptions:
    grace_period: float = 2.0
    session_poll_interval: float = 1.0
    collection_poll_interval: float = 2.0
    answers_poll_interval: float = 1.0
    feed_retries: int = 3
    feed_retry_delay: float = 2.0
    tick_interval: float = 0.1
    auto_submit_threshold_ms: int = 100
    auto_advance: bool = False

    @classmethod
    def from_settings(cls, s: Settings) -> "SyncOptions":
        return cls(
            grace_period=s.REALTIME_GRACE_MS / 1000,
            session_poll_interval=s.SESSION_POLL_INTERVAL_MS / 1000,
            collection_poll_interval=s.COLLECTION_POLL_INTERVAL_MS / 1000,
            answers_poll_interval=s.SESSION_POLL_INTERVAL_MS / 1000,
            feed_retries=s.REALTIME_MAX_RETRIES,
            feed_retry_delay=s.REALTIME_RETRY_DELAY_MS / 1000,
            tick_interval=s.TIMER_TICK_MS / 1000,
            auto_submit_threshold_ms=s.AUTO_SUBMIT_THRESHOLD_MS,
            auto_advance=s.AUTO_ADVANCE_ON_DEADLINE,
        )


async def _notify(observer: Optional[Observer], value: Any) -> None:
    if observer is None:
        return
    result = observer(value)
    if inspect.isawaitable(result):
        await result


class LiveSessionView:
    def __init__(
        self,
        store: Store,
        service: QuizService,
        code: str,
        *,
        participant_id: Optional[str] = None,
        host_id: Optional[str] = None,
        on_session_update: Optional[Observer] = None,
        on_participants_update: Optional[Observer] = None,
        on_answers_update: Optional[Observer] = None,
        on_tick: Optional[Callable[[int], None]] = None,
        on_quality_change: Optional[Callable[[ConnectionQuality], Any]] = None,
        options: Optional[SyncOptions] = None,
    ) -> None:
        self.store = store
        self.service = service
        self.code = code
        self.participant_id = participant_id
        self.host_id = host_id
        self.on_session_update = on_session_update
        self.on_participants_update = on_participants_update
        self.on_answers_update = on_answers_update
        self.on_quality_change = on_quality_change
        self.options = options or SyncOptions.from_settings(settings)

        self.session: Optional[Session] = None
        self.participants: List[Participant] = []
        self.answers: List[Answer] = []
        self.resets = AnswerResetTracker()
        self.timer = QuestionTimer(
            on_tick=on_tick,
            on_expire=self._on_deadline,
            tick_interval=self.options.tick_interval,
            threshold_ms=self.options.auto_submit_threshold_ms,
            clock=service.clock,
        )

        self._session_topic: Optional[Reconciler] = None
        self._participants_topic: Optional[Reconciler] = None
        self._answers_topic: Optional[Reconciler] = None
        self._quality: Optional[ConnectionQuality] = None
        self._closed = False

    @property
    def is_host(self) -> bool:
        return self.participant_id is None

    def _topic_kwargs(self) -> dict:
        return {
            "grace_period": self.options.grace_period,
            "feed_retries": self.options.feed_retries,
            "feed_retry_delay": self.options.feed_retry_delay,
            "on_state_change": self._on_topic_state,
        }

    async def open(self) -> "LiveSessionView":
        self._session_topic = await open_topic(
            self.store,
            session_topic(self.code, self.options.session_poll_interval),
            self._on_session,
            **self._topic_kwargs(),
        )
        return self

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self.timer.aclose()
        for topic in (self._answers_topic, self._participants_topic, self._session_topic):
            if topic is not None:
                await topic.close()
        self._answers_topic = self._participants_topic = self._session_topic = None

    # --- connection quality ---

    def topics(self) -> List[Reconciler]:
        return [t for t in (self._session_topic, self._participants_topic, self._answers_topic) if t is not None]

    def quality(self) -> ConnectionQuality:
        return worst_quality(t.quality() for t in self.topics())

    @property
    def degraded(self) -> bool:
        return any(t.degraded for t in self.topics())

    def _on_topic_state(self, state: TopicState) -> None:
        quality = self.quality()
        if quality is self._quality:
            return
        self._quality = quality
        if self.on_quality_change is not None:
            result = self.on_quality_change(quality)
            if inspect.isawaitable(result):
                asyncio.ensure_future(result)

    # --- observed records ---

    async def _on_session(self, session: Session) -> None:
        if self._closed:
            return
        previous, self.session = self.session, session
        await _notify(self.on_session_update, session)

        if previous is None or previous.id != session.id:
            await self._open_participants(session.id)

        if self.resets.observe(session):
            await self._open_answers(session)

        if session.is_active:
            self.timer.reset(
                session.current_question_index,
                session.question_start_time,
                self.service.bank.time_limit(session.current_question_index),
            )
        elif self.timer.running:
            self.timer.stop()

    async def _open_participants(self, session_id: str) -> None:
        if self._participants_topic is not None:
            await self._participants_topic.close()
        self._participants_topic = await open_topic(
            self.store,
            participants_topic(session_id, self.options.collection_poll_interval),
            self._on_participants,
            **self._topic_kwargs(),
        )

    async def _open_answers(self, session: Session) -> None:
        # tear down the previous question's topic before opening the next one
        if self._answers_topic is not None:
            await self._answers_topic.close()
            self._answers_topic = None
        self.answers = []
        await _notify(self.on_answers_update, [])
        self._answers_topic = await open_topic(
            self.store,
            answers_topic(
                session.id,
                session.current_question_index,
                participant_id=self.participant_id,
                poll_interval=self.options.answers_poll_interval,
            ),
            self._on_answers,
            **self._topic_kwargs(),
        )

    async def _on_participants(self, participants: List[Participant]) -> None:
        self.participants = participants
        await _notify(self.on_participants_update, participants)

    async def _on_answers(self, answers: List[Answer]) -> None:
        self.answers = answers
        if self.participant_id is not None:
            for answer in answers:
                if answer.participant_id == self.participant_id:
                    self.timer.mark_answered(answer.question_index)
        await _notify(self.on_answers_update, answers)

    @property
    def has_answered(self) -> bool:
        return self.participant_id is not None and any(a.participant_id == self.participant_id for a in self.answers)

    # --- deadline ---

    async def _on_deadline(self, question_index: int) -> None:
        if self._closed:
            return
        if not self.is_host:
            await self._submit_timeout(question_index)
        elif self.options.auto_advance:
            await self._auto_advance(question_index)

    async def _submit_timeout(self, question_index: int) -> None:
        try:
            answer = await self.service.submit_answer(self.participant_id, question_index, None)
        except LiveQuizError as e:
            # store hiccup: let the next tick try again
            logger.warning("timeout submission for %s failed: %s", self.participant_id, e)
            self.timer.retry_expiry(question_index)
            return
        if answer is not None:
            self.timer.mark_answered(question_index)

    async def _auto_advance(self, question_index: int) -> None:
        session = self.session
        if session is None or session.current_question_index != question_index:
            return
        try:
            await self.service.advance_question(self.code, self.host_id)
        except InvalidTransitionError as e:
            logger.info("deadline advance skipped: %s", e)
        except LiveQuizError as e:
            logger.warning("deadline advance failed: %s", e)
            self.timer.retry_expiry(question_index)
