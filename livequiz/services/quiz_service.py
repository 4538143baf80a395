import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional
import uuid

from .typing import to_iso, utcnow
from ..core.errors import (
    DuplicateRowError,
    HostMismatchError,
    InvalidAnswerError,
    InvalidNameError,
    InvalidTransitionError,
    NameTakenError,
    ParticipantNotFoundError,
    SessionNotFoundError,
    StoreError,
)
from ..domain.model import (
    ANSWERS,
    PARTICIPANTS,
    QUIZZES,
    SESSIONS,
    Answer,
    Participant,
    Session,
    SessionStatus,
    encode_answer_value,
    generate_session_code,
    is_valid_session_code,
    normalize_session_code,
)
from ..domain.questions import DEFAULT_BANK, QuestionBank
from ..engine.scoring import ScoringEngine
from ..engine.state_machine import SessionStateMachine
from ..repositories.base import Store

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HostSession:
    code: str
    session_id: str
    host_id: str


@dataclass(frozen=True)
class Standing:
    position: int
    participant: Participant


class QuizService:
    """Host and participant commands. Every state change is a write to the store."""

    def __init__(
        self,
        store: Store,
        bank: QuestionBank = DEFAULT_BANK,
        *,
        clock: Callable[[], datetime] = utcnow,
        code_attempts: int = 5,
    ) -> None:
        self.store = store
        self.bank = bank
        self.clock = clock
        self.code_attempts = code_attempts
        self.machine = SessionStateMachine(len(bank))
        self.scoring = ScoringEngine(store)

    # --- lookups ---

    async def get_session(self, code: str) -> Session:
        code = normalize_session_code(code)
        if not is_valid_session_code(code):
            raise SessionNotFoundError(code)
        row = await self.store.get_one(SESSIONS, {"session_code": code})
        if row is None:
            raise SessionNotFoundError(code)
        return Session.from_row(row)

    async def get_participant(self, participant_id: str) -> Participant:
        row = await self.store.get_one(PARTICIPANTS, {"id": participant_id})
        if row is None:
            raise ParticipantNotFoundError(participant_id)
        return Participant.from_row(row)

    # --- host commands ---

    async def create_session(self) -> HostSession:
        host_id = f"host_{uuid.uuid4().hex}"
        for attempt in range(1, self.code_attempts + 1):
            code = generate_session_code()
            if await self.store.get_one(SESSIONS, {"session_code": code}) is not None:
                logger.info("session code %s already in use (attempt %d)", code, attempt)
                continue
            quiz = await self.store.insert(QUIZZES, {"title": f"Quiz {code}"})
            try:
                row = await self.store.insert(
                    SESSIONS,
                    {
                        "quiz_id": quiz["id"],
                        "session_code": code,
                        "host_id": host_id,
                        "status": SessionStatus.WAITING.value,
                        "current_question_index": 0,
                    },
                )
            except DuplicateRowError:
                logger.info("session code %s claimed concurrently (attempt %d)", code, attempt)
                continue
            logger.info("created session %s (%s)", code, row["id"])
            return HostSession(code=code, session_id=str(row["id"]), host_id=host_id)
        raise StoreError(f"could not allocate a session code after {self.code_attempts} attempts")

    def _check_host(self, session: Session, host_id: Optional[str]) -> None:
        if session.host_id and host_id != session.host_id:
            raise HostMismatchError(f"host id does not own session {session.code}")

    async def _write_transition(self, command: str, session: Session, patch: dict) -> Session:
        rows = await self.store.update(SESSIONS, self.machine.guard(session), patch)
        if not rows:
            # someone else moved the session between our read and write
            raise InvalidTransitionError(command, f"{session.status.value} (changed concurrently)")
        updated = Session.from_row(rows[0])
        logger.info(
            "session %s: %s -> %s (question %d)",
            session.code,
            session.status.value,
            updated.status.value,
            updated.current_question_index,
        )
        return updated

    async def start_quiz(self, code: str, host_id: Optional[str]) -> Session:
        session = await self.get_session(code)
        self._check_host(session, host_id)
        patch = self.machine.start(session, self.clock())
        return await self._write_transition("start", session, patch)

    async def advance_question(self, code: str, host_id: Optional[str]) -> Session:
        session = await self.get_session(code)
        self._check_host(session, host_id)
        now = self.clock()
        patch = self.machine.advance(session, now)
        if self.machine.scores_on_leave(session):
            await self.scoring.score_question(session.id, session.current_question_index)
        return await self._write_transition("advance", session, patch)

    async def reveal_rankings(self, code: str, host_id: Optional[str]) -> Session:
        session = await self.get_session(code)
        self._check_host(session, host_id)
        patch = self.machine.reveal(session)
        await self.scoring.score_question(session.id, session.current_question_index)
        return await self._write_transition("reveal rankings", session, patch)

    # --- participant commands ---

    async def join_session(self, code: str, name: str) -> Participant:
        name = (name or "").strip()
        if not name:
            raise InvalidNameError("Please enter your name")
        session = await self.get_session(code)
        if session.status is SessionStatus.FINISHED:
            raise InvalidTransitionError("join", session.status.value)

        taken = await self.store.get_one(PARTICIPANTS, {"session_id": session.id, "name": name})
        if taken is not None:
            raise NameTakenError(name)
        try:
            row = await self.store.insert(
                PARTICIPANTS,
                {"session_id": session.id, "name": name, "total_score": 0},
            )
        except DuplicateRowError:
            raise NameTakenError(name) from None
        participant = Participant.from_row(row)
        logger.info("participant %s joined %s as %r", participant.id, session.code, name)
        return participant

    async def submit_answer(
        self,
        participant_id: str,
        question_index: int,
        value: Optional[int],
    ) -> Optional[Answer]:
        """
        Record ``value`` (None for the timeout sentinel) for the participant's
        current question. Returns the stored answer; when one already exists for
        the (session, participant, question) triple, that answer is returned
        unchanged. Returns None when the question is no longer open. A value that
        arrives after the question's time limit is stored as the timeout sentinel.
        """
        participant = await self.get_participant(participant_id)
        session_row = await self.store.get_one(SESSIONS, {"id": participant.session_id})
        if session_row is None:
            raise SessionNotFoundError(participant.session_id)
        session = Session.from_row(session_row)

        if not session.is_active or session.current_question_index != question_index:
            logger.info(
                "ignoring answer from %s for question %d: session %s is %s at question %d",
                participant_id,
                question_index,
                session.code,
                session.status.value,
                session.current_question_index,
            )
            return None

        question = self.bank.get(question_index)
        if question is None:
            raise InvalidAnswerError(f"Question {question_index} does not exist")
        if value is not None and not 0 <= value < len(question.answers):
            raise InvalidAnswerError(f"Option {value} is out of range")

        triple = {
            "session_id": session.id,
            "participant_id": participant.id,
            "question_index": question_index,
        }
        existing = await self.store.get_one(ANSWERS, triple)
        if existing is not None:
            logger.info("participant %s already answered question %d", participant_id, question_index)
            return Answer.from_row(existing)

        now = self.clock()
        response_ms = max(0, int((now - session.question_start_time) / timedelta(milliseconds=1)))
        if value is not None and response_ms > question.time_limit * 1000:
            # the shared deadline has passed; the slot becomes a timeout
            logger.info(
                "answer from %s for question %d came %dms after the deadline, recording a timeout",
                participant_id,
                question_index,
                response_ms - question.time_limit * 1000,
            )
            value = None
        row = {
            **triple,
            "answer": encode_answer_value(value),
            "is_correct": value is not None and question.is_correct(value),
            "response_time_ms": response_ms,
            "points_awarded": 0,
            "submitted_at": to_iso(now),
        }
        try:
            inserted = await self.store.insert(ANSWERS, row)
        except DuplicateRowError:
            # first write wins
            existing = await self.store.get_one(ANSWERS, triple)
            return Answer.from_row(existing) if existing else None
        answer = Answer.from_row(inserted)
        logger.info(
            "participant %s answered question %d: %s in %dms",
            participant_id,
            question_index,
            "timeout" if answer.is_timeout else answer.value,
            answer.response_time_ms,
        )
        return answer

    # --- views ---

    async def rankings(self, code: str) -> List[Standing]:
        session = await self.get_session(code)
        rows = await self.store.get(PARTICIPANTS, {"session_id": session.id})
        participants = sorted(
            (Participant.from_row(r) for r in rows),
            key=lambda p: (-p.total_score, p.name.lower()),
        )
        return [Standing(position=i, participant=p) for i, p in enumerate(participants, start=1)]

    async def question_summary(self, code: str, question_index: int) -> dict:
        session = await self.get_session(code)
        rows = await self.store.get(ANSWERS, {"session_id": session.id, "question_index": question_index})
        answers = [Answer.from_row(r) for r in rows]
        question = self.bank.get(question_index)
        distribution = {i: 0 for i in range(len(question.answers))} if question else {}
        for a in answers:
            if a.value is not None:
                distribution[a.value] = distribution.get(a.value, 0) + 1
        return {
            "questionIndex": question_index,
            "answered": len(answers),
            "correct": sum(1 for a in answers if a.is_correct),
            "timeouts": sum(1 for a in answers if a.is_timeout),
            "distribution": distribution,
            "correctIndex": question.correct_answer if question else None,
        }
