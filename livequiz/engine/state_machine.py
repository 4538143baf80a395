from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from ..core.errors import InvalidTransitionError
from ..domain.model import Session, SessionStatus
from ..services.typing import to_iso

logger = logging.getLogger(__name__)


class SessionStateMachine:
    """
    Pure phase logic: each command turns the observed session into the patch
    for one atomic write. Nothing here touches the store.
    """

    def __init__(self, question_count: int) -> None:
        if question_count < 1:
            raise ValueError("question_count must be >= 1")
        self.question_count = question_count

    def is_last_question(self, index: int) -> bool:
        return index + 1 >= self.question_count

    def _check(self, command: str, session: Session, allowed: set[SessionStatus]) -> None:
        if session.status not in allowed:
            raise InvalidTransitionError(command, session.status.value)

    def start(self, session: Session, now: datetime) -> dict:
        self._check("start", session, {SessionStatus.WAITING})
        return {
            "status": SessionStatus.ACTIVE.value,
            "current_question_index": 0,
            "question_start_time": to_iso(now),
        }

    def advance(self, session: Session, now: datetime) -> dict:
        self._check("advance", session, {SessionStatus.ACTIVE, SessionStatus.SHOWING_RESULTS})
        if self.is_last_question(session.current_question_index):
            return {"status": SessionStatus.FINISHED.value}
        return {
            "status": SessionStatus.ACTIVE.value,
            "current_question_index": session.current_question_index + 1,
            "question_start_time": to_iso(now),
        }

    def reveal(self, session: Session) -> dict:
        self._check("reveal rankings", session, {SessionStatus.ACTIVE})
        return {"status": SessionStatus.SHOWING_RESULTS.value}

    @staticmethod
    def guard(session: Session) -> dict:
        """Filter that only matches the session as it was observed."""
        return {
            "id": session.id,
            "status": session.status.value,
            "current_question_index": session.current_question_index,
        }

    @staticmethod
    def scores_on_leave(session: Session) -> bool:
        return session.status in (SessionStatus.ACTIVE, SessionStatus.SHOWING_RESULTS)


class AnswerResetTracker:
    """
    Decides when an observed session means "new question": the session is
    active and its question index differs from the one last reset for.
    Re-deliveries, polls of an unchanged record and status-only changes
    never trigger a second reset.
    """

    def __init__(self) -> None:
        self._key: Optional[tuple[str, int]] = None

    @property
    def question_index(self) -> Optional[int]:
        return self._key[1] if self._key else None

    def observe(self, session: Session) -> bool:
        if session.status is not SessionStatus.ACTIVE:
            return False
        key = (session.id, session.current_question_index)
        if key == self._key:
            return False
        logger.debug("session %s: reset for question %d", session.code, session.current_question_index)
        self._key = key
        return True
