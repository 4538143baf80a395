from __future__ import annotations

import enum
import secrets
import string
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Optional

from ..services.typing import parse_timestamp, to_iso

SESSIONS = "quiz_sessions"
PARTICIPANTS = "participants"
ANSWERS = "answers"
QUIZZES = "quizzes"

# Stored answer value for "no answer before the deadline"
TIMEOUT_ANSWER = "timeout"

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 6


class SessionStatus(str, enum.Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    SHOWING_RESULTS = "showing_results"
    FINISHED = "finished"


def generate_session_code() -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))


def normalize_session_code(code: str) -> str:
    """Codes are case-insensitive at entry and stored upper case."""
    return (code or "").strip().upper()


def is_valid_session_code(code: str) -> bool:
    return len(code) == CODE_LENGTH and all(c in CODE_ALPHABET for c in code)


class RecordError(ValueError):
    """A store row could not be narrowed to its entity type."""


def _require(row: Mapping[str, Any], key: str) -> Any:
    try:
        value = row[key]
    except KeyError:
        raise RecordError(f"missing field {key!r}") from None
    if value is None:
        raise RecordError(f"field {key!r} is null")
    return value


@dataclass(frozen=True)
class Session:
    id: str
    code: str
    status: SessionStatus
    current_question_index: int = 0
    question_start_time: Optional[datetime] = None
    host_id: Optional[str] = None
    quiz_id: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Session":
        try:
            status = SessionStatus(_require(row, "status"))
        except ValueError as exc:
            raise RecordError(str(exc)) from exc
        index = int(row.get("current_question_index") or 0)
        if index < 0:
            raise RecordError("current_question_index must be >= 0")
        return cls(
            id=str(_require(row, "id")),
            code=normalize_session_code(_require(row, "session_code")),
            status=status,
            current_question_index=index,
            question_start_time=parse_timestamp(row.get("question_start_time")),
            host_id=row.get("host_id"),
            quiz_id=row.get("quiz_id"),
        )

    @property
    def is_active(self) -> bool:
        return self.status is SessionStatus.ACTIVE and self.question_start_time is not None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "status": self.status.value,
            "currentQuestionIndex": self.current_question_index,
            "questionStartTime": to_iso(self.question_start_time) if self.question_start_time else None,
        }


@dataclass(frozen=True)
class Participant:
    id: str
    session_id: str
    name: str
    total_score: int = 0

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Participant":
        score = int(row.get("total_score") or 0)
        if score < 0:
            raise RecordError("total_score must be >= 0")
        return cls(
            id=str(_require(row, "id")),
            session_id=str(_require(row, "session_id")),
            name=str(_require(row, "name")),
            total_score=score,
        )

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "totalScore": self.total_score}


@dataclass(frozen=True)
class Answer:
    id: str
    session_id: str
    participant_id: str
    question_index: int
    # None is the timeout sentinel
    value: Optional[int]
    is_correct: bool
    response_time_ms: int
    points_awarded: int = 0
    submitted_at: Optional[datetime] = field(default=None, compare=False)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Answer":
        raw = row.get("answer")
        if raw is None or raw == TIMEOUT_ANSWER:
            value = None
        else:
            try:
                value = int(raw)
            except (TypeError, ValueError):
                raise RecordError(f"unparseable answer value {raw!r}") from None
        return cls(
            id=str(_require(row, "id")),
            session_id=str(_require(row, "session_id")),
            participant_id=str(_require(row, "participant_id")),
            question_index=int(_require(row, "question_index")),
            value=value,
            is_correct=bool(row.get("is_correct")),
            response_time_ms=max(0, int(row.get("response_time_ms") or 0)),
            points_awarded=max(0, int(row.get("points_awarded") or 0)),
            submitted_at=parse_timestamp(row.get("submitted_at")),
        )

    @property
    def key(self) -> tuple[str, str, int]:
        return (self.session_id, self.participant_id, self.question_index)

    @property
    def is_timeout(self) -> bool:
        return self.value is None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "participantId": self.participant_id,
            "questionIndex": self.question_index,
            "answer": self.value,
            "isTimeout": self.is_timeout,
            "isCorrect": self.is_correct,
            "responseTimeMs": self.response_time_ms,
            "pointsAwarded": self.points_awarded,
        }


def encode_answer_value(value: Optional[int]) -> str:
    return TIMEOUT_ANSWER if value is None else str(value)
