from datetime import datetime, timezone

import pytest

from livequiz.domain.model import (
    Answer,
    Participant,
    RecordError,
    Session,
    SessionStatus,
    generate_session_code,
    is_valid_session_code,
    normalize_session_code,
)
from livequiz.domain.questions import DEFAULT_BANK, Question, QuestionBank
from livequiz.services.typing import parse_timestamp


def test_session_codes():
    code = generate_session_code()
    assert is_valid_session_code(code)
    assert normalize_session_code(" ab12cd ") == "AB12CD"
    assert not is_valid_session_code("AB12C")


def test_session_from_row():
    s = Session.from_row(
        {
            "id": 7,
            "session_code": "abc123",
            "status": "active",
            "current_question_index": 2,
            "question_start_time": "2024-05-01T12:00:00Z",
        }
    )
    assert s.id == "7"
    assert s.code == "ABC123"
    assert s.status is SessionStatus.ACTIVE
    assert s.question_start_time == datetime(2024, 5, 1, 12, tzinfo=timezone.utc)
    assert s.is_active
    assert s.to_dict()["questionStartTime"].startswith("2024-05-01T12:00:00")


@pytest.mark.parametrize(
    "row",
    [
        {"id": "1", "session_code": "ABC123", "status": "paused"},
        {"id": "1", "session_code": "ABC123"},
        {"id": "1", "session_code": "ABC123", "status": "active", "current_question_index": -1},
    ],
)
def test_malformed_session_rows(row):
    with pytest.raises(RecordError):
        Session.from_row(row)


def test_answer_timeout_sentinel():
    a = Answer.from_row(
        {"id": "a", "session_id": "s", "participant_id": "p", "question_index": 0, "answer": "timeout"}
    )
    assert a.is_timeout and a.value is None and not a.is_correct
    assert a.to_dict()["isTimeout"] is True

    b = Answer.from_row(
        {"id": "b", "session_id": "s", "participant_id": "p", "question_index": 0, "answer": "2", "is_correct": True}
    )
    assert b.value == 2 and b.is_correct

    with pytest.raises(RecordError):
        Answer.from_row({"id": "c", "session_id": "s", "participant_id": "p", "question_index": 0, "answer": "x"})


def test_participant_score_cannot_be_negative():
    assert Participant.from_row({"id": "p", "session_id": "s", "name": "A"}).total_score == 0
    with pytest.raises(RecordError):
        Participant.from_row({"id": "p", "session_id": "s", "name": "A", "total_score": -1})


def test_parse_timestamp_variants():
    expected = datetime(2024, 5, 1, 12, tzinfo=timezone.utc)
    assert parse_timestamp("2024-05-01 12:00:00+00") == expected
    assert parse_timestamp(int(expected.timestamp() * 1000)) == expected
    assert parse_timestamp(datetime(2024, 5, 1, 12)) == expected
    assert parse_timestamp(None) is None


def test_question_bank():
    assert len(DEFAULT_BANK) == 10
    assert DEFAULT_BANK.get(0).is_correct(2)
    assert DEFAULT_BANK.get(10) is None
    assert DEFAULT_BANK.time_limit(2) == 15
    public = DEFAULT_BANK.get(0).to_public_dict(0)
    assert "correctAnswer" not in public and public["timeLimit"] == 30
    with pytest.raises(ValueError):
        QuestionBank([])
    assert QuestionBank([Question("q", ["a", "b"], 0)]).time_limit(0) == 30
