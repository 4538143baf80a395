import asyncio

import pytest

from livequiz.core.errors import (
    HostMismatchError,
    InvalidAnswerError,
    InvalidNameError,
    InvalidTransitionError,
    NameTakenError,
    ParticipantNotFoundError,
    SessionNotFoundError,
)
from livequiz.domain.model import ANSWERS, PARTICIPANTS, QUIZZES, SESSIONS, SessionStatus, is_valid_session_code


@pytest.mark.asyncio
async def test_create_session_waits_at_question_zero(store, service):
    hs = await service.create_session()
    assert is_valid_session_code(hs.code)
    assert hs.host_id.startswith("host_")

    session = await service.get_session(hs.code.lower())
    assert session.status is SessionStatus.WAITING
    assert session.current_question_index == 0
    assert session.question_start_time is None
    assert len(store.table(QUIZZES)) == 1


@pytest.mark.asyncio
async def test_create_session_retries_taken_codes(store, service, monkeypatch):
    taken = await service.create_session()
    codes = iter([taken.code, taken.code, "ZZZ999"])
    monkeypatch.setattr("livequiz.services.quiz_service.generate_session_code", lambda: next(codes))
    hs = await service.create_session()
    assert hs.code == "ZZZ999"


@pytest.mark.asyncio
async def test_unknown_session_code(service):
    with pytest.raises(SessionNotFoundError):
        await service.get_session("NOPE00")
    with pytest.raises(SessionNotFoundError):
        await service.get_session("bad code!")


@pytest.mark.asyncio
async def test_join_trims_and_enforces_unique_names(store, service):
    hs = await service.create_session()
    alice = await service.join_session(hs.code, "  Alice ")
    assert alice.name == "Alice"
    assert alice.total_score == 0

    with pytest.raises(NameTakenError):
        await service.join_session(hs.code, "Alice  ")
    with pytest.raises(InvalidNameError):
        await service.join_session(hs.code, "   ")
    assert len(store.table(PARTICIPANTS)) == 1


@pytest.mark.asyncio
async def test_concurrent_joins_with_one_name_admit_one(store, service):
    hs = await service.create_session()
    results = await asyncio.gather(
        service.join_session(hs.code, "Sam"),
        service.join_session(hs.code, "Sam"),
        return_exceptions=True,
    )
    assert sum(isinstance(r, NameTakenError) for r in results) == 1
    assert len(store.table(PARTICIPANTS)) == 1


@pytest.mark.asyncio
async def test_join_unknown_or_finished_session(store, service):
    with pytest.raises(SessionNotFoundError):
        await service.join_session("NOPE00", "Alice")
    hs = await service.create_session()
    await store.update(SESSIONS, {"id": hs.session_id}, {"status": "finished"})
    with pytest.raises(InvalidTransitionError):
        await service.join_session(hs.code, "Alice")


@pytest.mark.asyncio
async def test_full_lifecycle(service, clock):
    hs = await service.create_session()
    await service.join_session(hs.code, "Alice")

    started = await service.start_quiz(hs.code, hs.host_id)
    assert started.status is SessionStatus.ACTIVE
    assert started.current_question_index == 0
    assert started.question_start_time == clock.now

    with pytest.raises(InvalidTransitionError):
        await service.start_quiz(hs.code, hs.host_id)

    clock.advance(10)
    second = await service.advance_question(hs.code, hs.host_id)
    assert second.current_question_index == 1
    assert second.question_start_time == clock.now

    shown = await service.reveal_rankings(hs.code, hs.host_id)
    assert shown.status is SessionStatus.SHOWING_RESULTS
    third = await service.advance_question(hs.code, hs.host_id)
    assert third.status is SessionStatus.ACTIVE
    assert third.current_question_index == 2

    clock.advance(10)
    finished = await service.advance_question(hs.code, hs.host_id)
    assert finished.status is SessionStatus.FINISHED
    assert finished.current_question_index == 2
    # finishing does not restart the clock
    assert finished.question_start_time == third.question_start_time

    with pytest.raises(InvalidTransitionError):
        await service.advance_question(hs.code, hs.host_id)


@pytest.mark.asyncio
async def test_commands_need_the_owning_host(service):
    hs = await service.create_session()
    with pytest.raises(HostMismatchError):
        await service.start_quiz(hs.code, "host_someone_else")
    with pytest.raises(InvalidTransitionError):
        await service.advance_question(hs.code, hs.host_id)
    with pytest.raises(InvalidTransitionError):
        await service.reveal_rankings(hs.code, hs.host_id)


@pytest.mark.asyncio
async def test_racing_host_commands_apply_once(store, service):
    hs = await service.create_session()
    await service.start_quiz(hs.code, hs.host_id)
    results = await asyncio.gather(
        service.advance_question(hs.code, hs.host_id),
        service.advance_question(hs.code, hs.host_id),
        return_exceptions=True,
    )
    assert sum(isinstance(r, InvalidTransitionError) for r in results) == 1
    assert store.table(SESSIONS)[0]["current_question_index"] == 1


@pytest.mark.asyncio
async def test_submit_answer_records_response_time(service, clock, started):
    hs, session, (alice, bob, carol) = started
    clock.advance(1.5)
    answer = await service.submit_answer(alice.id, 0, 1)
    assert answer.is_correct
    assert answer.response_time_ms == 1500
    assert answer.points_awarded == 0

    wrong = await service.submit_answer(bob.id, 0, 0)
    assert not wrong.is_correct

    timeout = await service.submit_answer(carol.id, 0, None)
    assert timeout.is_timeout and not timeout.is_correct


@pytest.mark.asyncio
async def test_second_submission_keeps_the_first(store, service, started):
    hs, session, (alice, _, _) = started
    first = await service.submit_answer(alice.id, 0, 1)
    again = await service.submit_answer(alice.id, 0, 3)
    assert again == first
    assert len(store.table(ANSWERS)) == 1


@pytest.mark.asyncio
async def test_manual_answer_racing_the_timeout_stores_one_row(store, service, started):
    hs, session, (alice, _, _) = started
    manual, timeout = await asyncio.gather(
        service.submit_answer(alice.id, 0, 1),
        service.submit_answer(alice.id, 0, None),
    )
    assert manual.id == timeout.id
    assert len(store.table(ANSWERS)) == 1


@pytest.mark.asyncio
async def test_late_or_stale_submissions_are_ignored(store, service, started):
    hs, session, (alice, bob, _) = started
    assert await service.submit_answer(alice.id, 1, 1) is None

    await service.reveal_rankings(hs.code, hs.host_id)
    assert await service.submit_answer(bob.id, 0, 1) is None
    assert store.table(ANSWERS) == []


@pytest.mark.asyncio
async def test_answer_after_the_deadline_is_recorded_as_timeout(service, clock, started):
    hs, session, (alice, bob, _) = started
    clock.advance(29.5)
    in_time = await service.submit_answer(bob.id, 0, 1)
    assert in_time.is_correct

    clock.advance(270.5)
    late = await service.submit_answer(alice.id, 0, 1)
    assert late.is_timeout
    assert not late.is_correct
    assert late.response_time_ms == 300000

    await service.reveal_rankings(hs.code, hs.host_id)
    totals = {s.participant.name: s.participant.total_score for s in await service.rankings(hs.code)}
    assert totals["Alice"] == 0
    assert totals["Bob"] == 10


@pytest.mark.asyncio
async def test_out_of_range_option_is_rejected(service, started):
    hs, session, (alice, _, _) = started
    with pytest.raises(InvalidAnswerError):
        await service.submit_answer(alice.id, 0, 7)
    with pytest.raises(ParticipantNotFoundError):
        await service.submit_answer("nobody", 0, 1)


@pytest.mark.asyncio
async def test_reveal_then_advance_scores_once(service, clock, started):
    hs, session, (alice, bob, carol) = started
    clock.advance(1)
    await service.submit_answer(bob.id, 0, 1)
    clock.advance(1)
    await service.submit_answer(alice.id, 0, 1)
    await service.submit_answer(carol.id, 0, 2)

    await service.reveal_rankings(hs.code, hs.host_id)
    await service.advance_question(hs.code, hs.host_id)

    standings = await service.rankings(hs.code)
    assert [(s.position, s.participant.name, s.participant.total_score) for s in standings] == [
        (1, "Bob", 10),
        (2, "Alice", 7),
        (3, "Carol", 0),
    ]


@pytest.mark.asyncio
async def test_advance_without_reveal_still_scores(service, started):
    hs, session, (alice, _, _) = started
    await service.submit_answer(alice.id, 0, 1)
    await service.advance_question(hs.code, hs.host_id)
    alice_now = await service.get_participant(alice.id)
    assert alice_now.total_score == 10


@pytest.mark.asyncio
async def test_question_summary(service, started):
    hs, session, (alice, bob, carol) = started
    await service.submit_answer(alice.id, 0, 1)
    await service.submit_answer(bob.id, 0, 2)
    await service.submit_answer(carol.id, 0, None)

    summary = await service.question_summary(hs.code, 0)
    assert summary["answered"] == 3
    assert summary["correct"] == 1
    assert summary["timeouts"] == 1
    assert summary["distribution"] == {0: 0, 1: 1, 2: 1, 3: 0}
    assert summary["correctIndex"] == 1
