import pytest
import pytest_asyncio

from livequiz.domain.questions import Question, QuestionBank
from livequiz.services.live_view import SyncOptions
from livequiz.services.quiz_service import QuizService

from tests.fakes import FakeClock, MemoryStore


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def store():
    return MemoryStore()


@pytest.fixture()
def bank():
    return QuestionBank(
        [
            Question("2 + 2?", ["3", "4", "5", "6"], 1, 30),
            Question("Capital of France?", ["London", "Paris", "Rome", "Madrid"], 1, 15),
            Question("Largest ocean?", ["Atlantic", "Indian", "Arctic", "Pacific"], 3, 20),
        ]
    )


@pytest.fixture()
def service(store, bank, clock):
    return QuizService(store, bank, clock=clock)


@pytest.fixture()
def fast_options():
    return SyncOptions(
        grace_period=0.05,
        session_poll_interval=0.02,
        collection_poll_interval=0.02,
        answers_poll_interval=0.02,
        feed_retries=0,
        feed_retry_delay=0.01,
        tick_interval=0.01,
        auto_submit_threshold_ms=100,
    )


@pytest_asyncio.fixture
async def started(service):
    """A session with three participants and the first question live."""
    hs = await service.create_session()
    alice = await service.join_session(hs.code, "Alice")
    bob = await service.join_session(hs.code, "Bob")
    carol = await service.join_session(hs.code, "Carol")
    session = await service.start_quiz(hs.code, hs.host_id)
    return hs, session, (alice, bob, carol)
