from types import SimpleNamespace

import pytest
from postgrest.exceptions import APIError

from livequiz.core.errors import DuplicateRowError, StoreError
from livequiz.domain.model import ANSWERS, SESSIONS
from livequiz.repositories.base import FeedStatus
from livequiz.repositories.supabase_store import (
    SupabaseStore,
    event_from_payload,
    map_realtime_state,
    realtime_filter,
)


class FakeQuery:
    def __init__(self, result=None, error=None):
        self.calls = []
        self.result = result
        self.error = error

    def __getattr__(self, name):
        def method(*args, **kwargs):
            self.calls.append((name, args, kwargs))
            return self

        return method

    async def execute(self):
        if self.error is not None:
            raise self.error
        return SimpleNamespace(data=self.result)


class FakeClient:
    def __init__(self, query):
        self.query = query
        self.tables = []

    def table(self, name):
        self.tables.append(name)
        return self.query


@pytest.mark.parametrize(
    "state,expected",
    [
        ("SUBSCRIBED", FeedStatus.LIVE),
        ("TIMED_OUT", FeedStatus.DEGRADED),
        ("CHANNEL_ERROR", FeedStatus.FAILED),
        ("CLOSED", FeedStatus.FAILED),
        (SimpleNamespace(value="SUBSCRIBED"), FeedStatus.LIVE),
        ("joining", FeedStatus.CONNECTING),
    ],
)
def test_map_realtime_state(state, expected):
    assert map_realtime_state(state) is expected


def test_event_from_payload_shapes():
    wrapped = {"data": {"type": "UPDATE", "record": {"id": "1"}, "old_record": {"id": "1", "x": 0}}}
    event = event_from_payload(wrapped)
    assert event.type == "UPDATE"
    assert event.new == {"id": "1"}
    assert event.old == {"id": "1", "x": 0}

    js_style = event_from_payload({"eventType": "insert", "new": {"id": "2"}, "old": {}})
    assert js_style.type == "INSERT"
    assert js_style.old is None

    assert event_from_payload({"data": {"record": {}}}) is None
    assert event_from_payload("garbage") is None


def test_realtime_filter_uses_first_predicate():
    assert realtime_filter({"session_id": "s1", "question_index": 2}) == "session_id=eq.s1"
    assert realtime_filter(None) is None


@pytest.mark.asyncio
async def test_get_translates_filters_and_order():
    query = FakeQuery(result=[{"id": "a"}])
    store = SupabaseStore(FakeClient(query))
    rows = await store.get(ANSWERS, {"session_id": "s1"}, order_by="response_time_ms", limit=5)
    assert rows == [{"id": "a"}]
    names = [c[0] for c in query.calls]
    assert names == ["select", "eq", "order", "limit"]


@pytest.mark.asyncio
async def test_unique_violation_becomes_duplicate_row():
    error = APIError({"message": "duplicate key value", "code": "23505", "hint": None, "details": None})
    store = SupabaseStore(FakeClient(FakeQuery(error=error)))
    with pytest.raises(DuplicateRowError):
        await store.insert(SESSIONS, {"session_code": "ABC123"})


@pytest.mark.asyncio
async def test_other_api_errors_become_store_errors():
    error = APIError({"message": "permission denied", "code": "42501", "hint": None, "details": None})
    store = SupabaseStore(FakeClient(FakeQuery(error=error)))
    with pytest.raises(StoreError):
        await store.get(SESSIONS, {"session_code": "ABC123"})
    with pytest.raises(StoreError):
        await store.insert(SESSIONS, {"session_code": "ABC123"})


@pytest.mark.asyncio
async def test_insert_without_returned_row_is_an_error():
    store = SupabaseStore(FakeClient(FakeQuery(result=[])))
    with pytest.raises(StoreError):
        await store.insert(SESSIONS, {"session_code": "ABC123"})
