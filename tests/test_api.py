import pytest
from fastapi.testclient import TestClient

from livequiz.api.deps import get_store
from livequiz.main import app

from tests.fakes import MemoryStore

API = "/api/v1/sessions"


@pytest.fixture()
def client():
    store = MemoryStore()

    async def memory_store():
        return store

    app.dependency_overrides[get_store] = memory_store
    with TestClient(app) as c:
        c.store = store
        yield c
    app.dependency_overrides.clear()


def create(client):
    resp = client.post(f"{API}/")
    assert resp.status_code == 201
    return resp.json()


def test_create_and_fetch_session(client):
    created = create(client)
    resp = client.get(f"{API}/{created['code'].lower()}")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "waiting"
    assert body["currentQuestionIndex"] == 0
    assert body["questionStartTime"] is None
    assert body["totalQuestions"] == 10


def test_unknown_session_is_404(client):
    assert client.get(f"{API}/NOPE00").status_code == 404


def test_join_and_duplicate_name(client):
    created = create(client)
    resp = client.post(f"{API}/{created['code']}/participants", json={"name": " Alice "})
    assert resp.status_code == 201
    assert resp.json()["name"] == "Alice"

    dup = client.post(f"{API}/{created['code']}/participants", json={"name": "Alice"})
    assert dup.status_code == 409
    blank = client.post(f"{API}/{created['code']}/participants", json={"name": "   "})
    assert blank.status_code == 422

    roster = client.get(f"{API}/{created['code']}/participants").json()
    assert [p["name"] for p in roster] == ["Alice"]
    assert roster[0]["totalScore"] == 0


def test_host_flow_and_answers(client):
    created = create(client)
    code, host = created["code"], {"hostId": created["hostId"]}
    pid = client.post(f"{API}/{code}/participants", json={"name": "Alice"}).json()["participantId"]

    assert client.post(f"{API}/{code}/start", json={"hostId": "host_intruder"}).status_code == 403
    started = client.post(f"{API}/{code}/start", json=host)
    assert started.status_code == 200
    assert started.json()["status"] == "active"
    assert client.post(f"{API}/{code}/start", json=host).status_code == 409

    # question 0: Paris is option 2
    ack = client.post(f"{API}/{code}/answers", json={"participantId": pid, "questionIndex": 0, "optionIndex": 2})
    assert ack.status_code == 200
    assert ack.json()["accepted"] is True
    assert ack.json()["answer"]["isCorrect"] is True

    late = client.post(f"{API}/{code}/answers", json={"participantId": pid, "questionIndex": 4, "optionIndex": 0})
    assert late.json() == {"accepted": False, "answer": None}

    assert client.post(f"{API}/{code}/reveal", json=host).json()["status"] == "showing_results"
    rankings = client.get(f"{API}/{code}/rankings").json()
    assert rankings == [{"position": 1, "participantId": pid, "name": "Alice", "totalScore": 10}]

    summary = client.get(f"{API}/{code}/questions/0/summary").json()
    assert summary["answered"] == 1 and summary["correct"] == 1
    assert client.get(f"{API}/{code}/questions/99/summary").status_code == 404

    nxt = client.post(f"{API}/{code}/advance", json=host).json()
    assert nxt["currentQuestionIndex"] == 1
    assert client.get(f"{API}/{code}/rankings").json()[0]["totalScore"] == 10


def test_out_of_range_option_is_422(client):
    created = create(client)
    code = created["code"]
    pid = client.post(f"{API}/{code}/participants", json={"name": "Bob"}).json()["participantId"]
    client.post(f"{API}/{code}/start", json={"hostId": created["hostId"]})
    resp = client.post(f"{API}/{code}/answers", json={"participantId": pid, "questionIndex": 0, "optionIndex": 9})
    assert resp.status_code == 422


def test_answer_under_another_session_code_is_404(client):
    first, second = create(client), create(client)
    pid = client.post(f"{API}/{first['code']}/participants", json={"name": "Alice"}).json()["participantId"]
    for created in (first, second):
        client.post(f"{API}/{created['code']}/start", json={"hostId": created["hostId"]})

    body = {"participantId": pid, "questionIndex": 0, "optionIndex": 2}
    assert client.post(f"{API}/{second['code']}/answers", json=body).status_code == 404
    assert client.store.table("answers") == []
    assert client.post(f"{API}/NOPE00/answers", json=body).status_code == 404

    assert client.post(f"{API}/{first['code']}/answers", json=body).json()["accepted"] is True


def test_websocket_state_sync_and_answer(client):
    created = create(client)
    code = created["code"]
    pid = client.post(f"{API}/{code}/participants", json={"name": "Alice"}).json()["participantId"]
    client.post(f"{API}/{code}/start", json={"hostId": created["hostId"]})

    with client.websocket_connect(f"/ws?role=player&roomCode={code}&participantId={pid}") as ws:
        frame = ws.receive_json()
        while frame["type"] != "state_sync":
            frame = ws.receive_json()
        assert frame["status"] == "active"
        assert frame["question"]["questionText"] == "What is the capital of France?"
        assert "correctAnswer" not in frame["question"]

        ws.send_json({"type": "player:answer", "questionIndex": 0, "optionIndex": 2})
        frame = ws.receive_json()
        while frame["type"] != "answer_ack":
            frame = ws.receive_json()
        assert frame["ok"] is True

    assert len(client.store.table("answers")) == 1


def test_websocket_rejects_unknown_room(client):
    with client.websocket_connect("/ws?role=host&roomCode=NOPE00") as ws:
        frame = ws.receive_json()
        assert frame["type"] == "error"
