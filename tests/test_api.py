"""Tests for API routes."""
import asyncio
import json

import pytest

from searchsynth.agents.orchestrator import PipelineController
from searchsynth.api.deps import get_controller
from searchsynth.api.routes import sessions
from searchsynth.config import Settings
from searchsynth.models.schemas import TurnRequest
from searchsynth.services.session_store import SessionStore
from tests.fakes import FakeGateway, web_item


def _parse_sse(body: str) -> list[tuple[str, dict]]:
    events = []
    for block in body.replace("\r\n", "\n").split("\n\n"):
        name, data = None, None
        for line in block.splitlines():
            if line.startswith("event:"):
                name = line.split(":", 1)[1].strip()
            elif line.startswith("data:"):
                data = json.loads(line.split(":", 1)[1].strip())
        if name:
            events.append((name, data))
    return events


@pytest.fixture
def controller():
    gateway = FakeGateway(
        queries=["q1"],
        search_results={"q1": [web_item("https://s.example/1")]},
        answer_fragments=("Tides come from the moon ", "[1](https://s.example/1)."),
    )
    return PipelineController(store=SessionStore(), gateway=gateway, config=Settings(_env_file=None))


@pytest.fixture
def client(controller):
    from fastapi.testclient import TestClient

    from searchsynth.main import app

    # sse-starlette keeps a module-level exit event bound to the first loop it saw
    try:
        from sse_starlette.sse import AppStatus

        AppStatus.should_exit_event = None
    except ImportError:
        pass

    app.dependency_overrides[get_controller] = lambda: controller
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["service"] == "searchsynth"


def test_create_and_get_session(client):
    created = client.post("/api/sessions")
    assert created.status_code == 200
    session = created.json()["session"]
    assert session["messages"] == []
    assert session["title"] == "New session"

    fetched = client.get(f"/api/sessions/{session['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["session"]["id"] == session["id"]


def test_unknown_session_returns_404(client):
    assert client.get("/api/sessions/missing").status_code == 404
    assert client.post("/api/sessions/missing/cancel").status_code == 404
    assert client.post("/api/sessions/missing/turns", json={"query": "hi"}).status_code == 404


def test_empty_query_is_rejected(client):
    session_id = client.post("/api/sessions").json()["session"]["id"]
    response = client.post(f"/api/sessions/{session_id}/turns", json={"query": "   "})
    assert response.status_code == 400


def test_cancel_without_running_turn(client):
    session_id = client.post("/api/sessions").json()["session"]["id"]
    response = client.post(f"/api/sessions/{session_id}/cancel")
    assert response.status_code == 200
    assert response.json() == {"session_id": session_id, "cancelled": False}


def test_turn_streams_updates_and_completion(client):
    session_id = client.post("/api/sessions").json()["session"]["id"]

    response = client.post(f"/api/sessions/{session_id}/turns", json={"query": "why are there tides?"})

    assert response.status_code == 200
    events = _parse_sse(response.text)
    names = [name for name, _ in events]
    assert names[0] == "turn_started"
    assert "turn_update" in names
    assert names[-1] == "turn_complete"

    final_state = events[-1][1]["state"]
    assert final_state["final_answer"] == "Tides come from the moon [1](https://s.example/1)."
    assert final_state["is_done_generating_final_answer"] is True
    assert final_state["follow_up_search_queries"] == ["next 1", "next 2"]

    session = client.get(f"/api/sessions/{session_id}").json()["session"]
    assert session["title"] == "Title: why are there tides?"
    assert session["messages"][0]["user_message"]["content"] == "why are there tides?"


def test_sse_messages_carry_increasing_ids():
    from searchsynth.services import streaming

    first = streaming.turn_started("s1", "q").to_message()
    second = streaming.turn_cancelled("s1").to_message()
    assert first["event"] == "turn_started"
    assert json.loads(first["data"]) == {"session_id": "s1", "query": "q"}
    assert int(second["id"]) > int(first["id"])


async def _wait_for(predicate, timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.005)


async def _superseded_stream():
    gateway = FakeGateway(
        queries=["q1"],
        search_results={"q1": [web_item("https://s.example/1")]},
        answer_fragments=("Answer ", "done"),
        block_streams=2,
    )
    controller = PipelineController(store=SessionStore(), gateway=gateway, config=Settings(_env_file=None))
    session = controller.store.create_session()

    response = await sessions.create_turn(session.id, TurnRequest(query="first question"), controller)
    events = response.body_iterator
    started = await events.__anext__()
    assert started["event"] == "turn_started"

    # first turn is parked mid-answer
    await _wait_for(lambda: bool(session.messages) and session.messages[-1].assistant_message.final_answer == "Answer ")

    newer = asyncio.create_task(controller.generate_assistant_response(session.id, "second question"))
    while len(session.messages) < 2:
        await asyncio.sleep(0)
    return gateway, controller, session, events, newer


@pytest.mark.asyncio
async def test_superseded_stream_reports_cancellation_not_newer_updates():
    gateway, controller, session, events, newer = await _superseded_stream()

    next_event = await events.__anext__()
    assert next_event["event"] == "turn_cancelled"
    await events.aclose()

    gateway.release_streams.set()
    state = await newer
    assert state.final_answer == "Answer done"


@pytest.mark.asyncio
async def test_disconnect_leaves_newer_turn_running():
    gateway, controller, session, events, newer = await _superseded_stream()

    await events.aclose()

    assert controller.is_running(session.id) is True
    gateway.release_streams.set()
    state = await newer
    assert state.is_done_generating_final_answer is True
