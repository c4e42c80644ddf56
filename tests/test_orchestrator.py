from __future__ import annotations

import asyncio

import pytest

from searchsynth.agents.orchestrator import NO_RESULTS_ANSWER, PipelineController
from searchsynth.config import Settings
from searchsynth.errors import CancellationError, ProviderError
from searchsynth.services.session_store import SessionStore
from tests.fakes import FakeGateway, image_item, web_item

FIVE_SOURCES = {
    "q1": [web_item(f"https://s.example/{n}") for n in (1, 2, 3)],
    "q2": [web_item(f"https://s.example/{n}") for n in (3, 4, 5)],
}


def _controller(gateway: FakeGateway, **overrides) -> PipelineController:
    cfg = Settings(_env_file=None, **overrides)
    return PipelineController(store=SessionStore(), gateway=gateway, config=cfg)


async def _wait_for(predicate, timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.005)


@pytest.mark.asyncio
async def test_turn_synthesizes_from_successful_sources_only():
    gateway = FakeGateway(
        queries=["q1", "q2"],
        search_results=FIVE_SOURCES,
        failing_urls={"https://s.example/3"},
        answer_fragments=("Solar is great [1](https://s.example/1) ", "and cheap [9](https://x.example)."),
    )
    controller = _controller(gateway)
    session = controller.store.create_session()

    state = await controller.generate_assistant_response(session.id, "  how good is solar?  ")

    text_sources, image_sources = gateway.streamed_sources[0]
    assert [s.source_number for s in text_sources] == [1, 2, 4, 5]
    assert image_sources == []

    assert state.search_queries == ["q1", "q2"]
    assert state.is_done_generating_search_queries is True
    assert state.is_done_performing_search is True
    assert len(state.search_results) == 5
    assert state.is_done_processing_search_results is True
    assert [s.scrape_status for s in state.processed_search_results] == [
        "success",
        "success",
        "error",
        "success",
        "success",
    ]
    assert state.final_answer == "Solar is great [1](https://s.example/1) and cheap [9](https://x.example)."
    assert state.is_done_generating_final_answer is True
    assert state.invalid_citations == [9]
    assert state.follow_up_search_queries == ["next 1", "next 2"]

    assert session.messages[0].user_message.content == "how good is solar?"
    assert session.title == "Title: how good is solar?"
    assert gateway.count("create_session_title") == 1
    assert controller.is_running(session.id) is False


@pytest.mark.asyncio
async def test_turn_without_sources_short_circuits():
    gateway = FakeGateway(queries=["q1"], search_results={"q1": []})
    controller = _controller(gateway)
    session = controller.store.create_session()

    state = await controller.generate_assistant_response(session.id, "obscure question")

    assert state.final_answer == NO_RESULTS_ANSWER
    assert state.is_done_generating_final_answer is True
    assert gateway.count("stream_answer") == 0
    assert gateway.count("follow_up") == 0


@pytest.mark.asyncio
async def test_failed_optimizer_still_marks_queries_done():
    gateway = FakeGateway(optimize_error=ProviderError("no provider"))
    controller = _controller(gateway)
    session = controller.store.create_session()

    state = await controller.generate_assistant_response(session.id, "question")

    assert state.is_done_generating_search_queries is True
    assert state.search_queries is None
    assert state.final_answer == NO_RESULTS_ANSWER
    assert gateway.count("search") == 0


@pytest.mark.asyncio
async def test_image_sub_pipeline_feeds_synthesis():
    gateway = FakeGateway(
        queries=["q1"],
        search_results={"q1": [web_item("https://s.example/1")]},
        wants_images=True,
        image_results={
            "iq1": [
                image_item("https://cdn.example/dead.png"),
                image_item("https://cdn.example/a.png"),
                image_item("https://cdn.example/b.png"),
            ]
        },
        unreachable_media={"https://cdn.example/dead.png"},
    )
    controller = _controller(gateway)
    session = controller.store.create_session()

    state = await controller.generate_assistant_response(session.id, "what does a heat pump look like")

    _, image_sources = gateway.streamed_sources[0]
    assert [s.img_url for s in image_sources] == ["https://cdn.example/a.png", "https://cdn.example/b.png"]
    assert [s.source_number for s in image_sources] == [1, 2]
    assert state.image_search_queries == ["iq1"]
    assert state.is_done_performing_image_search is True
    assert state.is_done_processing_image_search_results is True
    decide_calls = [arg for call, arg in gateway.calls if call == "decide"]
    assert decide_calls == ["Would image or diagram responses be helpful in response to the given query?"]


@pytest.mark.asyncio
async def test_failed_image_sub_pipeline_contributes_nothing():
    gateway = FakeGateway(
        queries=["q1"],
        search_results={"q1": [web_item("https://s.example/1")]},
        wants_images=True,
        image_results={"iq1": RuntimeError("unexpected vendor payload")},
    )
    controller = _controller(gateway)
    session = controller.store.create_session()

    state = await controller.generate_assistant_response(session.id, "question")

    assert gateway.streamed_sources[0][1] == []
    assert state.is_done_generating_final_answer is True


@pytest.mark.asyncio
async def test_cancel_after_optimization_stops_before_search():
    gateway = FakeGateway(queries=["q1", "q2"], search_results=FIVE_SOURCES)
    controller = _controller(gateway)
    session = controller.store.create_session()
    store_update = controller.store.update_latest_assistant_message

    def update_then_cancel(session_id, partial):
        state = store_update(session_id, partial)
        if "search_queries" in partial:
            controller.cancel(session_id)
        return state

    controller.store.update_latest_assistant_message = update_then_cancel

    with pytest.raises(CancellationError):
        await controller.generate_assistant_response(session.id, "question")

    assert gateway.count("search") == 0
    state = session.messages[-1].assistant_message
    assert state.model_dump(exclude_none=True) == {
        "search_queries": ["q1", "q2"],
        "is_done_generating_search_queries": True,
    }


@pytest.mark.asyncio
async def test_cancel_during_processing_leaves_no_error_statuses():
    gateway = FakeGateway(
        queries=["q1"],
        search_results={"q1": [web_item("https://s.example/1"), web_item("https://s.example/2")]},
        hold_fetches=True,
    )
    controller = _controller(gateway)
    session = controller.store.create_session()

    turn = asyncio.create_task(controller.generate_assistant_response(session.id, "question"))
    await _wait_for(lambda: gateway.count("fetch_text") == 2)
    assert controller.cancel(session.id) is True

    with pytest.raises(CancellationError):
        await turn

    state = session.messages[-1].assistant_message
    assert [s.scrape_status for s in state.processed_search_results] == ["in-progress", "in-progress"]
    assert all(s.error is None for s in state.processed_search_results)
    assert state.is_done_processing_search_results is None
    assert gateway.count("summarize") == 0


@pytest.mark.asyncio
async def test_cancel_during_streaming_never_finishes_answer():
    gateway = FakeGateway(
        queries=["q1"],
        search_results={"q1": [web_item("https://s.example/1")]},
        answer_fragments=("Partial ", "rest"),
        block_streams=1,
    )
    controller = _controller(gateway)
    session = controller.store.create_session()

    turn = asyncio.create_task(controller.generate_assistant_response(session.id, "question"))
    await _wait_for(lambda: bool(session.messages) and session.messages[-1].assistant_message.final_answer)
    assert controller.cancel(session.id) is True

    with pytest.raises(CancellationError):
        await turn

    state = session.messages[-1].assistant_message
    assert state.final_answer == "Partial "
    assert state.is_done_generating_final_answer is None
    assert gateway.count("follow_up") == 0
    assert controller.cancel(session.id) is False


@pytest.mark.asyncio
async def test_new_turn_cancels_in_flight_turn():
    gateway = FakeGateway(
        queries=["q1"],
        search_results={"q1": [web_item("https://s.example/1")]},
        answer_fragments=("Answer ", "done"),
        block_streams=1,
    )
    controller = _controller(gateway)
    session = controller.store.create_session()

    first = asyncio.create_task(controller.generate_assistant_response(session.id, "first question"))
    await _wait_for(lambda: bool(session.messages) and session.messages[-1].assistant_message.final_answer)

    second = await controller.generate_assistant_response(session.id, "second question")

    with pytest.raises(CancellationError):
        await first
    assert len(session.messages) == 2
    assert session.messages[0].assistant_message.is_done_generating_final_answer is None
    assert second.final_answer == "Answer done"
    assert second.is_done_generating_final_answer is True
    assert gateway.count("create_session_title") == 1


@pytest.mark.asyncio
async def test_synthesis_error_propagates_and_leaves_turn_incomplete():
    gateway = FakeGateway(
        queries=["q1"],
        search_results={"q1": [web_item("https://s.example/1")]},
        stream_error=ProviderError("openai and groq both failed"),
    )
    controller = _controller(gateway)
    session = controller.store.create_session()

    with pytest.raises(ProviderError):
        await controller.generate_assistant_response(session.id, "question")

    state = session.messages[-1].assistant_message
    assert state.is_done_generating_final_answer is None
    assert controller.is_running(session.id) is False


@pytest.mark.asyncio
async def test_follow_up_failure_is_omitted_from_turn():
    gateway = FakeGateway(
        queries=["q1"],
        search_results={"q1": [web_item("https://s.example/1")]},
        follow_ups=ProviderError("no follow-ups"),
    )
    controller = _controller(gateway)
    session = controller.store.create_session()

    state = await controller.generate_assistant_response(session.id, "question")

    assert state.is_done_generating_final_answer is True
    assert state.follow_up_search_queries is None


@pytest.mark.asyncio
async def test_empty_query_is_rejected():
    controller = _controller(FakeGateway())
    session = controller.store.create_session()
    with pytest.raises(ValueError):
        await controller.generate_assistant_response(session.id, "   ")
    assert session.messages == []
