from __future__ import annotations

import asyncio
import time

from fastapi import APIRouter, Depends, HTTPException
from sse_starlette.sse import EventSourceResponse

from searchsynth.agents.orchestrator import PipelineController
from searchsynth.api.deps import get_controller
from searchsynth.errors import CancellationError
from searchsynth.models.schemas import CancelResponse, SessionResponse, TurnRequest
from searchsynth.services import logger as log_service
from searchsynth.services import streaming
from searchsynth.services.cancellation import CancellationToken

router = APIRouter(prefix="/api/sessions", tags=["sessions"])


@router.post("", response_model=SessionResponse)
async def create_session(controller: PipelineController = Depends(get_controller)):
    """Create an empty session."""
    session = controller.store.create_session()
    return SessionResponse(session=session)


@router.get("/{session_id}", response_model=SessionResponse)
async def get_session(session_id: str, controller: PipelineController = Depends(get_controller)):
    session = controller.store.get_session(session_id)
    if not session:
        raise HTTPException(status_code=404, detail="Session not found")
    return SessionResponse(session=session)


@router.post("/{session_id}/cancel", response_model=CancelResponse)
async def cancel_turn(session_id: str, controller: PipelineController = Depends(get_controller)):
    if not controller.store.get_session(session_id):
        raise HTTPException(status_code=404, detail="Session not found")
    return CancelResponse(session_id=session_id, cancelled=controller.cancel(session_id))


@router.post("/{session_id}/turns")
async def create_turn(
    session_id: str,
    request: TurnRequest,
    controller: PipelineController = Depends(get_controller),
):
    """Start a turn and stream its state updates as SSE events."""
    if not controller.store.get_session(session_id):
        raise HTTPException(status_code=404, detail="Session not found")
    query = request.query.strip()
    if not query:
        raise HTTPException(status_code=400, detail="Query must not be empty")


    store = controller.store

    async def event_generator():
        log_service.log_event(
            event_type="turn_started",
            message="Turn started",
            session_id=session_id,
            query=query[:100],
        )
        t0 = time.monotonic()
        token = CancellationToken()
        updates = store.subscribe(session_id)
        turn = asyncio.create_task(controller.generate_assistant_response(session_id, query, token=token))
        try:
            yield streaming.turn_started(session_id, query).to_message()

            # Once this turn's token is set, later snapshots belong to a newer turn.
            while not token.cancelled:
                getter = asyncio.ensure_future(updates.get())
                done, _ = await asyncio.wait({getter, turn}, return_when=asyncio.FIRST_COMPLETED)
                if getter not in done:
                    getter.cancel()
                    break
                if not token.cancelled:
                    yield streaming.turn_update(session_id, getter.result()).to_message()

            while not token.cancelled and not updates.empty():
                yield streaming.turn_update(session_id, updates.get_nowait()).to_message()

            try:
                state = await turn
            except CancellationError:
                yield streaming.turn_cancelled(session_id).to_message()
                return
            except Exception as e:
                log_service.log_event(
                    event_type="turn_error",
                    message="Unhandled error in turn stream",
                    error=str(e),
                    session_id=session_id,
                )
                yield streaming.error("Answer generation failed unexpectedly.").to_message()
                return

            complete = streaming.turn_complete(
                session_id,
                state.model_dump(mode="json", exclude_none=True),
                runtime_ms=int((time.monotonic() - t0) * 1000),
            )
            yield complete.to_message()
        finally:
            store.unsubscribe(session_id, updates)
            if not turn.done():
                log_service.log_event(
                    event_type="turn_disconnected",
                    message="Client went away mid-turn",
                    session_id=session_id,
                )
                # Only this stream's own turn; a newer turn keeps running.
                token.cancel()

    return EventSourceResponse(event_generator())
