from __future__ import annotations

from typing import Any

from searchsynth.models.events import EventType, SSEEvent


def turn_started(session_id: str, query: str) -> SSEEvent:
    return SSEEvent(event=EventType.TURN_STARTED, data={"session_id": session_id, "query": query})


def turn_update(session_id: str, state: dict[str, Any]) -> SSEEvent:
    """Emit the latest snapshot of the assistant turn."""
    return SSEEvent(event=EventType.TURN_UPDATE, data={"session_id": session_id, "state": state})


def turn_complete(
    session_id: str,
    state: dict[str, Any],
    runtime_ms: int | None = None,
) -> SSEEvent:
    data: dict[str, Any] = {"session_id": session_id, "state": state}
    if runtime_ms is not None:
        data["runtime_ms"] = runtime_ms
    return SSEEvent(event=EventType.TURN_COMPLETE, data=data)


def turn_cancelled(session_id: str) -> SSEEvent:
    return SSEEvent(event=EventType.TURN_CANCELLED, data={"session_id": session_id})


def error(message: str, stage: str | None = None) -> SSEEvent:
    data: dict[str, Any] = {"message": message}
    if stage:
        data["stage"] = stage
    return SSEEvent(event=EventType.ERROR, data=data)
