"""In-memory session state.

Pipeline stages never touch session objects directly: they hand partial turn
updates to `update_latest_assistant_message`, which merges them into the
latest assistant message and notifies subscribers with a JSON snapshot.
"""
from __future__ import annotations

import asyncio
from typing import Any
from uuid import uuid4

from loguru import logger

from searchsynth.models.turn import AssistantTurnState, Message, Session, UserMessage, merge_turn_state


class SessionNotFoundError(KeyError):
    pass


class SessionStore:
    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}
        self._subscribers: dict[str, set[asyncio.Queue[dict[str, Any]]]] = {}

    def create_session(self, session_id: str | None = None) -> Session:
        session = Session(id=session_id or str(uuid4()))
        self._sessions[session.id] = session
        return session

    def get_session(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def require(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def add_user_message(self, session_id: str, content: str) -> Message:
        """Append a user message with an empty assistant turn."""
        session = self.require(session_id)
        message = Message(user_message=UserMessage(content=content))
        session.messages.append(message)
        return message

    def set_title(self, session_id: str, title: str) -> None:
        session = self.require(session_id)
        session.title = title
        session.has_title_been_set = True

    def latest_turn(self, session_id: str) -> AssistantTurnState:
        session = self.require(session_id)
        if not session.messages:
            raise ValueError(f"Session {session_id} has no messages")
        return session.messages[-1].assistant_message

    def update_latest_assistant_message(
        self,
        session_id: str,
        partial: dict[str, Any],
    ) -> AssistantTurnState:
        session = self.require(session_id)
        if not session.messages:
            raise ValueError(f"Session {session_id} has no messages")
        message = session.messages[-1]
        message.assistant_message = merge_turn_state(message.assistant_message, partial)
        self._publish(session_id, message.assistant_message)
        return message.assistant_message

    # --- Subscribers ---

    def subscribe(self, session_id: str) -> asyncio.Queue[dict[str, Any]]:
        self.require(session_id)
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self._subscribers.setdefault(session_id, set()).add(queue)
        return queue

    def unsubscribe(self, session_id: str, queue: asyncio.Queue[dict[str, Any]]) -> None:
        subscribers = self._subscribers.get(session_id)
        if not subscribers:
            return
        subscribers.discard(queue)
        if not subscribers:
            self._subscribers.pop(session_id, None)

    def _publish(self, session_id: str, state: AssistantTurnState) -> None:
        subscribers = self._subscribers.get(session_id)
        if not subscribers:
            return
        # Serialize once for every subscriber.
        snapshot = state.model_dump(mode="json", exclude_none=True)
        for queue in subscribers:
            queue.put_nowait(snapshot)
        logger.trace(f"Published turn update for session {session_id} to {len(subscribers)} subscriber(s)")
