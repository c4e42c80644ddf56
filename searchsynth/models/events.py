from __future__ import annotations

import itertools
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

_event_ids = itertools.count(1)


class EventType(str, Enum):
    TURN_STARTED = "turn_started"
    TURN_UPDATE = "turn_update"
    TURN_COMPLETE = "turn_complete"
    TURN_CANCELLED = "turn_cancelled"
    ERROR = "error"


@dataclass
class SSEEvent:
    """One server-sent event; `id` increases monotonically per process."""

    event: EventType
    data: dict[str, Any] = field(default_factory=dict)
    id: int = field(default_factory=lambda: next(_event_ids))

    def to_message(self) -> dict[str, str]:
        """Shape expected by sse-starlette's EventSourceResponse."""
        return {"id": str(self.id), "event": self.event.value, "data": json.dumps(self.data)}
