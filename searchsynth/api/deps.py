from __future__ import annotations

from functools import lru_cache

from searchsynth.agents.orchestrator import PipelineController
from searchsynth.config import settings


@lru_cache(maxsize=1)
def get_controller() -> PipelineController:
    """Process-wide controller; owns the in-memory session store."""
    return PipelineController(config=settings)
