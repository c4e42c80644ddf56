from __future__ import annotations

from pydantic import BaseModel, field_validator

from searchsynth.models.turn import Session


# --- Provider payloads ---


class QueryOptimizationResult(BaseModel):
    queries: list[str]

    @field_validator("queries")
    @classmethod
    def _strip_queries(cls, value: list[str]) -> list[str]:
        return [q.strip() for q in value if isinstance(q, str) and q.strip()]


class FollowUpQueries(BaseModel):
    queries: list[str]

    @field_validator("queries")
    @classmethod
    def _strip_queries(cls, value: list[str]) -> list[str]:
        return [q.strip() for q in value if isinstance(q, str) and q.strip()]


class Decision(BaseModel):
    decision: bool


# --- Requests ---


class TurnRequest(BaseModel):
    query: str


# --- Responses ---


class SessionResponse(BaseModel):
    session: Session


class CancelResponse(BaseModel):
    session_id: str
    cancelled: bool
