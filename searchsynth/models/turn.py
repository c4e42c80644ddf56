from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from searchsynth.tools import web_utils

ScrapeStatus = Literal["not-started", "in-progress", "success", "error"]
Modality = Literal["web", "image"]
TERMINAL_STATUSES: frozenset[str] = frozenset({"success", "error"})


class SearchResultItem(BaseModel):
    """One provider search hit. Identity is the normalized media or page url."""

    model_config = ConfigDict(frozen=True)

    title: str = ""
    url: str
    description: str = ""
    media_url: str | None = None
    thumbnail_url: str | None = None
    favicon: str | None = None
    provider_metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def identity_key(self) -> str:
        return web_utils.normalize_url(self.media_url or self.url)


class WebSource(BaseModel):
    url: str
    title: str = ""
    favicon: str | None = None
    source_number: int
    summary: str | None = None


class ImageSource(BaseModel):
    title: str = ""
    img_url: str
    thumbnail_url: str | None = None
    web_url: str = ""
    source_number: int
    summary: str | None = None


class ProcessingStatus(BaseModel):
    """Per-result processing state.

    Transitions only move forward: not-started -> in-progress -> success|error.
    Calls that would leave a terminal state are ignored.
    """

    scrape_status: ScrapeStatus = "not-started"
    source: WebSource | ImageSource
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.scrape_status in TERMINAL_STATUSES

    def mark_in_progress(self) -> bool:
        if self.scrape_status != "not-started":
            return False
        self.scrape_status = "in-progress"
        return True

    def mark_success(self, summary: str) -> bool:
        if self.is_terminal:
            return False
        self.source.summary = summary
        self.scrape_status = "success"
        return True

    def mark_error(self, message: str) -> bool:
        if self.is_terminal:
            return False
        self.error = message
        self.scrape_status = "error"
        return True


class AssistantTurnState(BaseModel):
    # Search queries
    search_queries: list[str] | None = None
    is_done_generating_search_queries: bool | None = None

    # Web search
    is_done_performing_search: bool | None = None
    search_results: list[SearchResultItem] | None = None

    # Process web search results
    is_done_processing_search_results: bool | None = None
    processed_search_results: list[ProcessingStatus] | None = None

    # Image search
    image_search_queries: list[str] | None = None
    is_done_performing_image_search: bool | None = None
    image_search_results: list[SearchResultItem] | None = None
    is_done_processing_image_search_results: bool | None = None
    processed_image_search_results: list[ProcessingStatus] | None = None

    # Final answer
    final_answer: str | None = None
    is_done_generating_final_answer: bool | None = None
    invalid_citations: list[int] | None = None

    # Follow-up search queries
    follow_up_search_queries: list[str] | None = None


class UserMessage(BaseModel):
    content: str


class Message(BaseModel):
    user_message: UserMessage
    assistant_message: AssistantTurnState = Field(default_factory=AssistantTurnState)


class Session(BaseModel):
    id: str
    messages: list[Message] = Field(default_factory=list)
    title: str = "New session"
    has_title_been_set: bool = False


def merge_turn_state(state: AssistantTurnState, partial: dict[str, Any]) -> AssistantTurnState:
    """Shallow-merge `partial` into `state` and return the merged copy.

    Keys mapped to None are skipped so a later update never erases a field an
    earlier stage wrote. Unknown keys raise.
    """
    updates: dict[str, Any] = {}
    for key, value in partial.items():
        if key not in AssistantTurnState.model_fields:
            raise KeyError(f"Unknown turn state field: {key}")
        if value is None:
            continue
        updates[key] = value
    if not updates:
        return state
    return state.model_copy(update=updates)
