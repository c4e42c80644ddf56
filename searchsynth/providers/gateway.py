"""Uniform capability interface over the search, scraping and LLM vendors.

Each capability has at most one designated fallback. The fallback runs once,
right after the primary fails with a TransportError or ProviderError, or with
a ConfigurationError because the primary has no credential. CancellationError
always propagates untouched. Vendor exceptions are translated into the shared
taxonomy at this boundary and every provider payload is schema-validated
before it leaves the gateway.
"""
from __future__ import annotations

import asyncio
import base64
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Literal, Sequence, TypeVar

import httpx
import openai
from loguru import logger
from pydantic import ValidationError
from tavily.errors import (
    BadRequestError,
    InvalidAPIKeyError,
    MissingAPIKeyError,
    UsageLimitExceededError,
)

from searchsynth.config import Settings, settings as default_settings
from searchsynth.errors import (
    FALLBACK_ERRORS,
    ConfigurationError,
    ProviderError,
    SearchSynthError,
    TransportError,
)
from searchsynth.llm_client import LLMClientPool, collect_stream, response_text
from searchsynth.models.schemas import Decision, FollowUpQueries, QueryOptimizationResult
from searchsynth.models.turn import ImageSource, Modality, SearchResultItem, WebSource
from searchsynth.services.channel import FragmentChannel
from searchsynth.services.prompt_store import render_prompt
from searchsynth.services.selection import SelectionStrategy, build_selector
from searchsynth.tools import brave_search, content_extractor, jina_reader, tavily_search, web_scraper, web_utils

T = TypeVar("T")
SearchKind = Literal["web", "image"]

# A primary without credentials hands over to its fallback like any failure.
PRIMARY_FAILURES = FALLBACK_ERRORS + (ConfigurationError,)


@asynccontextmanager
async def translate_errors(capability: str) -> AsyncIterator[None]:
    """Map vendor and parsing exceptions onto TransportError / ProviderError."""
    try:
        yield
    except SearchSynthError:
        raise
    except TimeoutError as exc:
        raise ProviderError(f"{capability} timed out") from exc
    except httpx.HTTPStatusError as exc:
        raise ProviderError(
            f"{capability}: HTTP {exc.response.status_code} from {exc.request.url}"
        ) from exc
    except httpx.HTTPError as exc:
        raise TransportError(f"{capability}: {type(exc).__name__}: {exc}") from exc
    except openai.APIConnectionError as exc:
        raise TransportError(f"{capability}: {exc}") from exc
    except openai.OpenAIError as exc:
        raise ProviderError(f"{capability}: {exc}") from exc
    except MissingAPIKeyError as exc:
        raise ConfigurationError(f"{capability}: {exc}") from exc
    except (InvalidAPIKeyError, UsageLimitExceededError, BadRequestError) as exc:
        raise ProviderError(f"{capability}: {type(exc).__name__}: {exc}") from exc
    except (ValidationError, ValueError, KeyError) as exc:
        # JSONDecodeError and pydantic ValidationError are ValueErrors
        raise ProviderError(f"{capability}: malformed provider payload: {exc}") from exc


def chunk_text(text: str, *, chunk_char_size: int, max_chunks: int) -> list[str]:
    """Fixed-size character chunks, capped at `max_chunks`."""
    size = max(int(chunk_char_size), 1)
    chunks = [text[i : i + size] for i in range(0, len(text), size)]
    return chunks[: max(int(max_chunks), 1)]


def build_answer_messages(
    query: str,
    text_sources: Sequence[WebSource],
    image_sources: Sequence[ImageSource],
) -> list[dict[str, Any]]:
    source_context = "\n\n".join(
        f"Source {s.source_number} ({s.url}): {s.title}\n{s.summary or ''}"
        for s in text_sources
    )
    image_context = "\n\n".join(
        f"Image Source {s.source_number} ({s.img_url}): {s.title}\n{s.summary or ''}"
        for s in image_sources
    )
    user = render_prompt(
        "answer.user",
        query=query,
        sources=f"\n\nSources:\n{source_context}" if source_context else "",
        images=f"\n\nImages:\n{image_context}" if image_context else "",
    )
    return [
        {"role": "system", "content": render_prompt("answer.system")},
        {"role": "user", "content": user},
    ]


class ProviderGateway:
    def __init__(
        self,
        config: Settings | None = None,
        *,
        llm: LLMClientPool | None = None,
        selector: SelectionStrategy | None = None,
    ):
        self.config = config or default_settings
        self.selector = selector or build_selector(self.config.selection_strategy)
        self.llm = llm or LLMClientPool(self.config, self.selector)

    async def aclose(self) -> None:
        await self.llm.aclose()

    async def _with_fallback(
        self,
        capability: str,
        primary: Callable[[], Awaitable[T]],
        fallback: Callable[[], Awaitable[T]] | None = None,
    ) -> T:
        try:
            async with translate_errors(capability):
                return await primary()
        except PRIMARY_FAILURES as exc:
            if fallback is None:
                raise
            logger.warning(f"{capability}: primary provider failed ({exc}); trying fallback")
        async with translate_errors(f"{capability} (fallback)"):
            return await fallback()

    # --- Query optimization ---

    async def optimize_query(
        self,
        query: str,
        count: int = 3,
        modality: Modality = "web",
    ) -> QueryOptimizationResult:
        # No fallback covers a missing primary credential here.
        self.llm.require("cerebras")
        system = render_prompt(f"optimizer.{modality}_system", count=count)
        messages = [
            {"role": "system", "content": system},
            {"role": "user", "content": query},
        ]

        async def primary() -> QueryOptimizationResult:
            response = await self.llm.chat(
                "cerebras",
                model=self.config.cerebras_optimizer_model,
                messages=messages,
                response_format={"type": "json_object"},
                caller=f"optimize_query.{modality}",
            )
            return QueryOptimizationResult.model_validate_json(response_text(response))

        async def fallback() -> QueryOptimizationResult:
            parsed = await self.llm.parse(
                "openai",
                model=self.config.openai_model,
                messages=messages,
                response_format=QueryOptimizationResult,
                caller=f"optimize_query.{modality}.fallback",
            )
            if parsed is None:
                raise ProviderError("optimize_query fallback returned no parsed object")
            return QueryOptimizationResult.model_validate(parsed.model_dump())

        return await self._with_fallback("optimize_query", primary, fallback)

    # --- Search ---

    async def search(
        self,
        query: str,
        kind: SearchKind = "web",
        count: int = 5,
    ) -> list[SearchResultItem]:
        if kind == "image":
            primary = lambda: brave_search.image_search(query, count=count, config=self.config)  # noqa: E731
            fallback = lambda: tavily_search.image_search(query, max_results=count, config=self.config)  # noqa: E731
        else:
            primary = lambda: brave_search.web_search(query, count=count, config=self.config)  # noqa: E731
            fallback = lambda: tavily_search.search(query, max_results=count, config=self.config)  # noqa: E731
        return await self._with_fallback(
            f"search.{kind}",
            primary,
            fallback if self.config.search_fallback_to_tavily else None,
        )

    async def probe_media(self, url: str) -> bool:
        """True when the media url answers; probe failures are not errors."""
        if not web_utils.is_valid_url(url):
            return False
        try:
            async with translate_errors("probe_media"):
                await web_scraper.probe(url, config=self.config)
        except FALLBACK_ERRORS as exc:
            logger.debug(f"Probe failed for {url}: {exc}")
            return False
        return True

    # --- Fetching ---

    async def fetch_text(self, url: str) -> str:
        async def primary() -> str:
            page = await web_scraper.fetch_html(url, config=self.config)
            extracted = await asyncio.to_thread(content_extractor.html_to_markdown, url, page.html)
            if not extracted.text.strip():
                raise ProviderError(f"No readable content at {url}")
            return extracted.text

        async def fallback() -> str:
            text = await jina_reader.read(url, config=self.config)
            if not text.strip():
                raise ProviderError(f"Jina reader returned empty body for {url}")
            return text

        return await self._with_fallback("fetch_text", primary, fallback)

    async def fetch_image_bytes(self, url: str) -> bytes:
        async def fetch(browser_headers: bool) -> bytes:
            data = await web_scraper.fetch_bytes(url, browser_headers=browser_headers, config=self.config)
            if not data:
                raise ProviderError(f"Empty image body at {url}")
            return data

        return await self._with_fallback(
            "fetch_image_bytes",
            lambda: fetch(True),
            lambda: fetch(False),
        )

    # --- Summarization ---

    async def _summarize_chunk(self, query: str, chunk: str, idx: int) -> str:
        messages = [
            {"role": "system", "content": render_prompt("summary.chunk_system", query=query)},
            {"role": "user", "content": chunk},
        ]

        async def run(provider: str, model: str) -> str:
            response = await self.llm.chat(
                provider,
                model=model,
                messages=messages,
                max_tokens=self.config.max_chunk_tokens,
                caller=f"summarize.chunk_{idx}",
            )
            return response_text(response)

        return await self._with_fallback(
            f"summarize.chunk_{idx}",
            lambda: run("cerebras", self.config.cerebras_summary_model),
            lambda: run("openai", self.config.openai_model),
        )

    async def _summarize_final(self, query: str, combined: str) -> str:
        messages = [
            {"role": "system", "content": render_prompt("summary.final_system", query=query)},
            {"role": "user", "content": combined},
        ]

        async def primary() -> str:
            response = await self.llm.chat(
                "cerebras",
                model=self.config.cerebras_summary_model,
                messages=messages,
                max_tokens=self.config.max_total_tokens,
                caller="summarize.final",
            )
            return response_text(response)

        async def fallback() -> str:
            stream = await self.llm.open_stream(
                "openai",
                model=self.config.openai_model,
                messages=messages,
                max_tokens=self.config.max_total_tokens,
                caller="summarize.final.fallback",
            )
            return await collect_stream(stream)

        return await self._with_fallback("summarize.final", primary, fallback)

    async def summarize(self, query: str, text: str) -> str:
        """Two-pass, query-scoped summary of a page's text.

        Chunk summaries are produced concurrently, then merged into one
        response. Each pass runs under its own wall-clock timeout.
        """
        chunks = chunk_text(
            text,
            chunk_char_size=self.config.chunk_char_size,
            max_chunks=self.config.max_chunks,
        )
        if not chunks or not text.strip():
            raise ProviderError("Nothing to summarize")
        timeout = self.config.summary_timeout_seconds

        async with translate_errors("summarize.chunks"):
            chunk_summaries = await asyncio.wait_for(
                asyncio.gather(
                    *(self._summarize_chunk(query, chunk, idx) for idx, chunk in enumerate(chunks))
                ),
                timeout=timeout,
            )
        async with translate_errors("summarize.final"):
            summary = await asyncio.wait_for(
                self._summarize_final(query, "\n\n".join(chunk_summaries)),
                timeout=timeout,
            )
        if not summary.strip():
            raise ProviderError("Summary came back empty")
        return summary

    async def describe_image(self, title: str, image_bytes: bytes) -> str:
        encoded = base64.b64encode(image_bytes).decode("ascii")
        data_url = f"data:{web_utils.guess_image_mime(image_bytes)};base64,{encoded}"
        messages = [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": render_prompt("image.describe", title=title)},
                    {"type": "image_url", "image_url": {"url": data_url}},
                ],
            }
        ]

        async def primary() -> str:
            weighted = self.config.vision_model_weights
            model = self.selector.choose(
                [name for name, _ in weighted],
                [weight for _, weight in weighted],
            )
            stream = await self.llm.open_stream(
                "groq",
                model=model,
                messages=messages,
                max_tokens=self.config.image_description_max_tokens,
                temperature=0.2,
                top_p=1,
                caller="describe_image",
            )
            return await collect_stream(stream)

        async def fallback() -> str:
            response = await self.llm.chat(
                "openai",
                model=self.config.openai_model,
                messages=messages,
                max_tokens=self.config.image_description_max_tokens,
                caller="describe_image.fallback",
            )
            return response_text(response)

        async with translate_errors("describe_image"):
            description = await asyncio.wait_for(
                self._with_fallback("describe_image", primary, fallback),
                timeout=self.config.image_description_timeout_seconds,
            )
        if not description.strip():
            raise ProviderError("Image description came back empty")
        return description

    # --- Decisions ---

    async def decide(self, query: str, constraint: str) -> bool:
        """Binary gate; any non-cancellation failure answers False."""
        user = render_prompt("decision.user", constraint=constraint, query=query)

        async def primary() -> bool:
            reasoning = response_text(
                await self.llm.chat(
                    "groq",
                    model=self.config.groq_decision_model,
                    messages=[
                        {"role": "system", "content": render_prompt("decision.reason_system")},
                        {"role": "user", "content": user},
                    ],
                    caller="decide.reason",
                )
            )
            if not reasoning.strip():
                raise ProviderError("Decision reasoning came back empty")
            response = await self.llm.chat(
                "groq",
                model=self.config.groq_decision_model,
                messages=[
                    {"role": "system", "content": render_prompt("decision.boolean_system")},
                    {"role": "user", "content": f"Decision: {reasoning}"},
                ],
                response_format={"type": "json_object"},
                caller="decide.boolean",
            )
            return Decision.model_validate_json(response_text(response)).decision

        async def fallback() -> bool:
            parsed = await self.llm.parse(
                "openai",
                model=self.config.openai_model,
                messages=[
                    {"role": "system", "content": render_prompt("decision.direct_system")},
                    {"role": "user", "content": user},
                ],
                response_format=Decision,
                caller="decide.fallback",
            )
            return bool(parsed.decision) if parsed is not None else False

        try:
            return await self._with_fallback("decide", primary, fallback)
        except (TransportError, ProviderError, ConfigurationError) as exc:
            logger.warning(f"decide failed on every provider, answering False: {exc}")
            return False

    # --- Answer streaming ---

    async def stream_answer(
        self,
        query: str,
        text_sources: Sequence[WebSource],
        image_sources: Sequence[ImageSource],
    ) -> FragmentChannel:
        """Open the answer stream and hand it to a bounded channel.

        The fallback only covers opening the stream; once fragments flow, an
        upstream failure reaches the consumer through the channel.
        """
        messages = build_answer_messages(query, text_sources, image_sources)

        async def open_with(provider: str, model: str) -> AsyncIterator[str]:
            return await self.llm.open_stream(
                provider,
                model=model,
                messages=messages,
                caller="stream_answer",
            )

        stream = await self._with_fallback(
            "stream_answer",
            lambda: open_with("openai", self.config.openai_model),
            lambda: open_with("groq", self.config.groq_answer_model),
        )
        return FragmentChannel(self.config.answer_channel_size).start(_translated(stream))

    # --- Follow-ups & titles ---

    async def follow_up(
        self,
        queries: Sequence[str],
        answer_text: str,
        count: int = 5,
    ) -> FollowUpQueries:
        messages = [
            {"role": "system", "content": render_prompt("follow_up.system", count=count)},
            {
                "role": "user",
                "content": render_prompt(
                    "follow_up.user",
                    queries="\n".join(queries),
                    answer=answer_text,
                ),
            },
        ]

        async def primary() -> FollowUpQueries:
            response = await self.llm.chat(
                "groq",
                model=self.config.groq_follow_up_model,
                messages=messages,
                response_format={"type": "json_object"},
                caller="follow_up",
            )
            return FollowUpQueries.model_validate_json(response_text(response))

        async def fallback() -> FollowUpQueries:
            parsed = await self.llm.parse(
                "openai",
                model=self.config.openai_model,
                messages=messages,
                response_format=FollowUpQueries,
                caller="follow_up.fallback",
            )
            if parsed is None:
                raise ProviderError("follow_up fallback returned no parsed object")
            return FollowUpQueries.model_validate(parsed.model_dump())

        return await self._with_fallback("follow_up", primary, fallback)

    async def create_session_title(self, query: str) -> str:
        try:
            async with translate_errors("create_session_title"):
                response = await self.llm.chat(
                    "groq",
                    model=self.config.groq_decision_model,
                    messages=[
                        {"role": "system", "content": render_prompt("title.system")},
                        {"role": "user", "content": query},
                    ],
                    caller="create_session_title",
                )
                title = response_text(response)
        except (TransportError, ProviderError, ConfigurationError) as exc:
            logger.debug(f"Session title generation failed, using query: {exc}")
            return query
        return title.strip().strip('"') or query


async def _translated(stream: AsyncIterator[str]) -> AsyncIterator[str]:
    async with translate_errors("stream_answer"):
        async for fragment in stream:
            yield fragment
