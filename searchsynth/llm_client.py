"""OpenAI-compatible client pool for the Cerebras, Groq and OpenAI providers."""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, AsyncIterator

from searchsynth.config import Settings, settings as default_settings
from searchsynth.errors import ConfigurationError, ProviderError
from searchsynth.services import logger as log_service
from searchsynth.services.env_safety import sanitize_ssl_keylogfile
from searchsynth.services.selection import SelectionStrategy, build_selector

PROVIDERS = ("cerebras", "groq", "openai")


@dataclass(frozen=True)
class ProviderConfig:
    name: str
    base_url: str
    api_keys: tuple[str, ...]

    @property
    def env_var(self) -> str:
        return f"{self.name.upper()}_API_KEY"


def provider_config(name: str, config: Settings | None = None) -> ProviderConfig:
    cfg = config or default_settings
    if name not in PROVIDERS:
        raise ValueError(f"Unsupported LLM provider: {name}")
    raw_keys = getattr(cfg, f"{name}_api_key")
    base_url = getattr(cfg, f"{name}_base_url")
    return ProviderConfig(
        name=name,
        base_url=base_url.strip(),
        api_keys=tuple(cfg.split_keys(raw_keys)),
    )


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0


def _usage_of(response: Any) -> Usage:
    usage = getattr(response, "usage", None)
    return Usage(
        input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
        output_tokens=getattr(usage, "completion_tokens", 0) or 0,
    )


def response_text(response: Any) -> str:
    """First choice's message content, or raise ProviderError when absent."""
    choices = getattr(response, "choices", None) or []
    if not choices:
        raise ProviderError("LLM response has no choices")
    message = getattr(choices[0], "message", None)
    content = getattr(message, "content", None)
    if not isinstance(content, str):
        raise ProviderError("LLM response has no text content")
    return content


class LLMClientPool:
    """Lazily builds one AsyncOpenAI client per (provider, api key).

    When a provider has several keys configured, the injected selection
    strategy picks which one serves each call.
    """

    def __init__(
        self,
        config: Settings | None = None,
        selector: SelectionStrategy | None = None,
    ):
        self.config = config or default_settings
        self.selector = selector or build_selector(self.config.selection_strategy)
        self._clients: dict[tuple[str, str], Any] = {}

    def require(self, provider: str) -> ProviderConfig:
        cfg = provider_config(provider, self.config)
        if not cfg.api_keys:
            raise ConfigurationError(f"{cfg.env_var} is not set")
        return cfg

    def client(self, provider: str) -> Any:
        from openai import AsyncOpenAI

        cfg = self.require(provider)
        api_key = self.selector.choose(list(cfg.api_keys))
        cache_key = (provider, api_key)
        if cache_key not in self._clients:
            sanitize_ssl_keylogfile()
            self._clients[cache_key] = AsyncOpenAI(
                api_key=api_key,
                base_url=cfg.base_url or None,
                max_retries=0,
            )
        return self._clients[cache_key]

    async def aclose(self) -> None:
        clients, self._clients = list(self._clients.values()), {}
        for client in clients:
            await client.close()

    async def chat(
        self,
        provider: str,
        *,
        model: str,
        messages: list[dict[str, Any]],
        caller: str,
        **kwargs: Any,
    ) -> Any:
        """Run one non-streaming chat completion and log it."""
        client = self.client(provider)
        t0 = time.monotonic()
        try:
            response = await client.chat.completions.create(
                model=model,
                messages=messages,
                **kwargs,
            )
        except Exception as exc:
            log_service.log_llm_call(
                provider=provider,
                model=model,
                caller=caller,
                duration_ms=int((time.monotonic() - t0) * 1000),
                error=str(exc),
            )
            raise
        usage = _usage_of(response)
        log_service.log_llm_call(
            provider=provider,
            model=model,
            caller=caller,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            duration_ms=int((time.monotonic() - t0) * 1000),
        )
        return response

    async def parse(
        self,
        provider: str,
        *,
        model: str,
        messages: list[dict[str, Any]],
        response_format: type,
        caller: str,
    ) -> Any:
        """Structured-output completion; returns the parsed pydantic object or None."""
        client = self.client(provider)
        t0 = time.monotonic()
        response = await client.beta.chat.completions.parse(
            model=model,
            messages=messages,
            response_format=response_format,
        )
        usage = _usage_of(response)
        log_service.log_llm_call(
            provider=provider,
            model=model,
            caller=caller,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            duration_ms=int((time.monotonic() - t0) * 1000),
        )
        choices = getattr(response, "choices", None) or []
        if not choices:
            return None
        return getattr(choices[0].message, "parsed", None)

    async def open_stream(
        self,
        provider: str,
        *,
        model: str,
        messages: list[dict[str, Any]],
        caller: str,
        **kwargs: Any,
    ) -> AsyncIterator[str]:
        """Open a streaming completion.

        Awaiting this opens the upstream connection, so connection and status
        errors surface here; the returned iterator then yields text deltas.
        """
        client = self.client(provider)
        stream = await client.chat.completions.create(
            model=model,
            messages=messages,
            stream=True,
            **kwargs,
        )
        return _iter_text(stream, provider=provider, model=model, caller=caller)


async def _iter_text(stream: Any, *, provider: str, model: str, caller: str) -> AsyncIterator[str]:
    t0 = time.monotonic()
    usage = Usage()
    try:
        async for chunk in stream:
            if getattr(chunk, "usage", None):
                usage = _usage_of(chunk)
            choices = getattr(chunk, "choices", None) or []
            if not choices:
                continue
            delta = getattr(choices[0], "delta", None)
            text = getattr(delta, "content", None) if delta is not None else None
            if text:
                yield text
    finally:
        close = getattr(stream, "close", None)
        if close is not None:
            await close()
        log_service.log_llm_call(
            provider=provider,
            model=model,
            caller=caller,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            duration_ms=int((time.monotonic() - t0) * 1000),
        )


async def collect_stream(stream: AsyncIterator[str]) -> str:
    parts: list[str] = []
    async for text in stream:
        parts.append(text)
    return "".join(parts)
