from __future__ import annotations

from typing import Any

import httpx

from searchsynth.config import Settings, settings as default_settings
from searchsynth.errors import ConfigurationError, ProviderError
from searchsynth.models.turn import SearchResultItem

BRAVE_WEB_SEARCH_URL = "https://api.search.brave.com/res/v1/web/search"
BRAVE_IMAGE_SEARCH_URL = "https://api.search.brave.com/res/v1/images/search"


def _api_key(config: Settings) -> str:
    keys = config.split_keys(config.brave_api_key)
    if not keys:
        raise ConfigurationError("BRAVE_API_KEY is not configured")
    return keys[0]


async def _get(url: str, params: dict[str, Any], api_key: str, timeout: float) -> dict[str, Any]:
    async with httpx.AsyncClient(timeout=timeout) as client:
        response = await client.get(
            url,
            params=params,
            headers={
                "Accept": "application/json",
                "X-Subscription-Token": api_key,
            },
        )
        response.raise_for_status()
        payload = response.json()
    if not isinstance(payload, dict):
        raise ProviderError("Brave returned a non-object payload")
    return payload


async def web_search(
    query: str,
    *,
    count: int = 5,
    api_key: str | None = None,
    config: Settings | None = None,
) -> list[SearchResultItem]:
    """Execute a Brave web search and normalize results."""
    cfg = config or default_settings
    payload = await _get(
        BRAVE_WEB_SEARCH_URL,
        {"q": query, "count": count},
        api_key or _api_key(cfg),
        cfg.search_timeout_seconds,
    )
    web = payload.get("web") or {}
    raw_results = web.get("results") if isinstance(web, dict) else None
    if not isinstance(raw_results, list):
        return []

    mapped: list[SearchResultItem] = []
    for rank, item in enumerate(raw_results):
        if not isinstance(item, dict) or not isinstance(item.get("url"), str):
            continue
        profile = item.get("profile") if isinstance(item.get("profile"), dict) else {}
        meta_url = item.get("meta_url") if isinstance(item.get("meta_url"), dict) else {}
        mapped.append(
            SearchResultItem(
                title=str(item.get("title") or ""),
                url=item["url"],
                description=str(item.get("description") or ""),
                favicon=profile.get("img") or meta_url.get("favicon"),
                provider_metadata={"provider": "brave", "rank": rank},
            )
        )
    return mapped


async def image_search(
    query: str,
    *,
    count: int = 5,
    api_key: str | None = None,
    config: Settings | None = None,
) -> list[SearchResultItem]:
    """Execute a Brave image search; `media_url` holds the full-size image."""
    cfg = config or default_settings
    payload = await _get(
        BRAVE_IMAGE_SEARCH_URL,
        {"q": query, "count": count},
        api_key or _api_key(cfg),
        cfg.search_timeout_seconds,
    )
    raw_results = payload.get("results")
    if not isinstance(raw_results, list):
        return []

    mapped: list[SearchResultItem] = []
    for rank, item in enumerate(raw_results):
        if not isinstance(item, dict):
            continue
        properties = item.get("properties") if isinstance(item.get("properties"), dict) else {}
        thumbnail = item.get("thumbnail") if isinstance(item.get("thumbnail"), dict) else {}
        media_url = properties.get("url")
        if not isinstance(media_url, str) or not media_url:
            continue
        mapped.append(
            SearchResultItem(
                title=str(item.get("title") or ""),
                url=str(item.get("url") or media_url),
                media_url=media_url,
                thumbnail_url=thumbnail.get("src") or media_url,
                provider_metadata={"provider": "brave", "rank": rank},
            )
        )
    return mapped
