from __future__ import annotations

from typing import Any

from tavily import AsyncTavilyClient

from searchsynth.config import Settings, settings as default_settings
from searchsynth.errors import ConfigurationError
from searchsynth.models.turn import SearchResultItem


def _client(api_key: str | None = None, config: Settings | None = None) -> AsyncTavilyClient:
    cfg = config or default_settings
    key = api_key or next(iter(cfg.split_keys(cfg.tavily_api_key)), "")
    if not key:
        raise ConfigurationError("TAVILY_API_KEY is not configured")
    return AsyncTavilyClient(api_key=key)


async def search(
    query: str,
    *,
    max_results: int = 5,
    search_depth: str = "basic",
    api_key: str | None = None,
    config: Settings | None = None,
) -> list[SearchResultItem]:
    """Execute a Tavily web search and return structured results."""
    client = _client(api_key, config)
    response = await client.search(
        query=query,
        search_depth=search_depth,
        max_results=max_results,
    )
    return [
        SearchResultItem(
            title=r.get("title", "") or "",
            url=r["url"],
            description=r.get("content", "") or "",
            provider_metadata={"provider": "tavily", "rank": rank, "score": r.get("score", 0.0)},
        )
        for rank, r in enumerate(response.get("results", []))
        if isinstance(r, dict) and isinstance(r.get("url"), str)
    ]


async def image_search(
    query: str,
    *,
    max_results: int = 5,
    api_key: str | None = None,
    config: Settings | None = None,
) -> list[SearchResultItem]:
    """Image results via Tavily's `include_images` option."""
    client = _client(api_key, config)
    response = await client.search(
        query=query,
        max_results=max_results,
        include_images=True,
        include_image_descriptions=True,
    )
    items: list[SearchResultItem] = []
    for rank, image in enumerate(response.get("images", []) or []):
        url: Any
        description = ""
        if isinstance(image, str):
            url = image
        elif isinstance(image, dict):
            url = image.get("url")
            description = image.get("description", "") or ""
        else:
            continue
        if not isinstance(url, str) or not url:
            continue
        items.append(
            SearchResultItem(
                title=description[:120] or query,
                url=url,
                description=description,
                media_url=url,
                thumbnail_url=url,
                provider_metadata={"provider": "tavily", "rank": rank},
            )
        )
    return items[:max_results]
