from __future__ import annotations

import httpx

from searchsynth.config import Settings, settings as default_settings


async def read(url: str, *, config: Settings | None = None, timeout: float | None = None) -> str:
    """Fetch a page as markdown through the Jina Reader API.

    API: GET https://r.jina.ai/<url>
    Headers:
        - Authorization: Bearer <api_key> (optional, raises rate limits)
        - X-Return-Format: markdown
    """
    cfg = config or default_settings
    headers = {"X-Return-Format": "markdown"}
    api_key = next(iter(cfg.split_keys(cfg.jina_api_key)), "")
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"

    base = cfg.jina_reader_base_url.strip() or "https://r.jina.ai"
    if "{url}" in base:
        target = base.format(url=url)
    else:
        target = base.rstrip("/") + "/" + url

    async with httpx.AsyncClient(
        timeout=timeout or cfg.fetch_timeout_seconds,
        follow_redirects=True,
    ) as client:
        response = await client.get(target, headers=headers)
        response.raise_for_status()
    return response.text
