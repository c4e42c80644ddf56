from __future__ import annotations

from dataclasses import dataclass

import httpx

from searchsynth.config import Settings, settings as default_settings
from searchsynth.errors import ProviderError
from searchsynth.services.env_safety import sanitize_ssl_keylogfile

BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "*/*",
}


@dataclass
class FetchedPage:
    url: str
    final_url: str
    status_code: int
    content_type: str
    html: str


def _client(config: Settings, timeout: float | None = None) -> httpx.AsyncClient:
    sanitize_ssl_keylogfile()
    return httpx.AsyncClient(
        timeout=timeout or config.fetch_timeout_seconds,
        follow_redirects=True,
        max_redirects=config.fetch_max_redirects,
    )


async def fetch_html(url: str, *, config: Settings | None = None) -> FetchedPage:
    """GET a page with browser headers; only HTML responses are accepted."""
    async with _client(config or default_settings) as client:
        response = await client.get(url, headers=BROWSER_HEADERS)
        response.raise_for_status()
    content_type = response.headers.get("content-type", "")
    if "html" not in content_type.lower():
        raise ProviderError(f"Unsupported content type for {url}: {content_type or 'unknown'}")
    return FetchedPage(
        url=url,
        final_url=str(response.url),
        status_code=response.status_code,
        content_type=content_type,
        html=response.text,
    )


async def fetch_bytes(url: str, *, browser_headers: bool = True, config: Settings | None = None) -> bytes:
    async with _client(config or default_settings) as client:
        response = await client.get(url, headers=BROWSER_HEADERS if browser_headers else None)
        response.raise_for_status()
    return response.content


async def probe(url: str, *, config: Settings | None = None) -> None:
    """Cheap reachability check for a media url; raises when unreachable."""
    cfg = config or default_settings
    async with _client(cfg, cfg.probe_timeout_seconds) as client:
        response = await client.head(url, headers=BROWSER_HEADERS)
        if response.status_code in (405, 501):
            # HEAD not allowed; fall back to a streamed GET that reads nothing
            async with client.stream("GET", url, headers=BROWSER_HEADERS) as streamed:
                streamed.raise_for_status()
            return
        response.raise_for_status()
