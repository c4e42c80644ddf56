from __future__ import annotations

import asyncio
from typing import Callable, Sequence

from loguru import logger

from searchsynth.errors import CancellationError, ProviderError, SearchSynthError
from searchsynth.models.turn import ImageSource, Modality, ProcessingStatus, SearchResultItem, WebSource
from searchsynth.providers.gateway import ProviderGateway
from searchsynth.services.cancellation import CancellationToken, NullToken

StatusCallback = Callable[[list[ProcessingStatus]], None]


def snapshot_statuses(statuses: Sequence[ProcessingStatus]) -> list[ProcessingStatus]:
    """Detached copies for publishing; the processor keeps mutating the originals."""
    return [status.model_copy(deep=True) for status in statuses]


def finalize_statuses(items: Sequence[SearchResultItem], modality: Modality = "web") -> list[ProcessingStatus]:
    """Freeze the aggregated set into numbered, not-started statuses.

    Source numbers follow set order starting at 1 and never change afterwards.
    """
    statuses: list[ProcessingStatus] = []
    for idx, item in enumerate(items):
        if modality == "image":
            source: WebSource | ImageSource = ImageSource(
                title=item.title,
                img_url=item.media_url or item.url,
                thumbnail_url=item.thumbnail_url,
                web_url=item.url,
                source_number=idx + 1,
            )
        else:
            source = WebSource(
                url=item.url,
                title=item.title,
                favicon=item.favicon,
                source_number=idx + 1,
            )
        statuses.append(ProcessingStatus(source=source))
    return statuses


class ContentProcessor:
    """Fetches and summarizes every finalized result concurrently."""

    def __init__(self, gateway: ProviderGateway):
        self.gateway = gateway

    async def process_all(
        self,
        statuses: list[ProcessingStatus],
        *,
        query: str,
        modality: Modality = "web",
        on_update: StatusCallback | None = None,
        token: CancellationToken | None = None,
    ) -> list[ProcessingStatus]:
        token = token or NullToken()

        def publish() -> None:
            if on_update is not None:
                on_update(snapshot_statuses(statuses))

        await asyncio.gather(
            *(self.process_one(status, query=query, modality=modality, publish=publish, token=token) for status in statuses)
        )
        token.raise_if_cancelled()

        succeeded = sum(1 for s in statuses if s.scrape_status == "success")
        logger.info(f"Processed {len(statuses)} {modality} results: {succeeded} succeeded")
        return statuses

    async def process_one(
        self,
        status: ProcessingStatus,
        *,
        query: str,
        modality: Modality,
        publish: Callable[[], None],
        token: CancellationToken,
    ) -> None:
        if not status.mark_in_progress():
            return
        publish()

        try:
            if modality == "image":
                summary = await self._describe(status.source, token)
            else:
                summary = await self._summarize(status.source, query, token)
            if not summary.strip():
                raise ProviderError("Summary came back empty")
            status.mark_success(summary.strip())
        except CancellationError:
            # The turn is being discarded; leave the item where it stopped.
            return
        except SearchSynthError as exc:
            logger.warning(f"Processing failed for source {status.source.source_number}: {exc}")
            status.mark_error(str(exc))
        except Exception as exc:
            logger.exception(f"Unexpected error processing source {status.source.source_number}")
            status.mark_error(f"{type(exc).__name__}: {exc}")
        publish()

    async def _summarize(self, source: WebSource, query: str, token: CancellationToken) -> str:
        text = await token.guard(self.gateway.fetch_text(source.url))
        if not text.strip():
            raise ProviderError(f"No content fetched from {source.url}")
        return await token.guard(self.gateway.summarize(query, text))

    async def _describe(self, source: ImageSource, token: CancellationToken) -> str:
        data = await token.guard(self.gateway.fetch_image_bytes(source.img_url))
        if not data:
            raise ProviderError(f"No bytes fetched from {source.img_url}")
        return await token.guard(self.gateway.describe_image(source.title, data))
