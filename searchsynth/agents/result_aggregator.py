from __future__ import annotations

from typing import Callable, Sequence

from loguru import logger

from searchsynth.errors import CancellationError, SearchSynthError
from searchsynth.models.turn import SearchResultItem
from searchsynth.providers.gateway import ProviderGateway, SearchKind
from searchsynth.services.cancellation import CancellationToken, NullToken

UpdateCallback = Callable[[list[SearchResultItem]], None]


class ResultAggregator:
    """Runs every optimized query and folds the hits into one bounded set.

    Queries are processed in order and items are accepted in provider rank, so
    the result set is deterministic for a given sequence of provider answers.
    Items are deduplicated by identity key; once the set reaches `cap` the
    rest of the current query's hits are skipped.
    """

    def __init__(self, gateway: ProviderGateway):
        self.gateway = gateway

    async def aggregate(
        self,
        queries: Sequence[str],
        kind: SearchKind = "web",
        *,
        cap: int,
        per_query_count: int = 5,
        on_update: UpdateCallback | None = None,
        token: CancellationToken | None = None,
    ) -> list[SearchResultItem]:
        token = token or NullToken()
        accepted: list[SearchResultItem] = []
        seen: set[str] = set()

        for query in queries:
            token.raise_if_cancelled()
            try:
                hits = await token.guard(self.gateway.search(query, kind, per_query_count))
            except CancellationError:
                raise
            except SearchSynthError as exc:
                logger.warning(f"{kind} search failed for '{query}', skipping: {exc}")
                hits = []

            for item in hits:
                if len(accepted) >= cap:
                    break
                key = item.identity_key
                if key in seen:
                    continue
                if kind == "image":
                    reachable = await token.guard(self.gateway.probe_media(item.media_url or item.url))
                    if not reachable:
                        logger.debug(f"Discarding unreachable image {item.media_url or item.url}")
                        continue
                seen.add(key)
                accepted.append(item)

            if on_update is not None:
                on_update(list(accepted))

        logger.info(f"Aggregated {len(accepted)} {kind} results from {len(queries)} queries (cap {cap})")
        return accepted
