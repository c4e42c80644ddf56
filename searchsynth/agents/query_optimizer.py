from __future__ import annotations

from loguru import logger

from searchsynth.errors import FALLBACK_ERRORS
from searchsynth.models.schemas import QueryOptimizationResult
from searchsynth.models.turn import Modality
from searchsynth.providers.gateway import ProviderGateway
from searchsynth.services.cancellation import CancellationToken, NullToken


class QueryOptimizer:
    """Rewrites a user question into a short ordered list of search queries.

    The first query is the primary one. The requested count is advisory: a
    provider returning fewer queries is accepted as-is, more are cut off.
    """

    def __init__(self, gateway: ProviderGateway):
        self.gateway = gateway

    async def optimize(
        self,
        query: str,
        count: int = 3,
        modality: Modality = "web",
        token: CancellationToken | None = None,
    ) -> QueryOptimizationResult | None:
        token = token or NullToken()
        try:
            result = await token.guard(self.gateway.optimize_query(query, count, modality))
        except FALLBACK_ERRORS as exc:
            logger.warning(f"Query optimization ({modality}) failed on every provider: {exc}")
            return None

        queries = [q.strip() for q in result.queries if q and q.strip()][: max(count, 0)]
        logger.debug(f"Optimized {modality} queries for '{query[:80]}': {queries}")
        return QueryOptimizationResult(queries=queries)
