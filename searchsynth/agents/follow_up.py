from __future__ import annotations

from typing import Sequence

from loguru import logger

from searchsynth.errors import CancellationError, SearchSynthError
from searchsynth.providers.gateway import ProviderGateway
from searchsynth.services.cancellation import CancellationToken, NullToken


class FollowUpGenerator:
    def __init__(self, gateway: ProviderGateway):
        self.gateway = gateway

    async def generate(
        self,
        queries: Sequence[str],
        answer_text: str,
        count: int = 5,
        token: CancellationToken | None = None,
    ) -> list[str] | None:
        """Suggest follow-up questions; None when no provider can answer."""
        token = token or NullToken()
        try:
            result = await token.guard(self.gateway.follow_up(queries, answer_text, count))
        except CancellationError:
            raise
        except SearchSynthError as exc:
            logger.warning(f"Follow-up generation failed, omitting follow-ups: {exc}")
            return None
        return result.queries[: max(count, 0)]
