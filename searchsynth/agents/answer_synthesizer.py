from __future__ import annotations

import re
from typing import Callable, Sequence

from loguru import logger

from searchsynth.models.turn import ImageSource, WebSource
from searchsynth.providers.gateway import ProviderGateway
from searchsynth.services.cancellation import CancellationToken, NullToken

# [3](https://...) but not image embeds ![alt](url)
CITATION_RE = re.compile(r"(?<!!)\[(\d+)\]\(([^)\s]*)\)")


def find_invalid_citations(answer: str, text_sources: Sequence[WebSource]) -> list[int]:
    """Cited source numbers that match none of the provided text sources."""
    valid = {s.source_number for s in text_sources}
    cited = {int(num) for num, _ in CITATION_RE.findall(answer or "")}
    return sorted(cited - valid)


class AnswerSynthesizer:
    def __init__(self, gateway: ProviderGateway):
        self.gateway = gateway

    async def synthesize(
        self,
        query: str,
        text_sources: Sequence[WebSource],
        image_sources: Sequence[ImageSource] = (),
        *,
        on_fragment: Callable[[str], None] | None = None,
        token: CancellationToken | None = None,
    ) -> str:
        """Stream a cited answer, publishing the accumulated text per fragment.

        The answer channel is closed on every exit path, so a cancelled turn
        stops the upstream stream as well.
        """
        token = token or NullToken()
        channel = await token.guard(self.gateway.stream_answer(query, text_sources, image_sources))
        answer = ""
        fragments = 0
        try:
            while True:
                fragment = await token.guard(channel.receive())
                if fragment is None:
                    break
                answer += fragment
                fragments += 1
                if on_fragment is not None:
                    on_fragment(answer)
        finally:
            channel.close()

        logger.info(f"Synthesized answer: {len(answer)} chars over {fragments} fragments")
        return answer
