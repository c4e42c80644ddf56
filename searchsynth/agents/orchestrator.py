"""Pipeline controller: drives one assistant turn end to end.

Web and image sub-pipelines run concurrently and are joined before answer
synthesis. Every stage publishes partial turn state through the session
store; a turn whose token has been cancelled stops publishing immediately.
"""
from __future__ import annotations

import asyncio
import time
from typing import Any, Callable

from loguru import logger

from searchsynth.agents.answer_synthesizer import AnswerSynthesizer, find_invalid_citations
from searchsynth.agents.content_processor import ContentProcessor, finalize_statuses, snapshot_statuses
from searchsynth.agents.follow_up import FollowUpGenerator
from searchsynth.agents.query_optimizer import QueryOptimizer
from searchsynth.agents.result_aggregator import ResultAggregator
from searchsynth.config import Settings, settings as default_settings
from searchsynth.errors import CancellationError
from searchsynth.models.turn import AssistantTurnState, ImageSource, ProcessingStatus, WebSource
from searchsynth.providers.gateway import ProviderGateway
from searchsynth.services import logger as log_service
from searchsynth.services.cancellation import CancellationToken
from searchsynth.services.session_store import SessionStore

NO_RESULTS_ANSWER = "I was unable to find any relevant information."

TurnUpdate = Callable[[dict[str, Any]], None]


class PipelineController:
    def __init__(
        self,
        store: SessionStore | None = None,
        gateway: ProviderGateway | None = None,
        config: Settings | None = None,
    ):
        self.config = config or default_settings
        self.store = store or SessionStore()
        self.gateway = gateway or ProviderGateway(self.config)
        self.optimizer = QueryOptimizer(self.gateway)
        self.aggregator = ResultAggregator(self.gateway)
        self.processor = ContentProcessor(self.gateway)
        self.synthesizer = AnswerSynthesizer(self.gateway)
        self.follow_ups = FollowUpGenerator(self.gateway)
        self._active: dict[str, CancellationToken] = {}

    def cancel(self, session_id: str) -> bool:
        """Cancel the in-flight turn of a session. Returns False when idle."""
        token = self._active.get(session_id)
        if token is None or token.cancelled:
            return False
        token.cancel()
        log_service.log_pipeline_step(session_id, "turn", "cancel_requested")
        return True

    def is_running(self, session_id: str) -> bool:
        token = self._active.get(session_id)
        return token is not None and not token.cancelled

    def _updater(self, session_id: str, token: CancellationToken) -> TurnUpdate:
        def update(partial: dict[str, Any]) -> None:
            if token.cancelled:
                return
            self.store.update_latest_assistant_message(session_id, partial)

        return update

    async def generate_assistant_response(
        self,
        session_id: str,
        query: str,
        token: CancellationToken | None = None,
    ) -> AssistantTurnState:
        """Run one turn and return the final assistant state.

        Callers that need to stop this particular turn later pass their own
        `token`; `cancel(session_id)` stops whichever turn is active.

        Raises CancellationError when the turn is cancelled; synthesis errors
        propagate after logging and leave the turn incomplete.
        """
        query = query.strip()
        if not query:
            raise ValueError("Query must not be empty")
        session = self.store.require(session_id)

        # A new turn always supersedes the previous one.
        self.cancel(session_id)
        token = token or CancellationToken()
        self._active[session_id] = token

        is_first_message = not session.messages
        self.store.add_user_message(session_id, query)
        update = self._updater(session_id, token)
        t0 = time.monotonic()
        log_service.log_pipeline_step(session_id, "turn", "started", {"query": query[:100]})

        try:
            if is_first_message and not session.has_title_been_set:
                title = await token.guard(self.gateway.create_session_title(query))
                self.store.set_title(session_id, title)
            await self._run_turn(session_id, query, update, token)
        except CancellationError:
            log_service.log_pipeline_step(session_id, "turn", "cancelled")
            raise
        except Exception as exc:
            logger.exception(f"Turn failed for session {session_id}")
            log_service.log_pipeline_step(session_id, "turn", "error", {"error": str(exc)})
            raise
        finally:
            if self._active.get(session_id) is token:
                del self._active[session_id]

        log_service.log_pipeline_step(
            session_id,
            "turn",
            "completed",
            {"runtime_ms": int((time.monotonic() - t0) * 1000)},
        )
        return self.store.latest_turn(session_id)

    async def _run_turn(
        self,
        session_id: str,
        query: str,
        update: TurnUpdate,
        token: CancellationToken,
    ) -> None:
        token.raise_if_cancelled()
        web_outcome, image_outcome = await asyncio.gather(
            self._web_pipeline(session_id, query, update, token),
            self._image_pipeline(session_id, query, update, token),
            return_exceptions=True,
        )
        for outcome in (web_outcome, image_outcome):
            if isinstance(outcome, BaseException) and not isinstance(outcome, Exception):
                raise outcome
        token.raise_if_cancelled()

        search_queries: list[str] = []
        web_statuses: list[ProcessingStatus] = []
        if isinstance(web_outcome, Exception):
            logger.warning(f"Web sub-pipeline failed for session {session_id}: {web_outcome}")
        else:
            search_queries, web_statuses = web_outcome
        image_statuses: list[ProcessingStatus] = []
        if isinstance(image_outcome, Exception):
            logger.warning(f"Image sub-pipeline failed for session {session_id}: {image_outcome}")
        else:
            image_statuses = image_outcome

        text_sources = [s.source for s in web_statuses if s.scrape_status == "success" and isinstance(s.source, WebSource)]
        image_sources = [
            s.source for s in image_statuses if s.scrape_status == "success" and isinstance(s.source, ImageSource)
        ]

        if not text_sources:
            update({"final_answer": NO_RESULTS_ANSWER, "is_done_generating_final_answer": True})
            log_service.log_pipeline_step(session_id, "synthesis", "skipped", {"reason": "no_sources"})
            return

        log_service.log_pipeline_step(
            session_id,
            "synthesis",
            "running",
            {"text_sources": len(text_sources), "image_sources": len(image_sources)},
        )
        answer = await self.synthesizer.synthesize(
            query,
            text_sources,
            image_sources,
            on_fragment=lambda text: update({"final_answer": text}),
            token=token,
        )
        token.raise_if_cancelled()
        invalid = find_invalid_citations(answer, text_sources)
        if invalid:
            logger.warning(f"Answer cites unknown sources {invalid} (session {session_id})")
        update(
            {
                "final_answer": answer,
                "is_done_generating_final_answer": True,
                "invalid_citations": invalid,
            }
        )

        follow_ups = await self.follow_ups.generate(
            search_queries or [query],
            answer,
            self.config.follow_up_query_count,
            token=token,
        )
        if follow_ups:
            update({"follow_up_search_queries": follow_ups})

    async def _web_pipeline(
        self,
        session_id: str,
        query: str,
        update: TurnUpdate,
        token: CancellationToken,
    ) -> tuple[list[str], list[ProcessingStatus]]:
        optimized = await self.optimizer.optimize(
            query, self.config.optimized_query_count, "web", token=token
        )
        if optimized is None or not optimized.queries:
            update({"is_done_generating_search_queries": True})
            return [], []
        queries = optimized.queries
        update({"is_done_generating_search_queries": True, "search_queries": queries})
        log_service.log_pipeline_step(session_id, "web_search", "running", {"queries": queries})

        results = await self.aggregator.aggregate(
            queries,
            "web",
            cap=self.config.web_result_cap,
            per_query_count=self.config.results_per_query,
            on_update=lambda items: update({"search_results": items}),
            token=token,
        )
        token.raise_if_cancelled()
        update({"is_done_performing_search": True, "search_results": results})

        statuses = finalize_statuses(results, "web")
        update({"processed_search_results": snapshot_statuses(statuses)})
        await self.processor.process_all(
            statuses,
            query=query,
            modality="web",
            on_update=lambda items: update({"processed_search_results": items}),
            token=token,
        )
        update({"is_done_processing_search_results": True, "processed_search_results": snapshot_statuses(statuses)})
        return queries, statuses

    async def _image_pipeline(
        self,
        session_id: str,
        query: str,
        update: TurnUpdate,
        token: CancellationToken,
    ) -> list[ProcessingStatus]:
        wants_images = await token.guard(
            self.gateway.decide(query, self.config.image_decision_constraint)
        )
        if not wants_images:
            log_service.log_pipeline_step(session_id, "image_search", "skipped")
            return []

        optimized = await self.optimizer.optimize(
            query, self.config.optimized_query_count, "image", token=token
        )
        if optimized is None or not optimized.queries:
            return []
        queries = optimized.queries
        update({"image_search_queries": queries})
        log_service.log_pipeline_step(session_id, "image_search", "running", {"queries": queries})

        results = await self.aggregator.aggregate(
            queries,
            "image",
            cap=self.config.image_result_cap,
            per_query_count=self.config.results_per_query,
            on_update=lambda items: update({"image_search_results": items}),
            token=token,
        )
        token.raise_if_cancelled()
        update({"is_done_performing_image_search": True, "image_search_results": results})

        statuses = finalize_statuses(results, "image")
        update({"processed_image_search_results": snapshot_statuses(statuses)})
        await self.processor.process_all(
            statuses,
            query=query,
            modality="image",
            on_update=lambda items: update({"processed_image_search_results": items}),
            token=token,
        )
        update(
            {
                "is_done_processing_image_search_results": True,
                "processed_image_search_results": snapshot_statuses(statuses),
            }
        )
        return statuses
