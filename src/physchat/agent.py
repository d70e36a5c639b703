"""
Literature Search Agent

Runs the pipeline: sanitize -> plan -> search -> aggregate -> synthesize ->
summarize (aka orchestrator). Two planning modes: "deterministic" (one
upfront plan) and "agentic" (LLM-directed loop). If the AI path fails the
request falls back to a plain search.
"""

import logging
from typing import Any, Dict, Optional

from physchat.aggregate import AggregationConfig, aggregate_agentic, aggregate_weighted
from physchat.agentic import AgenticPlanner, DEFAULT_MAX_ITERATIONS
from physchat.backends.tesseract import TesseractAuthError, TesseractClient
from physchat.planner import FallbackPlannerConfig, plan_search
from physchat.retrieve import run_plan_searches
from physchat.sanitize import InvalidQueryError, QuerySanitizer, SanitizerConfig
from physchat.summarize import summarize_article, summarize_results
from physchat.synthesis import MAX_SOURCES, generate_synthesis

logger = logging.getLogger(__name__)

MODES = ("agentic", "deterministic")


class AgentUnavailable(Exception):
    """The agentic planner cannot run (no LLM credential, or it was rejected)."""


class LiteratureSearchAgent:
    """Wires together all the pipeline stages."""

    def __init__(
        self,
        llm_client=None,
        search_client: Optional[TesseractClient] = None,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        sanitizer_config: SanitizerConfig = SanitizerConfig(),
        planner_config: FallbackPlannerConfig = FallbackPlannerConfig(),
        aggregation_config: AggregationConfig = AggregationConfig(),
    ):
        self.llm_client = llm_client
        self.search_client = search_client or TesseractClient()
        self.sanitizer = QuerySanitizer(sanitizer_config)
        self.planner_config = planner_config
        self.aggregation_config = aggregation_config
        self.agentic_planner = AgenticPlanner(llm_client, self.search_client, max_iterations=max_iterations)

        # Configure logging - suppress noisy httpx logs
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

    async def search(self, raw_query, access_token: str, limit: int = 10, sort: str = "relevance") -> Dict[str, Any]:
        """Plain search passthrough. Provider errors propagate."""
        query = self.sanitizer.clean_or_raise(raw_query)
        response = await self.search_client.search(query, access_token, limit=limit, sort=sort)
        return response.to_dict()

    async def ai_search(
        self,
        raw_query,
        access_token: str,
        limit: int = 15,
        sort: str = "relevance",
        mode: str = "agentic",
        summarize: bool = False,
    ) -> Dict[str, Any]:
        """
        AI-assisted search.

        Returns {query, aiAnalysis, ranking, total, results}. When the AI path
        is unavailable or fails, a plain search is returned instead with
        aiAnalysis=None and fallback=True. Input errors and rejected provider
        credentials propagate; so does a failure of the fallback search.
        """
        query = self.sanitizer.clean_or_raise(raw_query)
        if mode not in MODES:
            raise InvalidQueryError(f"Unknown search mode: {mode}")
        logger.info(f"Starting {mode} search for: {query!r}")

        try:
            if mode == "deterministic":
                result = await self._deterministic_search(query, access_token)
            else:
                result = await self._agentic_search(query, access_token)
        except TesseractAuthError:
            raise
        except AgentUnavailable as e:
            logger.info(f"Agent unavailable, falling back to simple search: {e}")
            return await self._fallback(query, access_token, limit, sort, reason=str(e))
        except Exception as e:
            logger.error(f"AI search failed, falling back to plain search: {e}")
            return await self._fallback(query, access_token, limit, sort)

        if summarize and result["_articles"]:
            await summarize_results(result["_articles"], search_query=query, llm_client=self.llm_client)

        articles = result.pop("_articles")
        result["results"] = [a.to_dict() for a in articles]
        result["total"] = len(articles)
        return result

    async def _deterministic_search(self, query: str, access_token: str) -> Dict[str, Any]:
        # --- Step 1: Plan ---
        plan = await plan_search(query, self.llm_client, self.planner_config)

        # --- Step 2: Retrieve ---
        sub_results = await run_plan_searches(plan, self.search_client, access_token)

        # --- Step 3: Aggregate ---
        aggregated = aggregate_weighted(sub_results, self.aggregation_config)
        for article in aggregated.ranked[:3]:
            logger.info(
                f"  - {article.clean_title()[:50]}... "
                f"(score={article.relevance_score:.2f}, overlap={article.overlap_count})"
            )

        # --- Step 4: Synthesize ---
        synthesis = await generate_synthesis(query, plan.intent, aggregated.ranked[:MAX_SOURCES], self.llm_client)

        return {
            "query": query,
            "aiAnalysis": {
                "mode": "deterministic",
                "interpretation": plan.interpretation,
                "intent": plan.intent,
                "concepts": plan.concepts,
                "searches": [r.to_dict() for r in sub_results],
                "synthesis": synthesis,
            },
            "ranking": {
                "method": "weighted_overlap",
                "totalSearches": len(sub_results),
                "stats": aggregated.stats,
            },
            "_articles": aggregated.ranked,
        }

    async def _agentic_search(self, query: str, access_token: str) -> Dict[str, Any]:
        agent_result = await self.agentic_planner.run(query, access_token)
        if not agent_result.success:
            raise AgentUnavailable(agent_result.fallback_reason)

        aggregated = aggregate_agentic(agent_result.papers, agent_result.sources_by_doi, self.aggregation_config)

        has_recent_search = any(
            s.type == "search" and s.search_type == "recent" for s in agent_result.agent_steps
        )
        intent = "survey" if has_recent_search else "specific"
        synthesis = await generate_synthesis(query, intent, aggregated.ranked[:MAX_SOURCES], self.llm_client)

        finish_step = agent_result.finish_step
        search_steps = [s for s in agent_result.agent_steps if s.type == "search"]
        return {
            "query": query,
            "aiAnalysis": {
                "mode": "agentic",
                "interpretation": (finish_step.coverage if finish_step and finish_step.coverage
                                   else f"Agent searched for: {query}"),
                "intent": intent,
                "concepts": [],
                "agentSteps": [s.to_dict() for s in agent_result.agent_steps],
                "searchesRun": [
                    {
                        "query": s.query,
                        "searchType": s.search_type,
                        "totalFound": s.total_found,
                        "newPapers": s.new_papers,
                        "status": s.status,
                        "error": s.error,
                    }
                    for s in search_steps
                ],
                "synthesis": synthesis,
                "finishReason": agent_result.finish_reason,
            },
            "ranking": {
                "method": "agent_curated",
                "totalSearches": agent_result.total_searches,
                "stats": {**aggregated.stats, "agentIterations": agent_result.iterations},
            },
            "_articles": aggregated.ranked,
        }

    async def _fallback(
        self, query: str, access_token: str, limit: int, sort: str, reason: Optional[str] = None
    ) -> Dict[str, Any]:
        response = await self.search_client.search(query, access_token, limit=limit, sort=sort)
        result: Dict[str, Any] = {"query": query, "aiAnalysis": None, "fallback": True}
        if reason:
            result["fallbackReason"] = reason
        result.update(response.to_dict())
        return result

    async def summarize(self, title, abstract=None, search_query=None) -> Dict[str, Any]:
        """Per-article summary. Raises InvalidQueryError without title and abstract."""
        context = self.sanitizer.sanitize(search_query) or None
        return await summarize_article(title, abstract, context, self.llm_client)

    async def close(self):
        await self.search_client.close()
