"""
Agentic search planning.

Instead of one upfront plan, the LLM picks actions turn by turn: search,
analyze gaps, or finish. The loop is an explicit state machine

    planning -> awaiting_tool_result -> planning ... -> done

and the whole conversation lives on the AgentState value that each
transition receives and returns. `on_llm_response` is pure, so any
transition can be replayed in tests without an LLM.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import httpx

from physchat.backends.llm import LLMAuthError, LLMError, LLMResponse
from physchat.backends.tesseract import SearchQuery, TesseractAuthError, TesseractClient, TesseractError
from physchat.models import AgentStep, Article, DateRange

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 4
MAX_SEARCH_LIMIT = 20
SEARCH_TYPES = ("general", "title_focused", "recent")

AGENT_TOOLS: List[Dict[str, Any]] = [
    {
        "name": "search_papers",
        "description": "Search the APS physics journal database for papers matching a query. Use this to find papers on specific topics, concepts, or by author.",
        "input_schema": {
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": "Search query - can be keywords, phrases, or author names",
                },
                "search_type": {
                    "type": "string",
                    "enum": list(SEARCH_TYPES),
                    "description": "general: searches all fields; title_focused: prioritizes title matches; recent: filters to papers from last 3 years",
                },
                "limit": {
                    "type": "integer",
                    "description": "Number of results to return (default 10, max 20)",
                },
            },
            "required": ["query"],
        },
    },
    {
        "name": "analyze_gaps",
        "description": "After searching, analyze what's missing from your results. Call this to identify if you need additional searches to better answer the user's question.",
        "input_schema": {
            "type": "object",
            "properties": {
                "current_coverage": {
                    "type": "string",
                    "description": "Brief description of what the current results cover",
                },
                "missing_aspects": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "List of aspects of the question not yet covered by results",
                },
                "suggested_queries": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Additional search queries that might fill the gaps",
                },
            },
            "required": ["current_coverage", "missing_aspects"],
        },
    },
    {
        "name": "finish",
        "description": "Call this when you have gathered enough papers to answer the user's question. This signals you're done searching.",
        "input_schema": {
            "type": "object",
            "properties": {
                "reasoning": {
                    "type": "string",
                    "description": "Explain why the current papers are sufficient to address the user's question",
                },
                "coverage_summary": {
                    "type": "string",
                    "description": "Brief summary of what topics/aspects are covered by the papers found",
                },
            },
            "required": ["reasoning"],
        },
    },
]

AGENT_SYSTEM_PROMPT = """You are a physics research search agent helping find relevant papers from APS journals.

Your goal: Find papers that best answer the user's question.

WORKFLOW:
1. Analyze the user's question to understand what they're looking for
2. Use search_papers to find relevant papers (you can search multiple times with different queries)
3. After each search, evaluate if you have enough coverage
4. Use analyze_gaps if you think more searches would help
5. Call finish when you have sufficient papers to answer the question

SEARCH STRATEGIES:
- For conceptual questions ("What is X?"): Search for the concept + "review" or foundational terms
- For recent research ("Latest on X"): Use search_type="recent"
- For specific phenomena: Use precise technical terms
- For comparisons ("X vs Y"): Search each concept separately

TIPS:
- Physics terms are specific: "topological insulator" not just "insulator"
- Try synonyms if first search is poor: "BEC" vs "Bose-Einstein condensate"
- 2-3 good searches usually suffice; don't over-search

Call finish when you have 5-15 relevant papers covering the main aspects of the question."""


class AgentPhase(str, Enum):
    PLANNING = "planning"
    AWAITING_TOOL_RESULT = "awaiting_tool_result"
    DONE = "done"


@dataclass
class AgentState:
    """Everything the loop knows. Passed into and returned from each transition."""
    query: str
    messages: List[Dict[str, Any]]
    papers: Dict[str, Article] = field(default_factory=dict)  # DOI -> article, first-seen order
    sources_by_doi: Dict[str, List[str]] = field(default_factory=dict)
    steps: List[AgentStep] = field(default_factory=list)
    phase: AgentPhase = AgentPhase.PLANNING
    iteration: int = 0
    pending_tool_uses: List[Dict[str, Any]] = field(default_factory=list)
    finish_reason: Optional[str] = None
    aborted: bool = False


@dataclass
class AgenticResult:
    success: bool
    papers: List[Article] = field(default_factory=list)
    agent_steps: List[AgentStep] = field(default_factory=list)
    finish_reason: Optional[str] = None
    total_searches: int = 0
    sources_by_doi: Dict[str, List[str]] = field(default_factory=dict)
    fallback_reason: Optional[str] = None

    @property
    def iterations(self) -> int:
        return max((s.iteration or 0 for s in self.agent_steps), default=0)

    @property
    def finish_step(self) -> Optional[AgentStep]:
        return next((s for s in self.agent_steps if s.type == "finish"), None)


def recent_start_date(today: date) -> str:
    """Same month and day, three years earlier (Feb 29 falls back to Feb 28)."""
    try:
        start = today.replace(year=today.year - 3)
    except ValueError:
        start = today.replace(year=today.year - 3, day=28)
    return start.isoformat()


def summarize_hits(articles: List[Article], limit: int = 5) -> str:
    lines = []
    for i, a in enumerate(articles[:limit]):
        lines.append(f'{i + 1}. "{a.clean_title()[:100]}" {a.citation_line()}')
    return "\n".join(lines)


class AgenticPlanner:
    """Runs the LLM-directed search loop for one question."""

    def __init__(
        self,
        llm_client,
        search_client: TesseractClient,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        clock: Callable[[], date] = date.today,
    ):
        self.llm_client = llm_client
        self.search_client = search_client
        self.max_iterations = max_iterations
        self.clock = clock

    def initial_state(self, query: str) -> AgentState:
        return AgentState(
            query=query,
            messages=[{"role": "user", "content": f'Find papers to answer this question: "{query}"'}],
        )

    def on_llm_response(self, state: AgentState, response: LLMResponse) -> AgentState:
        """planning -> awaiting_tool_result, or planning -> done when no tool was called."""
        tool_uses = response.tool_uses
        if not tool_uses:
            if response.content:
                state.steps.append(AgentStep(type="thinking", iteration=state.iteration, content=response.content))
            state.finish_reason = "Agent completed reasoning"
            state.phase = AgentPhase.DONE
            return state

        state.messages.append({"role": "assistant", "content": response.blocks})
        state.pending_tool_uses = tool_uses
        state.phase = AgentPhase.AWAITING_TOOL_RESULT
        return state

    async def execute_tools(self, state: AgentState, access_token: str) -> AgentState:
        """awaiting_tool_result -> planning, or -> done after a finish call."""
        finished = False
        tool_results = []

        for tool_use in state.pending_tool_uses:
            name = tool_use.get("name")
            tool_input = tool_use.get("input") or {}

            if name == "search_papers":
                content, is_error = await self._search(state, tool_input, access_token)
            elif name == "analyze_gaps":
                content, is_error = self._analyze_gaps(state, tool_input), False
            elif name == "finish":
                content, is_error = self._finish(state, tool_input), False
                finished = True
            else:
                content, is_error = f"Unknown tool: {name}", True

            result = {"type": "tool_result", "tool_use_id": tool_use.get("id"), "content": content}
            if is_error:
                result["is_error"] = True
            tool_results.append(result)

        if tool_results:
            state.messages.append({"role": "user", "content": tool_results})
        state.pending_tool_uses = []
        state.phase = AgentPhase.DONE if finished else AgentPhase.PLANNING
        return state

    async def _search(self, state: AgentState, tool_input: dict, access_token: str):
        query = (tool_input.get("query") or "").strip()
        search_type = tool_input.get("search_type") or "general"
        if search_type not in SEARCH_TYPES:
            search_type = "general"
        try:
            limit = int(tool_input.get("limit") or 10)
        except (TypeError, ValueError):
            limit = 10
        limit = max(1, min(limit, MAX_SEARCH_LIMIT))

        step = AgentStep(type="search", iteration=state.iteration, query=query, search_type=search_type)
        state.steps.append(step)

        if not query:
            step.status = "error"
            step.error = "search_papers called without a query"
            return "Search failed: a query is required. Try a different query.", True

        params = SearchQuery(query=query)
        if search_type == "recent":
            params = SearchQuery(query=query, date_range=DateRange(start=recent_start_date(self.clock())))
        elif search_type == "title_focused":
            params = SearchQuery(query=query, fields=["title"])

        try:
            results = await self.search_client.search(params, access_token, limit=limit, sort="relevance")
        except TesseractAuthError:
            raise
        except (TesseractError, httpx.HTTPError) as e:
            logger.error(f"Agent search error for {query!r}: {e}")
            step.status = "error"
            step.error = str(e)
            return f"Search failed: {e}. Try a different query.", True

        new_count = 0
        for article in results.results:
            if not article.doi:
                continue
            if article.doi not in state.papers:
                state.papers[article.doi] = article
                new_count += 1
            sources = state.sources_by_doi.setdefault(article.doi, [])
            if query not in sources:
                sources.append(query)

        step.total_found = results.total
        step.new_papers = new_count
        step.status = "success"
        logger.info(f"Agent search {query!r} ({search_type}): {results.total} found, {new_count} new")

        return (
            f"Found {results.total} papers. Top results:\n{summarize_hits(results.results)}\n\n"
            f"Total unique papers collected so far: {len(state.papers)}"
        ), False

    def _analyze_gaps(self, state: AgentState, tool_input: dict) -> str:
        missing = tool_input.get("missing_aspects") or []
        suggestions = tool_input.get("suggested_queries") or []
        state.steps.append(AgentStep(
            type="analysis",
            iteration=state.iteration,
            coverage=tool_input.get("current_coverage"),
            gaps=list(missing),
            suggestions=list(suggestions),
        ))
        if missing:
            advice = f"Consider searching for: {', '.join(suggestions[:2])}"
        else:
            advice = "Coverage looks good - consider calling finish."
        return f"Gap analysis recorded. You have {len(state.papers)} papers. {advice}"

    def _finish(self, state: AgentState, tool_input: dict) -> str:
        reasoning = tool_input.get("reasoning") or "Agent finished"
        state.steps.append(AgentStep(
            type="finish",
            iteration=state.iteration,
            reasoning=reasoning,
            coverage=tool_input.get("coverage_summary"),
        ))
        state.finish_reason = reasoning
        return "Search complete. Proceeding to synthesis."

    async def run(self, query: str, access_token: str) -> AgenticResult:
        if self.llm_client is None:
            logger.info("No LLM client configured, agentic search unavailable")
            return AgenticResult(success=False, fallback_reason="API key not configured")

        state = self.initial_state(query)

        while state.phase is not AgentPhase.DONE and state.iteration < self.max_iterations:
            state.iteration += 1
            try:
                response = await self.llm_client.create_message(
                    messages=state.messages,
                    system=AGENT_SYSTEM_PROMPT,
                    tools=AGENT_TOOLS,
                    max_tokens=1024,
                    label=f"agent iteration {state.iteration}",
                )
            except LLMAuthError as e:
                logger.warning(f"Agent LLM credential rejected: {e}")
                return AgenticResult(success=False, fallback_reason="LLM credential rejected")
            except (LLMError, httpx.HTTPError) as e:
                logger.error(f"Agent iteration error: {e}")
                state.steps.append(AgentStep(type="error", iteration=state.iteration, error=str(e)))
                state.aborted = True
                break

            state = self.on_llm_response(state, response)
            if state.phase is AgentPhase.AWAITING_TOOL_RESULT:
                state = await self.execute_tools(state, access_token)

        if state.phase is not AgentPhase.DONE:
            if state.aborted:
                state.finish_reason = f"Stopped after an error with {len(state.papers)} papers"
            else:
                state.steps.append(AgentStep(
                    type="max_iterations",
                    message=f"Reached maximum {self.max_iterations} iterations",
                ))
                state.finish_reason = f"Reached iteration limit with {len(state.papers)} papers"
            state.phase = AgentPhase.DONE

        return AgenticResult(
            success=True,
            papers=list(state.papers.values()),
            agent_steps=state.steps,
            finish_reason=state.finish_reason,
            total_searches=sum(1 for s in state.steps if s.type == "search"),
            sources_by_doi=state.sources_by_doi,
        )
