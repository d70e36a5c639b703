"""
Search planning: turn a question into 2-4 weighted sub-queries.

One LLM call classifies the intent and proposes the sub-queries. Whenever the
LLM is unavailable or its output does not validate, a rule-based keyword
extractor produces the plan instead.
"""

import json
import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import FrozenSet, List, Optional, Tuple

import httpx
from pydantic import ValidationError

from physchat.backends.llm import LLMError
from physchat.models import SearchPlan, SubQuery

logger = logging.getLogger(__name__)

JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")
PUNCTUATION_RE = re.compile(r"[?.,!'\"]")

MAX_SUB_QUERIES = 4

DEFAULT_STOP_WORDS: FrozenSet[str] = frozenset({
    # Articles, pronouns, prepositions
    "the", "a", "an", "is", "are", "was", "were", "be", "been", "being",
    "have", "has", "had", "do", "does", "did", "will", "would", "could", "should",
    "what", "how", "why", "when", "where", "who", "which", "can",
    "i", "me", "my", "you", "your", "we", "our", "they", "their",
    "want", "understand", "explain", "help", "know", "learn", "find", "tell",
    "about", "between", "relationship", "connection", "and", "or", "but", "with",
    "to", "of", "in", "for", "on", "at", "by", "from", "that", "this", "it", "its",
    # Generic terms with no search value
    "effect", "effects", "affect", "affects", "cause", "causes", "caused",
    "impact", "impacts", "influence", "influences", "role", "roles",
    "change", "changes", "result", "results", "lead", "leads",
    "work", "works", "make", "makes", "made", "use", "uses", "used",
    "show", "shows", "shown", "finds", "found", "study", "studies",
    "research", "paper", "papers", "article", "articles",
    "new", "novel", "recent", "important", "significant", "different",
    "many", "some", "most", "all", "any", "other", "such", "like",
    "also", "well", "just", "even", "still", "only", "very", "really",
})

DEFAULT_COMPOUND_TERMS: Tuple[str, ...] = (
    "quantum mechanics", "quantum field", "quantum gravity", "quantum biology",
    "quantum entanglement", "quantum computing",
    "general relativity", "special relativity", "dark matter", "dark energy",
    "black hole", "neutron star", "gravitational wave", "condensed matter",
    "particle physics", "nuclear physics", "statistical mechanics",
    "bose-einstein condensate", "topological insulator",
    "high energy", "low temperature", "room temperature",
)


@dataclass(frozen=True)
class FallbackPlannerConfig:
    stop_words: FrozenSet[str] = DEFAULT_STOP_WORDS
    compound_terms: Tuple[str, ...] = DEFAULT_COMPOUND_TERMS
    min_word_length: int = 3


def fallback_query_parsing(query: str, config: FallbackPlannerConfig = FallbackPlannerConfig()) -> SearchPlan:
    """
    Rule-based plan used when the LLM is unavailable.

    Known compound terms are pulled out first (weight 2.0), the first two
    concepts form an intersection query (weight 1.8) and up to two leftover
    single words get their own query (weight 1.0). Pure: no I/O, no state.
    """
    normalized = PUNCTUATION_RE.sub(" ", query.lower())

    found_compounds: List[str] = []
    for compound in config.compound_terms:
        if compound in normalized:
            found_compounds.append(compound)
            normalized = normalized.replace(compound, " ")

    words = [
        w for w in normalized.split()
        if len(w) >= config.min_word_length and w not in config.stop_words
    ]
    concepts = found_compounds + words

    searches: List[SubQuery] = []
    for compound in found_compounds:
        searches.append(SubQuery(query=compound, purpose=compound, weight=2.0))

    if len(concepts) >= 2:
        combo = " ".join(concepts[:2])
        if not any(s.query == combo for s in searches):
            searches.append(SubQuery(query=combo, purpose="intersection", weight=1.8))

    for word in words[:2]:
        if not any(word in c for c in found_compounds):
            searches.append(SubQuery(query=word, purpose=word, weight=1.0))

    if not searches:
        direct = query.replace("?", "").replace("!", "").strip() or query
        searches.append(SubQuery(query=direct, purpose="direct query", weight=1.0))

    return SearchPlan(
        interpretation=f"Searching for: {', '.join(concepts) or query}",
        intent="specific",
        concepts=concepts,
        searches=searches[:MAX_SUB_QUERIES],
    )


def build_planner_prompt(today: date) -> str:
    recent_floor = today.year - 3
    return f"""You are a physics research search assistant for APS journals. Analyze the user's query to understand their INTENT and generate an optimal search strategy.

## Intent Types
Identify ONE primary intent:
- **explainer**: User wants to understand a concept ("What is...", "How does...work", "Explain...")
  -> Prioritize review articles, foundational papers, highly-cited works
- **survey**: User wants current state of field ("Recent advances in...", "Latest research on...")
  -> Filter to recent years ({recent_floor}+), sort by date
- **specific**: User wants papers on a specific phenomenon or result
  -> Precise keyword matching, use title field
- **author**: User mentions a researcher name
  -> Use author field search
- **comparative**: User comparing concepts ("difference between X and Y", "X vs Y")
  -> One search per compared concept, plus one for papers discussing both

## Search Strategy
Generate 2-4 searches. Each search can specify:
- **query**: The search terms
- **fields**: Array of ["title", "abstract", "author"] - where to search (default: all)
- **dateRange**: Object {{"start": "YYYY-MM-DD", "end": "YYYY-MM-DD"}} or null
- **articleTypes**: Array like ["review", "research"] or null
- **weight**: 0.5-2.5 importance

## Rules
- Extract SPECIFIC physics terms, not generic words (effect, cause, role, relationship, study)
- Preserve compound terms: "quantum entanglement", "dark matter", "Bose-Einstein condensate"
- For explainer intent: include a search restricted to review articles
- For survey intent: always set dateRange.start to at least {recent_floor}-01-01
- For specific intent: restrict at least one search to the title field
- For author queries: put the name in a separate author-field search

Respond with valid JSON only:
{{
  "interpretation": "One sentence summary of what user wants to learn",
  "intent": "explainer|survey|specific|author|comparative",
  "concepts": ["concept1", "concept2"],
  "searches": [
    {{
      "query": "search terms",
      "fields": ["title", "abstract"],
      "dateRange": null,
      "articleTypes": null,
      "purpose": "brief label",
      "weight": 1.5
    }}
  ]
}}"""


def parse_plan_response(content: str, query: str) -> SearchPlan:
    """
    Validate the LLM's plan JSON.

    Raises ValueError (json errors, pydantic ValidationError) on anything
    that does not match the SearchPlan shape.
    """
    match = JSON_OBJECT_RE.search(content or "")
    if not match:
        raise ValueError("no JSON object in planner response")

    data = json.loads(match.group(0))
    searches = data.get("searches") if isinstance(data, dict) else None
    if not isinstance(searches, list) or not searches:
        raise ValueError("planner response has no searches")

    normalized = []
    for s in searches[:MAX_SUB_QUERIES]:
        if not isinstance(s, dict):
            raise ValueError(f"malformed search entry: {s!r}")
        normalized.append({**s, "query": s.get("query") or query, "purpose": s.get("purpose") or "search"})

    return SearchPlan.model_validate({
        "interpretation": data.get("interpretation") or f"Searching for: {query}",
        "intent": data.get("intent") or "specific",
        "concepts": data.get("concepts") or [],
        "searches": normalized,
    })


async def plan_search(
    query: str,
    llm_client=None,
    config: FallbackPlannerConfig = FallbackPlannerConfig(),
    today: Optional[date] = None,
) -> SearchPlan:
    """Produce a SearchPlan, falling back to the rule-based parser on any failure."""
    if llm_client is None:
        logger.info("No LLM client configured, using fallback parsing")
        return fallback_query_parsing(query, config)

    try:
        response = await llm_client.generate(
            prompt=f'Generate a search strategy for this query: "{query}"',
            system=build_planner_prompt(today or date.today()),
            max_tokens=500,
            label="planning searches",
        )
        plan = parse_plan_response(response.content, query)
    except (LLMError, httpx.HTTPError) as e:
        logger.warning(f"Planner LLM call failed, using fallback parsing: {e}")
        return fallback_query_parsing(query, config)
    except (ValueError, ValidationError) as e:
        logger.warning(f"Invalid search plan from LLM, using fallback parsing: {e}")
        return fallback_query_parsing(query, config)

    logger.info(f"Plan ({plan.intent}): {[s.query for s in plan.searches]}")
    return plan
