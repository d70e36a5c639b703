"""
Grounded answer synthesis.

Writes a 2-3 sentence answer to the question from the top-ranked abstracts
only, with [n] citations pointing at the 1-indexed input order. Synthesis is
an optional enhancement: every failure returns None.
"""

import logging
from typing import List, Optional

import httpx

from physchat.backends.llm import LLMError
from physchat.models import Article

logger = logging.getLogger(__name__)

MAX_SOURCES = 5
ABSTRACT_CHARS = 600

INTENT_GUIDANCE = {
    "explainer": "Explain the concept using ONLY what is stated in these abstracts.",
    "survey": "Summarize the research findings from ONLY these papers.",
    "specific": "Describe ONLY what these specific papers found.",
    "author": "Summarize ONLY the research shown in these papers.",
    "comparative": "Compare concepts using ONLY information from these abstracts.",
}


def build_system_prompt(intent: str) -> str:
    guidance = INTENT_GUIDANCE.get(intent, INTENT_GUIDANCE["specific"])
    return f"""You are a research assistant that synthesizes information EXCLUSIVELY from provided paper abstracts.

CRITICAL RULES:
1. ONLY use information explicitly stated in the abstracts below
2. NEVER add information from your training data or general knowledge
3. If the abstracts don't contain enough information to answer, say "Based on these papers, [what they do cover]"
4. Every claim must be supported by a citation [1], [2], etc.
5. Keep your answer to 2-3 sentences maximum
6. {guidance}

If you cannot answer the question from the abstracts alone, summarize what the papers DO cover instead of making things up."""


def format_sources(articles: List[Article]) -> str:
    blocks = []
    for idx, paper in enumerate(articles):
        if paper.abstract:
            abstract = paper.abstract[:ABSTRACT_CHARS] + ("..." if len(paper.abstract) > ABSTRACT_CHARS else "")
        else:
            abstract = "No abstract available"
        blocks.append(f'[{idx + 1}] "{paper.clean_title()}" {paper.citation_line()}\nAbstract: {abstract}')
    return "\n\n".join(blocks)


def build_user_prompt(query: str, articles: List[Article]) -> str:
    return f"""Question: "{query}"

PAPER ABSTRACTS (use ONLY this information):
{format_sources(articles)}

Write a 2-3 sentence synthesis using ONLY the information above. Cite with [1], [2], etc.:"""


async def generate_synthesis(
    query: str,
    intent: str,
    top_results: List[Article],
    llm_client=None,
) -> Optional[str]:
    """Return a grounded answer, or None when unavailable."""
    if llm_client is None or not top_results:
        return None

    articles = top_results[:MAX_SOURCES]
    try:
        response = await llm_client.generate(
            prompt=build_user_prompt(query, articles),
            system=build_system_prompt(intent),
            max_tokens=300,
            label=f"synthesizing answer from {len(articles)} papers",
        )
    except (LLMError, httpx.HTTPError, ValueError) as e:
        logger.error(f"Synthesis failed: {e}")
        return None

    return response.content or None
