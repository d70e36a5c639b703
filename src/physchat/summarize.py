"""
Per-article one-sentence summaries.

With an abstract the LLM condenses it (framed against the search query when
one is given); without one it guesses the subject from the title. Every
failure falls back to a deterministic summary.
"""

import asyncio
import logging
import re
from typing import Any, Dict, List, Optional

import httpx

from physchat.backends.llm import LLMError
from physchat.models import Article
from physchat.sanitize import InvalidQueryError

logger = logging.getLogger(__name__)

TAG_RE = re.compile(r"<[^>]*>")
SENTENCE_RE = re.compile(r"[^.!?]+[.!?]+")

SUMMARY_SYSTEM_PROMPT = (
    "You are a scientific paper summarizer. Given a paper's title and abstract, generate a single "
    "concise sentence (maximum 200 characters) that captures the key finding. Write for physicists. "
    "Be direct, factual, and brief. Never use more than one sentence."
)

CONTEXT_SYSTEM_PROMPT = """You are a research assistant helping a physicist find relevant papers. Given a paper and a search query, write ONE sentence (max 200 chars) that:
1. Summarizes the paper's key finding
2. Naturally indicates why it's relevant to what the user is looking for

Don't start with "This paper" or "The authors". Be direct and specific."""


def extract_first_sentences(text: Optional[str], n: int = 2) -> str:
    """First n sentences of text with markup removed."""
    if not text:
        return "No summary available."
    plain = TAG_RE.sub("", text)
    sentences = [s.strip() for s in SENTENCE_RE.findall(plain)] or [plain.strip()]
    return " ".join(sentences[:n]).strip()


def _title_prompt(title: str, search_query: Optional[str]) -> str:
    if search_query:
        return f"""A user searched for: "{search_query}"
This paper was found: "{title}"

Write ONE brief sentence (under 150 characters) that:
1. Describes what this paper investigates
2. Hints at why it's relevant to the search

Don't start with "This paper" - be direct."""
    return (
        "Based on this physics paper title, write a single brief sentence (under 150 characters) "
        f'describing what this research likely investigates. Be specific to physics. Title: "{title}"'
    )


async def summarize_article(
    title: Optional[str],
    abstract: Optional[str] = None,
    search_query: Optional[str] = None,
    llm_client=None,
) -> Dict[str, Any]:
    """
    Summarize one article.

    Returns {"summary", "aiGenerated"} plus "fromTitle" for AI summaries made
    from the title alone. Raises InvalidQueryError when there is neither a
    title nor an abstract.
    """
    has_abstract = isinstance(abstract, str) and abstract.strip() != ""
    if not title and not has_abstract:
        raise InvalidQueryError("Title or abstract is required")

    if not has_abstract:
        fallback = {"summary": f"Research on: {title}", "aiGenerated": False}
        if llm_client is None:
            return fallback
        try:
            response = await llm_client.generate(
                prompt=_title_prompt(title, search_query),
                max_tokens=100,
                label="summarizing from title",
            )
        except (LLMError, httpx.HTTPError, ValueError) as e:
            logger.error(f"Title-only summarize error: {e}")
            return fallback
        if not response.content:
            return fallback
        return {"summary": response.content, "aiGenerated": True, "fromTitle": True}

    fallback = {"summary": extract_first_sentences(abstract, 2), "aiGenerated": False}
    if llm_client is None:
        return fallback

    if search_query:
        system = CONTEXT_SYSTEM_PROMPT
        prompt = f"""Search query: "{search_query}"

Paper title: {title or 'Untitled'}

Abstract: {abstract}

Write a single summary sentence (under 200 chars) that captures the finding and its relevance:"""
    else:
        system = SUMMARY_SYSTEM_PROMPT
        prompt = f"Title: {title or 'Untitled'}\n\nAbstract: {abstract}\n\nProvide a single-sentence summary (under 200 characters):"

    try:
        response = await llm_client.generate(prompt=prompt, system=system, max_tokens=150, label="summarizing abstract")
    except (LLMError, httpx.HTTPError, ValueError) as e:
        logger.error(f"Summarize error: {e}")
        return fallback

    if not response.content:
        return fallback
    return {"summary": response.content, "aiGenerated": True}


async def summarize_results(
    articles: List[Article],
    search_query: Optional[str] = None,
    llm_client=None,
) -> List[Article]:
    """
    Summarize articles concurrently and attach the summaries in place.

    A failure on one article gives that article the deterministic summary;
    the others are unaffected.
    """

    async def summarize_one(article: Article) -> None:
        if not article.title and not (article.abstract or "").strip():
            return
        try:
            result = await summarize_article(article.title, article.abstract, search_query, llm_client)
        except Exception as e:
            logger.error(f"Summary failed for {article.doi or article.title!r}, using fallback: {e}")
            result = await summarize_article(article.title, article.abstract)
        article.summary = result["summary"]
        article.ai_summary = result["aiGenerated"]

    await asyncio.gather(*(summarize_one(a) for a in articles))
    return articles
