"""Shared test doubles."""
from typing import Dict, List, Optional

import pytest

from physchat.backends.llm import LLMResponse
from physchat.backends.tesseract import SearchQuery, TesseractError
from physchat.models import Article, SearchResponse


def make_article(doi: Optional[str], title: str = None, abstract: str = None, **kwargs) -> Article:
    return Article(
        title=title or f"Paper {doi}",
        abstract=abstract,
        doi=doi,
        journal=kwargs.pop("journal", "Phys. Rev. Lett."),
        date=kwargs.pop("date", "2021-05-04"),
        **kwargs,
    )


def text_response(text: str) -> LLMResponse:
    return LLMResponse(blocks=[{"type": "text", "text": text}], stop_reason="end_turn")


def tool_response(*tool_uses: dict, text: str = None) -> LLMResponse:
    blocks = []
    if text:
        blocks.append({"type": "text", "text": text})
    for i, use in enumerate(tool_uses):
        blocks.append({"type": "tool_use", "id": use.get("id", f"toolu_{i}"), "name": use["name"], "input": use.get("input", {})})
    return LLMResponse(blocks=blocks, stop_reason="tool_use")


class FakeSearchClient:
    """Returns canned results per query string and records every call."""

    def __init__(self, results: Dict[str, List[Article]] = None, errors: Dict[str, Exception] = None):
        self.results = results or {}
        self.errors = errors or {}
        self.calls: List[dict] = []

    async def search(self, params, access_token, limit=10, sort="relevance"):
        if isinstance(params, str):
            params = SearchQuery(query=params)
        self.calls.append({"params": params, "token": access_token, "limit": limit, "sort": sort})
        if params.query in self.errors:
            raise self.errors[params.query]
        articles = self.results.get(params.query, [])
        return SearchResponse(total=len(articles) * 10, results=list(articles)[:limit])

    async def close(self):
        pass


@pytest.fixture
def fake_search():
    return FakeSearchClient(
        results={
            "quantum entanglement": [make_article("10.1103/a"), make_article("10.1103/b")],
        },
        errors={"broken": TesseractError("API error: 500 - boom", status=500)},
    )
