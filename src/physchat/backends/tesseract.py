"""
Tesseract search API client.

The APS literature search is exposed as a JSON-RPC `tools/call` endpoint.
This client turns a query string or structured query into that request and
maps the response onto Article records.
"""

import json
import logging
import os
import time
from dataclasses import dataclass
from typing import List, Optional, Union

import httpx

from physchat.models import Article, DateRange, SearchResponse

logger = logging.getLogger(__name__)

SEARCH_TOOL = "search-api___mcpSearch"
MAX_PER_PAGE = 100  # provider maximum
SORT_MODES = ("relevance", "recent")


class TesseractError(RuntimeError):
    """Non-success response from the search provider."""

    def __init__(self, message: str, status: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status = status
        self.body = body


class TesseractAuthError(TesseractError):
    """The bearer credential was rejected (401/403)."""


@dataclass(frozen=True)
class SearchQuery:
    """A query with optional field, date-range and article-type filters."""
    query: str
    fields: Optional[List[str]] = None
    date_range: Optional[DateRange] = None
    article_types: Optional[List[str]] = None


class TesseractClient:
    """Client for the Tesseract search API."""

    def __init__(self, api_url: Optional[str] = None, client: Optional[httpx.AsyncClient] = None):
        self.api_url = api_url or os.environ.get("TESSERACT_API_URL")
        self.client = client or httpx.AsyncClient(timeout=30.0)

    def _build_arguments(self, params: SearchQuery, limit: int, sort: str) -> dict:
        arguments = {
            "q": params.query,
            "per_page": max(1, min(limit, MAX_PER_PAGE)),
            "sort": sort if sort in SORT_MODES else "relevance",
        }
        if params.date_range:
            if params.date_range.start:
                arguments["start_date"] = params.date_range.start
            if params.date_range.end:
                arguments["end_date"] = params.date_range.end
        if params.fields:
            arguments["fields"] = ",".join(params.fields)
        if params.article_types:
            arguments["article_types"] = ",".join(params.article_types)
        return arguments

    async def search(
        self,
        params: Union[str, SearchQuery],
        access_token: str,
        limit: int = 10,
        sort: str = "relevance",
    ) -> SearchResponse:
        """Run one search. Performs no retries."""
        if isinstance(params, str):
            params = SearchQuery(query=params)
        if not self.api_url:
            raise TesseractError("TESSERACT_API_URL not set")

        arguments = self._build_arguments(params, limit, sort)
        logger.info(f"Tesseract search: {json.dumps(arguments)}")

        request = {
            "jsonrpc": "2.0",
            "id": int(time.time() * 1000),
            "method": "tools/call",
            "params": {"name": SEARCH_TOOL, "arguments": arguments},
        }
        resp = await self.client.post(
            self.api_url,
            json=request,
            headers={"Authorization": f"Bearer {access_token}"},
        )

        if resp.status_code in (401, 403):
            logger.error(f"Tesseract API rejected credential: {resp.status_code}")
            raise TesseractAuthError("Unauthorized", status=resp.status_code, body=resp.text[:200])
        if resp.status_code >= 400:
            body = resp.text[:200]
            logger.error(f"Tesseract API error: {resp.status_code} {body}")
            raise TesseractError(f"API error: {resp.status_code} - {body}", status=resp.status_code, body=body)

        try:
            data = resp.json()
        except ValueError as e:
            raise TesseractError(f"Malformed search response: {e}", status=resp.status_code) from e
        if not isinstance(data, dict):
            raise TesseractError("Malformed search response: expected a JSON object", status=resp.status_code)

        error = data.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise TesseractError(message or "API error", status=resp.status_code)

        search_data = self._unwrap_result(data.get("result"), resp.status_code)
        if not search_data:
            return SearchResponse(total=0, results=[])

        items = search_data.get("results") or []
        if not isinstance(items, list) or not all(isinstance(item, dict) for item in items):
            raise TesseractError("Malformed search response: results is not a list of objects", status=resp.status_code)

        results = [self._parse_article(item) for item in items]
        return SearchResponse(total=search_data.get("total") or 0, results=results)

    def _unwrap_result(self, result, status: int) -> Optional[dict]:
        """The payload is either JSON text inside a content list or a plain object."""
        if result is None:
            return None
        if not isinstance(result, dict):
            raise TesseractError("Malformed search response: result is not an object", status=status)
        if not isinstance(result.get("content"), list):
            return result

        for item in result["content"]:
            if not isinstance(item, dict):
                raise TesseractError("Malformed search response: content item is not an object", status=status)
            if item.get("type") == "text" and item.get("text"):
                try:
                    payload = json.loads(item["text"])
                except ValueError as e:
                    raise TesseractError(f"Malformed search response: {e}", status=status) from e
                if not isinstance(payload, dict):
                    raise TesseractError("Malformed search response: payload is not an object", status=status)
                return payload
        return None

    def _parse_article(self, item: dict) -> Article:
        """Convert API response item to Article."""
        doi = item.get("doi") or None
        url = item.get("url") or (f"https://doi.org/{doi}" if doi else None)
        return Article(
            title=item.get("title") or "",
            authors=list(item.get("authors") or []),
            abstract=item.get("abstract"),
            journal=item.get("journal"),
            date=item.get("date"),
            volume=item.get("volume"),
            issue=item.get("issue"),
            pages=item.get("pages"),
            doi=doi,
            url=url,
            citations=item.get("citations"),
        )

    async def close(self):
        await self.client.aclose()
