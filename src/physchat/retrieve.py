"""
Retrieval stage: run every sub-query of a search plan.

Sub-queries are independent, so they run concurrently (bounded by a
semaphore). A failing sub-query is recorded and skipped; a rejected
credential aborts the whole stage.
"""

import asyncio
import logging
from typing import List

import httpx

from physchat.backends.tesseract import SearchQuery, TesseractAuthError, TesseractClient, TesseractError
from physchat.models import SearchPlan, SubQuery, SubQueryResult

logger = logging.getLogger(__name__)


def to_search_query(sub_query: SubQuery) -> SearchQuery:
    return SearchQuery(
        query=sub_query.query,
        fields=sub_query.fields,
        date_range=sub_query.date_range,
        article_types=sub_query.article_types,
    )


async def retrieve_for_sub_query(
    sub_query: SubQuery,
    client: TesseractClient,
    access_token: str,
    limit: int = 10,
) -> SubQueryResult:
    """Run one sub-query. Provider errors become an error result."""
    try:
        response = await client.search(to_search_query(sub_query), access_token, limit=limit)
    except TesseractAuthError:
        raise
    except (TesseractError, httpx.HTTPError) as e:
        logger.warning(f"Search failed for {sub_query.query!r}: {e}")
        return SubQueryResult(sub_query=sub_query, status="error", error=str(e))

    logger.info(f"Search for {sub_query.query!r} ({sub_query.purpose}): {len(response.results)} of {response.total}")
    return SubQueryResult(sub_query=sub_query, results=response.results, total=response.total)


async def run_plan_searches(
    plan: SearchPlan,
    client: TesseractClient,
    access_token: str,
    limit_per_query: int = 10,
    max_parallel: int = 4,
) -> List[SubQueryResult]:
    """Run all sub-queries; results come back in plan order."""
    semaphore = asyncio.Semaphore(max(max_parallel, 1))

    async def run_one(sub_query: SubQuery) -> SubQueryResult:
        async with semaphore:
            return await retrieve_for_sub_query(sub_query, client, access_token, limit_per_query)

    results = await asyncio.gather(*(run_one(s) for s in plan.searches))

    failed = sum(1 for r in results if r.status != "success")
    logger.info(f"Ran {len(results)} sub-queries ({failed} failed)")
    return list(results)
