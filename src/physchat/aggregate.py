"""
Result Aggregation: deduplicate articles and rank them.

Deterministic path: merge every sub-query's result list by DOI. Each hit
contributes `weight * (1 - rank * decay)`; articles found by several
sub-queries also get an overlap bonus. Weight contributions are summed with
math.fsum and score ties are broken on the DOI, so the outcome does not
depend on the order sub-query results arrive in.

Agentic path: no cross-search weighting, articles keep first-seen order.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from physchat.models import Article, SubQueryResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AggregationConfig:
    rank_decay: float = 0.02
    overlap_bonus: float = 1.5
    max_results: int = 20


@dataclass
class AggregateEntry:
    """All sightings of one document across sub-queries."""
    article: Article
    sources: List[str] = field(default_factory=list)
    contributions: List[float] = field(default_factory=list)

    @property
    def overlap_count(self) -> int:
        return len(self.sources)

    @property
    def weight(self) -> float:
        return math.fsum(self.contributions)

    def score(self, config: AggregationConfig) -> float:
        return self.weight + (self.overlap_count - 1) * config.overlap_bonus


@dataclass
class AggregationResult:
    ranked: List[Article]
    entries: Dict[str, AggregateEntry]
    stats: Dict[str, int]


def compute_stats(entries: Iterable[AggregateEntry]) -> Dict[str, int]:
    overlaps = [e.overlap_count for e in entries]
    return {
        "totalUnique": len(overlaps),
        "multiMatch": sum(1 for o in overlaps if o > 1),
        "strongMatch": sum(1 for o in overlaps if o >= 3),
        "maxOverlap": max(overlaps, default=0),
    }


def aggregate_weighted(
    sub_results: List[SubQueryResult],
    config: AggregationConfig = AggregationConfig(),
) -> AggregationResult:
    """Merge sub-query results into a weighted, overlap-boosted ranking."""
    entries: Dict[str, AggregateEntry] = {}
    skipped = 0

    for sub_result in sub_results:
        if sub_result.status != "success":
            continue
        sub_query = sub_result.sub_query
        for rank, article in enumerate(sub_result.results):
            if not article.doi:
                skipped += 1
                continue
            rank_weight = sub_query.weight * (1 - rank * config.rank_decay)

            entry = entries.get(article.doi)
            if entry is None:
                entry = AggregateEntry(article=article)
                entries[article.doi] = entry
            entry.sources.append(sub_query.purpose)
            entry.contributions.append(rank_weight)

    ordered = sorted(entries.items(), key=lambda kv: (-kv[1].score(config), kv[0]))
    ranked = []
    for doi, entry in ordered[:config.max_results]:
        article = entry.article
        article.sources = sorted(entry.sources)
        article.overlap_count = entry.overlap_count
        article.relevance_score = entry.score(config)
        ranked.append(article)

    stats = compute_stats(entries.values())
    logger.info(
        f"Aggregated {len(sub_results)} sub-queries into {len(entries)} unique articles "
        f"(skipped {skipped} without DOI, {stats['multiMatch']} multi-match)"
    )
    return AggregationResult(ranked=ranked, entries=entries, stats=stats)


def aggregate_agentic(
    papers: List[Article],
    sources_by_doi: Optional[Dict[str, List[str]]] = None,
    config: AggregationConfig = AggregationConfig(),
) -> AggregationResult:
    """Keep the agent's first-seen order; only cap and report overlap stats."""
    sources_by_doi = sources_by_doi or {}
    entries: Dict[str, AggregateEntry] = {}

    for article in papers:
        if not article.doi or article.doi in entries:
            continue
        sources = list(sources_by_doi.get(article.doi) or ["agent"])
        entries[article.doi] = AggregateEntry(article=article, sources=sources, contributions=[0.0] * len(sources))

    ranked = []
    for entry in list(entries.values())[:config.max_results]:
        entry.article.sources = list(entry.sources)
        entry.article.overlap_count = entry.overlap_count
        ranked.append(entry.article)

    stats = compute_stats(entries.values())
    logger.info(f"Agent collected {len(entries)} unique articles, returning {len(ranked)}")
    return AggregationResult(ranked=ranked, entries=entries, stats=stats)
