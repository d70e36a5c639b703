"""
Data models for the pipeline.

Article records and agent steps are plain dataclasses. Search plans come back
from the LLM as loose JSON, so they are validated with pydantic before any
search runs.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

MATH_TAG_RE = re.compile(r"<math[^>]*>[\s\S]*?</math>", re.IGNORECASE)
TAG_RE = re.compile(r"<[^>]+>")

MIN_WEIGHT = 0.5
MAX_WEIGHT = 2.5

Intent = Literal["explainer", "survey", "specific", "author", "comparative"]


def strip_markup(text: str) -> str:
    """Remove MathML blocks and any remaining tags."""
    return TAG_RE.sub("", MATH_TAG_RE.sub("", text or "")).strip()


@dataclass
class Article:
    """One literature item as returned by the search provider."""
    title: str
    authors: List[str] = field(default_factory=list)
    abstract: Optional[str] = None
    journal: Optional[str] = None
    date: Optional[str] = None
    volume: Optional[str] = None
    issue: Optional[str] = None
    pages: Optional[str] = None
    doi: Optional[str] = None  # global dedup key
    url: Optional[str] = None
    citations: Optional[int] = None

    # Filled in by the aggregator
    sources: List[str] = field(default_factory=list)
    overlap_count: int = 0
    relevance_score: Optional[float] = None

    # Filled in by the summarizer
    summary: Optional[str] = None
    ai_summary: bool = False

    def clean_title(self) -> str:
        return strip_markup(self.title) or "Untitled"

    @property
    def year(self) -> Optional[int]:
        if not self.date:
            return None
        try:
            return datetime.fromisoformat(str(self.date).replace("Z", "+00:00")).year
        except ValueError:
            match = re.search(r"\b(1[89]|20)\d{2}\b", str(self.date))
            return int(match.group(0)) if match else None

    def citation_line(self) -> str:
        """`(Journal, 2021)` style tag used in prompts."""
        return f"({self.journal or 'Unknown'}, {self.year or 'n.d.'})"

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "title": self.title,
            "authors": self.authors,
            "abstract": self.abstract,
            "journal": self.journal,
            "date": self.date,
            "volume": self.volume,
            "issue": self.issue,
            "pages": self.pages,
            "doi": self.doi,
            "url": self.url,
            "citations": self.citations,
        }
        if self.overlap_count:
            data["sources"] = list(self.sources)
            data["overlapCount"] = self.overlap_count
        if self.relevance_score is not None:
            data["relevanceScore"] = round(self.relevance_score, 3)
        if self.summary is not None:
            data["summary"] = self.summary
            data["aiSummary"] = self.ai_summary
        return data


@dataclass
class SearchResponse:
    """Uniform provider response."""
    total: int
    results: List[Article] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"total": self.total, "results": [a.to_dict() for a in self.results]}


# --- Search plans (validated LLM output) ---

class DateRange(BaseModel):
    start: Optional[str] = None
    end: Optional[str] = None


class SubQuery(BaseModel):
    """One weighted, purpose-labelled search."""
    model_config = {"frozen": True, "populate_by_name": True}

    query: str = Field(min_length=1)
    purpose: str = "search"
    weight: float = 1.0
    fields: Optional[List[str]] = None
    date_range: Optional[DateRange] = Field(default=None, alias="dateRange")
    article_types: Optional[List[str]] = Field(default=None, alias="articleTypes")

    @field_validator("weight", mode="before")
    @classmethod
    def clamp_weight(cls, value):
        if value is None:
            return 1.0
        return min(max(float(value), MIN_WEIGHT), MAX_WEIGHT)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "purpose": self.purpose,
            "weight": self.weight,
            "fields": self.fields,
            "dateRange": self.date_range.model_dump() if self.date_range else None,
            "articleTypes": self.article_types,
        }


class SearchPlan(BaseModel):
    """Interpretation of the question plus the sub-queries to run."""
    model_config = {"frozen": True}

    interpretation: str
    intent: Intent = "specific"
    concepts: List[str] = Field(default_factory=list)
    searches: List[SubQuery] = Field(min_length=1, max_length=4)


# --- Agentic planner log ---

StepType = Literal["search", "analysis", "finish", "thinking", "error", "max_iterations"]


@dataclass
class AgentStep:
    """One entry in the agent's append-only step log."""
    type: StepType
    iteration: Optional[int] = None

    # search
    query: Optional[str] = None
    search_type: Optional[str] = None
    total_found: Optional[int] = None
    new_papers: Optional[int] = None
    status: Optional[str] = None
    error: Optional[str] = None

    # analysis
    coverage: Optional[str] = None
    gaps: Optional[List[str]] = None
    suggestions: Optional[List[str]] = None

    # finish / thinking / max_iterations
    reasoning: Optional[str] = None
    content: Optional[str] = None
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        keys = {
            "type": self.type,
            "iteration": self.iteration,
            "query": self.query,
            "searchType": self.search_type,
            "totalFound": self.total_found,
            "newPapers": self.new_papers,
            "status": self.status,
            "error": self.error,
            "coverage": self.coverage,
            "gaps": self.gaps,
            "suggestions": self.suggestions,
            "reasoning": self.reasoning,
            "content": self.content,
            "message": self.message,
        }
        return {k: v for k, v in keys.items() if v is not None}


@dataclass
class SubQueryResult:
    """Outcome of running one sub-query against the provider."""
    sub_query: SubQuery
    results: List[Article] = field(default_factory=list)
    total: int = 0
    status: str = "success"  # "success" or "error"
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.sub_query.query,
            "purpose": self.sub_query.purpose,
            "weight": self.sub_query.weight,
            "status": self.status,
            "totalFound": self.total,
            "returned": len(self.results),
            "error": self.error,
        }
