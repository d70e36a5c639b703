"""
Query sanitization.

Raw user text is cleaned before it reaches any LLM prompt or search call:
code spans, markup, prompt-injection phrases and URLs are removed, the text
is length-bounded and whitespace is collapsed.
"""

import logging
import re
from dataclasses import dataclass
from typing import Pattern, Tuple

logger = logging.getLogger(__name__)

CODE_FENCE_RE = re.compile(r"```[\s\S]*?```")
INLINE_CODE_RE = re.compile(r"`[^`]*`")
TAG_RE = re.compile(r"<[^>]*>")
URL_RE = re.compile(r"https?://[^\s]+", re.IGNORECASE)
WHITESPACE_RE = re.compile(r"\s+")

DEFAULT_INJECTION_PATTERNS: Tuple[Pattern, ...] = (
    re.compile(r"ignore\s+(previous|above|all)\s+(instructions?|prompts?|rules?)", re.IGNORECASE),
    re.compile(r"disregard\s+(previous|above|all)", re.IGNORECASE),
    re.compile(r"forget\s+(previous|above|everything)", re.IGNORECASE),
    re.compile(r"system\s*:", re.IGNORECASE),
    re.compile(r"assistant\s*:", re.IGNORECASE),
    re.compile(r"user\s*:", re.IGNORECASE),
    re.compile(r"\[INST\]", re.IGNORECASE),
    re.compile(r"\[/INST\]", re.IGNORECASE),
    re.compile(r"<<SYS>>", re.IGNORECASE),
    re.compile(r"</SYS>>", re.IGNORECASE),
    re.compile(r"\{\{.*?\}\}"),  # template interpolation
    re.compile(r"\$\{.*?\}"),  # template literals
    re.compile(r"<\|.*?\|>"),  # special tokens
    re.compile(r"\[\[.*?\]\]"),  # wiki-style
)


class InvalidQueryError(ValueError):
    """The query is missing or sanitizes down to nothing."""


@dataclass(frozen=True)
class SanitizerConfig:
    injection_patterns: Tuple[Pattern, ...] = DEFAULT_INJECTION_PATTERNS
    max_length: int = 500
    suspicious_ratio: float = 0.2


class QuerySanitizer:
    """Strips adversarial content from user queries."""

    def __init__(self, config: SanitizerConfig = SanitizerConfig()):
        self.config = config

    def sanitize(self, text) -> str:
        if not text or not isinstance(text, str):
            return ""

        cleaned = CODE_FENCE_RE.sub("", text)
        cleaned = INLINE_CODE_RE.sub("", cleaned)
        cleaned = TAG_RE.sub("", cleaned)

        for pattern in self.config.injection_patterns:
            cleaned = pattern.sub("", cleaned)

        cleaned = URL_RE.sub("", cleaned)
        cleaned = cleaned[: self.config.max_length]
        return WHITESPACE_RE.sub(" ", cleaned).strip()

    def is_suspicious(self, original: str, sanitized: str) -> bool:
        """True when sanitization removed more than the configured share of the input."""
        if not original or not sanitized:
            return True
        return len(original) - len(sanitized) > len(original) * self.config.suspicious_ratio

    def clean_or_raise(self, raw_query) -> str:
        """
        Sanitize a caller-supplied query.

        Raises InvalidQueryError for a missing query or one that sanitizes to
        an empty string. Suspicious queries are only logged.
        """
        if not raw_query or not isinstance(raw_query, str):
            raise InvalidQueryError("Query is required")

        query = self.sanitize(raw_query)
        if not query:
            raise InvalidQueryError("Invalid query")

        if self.is_suspicious(raw_query, query):
            logger.warning(
                f"Suspicious query detected: original={raw_query[:100]!r} sanitized={query[:100]!r}"
            )
        return query


_default = QuerySanitizer()


def sanitize_query(text) -> str:
    return _default.sanitize(text)


def is_suspicious_query(original: str, sanitized: str) -> bool:
    return _default.is_suspicious(original, sanitized)
