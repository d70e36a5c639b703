"""
LLM client for Anthropic Claude.

Uses httpx for async HTTP requests. Supports single-turn completions and
multi-turn tool use.
"""

import logging
import os
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)

CLAUDE_API_URL = "https://api.anthropic.com/v1/messages"
DEFAULT_MODEL = "claude-3-haiku-20240307"


class LLMError(RuntimeError):
    """Non-success response from the LLM provider."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class LLMAuthError(LLMError):
    """The LLM credential was rejected."""


class LLMClient:
    """Minimal Claude API wrapper."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 60.0,
    ):
        self.api_key = api_key or os.environ.get("ANTHROPIC_API_KEY")
        if not self.api_key:
            raise ValueError("ANTHROPIC_API_KEY not set")
        self.model = model or os.environ.get("ANTHROPIC_MODEL") or DEFAULT_MODEL
        self.transport = transport
        self.timeout = timeout

    async def generate(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_tokens: int = 500,
        label: str = None,
    ) -> "LLMResponse":
        """Single-turn call. Returns the response text."""
        return await self.create_message(
            messages=[{"role": "user", "content": prompt}],
            system=system,
            max_tokens=max_tokens,
            label=label,
        )

    async def create_message(
        self,
        messages: List[Dict[str, Any]],
        system: Optional[str] = None,
        tools: Optional[List[Dict[str, Any]]] = None,
        max_tokens: int = 1024,
        label: str = None,
    ) -> "LLMResponse":
        """Raw Messages API call, used directly for tool use."""
        if label:
            logger.info(f"LLM: {label}")
        else:
            last = messages[-1]["content"] if messages else ""
            preview = str(last)[:60].replace("\n", " ")
            logger.info(f"LLM call: {preview}...")

        payload: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": max_tokens,
            "messages": messages,
        }
        if system:
            payload["system"] = system
        if tools:
            payload["tools"] = tools

        async with httpx.AsyncClient(transport=self.transport, timeout=self.timeout) as client:
            r = await client.post(
                CLAUDE_API_URL,
                headers={
                    "x-api-key": self.api_key,
                    "anthropic-version": "2023-06-01",
                    "Content-Type": "application/json",
                },
                json=payload,
            )

        if r.status_code in (401, 403):
            raise LLMAuthError("LLM credential rejected", status=r.status_code)
        if r.status_code >= 400:
            logger.error(f"Claude API error: {r.status_code} {r.text[:200]}")
            raise LLMError(f"Claude API error: {r.status_code}", status=r.status_code)

        try:
            data = r.json()
        except ValueError as e:
            logger.error(f"Claude API returned a non-JSON body: {r.text[:200]}")
            raise LLMError("Malformed LLM response", status=r.status_code) from e
        blocks = data.get("content") if isinstance(data, dict) else None
        if not isinstance(blocks, list) or not all(isinstance(b, dict) for b in blocks):
            logger.error(f"Claude API returned an unexpected shape: {r.text[:200]}")
            raise LLMError("Malformed LLM response", status=r.status_code)

        response = LLMResponse(blocks=blocks, stop_reason=data.get("stop_reason"))
        logger.info(f"LLM response: {len(response.content)} chars, stop_reason={response.stop_reason}")
        return response


class LLMResponse:
    """Response from LLM."""

    def __init__(self, blocks: List[Dict[str, Any]], stop_reason: Optional[str] = None):
        self.blocks = blocks
        self.stop_reason = stop_reason

    @property
    def content(self) -> str:
        """Text of the first text block, stripped."""
        for block in self.blocks:
            if block.get("type") == "text":
                return (block.get("text") or "").strip()
        return ""

    @property
    def tool_uses(self) -> List[Dict[str, Any]]:
        return [b for b in self.blocks if b.get("type") == "tool_use"]


def build_llm_client() -> Optional[LLMClient]:
    """LLMClient from the environment, or None when no key is configured."""
    if not os.environ.get("ANTHROPIC_API_KEY"):
        logger.warning("ANTHROPIC_API_KEY not set, AI steps will use fallbacks")
        return None
    return LLMClient()
