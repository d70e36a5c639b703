"""Tests for grounded synthesis."""
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from conftest import make_article, text_response
from physchat.backends.llm import LLMClient, LLMError
from physchat.synthesis import build_system_prompt, build_user_prompt, generate_synthesis


def llm_returning(text):
    client = MagicMock()
    client.generate = AsyncMock(return_value=text_response(text))
    return client


@pytest.fixture
def papers():
    return [
        make_article("10/1", title="Flux pinning in <i>YBCO</i> films", abstract="We measure vortex pinning. " * 40),
        make_article("10/2", title="Gap symmetry", abstract=None, journal=None, date=None),
    ] + [make_article(f"10/{i}", abstract="Extra.") for i in range(3, 9)]


def test_system_prompt_forbids_outside_knowledge():
    prompt = build_system_prompt("explainer")
    assert "ONLY use information explicitly stated in the abstracts" in prompt
    assert "NEVER add information from your training data" in prompt
    assert "Based on these papers," in prompt
    assert "[1], [2]" in prompt
    assert "2-3 sentences" in prompt
    assert "Explain the concept" in prompt


def test_unknown_intent_uses_specific_guidance():
    assert "Describe ONLY what these specific papers found." in build_system_prompt("poetry")


def test_user_prompt_numbers_sources(papers):
    prompt = build_user_prompt("What pins vortices?", papers[:2])

    assert prompt.startswith('Question: "What pins vortices?"')
    assert '[1] "Flux pinning in YBCO films" (Phys. Rev. Lett., 2021)' in prompt
    assert '[2] "Gap symmetry" (Unknown, n.d.)\nAbstract: No abstract available' in prompt
    first_abstract = prompt.split("Abstract: ")[1].split("\n")[0]
    assert len(first_abstract) == 603
    assert first_abstract.endswith("...")


@pytest.mark.asyncio
async def test_uses_at_most_five_sources(papers):
    client = llm_returning("Vortices are pinned by defects [1].")
    answer = await generate_synthesis("What pins vortices?", "explainer", papers, client)

    assert answer == "Vortices are pinned by defects [1]."
    prompt = client.generate.await_args.kwargs["prompt"]
    assert "[5]" in prompt
    assert "[6]" not in prompt


@pytest.mark.asyncio
async def test_answer_is_grounded_in_supplied_abstracts():
    abstracts = [
        "We report thermal transport in twisted bilayers.",
        "Phonon lifetimes are measured with Raman spectroscopy.",
    ]
    papers = [make_article(f"10/{i}", abstract=a) for i, a in enumerate(abstracts)]

    async def echo_sources(prompt, **kwargs):
        # a model that only restates what it was given
        return text_response("Based on these papers, " + " ".join(
            line[len("Abstract: "):] for line in prompt.splitlines() if line.startswith("Abstract: ")
        ))

    client = MagicMock()
    client.generate = AsyncMock(side_effect=echo_sources)
    answer = await generate_synthesis("How does heat move in bilayers?", "specific", papers, client)

    assert "superconductivity" not in answer.lower()
    assert "superconductivity" not in client.generate.await_args.kwargs["prompt"].lower()
    assert "Raman" in answer


@pytest.mark.asyncio
@pytest.mark.parametrize("client", [None, "empty", "error", "transport"])
async def test_returns_none_when_unavailable(client, papers):
    if client == "empty":
        client = llm_returning("   ")
    elif client == "error":
        client = MagicMock()
        client.generate = AsyncMock(side_effect=LLMError("overloaded", status=529))
    elif client == "transport":
        client = MagicMock()
        client.generate = AsyncMock(side_effect=httpx.ReadTimeout("timed out"))

    assert await generate_synthesis("q", "specific", papers, client) is None


@pytest.mark.asyncio
async def test_no_results_skips_llm():
    client = llm_returning("anything")
    assert await generate_synthesis("q", "specific", [], client) is None
    client.generate.assert_not_awaited()


@pytest.mark.asyncio
async def test_unparseable_llm_body_returns_none(papers):
    transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>bad gateway</html>"))
    client = LLMClient(api_key="k", transport=transport)

    assert await generate_synthesis("What pins vortices?", "explainer", papers, client) is None


@pytest.mark.asyncio
async def test_parse_error_from_client_returns_none(papers):
    client = MagicMock()
    client.generate = AsyncMock(side_effect=ValueError("Expecting value"))
    assert await generate_synthesis("q", "specific", papers, client) is None
