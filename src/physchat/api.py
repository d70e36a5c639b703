"""
HTTP API for the browser extension.

    POST /search      plain search passthrough
    POST /ai-search   planned search with ranking and synthesis
    POST /summarize   one-sentence article summary
    GET  /health

Run with: uvicorn physchat.api:app
"""

import logging
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Any, Literal, Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Header
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

load_dotenv()

from physchat.agent import LiteratureSearchAgent
from physchat.backends.llm import build_llm_client
from physchat.backends.tesseract import TesseractAuthError, TesseractClient
from physchat.sanitize import InvalidQueryError

logger = logging.getLogger(__name__)


class SearchRequest(BaseModel):
    query: Optional[Any] = None
    limit: int = 10
    sort: Literal["relevance", "recent"] = "relevance"


class AISearchRequest(SearchRequest):
    limit: int = 15
    mode: Literal["agentic", "deterministic"] = "agentic"
    summarize: bool = False


class SummarizeRequest(BaseModel):
    title: Optional[str] = None
    abstract: Optional[str] = None
    searchQuery: Optional[str] = None


@lru_cache
def get_agent() -> LiteratureSearchAgent:
    return LiteratureSearchAgent(llm_client=build_llm_client(), search_client=TesseractClient())


def error_response(status: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status, content={"error": message})


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization or not authorization.startswith("Bearer "):
        return None
    return authorization[len("Bearer "):]


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Shutdown: release the search client of the agent, if one was built
    if get_agent.cache_info().currsize:
        await get_agent().close()
        get_agent.cache_clear()


app = FastAPI(
    title="PhysChat Search",
    description="Planned, ranked and grounded literature search over APS journals",
    version="0.1.0",
    lifespan=lifespan,
)

# The extension calls from arbitrary page origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=86400,
)


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.post("/search")
async def search(
    request: SearchRequest,
    authorization: Optional[str] = Header(default=None),
    agent: LiteratureSearchAgent = Depends(get_agent),
):
    token = bearer_token(authorization)
    if token is None:
        return error_response(401, "Unauthorized")
    try:
        return await agent.search(request.query, token, limit=request.limit, sort=request.sort)
    except InvalidQueryError as e:
        return error_response(400, str(e))
    except TesseractAuthError:
        return error_response(401, "Session expired. Please sign in again.")
    except Exception as e:
        logger.error(f"Search error: {e}")
        return error_response(500, "Search failed. Please try again.")


@app.post("/ai-search")
async def ai_search(
    request: AISearchRequest,
    authorization: Optional[str] = Header(default=None),
    agent: LiteratureSearchAgent = Depends(get_agent),
):
    token = bearer_token(authorization)
    if token is None:
        return error_response(401, "Unauthorized")
    try:
        return await agent.ai_search(
            request.query,
            token,
            limit=request.limit,
            sort=request.sort,
            mode=request.mode,
            summarize=request.summarize,
        )
    except InvalidQueryError as e:
        return error_response(400, str(e))
    except TesseractAuthError:
        return error_response(401, "Session expired. Please sign in again.")
    except Exception as e:
        logger.error(f"AI search error: {e}")
        return error_response(500, "Search failed. Please try again.")


@app.post("/summarize")
async def summarize(request: SummarizeRequest, agent: LiteratureSearchAgent = Depends(get_agent)):
    try:
        return await agent.summarize(request.title, request.abstract, request.searchQuery)
    except InvalidQueryError as e:
        return error_response(400, str(e))
