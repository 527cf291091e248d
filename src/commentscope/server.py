"""
FastAPI server for commentscope.

Exposes vectorize, search and decision endpoints over one engine per store
path, with a per-collection lock around writes.
"""

import asyncio
import threading
from typing import Any

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .config import resolve_db_path
from .models import SourceContext, TextUnit
from .search import SearchOptions, StrategyConfig
from .service import CommentSearchEngine

app = FastAPI(title="commentscope", description="Adaptive comment embedding and search")

_engines: dict[str, CommentSearchEngine] = {}
_engines_lock = threading.Lock()
_collection_locks: dict[str, asyncio.Lock] = {}


def _get_engine(db_path: str | None) -> CommentSearchEngine:
    """Return the shared engine for a store path, creating one if needed."""
    resolved = resolve_db_path(db_path)
    with _engines_lock:
        engine = _engines.get(resolved)
        if engine is None:
            engine = CommentSearchEngine.from_config(db_path=resolved)
            _engines[resolved] = engine
        return engine


def _get_collection_lock(collection_id: str) -> asyncio.Lock:
    """Return a per-collection asyncio lock, creating one if needed."""
    if collection_id not in _collection_locks:
        _collection_locks[collection_id] = asyncio.Lock()
    return _collection_locks[collection_id]


def reset_engines() -> None:
    """Close and forget every cached engine."""
    with _engines_lock:
        for engine in _engines.values():
            engine.close()
        _engines.clear()
    _collection_locks.clear()


class ContextModel(BaseModel):
    """Source context flags for a comment."""

    is_question: bool = False
    is_business_opportunity: bool = False
    likes: int = 0
    replies: int = 0
    is_controversial: bool = False
    is_verified: bool = False
    sentiment: float | None = Field(default=None, ge=-1.0, le=1.0)

    def to_context(self) -> SourceContext:
        return SourceContext.from_dict(self.model_dump())


class VectorizeRequest(BaseModel):
    """Request model for embedding one comment into a collection."""

    collection_id: str
    id: str
    text: str
    author: str | None = None
    context: ContextModel = Field(default_factory=ContextModel)
    db_path: str | None = None


class StrategyConfigModel(BaseModel):
    enabled: bool = True
    threshold: float | None = None
    limit: int | None = None


class SearchRequest(BaseModel):
    """Request model for search queries."""

    collection_id: str
    query: str
    limit: int = 20
    strategies: list[str] | None = None
    strategy_configs: dict[str, StrategyConfigModel] = Field(default_factory=dict)
    timeout: float | None = None
    db_path: str | None = None


class DecideRequest(BaseModel):
    """Request model for a dry-run embedding decision."""

    text: str
    context: ContextModel = Field(default_factory=ContextModel)
    db_path: str | None = None


def _vectorize_payload(result: Any) -> dict[str, Any]:
    return {
        "vectorized": result.vectorized,
        "reason": result.reason,
        "source": result.source,
        "cached": result.cached,
        "error": result.error,
        "dimension": len(result.vector) if result.vector is not None else None,
        "decision": result.decision.to_dict() if result.decision is not None else None,
    }


@app.post("/api/vectorize")
async def vectorize_comment(request: VectorizeRequest):
    """Gate, embed and store one comment."""
    try:
        engine = await asyncio.to_thread(_get_engine, request.db_path)
        unit = TextUnit(
            id=request.id,
            text=request.text,
            context=request.context.to_context(),
            author=request.author,
        )
        async with _get_collection_lock(request.collection_id):
            result = await asyncio.to_thread(engine.vectorize, unit, request.collection_id)
        return {"collection_id": request.collection_id, "id": request.id, **_vectorize_payload(result)}
    except ValueError as exc:
        return JSONResponse({"error": str(exc)}, status_code=400)
    except Exception as exc:
        return JSONResponse({"error": str(exc)}, status_code=500)


@app.post("/api/search")
async def search_comments(request: SearchRequest):
    """Search a collection and return ranked results."""
    try:
        engine = await asyncio.to_thread(_get_engine, request.db_path)
        options = SearchOptions(
            strategies=tuple(request.strategies) if request.strategies else None,
            configs={
                name: StrategyConfig(**config.model_dump())
                for name, config in request.strategy_configs.items()
            },
            timeout=request.timeout,
            max_results=request.limit,
        )
        response = await asyncio.to_thread(
            engine.search, request.query, request.collection_id, options
        )
        return {"collection_id": request.collection_id, **response.to_dict()}
    except ValueError as exc:
        return JSONResponse({"error": str(exc)}, status_code=400)
    except Exception as exc:
        return JSONResponse({"error": str(exc)}, status_code=500)


@app.post("/api/decide")
async def decide_embedding(request: DecideRequest):
    """Return the embedding decision for a text without embedding it."""
    try:
        engine = await asyncio.to_thread(_get_engine, request.db_path)
        decision = await asyncio.to_thread(
            engine.decide, request.text, request.context.to_context()
        )
        return decision.to_dict()
    except ValueError as exc:
        return JSONResponse({"error": str(exc)}, status_code=400)
    except Exception as exc:
        return JSONResponse({"error": str(exc)}, status_code=500)


@app.get("/api/collections/{collection_id}/stats")
async def collection_stats(collection_id: str, db_path: str | None = None):
    """Report size, cache, quota and learning state for a collection."""
    try:
        engine = await asyncio.to_thread(_get_engine, db_path)
        return await asyncio.to_thread(engine.collection_stats, collection_id)
    except ValueError as exc:
        return JSONResponse({"error": str(exc)}, status_code=400)
    except Exception as exc:
        return JSONResponse({"error": str(exc)}, status_code=500)


def run_server(host: str = "127.0.0.1", port: int = 8000):
    """Run the FastAPI server."""
    import uvicorn

    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    run_server()
