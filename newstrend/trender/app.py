"""Trender service FastAPI application."""

from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from newstrend.core.db import AsyncSessionLocal, create_all, dispose
from newstrend.core.logging import get_logger, setup_logging
from newstrend.core.repositories import KeywordRepository
from newstrend.core.settings import settings
from newstrend.trender.cache import RankingCache
from newstrend.trender.ranking import MAX_RANKING_SIZE, RankingEngine
from newstrend.trender.worker import TrendWorker, build_worker

setup_logging("trender")
logger = get_logger(__name__)


class TrendEntryResponse(BaseModel):
    """One ranked keyword."""
    id: int
    display_text: str
    type: Optional[str] = None
    rank: int
    status: str
    rank_change: int
    score_24h: float
    score_recent: float
    score_prev: float
    diff_score: float
    final_score: float


class StatsResponse(BaseModel):
    keywords: int
    articles: int


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.db_create_tables:
        await create_all()

    repository = KeywordRepository(AsyncSessionLocal)
    cache = RankingCache(settings.redis_url)
    app.state.repository = repository
    app.state.cache = cache
    app.state.engine = RankingEngine(
        repository,
        cache,
        cache_ttl=settings.ranking_cache_ttl_seconds,
        window_hours=settings.trend_window_hours,
        recent_buckets=settings.recent_buckets,
        bucket_minutes=settings.bucket_minutes,
    )

    worker: Optional[TrendWorker] = None
    if settings.worker_enabled:
        worker = build_worker()
        worker.start()
    app.state.worker = worker

    logger.info(
        "Starting trender service",
        extra={"service": "trender", "version": "0.1.0", "worker_enabled": worker is not None}
    )
    try:
        yield
    finally:
        logger.info("Shutting down trender service")
        if worker is not None:
            await worker.stop()
        await cache.close()
        await dispose()


app = FastAPI(
    title="newstrend Trender",
    version="0.1.0",
    description="Trending news keyword API",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_engine(request: Request) -> RankingEngine:
    return request.app.state.engine


def get_repository(request: Request) -> KeywordRepository:
    return request.app.state.repository


@app.get("/healthz")
async def health_check():
    """Health check endpoint."""
    return {"ok": True, "service": "trender"}


@app.get("/trend/top", response_model=List[TrendEntryResponse])
async def top_trends(
    limit: int = Query(default=10, ge=1, le=MAX_RANKING_SIZE),
    engine: RankingEngine = Depends(get_engine),
):
    """Top trending issues and keywords over the last 24 hours."""
    try:
        return await engine.get_top_trends(limit)
    except Exception as e:
        logger.error(f"Ranking failed: {e}", extra={"limit": limit}, exc_info=True)
        raise HTTPException(status_code=500, detail=f"Ranking failed: {str(e)}")


@app.get("/trend/keywords/{keyword_id}/timeseries")
async def keyword_timeseries(
    keyword_id: int,
    limit: int = Query(default=12, ge=1, le=288),
    repository: KeywordRepository = Depends(get_repository),
) -> List[Dict[str, Any]]:
    """Most recent timeseries buckets of one keyword."""
    try:
        buckets = await repository.get_keyword_timeseries(keyword_id, limit)
    except Exception as e:
        logger.error(f"Timeseries lookup failed: {e}", extra={"keyword_id": keyword_id})
        raise HTTPException(status_code=500, detail=f"Timeseries lookup failed: {str(e)}")
    return [asdict(b) for b in buckets]


@app.get("/trend/keywords/{keyword_id}/articles")
async def related_articles(
    keyword_id: int,
    repository: KeywordRepository = Depends(get_repository),
) -> List[Dict[str, Any]]:
    """Recent articles linked to a keyword."""
    try:
        articles = await repository.get_related_articles(keyword_id)
    except Exception as e:
        logger.error(f"Related articles lookup failed: {e}", extra={"keyword_id": keyword_id})
        raise HTTPException(status_code=500, detail=f"Related articles lookup failed: {str(e)}")
    return [asdict(a) for a in articles]


@app.get("/trend/keywords/{keyword_id}/related")
async def related_keywords(
    keyword_id: int,
    repository: KeywordRepository = Depends(get_repository),
) -> List[Dict[str, Any]]:
    """Keywords that co-occur with a keyword in recent articles."""
    try:
        keywords = await repository.get_related_keywords(keyword_id)
    except Exception as e:
        logger.error(f"Related keywords lookup failed: {e}", extra={"keyword_id": keyword_id})
        raise HTTPException(status_code=500, detail=f"Related keywords lookup failed: {str(e)}")
    return [asdict(k) for k in keywords]


@app.get("/trend/stats", response_model=StatsResponse)
async def trend_stats(repository: KeywordRepository = Depends(get_repository)):
    """Total keyword and article counts."""
    try:
        return StatsResponse(
            keywords=await repository.count_keywords(),
            articles=await repository.count_articles(),
        )
    except Exception as e:
        logger.error(f"Stats lookup failed: {e}")
        raise HTTPException(status_code=500, detail=f"Stats lookup failed: {str(e)}")


if __name__ == "__main__":
    logger.info("Starting trender service via uvicorn")
    uvicorn.run(
        "newstrend.trender.app:app",
        host=settings.service_host,
        port=settings.service_port or 8002,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
