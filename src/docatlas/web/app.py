"""FastAPI application exposing the DocAtlas coordinator over HTTP."""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Iterator, List

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from docatlas import __version__
from docatlas.config import AppConfig, load_config
from docatlas.engine.pageindex import EngineError
from docatlas.index.coordinator import Coordinator
from docatlas.index.search import SearchOutcome
from docatlas.models import CollectionShard

LOGGER = logging.getLogger(__name__)

MAX_RESULTS_LIMIT = 50

router = APIRouter()


class IndexPayload(BaseModel):
    path: str
    collection: str | None = None
    incremental: bool = True
    shard: str | None = None


class SearchPayload(BaseModel):
    query: str
    collection: str | None = None
    max_results: int | None = None


class ShardPayload(BaseModel):
    name: str
    range: str
    count: int = 0
    path: str


class CollectionPayload(BaseModel):
    name: str
    path: str
    shards: List[ShardPayload] | None = None
    is_sharded: bool | None = None


def get_coordinator(request: Request) -> Coordinator:
    return request.app.state.coordinator


def _outcome_dict(outcome: SearchOutcome) -> dict[str, Any]:
    return {
        "query": outcome.query,
        "collection": outcome.collection,
        "results": [hit.to_dict() for hit in outcome.results],
        "cached": outcome.cached,
        "engine_unavailable": outcome.engine_unavailable,
        "error": outcome.error,
    }


def _clamp_max_results(value: int | None) -> int | None:
    if value is None:
        return None
    return max(1, min(value, MAX_RESULTS_LIMIT))


@router.post("/jobs", status_code=202)
async def start_job(
    payload: IndexPayload, coordinator: Coordinator = Depends(get_coordinator)
) -> dict[str, Any]:
    path = payload.path.strip().replace("\r", "").replace("\n", "")
    if not path:
        raise HTTPException(status_code=400, detail="No path provided")
    if "\0" in path:
        raise HTTPException(status_code=400, detail="Invalid path: contains null byte")

    try:
        job_id = await asyncio.to_thread(
            coordinator.start_index_job,
            path,
            payload.collection,
            incremental=payload.incremental,
            shard_name=payload.shard,
        )
    except FileNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    job = await asyncio.to_thread(coordinator.get_job_status, job_id)
    return {"job_id": job_id, "job": job.to_dict() if job else None}


@router.get("/jobs")
async def list_jobs(coordinator: Coordinator = Depends(get_coordinator)) -> dict[str, Any]:
    jobs = await asyncio.to_thread(coordinator.list_jobs)
    return {"jobs": [job.to_dict() for job in jobs]}


@router.get("/jobs/{job_id}")
async def job_status(job_id: str, coordinator: Coordinator = Depends(get_coordinator)) -> dict[str, Any]:
    job = await asyncio.to_thread(coordinator.get_job_status, job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")
    return job.to_dict()


@router.post("/jobs/{job_id}/cancel")
async def cancel_job(job_id: str, coordinator: Coordinator = Depends(get_coordinator)) -> dict[str, Any]:
    job = await asyncio.to_thread(coordinator.cancel_job, job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")
    return job.to_dict()


@router.post("/search")
async def search_documents(
    payload: SearchPayload, coordinator: Coordinator = Depends(get_coordinator)
) -> dict[str, Any]:
    query = payload.query.strip()
    if not query:
        raise HTTPException(status_code=400, detail="Empty query")

    outcome = await asyncio.to_thread(
        coordinator.search, query, payload.collection, _clamp_max_results(payload.max_results)
    )
    return _outcome_dict(outcome)


@router.post("/search/stream")
async def stream_search(
    payload: SearchPayload, coordinator: Coordinator = Depends(get_coordinator)
) -> StreamingResponse:
    query = payload.query.strip()
    if not query:
        raise HTTPException(status_code=400, detail="Empty query")

    error: str | None = None
    try:
        hits = await asyncio.to_thread(
            coordinator.iter_search,
            query,
            payload.collection,
            _clamp_max_results(payload.max_results),
        )
    except EngineError as exc:
        hits, error = iter(()), str(exc)

    def lines() -> Iterator[str]:
        count = 0
        for hit in hits:
            count += 1
            yield json.dumps({"result": hit.to_dict()}) + "\n"
        yield json.dumps({"done": True, "count": count, "error": error}) + "\n"

    return StreamingResponse(lines(), media_type="application/x-ndjson")


@router.get("/cache/stats")
async def cache_stats(coordinator: Coordinator = Depends(get_coordinator)) -> dict[str, Any]:
    stats = await asyncio.to_thread(coordinator.cache_stats)
    return stats.to_dict()


@router.delete("/cache")
async def clear_cache(
    expired_only: bool = False, coordinator: Coordinator = Depends(get_coordinator)
) -> dict[str, Any]:
    removed = await asyncio.to_thread(coordinator.clear_cache, expired_only=expired_only)
    return {"status": "ok", "removed_count": removed}


@router.post("/collections")
async def register_collection(
    payload: CollectionPayload, coordinator: Coordinator = Depends(get_coordinator)
) -> dict[str, Any]:
    shards = (
        [CollectionShard(name=s.name, range=s.range, count=s.count, path=s.path) for s in payload.shards]
        if payload.shards is not None
        else None
    )
    try:
        collection = await asyncio.to_thread(
            coordinator.register_collection,
            payload.name,
            payload.path,
            shards=shards,
            is_sharded=payload.is_sharded,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return collection.to_dict()


@router.get("/collections")
async def list_collections(coordinator: Coordinator = Depends(get_coordinator)) -> dict[str, Any]:
    collections = await asyncio.to_thread(coordinator.list_collections)
    return {"collections": [coll.to_dict() for coll in collections]}


@router.get("/status")
async def status(coordinator: Coordinator = Depends(get_coordinator)) -> dict[str, Any]:
    return await asyncio.to_thread(coordinator.status)


def create_app(
    coordinator: Coordinator | None = None, *, config: AppConfig | None = None
) -> FastAPI:
    """Build the API around a coordinator.

    When no coordinator is passed, one is created from ``config`` at startup,
    interrupted jobs from a previous run are recovered, and it is closed on
    shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned = coordinator is None
        active = coordinator or Coordinator(config or load_config())
        level = logging.DEBUG if active.config.debug else logging.INFO
        logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")
        if owned:
            await asyncio.to_thread(active.probe_engine)
            recovered = await asyncio.to_thread(active.recover_interrupted_jobs)
            if recovered:
                LOGGER.warning("Recovered %d interrupted jobs", len(recovered))
        app.state.coordinator = active
        try:
            yield
        finally:
            if owned:
                await asyncio.to_thread(active.close)

    app = FastAPI(title="DocAtlas", version=__version__, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app
