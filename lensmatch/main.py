"""
Lensmatch — FastAPI Application Entry Point

The lifespan warms the database pool, connects Redis, loads the weight
snapshot and starts the in-process embedding workers.  Requests run under a
wall-clock budget; the admin batch endpoint gets the batch timeout plus a
margin because it polls the queue until its jobs settle.
"""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from lensmatch.cache import close_redis, connect_redis, get_redis
from lensmatch.config import get_settings
from lensmatch.database import dispose_engine, get_engine, session_scope
from lensmatch.exceptions import LensmatchError, lensmatch_exception_handler
from lensmatch.services.embedding_worker import build_worker
from lensmatch.services.job_queue import get_job_queue
from lensmatch.services.settings_service import MatchingSettingsService
from lensmatch.utils.logging import configure_logging

configure_logging()

logger: structlog.stdlib.BoundLogger = structlog.get_logger("lensmatch")

REQUEST_TIMEOUT_SECONDS = 70.0
BATCH_PATH = "/admin/embeddings/batch"
WORKER_STOP_TIMEOUT_SECONDS = 15

# ---------------------------------------------------------------------------
# In-process embedding workers
# ---------------------------------------------------------------------------

_worker_stop = asyncio.Event()
_worker_tasks: list[asyncio.Task] = []


def _start_workers(count: int) -> None:
    _worker_stop.clear()
    for i in range(count):
        task = asyncio.create_task(build_worker().run(_worker_stop), name=f"embedding-worker-{i}")
        _worker_tasks.append(task)
    logger.info("embedding_workers_started", count=count)


async def _stop_workers() -> None:
    """Signal the workers and wait for each to finish its claimed job."""
    if not _worker_tasks:
        return
    _worker_stop.set()
    _, pending = await asyncio.wait(_worker_tasks, timeout=WORKER_STOP_TIMEOUT_SECONDS)
    for task in pending:
        task.cancel()
    _worker_tasks.clear()
    logger.info("embedding_workers_stopped", cancelled=len(pending))


def workers_alive() -> int:
    return sum(1 for t in _worker_tasks if not t.done())


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    logger.info("startup_begin", environment=settings.ENVIRONMENT, log_level=settings.LOG_LEVEL)

    async with get_engine().begin() as conn:
        await conn.execute(text("SELECT 1"))
    await connect_redis()
    async with session_scope() as db:
        await MatchingSettingsService().refresh_weights(db)
    if settings.EMBEDDING_WORKER_ENABLED:
        _start_workers(settings.EMBEDDING_WORKER_CONCURRENCY)
    logger.info("startup_complete")

    yield

    logger.info("shutdown_begin")
    await _stop_workers()
    await close_redis()
    await dispose_engine()
    logger.info("shutdown_complete")


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------

class RequestBudgetMiddleware(BaseHTTPMiddleware):
    """Log each request and answer 504 once its time budget runs out."""

    def __init__(self, app, timeout_seconds: float, batch_timeout_seconds: float) -> None:
        super().__init__(app)
        self.timeout_seconds = timeout_seconds
        self.batch_timeout_seconds = batch_timeout_seconds

    def budget_for(self, path: str) -> float:
        if path.endswith(BATCH_PATH):
            return self.batch_timeout_seconds
        return self.timeout_seconds

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        log = logger.bind(method=request.method, path=request.url.path)
        budget = self.budget_for(request.url.path)
        start = time.perf_counter()
        try:
            response = await asyncio.wait_for(call_next(request), timeout=budget)
        except asyncio.TimeoutError:
            log.warning("request_timeout", timeout=budget)
            return JSONResponse(status_code=504, content={"detail": "Request timed out"})

        log.info(
            "request_handled",
            status=response.status_code,
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        return response


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

settings = get_settings()

app = FastAPI(
    title="Lensmatch",
    description="Photographer matching and embedding pipeline",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if not settings.is_production else None,
    redoc_url="/redoc" if not settings.is_production else None,
)

app.add_exception_handler(LensmatchError, lensmatch_exception_handler)
app.add_middleware(
    RequestBudgetMiddleware,
    timeout_seconds=REQUEST_TIMEOUT_SECONDS,
    batch_timeout_seconds=settings.BATCH_TIMEOUT_SECONDS + 30.0,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", tags=["health"])
async def health_liveness() -> dict:
    return {"status": "healthy", "embedding_workers": workers_alive()}


@app.get("/health/deep", tags=["health"])
async def health_deep() -> dict:
    """Database, Redis and embedding backlog."""
    result: dict = {"status": "healthy", "embedding_workers": workers_alive()}

    try:
        counts = await get_job_queue().count_by_status()
        result["embedding_jobs"] = {status.value: n for status, n in counts.items()}
    except SQLAlchemyError as exc:
        logger.error("health_db_failure", error=str(exc))
        result["database"] = f"error: {exc}"
        result["status"] = "degraded"

    redis = get_redis()
    if redis is None:
        result["redis"] = "not connected"
        result["status"] = "degraded"
    else:
        try:
            await redis.ping()
        except RedisError as exc:
            logger.error("health_redis_failure", error=str(exc))
            result["redis"] = f"error: {exc}"
            result["status"] = "degraded"

    return result


from lensmatch.api.router import router as api_router  # noqa: E402

app.include_router(api_router, prefix="/api/v1")
