"""
Lensmatch — Admin embedding-queue API

Operator controls for the embedding job queue: enqueue single targets,
enqueue everything that lacks an embedding, run a bounded batch, inspect
queue state and requeue failed jobs.
"""

from __future__ import annotations

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from lensmatch.database import get_db
from lensmatch.domain import JobType
from lensmatch.schemas.admin import (
    BatchRequest,
    BatchResponse,
    EnqueueRequest,
    EnqueueResponse,
    GenerateAllResponse,
    QueueStatsResponse,
    RequeueRequest,
    RequeueResponse,
)
from lensmatch.services.content_service import ContentService
from lensmatch.services.embedding_worker import EmbeddingWorker, build_worker
from lensmatch.services.job_queue import get_job_queue

logger = structlog.get_logger("lensmatch.api.admin_embeddings")

router = APIRouter()

_content_service: ContentService | None = None
_batch_worker: EmbeddingWorker | None = None


def _get_content_service() -> ContentService:
    global _content_service
    if _content_service is None:
        _content_service = ContentService(queue=get_job_queue())
    return _content_service


def _get_batch_worker() -> EmbeddingWorker:
    global _batch_worker
    if _batch_worker is None:
        _batch_worker = build_worker(worker_id="admin-batch")
    return _batch_worker


@router.post("/queue", response_model=EnqueueResponse, summary="Enqueue one embedding job")
async def enqueue(payload: EnqueueRequest) -> EnqueueResponse:
    job_id = await get_job_queue().enqueue(payload.job_type, payload.target_id)
    return EnqueueResponse(job_id=job_id, job_type=payload.job_type, target_id=payload.target_id)


@router.post(
    "/generate-all",
    response_model=GenerateAllResponse,
    summary="Enqueue every active option and complete profile without embeddings",
)
async def generate_all(db: AsyncSession = Depends(get_db)) -> GenerateAllResponse:
    counts = await _get_content_service().enqueue_missing(db)
    return GenerateAllResponse(enqueued=counts, total=sum(counts.values()))


@router.post("/batch", response_model=BatchResponse, summary="Enqueue and wait for a batch")
async def run_batch(payload: BatchRequest) -> BatchResponse:
    """Enqueue the targets and poll until done or the batch timeout elapses.

    Jobs are processed by the running embedding workers.  A timeout yields
    ``status="partial"`` with the outstanding count, not an error.
    """
    result = await _get_batch_worker().run_batch(payload.job_type, payload.target_ids)
    return BatchResponse(**result.to_dict())


@router.get("/stats", response_model=QueueStatsResponse, summary="Job counts by status")
async def stats(job_type: Optional[JobType] = Query(default=None)) -> QueueStatsResponse:
    counts = await get_job_queue().count_by_status(job_type)
    return QueueStatsResponse(
        by_status={status.value: n for status, n in counts.items()},
        job_type=job_type,
    )


@router.post("/requeue-failed", response_model=RequeueResponse, summary="Requeue failed jobs")
async def requeue_failed(payload: RequeueRequest) -> RequeueResponse:
    count = await get_job_queue().requeue_failed(payload.job_ids)
    logger.info("requeue_failed_requested", requeued=count, scoped=payload.job_ids is not None)
    return RequeueResponse(requeued=count)
