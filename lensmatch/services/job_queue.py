"""
Lensmatch — Embedding job queue.

Lifecycle of a job::

    pending --claim_next--> processing --complete--> completed
                                 |
                                 +--fail--> pending   (attempts < max_attempts)
                                 +--fail--> failed    (attempts exhausted)

    failed --requeue_failed--> pending (attempts reset to 0)

At most one ``pending`` job exists per ``(job_type, target_id)``; enqueueing
an already-pending target returns the existing job id.  ``claim_next`` is
atomic: concurrent workers never receive the same job.  ``complete`` also
stamps the target's ``embedding_generated_at`` so the stale flag and the job
state change together.

``InMemoryEmbeddingJobQueue`` serialises every mutation behind an
``asyncio.Lock``.  ``SqlEmbeddingJobQueue`` relies on PostgreSQL: a partial
unique index for enqueue idempotency and ``FOR UPDATE SKIP LOCKED`` for the
claim.
"""

from __future__ import annotations

import asyncio
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Iterable

import structlog
from sqlalchemy import and_, func, select, text, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from lensmatch.config import get_settings
from lensmatch.database import session_scope
from lensmatch.domain import EmbeddingJob, JobStatus, JobType
from lensmatch.exceptions import NotFoundError
from lensmatch.models.embedding import EmbeddingJobRow
from lensmatch.services.vector_store import (
    ScopeFactory,
    VectorStore,
    mark_fresh_in_session,
)

logger = structlog.get_logger("lensmatch.job_queue")

# Terminal states; everything else is still outstanding for batch polling.
_TERMINAL = (JobStatus.COMPLETED, JobStatus.FAILED)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class EmbeddingJobQueue(ABC):
    """Durable queue of embedding (re)generation work."""

    def __init__(self, max_attempts: int | None = None) -> None:
        self.max_attempts = max_attempts or get_settings().EMBEDDING_MAX_ATTEMPTS

    @abstractmethod
    async def enqueue(
        self, job_type: JobType, target_id: str, db: AsyncSession | None = None
    ) -> str:
        """Create a pending job, or return the id of the existing pending one.

        When ``db`` is given the SQL backend enqueues inside that session so
        the job commits together with the content edit that caused it.
        """

    @abstractmethod
    async def claim_next(self, worker_id: str) -> EmbeddingJob | None:
        """Atomically move the oldest pending job to processing and return it."""

    @abstractmethod
    async def complete(self, job_id: str) -> None:
        """Mark a job completed and its target's embedding fresh."""

    @abstractmethod
    async def fail(self, job_id: str, reason: str) -> JobStatus:
        """Record a failed attempt; returns the job's new status."""

    @abstractmethod
    async def requeue_failed(self, job_ids: Iterable[str] | None = None) -> int:
        """Reset failed jobs (all, or the given ids) to pending."""

    @abstractmethod
    async def release_stale(self, older_than: timedelta) -> int:
        """Return jobs stuck in processing longer than ``older_than`` to pending."""

    @abstractmethod
    async def get(self, job_id: str) -> EmbeddingJob:
        ...

    @abstractmethod
    async def count_by_status(self, job_type: JobType | None = None) -> dict[JobStatus, int]:
        ...

    @abstractmethod
    async def pending_count(
        self, job_type: JobType, target_ids: Iterable[str] | None = None
    ) -> int:
        """Number of not-yet-finished (pending or processing) jobs.

        Restricted to ``target_ids`` when given, which is how a batch polls
        for its own jobs only.
        """

    async def enqueue_many(self, job_type: JobType, target_ids: Iterable[str]) -> list[str]:
        return [await self.enqueue(job_type, t) for t in target_ids]


# ──────────────────────────────────────────────────────────────────────────────
# In-memory backend
# ──────────────────────────────────────────────────────────────────────────────


class InMemoryEmbeddingJobQueue(EmbeddingJobQueue):
    """Process-local queue; ``vector_store`` receives the freshness marks."""

    def __init__(
        self,
        vector_store: VectorStore | None = None,
        max_attempts: int | None = None,
    ) -> None:
        super().__init__(max_attempts)
        self._vector_store = vector_store
        self._lock = asyncio.Lock()
        self._jobs: dict[str, EmbeddingJob] = {}
        self._seq = 0

    def _find_pending(self, job_type: JobType, target_id: str) -> EmbeddingJob | None:
        for job in self._jobs.values():
            if (
                job.status == JobStatus.PENDING
                and job.job_type == job_type
                and job.target_id == target_id
            ):
                return job
        return None

    def _require(self, job_id: str) -> EmbeddingJob:
        try:
            return self._jobs[job_id]
        except KeyError:
            raise NotFoundError(f"Embedding job {job_id} not found") from None

    async def enqueue(
        self, job_type: JobType, target_id: str, db: AsyncSession | None = None
    ) -> str:
        job_type = JobType(job_type)
        target_id = str(target_id)
        async with self._lock:
            existing = self._find_pending(job_type, target_id)
            if existing is not None:
                return existing.id
            self._seq += 1
            job = EmbeddingJob(
                id=str(uuid.uuid4()),
                job_type=job_type,
                target_id=target_id,
                # Monotonic offset keeps FIFO order stable for same-instant enqueues.
                created_at=_now() + timedelta(microseconds=self._seq),
            )
            self._jobs[job.id] = job
        logger.info("job_enqueued", job_id=job.id, job_type=job_type.value, target_id=target_id)
        return job.id

    async def claim_next(self, worker_id: str) -> EmbeddingJob | None:
        async with self._lock:
            pending = [j for j in self._jobs.values() if j.status == JobStatus.PENDING]
            if not pending:
                return None
            job = min(pending, key=lambda j: j.created_at)
            job.status = JobStatus.PROCESSING
            job.claimed_by = worker_id
            job.claimed_at = _now()
            claimed = EmbeddingJob(**vars(job))
        logger.debug("job_claimed", job_id=job.id, worker_id=worker_id)
        return claimed

    async def complete(self, job_id: str) -> None:
        async with self._lock:
            job = self._require(job_id)
            job.status = JobStatus.COMPLETED
            job.processed_at = _now()
            job.error_message = None
            if self._vector_store is not None:
                await self._vector_store.mark_fresh(job.job_type, job.target_id, job.processed_at)
        logger.info("job_completed", job_id=job_id)

    async def fail(self, job_id: str, reason: str) -> JobStatus:
        async with self._lock:
            job = self._require(job_id)
            job.attempts += 1
            job.error_message = reason
            job.processed_at = _now()
            sibling = self._find_pending(job.job_type, job.target_id)
            if job.attempts < self.max_attempts and sibling is None:
                job.status = JobStatus.PENDING
                job.claimed_by = None
                job.claimed_at = None
            else:
                job.status = JobStatus.FAILED
            status = job.status
        logger.warning(
            "job_failed",
            job_id=job_id,
            attempts=job.attempts,
            status=status.value,
            reason=reason,
        )
        return status

    async def requeue_failed(self, job_ids: Iterable[str] | None = None) -> int:
        wanted = {str(j) for j in job_ids} if job_ids is not None else None
        count = 0
        async with self._lock:
            for job in sorted(self._jobs.values(), key=lambda j: j.created_at):
                if job.status != JobStatus.FAILED:
                    continue
                if wanted is not None and job.id not in wanted:
                    continue
                if self._find_pending(job.job_type, job.target_id) is not None:
                    continue
                job.status = JobStatus.PENDING
                job.attempts = 0
                job.error_message = None
                job.claimed_by = None
                job.claimed_at = None
                count += 1
        logger.info("jobs_requeued", count=count)
        return count

    async def release_stale(self, older_than: timedelta) -> int:
        threshold = _now() - older_than
        count = 0
        async with self._lock:
            for job in self._jobs.values():
                if (
                    job.status == JobStatus.PROCESSING
                    and job.claimed_at is not None
                    and job.claimed_at < threshold
                    and self._find_pending(job.job_type, job.target_id) is None
                ):
                    job.status = JobStatus.PENDING
                    job.claimed_by = None
                    job.claimed_at = None
                    count += 1
        if count:
            logger.warning("stale_jobs_released", count=count)
        return count

    async def get(self, job_id: str) -> EmbeddingJob:
        return EmbeddingJob(**vars(self._require(job_id)))

    async def count_by_status(self, job_type: JobType | None = None) -> dict[JobStatus, int]:
        counts = {status: 0 for status in JobStatus}
        for job in self._jobs.values():
            if job_type is None or job.job_type == job_type:
                counts[job.status] += 1
        return counts

    async def pending_count(
        self, job_type: JobType, target_ids: Iterable[str] | None = None
    ) -> int:
        targets = {str(t) for t in target_ids} if target_ids is not None else None
        return sum(
            1
            for job in self._jobs.values()
            if job.job_type == job_type
            and job.status not in _TERMINAL
            and (targets is None or job.target_id in targets)
        )


# ──────────────────────────────────────────────────────────────────────────────
# SQL backend
# ──────────────────────────────────────────────────────────────────────────────

_CLAIM_SQL = text(
    """
    WITH candidate AS (
        SELECT id FROM embedding_jobs
        WHERE job_status = 'pending'
        ORDER BY created_at, id
        LIMIT 1
        FOR UPDATE SKIP LOCKED
    )
    UPDATE embedding_jobs
    SET job_status = 'processing',
        claimed_by = :worker_id,
        claimed_at = :now
    WHERE id IN (SELECT id FROM candidate)
      AND job_status = 'pending'
    RETURNING id
    """
)


def _row_to_job(row: EmbeddingJobRow) -> EmbeddingJob:
    return EmbeddingJob(
        id=str(row.id),
        job_type=JobType(row.job_type),
        target_id=row.target_id,
        status=JobStatus(row.job_status),
        attempts=row.attempts,
        error_message=row.error_message,
        created_at=row.created_at,
        claimed_at=row.claimed_at,
        claimed_by=row.claimed_by,
        processed_at=row.processed_at,
    )


def _pending_exists(job_type: str, target_id: str, exclude_id: uuid.UUID):
    return (
        select(EmbeddingJobRow.id)
        .where(
            EmbeddingJobRow.job_type == job_type,
            EmbeddingJobRow.target_id == target_id,
            EmbeddingJobRow.job_status == JobStatus.PENDING.value,
            EmbeddingJobRow.id != exclude_id,
        )
        .exists()
    )


class SqlEmbeddingJobQueue(EmbeddingJobQueue):
    """PostgreSQL-backed queue over the ``embedding_jobs`` table."""

    def __init__(self, scope: ScopeFactory = session_scope, max_attempts: int | None = None) -> None:
        super().__init__(max_attempts)
        self._scope = scope

    async def enqueue(
        self, job_type: JobType, target_id: str, db: AsyncSession | None = None
    ) -> str:
        if db is not None:
            return await self._enqueue(db, JobType(job_type), str(target_id))
        async with self._scope() as own:
            return await self._enqueue(own, JobType(job_type), str(target_id))

    async def _enqueue(self, db: AsyncSession, job_type: JobType, target_id: str) -> str:
        stmt = (
            pg_insert(EmbeddingJobRow)
            .values(
                id=uuid.uuid4(),
                job_type=job_type.value,
                target_id=target_id,
                job_status=JobStatus.PENDING.value,
                attempts=0,
            )
            .on_conflict_do_nothing(
                index_elements=["job_type", "target_id"],
                index_where=text("job_status = 'pending'"),
            )
            .returning(EmbeddingJobRow.id)
        )
        created = (await db.execute(stmt)).scalar_one_or_none()
        if created is not None:
            logger.info(
                "job_enqueued", job_id=str(created), job_type=job_type.value, target_id=target_id
            )
            return str(created)

        existing = await db.execute(
            select(EmbeddingJobRow.id).where(
                EmbeddingJobRow.job_type == job_type.value,
                EmbeddingJobRow.target_id == target_id,
                EmbeddingJobRow.job_status == JobStatus.PENDING.value,
            )
        )
        job_id = existing.scalar_one()
        logger.debug("job_already_pending", job_id=str(job_id), target_id=target_id)
        return str(job_id)

    async def claim_next(self, worker_id: str) -> EmbeddingJob | None:
        async with self._scope() as db:
            result = await db.execute(_CLAIM_SQL.bindparams(worker_id=worker_id, now=_now()))
            claimed_id = result.scalar_one_or_none()
            if claimed_id is None:
                return None
            row = await db.get(EmbeddingJobRow, claimed_id)
            job = _row_to_job(row)
        logger.debug("job_claimed", job_id=job.id, worker_id=worker_id)
        return job

    async def complete(self, job_id: str) -> None:
        async with self._scope() as db:
            row = await db.get(EmbeddingJobRow, uuid.UUID(str(job_id)))
            if row is None:
                raise NotFoundError(f"Embedding job {job_id} not found")
            now = _now()
            row.job_status = JobStatus.COMPLETED.value
            row.processed_at = now
            row.error_message = None
            await mark_fresh_in_session(db, JobType(row.job_type), row.target_id, now)
        logger.info("job_completed", job_id=str(job_id))

    async def fail(self, job_id: str, reason: str) -> JobStatus:
        async with self._scope() as db:
            row = await db.get(EmbeddingJobRow, uuid.UUID(str(job_id)), with_for_update=True)
            if row is None:
                raise NotFoundError(f"Embedding job {job_id} not found")
            row.attempts += 1
            row.error_message = reason
            row.processed_at = _now()
            sibling = await db.scalar(select(_pending_exists(row.job_type, row.target_id, row.id)))
            if row.attempts < self.max_attempts and not sibling:
                row.job_status = JobStatus.PENDING.value
                row.claimed_by = None
                row.claimed_at = None
            else:
                row.job_status = JobStatus.FAILED.value
            status = JobStatus(row.job_status)
            attempts = row.attempts
        logger.warning(
            "job_failed", job_id=str(job_id), attempts=attempts, status=status.value, reason=reason
        )
        return status

    async def requeue_failed(self, job_ids: Iterable[str] | None = None) -> int:
        async with self._scope() as db:
            stmt = (
                select(EmbeddingJobRow)
                .where(EmbeddingJobRow.job_status == JobStatus.FAILED.value)
                .order_by(EmbeddingJobRow.created_at)
                .with_for_update(skip_locked=True)
            )
            if job_ids is not None:
                stmt = stmt.where(EmbeddingJobRow.id.in_([uuid.UUID(str(j)) for j in job_ids]))
            rows = (await db.execute(stmt)).scalars().all()

            covered: set[tuple[str, str]] = set()
            count = 0
            for row in rows:
                key = (row.job_type, row.target_id)
                if key in covered:
                    continue
                covered.add(key)
                if await db.scalar(select(_pending_exists(row.job_type, row.target_id, row.id))):
                    continue
                row.job_status = JobStatus.PENDING.value
                row.attempts = 0
                row.error_message = None
                row.claimed_by = None
                row.claimed_at = None
                count += 1
        logger.info("jobs_requeued", count=count)
        return count

    async def release_stale(self, older_than: timedelta) -> int:
        threshold = _now() - older_than
        async with self._scope() as db:
            stale = EmbeddingJobRow.__table__.alias("stale")
            result = await db.execute(
                update(EmbeddingJobRow)
                .where(
                    and_(
                        EmbeddingJobRow.job_status == JobStatus.PROCESSING.value,
                        EmbeddingJobRow.claimed_at < threshold,
                        ~select(stale.c.id)
                        .where(
                            stale.c.job_type == EmbeddingJobRow.job_type,
                            stale.c.target_id == EmbeddingJobRow.target_id,
                            stale.c.job_status == JobStatus.PENDING.value,
                        )
                        .exists(),
                    )
                )
                .values(job_status=JobStatus.PENDING.value, claimed_by=None, claimed_at=None)
            )
            count = result.rowcount or 0
        if count:
            logger.warning("stale_jobs_released", count=count)
        return count

    async def get(self, job_id: str) -> EmbeddingJob:
        async with self._scope() as db:
            row = await db.get(EmbeddingJobRow, uuid.UUID(str(job_id)))
            if row is None:
                raise NotFoundError(f"Embedding job {job_id} not found")
            return _row_to_job(row)

    async def count_by_status(self, job_type: JobType | None = None) -> dict[JobStatus, int]:
        stmt = select(EmbeddingJobRow.job_status, func.count()).group_by(EmbeddingJobRow.job_status)
        if job_type is not None:
            stmt = stmt.where(EmbeddingJobRow.job_type == JobType(job_type).value)
        counts = {status: 0 for status in JobStatus}
        async with self._scope() as db:
            for status, n in (await db.execute(stmt)).all():
                counts[JobStatus(status)] = n
        return counts

    async def pending_count(
        self, job_type: JobType, target_ids: Iterable[str] | None = None
    ) -> int:
        stmt = select(func.count()).select_from(EmbeddingJobRow).where(
            EmbeddingJobRow.job_type == JobType(job_type).value,
            EmbeddingJobRow.job_status.in_(
                [JobStatus.PENDING.value, JobStatus.PROCESSING.value]
            ),
        )
        if target_ids is not None:
            stmt = stmt.where(EmbeddingJobRow.target_id.in_([str(t) for t in target_ids]))
        async with self._scope() as db:
            return (await db.execute(stmt)).scalar_one()


_job_queue: EmbeddingJobQueue | None = None


def get_job_queue() -> EmbeddingJobQueue:
    """Return the process-wide SQL-backed queue."""
    global _job_queue
    if _job_queue is None:
        _job_queue = SqlEmbeddingJobQueue()
    return _job_queue
