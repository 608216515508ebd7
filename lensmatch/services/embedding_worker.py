"""
Lensmatch — Embedding worker and batch coordinator.

A worker drains the job queue one job at a time:

    1. ``claim_next`` (atomic, so any number of workers can share a queue)
    2. resolve the text to embed through a ``ContentSource``
    3. ``Embedder.embed`` each text
    4. write the vector(s) to the ``VectorStore``
    5. ``complete`` the job, which marks the target fresh

Any failure along the way is recorded with ``fail`` and retried by the queue
up to its attempt ceiling.  Content that is gone or not embeddable (a deleted
choice, an incomplete photographer profile) fails without calling the
provider.

``run_batch`` enqueues a set of targets and polls until their jobs have all
finished or the batch timeout elapses.  A timeout is reported as a
``partial`` result; the jobs themselves keep running.

A job whose content was edited while it was being embedded completes without
writing: the edit bumped the target's content version, and the job the edit
enqueued produces the current vector.
"""

from __future__ import annotations

import asyncio
import socket
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Awaitable, Callable, Iterable, Mapping

import structlog
from sqlalchemy import select

from lensmatch.config import get_settings
from lensmatch.database import session_scope
from lensmatch.domain import (
    DIMENSIONS,
    BatchStatus,
    Dimension,
    EmbeddingJob,
    JobStatus,
    JobType,
    QuestionType,
)
from lensmatch.exceptions import ContentUnavailableError, EmbeddingError
from lensmatch.models.matching import MatchingSession
from lensmatch.models.photographer import PhotographerProfile
from lensmatch.models.questionnaire import SurveyChoice, SurveyImage, SurveyQuestion
from lensmatch.services.embedding_service import Embedder, get_embedder
from lensmatch.services.job_queue import EmbeddingJobQueue, get_job_queue
from lensmatch.services.vector_store import ScopeFactory, VectorStore, get_vector_store

logger = structlog.get_logger("lensmatch.embedding_worker")


# ──────────────────────────────────────────────────────────────────────────────
# Content sources
# ──────────────────────────────────────────────────────────────────────────────


@dataclass
class EmbeddingPayload:
    """Text to embed for one job: a single text, one per dimension, or one per answer."""

    text: str | None = None
    dimension_texts: dict[Dimension, str] = field(default_factory=dict)
    answer_texts: dict[str, str] = field(default_factory=dict)


class ContentSource(ABC):
    """Resolves a job target to the text that should be embedded."""

    @abstractmethod
    async def resolve(self, job_type: JobType, target_id: str) -> EmbeddingPayload:
        """Raise ``ContentUnavailableError`` when the target cannot be embedded."""


def profile_payload(descriptions: dict[Dimension, str | None], completed: bool) -> EmbeddingPayload:
    if not completed:
        raise ContentUnavailableError("Photographer profile is not complete")
    texts = {d: (descriptions.get(d) or "").strip() for d in DIMENSIONS}
    blank = [d.value for d, t in texts.items() if not t]
    if blank:
        raise ContentUnavailableError(f"Profile descriptions are blank: {', '.join(blank)}")
    return EmbeddingPayload(dimension_texts=texts)


def answers_payload(
    responses: Mapping[str, Any], text_question_keys: Iterable[str]
) -> EmbeddingPayload:
    """Free-text answers of a session, restricted to its textarea questions."""
    texts = {}
    for key in text_question_keys:
        value = responses.get(key)
        if isinstance(value, str) and value.strip():
            texts[key] = value
    if not texts:
        raise ContentUnavailableError("Session has no free-text answers")
    return EmbeddingPayload(answer_texts=texts)


class InMemoryContentSource(ContentSource):
    """Content held in plain dicts; used by tests and offline tooling."""

    def __init__(self) -> None:
        self.texts: dict[tuple[JobType, str], str] = {}
        self.profiles: dict[str, tuple[dict[Dimension, str | None], bool]] = {}
        self.session_answers: dict[str, dict[str, str]] = {}

    def set_text(self, job_type: JobType, target_id: str, text: str) -> None:
        self.texts[(JobType(job_type), str(target_id))] = text

    def set_profile(
        self, photographer_id: str, descriptions: dict[Dimension, str | None], completed: bool = True
    ) -> None:
        self.profiles[str(photographer_id)] = (dict(descriptions), completed)

    def set_session_answers(self, session_id: str, answers: dict[str, str]) -> None:
        self.session_answers[str(session_id)] = dict(answers)

    async def resolve(self, job_type: JobType, target_id: str) -> EmbeddingPayload:
        if job_type == JobType.PHOTOGRAPHER_PROFILE:
            if target_id not in self.profiles:
                raise ContentUnavailableError(f"Photographer profile {target_id} not found")
            descriptions, completed = self.profiles[target_id]
            return profile_payload(descriptions, completed)
        if job_type == JobType.SESSION_ANSWERS:
            if target_id not in self.session_answers:
                raise ContentUnavailableError(f"Matching session {target_id} not found")
            answers = self.session_answers[target_id]
            return answers_payload(answers, answers)
        text = self.texts.get((job_type, target_id))
        if not text or not text.strip():
            raise ContentUnavailableError(f"{job_type.value} {target_id} not found")
        return EmbeddingPayload(text=text)


class SqlContentSource(ContentSource):
    """Reads labels, titles and profile descriptions from the database."""

    def __init__(self, scope: ScopeFactory = session_scope) -> None:
        self._scope = scope

    async def resolve(self, job_type: JobType, target_id: str) -> EmbeddingPayload:
        try:
            key = uuid.UUID(str(target_id))
        except ValueError:
            raise ContentUnavailableError(f"Invalid target id {target_id!r}") from None

        async with self._scope() as db:
            if job_type == JobType.PHOTOGRAPHER_PROFILE:
                profile = await db.get(PhotographerProfile, key)
                if profile is None:
                    raise ContentUnavailableError(f"Photographer profile {target_id} not found")
                descriptions = {
                    d: getattr(profile, f"{d.value}_description") for d in DIMENSIONS
                }
                return profile_payload(descriptions, profile.profile_completed)

            if job_type == JobType.SESSION_ANSWERS:
                session = await db.get(MatchingSession, key)
                if session is None:
                    raise ContentUnavailableError(f"Matching session {target_id} not found")
                result = await db.execute(
                    select(SurveyQuestion.question_key).where(
                        SurveyQuestion.is_active.is_(True),
                        SurveyQuestion.question_type == QuestionType.TEXTAREA.value,
                    )
                )
                return answers_payload(session.responses or {}, result.scalars().all())

            if job_type == JobType.QUESTION:
                row = await db.get(SurveyQuestion, key)
                text = None
                if row is not None:
                    text = row.question_title
                    if row.question_description:
                        text = f"{text}\n{row.question_description}"
            elif job_type == JobType.CHOICE:
                row = (
                    await db.execute(select(SurveyChoice).where(SurveyChoice.id == key))
                ).scalar_one_or_none()
                text = row.choice_label if row is not None else None
            else:
                row = (
                    await db.execute(select(SurveyImage).where(SurveyImage.id == key))
                ).scalar_one_or_none()
                text = row.image_label if row is not None else None

        if row is None:
            raise ContentUnavailableError(f"{job_type.value} {target_id} not found")
        if not text or not text.strip():
            raise ContentUnavailableError(f"{job_type.value} {target_id} has no text to embed")
        return EmbeddingPayload(text=text)


# ──────────────────────────────────────────────────────────────────────────────
# Batch result
# ──────────────────────────────────────────────────────────────────────────────


@dataclass
class BatchResult:
    status: BatchStatus
    job_type: JobType
    total: int
    completed: int
    failed: int
    pending: int
    timed_out: bool
    elapsed_seconds: float
    job_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "job_type": self.job_type.value,
            "total": self.total,
            "completed": self.completed,
            "failed": self.failed,
            "pending": self.pending,
            "timed_out": self.timed_out,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "job_ids": self.job_ids,
        }


# ──────────────────────────────────────────────────────────────────────────────
# Worker
# ──────────────────────────────────────────────────────────────────────────────


def default_worker_id() -> str:
    return f"{socket.gethostname()}-{uuid.uuid4().hex[:8]}"


class EmbeddingWorker:
    """Claims embedding jobs and turns them into stored vectors."""

    def __init__(
        self,
        queue: EmbeddingJobQueue,
        vector_store: VectorStore,
        embedder: Embedder,
        content: ContentSource,
        worker_id: str | None = None,
        idle_sleep: float | None = None,
        poll_interval: float | None = None,
        batch_timeout: float | None = None,
        stale_after: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        settings = get_settings()
        self.queue = queue
        self.vector_store = vector_store
        self.embedder = embedder
        self.content = content
        self.worker_id = worker_id or default_worker_id()
        self.idle_sleep = idle_sleep if idle_sleep is not None else settings.WORKER_IDLE_SLEEP_SECONDS
        self.poll_interval = (
            poll_interval if poll_interval is not None else settings.BATCH_POLL_INTERVAL_SECONDS
        )
        self.batch_timeout = (
            batch_timeout if batch_timeout is not None else settings.BATCH_TIMEOUT_SECONDS
        )
        self.stale_after = (
            stale_after if stale_after is not None else settings.STALE_CLAIM_SECONDS
        )
        self._sleep = sleep
        self._clock = clock
        self._last_reap: float | None = None

    # ── Single job ────────────────────────────────────────────────────

    async def process_next(self) -> bool:
        """Process one job.  Returns False when the queue had nothing pending."""
        job = await self.queue.claim_next(self.worker_id)
        if job is None:
            return False

        log = logger.bind(
            job_id=job.id,
            job_type=job.job_type.value,
            target_id=job.target_id,
            worker_id=self.worker_id,
        )
        try:
            written = await self._process(job)
        except (EmbeddingError, ContentUnavailableError) as exc:
            status = await self.queue.fail(job.id, str(exc))
            log.warning("embedding_job_failed", reason=str(exc), status=status.value)
        except Exception as exc:
            log.exception("embedding_job_crashed")
            await self.queue.fail(job.id, f"{type(exc).__name__}: {exc}")
        else:
            # A superseded job still completes; the job enqueued by the edit
            # owns the target now, and an invalidated target is never marked
            # fresh.
            await self.queue.complete(job.id)
            if written:
                log.info("embedding_job_done")
            else:
                log.info("embedding_job_superseded")
        return True

    async def _process(self, job: EmbeddingJob) -> bool:
        # Read the version before the content so any edit after this point
        # makes the write below a no-op.
        version = await self.vector_store.content_version(job.job_type, job.target_id)
        payload = await self.content.resolve(job.job_type, job.target_id)

        if job.job_type == JobType.PHOTOGRAPHER_PROFILE:
            vectors = {}
            for dimension in DIMENSIONS:
                vectors[dimension] = await self.embedder.embed(payload.dimension_texts[dimension])
            return await self.vector_store.put_profile_vectors(
                job.target_id, vectors, expected_version=version
            )
        if job.job_type == JobType.SESSION_ANSWERS:
            answers = {}
            for key, text in payload.answer_texts.items():
                answers[key] = await self.embedder.embed(text)
            return await self.vector_store.put_session_answer_vectors(
                job.target_id, answers, expected_version=version
            )
        vector = await self.embedder.embed(payload.text or "")
        return await self.vector_store.put_vector(
            job.job_type, job.target_id, vector, expected_version=version
        )

    # ── Loops ─────────────────────────────────────────────────────────

    async def drain(self, max_jobs: int | None = None) -> int:
        """Process jobs until the queue is empty (or ``max_jobs`` reached)."""
        processed = 0
        while max_jobs is None or processed < max_jobs:
            if not await self.process_next():
                break
            processed += 1
        return processed

    async def release_stale_claims(self) -> int:
        """Return jobs claimed longer than ``stale_after`` ago to pending."""
        released = await self.queue.release_stale(timedelta(seconds=self.stale_after))
        self._last_reap = self._clock()
        if released:
            logger.warning("stale_claims_released", count=released, worker_id=self.worker_id)
        return released

    async def _idle(self, stop_event: asyncio.Event) -> None:
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=self.idle_sleep)
        except asyncio.TimeoutError:
            pass

    async def run(self, stop_event: asyncio.Event) -> None:
        """Process jobs until ``stop_event`` is set, idling when the queue is empty.

        Queue or database errors are logged and retried after ``idle_sleep``;
        they never end the loop.  Claims older than ``stale_after`` are
        released every ``stale_after`` seconds.
        """
        logger.info("embedding_worker_started", worker_id=self.worker_id)
        while not stop_event.is_set():
            try:
                if self._last_reap is None or self._clock() - self._last_reap >= self.stale_after:
                    await self.release_stale_claims()
                worked = await self.process_next()
            except Exception:
                logger.exception("embedding_worker_iteration_failed", worker_id=self.worker_id)
                worked = False
            if not worked:
                await self._idle(stop_event)
        logger.info("embedding_worker_stopped", worker_id=self.worker_id)

    # ── Batch ─────────────────────────────────────────────────────────

    async def run_batch(self, job_type: JobType, target_ids: Iterable[str]) -> BatchResult:
        """Enqueue ``target_ids`` and wait for their jobs, bounded by the timeout.

        Polls the outstanding count every ``poll_interval`` seconds.  Jobs
        still outstanding at ``batch_timeout`` are reported as ``pending``
        in a ``partial`` result; the workers are left running.
        """
        job_type = JobType(job_type)
        targets = list(dict.fromkeys(str(t) for t in target_ids))
        job_ids = list(dict.fromkeys(await self.queue.enqueue_many(job_type, targets)))
        log = logger.bind(job_type=job_type.value, batch_size=len(job_ids))
        log.info("batch_started")

        started = self._clock()
        pending = await self.queue.pending_count(job_type, targets)
        timed_out = False
        while pending > 0:
            elapsed = self._clock() - started
            if elapsed >= self.batch_timeout:
                timed_out = True
                break
            await self._sleep(min(self.poll_interval, self.batch_timeout - elapsed))
            pending = await self.queue.pending_count(job_type, targets)

        completed = failed = 0
        for job_id in job_ids:
            job = await self.queue.get(job_id)
            if job.status == JobStatus.COMPLETED:
                completed += 1
            elif job.status == JobStatus.FAILED:
                failed += 1

        result = BatchResult(
            status=BatchStatus.PARTIAL if timed_out else BatchStatus.COMPLETED,
            job_type=job_type,
            total=len(job_ids),
            completed=completed,
            failed=failed,
            pending=pending,
            timed_out=timed_out,
            elapsed_seconds=self._clock() - started,
            job_ids=job_ids,
        )
        if timed_out:
            log.warning("batch_timed_out", pending=pending, completed=completed, failed=failed)
        else:
            log.info("batch_finished", completed=completed, failed=failed)
        return result


def build_worker(worker_id: str | None = None) -> EmbeddingWorker:
    """Wire a worker to the database-backed queue, store and content."""
    return EmbeddingWorker(
        queue=get_job_queue(),
        vector_store=get_vector_store(),
        embedder=get_embedder(),
        content=SqlContentSource(),
        worker_id=worker_id,
    )
