"""
Lensmatch — Embedding vector store.

Vectors are keyed by ``(JobType, target_id)``.  Question, choice and image
targets hold one vector each; a photographer profile holds one vector per
matching dimension; a matching session holds one vector per free-text
answer, keyed by question key.

Freshness is tracked separately from the vector itself: ``invalidate``
clears both the vector and the ``generated_at`` mark, ``put_*`` writes the
vector, and ``mark_fresh`` (called by the job queue when a job completes)
stamps ``generated_at``.  A target whose mark is ``None`` is stale, and a
target without a vector is never marked fresh.

Every invalidation also bumps the target's ``content_version``.  A worker
reads the version before resolving the text it embeds and passes it back as
``expected_version``; the write is skipped when an edit has landed in
between, so a vector built from superseded text never replaces a newer one.

Two backends share the interface:

* ``InMemoryVectorStore`` — a dict-backed store for tests and single-process
  tooling.
* ``SqlVectorStore`` — reads and writes the embedding columns of the
  questionnaire, profile and matching session tables.
"""

from __future__ import annotations

import asyncio
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, AsyncContextManager, Callable, Iterable

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from lensmatch.database import session_scope
from lensmatch.domain import DIMENSIONS, Dimension, JobType, Vector
from lensmatch.models.matching import MatchingSession
from lensmatch.models.photographer import PhotographerProfile
from lensmatch.models.questionnaire import SurveyChoice, SurveyImage, SurveyQuestion

logger = structlog.get_logger("lensmatch.vector_store")

ScopeFactory = Callable[[], AsyncContextManager[AsyncSession]]


class VectorStore(ABC):
    """Read/write access to embeddings by entity id."""

    @abstractmethod
    async def get_vector(self, job_type: JobType, target_id: str) -> Vector | None:
        """Return the single vector of a question, choice or image."""

    @abstractmethod
    async def get_vectors(self, job_type: JobType, target_ids: Iterable[str]) -> dict[str, Vector]:
        """Bulk variant of ``get_vector``; ids without a vector are omitted."""

    @abstractmethod
    async def put_vector(
        self,
        job_type: JobType,
        target_id: str,
        vector: Vector,
        expected_version: int | None = None,
    ) -> bool:
        """Store the vector of a question, choice or image.

        Returns False (and writes nothing) when ``expected_version`` no
        longer matches the target's content version, or the target is gone.
        """

    @abstractmethod
    async def get_profile_vectors(self, photographer_id: str) -> dict[Dimension, Vector]:
        """Return whichever per-dimension profile vectors exist."""

    @abstractmethod
    async def put_profile_vectors(
        self,
        photographer_id: str,
        vectors: dict[Dimension, Vector],
        expected_version: int | None = None,
    ) -> bool:
        """Store per-dimension profile vectors (dimensions not given are left as-is)."""

    @abstractmethod
    async def get_session_answer_vectors(self, session_id: str) -> dict[str, Vector]:
        """Return the embedded free-text answers of a session, by question key."""

    @abstractmethod
    async def put_session_answer_vectors(
        self,
        session_id: str,
        vectors: dict[str, Vector],
        expected_version: int | None = None,
    ) -> bool:
        """Replace the embedded free-text answers of a session."""

    @abstractmethod
    async def content_version(self, job_type: JobType, target_id: str) -> int:
        """Current invalidation counter of the target (0 when never edited)."""

    @abstractmethod
    async def invalidate(self, job_type: JobType, target_id: str) -> None:
        """Drop the stored vector(s) and the freshness mark, bumping the content version."""

    @abstractmethod
    async def mark_fresh(self, job_type: JobType, target_id: str, at: datetime) -> None:
        """Stamp the target's ``generated_at`` if its vector(s) are present."""

    @abstractmethod
    async def generated_at(self, job_type: JobType, target_id: str) -> datetime | None:
        """Return the freshness mark, ``None`` when stale."""

    async def is_stale(self, job_type: JobType, target_id: str) -> bool:
        return await self.generated_at(job_type, target_id) is None


# ──────────────────────────────────────────────────────────────────────────────
# In-memory backend
# ──────────────────────────────────────────────────────────────────────────────


class InMemoryVectorStore(VectorStore):
    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._vectors: dict[tuple[JobType, str], Vector] = {}
        self._profiles: dict[str, dict[Dimension, Vector]] = {}
        self._session_answers: dict[str, dict[str, Vector]] = {}
        self._generated_at: dict[tuple[JobType, str], datetime] = {}
        self._versions: dict[tuple[JobType, str], int] = {}

    def _version_matches(self, key: tuple[JobType, str], expected: int | None) -> bool:
        return expected is None or self._versions.get(key, 0) == expected

    async def get_vector(self, job_type: JobType, target_id: str) -> Vector | None:
        vector = self._vectors.get((job_type, target_id))
        return list(vector) if vector is not None else None

    async def get_vectors(self, job_type: JobType, target_ids: Iterable[str]) -> dict[str, Vector]:
        found: dict[str, Vector] = {}
        for target_id in target_ids:
            vector = self._vectors.get((job_type, target_id))
            if vector is not None:
                found[target_id] = list(vector)
        return found

    async def put_vector(
        self,
        job_type: JobType,
        target_id: str,
        vector: Vector,
        expected_version: int | None = None,
    ) -> bool:
        _require_single_vector_type(job_type)
        async with self._lock:
            if not self._version_matches((job_type, target_id), expected_version):
                return False
            self._vectors[(job_type, target_id)] = list(vector)
        return True

    async def get_profile_vectors(self, photographer_id: str) -> dict[Dimension, Vector]:
        return {d: list(v) for d, v in self._profiles.get(photographer_id, {}).items()}

    async def put_profile_vectors(
        self,
        photographer_id: str,
        vectors: dict[Dimension, Vector],
        expected_version: int | None = None,
    ) -> bool:
        key = (JobType.PHOTOGRAPHER_PROFILE, photographer_id)
        async with self._lock:
            if not self._version_matches(key, expected_version):
                return False
            current = dict(self._profiles.get(photographer_id, {}))
            current.update({Dimension(d): list(v) for d, v in vectors.items()})
            self._profiles[photographer_id] = current
        return True

    async def get_session_answer_vectors(self, session_id: str) -> dict[str, Vector]:
        return {k: list(v) for k, v in self._session_answers.get(session_id, {}).items()}

    async def put_session_answer_vectors(
        self,
        session_id: str,
        vectors: dict[str, Vector],
        expected_version: int | None = None,
    ) -> bool:
        key = (JobType.SESSION_ANSWERS, session_id)
        async with self._lock:
            if not self._version_matches(key, expected_version):
                return False
            self._session_answers[session_id] = {k: list(v) for k, v in vectors.items()}
        return True

    async def content_version(self, job_type: JobType, target_id: str) -> int:
        return self._versions.get((job_type, target_id), 0)

    async def invalidate(self, job_type: JobType, target_id: str) -> None:
        key = (job_type, target_id)
        async with self._lock:
            if job_type == JobType.PHOTOGRAPHER_PROFILE:
                self._profiles.pop(target_id, None)
            elif job_type == JobType.SESSION_ANSWERS:
                self._session_answers.pop(target_id, None)
            else:
                self._vectors.pop(key, None)
            self._generated_at.pop(key, None)
            self._versions[key] = self._versions.get(key, 0) + 1

    async def mark_fresh(self, job_type: JobType, target_id: str, at: datetime) -> None:
        async with self._lock:
            if job_type == JobType.PHOTOGRAPHER_PROFILE:
                present = set(self._profiles.get(target_id, {})) >= set(DIMENSIONS)
            elif job_type == JobType.SESSION_ANSWERS:
                present = target_id in self._session_answers
            else:
                present = (job_type, target_id) in self._vectors
            if present:
                self._generated_at[(job_type, target_id)] = at

    async def generated_at(self, job_type: JobType, target_id: str) -> datetime | None:
        return self._generated_at.get((job_type, target_id))


# ──────────────────────────────────────────────────────────────────────────────
# SQL backend
# ──────────────────────────────────────────────────────────────────────────────

_SINGLE_VECTOR_MODELS: dict[JobType, Any] = {
    JobType.QUESTION: SurveyQuestion,
    JobType.CHOICE: SurveyChoice,
    JobType.IMAGE: SurveyImage,
}

# Dimension -> PhotographerProfile embedding column name.
PROFILE_EMBEDDING_COLUMNS: dict[Dimension, str] = {
    d: f"{d.value}_embedding" for d in DIMENSIONS
}


def _require_single_vector_type(job_type: JobType) -> None:
    if job_type == JobType.PHOTOGRAPHER_PROFILE:
        raise ValueError("Profile vectors are per dimension; use put_profile_vectors")
    if job_type == JobType.SESSION_ANSWERS:
        raise ValueError("Session answers are per question; use put_session_answer_vectors")


def _as_uuid(target_id: str) -> uuid.UUID:
    return target_id if isinstance(target_id, uuid.UUID) else uuid.UUID(str(target_id))


class SqlVectorStore(VectorStore):
    """Vector store over the embedding columns of the content tables."""

    def __init__(self, scope: ScopeFactory = session_scope) -> None:
        self._scope = scope

    async def get_vector(self, job_type: JobType, target_id: str) -> Vector | None:
        _require_single_vector_type(job_type)
        model = _SINGLE_VECTOR_MODELS[job_type]
        async with self._scope() as db:
            result = await db.execute(
                select(model.embedding).where(model.id == _as_uuid(target_id))
            )
            return result.scalar_one_or_none()

    async def get_vectors(self, job_type: JobType, target_ids: Iterable[str]) -> dict[str, Vector]:
        _require_single_vector_type(job_type)
        ids = [_as_uuid(t) for t in target_ids]
        if not ids:
            return {}
        model = _SINGLE_VECTOR_MODELS[job_type]
        async with self._scope() as db:
            result = await db.execute(
                select(model.id, model.embedding).where(
                    model.id.in_(ids), model.embedding.is_not(None)
                )
            )
            return {str(row[0]): row[1] for row in result.all()}

    async def put_vector(
        self,
        job_type: JobType,
        target_id: str,
        vector: Vector,
        expected_version: int | None = None,
    ) -> bool:
        _require_single_vector_type(job_type)
        model = _SINGLE_VECTOR_MODELS[job_type]
        stmt = update(model).where(model.id == _as_uuid(target_id))
        if expected_version is not None:
            stmt = stmt.where(model.content_version == expected_version)
        async with self._scope() as db:
            result = await db.execute(stmt.values(embedding=list(vector)))
        return result.rowcount > 0

    async def get_profile_vectors(self, photographer_id: str) -> dict[Dimension, Vector]:
        async with self._scope() as db:
            result = await db.execute(
                select(PhotographerProfile).where(
                    PhotographerProfile.photographer_id == _as_uuid(photographer_id)
                )
            )
            profile = result.scalar_one_or_none()
        if profile is None:
            return {}
        return profile_vectors_from_row(profile)

    async def put_profile_vectors(
        self,
        photographer_id: str,
        vectors: dict[Dimension, Vector],
        expected_version: int | None = None,
    ) -> bool:
        values = {
            PROFILE_EMBEDDING_COLUMNS[Dimension(d)]: list(v) for d, v in vectors.items()
        }
        if not values:
            return False
        stmt = update(PhotographerProfile).where(
            PhotographerProfile.photographer_id == _as_uuid(photographer_id)
        )
        if expected_version is not None:
            stmt = stmt.where(PhotographerProfile.content_version == expected_version)
        async with self._scope() as db:
            result = await db.execute(stmt.values(**values))
        return result.rowcount > 0

    async def get_session_answer_vectors(self, session_id: str) -> dict[str, Vector]:
        async with self._scope() as db:
            result = await db.execute(
                select(MatchingSession.text_vectors).where(
                    MatchingSession.id == _as_uuid(session_id)
                )
            )
            return dict(result.scalar_one_or_none() or {})

    async def put_session_answer_vectors(
        self,
        session_id: str,
        vectors: dict[str, Vector],
        expected_version: int | None = None,
    ) -> bool:
        stmt = update(MatchingSession).where(MatchingSession.id == _as_uuid(session_id))
        if expected_version is not None:
            stmt = stmt.where(MatchingSession.content_version == expected_version)
        values = {k: list(v) for k, v in vectors.items()}
        async with self._scope() as db:
            result = await db.execute(stmt.values(text_vectors=values))
        return result.rowcount > 0

    async def content_version(self, job_type: JobType, target_id: str) -> int:
        if job_type == JobType.PHOTOGRAPHER_PROFILE:
            stmt = select(PhotographerProfile.content_version).where(
                PhotographerProfile.photographer_id == _as_uuid(target_id)
            )
        elif job_type == JobType.SESSION_ANSWERS:
            stmt = select(MatchingSession.content_version).where(
                MatchingSession.id == _as_uuid(target_id)
            )
        else:
            model = _SINGLE_VECTOR_MODELS[job_type]
            stmt = select(model.content_version).where(model.id == _as_uuid(target_id))
        async with self._scope() as db:
            result = await db.execute(stmt)
            return result.scalar_one_or_none() or 0

    async def invalidate(self, job_type: JobType, target_id: str) -> None:
        async with self._scope() as db:
            await invalidate_in_session(db, job_type, target_id)

    async def mark_fresh(self, job_type: JobType, target_id: str, at: datetime) -> None:
        async with self._scope() as db:
            await mark_fresh_in_session(db, job_type, target_id, at)

    async def generated_at(self, job_type: JobType, target_id: str) -> datetime | None:
        async with self._scope() as db:
            if job_type == JobType.PHOTOGRAPHER_PROFILE:
                stmt = select(PhotographerProfile.embeddings_generated_at).where(
                    PhotographerProfile.photographer_id == _as_uuid(target_id)
                )
            elif job_type == JobType.SESSION_ANSWERS:
                stmt = select(MatchingSession.text_embedded_at).where(
                    MatchingSession.id == _as_uuid(target_id)
                )
            else:
                model = _SINGLE_VECTOR_MODELS[job_type]
                stmt = select(model.embedding_generated_at).where(
                    model.id == _as_uuid(target_id)
                )
            result = await db.execute(stmt)
            return result.scalar_one_or_none()


# ──────────────────────────────────────────────────────────────────────────────
# Helpers shared with the job queue and the content service, which need to
# touch the embedding columns inside their own transaction.
# ──────────────────────────────────────────────────────────────────────────────


def profile_vectors_from_row(profile: PhotographerProfile) -> dict[Dimension, Vector]:
    vectors: dict[Dimension, Vector] = {}
    for dimension, column in PROFILE_EMBEDDING_COLUMNS.items():
        value = getattr(profile, column)
        if value:
            vectors[dimension] = list(value)
    return vectors


async def invalidate_in_session(db: AsyncSession, job_type: JobType, target_id: str) -> None:
    if job_type == JobType.PHOTOGRAPHER_PROFILE:
        values: dict[str, Any] = {c: None for c in PROFILE_EMBEDDING_COLUMNS.values()}
        values["embeddings_generated_at"] = None
        values["content_version"] = PhotographerProfile.content_version + 1
        stmt = (
            update(PhotographerProfile)
            .where(PhotographerProfile.photographer_id == _as_uuid(target_id))
            .values(**values)
        )
    elif job_type == JobType.SESSION_ANSWERS:
        stmt = (
            update(MatchingSession)
            .where(MatchingSession.id == _as_uuid(target_id))
            .values(
                text_vectors=None,
                text_embedded_at=None,
                content_version=MatchingSession.content_version + 1,
            )
        )
    else:
        model = _SINGLE_VECTOR_MODELS[job_type]
        stmt = (
            update(model)
            .where(model.id == _as_uuid(target_id))
            .values(
                embedding=None,
                embedding_generated_at=None,
                content_version=model.content_version + 1,
            )
        )
    await db.execute(stmt)
    logger.info("embedding_invalidated", job_type=job_type.value, target_id=str(target_id))


async def mark_fresh_in_session(
    db: AsyncSession, job_type: JobType, target_id: str, at: datetime
) -> None:
    # Only targets that still hold their vector(s) become fresh; an edit that
    # landed after the write has cleared them.
    if job_type == JobType.PHOTOGRAPHER_PROFILE:
        present = [
            getattr(PhotographerProfile, c).is_not(None)
            for c in PROFILE_EMBEDDING_COLUMNS.values()
        ]
        stmt = (
            update(PhotographerProfile)
            .where(PhotographerProfile.photographer_id == _as_uuid(target_id), *present)
            .values(embeddings_generated_at=at)
        )
    elif job_type == JobType.SESSION_ANSWERS:
        stmt = (
            update(MatchingSession)
            .where(
                MatchingSession.id == _as_uuid(target_id),
                MatchingSession.text_vectors.is_not(None),
            )
            .values(text_embedded_at=at)
        )
    else:
        model = _SINGLE_VECTOR_MODELS[job_type]
        stmt = (
            update(model)
            .where(model.id == _as_uuid(target_id), model.embedding.is_not(None))
            .values(embedding_generated_at=at)
        )
    await db.execute(stmt)


_vector_store: VectorStore | None = None


def get_vector_store() -> VectorStore:
    global _vector_store
    if _vector_store is None:
        _vector_store = SqlVectorStore()
    return _vector_store
