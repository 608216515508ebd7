"""
Lensmatch — Questionnaire sessions.

Turns a customer's answers into the two things ranking needs:

* ``SessionFilters`` — region / budget / keyword hard-filter inputs read from
  well-known answer keys.
* per-dimension session vectors — for each dimension, the
  ``base_weight``-weighted mean of the embeddings of the options the
  customer picked on that dimension's active questions, plus free-text
  answers once the embedding worker has embedded them.  A dimension with
  nothing usable gets no vector and therefore scores 0.
"""

from __future__ import annotations

import secrets
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

import numpy as np
import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lensmatch.domain import (
    DIMENSIONS,
    Dimension,
    JobType,
    QuestionType,
    SessionFilters,
    SessionSnapshot,
    Vector,
)
from lensmatch.exceptions import NotFoundError
from lensmatch.models.matching import MatchingSession
from lensmatch.models.questionnaire import SurveyQuestion
from lensmatch.services.job_queue import EmbeddingJobQueue, get_job_queue

logger = structlog.get_logger("lensmatch.session_service")

REGION_KEY = "region"
BUDGET_KEY = "budget"
KEYWORDS_KEY = "keywords"

Answer = str | list[str]


# ──────────────────────────────────────────────────────────────────────────────
# Filter extraction
# ──────────────────────────────────────────────────────────────────────────────


def _as_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        items = value
    else:
        items = [value]
    return [str(v).strip() for v in items if str(v).strip()]


def _parse_bound(raw: str) -> int | None:
    cleaned = raw.strip().replace(",", "")
    if not cleaned:
        return None
    try:
        value = int(float(cleaned))
    except ValueError:
        return None
    return value if value > 0 else None


def parse_budget(raw: Any) -> tuple[int | None, int | None]:
    """Parse ``"min-max"`` (either side optional) into integer bounds.

    ``"100000-300000"`` -> (100000, 300000); ``"-300000"`` -> (None, 300000);
    ``"100000"`` or ``"100000-"`` -> (100000, None).  Unparseable input
    yields (None, None), which disables the budget filter for the session.
    Reversed bounds are swapped.
    """
    if raw is None:
        return None, None
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return _parse_bound(str(raw)), None
    text = str(raw).strip()
    if not text:
        return None, None
    low_raw, sep, high_raw = text.partition("-")
    low = _parse_bound(low_raw)
    high = _parse_bound(high_raw) if sep else None
    if low is not None and high is not None and low > high:
        low, high = high, low
    return low, high


def extract_filters(responses: Mapping[str, Any]) -> SessionFilters:
    budget_min, budget_max = parse_budget(responses.get(BUDGET_KEY))
    return SessionFilters(
        regions=_as_list(responses.get(REGION_KEY)),
        budget_min=budget_min,
        budget_max=budget_max,
        keywords=_as_list(responses.get(KEYWORDS_KEY)),
    )


def filters_from_dict(data: Mapping[str, Any] | None) -> SessionFilters:
    if not data:
        return SessionFilters()
    return SessionFilters(
        regions=list(data.get("regions") or []),
        budget_min=data.get("budget_min"),
        budget_max=data.get("budget_max"),
        keywords=list(data.get("keywords") or []),
    )


# ──────────────────────────────────────────────────────────────────────────────
# Session vector derivation
# ──────────────────────────────────────────────────────────────────────────────


@dataclass
class QuestionOptions:
    """A question plus the embeddings of its selectable options."""

    key: str
    dimension: Dimension
    question_type: QuestionType
    base_weight: float
    is_active: bool = True
    is_hard_filter: bool = False
    option_vectors: dict[str, Vector] = field(default_factory=dict)


def question_options_from_row(question: SurveyQuestion) -> QuestionOptions:
    options: dict[str, Vector] = {}
    for choice in question.choices:
        if choice.is_active and choice.embedding:
            options[choice.choice_key] = list(choice.embedding)
    for image in question.images:
        if image.is_active and image.embedding:
            options[image.image_key] = list(image.embedding)
    return QuestionOptions(
        key=question.question_key,
        dimension=Dimension(question.weight_category),
        question_type=QuestionType(question.question_type),
        base_weight=question.base_weight,
        is_active=question.is_active,
        is_hard_filter=question.is_hard_filter,
        option_vectors=options,
    )


def _answer_vector(question: QuestionOptions, answer: Any, text_vectors: Mapping[str, Vector]):
    if question.question_type == QuestionType.TEXTAREA:
        return text_vectors.get(question.key)
    picked = [question.option_vectors[k] for k in _as_list(answer) if k in question.option_vectors]
    if not picked:
        return None
    if len({len(v) for v in picked}) != 1:
        return None
    return np.mean(np.asarray(picked, dtype=float), axis=0)


def derive_session_vectors(
    questions: Iterable[QuestionOptions],
    responses: Mapping[str, Any],
    text_vectors: Mapping[str, Vector] | None = None,
) -> dict[Dimension, Vector]:
    text_vectors = text_vectors or {}
    sums: dict[Dimension, np.ndarray] = {}
    totals: dict[Dimension, float] = {}

    for question in questions:
        if not question.is_active or question.is_hard_filter or question.base_weight <= 0:
            continue
        if question.key not in responses:
            continue
        vector = _answer_vector(question, responses[question.key], text_vectors)
        if vector is None:
            continue
        vector = np.asarray(vector, dtype=float)
        dim = question.dimension
        if dim in sums and sums[dim].shape != vector.shape:
            logger.warning(
                "session_vector_dimension_mismatch",
                question_key=question.key,
                dimension=dim.value,
            )
            continue
        sums[dim] = sums.get(dim, 0.0) + question.base_weight * vector
        totals[dim] = totals.get(dim, 0.0) + question.base_weight

    return {
        dim: (sums[dim] / totals[dim]).tolist()
        for dim in DIMENSIONS
        if dim in sums and totals[dim] > 0
    }


# ──────────────────────────────────────────────────────────────────────────────
# Persistence
# ──────────────────────────────────────────────────────────────────────────────


def snapshot_from_row(session: MatchingSession) -> SessionSnapshot:
    vectors = {
        Dimension(k): list(v) for k, v in (session.dimension_vectors or {}).items() if v
    }
    return SessionSnapshot(
        session_id=str(session.id),
        vectors=vectors,
        filters=filters_from_dict(session.filters),
    )


def free_text_keys(
    questions: Iterable[QuestionOptions], responses: Mapping[str, Any]
) -> list[str]:
    """Keys of active textarea questions the customer actually answered."""
    keys = []
    for question in questions:
        if question.question_type != QuestionType.TEXTAREA or not question.is_active:
            continue
        text = responses.get(question.key)
        if isinstance(text, str) and text.strip():
            keys.append(question.key)
    return keys


def missing_dimensions(session: MatchingSession) -> list[Dimension]:
    stored = session.dimension_vectors or {}
    return [d for d in DIMENSIONS if not stored.get(d.value)]


class SessionService:
    """Creates questionnaire sessions and keeps their dimension vectors current.

    Free-text answers are never embedded while the customer waits: the
    session is stored with vectors from its choice and image answers, and a
    ``session_answers`` job is queued for the embedding worker.  Ranking
    calls ``refresh_vectors``, which re-derives the vectors from the stored
    responses once those answer embeddings (or newer option embeddings)
    are available.
    """

    def __init__(self, queue: EmbeddingJobQueue | None = None) -> None:
        self._queue = queue

    @property
    def queue(self) -> EmbeddingJobQueue:
        if self._queue is None:
            self._queue = get_job_queue()
        return self._queue

    async def load_question_options(self, db_session: AsyncSession) -> list[QuestionOptions]:
        """Active questions with the current embeddings of their options."""
        result = await db_session.execute(
            select(SurveyQuestion).where(SurveyQuestion.is_active.is_(True))
        )
        return [question_options_from_row(q) for q in result.scalars().all()]

    async def create_session(
        self,
        db_session: AsyncSession,
        responses: dict[str, Any],
        subjective_text: str | None = None,
        user_id: str | None = None,
    ) -> MatchingSession:
        questions = await self.load_question_options(db_session)
        vectors = derive_session_vectors(questions, responses)
        filters = extract_filters(responses)

        session = MatchingSession(
            id=uuid.uuid4(),
            session_token=secrets.token_urlsafe(24),
            user_id=uuid.UUID(user_id) if user_id else None,
            responses=responses,
            subjective_text=subjective_text,
            dimension_vectors={d.value: v for d, v in vectors.items()},
            vectors_derived_at=datetime.now(timezone.utc),
            filters=asdict(filters),
        )
        db_session.add(session)
        await db_session.flush()

        text_keys = free_text_keys(questions, responses)
        if text_keys:
            # Committed together with the session.
            await self.queue.enqueue(JobType.SESSION_ANSWERS, str(session.id), db=db_session)

        logger.info(
            "session_created",
            session_id=str(session.id),
            dimensions_with_vectors=[d.value for d in vectors],
            text_answers_queued=len(text_keys),
            regions=filters.regions,
            has_budget=filters.budget_min is not None or filters.budget_max is not None,
        )
        return session

    async def refresh_vectors(
        self, db_session: AsyncSession, session: MatchingSession, force: bool = False
    ) -> bool:
        """Re-derive the session's dimension vectors from its stored responses.

        Runs when ``force`` is set, when a dimension has no vector, or when
        free-text answer embeddings landed after the last derivation.
        Returns True if the vectors were re-derived.
        """
        missing = missing_dimensions(session)
        text_is_newer = session.text_embedded_at is not None and (
            session.vectors_derived_at is None
            or session.text_embedded_at > session.vectors_derived_at
        )
        if not (force or missing or text_is_newer):
            return False

        questions = await self.load_question_options(db_session)
        vectors = derive_session_vectors(
            questions, session.responses or {}, session.text_vectors or {}
        )
        session.dimension_vectors = {d.value: v for d, v in vectors.items()}
        session.vectors_derived_at = datetime.now(timezone.utc)
        await db_session.flush()

        logger.info(
            "session_vectors_refreshed",
            session_id=str(session.id),
            forced=force,
            previously_missing=[d.value for d in missing],
            dimensions_with_vectors=[d.value for d in vectors],
        )
        return True

    async def get_session(self, db_session: AsyncSession, session_id: str) -> MatchingSession:
        try:
            key = uuid.UUID(str(session_id))
        except ValueError:
            raise NotFoundError(f"Matching session {session_id} not found") from None
        session = await db_session.get(MatchingSession, key)
        if session is None:
            raise NotFoundError(f"Matching session {session_id} not found")
        return session

    async def load_snapshot(self, db_session: AsyncSession, session_id: str) -> SessionSnapshot:
        return snapshot_from_row(await self.get_session(db_session, session_id))
