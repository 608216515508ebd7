"""
Lensmatch — Content edits that keep embeddings consistent.

Any edit that changes the text an embedding was derived from clears that
embedding (vector and ``embedding_generated_at``), bumps its
``content_version`` and, when ``auto_refresh_embeddings`` is on, enqueues a
regeneration job in the same transaction.  With the toggle off the content is
left stale until an operator runs generate-all.

Photographer profiles additionally recompute ``profile_completed`` on every
edit; jobs are only ever enqueued for complete profiles.
"""

from __future__ import annotations

import uuid
from typing import Any, Mapping

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lensmatch.domain import DIMENSIONS, Dimension, JobType
from lensmatch.exceptions import InvalidContentError, NotFoundError
from lensmatch.models.photographer import Photographer, PhotographerKeyword, PhotographerProfile
from lensmatch.models.questionnaire import SurveyChoice, SurveyImage, SurveyQuestion
from lensmatch.services.job_queue import EmbeddingJobQueue
from lensmatch.services.settings_service import MatchingSettingsService
from lensmatch.services.vector_store import PROFILE_EMBEDDING_COLUMNS

logger = structlog.get_logger("lensmatch.content_service")

_UNSET: Any = object()

# Session answers are enqueued by session creation, never by generate-all.
CONTENT_JOB_TYPES = (JobType.QUESTION, JobType.CHOICE, JobType.IMAGE, JobType.PHOTOGRAPHER_PROFILE)


def _parse_id(raw: str, what: str) -> uuid.UUID:
    try:
        return uuid.UUID(str(raw))
    except ValueError:
        raise NotFoundError(f"{what} {raw} not found") from None


def _bump_content_version(row: Any) -> None:
    # Rendered as ``content_version = content_version + 1`` so concurrent edits
    # of the same row never collapse into one increment.
    row.content_version = type(row).content_version + 1


def is_profile_complete(descriptions: Mapping[Dimension, str | None]) -> bool:
    """True only when all four dimension descriptions are non-blank."""
    return all((descriptions.get(d) or "").strip() for d in DIMENSIONS)


class ContentService:
    """Admin-side edits to questions, options and photographer profiles."""

    def __init__(
        self,
        queue: EmbeddingJobQueue,
        settings_service: MatchingSettingsService | None = None,
    ) -> None:
        self.queue = queue
        self.settings_service = settings_service or MatchingSettingsService()

    async def _auto_refresh(self, db_session: AsyncSession) -> bool:
        config = await self.settings_service.load_config(db_session)
        return config.auto_refresh_embeddings

    async def _refresh(
        self, db_session: AsyncSession, job_type: JobType, target_id: uuid.UUID
    ) -> str | None:
        if not await self._auto_refresh(db_session):
            logger.info("embedding_left_stale", job_type=job_type.value, target_id=str(target_id))
            return None
        return await self.queue.enqueue(job_type, str(target_id), db=db_session)

    # ── Questionnaire ─────────────────────────────────────────────────

    async def update_choice(
        self,
        db_session: AsyncSession,
        choice_id: str,
        label: str | None = None,
        is_active: bool | None = None,
    ) -> SurveyChoice:
        choice = await db_session.get(SurveyChoice, _parse_id(choice_id, "Choice"))
        if choice is None:
            raise NotFoundError(f"Choice {choice_id} not found")

        text_changed = False
        if label is not None:
            if not label.strip():
                raise InvalidContentError("Choice label must not be blank")
            text_changed = label != choice.choice_label
            choice.choice_label = label
        if is_active is not None:
            choice.is_active = is_active

        if text_changed:
            choice.embedding = None
            choice.embedding_generated_at = None
            _bump_content_version(choice)
        needs_job = choice.is_active and (text_changed or choice.embedding is None)
        await db_session.flush()
        if needs_job:
            await self._refresh(db_session, JobType.CHOICE, choice.id)
        logger.info("choice_updated", choice_id=str(choice.id), text_changed=text_changed)
        return choice

    async def update_image(
        self,
        db_session: AsyncSession,
        image_id: str,
        label: str | None = None,
        url: str | None = None,
        is_active: bool | None = None,
    ) -> SurveyImage:
        image = await db_session.get(SurveyImage, _parse_id(image_id, "Image"))
        if image is None:
            raise NotFoundError(f"Image {image_id} not found")

        text_changed = False
        if label is not None:
            if not label.strip():
                raise InvalidContentError("Image label must not be blank")
            text_changed = text_changed or label != image.image_label
            image.image_label = label
        if url is not None:
            if not url.strip():
                raise InvalidContentError("Image URL must not be blank")
            text_changed = text_changed or url != image.image_url
            image.image_url = url
        if is_active is not None:
            image.is_active = is_active

        if text_changed:
            image.embedding = None
            image.embedding_generated_at = None
            _bump_content_version(image)
        needs_job = image.is_active and (text_changed or image.embedding is None)
        await db_session.flush()
        if needs_job:
            await self._refresh(db_session, JobType.IMAGE, image.id)
        logger.info("image_updated", image_id=str(image.id), text_changed=text_changed)
        return image

    async def update_question(
        self,
        db_session: AsyncSession,
        question_id: str,
        title: str | None = None,
        description: str | None = _UNSET,
        is_active: bool | None = None,
        base_weight: float | None = None,
    ) -> SurveyQuestion:
        question = await db_session.get(SurveyQuestion, _parse_id(question_id, "Question"))
        if question is None:
            raise NotFoundError(f"Question {question_id} not found")

        text_changed = False
        if title is not None:
            if not title.strip():
                raise InvalidContentError("Question title must not be blank")
            text_changed = title != question.question_title
            question.question_title = title
        if description is not _UNSET:
            text_changed = text_changed or description != question.question_description
            question.question_description = description

        weights_changed = False
        if base_weight is not None:
            if not 0.0 <= base_weight <= 1.0:
                raise InvalidContentError(f"base_weight must be between 0 and 1, got {base_weight}")
            weights_changed = base_weight != question.base_weight
            question.base_weight = base_weight
        if is_active is not None:
            weights_changed = weights_changed or is_active != question.is_active
            question.is_active = is_active

        if text_changed:
            question.embedding = None
            question.embedding_generated_at = None
            _bump_content_version(question)
        await db_session.flush()

        if text_changed and question.is_active:
            await self._refresh(db_session, JobType.QUESTION, question.id)
        if weights_changed:
            await self.settings_service.bump_weights_revision(db_session)
            await db_session.commit()
            snapshot = await self.settings_service.refresh_weights(db_session)
            logger.info(
                "question_weights_changed",
                question_id=str(question.id),
                drift=round(snapshot.drift, 6),
            )
        return question

    # ── Photographer profiles ─────────────────────────────────────────

    async def update_profile(
        self,
        db_session: AsyncSession,
        photographer_id: str,
        descriptions: Mapping[Dimension | str, str | None] | None = None,
        service_regions: list[str] | None = None,
        price_min: int | None = _UNSET,
        price_max: int | None = _UNSET,
        keywords: Mapping[str, int] | None = None,
    ) -> PhotographerProfile:
        pid = _parse_id(photographer_id, "Photographer")
        photographer = await db_session.get(Photographer, pid)
        if photographer is None:
            raise NotFoundError(f"Photographer {photographer_id} not found")

        profile = await db_session.get(PhotographerProfile, pid)
        created = profile is None
        if created:
            profile = PhotographerProfile(photographer_id=pid, service_regions=[])
            db_session.add(profile)

        text_changed = False
        for key, text in (descriptions or {}).items():
            try:
                dimension = Dimension(key)
            except ValueError:
                raise InvalidContentError(f"Unknown dimension: {key!r}") from None
            column = f"{dimension.value}_description"
            if getattr(profile, column) != text:
                setattr(profile, column, text)
                text_changed = True

        if service_regions is not None:
            profile.service_regions = sorted({r.strip() for r in service_regions if r.strip()})
        if price_min is not _UNSET:
            profile.price_min = price_min
        if price_max is not _UNSET:
            profile.price_max = price_max
        if (
            profile.price_min is not None
            and profile.price_max is not None
            and profile.price_min > profile.price_max
        ):
            raise InvalidContentError("price_min must not exceed price_max")

        if keywords is not None:
            await self._replace_keywords(db_session, pid, keywords)

        was_completed = profile.profile_completed
        profile.profile_completed = is_profile_complete(
            {d: getattr(profile, f"{d.value}_description") for d in DIMENSIONS}
        )
        if text_changed:
            for column in PROFILE_EMBEDDING_COLUMNS.values():
                setattr(profile, column, None)
            profile.embeddings_generated_at = None
            if not created:
                _bump_content_version(profile)
        await db_session.flush()

        missing_vectors = profile.embeddings_generated_at is None
        if profile.profile_completed and (text_changed or missing_vectors):
            await self._refresh(db_session, JobType.PHOTOGRAPHER_PROFILE, pid)

        logger.info(
            "profile_updated",
            photographer_id=str(pid),
            text_changed=text_changed,
            profile_completed=profile.profile_completed,
            was_completed=was_completed,
        )
        return profile

    async def _replace_keywords(
        self, db_session: AsyncSession, photographer_id: uuid.UUID, keywords: Mapping[str, int]
    ) -> None:
        cleaned: dict[str, int] = {}
        for keyword, level in keywords.items():
            name = keyword.strip()
            if not name:
                continue
            if isinstance(level, bool) or not isinstance(level, int) or not 1 <= level <= 5:
                raise InvalidContentError(
                    f"Proficiency for {name!r} must be an integer 1-5, got {level!r}"
                )
            cleaned[name] = level

        existing = await db_session.execute(
            select(PhotographerKeyword).where(
                PhotographerKeyword.photographer_id == photographer_id
            )
        )
        by_name = {row.keyword: row for row in existing.scalars().all()}
        for name, row in by_name.items():
            if name not in cleaned:
                await db_session.delete(row)
        for name, level in cleaned.items():
            if name in by_name:
                by_name[name].proficiency_level = level
            else:
                db_session.add(
                    PhotographerKeyword(
                        photographer_id=photographer_id, keyword=name, proficiency_level=level
                    )
                )

    # ── Generate-all ──────────────────────────────────────────────────

    async def enqueue_missing(self, db_session: AsyncSession) -> dict[str, int]:
        """Enqueue a job for every active option and complete profile lacking embeddings."""
        counts = {job_type.value: 0 for job_type in CONTENT_JOB_TYPES}

        choices = await db_session.execute(
            select(SurveyChoice.id).where(
                SurveyChoice.is_active.is_(True), SurveyChoice.embedding.is_(None)
            )
        )
        for choice_id in choices.scalars().all():
            await self.queue.enqueue(JobType.CHOICE, str(choice_id), db=db_session)
            counts[JobType.CHOICE.value] += 1

        images = await db_session.execute(
            select(SurveyImage.id).where(
                SurveyImage.is_active.is_(True), SurveyImage.embedding.is_(None)
            )
        )
        for image_id in images.scalars().all():
            await self.queue.enqueue(JobType.IMAGE, str(image_id), db=db_session)
            counts[JobType.IMAGE.value] += 1

        profiles = await db_session.execute(
            select(PhotographerProfile.photographer_id).where(
                PhotographerProfile.profile_completed.is_(True),
                PhotographerProfile.embeddings_generated_at.is_(None),
            )
        )
        for pid in profiles.scalars().all():
            await self.queue.enqueue(JobType.PHOTOGRAPHER_PROFILE, str(pid), db=db_session)
            counts[JobType.PHOTOGRAPHER_PROFILE.value] += 1

        logger.info("generate_all_enqueued", **counts)
        return counts
