"""
Lensmatch — Admin matching-configuration API

Dimension weights, ranking settings, and content edits that keep embeddings
consistent (questions, choices, images, photographer profiles).
"""

from __future__ import annotations

import uuid

import structlog
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from lensmatch.database import get_db
from lensmatch.schemas.admin import (
    ChoiceUpdate,
    ContentUpdateResponse,
    DimensionWeightsResponse,
    DimensionWeightsUpdate,
    ImageUpdate,
    MatchingSettingsResponse,
    MatchingSettingsUpdate,
    ProfileUpdate,
    QuestionUpdate,
)
from lensmatch.services.content_service import ContentService
from lensmatch.services.job_queue import get_job_queue
from lensmatch.services.settings_service import MatchingSettingsService
from lensmatch.services.weight_config import WeightConfig

logger = structlog.get_logger("lensmatch.api.admin_matching")

router = APIRouter()

_settings_service: MatchingSettingsService | None = None
_content_service: ContentService | None = None


def _get_settings_service() -> MatchingSettingsService:
    global _settings_service
    if _settings_service is None:
        _settings_service = MatchingSettingsService()
    return _settings_service


def _get_content_service() -> ContentService:
    global _content_service
    if _content_service is None:
        _content_service = ContentService(
            queue=get_job_queue(), settings_service=_get_settings_service()
        )
    return _content_service


def _weights_response(snapshot: WeightConfig) -> DimensionWeightsResponse:
    return DimensionWeightsResponse(
        weights=snapshot.as_percentages(),
        version=snapshot.version,
        drift=round(snapshot.drift, 6),
        active_question_counts={d.value: n for d, n in snapshot.active_question_counts.items()},
        warnings=list(snapshot.warnings),
    )


# ── Weights ───────────────────────────────────────────────────────────────────

@router.get("/weights", response_model=DimensionWeightsResponse)
async def get_weights(db: AsyncSession = Depends(get_db)) -> DimensionWeightsResponse:
    snapshot = await _get_settings_service().refresh_weights(db)
    return _weights_response(snapshot)


@router.put("/weights", response_model=DimensionWeightsResponse)
async def put_weights(
    payload: DimensionWeightsUpdate,
    db: AsyncSession = Depends(get_db),
) -> DimensionWeightsResponse:
    """Set the four dimension percentages (must total 100).

    Each share is split evenly across the active questions of its dimension.
    """
    snapshot = await _get_settings_service().update_dimension_weights(db, payload.weights)
    return _weights_response(snapshot)


# ── Settings ──────────────────────────────────────────────────────────────────

@router.get("/settings", response_model=MatchingSettingsResponse)
async def get_matching_settings(db: AsyncSession = Depends(get_db)) -> MatchingSettingsResponse:
    config = await _get_settings_service().load_config(db)
    return MatchingSettingsResponse(**vars(config))


@router.put("/settings", response_model=MatchingSettingsResponse)
async def put_matching_settings(
    payload: MatchingSettingsUpdate,
    db: AsyncSession = Depends(get_db),
) -> MatchingSettingsResponse:
    updates = payload.model_dump(exclude_unset=True)
    config = await _get_settings_service().update_config(db, updates)
    return MatchingSettingsResponse(**vars(config))


# ── Content ───────────────────────────────────────────────────────────────────

@router.patch("/choices/{choice_id}", response_model=ContentUpdateResponse)
async def patch_choice(
    choice_id: uuid.UUID,
    payload: ChoiceUpdate,
    db: AsyncSession = Depends(get_db),
) -> ContentUpdateResponse:
    choice = await _get_content_service().update_choice(
        db, str(choice_id), label=payload.label, is_active=payload.is_active
    )
    return ContentUpdateResponse(id=choice.id, embedding_stale=choice.embedding_generated_at is None)


@router.patch("/images/{image_id}", response_model=ContentUpdateResponse)
async def patch_image(
    image_id: uuid.UUID,
    payload: ImageUpdate,
    db: AsyncSession = Depends(get_db),
) -> ContentUpdateResponse:
    image = await _get_content_service().update_image(
        db, str(image_id), label=payload.label, url=payload.url, is_active=payload.is_active
    )
    return ContentUpdateResponse(id=image.id, embedding_stale=image.embedding_generated_at is None)


@router.patch("/questions/{question_id}", response_model=ContentUpdateResponse)
async def patch_question(
    question_id: uuid.UUID,
    payload: QuestionUpdate,
    db: AsyncSession = Depends(get_db),
) -> ContentUpdateResponse:
    fields = payload.model_dump(exclude_unset=True)
    question = await _get_content_service().update_question(db, str(question_id), **fields)
    return ContentUpdateResponse(
        id=question.id, embedding_stale=question.embedding_generated_at is None
    )


@router.put("/photographers/{photographer_id}/profile", response_model=ContentUpdateResponse)
async def put_profile(
    photographer_id: uuid.UUID,
    payload: ProfileUpdate,
    db: AsyncSession = Depends(get_db),
) -> ContentUpdateResponse:
    fields = payload.model_dump(exclude_unset=True)
    profile = await _get_content_service().update_profile(db, str(photographer_id), **fields)
    return ContentUpdateResponse(
        id=profile.photographer_id,
        embedding_stale=profile.embeddings_generated_at is None,
        profile_completed=profile.profile_completed,
    )
