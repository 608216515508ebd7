"""
Lensmatch — Customer-facing matching API

Create a questionnaire session, rank photographers for it, read the stored
ranking back and record how the customer interacted with each result.
"""

from __future__ import annotations

import uuid

import structlog
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from lensmatch.database import get_db
from lensmatch.schemas.matching import (
    InteractionRequest,
    InteractionResponse,
    MatchCalculateRequest,
    MatchCalculateResponse,
    MatchResultItem,
    SessionCreate,
    SessionCreateResponse,
)
from lensmatch.services.job_queue import get_job_queue
from lensmatch.services.matching_service import MatchingService
from lensmatch.services.session_service import SessionService

logger = structlog.get_logger("lensmatch.api.matching")

router = APIRouter()

# ── Service singletons ────────────────────────────────────────────────────────

_session_service: SessionService | None = None
_matching_service: MatchingService | None = None


def _get_session_service() -> SessionService:
    global _session_service
    if _session_service is None:
        _session_service = SessionService(queue=get_job_queue())
    return _session_service


def _get_matching_service() -> MatchingService:
    global _matching_service
    if _matching_service is None:
        _matching_service = MatchingService(session_service=_get_session_service())
    return _matching_service


# ──────────────────────────────────────────────────────────────────────────────
# POST /sessions — Store answers and derive session vectors
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/sessions",
    response_model=SessionCreateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a matching session from questionnaire answers",
)
async def create_session(
    payload: SessionCreate,
    db: AsyncSession = Depends(get_db),
) -> SessionCreateResponse:
    session = await _get_session_service().create_session(
        db,
        responses=payload.responses,
        subjective_text=payload.subjective_text,
        user_id=str(payload.user_id) if payload.user_id else None,
    )
    return SessionCreateResponse(
        session_id=session.id,
        session_token=session.session_token,
        dimensions_with_vectors=sorted(session.dimension_vectors or {}),
        filters=session.filters or {},
    )


# ──────────────────────────────────────────────────────────────────────────────
# POST /calculate — Rank photographers for a session
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/calculate",
    response_model=MatchCalculateResponse,
    summary="Rank photographers for a session",
)
async def calculate(
    payload: MatchCalculateRequest,
    db: AsyncSession = Depends(get_db),
) -> MatchCalculateResponse:
    """Run filter, score, threshold and top-N for the session.

    Sessions that were already ranked return their stored results unless
    ``force`` is set or result caching is disabled.
    """
    outcome = await _get_matching_service().calculate(
        db, str(payload.session_id), force=payload.force
    )
    results = [MatchResultItem(**item) for item in outcome["results"]]
    return MatchCalculateResponse(
        session_id=outcome["session_id"],
        results=results,
        count=len(results),
        cached=outcome["cached"],
    )


@router.get(
    "/results/{session_id}",
    response_model=list[MatchResultItem],
    summary="Stored ranking for a session",
)
async def get_results(
    session_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> list[MatchResultItem]:
    rows = await _get_matching_service().get_results(db, str(session_id))
    return [MatchResultItem(**row) for row in rows]


@router.post(
    "/results/{session_id}/{photographer_id}/interaction",
    response_model=InteractionResponse,
    summary="Record a view, click or contact on a result",
)
async def record_interaction(
    session_id: uuid.UUID,
    photographer_id: uuid.UUID,
    payload: InteractionRequest,
    db: AsyncSession = Depends(get_db),
) -> InteractionResponse:
    recorded = await _get_matching_service().record_interaction(
        db, str(session_id), str(photographer_id), payload.interaction
    )
    return InteractionResponse(**recorded)
