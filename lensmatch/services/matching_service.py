"""
Lensmatch — Ranking orchestration for stored questionnaire sessions.

  load session → check weight revision → refresh session vectors
  → load candidates → MatchRanker.rank → persist matching_results
  → mark session completed → cache

With ``cache_results`` on, a session that was already ranked returns its
stored results (Redis first, then ``matching_results``) without re-ranking.
``force=True`` always re-ranks and replaces the stored results.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from lensmatch.cache import ResultCache
from lensmatch.domain import PhotographerCandidate, RankedMatch
from lensmatch.exceptions import InvalidContentError, NotFoundError
from lensmatch.models.matching import MatchingResult, MatchingSession
from lensmatch.models.photographer import Photographer, PhotographerProfile
from lensmatch.services.ranking_service import MatchRanker
from lensmatch.services.session_service import SessionService, snapshot_from_row
from lensmatch.services.settings_service import MatchingSettingsService
from lensmatch.services.vector_store import profile_vectors_from_row

logger = structlog.get_logger("lensmatch.matching_service")

INTERACTIONS = {
    "viewed": "viewed_at",
    "clicked": "clicked_at",
    "contacted": "contacted_at",
}


def candidate_from_rows(photographer: Photographer, profile: PhotographerProfile) -> PhotographerCandidate:
    return PhotographerCandidate(
        photographer_id=str(photographer.id),
        service_regions=frozenset(profile.service_regions or []),
        price_min=profile.price_min,
        price_max=profile.price_max,
        profile_completed=profile.profile_completed,
        keywords={k.keyword: k.proficiency_level for k in photographer.keywords},
        vectors=profile_vectors_from_row(profile),
    )


def result_to_dict(row: MatchingResult) -> dict[str, Any]:
    return {
        "photographer_id": str(row.photographer_id),
        "rank_position": row.rank_position,
        "style_emotion": row.style_emotion_score,
        "communication_psychology": row.communication_psychology_score,
        "purpose_story": row.purpose_story_score,
        "companion": row.companion_score,
        "keyword_bonus": row.keyword_bonus,
        "total": row.total_score,
        "incompletely_scored": row.incompletely_scored,
    }


def ranked_to_row(session_id: uuid.UUID, match: RankedMatch) -> MatchingResult:
    b = match.breakdown
    return MatchingResult(
        session_id=session_id,
        photographer_id=uuid.UUID(match.photographer_id),
        rank_position=match.rank_position,
        style_emotion_score=b.style_emotion,
        communication_psychology_score=b.communication_psychology,
        purpose_story_score=b.purpose_story,
        companion_score=b.companion,
        keyword_bonus=b.keyword_bonus,
        total_score=b.total,
        incompletely_scored=b.incompletely_scored,
    )


class MatchingService:
    """Runs and stores rankings for questionnaire sessions."""

    def __init__(
        self,
        ranker: MatchRanker | None = None,
        session_service: SessionService | None = None,
        settings_service: MatchingSettingsService | None = None,
        result_cache: ResultCache | None = None,
    ) -> None:
        self.ranker = ranker or MatchRanker()
        self.session_service = session_service or SessionService()
        self.settings_service = settings_service or MatchingSettingsService()
        self.result_cache = result_cache or ResultCache()

    # ── Public API ────────────────────────────────────────────────────

    async def load_candidates(self, db_session: AsyncSession) -> list[PhotographerCandidate]:
        """Approved photographers with a complete profile."""
        result = await db_session.execute(
            select(Photographer, PhotographerProfile)
            .join(PhotographerProfile, PhotographerProfile.photographer_id == Photographer.id)
            .where(
                Photographer.approval_status == "approved",
                PhotographerProfile.profile_completed.is_(True),
            )
        )
        return [candidate_from_rows(p, profile) for p, profile in result.all()]

    async def calculate(
        self,
        db_session: AsyncSession,
        session_id: str,
        force: bool = False,
    ) -> dict[str, Any]:
        log = logger.bind(session_id=str(session_id))
        session = await self.session_service.get_session(db_session, session_id)
        config = await self.settings_service.load_config(db_session)

        if config.cache_results and not force and session.completed_at is not None:
            cached = await self._stored_results(db_session, session)
            log.info("match_results_reused", count=len(cached))
            return {"session_id": str(session.id), "results": cached, "cached": True}

        weights = await self.settings_service.current_weights(db_session)
        await self.session_service.refresh_vectors(db_session, session, force=force)

        candidates = await self.load_candidates(db_session)
        ranked = self.ranker.rank(snapshot_from_row(session), candidates, config, weights)

        await db_session.execute(
            delete(MatchingResult).where(MatchingResult.session_id == session.id)
        )
        for match in ranked:
            db_session.add(ranked_to_row(session.id, match))
        session.completed_at = datetime.now(timezone.utc)
        await db_session.flush()

        results = [match.to_dict() for match in ranked]
        if config.cache_results:
            await self.result_cache.set(str(session.id), results)
        else:
            await self.result_cache.invalidate(str(session.id))

        log.info(
            "match_calculated",
            candidates=len(candidates),
            returned=len(results),
            weights_version=weights.version,
        )
        return {"session_id": str(session.id), "results": results, "cached": False}

    async def get_results(self, db_session: AsyncSession, session_id: str) -> list[dict[str, Any]]:
        session = await self.session_service.get_session(db_session, session_id)
        if session.completed_at is None:
            raise NotFoundError(f"Matching session {session_id} has not been ranked yet")
        return await self._load_result_rows(db_session, session.id)

    async def record_interaction(
        self,
        db_session: AsyncSession,
        session_id: str,
        photographer_id: str,
        interaction: str,
    ) -> dict[str, Any]:
        column = INTERACTIONS.get(interaction)
        if column is None:
            raise InvalidContentError(
                f"Unknown interaction {interaction!r}; expected one of {sorted(INTERACTIONS)}"
            )
        try:
            sid = uuid.UUID(str(session_id))
            pid = uuid.UUID(str(photographer_id))
        except ValueError:
            raise NotFoundError("Matching result not found") from None

        result = await db_session.execute(
            select(MatchingResult).where(
                MatchingResult.session_id == sid,
                MatchingResult.photographer_id == pid,
            )
        )
        row = result.scalar_one_or_none()
        if row is None:
            raise NotFoundError(
                f"No result for photographer {photographer_id} in session {session_id}"
            )
        # First occurrence wins.
        if getattr(row, column) is None:
            setattr(row, column, datetime.now(timezone.utc))
            await db_session.flush()

        logger.info(
            "match_interaction_recorded",
            session_id=str(sid),
            photographer_id=str(pid),
            interaction=interaction,
        )
        return {
            "session_id": str(sid),
            "photographer_id": str(pid),
            "viewed_at": row.viewed_at,
            "clicked_at": row.clicked_at,
            "contacted_at": row.contacted_at,
        }

    # ── Helpers ───────────────────────────────────────────────────────

    async def _stored_results(
        self, db_session: AsyncSession, session: MatchingSession
    ) -> list[dict[str, Any]]:
        cached = await self.result_cache.get(str(session.id))
        if cached is not None:
            return cached
        rows = await self._load_result_rows(db_session, session.id)
        await self.result_cache.set(str(session.id), rows)
        return rows

    async def _load_result_rows(
        self, db_session: AsyncSession, session_id: uuid.UUID
    ) -> list[dict[str, Any]]:
        result = await db_session.execute(
            select(MatchingResult)
            .where(MatchingResult.session_id == session_id)
            .order_by(MatchingResult.rank_position)
        )
        return [result_to_dict(row) for row in result.scalars().all()]
