"""
Lensmatch — Match ranking.

  filter (HardFilterEngine) → score (ScoringEngine) → threshold
  → stable sort by (-total, photographer_id) → truncate to max_results

The ranker is a pure function of its inputs plus the weight snapshot it is
handed, so two calls with the same session, candidates, config and weights
produce identical output, tie order included.
"""

from __future__ import annotations

from typing import Iterable

import structlog

from lensmatch.domain import (
    MatchingConfig,
    PhotographerCandidate,
    RankedMatch,
    ScoreBreakdown,
    SessionSnapshot,
)
from lensmatch.services.hard_filter import HardFilterEngine
from lensmatch.services.scoring_service import ScoringEngine
from lensmatch.services.weight_config import WeightConfig

logger = structlog.get_logger("lensmatch.ranking_service")


class MatchRanker:
    """Orchestrate filter → score → threshold → sort → top-N."""

    def __init__(
        self,
        hard_filter: HardFilterEngine | None = None,
        scoring_engine: ScoringEngine | None = None,
    ) -> None:
        self.hard_filter = hard_filter or HardFilterEngine()
        self.scoring_engine = scoring_engine or ScoringEngine()

    def rank(
        self,
        session: SessionSnapshot,
        candidates: Iterable[PhotographerCandidate],
        config: MatchingConfig,
        weights: WeightConfig,
    ) -> list[RankedMatch]:
        log = logger.bind(session_id=session.session_id, weights_version=weights.version)

        # Keep the bonus cap in step with the config being ranked under.
        scoring = self.scoring_engine
        if scoring.keyword_bonus_cap != config.keyword_bonus_cap:
            scoring = ScoringEngine(keyword_bonus_cap=config.keyword_bonus_cap)

        considered = 0
        excluded = 0
        below_threshold = 0
        scored: list[tuple[str, ScoreBreakdown]] = []

        for candidate in candidates:
            considered += 1
            if not self.hard_filter.is_eligible(candidate, session.filters, config):
                excluded += 1
                continue

            breakdown = scoring.score(
                session.vectors,
                candidate,
                weights,
                session_keywords=session.filters.keywords,
                enable_keyword_bonus=config.enable_keyword_bonus,
            )
            if breakdown.total < config.min_similarity_score:
                below_threshold += 1
                continue
            scored.append((candidate.photographer_id, breakdown))

        scored.sort(key=lambda item: (-item[1].total, item[0]))
        top = scored[: config.max_results]

        ranked = [
            RankedMatch(photographer_id=pid, rank_position=i, breakdown=breakdown)
            for i, (pid, breakdown) in enumerate(top, start=1)
        ]

        log.info(
            "rank_complete",
            considered=considered,
            excluded_by_filters=excluded,
            below_threshold=below_threshold,
            returned=len(ranked),
            incompletely_scored=sum(1 for r in ranked if r.breakdown.incompletely_scored),
        )
        return ranked
