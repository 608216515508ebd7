"""
Lensmatch — Four-dimension similarity scoring.

For each dimension d:

  similarity_d = clamp((cos(session_d, profile_d) + 1) / 2, 0, 1)
  weighted_d   = weight_d × similarity_d

The optional keyword bonus rewards overlap between the keywords a customer
picked and the photographer's declared specialties, scaled by proficiency
(1-5) and capped at ``keyword_bonus_cap`` (10% of the maximum base score by
default):

  bonus = cap × Σ_{k ∈ overlap} (proficiency_k / 5) / |session_keywords|

  total = Σ weighted_d + bonus          ∈ [0, 1 + cap]

A dimension whose vector is missing on either side (not embedded yet, or a
zero / mismatched vector) scores 0 instead of raising, and the breakdown is
flagged ``incompletely_scored``.
"""

from __future__ import annotations

import math
from typing import Mapping, Sequence

import numpy as np
import structlog

from lensmatch.domain import (
    DIMENSIONS,
    Dimension,
    PhotographerCandidate,
    ScoreBreakdown,
    Vector,
)
from lensmatch.services.weight_config import WeightConfig

logger = structlog.get_logger("lensmatch.scoring_service")


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float | None:
    """Cosine similarity, or ``None`` when it is undefined for the pair."""
    if a is None or b is None or len(a) == 0 or len(a) != len(b):
        return None
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if norm == 0.0 or not math.isfinite(norm):
        return None
    return float(np.dot(va, vb) / norm)


def normalised_similarity(a: Sequence[float] | None, b: Sequence[float] | None) -> float | None:
    """Map cosine similarity from [-1, 1] onto [0, 1]."""
    cos = cosine_similarity(a, b)
    if cos is None:
        return None
    return min(1.0, max(0.0, (cos + 1.0) / 2.0))


class ScoringEngine:
    """Score a photographer against a session's per-dimension vectors."""

    MAX_PROFICIENCY: int = 5
    DEFAULT_KEYWORD_BONUS_CAP: float = 0.1

    def __init__(self, keyword_bonus_cap: float = DEFAULT_KEYWORD_BONUS_CAP) -> None:
        self.keyword_bonus_cap = keyword_bonus_cap

    def score(
        self,
        session_vectors: Mapping[Dimension, Vector],
        candidate: PhotographerCandidate,
        weights: WeightConfig,
        session_keywords: Sequence[str] = (),
        enable_keyword_bonus: bool = False,
    ) -> ScoreBreakdown:
        similarities: dict[Dimension, float] = {}
        missing: list[Dimension] = []

        for dimension in DIMENSIONS:
            similarity = normalised_similarity(
                session_vectors.get(dimension),
                candidate.vectors.get(dimension),
            )
            if similarity is None:
                missing.append(dimension)
                similarity = 0.0
            similarities[dimension] = similarity

        return self.combine(
            similarities,
            weights,
            keyword_bonus=(
                self.keyword_bonus(session_keywords, candidate.keywords)
                if enable_keyword_bonus
                else 0.0
            ),
            missing=missing,
            photographer_id=candidate.photographer_id,
        )

    def combine(
        self,
        similarities: Mapping[Dimension, float],
        weights: WeightConfig,
        keyword_bonus: float = 0.0,
        missing: Sequence[Dimension] = (),
        photographer_id: str | None = None,
    ) -> ScoreBreakdown:
        """Apply dimension weights to raw [0, 1] similarities and add the bonus."""
        weighted = {
            d: weights.weight_for(d) * min(1.0, max(0.0, similarities.get(d, 0.0)))
            for d in DIMENSIONS
        }
        total = sum(weighted.values()) + keyword_bonus

        if missing:
            logger.info(
                "candidate_incompletely_scored",
                photographer_id=photographer_id,
                missing_dimensions=[d.value for d in missing],
            )

        return ScoreBreakdown(
            style_emotion=weighted[Dimension.STYLE_EMOTION],
            communication_psychology=weighted[Dimension.COMMUNICATION_PSYCHOLOGY],
            purpose_story=weighted[Dimension.PURPOSE_STORY],
            companion=weighted[Dimension.COMPANION],
            keyword_bonus=keyword_bonus,
            total=total,
            incompletely_scored=bool(missing),
            missing_dimensions=tuple(missing),
        )

    def keyword_bonus(
        self,
        session_keywords: Sequence[str],
        proficiency: Mapping[str, int],
    ) -> float:
        """Bonus for declared specialties the customer asked for, ≤ cap."""
        wanted = {k.strip().lower() for k in session_keywords if k and k.strip()}
        if not wanted or not proficiency:
            return 0.0

        declared = {k.strip().lower(): level for k, level in proficiency.items()}
        overlap = 0.0
        for keyword in wanted:
            level = declared.get(keyword)
            if level is None:
                continue
            level = min(self.MAX_PROFICIENCY, max(1, int(level)))
            overlap += level / self.MAX_PROFICIENCY

        return min(self.keyword_bonus_cap, self.keyword_bonus_cap * overlap / len(wanted))
