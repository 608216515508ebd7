"""
Lensmatch — Hard eligibility filters.

Hard filters run before any vector work.  Every enabled filter must pass
(AND-combined); a single failure removes the photographer from the result
set regardless of how well they would have scored.

  region : any region the customer asked for is in ``service_regions``
  budget : [price_min, price_max] intersects [budget_min, budget_max]

A filter whose session input is absent (no region answered, no budget
given) passes.  Incomplete profiles are rejected outright: scoring a profile
that is missing descriptions would be meaningless.
"""

from __future__ import annotations

import structlog

from lensmatch.domain import MatchingConfig, PhotographerCandidate, SessionFilters

logger = structlog.get_logger("lensmatch.hard_filter")


class HardFilterEngine:
    """Evaluate exclusionary constraints for a candidate photographer."""

    REASON_INCOMPLETE = "incomplete_profile"
    REASON_REGION = "region"
    REASON_BUDGET = "budget"

    def is_eligible(
        self,
        candidate: PhotographerCandidate,
        filters: SessionFilters,
        config: MatchingConfig,
    ) -> bool:
        return not self.rejection_reasons(candidate, filters, config)

    def rejection_reasons(
        self,
        candidate: PhotographerCandidate,
        filters: SessionFilters,
        config: MatchingConfig,
    ) -> list[str]:
        """Return the names of every check the candidate fails (empty = eligible)."""
        reasons: list[str] = []
        if not candidate.profile_completed:
            reasons.append(self.REASON_INCOMPLETE)
        if config.enable_region_filter and not self._region_matches(candidate, filters):
            reasons.append(self.REASON_REGION)
        if config.enable_budget_filter and not self._budget_overlaps(candidate, filters):
            reasons.append(self.REASON_BUDGET)

        if reasons:
            logger.debug(
                "candidate_rejected",
                photographer_id=candidate.photographer_id,
                reasons=reasons,
            )
        return reasons

    # ── Individual checks ──────────────────────────────────────────────

    def _region_matches(
        self, candidate: PhotographerCandidate, filters: SessionFilters
    ) -> bool:
        if not filters.regions:
            return True
        return any(region in candidate.service_regions for region in filters.regions)

    def _budget_overlaps(
        self, candidate: PhotographerCandidate, filters: SessionFilters
    ) -> bool:
        if filters.budget_min is None and filters.budget_max is None:
            return True

        # Open-ended ranges extend to +/- infinity on the missing side.
        price_min = candidate.price_min if candidate.price_min is not None else float("-inf")
        price_max = candidate.price_max if candidate.price_max is not None else float("inf")
        budget_min = filters.budget_min if filters.budget_min is not None else float("-inf")
        budget_max = filters.budget_max if filters.budget_max is not None else float("inf")

        return price_min <= budget_max and budget_min <= price_max
