"""Unit tests for ScoringEngine — cosine similarity, weighting and keyword bonus."""
import pytest

from lensmatch.domain import DIMENSIONS, Dimension
from lensmatch.services.scoring_service import (
    ScoringEngine,
    cosine_similarity,
    normalised_similarity,
)


@pytest.fixture
def engine():
    return ScoringEngine(keyword_bonus_cap=0.1)


class TestSimilarity:

    def test_identical_vectors(self):
        assert cosine_similarity([1.0, 2.0, 3.0], [2.0, 4.0, 6.0]) == pytest.approx(1.0)

    def test_normalised_range(self):
        """Cosine [-1, 1] maps onto [0, 1]."""
        assert normalised_similarity([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)
        assert normalised_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.5)
        assert normalised_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(0.0)

    @pytest.mark.parametrize(
        "a, b",
        [
            ([0.0, 0.0], [1.0, 0.0]),   # zero vector
            ([1.0, 0.0], [1.0]),        # length mismatch
            ([], []),                   # empty
            (None, [1.0]),              # absent
        ],
    )
    def test_undefined_similarity(self, a, b):
        assert cosine_similarity(a, b) is None


class TestScore:

    def test_perfect_match(self, engine, session_vectors, default_weights, make_candidate):
        breakdown = engine.score(session_vectors, make_candidate(), default_weights)
        assert breakdown.total == pytest.approx(1.0)
        assert breakdown.style_emotion == pytest.approx(0.4)
        assert breakdown.companion == pytest.approx(0.1)
        assert not breakdown.incompletely_scored

    def test_missing_companion_vector_flagged(
        self, engine, session_vectors, default_weights, make_candidate
    ):
        """A missing dimension scores 0 and flags the result instead of raising."""
        vectors = {d: [1.0, 0.0, 0.0] for d in DIMENSIONS if d != Dimension.COMPANION}
        breakdown = engine.score(session_vectors, make_candidate(vectors=vectors), default_weights)
        assert breakdown.companion == 0.0
        assert breakdown.total == pytest.approx(0.9)
        assert breakdown.incompletely_scored
        assert breakdown.missing_dimensions == (Dimension.COMPANION,)

    def test_missing_session_vector_flagged(self, engine, default_weights, make_candidate):
        session = {Dimension.STYLE_EMOTION: [1.0, 0.0, 0.0]}
        breakdown = engine.score(session, make_candidate(), default_weights)
        assert breakdown.total == pytest.approx(0.4)
        assert len(breakdown.missing_dimensions) == 3

    def test_total_is_bounded(self, engine, session_vectors, default_weights, make_candidate):
        candidate = make_candidate(keywords={"snapshot": 5})
        breakdown = engine.score(
            session_vectors,
            candidate,
            default_weights,
            session_keywords=["snapshot"],
            enable_keyword_bonus=True,
        )
        assert breakdown.total == pytest.approx(1.1)
        assert 0.0 <= breakdown.total <= 1.0 + engine.keyword_bonus_cap

    def test_bonus_disabled(self, engine, session_vectors, default_weights, make_candidate):
        candidate = make_candidate(keywords={"snapshot": 5})
        breakdown = engine.score(
            session_vectors, candidate, default_weights, session_keywords=["snapshot"]
        )
        assert breakdown.keyword_bonus == 0.0


class TestKeywordBonus:

    def test_partial_overlap(self, engine):
        """One of two wanted keywords at full proficiency earns half the cap."""
        bonus = engine.keyword_bonus(["snapshot", "outdoor"], {"snapshot": 5})
        assert bonus == pytest.approx(0.05)

    def test_full_overlap_hits_cap(self, engine):
        bonus = engine.keyword_bonus(["snapshot", "outdoor"], {"snapshot": 5, "outdoor": 5})
        assert bonus == pytest.approx(0.1)

    def test_monotonic_in_proficiency(self, engine):
        bonuses = [engine.keyword_bonus(["film"], {"film": level}) for level in range(1, 6)]
        assert bonuses == sorted(bonuses)
        assert bonuses[0] < bonuses[-1]

    def test_monotonic_in_overlap(self, engine):
        declared = {"film": 3, "night": 3, "studio": 3}
        wanted = ["film", "night", "studio"]
        bonuses = [engine.keyword_bonus(wanted, dict(list(declared.items())[:n])) for n in range(4)]
        assert bonuses == sorted(bonuses)

    def test_case_insensitive(self, engine):
        assert engine.keyword_bonus(["Snapshot"], {" snapshot ": 5}) == pytest.approx(0.1)

    def test_out_of_range_level_clamped(self, engine):
        assert engine.keyword_bonus(["film"], {"film": 9}) == pytest.approx(0.1)

    def test_no_keywords(self, engine):
        assert engine.keyword_bonus([], {"film": 5}) == 0.0
        assert engine.keyword_bonus(["film"], {}) == 0.0


class TestCombine:

    MIXED = {
        Dimension.STYLE_EMOTION: 0.8,
        Dimension.COMMUNICATION_PSYCHOLOGY: 0.6,
        Dimension.PURPOSE_STORY: 0.5,
        Dimension.COMPANION: 0.9,
    }

    def test_weighted_sum_of_mixed_similarities(self, engine, default_weights):
        """0.8*0.4 + 0.6*0.3 + 0.5*0.2 + 0.9*0.1 = 0.69"""
        breakdown = engine.combine(self.MIXED, default_weights)
        assert breakdown.style_emotion == pytest.approx(0.32)
        assert breakdown.communication_psychology == pytest.approx(0.18)
        assert breakdown.purpose_story == pytest.approx(0.10)
        assert breakdown.companion == pytest.approx(0.09)
        assert breakdown.total == pytest.approx(0.69)
        assert breakdown.total < 0.7

    @pytest.mark.parametrize("dimension", DIMENSIONS)
    def test_total_non_decreasing_in_one_dimension(self, engine, default_weights, dimension):
        totals = [
            engine.combine({**self.MIXED, dimension: step / 10}, default_weights).total
            for step in range(11)
        ]
        assert all(a <= b for a, b in zip(totals, totals[1:]))
        assert totals[0] < totals[-1]
