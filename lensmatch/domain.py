"""
Lensmatch — Core domain types shared by the scoring path and the embedding
pipeline.

These are plain enums and dataclasses with no database dependency.  The
scoring path (HardFilterEngine -> ScoringEngine -> MatchRanker) operates only
on these snapshots, which is what lets it run on any number of request
handlers without locks.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


Vector = list[float]


class Dimension(str, Enum):
    """The four weighted matching axes."""

    STYLE_EMOTION = "style_emotion"
    COMMUNICATION_PSYCHOLOGY = "communication_psychology"
    PURPOSE_STORY = "purpose_story"
    COMPANION = "companion"


# Canonical iteration order for every per-dimension computation.
DIMENSIONS: tuple[Dimension, ...] = (
    Dimension.STYLE_EMOTION,
    Dimension.COMMUNICATION_PSYCHOLOGY,
    Dimension.PURPOSE_STORY,
    Dimension.COMPANION,
)


class QuestionType(str, Enum):
    SINGLE_CHOICE = "single_choice"
    IMAGE_CHOICE = "image_choice"
    TEXTAREA = "textarea"
    MULTIPLE_CHOICE = "multiple_choice"


class JobType(str, Enum):
    """Kinds of content an embedding job can target."""

    QUESTION = "question"
    CHOICE = "choice"
    IMAGE = "image"
    PHOTOGRAPHER_PROFILE = "photographer_profile"
    SESSION_ANSWERS = "session_answers"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class BatchStatus(str, Enum):
    COMPLETED = "completed"
    PARTIAL = "partial"


@dataclass
class EmbeddingJob:
    """Snapshot of one row of the embedding job queue."""

    id: str
    job_type: JobType
    target_id: str
    status: JobStatus = JobStatus.PENDING
    attempts: int = 0
    error_message: str | None = None
    created_at: datetime | None = None
    claimed_at: datetime | None = None
    claimed_by: str | None = None
    processed_at: datetime | None = None


@dataclass(frozen=True)
class QuestionWeightInfo:
    """The slice of a questionnaire question that weight bookkeeping needs."""

    id: str
    dimension: Dimension
    base_weight: float
    is_active: bool = True
    is_hard_filter: bool = False

    @property
    def counts_toward_score(self) -> bool:
        return self.is_active and not self.is_hard_filter


@dataclass
class PhotographerCandidate:
    """A photographer as seen by the scoring path.

    ``vectors`` holds whichever per-dimension profile embeddings exist;
    dimensions that have not been embedded yet are simply absent.
    """

    photographer_id: str
    service_regions: frozenset[str] = frozenset()
    price_min: int | None = None
    price_max: int | None = None
    profile_completed: bool = False
    keywords: dict[str, int] = field(default_factory=dict)
    vectors: dict[Dimension, Vector] = field(default_factory=dict)


@dataclass
class SessionFilters:
    """Hard-filter inputs extracted from a customer's answers."""

    regions: list[str] = field(default_factory=list)
    budget_min: int | None = None
    budget_max: int | None = None
    keywords: list[str] = field(default_factory=list)


@dataclass
class SessionSnapshot:
    """Everything the ranker needs from a questionnaire session."""

    session_id: str
    vectors: dict[Dimension, Vector] = field(default_factory=dict)
    filters: SessionFilters = field(default_factory=SessionFilters)


@dataclass(frozen=True)
class MatchingConfig:
    """Admin-editable ranking configuration (excluding weights)."""

    max_results: int = 10
    min_similarity_score: float = 0.7
    enable_keyword_bonus: bool = True
    enable_region_filter: bool = True
    enable_budget_filter: bool = True
    cache_results: bool = True
    auto_refresh_embeddings: bool = True
    keyword_bonus_cap: float = 0.1


@dataclass(frozen=True)
class ScoreBreakdown:
    """Per-dimension weighted scores plus bonus and total for one candidate."""

    style_emotion: float
    communication_psychology: float
    purpose_story: float
    companion: float
    keyword_bonus: float
    total: float
    incompletely_scored: bool = False
    missing_dimensions: tuple[Dimension, ...] = ()

    def dimension_score(self, dimension: Dimension) -> float:
        return getattr(self, dimension.value)

    def to_dict(self) -> dict[str, Any]:
        return {
            "style_emotion": self.style_emotion,
            "communication_psychology": self.communication_psychology,
            "purpose_story": self.purpose_story,
            "companion": self.companion,
            "keyword_bonus": self.keyword_bonus,
            "total": self.total,
            "incompletely_scored": self.incompletely_scored,
            "missing_dimensions": [d.value for d in self.missing_dimensions],
        }


@dataclass(frozen=True)
class RankedMatch:
    photographer_id: str
    rank_position: int
    breakdown: ScoreBreakdown

    def to_dict(self) -> dict[str, Any]:
        return {
            "photographer_id": self.photographer_id,
            "rank_position": self.rank_position,
            **self.breakdown.to_dict(),
        }
