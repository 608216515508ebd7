from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from lensmatch.domain import JobType


# ── Embeddings ────────────────────────────────────────────────────────────────

class EnqueueRequest(BaseModel):
    job_type: JobType
    target_id: str


class EnqueueResponse(BaseModel):
    job_id: str
    job_type: JobType
    target_id: str


class GenerateAllResponse(BaseModel):
    enqueued: dict[str, int]
    total: int


class BatchRequest(BaseModel):
    job_type: JobType
    target_ids: list[str] = Field(..., min_length=1)


class BatchResponse(BaseModel):
    status: str
    job_type: JobType
    total: int
    completed: int
    failed: int
    pending: int
    timed_out: bool
    elapsed_seconds: float
    job_ids: list[str]


class QueueStatsResponse(BaseModel):
    by_status: dict[str, int]
    job_type: Optional[JobType] = None


class RequeueRequest(BaseModel):
    job_ids: Optional[list[str]] = None


class RequeueResponse(BaseModel):
    requeued: int


# ── Matching configuration ────────────────────────────────────────────────────

class DimensionWeightsUpdate(BaseModel):
    weights: dict[str, float] = Field(
        ..., description="dimension -> percent; all four required, summing to 100"
    )


class DimensionWeightsResponse(BaseModel):
    weights: dict[str, float]
    version: int
    drift: float
    active_question_counts: dict[str, int]
    warnings: list[str]


class MatchingSettingsResponse(BaseModel):
    max_results: int
    min_similarity_score: float
    enable_keyword_bonus: bool
    enable_region_filter: bool
    enable_budget_filter: bool
    cache_results: bool
    auto_refresh_embeddings: bool
    keyword_bonus_cap: float


class MatchingSettingsUpdate(BaseModel):
    max_results: Optional[Any] = None
    min_similarity_score: Optional[Any] = None
    enable_keyword_bonus: Optional[Any] = None
    enable_region_filter: Optional[Any] = None
    enable_budget_filter: Optional[Any] = None
    cache_results: Optional[Any] = None
    auto_refresh_embeddings: Optional[Any] = None
    keyword_bonus_cap: Optional[Any] = None


# ── Content edits ─────────────────────────────────────────────────────────────

class ChoiceUpdate(BaseModel):
    label: Optional[str] = None
    is_active: Optional[bool] = None


class ImageUpdate(BaseModel):
    label: Optional[str] = None
    url: Optional[str] = None
    is_active: Optional[bool] = None


class QuestionUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None
    base_weight: Optional[float] = None


class ProfileUpdate(BaseModel):
    descriptions: Optional[dict[str, Optional[str]]] = None
    service_regions: Optional[list[str]] = None
    price_min: Optional[int] = None
    price_max: Optional[int] = None
    keywords: Optional[dict[str, int]] = None


class ContentUpdateResponse(BaseModel):
    id: UUID
    embedding_stale: bool
    profile_completed: Optional[bool] = None
