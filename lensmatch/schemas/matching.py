from datetime import datetime
from typing import Any, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class SessionCreate(BaseModel):
    responses: dict[str, Any] = Field(
        ..., description="question_key -> answer (choice/image key, list of keys, or text)"
    )
    subjective_text: Optional[str] = None
    user_id: Optional[UUID] = None


class SessionCreateResponse(BaseModel):
    session_id: UUID
    session_token: str
    dimensions_with_vectors: list[str]
    filters: dict[str, Any]


class MatchCalculateRequest(BaseModel):
    session_id: UUID
    force: bool = False


class MatchResultItem(BaseModel):
    photographer_id: UUID
    rank_position: int
    style_emotion: float
    communication_psychology: float
    purpose_story: float
    companion: float
    keyword_bonus: float
    total: float
    incompletely_scored: bool = False
    missing_dimensions: list[str] = []


class MatchCalculateResponse(BaseModel):
    session_id: UUID
    results: list[MatchResultItem]
    count: int
    cached: bool


class InteractionRequest(BaseModel):
    interaction: Literal["viewed", "clicked", "contacted"]


class InteractionResponse(BaseModel):
    session_id: UUID
    photographer_id: UUID
    viewed_at: Optional[datetime] = None
    clicked_at: Optional[datetime] = None
    contacted_at: Optional[datetime] = None
