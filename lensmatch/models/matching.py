"""
Lensmatch — Matching session, ranked result and system setting models.
"""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID as PgUUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lensmatch.database import Base


class MatchingSession(Base):
    __tablename__ = "matching_sessions"

    id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    session_token: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    user_id: Mapped[uuid.UUID | None] = mapped_column(PgUUID(as_uuid=True), nullable=True)
    responses: Mapped[dict] = mapped_column(
        JSONB, nullable=False, comment="question_key -> answer (str | list[str])"
    )
    subjective_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    dimension_vectors: Mapped[dict | None] = mapped_column(
        JSONB, nullable=True, comment="dimension -> derived session vector"
    )
    filters: Mapped[dict | None] = mapped_column(
        JSONB, nullable=True, comment="regions / budget_min / budget_max / keywords"
    )
    vectors_derived_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # ── Free-text answer embeddings (written by the embedding worker) ──
    text_vectors: Mapped[dict | None] = mapped_column(
        JSONB(none_as_null=True),
        nullable=True,
        comment="question_key -> embedded free-text answer",
    )
    text_embedded_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    content_version: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # ── Relationships ──────────────────────────────────────────────
    results: Mapped[list["MatchingResult"]] = relationship(
        "MatchingResult",
        back_populates="session",
        order_by="MatchingResult.rank_position",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<MatchingSession {self.id} completed={self.completed_at is not None}>"


class MatchingResult(Base):
    __tablename__ = "matching_results"
    __table_args__ = (
        UniqueConstraint("session_id", "photographer_id", name="uq_session_photographer"),
        Index("ix_matching_results_session_rank", "session_id", "rank_position"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    session_id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True),
        ForeignKey("matching_sessions.id", ondelete="CASCADE"),
        nullable=False,
    )
    photographer_id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True),
        ForeignKey("photographers.id", ondelete="CASCADE"),
        nullable=False,
    )
    rank_position: Mapped[int] = mapped_column(Integer, nullable=False)
    style_emotion_score: Mapped[float] = mapped_column(Float, nullable=False)
    communication_psychology_score: Mapped[float] = mapped_column(Float, nullable=False)
    purpose_story_score: Mapped[float] = mapped_column(Float, nullable=False)
    companion_score: Mapped[float] = mapped_column(Float, nullable=False)
    keyword_bonus: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    total_score: Mapped[float] = mapped_column(Float, nullable=False)
    incompletely_scored: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    viewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    clicked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    contacted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    session: Mapped["MatchingSession"] = relationship(
        "MatchingSession", back_populates="results"
    )

    def __repr__(self) -> str:
        return (
            f"<MatchingResult #{self.rank_position} {self.photographer_id} "
            f"total={self.total_score:.3f}>"
        )


class SystemSetting(Base):
    __tablename__ = "system_settings"

    setting_key: Mapped[str] = mapped_column(String, primary_key=True)
    setting_value: Mapped[Any] = mapped_column(
        JSONB, nullable=True
    )
    setting_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=True
    )

    def __repr__(self) -> str:
        return f"<SystemSetting {self.setting_key}={self.setting_value!r}>"
