"""
Lensmatch — Photographer, four-dimension profile and keyword models.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID as PgUUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lensmatch.database import Base


class Photographer(Base):
    __tablename__ = "photographers"

    id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    email: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    approval_status: Mapped[str] = mapped_column(
        String, nullable=False, default="pending", comment="pending / approved / rejected"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    # ── Relationships ──────────────────────────────────────────────
    profile: Mapped[Optional["PhotographerProfile"]] = relationship(
        "PhotographerProfile", back_populates="photographer", uselist=False, lazy="selectin"
    )
    keywords: Mapped[list["PhotographerKeyword"]] = relationship(
        "PhotographerKeyword", back_populates="photographer", lazy="selectin"
    )

    def __repr__(self) -> str:
        return f"<Photographer {self.name!r} status={self.approval_status}>"


class PhotographerProfile(Base):
    """One profile per photographer: a free-text description and an
    embedding per matching dimension, plus the hard-filter attributes."""

    __tablename__ = "photographer_profiles"

    photographer_id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True),
        ForeignKey("photographers.id", ondelete="CASCADE"),
        primary_key=True,
    )
    style_emotion_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    communication_psychology_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    purpose_story_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    companion_description: Mapped[str | None] = mapped_column(Text, nullable=True)

    style_emotion_embedding: Mapped[list | None] = mapped_column(
        JSONB(none_as_null=True), nullable=True
    )
    communication_psychology_embedding: Mapped[list | None] = mapped_column(
        JSONB(none_as_null=True), nullable=True
    )
    purpose_story_embedding: Mapped[list | None] = mapped_column(
        JSONB(none_as_null=True), nullable=True
    )
    companion_embedding: Mapped[list | None] = mapped_column(
        JSONB(none_as_null=True), nullable=True
    )

    service_regions: Mapped[list] = mapped_column(
        JSONB, nullable=False, default=list, comment="Array of region codes"
    )
    price_min: Mapped[int | None] = mapped_column(Integer, nullable=True)
    price_max: Mapped[int | None] = mapped_column(Integer, nullable=True)
    profile_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    embeddings_generated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    content_version: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=func.now(), nullable=True
    )

    photographer: Mapped["Photographer"] = relationship(
        "Photographer", back_populates="profile"
    )

    def __repr__(self) -> str:
        return (
            f"<PhotographerProfile {self.photographer_id} "
            f"completed={self.profile_completed}>"
        )


class PhotographerKeyword(Base):
    __tablename__ = "photographer_keywords"

    photographer_id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True),
        ForeignKey("photographers.id", ondelete="CASCADE"),
        primary_key=True,
    )
    keyword: Mapped[str] = mapped_column(String, primary_key=True)
    proficiency_level: Mapped[int] = mapped_column(
        Integer, nullable=False, default=3, comment="1-5"
    )
    portfolio_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    photographer: Mapped["Photographer"] = relationship(
        "Photographer", back_populates="keywords"
    )

    def __repr__(self) -> str:
        return f"<PhotographerKeyword {self.keyword!r} lvl={self.proficiency_level}>"
