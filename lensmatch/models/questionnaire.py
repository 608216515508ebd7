"""
Lensmatch — Questionnaire models (questions, choices, images).

Questions, choices and images are edited by the admin surface.  The matching
core only reads them, except for the embedding columns, which are owned by
the embedding pipeline.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID as PgUUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lensmatch.database import Base


class SurveyQuestion(Base):
    __tablename__ = "survey_questions"

    id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    question_key: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    question_order: Mapped[int] = mapped_column(Integer, nullable=False)
    question_title: Mapped[str] = mapped_column(Text, nullable=False)
    question_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    question_type: Mapped[str] = mapped_column(
        String, nullable=False,
        comment="single_choice / image_choice / textarea / multiple_choice",
    )
    weight_category: Mapped[str] = mapped_column(
        String, nullable=False,
        comment="style_emotion / communication_psychology / purpose_story / companion",
    )
    base_weight: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    is_hard_filter: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    embedding: Mapped[list | None] = mapped_column(JSONB(none_as_null=True), nullable=True)
    embedding_generated_at: Mapped[datetime | None] = mapped_column(
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

    # ── Relationships ──────────────────────────────────────────────
    choices: Mapped[list["SurveyChoice"]] = relationship(
        "SurveyChoice", back_populates="question", lazy="selectin",
        order_by="SurveyChoice.choice_order",
    )
    images: Mapped[list["SurveyImage"]] = relationship(
        "SurveyImage", back_populates="question", lazy="selectin",
        order_by="SurveyImage.image_order",
    )

    def __repr__(self) -> str:
        return (
            f"<SurveyQuestion {self.question_key!r} "
            f"dim={self.weight_category} w={self.base_weight:.4f}>"
        )


class SurveyChoice(Base):
    __tablename__ = "survey_choices"
    __table_args__ = (
        UniqueConstraint("question_id", "choice_key", name="uq_question_choice_key"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    question_id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True),
        ForeignKey("survey_questions.id", ondelete="CASCADE"),
        nullable=False,
    )
    choice_key: Mapped[str] = mapped_column(String, nullable=False)
    choice_label: Mapped[str] = mapped_column(Text, nullable=False)
    choice_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    embedding: Mapped[list | None] = mapped_column(JSONB(none_as_null=True), nullable=True)
    embedding_generated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    content_version: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )

    question: Mapped["SurveyQuestion"] = relationship(
        "SurveyQuestion", back_populates="choices"
    )

    def __repr__(self) -> str:
        return f"<SurveyChoice {self.choice_key!r} q={self.question_id}>"


class SurveyImage(Base):
    __tablename__ = "survey_images"
    __table_args__ = (
        UniqueConstraint("question_id", "image_key", name="uq_question_image_key"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    question_id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True),
        ForeignKey("survey_questions.id", ondelete="CASCADE"),
        nullable=False,
    )
    image_key: Mapped[str] = mapped_column(String, nullable=False)
    image_label: Mapped[str] = mapped_column(Text, nullable=False)
    image_url: Mapped[str] = mapped_column(Text, nullable=False)
    image_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    embedding: Mapped[list | None] = mapped_column(JSONB(none_as_null=True), nullable=True)
    embedding_generated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    content_version: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )

    question: Mapped["SurveyQuestion"] = relationship(
        "SurveyQuestion", back_populates="images"
    )

    def __repr__(self) -> str:
        return f"<SurveyImage {self.image_key!r} q={self.question_id}>"
