"""Initial schema — all 10 Lensmatch tables.

Revision ID: 001_initial
Revises:
Create Date: 2026-01-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _embedding_columns() -> list[sa.Column]:
    return [
        sa.Column("embedding", postgresql.JSONB, nullable=True),
        sa.Column("embedding_generated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("content_version", sa.Integer, nullable=False, server_default="0"),
    ]


def upgrade() -> None:
    # ── 1. survey_questions ─────────────────────────────────────────
    op.create_table(
        "survey_questions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("question_key", sa.String, unique=True, nullable=False),
        sa.Column("question_order", sa.Integer, nullable=False),
        sa.Column("question_title", sa.Text, nullable=False),
        sa.Column("question_description", sa.Text, nullable=True),
        sa.Column(
            "question_type",
            sa.String,
            nullable=False,
            comment="single_choice / image_choice / textarea / multiple_choice",
        ),
        sa.Column(
            "weight_category",
            sa.String,
            nullable=False,
            comment="style_emotion / communication_psychology / purpose_story / companion",
        ),
        sa.Column("base_weight", sa.Float, nullable=False, server_default="0"),
        sa.Column("is_hard_filter", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default="true"),
        *_embedding_columns(),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )

    # ── 2. survey_choices ───────────────────────────────────────────
    op.create_table(
        "survey_choices",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "question_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("survey_questions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("choice_key", sa.String, nullable=False),
        sa.Column("choice_label", sa.Text, nullable=False),
        sa.Column("choice_order", sa.Integer, nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default="true"),
        *_embedding_columns(),
        sa.UniqueConstraint("question_id", "choice_key", name="uq_question_choice_key"),
    )

    # ── 3. survey_images ────────────────────────────────────────────
    op.create_table(
        "survey_images",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "question_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("survey_questions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("image_key", sa.String, nullable=False),
        sa.Column("image_label", sa.Text, nullable=False),
        sa.Column("image_url", sa.Text, nullable=False),
        sa.Column("image_order", sa.Integer, nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default="true"),
        *_embedding_columns(),
        sa.UniqueConstraint("question_id", "image_key", name="uq_question_image_key"),
    )

    # ── 4. photographers ────────────────────────────────────────────
    op.create_table(
        "photographers",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String, nullable=False),
        sa.Column("email", sa.String, unique=True, nullable=False),
        sa.Column(
            "approval_status",
            sa.String,
            nullable=False,
            server_default="pending",
            comment="pending / approved / rejected",
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )

    # ── 5. photographer_profiles ────────────────────────────────────
    op.create_table(
        "photographer_profiles",
        sa.Column(
            "photographer_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("photographers.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("style_emotion_description", sa.Text, nullable=True),
        sa.Column("communication_psychology_description", sa.Text, nullable=True),
        sa.Column("purpose_story_description", sa.Text, nullable=True),
        sa.Column("companion_description", sa.Text, nullable=True),
        sa.Column("style_emotion_embedding", postgresql.JSONB, nullable=True),
        sa.Column("communication_psychology_embedding", postgresql.JSONB, nullable=True),
        sa.Column("purpose_story_embedding", postgresql.JSONB, nullable=True),
        sa.Column("companion_embedding", postgresql.JSONB, nullable=True),
        sa.Column(
            "service_regions",
            postgresql.JSONB,
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
            comment="Array of region codes",
        ),
        sa.Column("price_min", sa.Integer, nullable=True),
        sa.Column("price_max", sa.Integer, nullable=True),
        sa.Column("profile_completed", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("embeddings_generated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("content_version", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )

    # ── 6. photographer_keywords ────────────────────────────────────
    op.create_table(
        "photographer_keywords",
        sa.Column(
            "photographer_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("photographers.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("keyword", sa.String, primary_key=True),
        sa.Column(
            "proficiency_level",
            sa.Integer,
            nullable=False,
            server_default="3",
            comment="1-5",
        ),
        sa.Column("portfolio_count", sa.Integer, nullable=False, server_default="0"),
    )

    # ── 7. embedding_jobs ───────────────────────────────────────────
    op.create_table(
        "embedding_jobs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "job_type",
            sa.String,
            nullable=False,
            comment="question / choice / image / photographer_profile / session_answers",
        ),
        sa.Column("target_id", sa.String, nullable=False),
        sa.Column(
            "job_status",
            sa.String,
            nullable=False,
            server_default="pending",
            comment="pending / processing / completed / failed",
        ),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("claimed_by", sa.String, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "uq_embedding_jobs_pending_target",
        "embedding_jobs",
        ["job_type", "target_id"],
        unique=True,
        postgresql_where=sa.text("job_status = 'pending'"),
    )
    op.create_index(
        "ix_embedding_jobs_status_created",
        "embedding_jobs",
        ["job_status", "created_at"],
    )

    # ── 8. matching_sessions ────────────────────────────────────────
    op.create_table(
        "matching_sessions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("session_token", sa.String, unique=True, nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column(
            "responses",
            postgresql.JSONB,
            nullable=False,
            comment="question_key -> answer (str | list[str])",
        ),
        sa.Column("subjective_text", sa.Text, nullable=True),
        sa.Column(
            "dimension_vectors",
            postgresql.JSONB,
            nullable=True,
            comment="dimension -> derived session vector",
        ),
        sa.Column(
            "filters",
            postgresql.JSONB,
            nullable=True,
            comment="regions / budget_min / budget_max / keywords",
        ),
        sa.Column("vectors_derived_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "text_vectors",
            postgresql.JSONB,
            nullable=True,
            comment="question_key -> embedded free-text answer",
        ),
        sa.Column("text_embedded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("content_version", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )

    # ── 9. matching_results ─────────────────────────────────────────
    op.create_table(
        "matching_results",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "session_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("matching_sessions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "photographer_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("photographers.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("rank_position", sa.Integer, nullable=False),
        sa.Column("style_emotion_score", sa.Float, nullable=False),
        sa.Column("communication_psychology_score", sa.Float, nullable=False),
        sa.Column("purpose_story_score", sa.Float, nullable=False),
        sa.Column("companion_score", sa.Float, nullable=False),
        sa.Column("keyword_bonus", sa.Float, nullable=False, server_default="0"),
        sa.Column("total_score", sa.Float, nullable=False),
        sa.Column("incompletely_scored", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("viewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("clicked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("contacted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint("session_id", "photographer_id", name="uq_session_photographer"),
    )
    op.create_index(
        "ix_matching_results_session_rank",
        "matching_results",
        ["session_id", "rank_position"],
    )

    # ── 10. system_settings ─────────────────────────────────────────
    op.create_table(
        "system_settings",
        sa.Column("setting_key", sa.String, primary_key=True),
        sa.Column("setting_value", postgresql.JSONB, nullable=True),
        sa.Column("setting_description", sa.Text, nullable=True),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=True,
        ),
    )


def downgrade() -> None:
    # Drop in reverse order (children / dependents first).
    op.drop_table("system_settings")

    op.drop_index("ix_matching_results_session_rank", table_name="matching_results")
    op.drop_table("matching_results")
    op.drop_table("matching_sessions")

    op.drop_index("ix_embedding_jobs_status_created", table_name="embedding_jobs")
    op.drop_index("uq_embedding_jobs_pending_target", table_name="embedding_jobs")
    op.drop_table("embedding_jobs")

    op.drop_table("photographer_keywords")
    op.drop_table("photographer_profiles")
    op.drop_table("photographers")

    op.drop_table("survey_images")
    op.drop_table("survey_choices")
    op.drop_table("survey_questions")
