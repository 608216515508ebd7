"""
Lensmatch — Embedding job queue table.

The partial unique index on ``(job_type, target_id) WHERE job_status =
'pending'`` makes enqueue idempotent at the database level: at most one
pending job can exist per target, however many edits race to enqueue it.
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, Text, func, text
from sqlalchemy.dialects.postgresql import UUID as PgUUID
from sqlalchemy.orm import Mapped, mapped_column

from lensmatch.database import Base


class EmbeddingJobRow(Base):
    __tablename__ = "embedding_jobs"
    __table_args__ = (
        Index(
            "uq_embedding_jobs_pending_target",
            "job_type",
            "target_id",
            unique=True,
            postgresql_where=text("job_status = 'pending'"),
        ),
        Index("ix_embedding_jobs_status_created", "job_status", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    job_type: Mapped[str] = mapped_column(
        String,
        nullable=False,
        comment="question / choice / image / photographer_profile / session_answers",
    )
    target_id: Mapped[str] = mapped_column(String, nullable=False)
    job_status: Mapped[str] = mapped_column(
        String, nullable=False, default="pending",
        comment="pending / processing / completed / failed",
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    claimed_by: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<EmbeddingJob {self.job_type}:{self.target_id} "
            f"status={self.job_status} attempts={self.attempts}>"
        )
