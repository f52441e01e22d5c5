from __future__ import annotations

import datetime

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint, func, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from feedback_engine.core.database import Base


class FeedbackJob(Base):
  __tablename__ = "feedback_jobs"
  __table_args__ = (
    # Backs the one-active-job-per-subject rule against concurrent submitters.
    Index("ux_feedback_jobs_active_subject", "subject_id", unique=True, postgresql_where=text("status IN ('pending', 'processing')")),
    Index("ix_feedback_jobs_pick_order", "status", text("priority DESC"), "created_at"),
    CheckConstraint("status IN ('pending', 'processing', 'completed', 'failed', 'cancelled')", name="ck_feedback_jobs_status"),
    CheckConstraint("attempts >= 0 AND attempts <= max_attempts", name="ck_feedback_jobs_attempts"),
  )

  job_id: Mapped[str] = mapped_column(String, primary_key=True)
  subject_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
  requester_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
  status: Mapped[str] = mapped_column(String, nullable=False, index=True)
  priority: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("5"))
  attempts: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
  max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("3"))
  started_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  completed_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
  result_id: Mapped[str | None] = mapped_column(String, nullable=True)
  metadata_json: Mapped[dict] = mapped_column("metadata", JSONB, nullable=False, server_default=text("'{}'::jsonb"))
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
  updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Feedback(Base):
  __tablename__ = "feedbacks"
  __table_args__ = (UniqueConstraint("subject_id", "version", name="ux_feedbacks_subject_version"),)

  feedback_id: Mapped[str] = mapped_column(String, primary_key=True)
  subject_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
  job_id: Mapped[str] = mapped_column(ForeignKey("feedback_jobs.job_id", ondelete="SET NULL"), nullable=True, index=True)
  version: Mapped[int] = mapped_column(Integer, nullable=False)
  content: Mapped[str] = mapped_column(Text, nullable=False)
  ai_model: Mapped[str | None] = mapped_column(String, nullable=True)
  input_tokens: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
  output_tokens: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
