"""Create feedback_jobs and feedbacks tables.

Revision ID: 7c3e9a1f2b40
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "7c3e9a1f2b40"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
  """Upgrade schema."""
  op.create_table(
    "feedback_jobs",
    sa.Column("job_id", sa.String(), nullable=False),
    sa.Column("subject_id", sa.String(), nullable=False),
    sa.Column("requester_id", sa.String(), nullable=True),
    sa.Column("status", sa.String(), nullable=False),
    sa.Column("priority", sa.Integer(), server_default=sa.text("5"), nullable=False),
    sa.Column("attempts", sa.Integer(), server_default=sa.text("0"), nullable=False),
    sa.Column("max_attempts", sa.Integer(), server_default=sa.text("3"), nullable=False),
    sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("error_message", sa.Text(), nullable=True),
    sa.Column("result_id", sa.String(), nullable=True),
    sa.Column("metadata", postgresql.JSONB(astext_type=sa.Text()), server_default=sa.text("'{}'::jsonb"), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.CheckConstraint("status IN ('pending', 'processing', 'completed', 'failed', 'cancelled')", name="ck_feedback_jobs_status"),
    sa.CheckConstraint("attempts >= 0 AND attempts <= max_attempts", name="ck_feedback_jobs_attempts"),
    sa.PrimaryKeyConstraint("job_id"),
  )
  op.create_index(op.f("ix_feedback_jobs_subject_id"), "feedback_jobs", ["subject_id"], unique=False)
  op.create_index(op.f("ix_feedback_jobs_requester_id"), "feedback_jobs", ["requester_id"], unique=False)
  op.create_index(op.f("ix_feedback_jobs_status"), "feedback_jobs", ["status"], unique=False)
  op.create_index("ix_feedback_jobs_pick_order", "feedback_jobs", ["status", sa.text("priority DESC"), "created_at"], unique=False)
  op.create_index("ux_feedback_jobs_active_subject", "feedback_jobs", ["subject_id"], unique=True, postgresql_where=sa.text("status IN ('pending', 'processing')"))

  op.create_table(
    "feedbacks",
    sa.Column("feedback_id", sa.String(), nullable=False),
    sa.Column("subject_id", sa.String(), nullable=False),
    sa.Column("job_id", sa.String(), nullable=True),
    sa.Column("version", sa.Integer(), nullable=False),
    sa.Column("content", sa.Text(), nullable=False),
    sa.Column("ai_model", sa.String(), nullable=True),
    sa.Column("input_tokens", sa.Integer(), server_default=sa.text("0"), nullable=False),
    sa.Column("output_tokens", sa.Integer(), server_default=sa.text("0"), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.ForeignKeyConstraint(["job_id"], ["feedback_jobs.job_id"], ondelete="SET NULL"),
    sa.PrimaryKeyConstraint("feedback_id"),
    sa.UniqueConstraint("subject_id", "version", name="ux_feedbacks_subject_version"),
  )
  op.create_index(op.f("ix_feedbacks_subject_id"), "feedbacks", ["subject_id"], unique=False)
  op.create_index(op.f("ix_feedbacks_job_id"), "feedbacks", ["job_id"], unique=False)


def downgrade() -> None:
  """Downgrade schema."""
  op.drop_index(op.f("ix_feedbacks_job_id"), table_name="feedbacks")
  op.drop_index(op.f("ix_feedbacks_subject_id"), table_name="feedbacks")
  op.drop_table("feedbacks")
  op.drop_index("ux_feedback_jobs_active_subject", table_name="feedback_jobs")
  op.drop_index("ix_feedback_jobs_pick_order", table_name="feedback_jobs")
  op.drop_index(op.f("ix_feedback_jobs_status"), table_name="feedback_jobs")
  op.drop_index(op.f("ix_feedback_jobs_requester_id"), table_name="feedback_jobs")
  op.drop_index(op.f("ix_feedback_jobs_subject_id"), table_name="feedback_jobs")
  op.drop_table("feedback_jobs")
