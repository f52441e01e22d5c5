"""Postgres-backed repository for feedback jobs using SQLAlchemy."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import Delete, Update, and_, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError

from feedback_engine.core.database import get_session_factory
from feedback_engine.jobs.errors import DuplicateJobError
from feedback_engine.jobs.models import FeedbackDraft, FeedbackRecord, JobRecord, JobStatus, assert_transition
from feedback_engine.schema.jobs import Feedback, FeedbackJob
from feedback_engine.storage.jobs_repo import JobsRepository

_UPDATABLE_FIELDS = {"started_at", "completed_at", "error_message", "result_id", "attempts", "metadata"}


def _column_values(fields: dict[str, Any]) -> dict[str, Any]:
  unknown = set(fields) - _UPDATABLE_FIELDS
  if unknown:
    raise ValueError(f"Unsupported job fields: {sorted(unknown)}")
  values = dict(fields)
  if "metadata" in values:
    values["metadata_json"] = values.pop("metadata")
  return values


def claim_statement(job_id: str, *, now: datetime) -> Update:
  """Build the pending -> processing claim; zero returned rows means another context won."""
  assert_transition("pending", "processing")
  return (
    update(FeedbackJob)
    .where(FeedbackJob.job_id == job_id, FeedbackJob.status == "pending", FeedbackJob.attempts < FeedbackJob.max_attempts)
    .values(status="processing", started_at=now, updated_at=now, attempts=FeedbackJob.attempts + 1)
    .returning(FeedbackJob)
  )


def transition_statement(job_id: str, *, expected: JobStatus, new: JobStatus, now: datetime, **fields: Any) -> Update:
  assert_transition(expected, new)
  return update(FeedbackJob).where(FeedbackJob.job_id == job_id, FeedbackJob.status == expected).values(status=new, updated_at=now, **_column_values(fields)).returning(FeedbackJob)


def stale_statement(*, started_before: datetime, now: datetime, exhausted: bool, message: str) -> Update:
  """Build the zombie sweep write for either exhausted (-> failed) or retryable (-> pending) jobs."""
  stale = and_(FeedbackJob.status == "processing", FeedbackJob.started_at < started_before)
  if exhausted:
    assert_transition("processing", "failed")
    return update(FeedbackJob).where(stale, FeedbackJob.attempts >= FeedbackJob.max_attempts).values(status="failed", completed_at=now, updated_at=now, error_message=message).returning(FeedbackJob)
  assert_transition("processing", "pending")
  return update(FeedbackJob).where(stale, FeedbackJob.attempts < FeedbackJob.max_attempts).values(status="pending", started_at=None, updated_at=now, error_message=message).returning(FeedbackJob)


def purge_statement(job_ids: list[str] | None = None) -> Delete:
  stmt = delete(FeedbackJob).where(FeedbackJob.status == "failed")
  if job_ids is not None:
    stmt = stmt.where(FeedbackJob.job_id.in_(job_ids))
  return stmt


class PostgresJobsRepository(JobsRepository):
  """Persist feedback jobs and their results to Postgres using SQLAlchemy."""

  def __init__(self) -> None:
    self._session_factory = get_session_factory()
    if self._session_factory is None:
      raise RuntimeError("Database not initialized")

  async def create_job(self, record: JobRecord) -> JobRecord:
    async with self._session_factory() as session:
      row = FeedbackJob(
        job_id=record.job_id,
        subject_id=record.subject_id,
        requester_id=record.requester_id,
        status=record.status,
        priority=record.priority,
        attempts=record.attempts,
        max_attempts=record.max_attempts,
        started_at=record.started_at,
        completed_at=record.completed_at,
        error_message=record.error_message,
        result_id=record.result_id,
        metadata_json=record.metadata,
        created_at=record.created_at,
        updated_at=record.updated_at,
      )
      session.add(row)
      try:
        await session.commit()
      except IntegrityError as exc:
        await session.rollback()
        # The partial unique index caught a concurrent submitter.
        conflict = await self._active_conflict(session, record.subject_id)
        if conflict is None:
          raise
        raise conflict from exc
      await session.refresh(row)
      return self._model_to_record(row)

  async def get_job(self, job_id: str) -> JobRecord | None:
    async with self._session_factory() as session:
      row = await session.get(FeedbackJob, job_id)
      if row is None:
        return None
      return self._model_to_record(row)

  async def find_active_for_subject(self, subject_id: str) -> JobRecord | None:
    async with self._session_factory() as session:
      stmt = select(FeedbackJob).where(FeedbackJob.subject_id == subject_id, FeedbackJob.status.in_(("pending", "processing"))).limit(1)
      row = (await session.execute(stmt)).scalar_one_or_none()
      if row is None:
        return None
      return self._model_to_record(row)

  async def list_pending(self, limit: int) -> list[JobRecord]:
    if limit <= 0:
      return []
    async with self._session_factory() as session:
      stmt = select(FeedbackJob).where(FeedbackJob.status == "pending").order_by(FeedbackJob.priority.desc(), FeedbackJob.created_at.asc()).limit(limit)
      rows = (await session.execute(stmt)).scalars().all()
      return [self._model_to_record(row) for row in rows]

  async def count_processing(self) -> int:
    async with self._session_factory() as session:
      total = await session.scalar(select(func.count()).select_from(FeedbackJob).where(FeedbackJob.status == "processing"))
      return int(total or 0)

  async def count_ahead(self, job: JobRecord) -> int:
    async with self._session_factory() as session:
      ahead = or_(FeedbackJob.priority > job.priority, and_(FeedbackJob.priority == job.priority, FeedbackJob.created_at < job.created_at))
      stmt = select(func.count()).select_from(FeedbackJob).where(FeedbackJob.status == "pending", FeedbackJob.job_id != job.job_id, ahead)
      total = await session.scalar(stmt)
      return int(total or 0)

  async def claim_job(self, job_id: str, *, now: datetime) -> JobRecord | None:
    async with self._session_factory() as session:
      row = (await session.execute(claim_statement(job_id, now=now))).scalar_one_or_none()
      await session.commit()
      if row is None:
        return None
      return self._model_to_record(row)

  async def _active_conflict(self, session: Any, subject_id: str) -> DuplicateJobError | None:
    stmt = select(FeedbackJob).where(FeedbackJob.subject_id == subject_id, FeedbackJob.status.in_(("pending", "processing"))).limit(1)
    existing = (await session.execute(stmt)).scalars().first()
    if existing is None:
      return None
    return DuplicateJobError(subject_id, existing.job_id)

  async def update_status(self, job_id: str, *, expected: JobStatus, new: JobStatus, now: datetime, **fields: Any) -> JobRecord | None:
    async with self._session_factory() as session:
      try:
        row = (await session.execute(transition_statement(job_id, expected=expected, new=new, now=now, **fields))).scalar_one_or_none()
        await session.commit()
      except IntegrityError as exc:
        await session.rollback()
        # Reactivating a job whose subject already has an active one.
        subject_id = await session.scalar(select(FeedbackJob.subject_id).where(FeedbackJob.job_id == job_id))
        conflict = await self._active_conflict(session, subject_id) if subject_id is not None else None
        if conflict is None:
          raise
        raise conflict from exc
      if row is None:
        return None
      return self._model_to_record(row)

  async def complete_job(self, job_id: str, *, feedback: FeedbackDraft, now: datetime) -> JobRecord | None:
    feedback_id = str(uuid.uuid4())
    async with self._session_factory() as session:
      stmt = transition_statement(job_id, expected="processing", new="completed", now=now, completed_at=now, error_message=None, result_id=feedback_id)
      row = (await session.execute(stmt)).scalar_one_or_none()
      if row is None:
        await session.rollback()
        return None
      latest = await session.scalar(select(func.max(Feedback.version)).where(Feedback.subject_id == row.subject_id))
      session.add(
        Feedback(
          feedback_id=feedback_id,
          subject_id=row.subject_id,
          job_id=job_id,
          version=int(latest or 0) + 1,
          content=feedback.content,
          ai_model=feedback.ai_model,
          input_tokens=feedback.input_tokens,
          output_tokens=feedback.output_tokens,
          created_at=now,
        )
      )
      record = self._model_to_record(row)
      await session.commit()
      return record

  async def recover_stale(self, *, started_before: datetime, now: datetime, requeue_message: str, failed_message: str) -> tuple[list[JobRecord], list[JobRecord]]:
    async with self._session_factory() as session:
      failed_rows = (await session.execute(stale_statement(started_before=started_before, now=now, exhausted=True, message=failed_message))).scalars().all()
      requeued_rows = (await session.execute(stale_statement(started_before=started_before, now=now, exhausted=False, message=requeue_message))).scalars().all()
      failed = [self._model_to_record(row) for row in failed_rows]
      requeued = [self._model_to_record(row) for row in requeued_rows]
      await session.commit()
      return requeued, failed

  async def list_jobs(self, *, status: str | None = None, subject_id: str | None = None, requester_id: str | None = None, limit: int = 50, offset: int = 0) -> tuple[list[JobRecord], int]:
    async with self._session_factory() as session:
      filters = []
      if status:
        filters.append(FeedbackJob.status == status)
      if subject_id:
        filters.append(FeedbackJob.subject_id == subject_id)
      if requester_id:
        filters.append(FeedbackJob.requester_id == requester_id)
      stmt = select(FeedbackJob).order_by(FeedbackJob.created_at.desc()).limit(limit).offset(offset)
      count_stmt = select(func.count()).select_from(FeedbackJob)
      if filters:
        stmt = stmt.where(and_(*filters))
        count_stmt = count_stmt.where(and_(*filters))
      total = await session.scalar(count_stmt)
      rows = (await session.execute(stmt)).scalars().all()
      return [self._model_to_record(row) for row in rows], int(total or 0)

  async def count_by_status(self, *, since: datetime) -> dict[str, int]:
    async with self._session_factory() as session:
      stmt = select(FeedbackJob.status, func.count()).where(FeedbackJob.created_at >= since).group_by(FeedbackJob.status)
      rows = (await session.execute(stmt)).all()
      return {str(status): int(count) for status, count in rows}

  async def purge_failed(self, job_ids: list[str] | None = None) -> int:
    if job_ids is not None and not job_ids:
      return 0
    async with self._session_factory() as session:
      result = await session.execute(purge_statement(job_ids))
      await session.commit()
      return int(result.rowcount or 0)

  async def get_feedback(self, feedback_id: str) -> FeedbackRecord | None:
    async with self._session_factory() as session:
      row = await session.get(Feedback, feedback_id)
      if row is None:
        return None
      return FeedbackRecord(
        feedback_id=row.feedback_id,
        subject_id=row.subject_id,
        job_id=row.job_id,
        version=row.version,
        content=row.content,
        ai_model=row.ai_model,
        input_tokens=row.input_tokens,
        output_tokens=row.output_tokens,
        created_at=row.created_at,
      )

  async def latest_feedback_version(self, subject_id: str) -> int:
    async with self._session_factory() as session:
      latest = await session.scalar(select(func.max(Feedback.version)).where(Feedback.subject_id == subject_id))
      return int(latest or 0)

  def _model_to_record(self, row: FeedbackJob) -> JobRecord:
    return JobRecord(
      job_id=row.job_id,
      subject_id=row.subject_id,
      requester_id=row.requester_id,
      status=row.status,
      priority=row.priority,
      attempts=row.attempts,
      max_attempts=row.max_attempts,
      started_at=row.started_at,
      completed_at=row.completed_at,
      error_message=row.error_message,
      result_id=row.result_id,
      metadata=dict(row.metadata_json or {}),
      created_at=row.created_at,
      updated_at=row.updated_at,
    )
