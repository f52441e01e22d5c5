"""Process-local job store used for local development and tests.

Every conditional write below runs without awaiting in between its check and
its mutation, so it is atomic with respect to other coroutines on the same
event loop. It is not shared across processes.
"""

from __future__ import annotations

import uuid
from dataclasses import replace
from datetime import datetime
from typing import Any

from feedback_engine.jobs.errors import DuplicateJobError
from feedback_engine.jobs.models import ACTIVE_STATUSES, FeedbackDraft, FeedbackRecord, JobRecord, JobStatus, assert_transition
from feedback_engine.storage.jobs_repo import JobsRepository

_UPDATABLE_FIELDS = {"started_at", "completed_at", "error_message", "result_id", "attempts", "metadata"}


class InMemoryJobsRepository(JobsRepository):
  """Dictionary-backed repository with the same semantics as the Postgres one."""

  def __init__(self) -> None:
    self._jobs: dict[str, JobRecord] = {}
    self._feedback: dict[str, FeedbackRecord] = {}

  def _copy(self, record: JobRecord) -> JobRecord:
    return replace(record, metadata=dict(record.metadata))

  async def create_job(self, record: JobRecord) -> JobRecord:
    existing = self._active_for(record.subject_id)
    if existing is not None:
      raise DuplicateJobError(record.subject_id, existing.job_id)
    self._jobs[record.job_id] = self._copy(record)
    return self._copy(record)

  async def get_job(self, job_id: str) -> JobRecord | None:
    record = self._jobs.get(job_id)
    return self._copy(record) if record is not None else None

  async def find_active_for_subject(self, subject_id: str) -> JobRecord | None:
    record = self._active_for(subject_id)
    return self._copy(record) if record is not None else None

  def _active_for(self, subject_id: str) -> JobRecord | None:
    for record in self._jobs.values():
      if record.subject_id == subject_id and record.status in ACTIVE_STATUSES:
        return record
    return None

  def _pending_sorted(self) -> list[JobRecord]:
    pending = [record for record in self._jobs.values() if record.status == "pending"]
    return sorted(pending, key=lambda record: (-record.priority, record.created_at))

  async def list_pending(self, limit: int) -> list[JobRecord]:
    if limit <= 0:
      return []
    return [self._copy(record) for record in self._pending_sorted()[:limit]]

  async def count_processing(self) -> int:
    return sum(1 for record in self._jobs.values() if record.status == "processing")

  async def count_ahead(self, job: JobRecord) -> int:
    count = 0
    for record in self._jobs.values():
      if record.status != "pending" or record.job_id == job.job_id:
        continue
      if record.priority > job.priority or (record.priority == job.priority and record.created_at < job.created_at):
        count += 1
    return count

  async def claim_job(self, job_id: str, *, now: datetime) -> JobRecord | None:
    assert_transition("pending", "processing")
    record = self._jobs.get(job_id)
    if record is None or record.status != "pending" or record.attempts >= record.max_attempts:
      return None
    record.status = "processing"
    record.started_at = now
    record.updated_at = now
    record.attempts += 1
    return self._copy(record)

  async def update_status(self, job_id: str, *, expected: JobStatus, new: JobStatus, now: datetime, **fields: Any) -> JobRecord | None:
    assert_transition(expected, new)
    unknown = set(fields) - _UPDATABLE_FIELDS
    if unknown:
      raise ValueError(f"Unsupported job fields: {sorted(unknown)}")
    record = self._jobs.get(job_id)
    if record is None or record.status != expected:
      return None
    if new in ACTIVE_STATUSES and expected not in ACTIVE_STATUSES:
      active = self._active_for(record.subject_id)
      if active is not None:
        raise DuplicateJobError(record.subject_id, active.job_id)
    record.status = new
    record.updated_at = now
    for key, value in fields.items():
      setattr(record, key, dict(value) if key == "metadata" else value)
    return self._copy(record)

  async def complete_job(self, job_id: str, *, feedback: FeedbackDraft, now: datetime) -> JobRecord | None:
    assert_transition("processing", "completed")
    record = self._jobs.get(job_id)
    if record is None or record.status != "processing":
      return None
    feedback_id = str(uuid.uuid4())
    self._feedback[feedback_id] = FeedbackRecord(
      feedback_id=feedback_id,
      subject_id=record.subject_id,
      job_id=job_id,
      version=self._latest_version(record.subject_id) + 1,
      content=feedback.content,
      ai_model=feedback.ai_model,
      input_tokens=feedback.input_tokens,
      output_tokens=feedback.output_tokens,
      created_at=now,
    )
    record.status = "completed"
    record.completed_at = now
    record.updated_at = now
    record.error_message = None
    record.result_id = feedback_id
    return self._copy(record)

  async def recover_stale(self, *, started_before: datetime, now: datetime, requeue_message: str, failed_message: str) -> tuple[list[JobRecord], list[JobRecord]]:
    requeued: list[JobRecord] = []
    failed: list[JobRecord] = []
    for record in self._jobs.values():
      if record.status != "processing" or record.started_at is None or record.started_at >= started_before:
        continue
      record.updated_at = now
      if record.attempts_exhausted:
        assert_transition("processing", "failed")
        record.status = "failed"
        record.completed_at = now
        record.error_message = failed_message
        failed.append(self._copy(record))
      else:
        assert_transition("processing", "pending")
        record.status = "pending"
        record.started_at = None
        record.error_message = requeue_message
        requeued.append(self._copy(record))
    return requeued, failed

  async def list_jobs(self, *, status: str | None = None, subject_id: str | None = None, requester_id: str | None = None, limit: int = 50, offset: int = 0) -> tuple[list[JobRecord], int]:
    matches = [
      record
      for record in self._jobs.values()
      if (not status or record.status == status) and (not subject_id or record.subject_id == subject_id) and (not requester_id or record.requester_id == requester_id)
    ]
    matches.sort(key=lambda record: record.created_at, reverse=True)
    return [self._copy(record) for record in matches[offset : offset + limit]], len(matches)

  async def count_by_status(self, *, since: datetime) -> dict[str, int]:
    counts: dict[str, int] = {}
    for record in self._jobs.values():
      if record.created_at >= since:
        counts[record.status] = counts.get(record.status, 0) + 1
    return counts

  async def purge_failed(self, job_ids: list[str] | None = None) -> int:
    targets = [job_id for job_id, record in self._jobs.items() if record.status == "failed" and (job_ids is None or job_id in job_ids)]
    for job_id in targets:
      del self._jobs[job_id]
    return len(targets)

  async def get_feedback(self, feedback_id: str) -> FeedbackRecord | None:
    return self._feedback.get(feedback_id)

  async def latest_feedback_version(self, subject_id: str) -> int:
    return self._latest_version(subject_id)

  def _latest_version(self, subject_id: str) -> int:
    return max((item.version for item in self._feedback.values() if item.subject_id == subject_id), default=0)
