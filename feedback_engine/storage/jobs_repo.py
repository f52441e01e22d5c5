"""Storage interfaces for feedback jobs."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

from feedback_engine.jobs.models import FeedbackDraft, FeedbackRecord, JobRecord, JobStatus


class JobsRepository(Protocol):
  """Repository contract for job persistence.

  All coordination between workers is expressed as conditional writes against
  `status`; implementations must apply each write atomically and report a
  lost race by returning `None` rather than raising.
  """

  async def create_job(self, record: JobRecord) -> JobRecord:
    """Persist a new job, raising DuplicateJobError when the subject already has an active job."""

  async def get_job(self, job_id: str) -> JobRecord | None:
    """Fetch a job by identifier."""

  async def find_active_for_subject(self, subject_id: str) -> JobRecord | None:
    """Return the pending or processing job for a subject, if any."""

  async def list_pending(self, limit: int) -> list[JobRecord]:
    """Return pending jobs ordered by priority desc, then created_at asc."""

  async def count_processing(self) -> int:
    """Return the number of jobs currently processing."""

  async def count_ahead(self, job: JobRecord) -> int:
    """Return how many pending jobs would be selected before the given job."""

  async def claim_job(self, job_id: str, *, now: datetime) -> JobRecord | None:
    """Atomically move a pending job to processing, bumping attempts; None when another context won."""

  async def update_status(self, job_id: str, *, expected: JobStatus, new: JobStatus, now: datetime, **fields: Any) -> JobRecord | None:
    """Apply a conditional status write; None when the job was not in the expected status."""

  async def complete_job(self, job_id: str, *, feedback: FeedbackDraft, now: datetime) -> JobRecord | None:
    """Persist the feedback and mark the job completed in one unit; None when the job is no longer processing."""

  async def recover_stale(self, *, started_before: datetime, now: datetime, requeue_message: str, failed_message: str) -> tuple[list[JobRecord], list[JobRecord]]:
    """Reset abandoned processing jobs; returns (requeued, failed) jobs."""

  async def list_jobs(self, *, status: str | None = None, subject_id: str | None = None, requester_id: str | None = None, limit: int = 50, offset: int = 0) -> tuple[list[JobRecord], int]:
    """Return a page of jobs, newest first, with the filtered total count."""

  async def count_by_status(self, *, since: datetime) -> dict[str, int]:
    """Return job counts per status for jobs created since the given instant."""

  async def purge_failed(self, job_ids: list[str] | None = None) -> int:
    """Delete failed jobs (optionally restricted to ids) and return how many were removed."""

  async def get_feedback(self, feedback_id: str) -> FeedbackRecord | None:
    """Fetch a persisted feedback row."""

  async def latest_feedback_version(self, subject_id: str) -> int:
    """Return the highest feedback version stored for a subject, 0 when none exists."""
