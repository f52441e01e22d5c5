"""Job operations invoked by the HTTP routes."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

from fastapi import BackgroundTasks

from feedback_engine.api.models import FeedbackResponse, JobDetailResponse, JobSummaryResponse, QueueSnapshotResponse
from feedback_engine.config import Settings
from feedback_engine.core.security import AuthContext
from feedback_engine.jobs.errors import DuplicateJobError, InvalidJobStateError, JobAccessDeniedError, JobNotFoundError, SubjectValidationError
from feedback_engine.jobs.gate import check_capacity, estimate_wait_seconds, queue_position
from feedback_engine.jobs.models import FeedbackRecord, JobRecord
from feedback_engine.jobs.priority import resolve_priority
from feedback_engine.services.tasks.factory import get_task_enqueuer
from feedback_engine.services.tasks.interface import TaskEnqueuer, dispatch_best_effort
from feedback_engine.storage.assignments_repo import AssignmentsRepository
from feedback_engine.storage.factory import get_assignments_repo, get_jobs_repo
from feedback_engine.storage.jobs_repo import JobsRepository
from feedback_engine.utils.ids import generate_job_id

logger = logging.getLogger(__name__)

MAX_SUBJECT_ID_LENGTH = 128


def _utcnow() -> datetime:
  return datetime.now(UTC)


def validate_subject_id(subject_id: str | None) -> str:
  """Normalize a caller-supplied subject id or reject it."""
  if subject_id is None or not isinstance(subject_id, str) or subject_id.strip() == "":
    raise SubjectValidationError("Assignment ID required.")
  normalized = subject_id.strip()
  if len(normalized) > MAX_SUBJECT_ID_LENGTH:
    raise SubjectValidationError(f"Assignment ID must be at most {MAX_SUBJECT_ID_LENGTH} characters.")
  return normalized


def trigger_job_processing(background_tasks: BackgroundTasks, job_id: str, enqueuer: TaskEnqueuer) -> None:
  """Schedule a best-effort dispatch after the response is sent.

  A dispatch failure leaves the job pending for the scheduler tick.
  """

  async def _dispatch() -> None:
    await dispatch_best_effort(enqueuer, job_id)

  background_tasks.add_task(_dispatch)


async def submit_job(
  subject_id: str | None,
  auth: AuthContext,
  settings: Settings,
  background_tasks: BackgroundTasks | None = None,
  *,
  jobs_repo: JobsRepository | None = None,
  assignments_repo: AssignmentsRepository | None = None,
  enqueuer: TaskEnqueuer | None = None,
) -> JobRecord:
  """Create a pending job for an assignment and kick off processing.

  Owners may only request feedback for their own submitted assignments. Administrators
  may re-generate feedback for any existing assignment; such jobs are marked manual and
  run at the privileged priority.
  """
  normalized = validate_subject_id(subject_id)
  jobs_repo = jobs_repo or get_jobs_repo(settings)
  assignments_repo = assignments_repo or get_assignments_repo(settings)

  assignment = await assignments_repo.get_assignment(normalized)
  if assignment is None:
    raise SubjectValidationError("Assignment not found.", status_code=404, subject_id=normalized)
  if not auth.is_admin and assignment.user_id != auth.user_id:
    raise JobAccessDeniedError("Cannot request feedback for another user's assignment.")
  manual = auth.is_admin
  if not manual and not assignment.is_eligible:
    raise SubjectValidationError("Assignment must be submitted before feedback can be generated.", subject_id=normalized, status=assignment.status)

  existing = await jobs_repo.find_active_for_subject(normalized)
  if existing is not None:
    raise DuplicateJobError(normalized, existing.job_id)

  now = _utcnow()
  record = JobRecord(
    job_id=generate_job_id(),
    subject_id=normalized,
    requester_id=assignment.user_id,
    status="pending",
    priority=settings.priority_privileged if manual else resolve_priority(assignment.user_id, assignment.owner_tier, settings),
    attempts=0,
    max_attempts=settings.max_attempts,
    created_at=now,
    updated_at=now,
    metadata={"submitted_by": auth.user_id, "manual": True} if manual else {"submitted_by": auth.user_id},
  )
  created = await jobs_repo.create_job(record)
  logger.info("Created feedback job %s for subject %s (priority=%s)", created.job_id, normalized, created.priority)

  enqueuer = enqueuer or get_task_enqueuer(settings)
  if background_tasks is not None:
    trigger_job_processing(background_tasks, created.job_id, enqueuer)
  else:
    await dispatch_best_effort(enqueuer, created.job_id)
  return created


async def get_job_for(job_id: str, auth: AuthContext, jobs_repo: JobsRepository) -> JobRecord:
  """Load a job the caller may see."""
  record = await jobs_repo.get_job(job_id)
  if record is None:
    raise JobNotFoundError(job_id)
  if not auth.is_admin and record.requester_id != auth.user_id:
    raise JobAccessDeniedError()
  return record


async def describe_job(record: JobRecord, auth: AuthContext, jobs_repo: JobsRepository, settings: Settings) -> JobDetailResponse | JobSummaryResponse:
  """Admins get the full row; owners get a reduced view with their queue position."""
  position = await queue_position(jobs_repo, record)
  wait = estimate_wait_seconds(position, settings.seconds_per_job_estimate)
  if auth.is_admin:
    return JobDetailResponse(
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
      metadata=record.metadata,
      created_at=record.created_at,
      updated_at=record.updated_at,
      queue_position=position,
      estimated_wait_seconds=wait,
    )
  return JobSummaryResponse(
    job_id=record.job_id,
    subject_id=record.subject_id,
    status=record.status,
    created_at=record.created_at,
    updated_at=record.updated_at,
    completed_at=record.completed_at,
    result_id=record.result_id,
    queue_position=position,
    estimated_wait_seconds=wait,
  )


async def list_jobs_for(
  auth: AuthContext,
  settings: Settings,
  *,
  status: str | None = None,
  subject_id: str | None = None,
  limit: int = 50,
  offset: int = 0,
  jobs_repo: JobsRepository | None = None,
) -> tuple[list[JobDetailResponse | JobSummaryResponse], int, dict[str, int] | None]:
  """Return a page of visible jobs; admins also get recent counts per status."""
  jobs_repo = jobs_repo or get_jobs_repo(settings)
  requester_id = None if auth.is_admin else auth.user_id
  records, total = await jobs_repo.list_jobs(status=status, subject_id=subject_id, requester_id=requester_id, limit=limit, offset=offset)
  items = [await describe_job(record, auth, jobs_repo, settings) for record in records]
  stats = None
  if auth.is_admin:
    since = _utcnow() - timedelta(hours=settings.stats_window_hours)
    stats = await jobs_repo.count_by_status(since=since)
  return items, total, stats


async def retry_job(job_id: str, auth: AuthContext, settings: Settings, background_tasks: BackgroundTasks | None = None, *, jobs_repo: JobsRepository | None = None, enqueuer: TaskEnqueuer | None = None) -> JobRecord:
  """Send a failed job back to pending with a fresh attempt budget."""
  if not auth.is_admin:
    raise JobAccessDeniedError("Only administrators can retry jobs.")
  jobs_repo = jobs_repo or get_jobs_repo(settings)
  record = await jobs_repo.get_job(job_id)
  if record is None:
    raise JobNotFoundError(job_id)
  if record.status != "failed":
    raise InvalidJobStateError(job_id, record.status, "retry")
  active = await jobs_repo.find_active_for_subject(record.subject_id)
  if active is not None:
    raise DuplicateJobError(record.subject_id, active.job_id)

  now = _utcnow()
  metadata = {**record.metadata, "retried_by": auth.user_id, "retried_at": now.isoformat(), "previous_attempts": record.attempts, "previous_error": record.error_message}
  updated = await jobs_repo.update_status(job_id, expected="failed", new="pending", now=now, attempts=0, started_at=None, completed_at=None, error_message=None, result_id=None, metadata=metadata)
  if updated is None:
    current = await jobs_repo.get_job(job_id)
    if current is None:
      raise JobNotFoundError(job_id)
    raise InvalidJobStateError(job_id, current.status, "retry")

  logger.info("Job %s retried by %s (previous attempts=%s)", job_id, auth.user_id, record.attempts)
  enqueuer = enqueuer or get_task_enqueuer(settings)
  if background_tasks is not None:
    trigger_job_processing(background_tasks, job_id, enqueuer)
  else:
    await dispatch_best_effort(enqueuer, job_id)
  return updated


async def cancel_job(job_id: str, auth: AuthContext, settings: Settings, *, jobs_repo: JobsRepository | None = None) -> JobRecord:
  """Cancel a job that has not been claimed yet."""
  jobs_repo = jobs_repo or get_jobs_repo(settings)
  record = await get_job_for(job_id, auth, jobs_repo)
  if record.status != "pending":
    raise InvalidJobStateError(job_id, record.status, "cancel")

  now = _utcnow()
  metadata = {**record.metadata, "cancelled_by": auth.user_id, "cancelled_at": now.isoformat()}
  updated = await jobs_repo.update_status(job_id, expected="pending", new="cancelled", now=now, completed_at=now, metadata=metadata)
  if updated is None:
    # Claimed between the read and the write.
    current = await jobs_repo.get_job(job_id)
    raise InvalidJobStateError(job_id, current.status if current else "unknown", "cancel")

  logger.info("Job %s cancelled by %s", job_id, auth.user_id)
  return updated


async def purge_failed_jobs(auth: AuthContext, settings: Settings, job_ids: list[str] | None = None, *, jobs_repo: JobsRepository | None = None) -> int:
  if not auth.is_admin:
    raise JobAccessDeniedError("Only administrators can delete jobs.")
  jobs_repo = jobs_repo or get_jobs_repo(settings)
  deleted = await jobs_repo.purge_failed(job_ids)
  logger.info("Purged %s failed jobs (requested by %s)", deleted, auth.user_id)
  return deleted


async def get_job_result(job_id: str, auth: AuthContext, settings: Settings, *, jobs_repo: JobsRepository | None = None) -> FeedbackRecord:
  jobs_repo = jobs_repo or get_jobs_repo(settings)
  record = await get_job_for(job_id, auth, jobs_repo)
  if record.status != "completed" or record.result_id is None:
    raise InvalidJobStateError(job_id, record.status, "read the result of")
  feedback = await jobs_repo.get_feedback(record.result_id)
  if feedback is None:
    raise JobNotFoundError(job_id)
  return feedback


def feedback_to_response(feedback: FeedbackRecord) -> FeedbackResponse:
  return FeedbackResponse(
    feedback_id=feedback.feedback_id,
    subject_id=feedback.subject_id,
    job_id=feedback.job_id,
    version=feedback.version,
    content=feedback.content,
    ai_model=feedback.ai_model,
    input_tokens=feedback.input_tokens,
    output_tokens=feedback.output_tokens,
    created_at=feedback.created_at,
  )


async def get_queue_snapshot(settings: Settings, *, jobs_repo: JobsRepository | None = None) -> QueueSnapshotResponse:
  jobs_repo = jobs_repo or get_jobs_repo(settings)
  capacity = await check_capacity(jobs_repo, settings.max_concurrent_jobs)
  _, pending = await jobs_repo.list_jobs(status="pending", limit=1)
  recent = await jobs_repo.count_by_status(since=_utcnow() - timedelta(hours=settings.stats_window_hours))
  return QueueSnapshotResponse(
    pending=pending,
    processing=capacity.processing,
    max_concurrent=capacity.cap,
    available=capacity.available,
    completed_recent=recent.get("completed", 0),
    failed_recent=recent.get("failed", 0),
    window_hours=settings.stats_window_hours,
  )
