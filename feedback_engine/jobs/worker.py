"""Processor that claims pending feedback jobs and runs generation for them."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Literal

from feedback_engine.config import Settings
from feedback_engine.generation.factory import get_feedback_generator
from feedback_engine.generation.interface import FeedbackGenerator, GenerationError, GenerationRequest
from feedback_engine.jobs.gate import check_capacity, estimate_wait_seconds, select_candidates
from feedback_engine.jobs.models import JobRecord
from feedback_engine.jobs.priority import is_privileged_owner, resolve_model
from feedback_engine.jobs.retry import decide_retry
from feedback_engine.services.tasks.factory import get_task_enqueuer
from feedback_engine.services.tasks.interface import TaskEnqueuer, dispatch_best_effort
from feedback_engine.storage.assignments_repo import AssignmentsRepository
from feedback_engine.storage.factory import get_assignments_repo, get_jobs_repo
from feedback_engine.storage.jobs_repo import JobsRepository

RunStatus = Literal["queued", "idle", "not_found", "already_processing", "claimed", "completed", "requeued", "failed", "lost"]


@dataclass(frozen=True)
class RunOutcome:
  """What a processor invocation did."""

  status: RunStatus
  job_id: str | None = None
  job: JobRecord | None = None
  queue_position: int | None = None
  estimated_wait_seconds: int | None = None
  result_id: str | None = None
  error_message: str | None = None

  def to_payload(self) -> dict:
    payload: dict = {"status": self.status, "jobId": self.job_id}
    if self.queue_position is not None:
      payload["queuePosition"] = self.queue_position
      payload["estimatedWait"] = self.estimated_wait_seconds
    if self.result_id is not None:
      payload["resultId"] = self.result_id
    return payload


def _utcnow() -> datetime:
  return datetime.now(UTC)


class JobProcessor:
  """Coordinates claiming and executing feedback jobs."""

  def __init__(
    self,
    *,
    jobs_repo: JobsRepository,
    assignments_repo: AssignmentsRepository,
    generator: FeedbackGenerator,
    enqueuer: TaskEnqueuer,
    settings: Settings,
    clock: Callable[[], datetime] | None = None,
  ) -> None:
    self._jobs_repo = jobs_repo
    self._assignments_repo = assignments_repo
    self._generator = generator
    self._enqueuer = enqueuer
    self._settings = settings
    self._clock = clock or _utcnow
    self._logger = logging.getLogger(__name__)

  async def acquire(self, job_id: str | None = None) -> RunOutcome:
    """Pass the gate, pick a target and claim it; only a `claimed` outcome carries a job."""
    capacity = await check_capacity(self._jobs_repo, self._settings.max_concurrent_jobs)
    if capacity.is_full:
      position = capacity.queue_position
      self._logger.info("Gate full (%s/%s processing); job %s stays queued", capacity.processing, capacity.cap, job_id or "<next>")
      return RunOutcome(status="queued", job_id=job_id, queue_position=position, estimated_wait_seconds=estimate_wait_seconds(position, self._settings.seconds_per_job_estimate))

    if job_id is None:
      candidates = await select_candidates(self._jobs_repo, 1)
      if not candidates:
        return RunOutcome(status="idle")
      job_id = candidates[0].job_id
    elif await self._jobs_repo.get_job(job_id) is None:
      self._logger.warning("Processor asked to run unknown job %s", job_id)
      return RunOutcome(status="not_found", job_id=job_id)

    claimed = await self._jobs_repo.claim_job(job_id, now=self._clock())
    if claimed is None:
      # Another dispatch won the race, or the job left pending meanwhile.
      return RunOutcome(status="already_processing", job_id=job_id)

    self._logger.info("Claimed job %s (subject=%s attempt=%s/%s)", claimed.job_id, claimed.subject_id, claimed.attempts, claimed.max_attempts)
    return RunOutcome(status="claimed", job_id=claimed.job_id, job=claimed)

  async def run(self, job_id: str | None = None) -> RunOutcome:
    outcome = await self.acquire(job_id)
    if outcome.job is None:
      return outcome
    return await self.execute(outcome.job)

  async def execute(self, job: JobRecord) -> RunOutcome:
    """Generate feedback for a claimed job and record the outcome."""
    try:
      assignment = await self._assignments_repo.get_assignment(job.subject_id)
      if assignment is None:
        raise GenerationError(f"Assignment {job.subject_id} no longer exists.")
      premium = is_privileged_owner(assignment.user_id, assignment.owner_tier, self._settings)
      request = GenerationRequest(
        job_id=job.job_id,
        subject_id=job.subject_id,
        user_id=assignment.user_id,
        content=assignment.content,
        model=resolve_model(premium, self._settings),
        premium=premium,
      )
      draft = await asyncio.wait_for(self._generator.generate(request), timeout=self._settings.generation_timeout_seconds)
      completed = await self._jobs_repo.complete_job(job.job_id, feedback=draft, now=self._clock())
    except Exception as exc:  # noqa: BLE001
      self._logger.error("Job %s attempt %s failed", job.job_id, job.attempts, exc_info=True)
      return await self._handle_failure(job, exc)

    if completed is None:
      self._logger.warning("Job %s left processing before completion; result discarded", job.job_id)
      return RunOutcome(status="lost", job_id=job.job_id)

    self._logger.info("Completed job %s with feedback %s", job.job_id, completed.result_id)
    await self._dispatch_next()
    return RunOutcome(status="completed", job_id=job.job_id, job=completed, result_id=completed.result_id)

  async def _handle_failure(self, job: JobRecord, error: BaseException) -> RunOutcome:
    decision = decide_retry(job, error)
    now = self._clock()
    if decision.requeue:
      updated = await self._jobs_repo.update_status(job.job_id, expected="processing", new="pending", now=now, started_at=None, error_message=decision.error_message)
      status: RunStatus = "requeued"
    else:
      updated = await self._jobs_repo.update_status(job.job_id, expected="processing", new="failed", now=now, completed_at=now, error_message=decision.error_message)
      status = "failed"

    if updated is None:
      self._logger.warning("Job %s left processing before its failure was recorded", job.job_id)
      return RunOutcome(status="lost", job_id=job.job_id, error_message=decision.error_message)

    if status == "failed":
      self._logger.error("Job %s failed permanently after %s attempts: %s", job.job_id, job.attempts, decision.error_message)
      await self._dispatch_next()
    else:
      self._logger.info("Job %s requeued after attempt %s/%s", job.job_id, job.attempts, job.max_attempts)
    return RunOutcome(status=status, job_id=job.job_id, job=updated, error_message=decision.error_message)

  async def _dispatch_next(self) -> None:
    """Hand the freed slot to the next candidate; the scheduler tick covers any miss."""
    if not self._settings.chain_dispatch:
      return
    try:
      capacity = await check_capacity(self._jobs_repo, self._settings.max_concurrent_jobs)
      if capacity.is_full:
        return
      candidates = await select_candidates(self._jobs_repo, 1)
    except Exception:  # noqa: BLE001
      self._logger.error("Chain dispatch lookup failed", exc_info=True)
      return
    if candidates:
      await dispatch_best_effort(self._enqueuer, candidates[0].job_id)


def build_processor(settings: Settings, *, jobs_repo: JobsRepository | None = None, enqueuer: TaskEnqueuer | None = None) -> JobProcessor:
  """Wire a processor from the configured collaborators."""
  return JobProcessor(
    jobs_repo=jobs_repo or get_jobs_repo(settings),
    assignments_repo=get_assignments_repo(settings),
    generator=get_feedback_generator(settings),
    enqueuer=enqueuer or get_task_enqueuer(settings),
    settings=settings,
  )
