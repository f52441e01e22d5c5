"""Periodic tick: recover zombies, then fill free processing slots."""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass
from datetime import datetime

from feedback_engine.config import Settings
from feedback_engine.jobs.gate import check_capacity, select_candidates
from feedback_engine.jobs.recovery import recover_zombies
from feedback_engine.services.tasks.interface import TaskEnqueuer, dispatch_best_effort
from feedback_engine.storage.jobs_repo import JobsRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TickReport:
  recovered: int
  failed_zombies: int
  processing: int
  max_concurrent: int
  triggered: int
  dispatch_failures: int
  elapsed_ms: int

  def to_dict(self) -> dict[str, int]:
    return asdict(self)


async def run_scheduler_tick(repo: JobsRepository, enqueuer: TaskEnqueuer, settings: Settings, now: datetime) -> TickReport:
  """Run one scheduler pass.

  Each dispatch is best effort; a failed one is counted and left pending for
  the next tick.
  """
  started = time.perf_counter()
  recovery = await recover_zombies(repo, settings, now)

  capacity = await check_capacity(repo, settings.max_concurrent_jobs)
  candidates = await select_candidates(repo, capacity.available)

  triggered = 0
  failures = 0
  for job in candidates:
    outcome = await dispatch_best_effort(enqueuer, job.job_id)
    if outcome.ok:
      triggered += 1
    else:
      failures += 1

  report = TickReport(
    recovered=len(recovery.requeued),
    failed_zombies=len(recovery.failed),
    processing=capacity.processing,
    max_concurrent=capacity.cap,
    triggered=triggered,
    dispatch_failures=failures,
    elapsed_ms=int((time.perf_counter() - started) * 1000),
  )
  logger.info("Scheduler tick: %s", report.to_dict())
  return report
