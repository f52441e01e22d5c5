from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from feedback_engine.config import Settings
from feedback_engine.jobs.models import JobRecord
from feedback_engine.storage.jobs_repo import JobsRepository

REQUEUE_MESSAGE = "Recovered from stale processing state"
EXHAUSTED_MESSAGE = "Abandoned while processing after the final attempt"

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecoveryResult:
  requeued: list[JobRecord] = field(default_factory=list)
  failed: list[JobRecord] = field(default_factory=list)


async def recover_zombies(repo: JobsRepository, settings: Settings, now: datetime) -> RecoveryResult:
  """Reset jobs stuck in processing beyond the zombie threshold.

  Attempts are left untouched: the abandoned attempt was already counted at
  claim time. Jobs that have no attempts left become failed instead of pending.
  """
  cutoff = now - timedelta(seconds=settings.zombie_threshold_seconds)
  requeued, failed = await repo.recover_stale(started_before=cutoff, now=now, requeue_message=REQUEUE_MESSAGE, failed_message=EXHAUSTED_MESSAGE)
  for job in requeued:
    logger.warning("Recovered stale job %s (subject=%s attempts=%s)", job.job_id, job.subject_id, job.attempts)
  for job in failed:
    logger.warning("Failed stale job %s after %s attempts", job.job_id, job.attempts)
  return RecoveryResult(requeued=requeued, failed=failed)
