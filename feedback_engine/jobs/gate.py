"""Concurrency gate and priority selection over the job store."""

from __future__ import annotations

from dataclasses import dataclass

from feedback_engine.jobs.models import JobRecord
from feedback_engine.storage.jobs_repo import JobsRepository


@dataclass(frozen=True)
class CapacitySnapshot:
  """Point-in-time view of processing slots.

  The count is read without holding anything, so two callers may both see a
  free slot and both proceed; the cap is therefore soft.
  """

  processing: int
  cap: int

  @property
  def available(self) -> int:
    return max(0, self.cap - self.processing)

  @property
  def is_full(self) -> bool:
    return self.processing >= self.cap

  @property
  def queue_position(self) -> int:
    """Position reported to a caller turned away by a full gate."""
    return max(1, self.processing - self.cap + 1)


async def check_capacity(repo: JobsRepository, cap: int) -> CapacitySnapshot:
  processing = await repo.count_processing()
  return CapacitySnapshot(processing=processing, cap=cap)


async def select_candidates(repo: JobsRepository, limit: int) -> list[JobRecord]:
  """Return up to `limit` pending jobs, highest priority first, FIFO within a priority."""
  if limit <= 0:
    return []
  return await repo.list_pending(limit)


async def queue_position(repo: JobsRepository, job: JobRecord) -> int | None:
  """1-based position of a pending job in selection order; None once it left the queue."""
  if job.status != "pending":
    return None
  return await repo.count_ahead(job) + 1


def estimate_wait_seconds(position: int | None, seconds_per_job: int) -> int | None:
  if position is None:
    return None
  return position * seconds_per_job
