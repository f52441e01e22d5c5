from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal, Protocol

DispatchStatus = Literal["dispatched", "detached", "failed"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DispatchOutcome:
  """How a dispatch attempt ended.

  `detached` means the request reached the processor but the dispatcher stopped
  waiting for the acknowledgement; the job itself is unaffected.
  """

  status: DispatchStatus
  job_id: str | None = None
  detail: str | None = None

  @property
  def ok(self) -> bool:
    return self.status != "failed"


class TaskEnqueuer(Protocol):
  """Interface for handing jobs to the processor."""

  async def enqueue(self, job_id: str | None) -> DispatchOutcome:
    """Ask the processor to run a job; None lets it pick the next candidate.

    Raises on dispatch failure.
    """
    ...


async def dispatch_best_effort(enqueuer: TaskEnqueuer, job_id: str | None) -> DispatchOutcome:
  """Dispatch without letting failures escape; the scheduler tick is the fallback."""
  try:
    return await enqueuer.enqueue(job_id)
  except Exception as exc:  # noqa: BLE001
    logger.error("Dispatch failed for job %s: %s", job_id, exc, exc_info=True)
    return DispatchOutcome(status="failed", job_id=job_id, detail=str(exc))
