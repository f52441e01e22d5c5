"""Dispatch into a bounded pool of asyncio tasks inside the API process."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from feedback_engine.config import Settings
from feedback_engine.services.tasks.interface import DispatchOutcome, TaskEnqueuer

logger = logging.getLogger(__name__)

JobRunner = Callable[[str | None], Awaitable[object]]


class InProcessEnqueuer(TaskEnqueuer):
  """Runs the processor as background asyncio tasks.

  The semaphore only bounds local resource usage; correctness still rests on
  the conditional claim in the job store.
  """

  def __init__(self, settings: Settings, runner: JobRunner | None = None) -> None:
    self.settings = settings
    self._runner = runner
    self._semaphore = asyncio.Semaphore(settings.max_concurrent_jobs)
    self._tasks: set[asyncio.Task] = set()

  async def _default_runner(self, job_id: str | None) -> object:
    from feedback_engine.jobs.worker import build_processor

    return await build_processor(self.settings, enqueuer=self).run(job_id)

  async def _run(self, job_id: str | None) -> None:
    runner = self._runner or self._default_runner
    async with self._semaphore:
      try:
        await runner(job_id)
      except Exception:  # noqa: BLE001
        logger.error("In-process run failed for job %s", job_id or "<next>", exc_info=True)

  async def enqueue(self, job_id: str | None) -> DispatchOutcome:
    task = asyncio.create_task(self._run(job_id))
    self._tasks.add(task)
    task.add_done_callback(self._tasks.discard)
    return DispatchOutcome(status="dispatched", job_id=job_id)

  @property
  def pending_tasks(self) -> int:
    return len(self._tasks)

  async def drain(self) -> None:
    """Wait until every scheduled run, including chained ones, has finished."""
    while self._tasks:
      await asyncio.gather(*list(self._tasks), return_exceptions=True)
