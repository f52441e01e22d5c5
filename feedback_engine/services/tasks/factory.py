from __future__ import annotations

from feedback_engine.config import Settings
from feedback_engine.services.tasks.gcp import CloudTasksEnqueuer
from feedback_engine.services.tasks.inprocess import InProcessEnqueuer
from feedback_engine.services.tasks.interface import TaskEnqueuer
from feedback_engine.services.tasks.local import LocalHttpEnqueuer

# One pool per process so the semaphore bounds every caller.
_inprocess_enqueuer: InProcessEnqueuer | None = None


def get_task_enqueuer(settings: Settings) -> TaskEnqueuer:
  """Factory to get the configured task enqueuer."""
  global _inprocess_enqueuer
  if settings.task_service_provider == "gcp":
    return CloudTasksEnqueuer(settings)
  if settings.task_service_provider == "local-http":
    return LocalHttpEnqueuer(settings)
  if _inprocess_enqueuer is None:
    _inprocess_enqueuer = InProcessEnqueuer(settings)
  return _inprocess_enqueuer


async def shutdown_task_enqueuer() -> None:
  """Let in-flight in-process runs finish and forget the pool."""
  global _inprocess_enqueuer
  if _inprocess_enqueuer is not None:
    await _inprocess_enqueuer.drain()
  _inprocess_enqueuer = None
