from __future__ import annotations

import json
import logging

from google.cloud import tasks_v2
from starlette.concurrency import run_in_threadpool

from feedback_engine.config import Settings
from feedback_engine.services.tasks.interface import DispatchOutcome, TaskEnqueuer
from feedback_engine.services.tasks.local import PROCESSOR_RUN_PATH

logger = logging.getLogger(__name__)


class CloudTasksEnqueuer(TaskEnqueuer):
  """Enqueues processor runs to Google Cloud Tasks."""

  def __init__(self, settings: Settings, client: tasks_v2.CloudTasksClient | None = None) -> None:
    self.settings = settings
    self.client = client or tasks_v2.CloudTasksClient()

  def _build_task(self, job_id: str | None) -> dict:
    if not self.settings.task_secret:
      raise RuntimeError("Task secret not configured.")
    url = f"{self.settings.base_url.rstrip('/')}{PROCESSOR_RUN_PATH}"
    return {
      "http_request": {
        "http_method": tasks_v2.HttpMethod.POST,
        "url": url,
        "headers": {"Content-Type": "application/json", "x-feedback-task-secret": self.settings.task_secret},
        "body": json.dumps({"job_id": job_id}).encode(),
      }
    }

  async def enqueue(self, job_id: str | None) -> DispatchOutcome:
    if not self.settings.cloud_tasks_queue_path:
      raise RuntimeError("Cloud Tasks queue path not configured.")

    if not self.settings.base_url:
      raise RuntimeError("Base URL not configured.")

    task = self._build_task(job_id)
    parent = self.settings.cloud_tasks_queue_path
    response = await run_in_threadpool(self.client.create_task, request={"parent": parent, "task": task})
    logger.info("Enqueued task %s for job %s", response.name, job_id or "<next>")
    return DispatchOutcome(status="dispatched", job_id=job_id, detail=response.name)
