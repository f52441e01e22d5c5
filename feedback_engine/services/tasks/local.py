from __future__ import annotations

import logging
from urllib.parse import urlparse

import httpx

from feedback_engine.config import Settings
from feedback_engine.services.tasks.interface import DispatchOutcome, TaskEnqueuer

logger = logging.getLogger(__name__)

PROCESSOR_RUN_PATH = "/internal/processor/run"


class LocalHttpEnqueuer(TaskEnqueuer):
  """Dispatches jobs by POSTing to the processor endpoint over HTTP."""

  def __init__(self, settings: Settings) -> None:
    self.settings = settings

  def _should_use_asgi_transport(self, base_url: str) -> bool:
    """Decide if we should route requests in-process via ASGITransport.

    ASGITransport runs the route's background tasks before returning the response,
    so local-http dispatch to localhost is synchronous: the dispatch timeout never
    fires and `enqueue` returns only after generation has finished. Use the
    in-process enqueuer for non-blocking local dispatch.
    """
    parsed = urlparse(base_url)
    hostname = (parsed.hostname or "").lower()
    return hostname in {"localhost", "127.0.0.1", "::1", "0.0.0.0"}

  def _build_client(self, base_url: str) -> httpx.AsyncClient:
    # Never trust environment proxy variables for internal task dispatch.
    if self._should_use_asgi_transport(base_url):
      from feedback_engine.main import app

      transport = httpx.ASGITransport(app=app)
      return httpx.AsyncClient(transport=transport, base_url=base_url, trust_env=False)
    return httpx.AsyncClient(trust_env=False)

  def _task_headers(self) -> dict[str, str]:
    if not self.settings.task_secret:
      raise RuntimeError("Task secret not configured.")
    return {"authorization": f"Bearer {self.settings.task_secret}"}

  async def enqueue(self, job_id: str | None) -> DispatchOutcome:
    if not self.settings.base_url:
      raise RuntimeError("Base URL not configured, strictly required for LocalHttpEnqueuer.")

    url = f"{self.settings.base_url.rstrip('/')}{PROCESSOR_RUN_PATH}"
    headers = self._task_headers()

    try:
      async with self._build_client(self.settings.base_url) as client:
        logger.info("Dispatching job %s to %s", job_id or "<next>", url)
        response = await client.post(url, json={"job_id": job_id}, headers=headers, timeout=self.settings.dispatch_timeout_seconds)
        response.raise_for_status()
    except httpx.ReadTimeout:
      # The request was delivered; the processor keeps going without us.
      logger.info("Dispatch for job %s detached after %.1fs", job_id or "<next>", self.settings.dispatch_timeout_seconds)
      return DispatchOutcome(status="detached", job_id=job_id)
    except httpx.HTTPStatusError as e:
      logger.error("Processor dispatch returned %s for job %s: %s", e.response.status_code, job_id, e.response.text)
      raise
    except httpx.RequestError as e:
      logger.error("Failed to dispatch job %s: %s", job_id, e)
      raise

    return DispatchOutcome(status="dispatched", job_id=job_id)
