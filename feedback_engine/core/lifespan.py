import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from urllib.parse import urlparse

from fastapi import FastAPI

from feedback_engine.config import get_settings
from feedback_engine.core.database import dispose_engine
from feedback_engine.core.firebase import initialize_firebase
from feedback_engine.core.logging import _initialize_logging
from feedback_engine.services.tasks.factory import shutdown_task_enqueuer


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Set up logging and external clients after uvicorn starts; release them on shutdown."""
  # Invalid configuration raises here and refuses startup.
  settings = get_settings()
  logger = logging.getLogger("feedback_engine.core.lifespan")

  try:
    _initialize_logging(settings)
    logger.info("Startup complete - logging verified.")
  except Exception:  # noqa: BLE001
    logger.warning("Initial logging setup failed; continuing with default handlers.", exc_info=True)

  initialize_firebase()
  logger.info(
    "Feedback engine ready env=%s jobs_backend=%s dispatch=%s generator=%s max_concurrent=%s pg=%s",
    settings.environment,
    settings.jobs_backend,
    settings.task_service_provider,
    settings.generator_provider,
    settings.max_concurrent_jobs,
    _redact_dsn(settings.pg_dsn),
  )

  yield

  await shutdown_task_enqueuer()
  await dispose_engine()
  logger.info("Shutdown complete.")


def _redact_dsn(raw: str | None) -> str:
  """Redact credentials from a DSN while keeping host/db visible."""
  if not raw:
    return "<unset>"

  parsed = urlparse(raw)
  if not parsed.scheme:
    return "<invalid>"

  user = parsed.username or ""
  host = parsed.hostname or ""
  port = f":{parsed.port}" if parsed.port else ""
  netloc = f"{user}@{host}{port}" if user else f"{host}{port}"
  database = parsed.path.lstrip("/")
  path = f"/{database}" if database else ""
  return f"{parsed.scheme}://{netloc}{path}"
