"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

_JOBS_BACKENDS = {"postgres", "memory"}
_TASK_PROVIDERS = {"inprocess", "local-http", "gcp"}
_GENERATOR_PROVIDERS = {"http", "dummy"}


@dataclass(frozen=True)
class Settings:
  """Typed settings for the feedback engine."""

  environment: str
  debug: bool
  allowed_origins: tuple[str, ...]
  log_max_bytes: int
  log_backup_count: int
  log_http_4xx: bool
  pg_dsn: str | None
  pg_connect_timeout: int
  jobs_backend: str
  max_concurrent_jobs: int
  max_attempts: int
  priority_default: int
  priority_privileged: int
  premium_user_ids: frozenset[str]
  zombie_threshold_seconds: int
  generation_timeout_seconds: int
  dispatch_timeout_seconds: float
  stats_window_hours: int
  seconds_per_job_estimate: int
  chain_dispatch: bool
  task_service_provider: str
  base_url: str | None
  cloud_tasks_queue_path: str | None
  task_secret: str | None
  scheduler_secret: str | None
  generator_provider: str
  generator_url: str | None
  generator_secret: str | None
  model_default: str
  model_premium: str
  firebase_project_id: str | None
  firebase_service_account_json_path: str | None


@dataclass(frozen=True)
class DatabaseSettings:
  """Typed settings for database connectivity."""

  debug: bool
  pg_dsn: str | None
  pg_connect_timeout: int


def _parse_bool(raw: str | None, *, default: bool = False) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None or raw.strip() == "":
    return default

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  if value == "":
    return None
  return value


def _positive_int(name: str, default: str) -> int:
  value = int(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive integer.")
  return value


def _parse_origins(raw: str | None) -> tuple[str, ...]:
  origins = [origin.strip() for origin in (raw or "http://localhost:3000").split(",") if origin.strip()]

  if not origins:
    raise ValueError("FEEDBACK_ALLOWED_ORIGINS must include at least one origin.")

  if "*" in origins:
    raise ValueError("FEEDBACK_ALLOWED_ORIGINS must not include wildcard origins.")

  return tuple(origins)


def _parse_id_list(raw: str | None) -> frozenset[str]:
  if not raw:
    return frozenset()
  return frozenset(item.strip() for item in raw.split(",") if item.strip())


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("FEEDBACK_ENV", "development").lower()
  debug = _parse_bool(os.getenv("FEEDBACK_DEBUG"))

  log_max_bytes = _positive_int("FEEDBACK_LOG_MAX_BYTES", "5242880")  # 5MB default
  log_backup_count = int(os.getenv("FEEDBACK_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("FEEDBACK_LOG_BACKUP_COUNT must be zero or a positive integer.")

  jobs_backend = os.getenv("FEEDBACK_JOBS_BACKEND", "postgres").strip().lower()
  if jobs_backend not in _JOBS_BACKENDS:
    raise ValueError(f"FEEDBACK_JOBS_BACKEND must be one of {sorted(_JOBS_BACKENDS)}.")

  max_concurrent_jobs = _positive_int("FEEDBACK_MAX_CONCURRENT_JOBS", "5")
  max_attempts = _positive_int("FEEDBACK_MAX_ATTEMPTS", "3")

  priority_default = int(os.getenv("FEEDBACK_PRIORITY_DEFAULT", "5"))
  priority_privileged = int(os.getenv("FEEDBACK_PRIORITY_PRIVILEGED", "10"))
  if priority_privileged < priority_default:
    raise ValueError("FEEDBACK_PRIORITY_PRIVILEGED must not be lower than FEEDBACK_PRIORITY_DEFAULT.")

  zombie_threshold_seconds = _positive_int("FEEDBACK_ZOMBIE_THRESHOLD_SECONDS", "300")
  generation_timeout_seconds = _positive_int("FEEDBACK_GENERATION_TIMEOUT_SECONDS", "240")
  # A generation still inside its own deadline must never look abandoned to the sweep.
  if generation_timeout_seconds >= zombie_threshold_seconds:
    raise ValueError("FEEDBACK_GENERATION_TIMEOUT_SECONDS must be lower than FEEDBACK_ZOMBIE_THRESHOLD_SECONDS.")

  dispatch_timeout_seconds = float(os.getenv("FEEDBACK_DISPATCH_TIMEOUT_SECONDS", "10"))
  if dispatch_timeout_seconds <= 0:
    raise ValueError("FEEDBACK_DISPATCH_TIMEOUT_SECONDS must be positive.")

  task_service_provider = os.getenv("FEEDBACK_TASK_SERVICE_PROVIDER", "inprocess").strip().lower()
  if task_service_provider not in _TASK_PROVIDERS:
    raise ValueError(f"FEEDBACK_TASK_SERVICE_PROVIDER must be one of {sorted(_TASK_PROVIDERS)}.")

  generator_provider = os.getenv("FEEDBACK_GENERATOR_PROVIDER", "http").strip().lower()
  if generator_provider not in _GENERATOR_PROVIDERS:
    raise ValueError(f"FEEDBACK_GENERATOR_PROVIDER must be one of {sorted(_GENERATOR_PROVIDERS)}.")

  return Settings(
    environment=environment,
    debug=debug,
    allowed_origins=_parse_origins(os.getenv("FEEDBACK_ALLOWED_ORIGINS")),
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    log_http_4xx=_parse_bool(os.getenv("FEEDBACK_LOG_HTTP_4XX")),
    pg_dsn=_optional_str(os.getenv("FEEDBACK_PG_DSN")) or _optional_str(os.getenv("DATABASE_URL")),
    pg_connect_timeout=_positive_int("FEEDBACK_PG_CONNECT_TIMEOUT", "5"),
    jobs_backend=jobs_backend,
    max_concurrent_jobs=max_concurrent_jobs,
    max_attempts=max_attempts,
    priority_default=priority_default,
    priority_privileged=priority_privileged,
    premium_user_ids=_parse_id_list(os.getenv("FEEDBACK_PREMIUM_USER_IDS")),
    zombie_threshold_seconds=zombie_threshold_seconds,
    generation_timeout_seconds=generation_timeout_seconds,
    dispatch_timeout_seconds=dispatch_timeout_seconds,
    stats_window_hours=_positive_int("FEEDBACK_STATS_WINDOW_HOURS", "24"),
    seconds_per_job_estimate=_positive_int("FEEDBACK_SECONDS_PER_JOB_ESTIMATE", "30"),
    chain_dispatch=_parse_bool(os.getenv("FEEDBACK_CHAIN_DISPATCH"), default=True),
    task_service_provider=task_service_provider,
    base_url=_optional_str(os.getenv("FEEDBACK_BASE_URL")),
    cloud_tasks_queue_path=_optional_str(os.getenv("FEEDBACK_CLOUD_TASKS_QUEUE_PATH")),
    task_secret=_optional_str(os.getenv("FEEDBACK_TASK_SECRET")),
    scheduler_secret=_optional_str(os.getenv("FEEDBACK_SCHEDULER_SECRET")),
    generator_provider=generator_provider,
    generator_url=_optional_str(os.getenv("FEEDBACK_GENERATOR_URL")),
    generator_secret=_optional_str(os.getenv("FEEDBACK_GENERATOR_SECRET")),
    model_default=os.getenv("FEEDBACK_MODEL_DEFAULT", "claude-3-5-sonnet-latest"),
    model_premium=os.getenv("FEEDBACK_MODEL_PREMIUM", "claude-3-opus-latest"),
    firebase_project_id=_optional_str(os.getenv("FIREBASE_PROJECT_ID")),
    firebase_service_account_json_path=_optional_str(os.getenv("FIREBASE_SERVICE_ACCOUNT_JSON_PATH")),
  )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
  """Load database settings without requiring web-runtime configuration."""
  # Keep database configuration isolated so migrations and offline scripts don't require unrelated env vars.
  debug = _parse_bool(os.getenv("FEEDBACK_DEBUG"))
  pg_connect_timeout = _positive_int("FEEDBACK_PG_CONNECT_TIMEOUT", "5")
  pg_dsn = _optional_str(os.getenv("FEEDBACK_PG_DSN")) or _optional_str(os.getenv("DATABASE_URL"))
  return DatabaseSettings(debug=debug, pg_dsn=pg_dsn, pg_connect_timeout=pg_connect_timeout)
