from __future__ import annotations

from feedback_engine.config import Settings
from feedback_engine.storage.assignments_repo import AssignmentsRepository, InMemoryAssignmentsRepository, PostgresAssignmentsRepository
from feedback_engine.storage.jobs_repo import JobsRepository
from feedback_engine.storage.memory_jobs_repo import InMemoryJobsRepository
from feedback_engine.storage.postgres_jobs_repo import PostgresJobsRepository

# The memory backend only works when every caller shares the same instance.
_memory_jobs: InMemoryJobsRepository | None = None
_memory_assignments: InMemoryAssignmentsRepository | None = None


def get_jobs_repo(settings: Settings) -> JobsRepository:
  """Return the active jobs repository."""
  global _memory_jobs
  if settings.jobs_backend == "memory":
    if _memory_jobs is None:
      _memory_jobs = InMemoryJobsRepository()
    return _memory_jobs

  if not settings.pg_dsn:
    raise ValueError("FEEDBACK_PG_DSN must be set to enable Postgres persistence.")

  return PostgresJobsRepository()


def get_assignments_repo(settings: Settings) -> AssignmentsRepository:
  """Return the active assignments lookup."""
  global _memory_assignments
  if settings.jobs_backend == "memory":
    if _memory_assignments is None:
      _memory_assignments = InMemoryAssignmentsRepository()
    return _memory_assignments

  if not settings.pg_dsn:
    raise ValueError("FEEDBACK_PG_DSN must be set to enable Postgres persistence.")

  return PostgresAssignmentsRepository()


def reset_memory_backends() -> None:
  """Drop the shared in-memory stores."""
  global _memory_jobs, _memory_assignments
  _memory_jobs = None
  _memory_assignments = None
