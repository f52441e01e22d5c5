"""Test configuration for the feedback engine."""

from __future__ import annotations

import itertools
import os
from datetime import UTC, datetime, timedelta

# Settings are read at import time by the app module.
os.environ["FEEDBACK_JOBS_BACKEND"] = "memory"
os.environ["FEEDBACK_GENERATOR_PROVIDER"] = "dummy"
os.environ["FEEDBACK_TASK_SERVICE_PROVIDER"] = "inprocess"
os.environ["FEEDBACK_TASK_SECRET"] = "task-secret"
os.environ["FEEDBACK_SCHEDULER_SECRET"] = "scheduler-secret"
os.environ["FEEDBACK_ALLOWED_ORIGINS"] = "http://localhost"
os.environ.pop("FEEDBACK_PG_DSN", None)
os.environ.pop("DATABASE_URL", None)

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from feedback_engine.config import get_settings  # noqa: E402
from feedback_engine.core.security import AuthContext, get_auth_context  # noqa: E402
from feedback_engine.jobs.models import JobRecord  # noqa: E402
from feedback_engine.main import app  # noqa: E402
from feedback_engine.services.tasks import factory as task_factory  # noqa: E402
from feedback_engine.services.tasks.interface import DispatchOutcome  # noqa: E402
from feedback_engine.storage.assignments_repo import AssignmentRecord  # noqa: E402
from feedback_engine.storage.factory import get_assignments_repo, get_jobs_repo, reset_memory_backends  # noqa: E402


class RecordingEnqueuer:
  """Enqueuer double that records dispatched job ids instead of running them."""

  def __init__(self, *, fail: bool = False) -> None:
    self.fail = fail
    self.job_ids: list[str | None] = []

  async def enqueue(self, job_id: str | None) -> DispatchOutcome:
    if self.fail:
      raise RuntimeError("queue unavailable")
    self.job_ids.append(job_id)
    return DispatchOutcome(status="dispatched", job_id=job_id)


@pytest.fixture
def anyio_backend():
  # The engine is built on asyncio (asyncio.create_task, asyncio.wait_for).
  return "asyncio"


@pytest.fixture(autouse=True)
def _isolate_state():
  get_settings.cache_clear()
  reset_memory_backends()
  task_factory._inprocess_enqueuer = None
  yield
  app.dependency_overrides.clear()
  get_settings.cache_clear()
  reset_memory_backends()
  task_factory._inprocess_enqueuer = None


@pytest.fixture
def settings():
  return get_settings()


@pytest.fixture
def jobs_repo(settings):
  return get_jobs_repo(settings)


@pytest.fixture
def assignments_repo(settings):
  return get_assignments_repo(settings)


@pytest.fixture
def enqueuer():
  return RecordingEnqueuer()


@pytest.fixture
def failing_enqueuer():
  return RecordingEnqueuer(fail=True)


@pytest.fixture
def add_assignment(assignments_repo):
  def _add(assignment_id: str = "assignment-1", *, user_id: str = "student-1", status: str = "submitted", tier: str | None = None, content: str = "My essay.") -> AssignmentRecord:
    record = AssignmentRecord(assignment_id=assignment_id, user_id=user_id, status=status, content=content, owner_tier=tier)
    assignments_repo.add(record)
    return record

  return _add


@pytest.fixture
def job_factory():
  """Build pending job records with strictly increasing created_at values."""
  base = datetime(2026, 1, 1, tzinfo=UTC)
  counter = itertools.count()

  def _make(subject_id: str | None = None, **overrides: object) -> JobRecord:
    index = next(counter)
    created = base + timedelta(seconds=index)
    values: dict[str, object] = {
      "job_id": f"job-{index}",
      "subject_id": subject_id or f"assignment-{index}",
      "requester_id": "student-1",
      "status": "pending",
      "priority": 5,
      "attempts": 0,
      "max_attempts": 3,
      "created_at": created,
      "updated_at": created,
    }
    values.update(overrides)
    return JobRecord(**values)

  return _make


@pytest.fixture
def as_user():
  """Override the caller identity for API requests."""

  def _as(user_id: str = "student-1", *, is_admin: bool = False, tier: str | None = None) -> AuthContext:
    context = AuthContext(user_id=user_id, is_admin=is_admin, tier=tier)
    app.dependency_overrides[get_auth_context] = lambda: context
    return context

  return _as


@pytest.fixture
async def async_client():
  async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
    yield client
