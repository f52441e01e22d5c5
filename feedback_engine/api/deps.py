"""Shared FastAPI dependencies for job storage and dispatch."""

from __future__ import annotations

from fastapi import Depends

from feedback_engine.config import Settings, get_settings
from feedback_engine.services.tasks.factory import get_task_enqueuer
from feedback_engine.services.tasks.interface import TaskEnqueuer
from feedback_engine.storage.assignments_repo import AssignmentsRepository
from feedback_engine.storage.factory import get_assignments_repo, get_jobs_repo
from feedback_engine.storage.jobs_repo import JobsRepository


async def get_jobs_repository(settings: Settings = Depends(get_settings)) -> JobsRepository:  # noqa: B008
  return get_jobs_repo(settings)


async def get_assignments_repository(settings: Settings = Depends(get_settings)) -> AssignmentsRepository:  # noqa: B008
  return get_assignments_repo(settings)


async def get_enqueuer(settings: Settings = Depends(get_settings)) -> TaskEnqueuer:  # noqa: B008
  return get_task_enqueuer(settings)
