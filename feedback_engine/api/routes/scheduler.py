from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Request

from feedback_engine.api.deps import get_enqueuer, get_jobs_repository
from feedback_engine.api.models import TickResponse
from feedback_engine.config import Settings, get_settings
from feedback_engine.core.security import verify_shared_secret
from feedback_engine.jobs.scheduler import run_scheduler_tick
from feedback_engine.services.tasks.interface import TaskEnqueuer
from feedback_engine.storage.jobs_repo import JobsRepository

router = APIRouter(prefix="/scheduler", tags=["scheduler"])

SCHEDULER_SECRET_HEADER = "x-feedback-scheduler-secret"


def _require_scheduler_secret(request: Request, settings: Annotated[Settings, Depends(get_settings)]) -> None:
  verify_shared_secret(request, expected=settings.scheduler_secret, header_name=SCHEDULER_SECRET_HEADER)


@router.post("/tick", response_model=TickResponse, dependencies=[Depends(_require_scheduler_secret)])
async def scheduler_tick(
  settings: Annotated[Settings, Depends(get_settings)],
  jobs_repo: Annotated[JobsRepository, Depends(get_jobs_repository)],
  enqueuer: Annotated[TaskEnqueuer, Depends(get_enqueuer)],
) -> TickResponse:
  """Recover stale jobs and dispatch pending ones into free slots; called by cron."""
  report = await run_scheduler_tick(jobs_repo, enqueuer, settings, datetime.now(UTC))
  return TickResponse(**report.to_dict())
