from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, Request, status

from feedback_engine.api.deps import get_enqueuer, get_jobs_repository
from feedback_engine.api.models import ProcessorRunRequest, ProcessorRunResponse, QueueSnapshotResponse
from feedback_engine.config import Settings, get_settings
from feedback_engine.core.security import verify_shared_secret
from feedback_engine.jobs.worker import build_processor
from feedback_engine.services import jobs as job_service
from feedback_engine.services.tasks.interface import TaskEnqueuer
from feedback_engine.storage.jobs_repo import JobsRepository

router = APIRouter(prefix="/processor", tags=["processor"])
logger = logging.getLogger(__name__)

TASK_SECRET_HEADER = "x-feedback-task-secret"


def _require_task_secret(request: Request, settings: Annotated[Settings, Depends(get_settings)]) -> None:
  verify_shared_secret(request, expected=settings.task_secret, header_name=TASK_SECRET_HEADER)


@router.post("/run", response_model=ProcessorRunResponse, status_code=status.HTTP_200_OK, dependencies=[Depends(_require_task_secret)])
async def run_processor(
  background_tasks: BackgroundTasks,
  settings: Annotated[Settings, Depends(get_settings)],
  jobs_repo: Annotated[JobsRepository, Depends(get_jobs_repository)],
  enqueuer: Annotated[TaskEnqueuer, Depends(get_enqueuer)],
  payload: ProcessorRunRequest | None = None,
) -> ProcessorRunResponse:
  """
  Entry point for dispatchers (Cloud Tasks, local HTTP).
  Claims synchronously and runs generation in the background so the caller gets a fast 2xx.
  """
  job_id = payload.job_id if payload else None
  processor = build_processor(settings, jobs_repo=jobs_repo, enqueuer=enqueuer)
  outcome = await processor.acquire(job_id)
  if outcome.job is None:
    logger.info("Processor run for %s ended as %s", job_id or "<next>", outcome.status)
    return ProcessorRunResponse(status=outcome.status, job_id=outcome.job_id, queue_position=outcome.queue_position, estimated_wait_seconds=outcome.estimated_wait_seconds)

  background_tasks.add_task(processor.execute, outcome.job)
  return ProcessorRunResponse(status="accepted", job_id=outcome.job_id)


@router.get("/queue", response_model=QueueSnapshotResponse, dependencies=[Depends(_require_task_secret)])
async def queue_status(settings: Annotated[Settings, Depends(get_settings)], jobs_repo: Annotated[JobsRepository, Depends(get_jobs_repository)]) -> QueueSnapshotResponse:
  return await job_service.get_queue_snapshot(settings, jobs_repo=jobs_repo)
