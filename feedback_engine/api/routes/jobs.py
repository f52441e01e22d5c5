import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status

from feedback_engine.api.deps import get_assignments_repository, get_enqueuer, get_jobs_repository
from feedback_engine.api.models import (
  FeedbackResponse,
  JobActionRequest,
  JobCreateRequest,
  JobCreateResponse,
  JobDetailResponse,
  JobListResponse,
  JobPurgeRequest,
  JobPurgeResponse,
  JobSummaryResponse,
)
from feedback_engine.config import Settings, get_settings
from feedback_engine.core.security import AuthContext, get_auth_context, require_admin
from feedback_engine.jobs.models import JobStatus
from feedback_engine.services import jobs as job_service
from feedback_engine.services.tasks.interface import TaskEnqueuer
from feedback_engine.storage.assignments_repo import AssignmentsRepository
from feedback_engine.storage.jobs_repo import JobsRepository

router = APIRouter()
logger = logging.getLogger("feedback_engine.api.routes.jobs")

JOB_ACTIONS = {"retry": job_service.retry_job}


@router.post("", response_model=JobCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_job(  # noqa: B008
  payload: JobCreateRequest,
  background_tasks: BackgroundTasks,
  settings: Settings = Depends(get_settings),  # noqa: B008
  auth: AuthContext = Depends(get_auth_context),  # noqa: B008
  jobs_repo: JobsRepository = Depends(get_jobs_repository),  # noqa: B008
  assignments_repo: AssignmentsRepository = Depends(get_assignments_repository),  # noqa: B008
  enqueuer: TaskEnqueuer = Depends(get_enqueuer),  # noqa: B008
) -> JobCreateResponse:
  """Queue feedback generation for a submitted assignment."""
  record = await job_service.submit_job(payload.subject_id, auth, settings, background_tasks, jobs_repo=jobs_repo, assignments_repo=assignments_repo, enqueuer=enqueuer)
  return JobCreateResponse(job_id=record.job_id, subject_id=record.subject_id, status=record.status, priority=record.priority)


@router.get("", response_model=JobListResponse)
async def list_jobs(  # noqa: B008
  status_filter: JobStatus | None = Query(default=None, alias="status"),  # noqa: B008
  subject_id: str | None = Query(default=None, max_length=128),  # noqa: B008
  limit: int = Query(default=50, ge=1, le=200),  # noqa: B008
  offset: int = Query(default=0, ge=0),  # noqa: B008
  settings: Settings = Depends(get_settings),  # noqa: B008
  auth: AuthContext = Depends(get_auth_context),  # noqa: B008
  jobs_repo: JobsRepository = Depends(get_jobs_repository),  # noqa: B008
) -> JobListResponse:
  """List jobs visible to the caller; administrators also receive recent counts."""
  items, total, stats = await job_service.list_jobs_for(auth, settings, status=status_filter, subject_id=subject_id, limit=limit, offset=offset, jobs_repo=jobs_repo)
  return JobListResponse(items=items, total=total, limit=limit, offset=offset, stats=stats)


@router.delete("", response_model=JobPurgeResponse)
async def purge_failed_jobs(  # noqa: B008
  payload: JobPurgeRequest,
  settings: Settings = Depends(get_settings),  # noqa: B008
  auth: AuthContext = Depends(require_admin),  # noqa: B008
  jobs_repo: JobsRepository = Depends(get_jobs_repository),  # noqa: B008
) -> JobPurgeResponse:
  """Delete failed jobs, either all of them or the given ids."""
  job_ids = None if payload.delete_all_failed else payload.job_ids
  deleted = await job_service.purge_failed_jobs(auth, settings, job_ids, jobs_repo=jobs_repo)
  return JobPurgeResponse(deleted=deleted)


@router.get("/{job_id}", response_model=JobDetailResponse | JobSummaryResponse)
async def get_job(  # noqa: B008
  job_id: str,
  settings: Settings = Depends(get_settings),  # noqa: B008
  auth: AuthContext = Depends(get_auth_context),  # noqa: B008
  jobs_repo: JobsRepository = Depends(get_jobs_repository),  # noqa: B008
) -> JobDetailResponse | JobSummaryResponse:
  record = await job_service.get_job_for(job_id, auth, jobs_repo)
  return await job_service.describe_job(record, auth, jobs_repo, settings)


@router.get("/{job_id}/result", response_model=FeedbackResponse)
async def get_job_result(  # noqa: B008
  job_id: str,
  settings: Settings = Depends(get_settings),  # noqa: B008
  auth: AuthContext = Depends(get_auth_context),  # noqa: B008
  jobs_repo: JobsRepository = Depends(get_jobs_repository),  # noqa: B008
) -> FeedbackResponse:
  """Return the feedback produced by a completed job."""
  feedback = await job_service.get_job_result(job_id, auth, settings, jobs_repo=jobs_repo)
  return job_service.feedback_to_response(feedback)


@router.patch("/{job_id}", response_model=JobDetailResponse)
async def retry_job(  # noqa: B008
  job_id: str,
  payload: JobActionRequest,
  background_tasks: BackgroundTasks,
  settings: Settings = Depends(get_settings),  # noqa: B008
  auth: AuthContext = Depends(require_admin),  # noqa: B008
  jobs_repo: JobsRepository = Depends(get_jobs_repository),  # noqa: B008
  enqueuer: TaskEnqueuer = Depends(get_enqueuer),  # noqa: B008
) -> JobDetailResponse:
  """Apply an administrative action to a job; `retry` sends a failed job back to the queue."""
  action = JOB_ACTIONS[payload.action]
  record = await action(job_id, auth, settings, background_tasks, jobs_repo=jobs_repo, enqueuer=enqueuer)
  return await job_service.describe_job(record, auth, jobs_repo, settings)


@router.delete("/{job_id}", response_model=JobDetailResponse | JobSummaryResponse)
async def cancel_job(  # noqa: B008
  job_id: str,
  settings: Settings = Depends(get_settings),  # noqa: B008
  auth: AuthContext = Depends(get_auth_context),  # noqa: B008
  jobs_repo: JobsRepository = Depends(get_jobs_repository),  # noqa: B008
) -> JobDetailResponse | JobSummaryResponse:
  """Cancel a job that is still pending."""
  record = await job_service.cancel_job(job_id, auth, settings, jobs_repo=jobs_repo)
  return await job_service.describe_job(record, auth, jobs_repo, settings)
