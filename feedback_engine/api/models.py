from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, StrictStr, model_validator

from feedback_engine.jobs.models import JobStatus


class JobCreateRequest(BaseModel):
  """Request payload for queueing feedback on a submitted assignment."""

  # Length and eligibility are checked by the service so they map to domain errors.
  subject_id: StrictStr | None = Field(default=None, description="Assignment to review.", examples=["4b1d4c0e-2f6a-4b8e-9e8b-0f7a3c2d1e5f"])
  model_config = ConfigDict(extra="forbid")


class JobCreateResponse(BaseModel):
  job_id: StrictStr
  subject_id: StrictStr
  status: JobStatus
  priority: int


class JobSummaryResponse(BaseModel):
  """Reduced job view returned to the subject owner."""

  job_id: StrictStr
  subject_id: StrictStr
  status: JobStatus
  created_at: datetime
  updated_at: datetime
  completed_at: datetime | None = None
  result_id: StrictStr | None = None
  queue_position: int | None = Field(default=None, description="1-based position among pending jobs; null once claimed.")
  estimated_wait_seconds: int | None = None


class JobDetailResponse(JobSummaryResponse):
  """Full job view returned to administrators."""

  requester_id: StrictStr | None = None
  priority: int
  attempts: int
  max_attempts: int
  started_at: datetime | None = None
  error_message: StrictStr | None = None
  metadata: dict[str, Any] = Field(default_factory=dict)


class JobListResponse(BaseModel):
  items: list[JobDetailResponse | JobSummaryResponse]
  total: int
  limit: int
  offset: int
  stats: dict[str, int] | None = Field(default=None, description="Counts per status over the stats window (administrators only).")


class JobActionRequest(BaseModel):
  """Request payload for PATCH /v1/jobs/{job_id}."""

  action: Literal["retry"]
  model_config = ConfigDict(extra="forbid")


class JobPurgeRequest(BaseModel):
  """Bulk removal of failed jobs, either all of them or a given list."""

  job_ids: list[StrictStr] | None = Field(default=None, min_length=1)
  delete_all_failed: bool = False
  model_config = ConfigDict(extra="forbid")

  @model_validator(mode="after")
  def validate_target(self) -> JobPurgeRequest:
    if not self.delete_all_failed and not self.job_ids:
      raise ValueError("Provide job_ids or set delete_all_failed.")
    return self


class JobPurgeResponse(BaseModel):
  deleted: int


class FeedbackResponse(BaseModel):
  feedback_id: StrictStr
  subject_id: StrictStr
  job_id: StrictStr | None
  version: int
  content: StrictStr
  ai_model: StrictStr | None = None
  input_tokens: int = 0
  output_tokens: int = 0
  created_at: datetime


class ProcessorRunRequest(BaseModel):
  job_id: StrictStr | None = Field(default=None, description="Job to run; omit to run the next pending candidate.")


class ProcessorRunResponse(BaseModel):
  status: Literal["accepted", "queued", "idle", "not_found", "already_processing"]
  job_id: StrictStr | None = None
  queue_position: int | None = None
  estimated_wait_seconds: int | None = None


class QueueSnapshotResponse(BaseModel):
  pending: int
  processing: int
  max_concurrent: int
  available: int
  completed_recent: int
  failed_recent: int
  window_hours: int


class TickResponse(BaseModel):
  recovered: int
  failed_zombies: int
  processing: int
  max_concurrent: int
  triggered: int
  dispatch_failures: int
  elapsed_ms: int
