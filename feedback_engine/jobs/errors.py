"""Domain errors raised by the job pipeline and mapped to HTTP responses."""

from __future__ import annotations

from typing import Any


class JobError(Exception):
  """Base class for job pipeline errors surfaced to API callers."""

  status_code = 400
  code = "JOB_ERROR"

  def __init__(self, message: str, **data: Any) -> None:
    super().__init__(message)
    self.message = message
    self.data = data

  def to_detail(self) -> dict[str, Any]:
    detail: dict[str, Any] = {"code": self.code, "message": self.message}
    if self.data:
      detail["data"] = self.data
    return detail


class SubjectValidationError(JobError):
  """The subject id is missing, malformed, or not eligible for feedback."""

  code = "VALIDATION_ERROR"

  def __init__(self, message: str, *, status_code: int = 400, **data: Any) -> None:
    super().__init__(message, **data)
    self.status_code = status_code


class DuplicateJobError(JobError):
  """An active job already exists for the subject."""

  status_code = 409
  code = "CONFLICT"

  def __init__(self, subject_id: str, job_id: str | None = None) -> None:
    super().__init__(f"An active feedback job already exists for subject {subject_id}.", subject_id=subject_id, job_id=job_id)
    self.subject_id = subject_id
    self.job_id = job_id


class InvalidJobStateError(JobError):
  """The requested operation is not allowed from the job's current status."""

  status_code = 409
  code = "INVALID_STATUS"

  def __init__(self, job_id: str, current_status: str, action: str) -> None:
    super().__init__(f"Cannot {action} a job in status '{current_status}'.", job_id=job_id, current_status=current_status)
    self.job_id = job_id
    self.current_status = current_status


class JobNotFoundError(JobError):
  status_code = 404
  code = "NOT_FOUND"

  def __init__(self, job_id: str) -> None:
    super().__init__("Job not found.", job_id=job_id)
    self.job_id = job_id


class JobAccessDeniedError(JobError):
  status_code = 403
  code = "FORBIDDEN"

  def __init__(self, message: str = "Not enough permissions.") -> None:
    super().__init__(message)
