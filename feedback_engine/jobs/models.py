"""Domain models for feedback generation jobs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

JobStatus = Literal["pending", "processing", "completed", "failed", "cancelled"]

ACTIVE_STATUSES: frozenset[str] = frozenset({"pending", "processing"})

# Every status write must follow one of these edges.
ALLOWED_TRANSITIONS: frozenset[tuple[str, str]] = frozenset(
  {
    ("pending", "processing"),
    ("pending", "cancelled"),
    ("processing", "completed"),
    ("processing", "pending"),
    ("processing", "failed"),
    ("failed", "pending"),
  }
)


class IllegalTransitionError(RuntimeError):
  """Raised when code attempts a status write outside the transition graph."""


def assert_transition(current: str, new: str) -> None:
  """Reject status writes that are not part of the job state graph."""
  if (current, new) not in ALLOWED_TRANSITIONS:
    raise IllegalTransitionError(f"Illegal job transition {current} -> {new}")


@dataclass
class JobRecord:
  """Represents one feedback generation job."""

  job_id: str
  subject_id: str
  status: JobStatus
  priority: int
  attempts: int
  max_attempts: int
  created_at: datetime
  updated_at: datetime
  requester_id: str | None = None
  started_at: datetime | None = None
  completed_at: datetime | None = None
  error_message: str | None = None
  result_id: str | None = None
  metadata: dict[str, Any] = field(default_factory=dict)

  @property
  def is_active(self) -> bool:
    return self.status in ACTIVE_STATUSES

  @property
  def attempts_exhausted(self) -> bool:
    return self.attempts >= self.max_attempts


@dataclass(frozen=True)
class FeedbackDraft:
  """Generated feedback waiting to be persisted alongside job completion."""

  content: str
  ai_model: str | None = None
  input_tokens: int = 0
  output_tokens: int = 0


@dataclass(frozen=True)
class FeedbackRecord:
  """Persisted feedback produced by a completed job."""

  feedback_id: str
  subject_id: str
  job_id: str
  version: int
  content: str
  ai_model: str | None
  input_tokens: int
  output_tokens: int
  created_at: datetime
