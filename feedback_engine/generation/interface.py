"""Contract for the external feedback generator."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from feedback_engine.jobs.models import FeedbackDraft


@dataclass(frozen=True)
class GenerationRequest:
  """Everything the generator needs to review one assignment."""

  job_id: str
  subject_id: str
  user_id: str
  content: str | None
  model: str
  premium: bool = False


class GenerationError(RuntimeError):
  """The generator answered but produced no usable feedback."""


class FeedbackGenerator(Protocol):
  async def generate(self, request: GenerationRequest) -> FeedbackDraft:
    """Produce feedback for the request or raise."""
    ...
