"""Retry policy applied after a failed generation attempt."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from feedback_engine.jobs.models import JobRecord

MAX_ERROR_MESSAGE_LENGTH = 1000


@dataclass(frozen=True)
class RetryDecision:
  requeue: bool
  error_message: str


def describe_error(error: BaseException) -> str:
  """Render an exception as an operator-facing message capped at the column budget."""
  if isinstance(error, asyncio.TimeoutError):
    message = "Generation timed out"
  else:
    message = str(error).strip() or error.__class__.__name__
  return message[:MAX_ERROR_MESSAGE_LENGTH]


def decide_retry(job: JobRecord, error: BaseException) -> RetryDecision:
  """Requeue while attempts remain; every failure kind is treated the same."""
  return RetryDecision(requeue=job.attempts < job.max_attempts, error_message=describe_error(error))
