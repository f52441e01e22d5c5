"""Generator client that calls a remote feedback-generation function over HTTP."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from feedback_engine.config import Settings
from feedback_engine.generation.interface import FeedbackGenerator, GenerationError, GenerationRequest
from feedback_engine.jobs.models import FeedbackDraft

logger = logging.getLogger(__name__)


def _usage_value(usage: dict[str, Any], *keys: str) -> int:
  for key in keys:
    value = usage.get(key)
    if value is not None:
      return int(value)
  return 0


def parse_generation_response(payload: Any, *, fallback_model: str) -> FeedbackDraft:
  """Turn the generator's JSON body into a draft, rejecting empty feedback."""
  if not isinstance(payload, dict):
    raise GenerationError("Generator returned a non-object body.")
  content = payload.get("content") or payload.get("feedback")
  if not isinstance(content, str) or content.strip() == "":
    raise GenerationError("Generator returned empty feedback content.")
  usage = payload.get("usage") or {}
  return FeedbackDraft(
    content=content,
    ai_model=str(payload.get("model") or fallback_model),
    input_tokens=_usage_value(usage, "input_tokens", "prompt_tokens"),
    output_tokens=_usage_value(usage, "output_tokens", "completion_tokens"),
  )


class HttpFeedbackGenerator(FeedbackGenerator):
  """POSTs the assignment to the configured generator URL."""

  def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None) -> None:
    if not settings.generator_url:
      raise ValueError("FEEDBACK_GENERATOR_URL must be set when FEEDBACK_GENERATOR_PROVIDER=http.")
    self._settings = settings
    self._client = client

  def _headers(self) -> dict[str, str]:
    headers = {"content-type": "application/json"}
    if self._settings.generator_secret:
      headers["authorization"] = f"Bearer {self._settings.generator_secret}"
    return headers

  async def generate(self, request: GenerationRequest) -> FeedbackDraft:
    body = {
      "assignmentId": request.subject_id,
      "jobId": request.job_id,
      "userId": request.user_id,
      "content": request.content,
      "model": request.model,
      "isPremium": request.premium,
    }
    # The worker bounds the call with its own deadline.
    timeout = httpx.Timeout(None, connect=10.0)
    if self._client is not None:
      response = await self._client.post(self._settings.generator_url, json=body, headers=self._headers(), timeout=timeout)
    else:
      async with httpx.AsyncClient(trust_env=False) as client:
        response = await client.post(self._settings.generator_url, json=body, headers=self._headers(), timeout=timeout)

    if response.status_code >= 400:
      logger.error("Generator returned %s for job %s: %s", response.status_code, request.job_id, response.text[:500])
      raise GenerationError(f"Generator returned HTTP {response.status_code}")

    draft = parse_generation_response(response.json(), fallback_model=request.model)
    logger.info("Generated feedback for job %s with %s (%s/%s tokens)", request.job_id, draft.ai_model, draft.input_tokens, draft.output_tokens)
    return draft
