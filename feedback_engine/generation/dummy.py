from __future__ import annotations

import os

from feedback_engine.generation.interface import FeedbackGenerator, GenerationRequest
from feedback_engine.jobs.models import FeedbackDraft


class DummyFeedbackGenerator(FeedbackGenerator):
  """Deterministic generator for local runs without spending credits.

  Set FEEDBACK_DUMMY_FEEDBACK to override the returned text.
  """

  async def generate(self, request: GenerationRequest) -> FeedbackDraft:
    content = os.getenv("FEEDBACK_DUMMY_FEEDBACK") or f"Automated feedback for assignment {request.subject_id}."
    return FeedbackDraft(content=content, ai_model=f"dummy:{request.model}", input_tokens=len(request.content or ""), output_tokens=len(content))
