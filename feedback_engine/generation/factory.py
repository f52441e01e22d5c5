from __future__ import annotations

from feedback_engine.config import Settings
from feedback_engine.generation.dummy import DummyFeedbackGenerator
from feedback_engine.generation.http import HttpFeedbackGenerator
from feedback_engine.generation.interface import FeedbackGenerator


def get_feedback_generator(settings: Settings) -> FeedbackGenerator:
  """Return the configured generator client."""
  if settings.generator_provider == "dummy":
    return DummyFeedbackGenerator()
  return HttpFeedbackGenerator(settings)
