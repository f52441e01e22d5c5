from __future__ import annotations

from feedback_engine.config import Settings

PRIVILEGED_TIERS = frozenset({"premium", "enterprise"})


def is_privileged_owner(user_id: str | None, tier: str | None, settings: Settings) -> bool:
  """Owners on a paid tier, or listed explicitly, get the premium lane."""
  if tier and tier.strip().lower() in PRIVILEGED_TIERS:
    return True
  return bool(user_id) and user_id in settings.premium_user_ids


def resolve_priority(user_id: str | None, tier: str | None, settings: Settings) -> int:
  if is_privileged_owner(user_id, tier, settings):
    return settings.priority_privileged
  return settings.priority_default


def resolve_model(premium: bool, settings: Settings) -> str:
  return settings.model_premium if premium else settings.model_default
