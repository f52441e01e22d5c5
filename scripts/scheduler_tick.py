"""Trigger one scheduler tick against a running service.

Intended for cron runners that cannot sign Cloud Scheduler requests:

  FEEDBACK_BASE_URL=https://feedback.example.com FEEDBACK_SCHEDULER_SECRET=... python scripts/scheduler_tick.py
"""

import json
import logging
import sys

import httpx

from feedback_engine.config import get_settings

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("scheduler_tick")


def main() -> int:
  settings = get_settings()
  if not settings.base_url or not settings.scheduler_secret:
    logger.error("FEEDBACK_BASE_URL and FEEDBACK_SCHEDULER_SECRET must be set.")
    return 1

  url = f"{settings.base_url.rstrip('/')}/internal/scheduler/tick"
  response = httpx.post(url, headers={"x-feedback-scheduler-secret": settings.scheduler_secret}, timeout=60.0, trust_env=False)
  if response.status_code >= 400:
    logger.error("Tick failed with %s: %s", response.status_code, response.text)
    return 1

  print(json.dumps(response.json(), indent=2))
  return 0


if __name__ == "__main__":
  sys.exit(main())
