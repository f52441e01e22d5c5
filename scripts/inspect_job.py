import asyncio
import sys

from feedback_engine.config import get_settings
from feedback_engine.core.database import dispose_engine
from feedback_engine.storage.factory import get_jobs_repo


async def _inspect(job_id: str) -> int:
  settings = get_settings()
  if not settings.pg_dsn:
    print("Error: FEEDBACK_PG_DSN not set in environment.")
    return 1

  repo = get_jobs_repo(settings)
  try:
    job = await repo.get_job(job_id)
    if job is None:
      print(f"Job {job_id} not found.")
      return 1
    print(f"Job Status: {job.status}")
    print(f"Subject: {job.subject_id}  Priority: {job.priority}  Attempts: {job.attempts}/{job.max_attempts}")
    print(f"Started: {job.started_at}  Completed: {job.completed_at}")
    if job.error_message:
      print(f"Error: {job.error_message}")
    if job.result_id:
      print(f"Feedback: {job.result_id}")
    print(f"Metadata: {job.metadata}")
    return 0
  finally:
    await dispose_engine()


if __name__ == "__main__":
  if len(sys.argv) != 2:
    print("usage: python scripts/inspect_job.py <job_id>")
    sys.exit(2)
  sys.exit(asyncio.run(_inspect(sys.argv[1])))
