import logging
import os

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("entrypoint")


def main() -> None:
  """Launch the service while keeping migrations in the deploy pipeline."""
  logger.info("Starting feedback engine (run alembic upgrade head in deploy pipeline)...")
  # Replace the current process so uvicorn receives SIGTERM directly.
  port = os.getenv("PORT", "8080")
  os.execvp("uvicorn", ["uvicorn", "feedback_engine.main:app", "--host", "0.0.0.0", "--port", port, "--no-server-header"])


if __name__ == "__main__":
  main()
