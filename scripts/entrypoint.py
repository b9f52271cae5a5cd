import logging
import os

from dispatcher.config import get_settings

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("entrypoint")


def build_uvicorn_args(port: int) -> list[str]:
  """Return the uvicorn command line for the dispatcher app."""
  return ["uvicorn", "dispatcher.main:app", "--host", "0.0.0.0", "--port", str(port), "--no-server-header"]


def main() -> None:
  """Launch the dispatcher on the configured port."""
  port = get_settings().port
  logger.info("Starting reminder dispatcher on port %s...", port)
  # Replace the current process so uvicorn receives SIGTERM directly.
  args = build_uvicorn_args(port)
  os.execvp("uvicorn", args)


if __name__ == "__main__":
  main()
