import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from dispatcher.core.env_contract import EnvContractError, validate_runtime_env_or_raise
from dispatcher.core.firebase import FirebaseInitError, initialize_firebase
from dispatcher.core.logging import initialize_logging
from dispatcher.dispatch.factory import build_dispatch_context


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Validate configuration, initialize Firebase, and build the dispatch context."""
  from dispatcher.config import get_settings

  settings = get_settings()
  logger = logging.getLogger("dispatcher.core.lifespan")

  initialize_logging(settings)

  try:
    # Enforce startup env contracts before any Firebase client exists.
    validate_runtime_env_or_raise(logger=logger)
    initialize_firebase(settings)
  except (EnvContractError, FirebaseInitError):
    logger.error("Startup checks failed; refusing to start the service.", exc_info=True)
    raise

  # Tests may install their own context before startup.
  if getattr(app.state, "dispatch_context", None) is None:
    app.state.dispatch_context = build_dispatch_context(settings)
  logger.info("Startup complete lookback=%ss trigger_secret=%s", settings.lookback_seconds, "set" if settings.trigger_secret else "unset")

  yield

  # Let in-flight address pruning finish before the process exits.
  context = app.state.dispatch_context
  await context.actions.drain()
  logger.info("Shutdown complete.")
