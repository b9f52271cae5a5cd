"""Shared FastAPI dependencies for the trigger and diagnostic routes."""

from __future__ import annotations

import logging
import secrets
from typing import Annotated

from fastapi import Depends, HTTPException, Query, Request, status

from dispatcher.config import Settings, get_settings
from dispatcher.dispatch.factory import DispatchContext

logger = logging.getLogger(__name__)


def get_dispatch_context(request: Request) -> DispatchContext:
  """Return the context built at startup."""
  context = getattr(request.app.state, "dispatch_context", None)
  if context is None:
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Dispatcher is not initialized.")
  return context


def require_trigger_secret(settings: Annotated[Settings, Depends(get_settings)], secret: Annotated[str | None, Query()] = None) -> None:
  """Reject trigger calls whose secret does not match the configured one.

  Without a configured secret the trigger is open.
  """
  if not settings.trigger_secret:
    return

  if not secrets.compare_digest((secret or "").encode(), settings.trigger_secret.encode()):
    logger.warning("Unauthorized access attempt to /trigger-notifications")
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
