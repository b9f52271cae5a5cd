"""Best-effort post-commit actions that run beside the dispatch path."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

logger = logging.getLogger(__name__)


class BackgroundActions:
  """Schedules fire-and-forget coroutines and logs their failures.

  Tasks are held until they finish so the event loop does not garbage collect them mid-flight.
  """

  def __init__(self) -> None:
    self._tasks: set[asyncio.Task[Any]] = set()

  def schedule(self, coro: Coroutine[Any, Any, Any], *, name: str) -> asyncio.Task[Any]:
    """Start a coroutine without awaiting it."""
    task = asyncio.create_task(coro, name=name)
    self._tasks.add(task)
    task.add_done_callback(self._on_done)
    return task

  @property
  def pending(self) -> int:
    return len(self._tasks)

  async def drain(self) -> None:
    """Wait for every scheduled action; failures were already logged."""
    while self._tasks:
      await asyncio.gather(*list(self._tasks), return_exceptions=True)

  def _on_done(self, task: asyncio.Task[Any]) -> None:
    self._tasks.discard(task)
    if task.cancelled():
      logger.warning("Background action cancelled name=%s", task.get_name())
      return
    exc = task.exception()
    if exc is not None:
      logger.error("Background action failed name=%s error=%s", task.get_name(), exc, exc_info=exc)
