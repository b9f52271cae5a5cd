"""Discovery of due notifications, grouped by recipient."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from dispatcher.dispatch.contracts import DueSetQueryError, NotificationStatus, NotificationStore, ScheduledNotification

logger = logging.getLogger(__name__)


async def resolve_due_set(store: NotificationStore, *, now: datetime, lookback: timedelta) -> dict[str, list[ScheduledNotification]]:
  """Return pending notifications with fire time in [now - lookback, now], keyed by recipient.

  Per-recipient order follows the store query; the order of recipients carries no meaning.
  """
  window_start = now - lookback
  try:
    due = await store.query_due(window_start=window_start, now=now)
  except DueSetQueryError:
    raise
  except Exception as exc:
    raise DueSetQueryError(f"Failed to query due notifications: {exc}") from exc

  groups: dict[str, list[ScheduledNotification]] = {}
  for notification in due:
    # Stores filter on these already; re-check so a lax store cannot leak stale items.
    if notification.status is not NotificationStatus.PENDING:
      continue
    if not window_start <= notification.scheduled_time <= now:
      continue
    groups.setdefault(notification.recipient_id, []).append(notification)

  logger.info("Resolved due set window_start=%s now=%s notifications=%d recipients=%d", window_start.isoformat(), now.isoformat(), sum(len(items) for items in groups.values()), len(groups))
  return groups
