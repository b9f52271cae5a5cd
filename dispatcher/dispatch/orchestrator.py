"""Runs one full dispatch pass over every due notification."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from dispatcher.dispatch.addresses import fetch_addresses
from dispatcher.dispatch.contracts import CycleResult, DeliveryTarget, DeviceRegistration, NotificationResult, NotificationStore, RegistrationRegistry, ScheduledNotification, StoreWriteError
from dispatcher.dispatch.due_set import resolve_due_set
from dispatcher.dispatch.routing import RoutingPolicy

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
  return datetime.now(UTC)


class DispatchCycle:
  """Coordinates the resolver, address lookup, routing, and reconciliation.

  Cycles in one process are serialized; across processes each notification is
  claimed with a conditional write before any gateway call.
  """

  def __init__(
    self, *, store: NotificationStore, registry: RegistrationRegistry, routing: RoutingPolicy, lookback: timedelta, claim_ttl: timedelta, recipient_concurrency: int = 1, clock: Callable[[], datetime] = utc_now
  ) -> None:
    self._store = store
    self._registry = registry
    self._routing = routing
    self._lookback = lookback
    self._claim_ttl = claim_ttl
    self._recipient_concurrency = max(1, recipient_concurrency)
    self._clock = clock
    self._lock = asyncio.Lock()

  async def run(self) -> CycleResult:
    """Dispatch everything currently due and return the aggregate outcome.

    Raises DueSetQueryError when the due set cannot be determined.
    """
    if self._lock.locked():
      logger.info("Dispatch cycle already running; waiting for it to finish.")

    async with self._lock:
      return await self._run_locked()

  async def _run_locked(self) -> CycleResult:
    now = self._clock()
    claim_id = uuid.uuid4().hex
    expired = await self._expire_stale_claims(now)

    groups = await resolve_due_set(self._store, now=now, lookback=self._lookback)
    due_count = sum(len(items) for items in groups.values())
    if not groups:
      logger.info("No due notifications claim_id=%s", claim_id)
      return CycleResult(total_sent=0, due_count=0, recipients=0, recipient_errors=0, expired_claims=expired)

    semaphore = asyncio.Semaphore(self._recipient_concurrency)
    results: list[NotificationResult] = []

    async def _guarded(recipient_id: str, notifications: list[ScheduledNotification]) -> bool:
      async with semaphore:
        try:
          await self._process_recipient(recipient_id, notifications, claim_id=claim_id, results=results)
          return True
        except Exception as exc:  # noqa: BLE001
          # One recipient's failure never aborts the pass; untouched notifications stay pending.
          logger.error("Recipient dispatch failed recipient=%s error=%s", recipient_id, exc, exc_info=True)
          return False

    outcomes = await asyncio.gather(*(_guarded(recipient_id, items) for recipient_id, items in groups.items()))
    total_sent = sum(result.success_count for result in results)
    recipient_errors = sum(1 for ok in outcomes if not ok)
    lost_claims = sum(1 for result in results if result.claim_lost)

    logger.info("Dispatch cycle complete claim_id=%s due=%d recipients=%d recipient_errors=%d lost_claims=%d total_sent=%d", claim_id, due_count, len(groups), recipient_errors, lost_claims, total_sent)
    return CycleResult(total_sent=total_sent, due_count=due_count, recipients=len(groups), recipient_errors=recipient_errors, expired_claims=expired, results=results)

  async def _process_recipient(self, recipient_id: str, notifications: list[ScheduledNotification], *, claim_id: str, results: list[NotificationResult]) -> None:
    """Dispatch one recipient's notifications strictly in order."""
    addresses: list[DeviceRegistration] = await fetch_addresses(self._registry, recipient_id)

    for notification in notifications:
      claimed = await self._store.claim(notification, claim_id=claim_id, now=self._clock())
      if not claimed:
        logger.info("Skipping notification claimed elsewhere id=%s recipient=%s", notification.id, recipient_id)
        results.append(NotificationResult(notification_id=notification.id, status=None, target=DeliveryTarget.NONE, skipped=True))
        continue

      try:
        result = await self._routing.dispatch(notification, addresses, claim_id=claim_id, now=self._clock())
      except StoreWriteError:
        # A send may already have happened; leave the claim for the stale-claim sweep.
        raise
      except Exception:
        await self._release(notification, claim_id=claim_id)
        raise

      results.append(result)
      if result.pruned_tokens:
        pruned = set(result.pruned_tokens)
        addresses = [registration for registration in addresses if registration.token not in pruned]

  async def _release(self, notification: ScheduledNotification, *, claim_id: str) -> None:
    try:
      await self._store.release(notification, claim_id=claim_id)
    except Exception as exc:  # noqa: BLE001
      logger.error("Failed releasing claim id=%s claim_id=%s error=%s", notification.id, claim_id, exc, exc_info=True)

  async def _expire_stale_claims(self, now: datetime) -> int:
    try:
      expired = await self._store.expire_stale_claims(claimed_before=now - self._claim_ttl, now=now)
    except Exception as exc:  # noqa: BLE001
      logger.error("Stale claim sweep failed error=%s", exc, exc_info=True)
      return 0

    if expired:
      logger.warning("Expired stale dispatch claims count=%d", expired)
    return expired
