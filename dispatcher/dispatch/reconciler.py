"""Applies delivery outcomes to the notification store and address registry."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from dispatcher.dispatch.background import BackgroundActions
from dispatcher.dispatch.contracts import DeliveryReport, DeliveryTarget, NotificationStatus, NotificationStore, RegistrationRegistry, ScheduledNotification, StoreWriteError

logger = logging.getLogger(__name__)

NOTE_NO_ADDRESSES = "no registered addresses for recipient"
NOTE_BROAD_FALLBACK = "no exact device match, delivered broadly"


def describe_target(target: DeliveryTarget, device_id: str | None) -> str | None:
  """Return the sentToDevice label recorded for a delivery target."""
  if target is DeliveryTarget.ORIGIN_DEVICE:
    return device_id
  if target is DeliveryTarget.FALLBACK_OTHER:
    return "other_devices"
  if target is DeliveryTarget.BROADCAST:
    return "all_devices"
  return None


@dataclass(frozen=True)
class Reconciliation:
  """Outcome of recording a delivery: whether the write landed and which tokens are being pruned."""

  applied: bool
  pruned_tokens: tuple[str, ...] = ()


class DeliveryReconciler:
  """Writes terminal notification state and prunes addresses the gateway rejected."""

  def __init__(self, *, store: NotificationStore, registry: RegistrationRegistry, actions: BackgroundActions) -> None:
    self._store = store
    self._registry = registry
    self._actions = actions

  async def record_sent(self, notification: ScheduledNotification, *, claim_id: str, target: DeliveryTarget, report: DeliveryReport | None, now: datetime, note: str | None = None) -> Reconciliation:
    """Mark a notification sent and schedule removal of failed addresses.

    Rejected tokens are pruned even when the claim was lost, since the gateway verdict still holds.
    """
    fields: dict[str, Any] = {
      "status": NotificationStatus.SENT.value,
      "sentAt": now,
      "successCount": report.success_count if report else 0,
      "failureCount": report.failure_count if report else 0,
      "deliveryTarget": target.value,
      "sentToDevice": describe_target(target, notification.device_id),
    }
    if note:
      fields["note"] = note

    pruned = self.prune(notification.recipient_id, report.failed_tokens if report else [])
    applied = await self._finalize(notification, claim_id=claim_id, fields=fields)
    if applied:
      logger.info("Notification sent id=%s recipient=%s target=%s success=%d failure=%d", notification.id, notification.recipient_id, target.value, fields["successCount"], fields["failureCount"])
    else:
      logger.warning("Notification delivered but not recorded id=%s recipient=%s target=%s success=%d failure=%d", notification.id, notification.recipient_id, target.value, fields["successCount"], fields["failureCount"])
    return Reconciliation(applied=applied, pruned_tokens=pruned)

  async def record_failed(self, notification: ScheduledNotification, *, claim_id: str, target: DeliveryTarget, error: str, now: datetime) -> bool:
    """Mark a notification failed; returns whether the write landed."""
    fields: dict[str, Any] = {"status": NotificationStatus.FAILED.value, "failedAt": now, "error": error, "deliveryTarget": target.value}
    applied = await self._finalize(notification, claim_id=claim_id, fields=fields)
    if applied:
      logger.warning("Notification failed id=%s recipient=%s target=%s error=%s", notification.id, notification.recipient_id, target.value, error)
    return applied

  def prune(self, recipient_id: str, tokens: list[str]) -> tuple[str, ...]:
    """Schedule deletion of each rejected token without waiting for it."""
    for token in tokens:
      self._actions.schedule(self._delete_registration(recipient_id, token), name=f"prune-token:{recipient_id}")
    return tuple(tokens)

  async def _delete_registration(self, recipient_id: str, token: str) -> None:
    try:
      await self._registry.delete(recipient_id=recipient_id, token=token)
      logger.info("Pruned invalid address recipient=%s token=%s...", recipient_id, token[:12])
    except Exception as exc:  # noqa: BLE001
      logger.error("Failed pruning address recipient=%s token=%s... error=%s", recipient_id, token[:12], exc, exc_info=True)

  async def _finalize(self, notification: ScheduledNotification, *, claim_id: str, fields: dict[str, Any]) -> bool:
    try:
      applied = await self._store.finalize(notification, claim_id=claim_id, fields=fields)
    except Exception as exc:
      raise StoreWriteError(f"Failed to finalize notification {notification.id}: {exc}") from exc

    if not applied:
      # Another writer took the claim over; the terminal state is theirs to record.
      logger.warning("Finalize skipped; claim no longer held id=%s claim_id=%s", notification.id, claim_id)
    return applied
