"""Target selection and gateway invocation for one notification."""

from __future__ import annotations

import logging
from datetime import datetime

from dispatcher.dispatch.addresses import partition_by_device
from dispatcher.dispatch.contracts import DeliveryReport, DeliveryTarget, DeviceRegistration, NotificationResult, NotificationStatus, PushGateway, PushGatewayError, PushMessage, ScheduledNotification
from dispatcher.dispatch.reconciler import NOTE_BROAD_FALLBACK, NOTE_NO_ADDRESSES, DeliveryReconciler
from dispatcher.dispatch.templates import render_push_message

logger = logging.getLogger(__name__)


class RoutingPolicy:
  """Decides which addresses receive a notification and drives the gateway.

  Every path ends with the notification in a terminal state:

  - no addresses: sent, annotated, no gateway call
  - no device tag: broadcast to every address
  - device tag with matches: origin device first; on wholesale failure the
    notification is failed and the other devices get a best-effort copy
  - device tag without matches: other devices as the sole target

  A result whose claim was lost before the write carries status None and claim_lost.
  """

  def __init__(self, *, gateway: PushGateway, reconciler: DeliveryReconciler, android_channel_id: str) -> None:
    self._gateway = gateway
    self._reconciler = reconciler
    self._android_channel_id = android_channel_id

  async def dispatch(self, notification: ScheduledNotification, addresses: list[DeviceRegistration], *, claim_id: str, now: datetime) -> NotificationResult:
    """Route one claimed notification and record its terminal state."""
    if not addresses:
      recorded = await self._reconciler.record_sent(notification, claim_id=claim_id, target=DeliveryTarget.NONE, report=None, now=now, note=NOTE_NO_ADDRESSES)
      return _result(notification, NotificationStatus.SENT, DeliveryTarget.NONE, applied=recorded.applied)

    message = render_push_message(notification, android_channel_id=self._android_channel_id)

    if not notification.device_id:
      return await self._deliver(notification, message, addresses, target=DeliveryTarget.BROADCAST, claim_id=claim_id, now=now)

    matching, other = partition_by_device(addresses, notification.device_id)

    if matching:
      return await self._deliver_to_origin(notification, message, matching, other, claim_id=claim_id, now=now)

    if other:
      return await self._deliver(notification, message, other, target=DeliveryTarget.FALLBACK_OTHER, claim_id=claim_id, now=now, note=NOTE_BROAD_FALLBACK)

    applied = await self._reconciler.record_failed(notification, claim_id=claim_id, target=DeliveryTarget.NONE, error=NOTE_NO_ADDRESSES, now=now)
    return _result(notification, NotificationStatus.FAILED, DeliveryTarget.NONE, applied=applied)

  async def _deliver(self, notification: ScheduledNotification, message: PushMessage, targets: list[DeviceRegistration], *, target: DeliveryTarget, claim_id: str, now: datetime, note: str | None = None) -> NotificationResult:
    tokens = [registration.token for registration in targets]
    try:
      report = await self._gateway.send(message, tokens)
    except PushGatewayError as exc:
      applied = await self._reconciler.record_failed(notification, claim_id=claim_id, target=target, error=str(exc), now=now)
      return _result(notification, NotificationStatus.FAILED, target, applied=applied)

    recorded = await self._reconciler.record_sent(notification, claim_id=claim_id, target=target, report=report, now=now, note=note)
    return _result(notification, NotificationStatus.SENT, target, applied=recorded.applied, success_count=report.success_count, pruned_tokens=recorded.pruned_tokens)

  async def _deliver_to_origin(self, notification: ScheduledNotification, message: PushMessage, matching: list[DeviceRegistration], other: list[DeviceRegistration], *, claim_id: str, now: datetime) -> NotificationResult:
    tokens = [registration.token for registration in matching]
    try:
      report = await self._gateway.send(message, tokens)
    except PushGatewayError as exc:
      applied = await self._reconciler.record_failed(notification, claim_id=claim_id, target=DeliveryTarget.ORIGIN_DEVICE, error=str(exc), now=now)
      secondary = await self._send_secondary(notification, message, other)
      success_count = secondary.success_count if secondary else 0
      pruned = self._reconciler.prune(notification.recipient_id, secondary.failed_tokens) if secondary else ()
      return _result(notification, NotificationStatus.FAILED, DeliveryTarget.ORIGIN_DEVICE, applied=applied, success_count=success_count, pruned_tokens=pruned)

    recorded = await self._reconciler.record_sent(notification, claim_id=claim_id, target=DeliveryTarget.ORIGIN_DEVICE, report=report, now=now)
    return _result(notification, NotificationStatus.SENT, DeliveryTarget.ORIGIN_DEVICE, applied=recorded.applied, success_count=report.success_count, pruned_tokens=recorded.pruned_tokens)

  async def _send_secondary(self, notification: ScheduledNotification, message: PushMessage, other: list[DeviceRegistration]) -> DeliveryReport | None:
    """Reach the remaining devices after the origin device failed; never changes recorded state."""
    if not other:
      return None

    try:
      report = await self._gateway.send(message, [registration.token for registration in other])
    except PushGatewayError as exc:
      logger.error("Secondary delivery failed id=%s recipient=%s error=%s", notification.id, notification.recipient_id, exc)
      return None

    logger.info("Secondary delivery id=%s recipient=%s success=%d failure=%d", notification.id, notification.recipient_id, report.success_count, report.failure_count)
    return report


def _result(notification: ScheduledNotification, status: NotificationStatus, target: DeliveryTarget, *, applied: bool, success_count: int = 0, pruned_tokens: tuple[str, ...] = ()) -> NotificationResult:
  """Report the recorded status, or none when the claim was lost before the write."""
  return NotificationResult(notification_id=notification.id, status=status if applied else None, target=target, success_count=success_count, pruned_tokens=pruned_tokens, claim_lost=not applied)
