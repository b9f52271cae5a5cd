"""Firebase Cloud Messaging gateway."""

from __future__ import annotations

import logging

from firebase_admin import messaging
from starlette.concurrency import run_in_threadpool

from dispatcher.dispatch.contracts import AddressOutcome, DeliveryReport, PushGateway, PushGatewayError, PushMessage

logger = logging.getLogger(__name__)

# FCM rejects batch requests with more than 500 messages.
FCM_BATCH_LIMIT = 500


def build_messages(message: PushMessage, tokens: list[str]) -> list[messaging.Message]:
  """Translate the message template into one FCM message per token with platform hints."""
  notification = messaging.Notification(title=message.title, body=message.body)
  android = messaging.AndroidConfig(priority=message.android_priority, notification=messaging.AndroidNotification(channel_id=message.android_channel_id, sound="default"))
  apns = messaging.APNSConfig(payload=messaging.APNSPayload(aps=messaging.Aps(sound="default", badge=message.apns_badge, content_available=True)))
  return [messaging.Message(token=token, notification=notification, data=dict(message.data), android=android, apns=apns) for token in tokens]


class FirebasePushGateway(PushGateway):
  """`firebase_admin.messaging` backed gateway with per-token outcomes."""

  def __init__(self, *, dry_run: bool = False, app: object | None = None) -> None:
    self._dry_run = dry_run
    self._app = app

  async def send(self, message: PushMessage, tokens: list[str]) -> DeliveryReport:
    """Send to every token, chunked to the FCM batch limit."""
    if not tokens:
      return DeliveryReport()

    outcomes: list[AddressOutcome] = []
    for start in range(0, len(tokens), FCM_BATCH_LIMIT):
      chunk = tokens[start : start + FCM_BATCH_LIMIT]
      outcomes.extend(await run_in_threadpool(self._send_chunk, message, chunk))

    return DeliveryReport(outcomes=outcomes)

  def _send_chunk(self, message: PushMessage, tokens: list[str]) -> list[AddressOutcome]:
    messages = build_messages(message, tokens)
    try:
      batch = messaging.send_each(messages, dry_run=self._dry_run, app=self._app)
    except Exception as exc:
      # Transport and auth errors arrive before any per-token result exists.
      logger.error("FCM batch send failed tokens=%d error=%s", len(tokens), exc)
      raise PushGatewayError(f"FCM send failed: {exc}") from exc

    return [_outcome_from_response(token, response) for token, response in zip(tokens, batch.responses, strict=True)]


def _outcome_from_response(token: str, response: messaging.SendResponse) -> AddressOutcome:
  """Map one FCM send response onto an address outcome."""
  if response.success:
    return AddressOutcome(token=token, success=True, message_id=response.message_id)

  exc = response.exception
  code = getattr(exc, "code", None)
  return AddressOutcome(token=token, success=False, error_code=str(code) if code else None, error_message=str(exc) if exc else None)
