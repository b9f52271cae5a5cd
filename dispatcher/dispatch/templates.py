"""Push message rendering for scheduled notifications."""

from __future__ import annotations

from dispatcher.dispatch.contracts import PushMessage, ScheduledNotification

NOTIFICATION_TYPE = "event_reminder"


def render_push_message(notification: ScheduledNotification, *, android_channel_id: str) -> PushMessage:
  """Build the fixed message template for a notification.

  FCM data payloads only accept string values, so absent fields become empty strings.
  """
  data = {
    "notificationId": notification.id,
    "eventId": notification.event_id or "",
    "eventName": notification.event_name or "",
    "dateKey": notification.date_key or "",
    "type": NOTIFICATION_TYPE,
  }
  return PushMessage(title=notification.title, body=notification.body, data=data, android_channel_id=android_channel_id)
