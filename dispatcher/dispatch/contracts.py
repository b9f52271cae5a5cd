"""Contracts shared by the dispatch engine, its stores, and the push gateway."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol


class NotificationStatus(str, enum.Enum):
  """Lifecycle states of a scheduled notification."""

  PENDING = "pending"
  PROCESSING = "processing"
  SENT = "sent"
  FAILED = "failed"


class DeliveryTarget(str, enum.Enum):
  """Which address subset a notification was routed to."""

  ORIGIN_DEVICE = "origin_device"
  FALLBACK_OTHER = "fallback_other"
  BROADCAST = "broadcast"
  NONE = "none"


@dataclass(frozen=True)
class ScheduledNotification:
  """A time-triggered notification owned by one recipient."""

  id: str
  recipient_id: str
  scheduled_time: datetime
  status: NotificationStatus
  title: str
  body: str
  event_id: str | None = None
  event_name: str | None = None
  date_key: str | None = None
  device_id: str | None = None


@dataclass(frozen=True)
class DeviceRegistration:
  """One push-delivery address registered for a recipient."""

  recipient_id: str
  token: str
  device_id: str | None = None


@dataclass(frozen=True)
class PushMessage:
  """Rendered message template handed to the push gateway."""

  title: str
  body: str
  data: dict[str, str]
  android_channel_id: str
  android_priority: str = "high"
  apns_badge: int = 1


@dataclass(frozen=True)
class AddressOutcome:
  """Per-address result of one gateway call."""

  token: str
  success: bool
  message_id: str | None = None
  error_code: str | None = None
  error_message: str | None = None


@dataclass(frozen=True)
class DeliveryReport:
  """Per-address outcomes and aggregate counts of a completed gateway call."""

  outcomes: list[AddressOutcome] = field(default_factory=list)

  @property
  def success_count(self) -> int:
    return sum(1 for outcome in self.outcomes if outcome.success)

  @property
  def failure_count(self) -> int:
    return sum(1 for outcome in self.outcomes if not outcome.success)

  @property
  def failed_tokens(self) -> list[str]:
    return [outcome.token for outcome in self.outcomes if not outcome.success]


@dataclass(frozen=True)
class NotificationResult:
  """What happened to one notification during a cycle.

  status is None when no terminal state was recorded by this cycle.
  """

  notification_id: str
  status: NotificationStatus | None
  target: DeliveryTarget
  success_count: int = 0
  pruned_tokens: tuple[str, ...] = ()
  skipped: bool = False
  # The send happened but another writer owned the document when its outcome was recorded.
  claim_lost: bool = False


@dataclass(frozen=True)
class CycleResult:
  """Aggregate outcome of one dispatch pass."""

  total_sent: int
  due_count: int
  recipients: int
  recipient_errors: int
  expired_claims: int
  results: list[NotificationResult] = field(default_factory=list)


class DispatchError(Exception):
  """Base class for dispatch engine failures."""


class DueSetQueryError(DispatchError):
  """Raised when the due notification set cannot be determined."""


class PushGatewayError(DispatchError):
  """Raised when a gateway call fails before producing per-address outcomes."""


class StoreWriteError(DispatchError):
  """Raised when a notification document cannot be written."""


class NotificationStore(Protocol):
  """Persistence contract for scheduled notifications."""

  async def query_due(self, *, window_start: datetime, now: datetime) -> list[ScheduledNotification]:
    """Return pending notifications whose fire time lies in [window_start, now]."""

  async def claim(self, notification: ScheduledNotification, *, claim_id: str, now: datetime) -> bool:
    """Move a pending notification to processing; return False if no longer pending."""

  async def finalize(self, notification: ScheduledNotification, *, claim_id: str, fields: dict[str, Any]) -> bool:
    """Apply terminal fields while the notification is still held by claim_id."""

  async def release(self, notification: ScheduledNotification, *, claim_id: str) -> None:
    """Return a claimed notification to pending."""

  async def expire_stale_claims(self, *, claimed_before: datetime, now: datetime) -> int:
    """Fail notifications whose claims were abandoned before claimed_before."""


class RegistrationRegistry(Protocol):
  """Persistence contract for push-delivery address registrations."""

  async def list_for_recipient(self, recipient_id: str) -> list[DeviceRegistration]:
    """Return every registration for a recipient."""

  async def delete(self, *, recipient_id: str, token: str) -> None:
    """Remove a registration."""


class PushGateway(Protocol):
  """Delivery contract for batch push sends."""

  async def send(self, message: PushMessage, tokens: list[str]) -> DeliveryReport:
    """Send one message to many addresses, raising PushGatewayError on wholesale failure."""
