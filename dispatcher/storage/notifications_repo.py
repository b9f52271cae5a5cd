"""Firestore persistence for scheduled notifications."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from firebase_admin import firestore
from google.cloud.firestore import Client as FirestoreClient
from google.cloud.firestore_v1.base_query import FieldFilter
from starlette.concurrency import run_in_threadpool

from dispatcher.core.firebase import get_firestore_client
from dispatcher.dispatch.contracts import NotificationStatus, NotificationStore, ScheduledNotification
from dispatcher.storage.firestore_paths import NOTIFICATIONS_COLLECTION, notification_ref

logger = logging.getLogger(__name__)

LEASE_EXPIRED_ERROR = "dispatch lease expired"


def _coerce_datetime(value: Any) -> datetime | None:
  """Accept Firestore timestamps only; naive values are taken as UTC.

  The due query range-filters on a timestamp, so string-typed fire times are never selected.
  """
  if not isinstance(value, datetime):
    return None
  if value.tzinfo is None:
    return value.replace(tzinfo=UTC)
  return value


def _optional_text(value: Any) -> str | None:
  if value is None:
    return None
  text = str(value).strip()
  return text or None


def notification_from_document(document_id: str, data: dict[str, Any]) -> ScheduledNotification | None:
  """Build a notification from stored fields, or None when required fields are unusable."""
  recipient_id = _optional_text(data.get("recipientId"))
  if recipient_id is None:
    logger.warning("Skipping notification without recipientId id=%s", document_id)
    return None

  scheduled_time = _coerce_datetime(data.get("scheduledTime"))
  if scheduled_time is None:
    logger.warning("Skipping notification without a valid scheduledTime id=%s", document_id)
    return None

  try:
    status = NotificationStatus(data.get("status", NotificationStatus.PENDING.value))
  except ValueError:
    logger.warning("Skipping notification with unknown status id=%s status=%s", document_id, data.get("status"))
    return None

  payload = data.get("data") or {}
  return ScheduledNotification(
    id=document_id,
    recipient_id=recipient_id,
    scheduled_time=scheduled_time,
    status=status,
    title=str(data.get("title") or ""),
    body=str(data.get("body") or ""),
    event_id=_optional_text(payload.get("eventId")),
    event_name=_optional_text(payload.get("eventName")),
    date_key=_optional_text(payload.get("dateKey")),
    device_id=_optional_text(data.get("deviceId")),
  )


class FirestoreNotificationStore(NotificationStore):
  """Reads due notifications and applies claim-guarded status transitions."""

  def __init__(self, *, client_factory: Callable[[], FirestoreClient] = get_firestore_client) -> None:
    self._client_factory = client_factory

  async def query_due(self, *, window_start: datetime, now: datetime) -> list[ScheduledNotification]:
    return await run_in_threadpool(self._query_due_sync, window_start, now)

  async def claim(self, notification: ScheduledNotification, *, claim_id: str, now: datetime) -> bool:
    return await run_in_threadpool(self._claim_sync, notification, claim_id, now)

  async def finalize(self, notification: ScheduledNotification, *, claim_id: str, fields: dict[str, Any]) -> bool:
    return await run_in_threadpool(self._finalize_sync, notification, claim_id, fields)

  async def release(self, notification: ScheduledNotification, *, claim_id: str) -> None:
    await run_in_threadpool(self._release_sync, notification, claim_id)

  async def expire_stale_claims(self, *, claimed_before: datetime, now: datetime) -> int:
    return await run_in_threadpool(self._expire_stale_claims_sync, claimed_before, now)

  def _query_due_sync(self, window_start: datetime, now: datetime) -> list[ScheduledNotification]:
    db = self._client_factory()
    query = (
      db.collection_group(NOTIFICATIONS_COLLECTION)
      .where(filter=FieldFilter("status", "==", NotificationStatus.PENDING.value))
      .where(filter=FieldFilter("scheduledTime", ">=", window_start))
      .where(filter=FieldFilter("scheduledTime", "<=", now))
    )
    due: list[ScheduledNotification] = []
    for snapshot in query.stream():
      notification = notification_from_document(snapshot.id, snapshot.to_dict() or {})
      if notification is not None:
        due.append(notification)
    return due

  def _claim_sync(self, notification: ScheduledNotification, claim_id: str, now: datetime) -> bool:
    db = self._client_factory()
    doc_ref = notification_ref(db, recipient_id=notification.recipient_id, notification_id=notification.id)
    transaction = db.transaction()

    @firestore.transactional
    def claim_in_transaction(transaction: firestore.Transaction, doc_ref: firestore.DocumentReference) -> bool:
      snapshot = doc_ref.get(transaction=transaction)
      if not snapshot.exists:
        return False
      data = snapshot.to_dict() or {}
      if data.get("status") != NotificationStatus.PENDING.value:
        return False
      transaction.update(doc_ref, {"status": NotificationStatus.PROCESSING.value, "claimId": claim_id, "claimedAt": now})
      return True

    return claim_in_transaction(transaction, doc_ref)

  def _finalize_sync(self, notification: ScheduledNotification, claim_id: str, fields: dict[str, Any]) -> bool:
    db = self._client_factory()
    doc_ref = notification_ref(db, recipient_id=notification.recipient_id, notification_id=notification.id)
    transaction = db.transaction()

    @firestore.transactional
    def finalize_in_transaction(transaction: firestore.Transaction, doc_ref: firestore.DocumentReference) -> bool:
      snapshot = doc_ref.get(transaction=transaction)
      if not snapshot.exists:
        return False
      data = snapshot.to_dict() or {}
      if data.get("status") != NotificationStatus.PROCESSING.value or data.get("claimId") != claim_id:
        return False
      transaction.update(doc_ref, fields)
      return True

    return finalize_in_transaction(transaction, doc_ref)

  def _release_sync(self, notification: ScheduledNotification, claim_id: str) -> None:
    db = self._client_factory()
    doc_ref = notification_ref(db, recipient_id=notification.recipient_id, notification_id=notification.id)
    transaction = db.transaction()

    @firestore.transactional
    def release_in_transaction(transaction: firestore.Transaction, doc_ref: firestore.DocumentReference) -> None:
      snapshot = doc_ref.get(transaction=transaction)
      data = (snapshot.to_dict() or {}) if snapshot.exists else {}
      if data.get("status") != NotificationStatus.PROCESSING.value or data.get("claimId") != claim_id:
        return
      transaction.update(doc_ref, {"status": NotificationStatus.PENDING.value, "claimId": firestore.DELETE_FIELD, "claimedAt": firestore.DELETE_FIELD})

    release_in_transaction(transaction, doc_ref)
    logger.info("Released dispatch claim id=%s claim_id=%s", notification.id, claim_id)

  def _expire_stale_claims_sync(self, claimed_before: datetime, now: datetime) -> int:
    db = self._client_factory()
    query = db.collection_group(NOTIFICATIONS_COLLECTION).where(filter=FieldFilter("status", "==", NotificationStatus.PROCESSING.value)).where(filter=FieldFilter("claimedAt", "<", claimed_before))

    expired = 0
    for snapshot in query.stream():
      data = snapshot.to_dict() or {}
      stale_claim_id = data.get("claimId")
      transaction = db.transaction()

      @firestore.transactional
      def expire_in_transaction(transaction: firestore.Transaction, doc_ref: firestore.DocumentReference, stale_claim_id: Any = stale_claim_id) -> bool:
        current = doc_ref.get(transaction=transaction)
        current_data = (current.to_dict() or {}) if current.exists else {}
        if current_data.get("status") != NotificationStatus.PROCESSING.value or current_data.get("claimId") != stale_claim_id:
          return False
        transaction.update(doc_ref, {"status": NotificationStatus.FAILED.value, "failedAt": now, "error": LEASE_EXPIRED_ERROR})
        return True

      if expire_in_transaction(transaction, snapshot.reference):
        expired += 1
        logger.warning("Expired stale claim id=%s claim_id=%s", snapshot.id, stale_claim_id)
    return expired
