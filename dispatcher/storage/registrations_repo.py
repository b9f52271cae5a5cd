"""Firestore persistence for push-delivery address registrations."""

from __future__ import annotations

import logging
from collections.abc import Callable

from google.cloud.firestore import Client as FirestoreClient
from starlette.concurrency import run_in_threadpool

from dispatcher.core.firebase import get_firestore_client
from dispatcher.dispatch.contracts import DeviceRegistration, RegistrationRegistry
from dispatcher.storage.firestore_paths import TOKENS_COLLECTION, USERS_COLLECTION, token_ref

logger = logging.getLogger(__name__)


class FirestoreRegistrationRegistry(RegistrationRegistry):
  """Lists and prunes the FCM tokens registered under a recipient."""

  def __init__(self, *, client_factory: Callable[[], FirestoreClient] = get_firestore_client) -> None:
    self._client_factory = client_factory

  async def list_for_recipient(self, recipient_id: str) -> list[DeviceRegistration]:
    """List every token registered for a recipient."""
    return await run_in_threadpool(self._list_sync, recipient_id)

  async def delete(self, *, recipient_id: str, token: str) -> None:
    """Delete one token registration; deleting a missing document is a no-op."""
    await run_in_threadpool(self._delete_sync, recipient_id, token)

  def _list_sync(self, recipient_id: str) -> list[DeviceRegistration]:
    db = self._client_factory()
    registrations: list[DeviceRegistration] = []
    for snapshot in db.collection(USERS_COLLECTION).document(recipient_id).collection(TOKENS_COLLECTION).stream():
      data = snapshot.to_dict() or {}
      owner = data.get("recipientId")
      # Ownership is the explicit field; a mismatch means a mis-filed registration.
      if owner is not None and owner != recipient_id:
        logger.warning("Ignoring registration owned by another recipient recipient=%s owner=%s", recipient_id, owner)
        continue
      token = str(data.get("token") or snapshot.id)
      device_id = data.get("deviceId")
      registrations.append(DeviceRegistration(recipient_id=recipient_id, token=token, device_id=str(device_id) if device_id else None))
    return registrations

  def _delete_sync(self, recipient_id: str, token: str) -> None:
    db = self._client_factory()
    token_ref(db, recipient_id=recipient_id, token=token).delete()
