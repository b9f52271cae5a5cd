"""Read-only Firestore listings for the diagnostic surface."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Any

from google.cloud.firestore import Client as FirestoreClient
from starlette.concurrency import run_in_threadpool

from dispatcher.core.firebase import get_firestore_client
from dispatcher.storage.firestore_paths import NOTIFICATIONS_COLLECTION, TOKENS_COLLECTION, USERS_COLLECTION


def to_jsonable(value: Any) -> Any:
  """Convert Firestore values into JSON-safe primitives."""
  if value is None or isinstance(value, bool | int | float | str):
    return value
  if isinstance(value, datetime):
    return value.isoformat()
  if isinstance(value, dict):
    return {str(key): to_jsonable(item) for key, item in value.items()}
  if isinstance(value, list | tuple):
    return [to_jsonable(item) for item in value]
  # References, geopoints and other SDK types fall back to their string form.
  return str(value)


class DiagnosticsRepository:
  """Lists raw collection contents; never mutates anything."""

  def __init__(self, *, client_factory: Callable[[], FirestoreClient] = get_firestore_client) -> None:
    self._client_factory = client_factory

  async def list_users(self) -> list[dict[str, Any]]:
    return await run_in_threadpool(self._list_users_sync)

  async def list_notifications(self) -> list[dict[str, Any]]:
    return await run_in_threadpool(self._list_group_sync, NOTIFICATIONS_COLLECTION, "id")

  async def list_tokens(self) -> list[dict[str, Any]]:
    return await run_in_threadpool(self._list_group_sync, TOKENS_COLLECTION, "token")

  async def list_root_collections(self) -> list[str]:
    return await run_in_threadpool(self._list_root_collections_sync)

  async def overview(self) -> dict[str, Any]:
    return await run_in_threadpool(self._overview_sync)

  def _list_users_sync(self) -> list[dict[str, Any]]:
    db = self._client_factory()
    return [{"id": snapshot.id, "email": (snapshot.to_dict() or {}).get("email") or "no email"} for snapshot in db.collection(USERS_COLLECTION).stream()]

  def _list_group_sync(self, group: str, id_key: str) -> list[dict[str, Any]]:
    db = self._client_factory()
    rows: list[dict[str, Any]] = []
    for snapshot in db.collection_group(group).stream():
      data = snapshot.to_dict() or {}
      row = {id_key: snapshot.id, **to_jsonable(data)}
      row["recipientId"] = data.get("recipientId")
      rows.append(row)
    return rows

  def _list_root_collections_sync(self) -> list[str]:
    db = self._client_factory()
    return [collection.id for collection in db.collections()]

  def _count_sync(self, query: Any) -> int:
    results = query.count().get()
    return int(results[0][0].value) if results and results[0] else 0

  def _overview_sync(self) -> dict[str, Any]:
    db = self._client_factory()
    return {
      "collections": [collection.id for collection in db.collections()],
      "counts": {
        USERS_COLLECTION: self._count_sync(db.collection(USERS_COLLECTION)),
        NOTIFICATIONS_COLLECTION: self._count_sync(db.collection_group(NOTIFICATIONS_COLLECTION)),
        TOKENS_COLLECTION: self._count_sync(db.collection_group(TOKENS_COLLECTION)),
      },
    }
