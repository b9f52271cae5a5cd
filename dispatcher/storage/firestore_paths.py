"""Firestore collection names and document reference helpers."""

from __future__ import annotations

from google.cloud.firestore import Client as FirestoreClient
from google.cloud.firestore import DocumentReference

USERS_COLLECTION = "users"
NOTIFICATIONS_COLLECTION = "notifications"
TOKENS_COLLECTION = "fcmTokens"


def notification_ref(db: FirestoreClient, *, recipient_id: str, notification_id: str) -> DocumentReference:
  """Return the notification document owned by recipient_id."""
  return db.collection(USERS_COLLECTION).document(recipient_id).collection(NOTIFICATIONS_COLLECTION).document(notification_id)


def token_ref(db: FirestoreClient, *, recipient_id: str, token: str) -> DocumentReference:
  """Return the registration document keyed by its token."""
  return db.collection(USERS_COLLECTION).document(recipient_id).collection(TOKENS_COLLECTION).document(token)
