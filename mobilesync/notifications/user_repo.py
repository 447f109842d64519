"""Firestore access to user documents for audience resolution."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from firebase_admin import firestore
from google.cloud.firestore import Client as FirestoreClient
from google.cloud.firestore_v1.base_query import FieldFilter
from google.cloud.firestore_v1.field_path import FieldPath
from starlette.concurrency import run_in_threadpool

from mobilesync.core.firebase import get_firestore_client
from mobilesync.notifications.contracts import AttributeValue, UserDocument

USERS_COLLECTION = "users"


def attribute_field_path(name: str) -> str:
  """Quote an attribute name so dots or spaces in it stay a single path segment."""
  return FieldPath("attributes", name).to_api_repr()


def user_from_snapshot(user_id: str, data: Mapping[str, Any] | None) -> UserDocument:
  """Build a `UserDocument`, ignoring malformed fields rather than failing the audience."""
  data = data or {}
  attributes = data.get("attributes")
  raw_tokens = data.get("registeredPushTokens")
  tokens = tuple(token for token in raw_tokens if isinstance(token, str)) if isinstance(raw_tokens, list) else ()
  return UserDocument(user_id=user_id, attributes=dict(attributes) if isinstance(attributes, Mapping) else {}, registered_push_tokens=tokens)


class FirestoreUserRepository:
  """Read users and append notification references in Firestore."""

  def __init__(self, client: FirestoreClient | None = None) -> None:
    self._client = client

  def _db(self) -> FirestoreClient:
    if self._client is None:
      self._client = get_firestore_client()
    return self._client

  async def query_users(self, *, equals: Mapping[str, AttributeValue], member_of: tuple[str, Sequence[AttributeValue]] | None) -> list[UserDocument]:
    """Query users by attribute equality plus at most one `in` filter."""
    return await run_in_threadpool(self._query_users_sync, dict(equals), member_of)

  def _query_users_sync(self, equals: dict[str, AttributeValue], member_of: tuple[str, Sequence[AttributeValue]] | None) -> list[UserDocument]:
    query = self._db().collection(USERS_COLLECTION)
    for name, value in equals.items():
      query = query.where(filter=FieldFilter(attribute_field_path(name), "==", value))
    if member_of is not None:
      name, values = member_of
      query = query.where(filter=FieldFilter(attribute_field_path(name), "in", list(values)))
    return [user_from_snapshot(snapshot.id, snapshot.to_dict()) for snapshot in query.stream()]

  async def get_users(self, user_ids: Sequence[str]) -> list[UserDocument]:
    """Fetch users by id in request order; ids without a document are dropped."""
    if not user_ids:
      return []
    return await run_in_threadpool(self._get_users_sync, list(user_ids))

  def _get_users_sync(self, user_ids: list[str]) -> list[UserDocument]:
    db = self._db()
    refs = [db.collection(USERS_COLLECTION).document(user_id) for user_id in user_ids]
    # get_all returns snapshots in arbitrary order.
    found = {snapshot.id: snapshot for snapshot in db.get_all(refs) if snapshot.exists}
    return [user_from_snapshot(user_id, found[user_id].to_dict()) for user_id in user_ids if user_id in found]

  async def add_notification_reference(self, user_id: str, document_path: str) -> None:
    """Union a notification document reference into the user's reference list."""
    await run_in_threadpool(self._add_notification_reference_sync, user_id, document_path)

  def _add_notification_reference_sync(self, user_id: str, document_path: str) -> None:
    db = self._db()
    db.collection(USERS_COLLECTION).document(user_id).update({"notificationReferences": firestore.ArrayUnion([db.document(document_path)])})
