"""Firestore access to device registrations and the tokens mirrored onto users."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from firebase_admin import firestore
from google.cloud.firestore import Client as FirestoreClient
from google.cloud.firestore_v1.base_query import FieldFilter
from starlette.concurrency import run_in_threadpool

from mobilesync.core.firebase import get_firestore_client
from mobilesync.notifications.contracts import DeviceRegistration
from mobilesync.notifications.notification_repo import MAX_BATCH_WRITES
from mobilesync.notifications.user_repo import USERS_COLLECTION
from mobilesync.utils.concurrency import chunked

DEVICES_COLLECTION = "devices"
PUSH_TOKEN_FIELD = "expoPushToken"
OWNER_FIELD = "latestUserId"
REGISTERED_TOKENS_FIELD = "registeredPushTokens"


@dataclass(frozen=True)
class TokenMutation:
  """Tokens to add to and remove from one user's registered token list."""

  user_id: str
  add: tuple[str, ...] = ()
  remove: tuple[str, ...] = ()


def device_from_snapshot(device_id: str, data: Mapping[str, Any] | None) -> DeviceRegistration:
  data = data or {}
  token = data.get(PUSH_TOKEN_FIELD)
  owner = data.get(OWNER_FIELD)
  attributes = data.get("attributes")
  return DeviceRegistration(
    device_id=device_id,
    push_token=token if isinstance(token, str) and token else None,
    owner_user_id=owner if isinstance(owner, str) and owner else None,
    attributes=dict(attributes) if isinstance(attributes, Mapping) else {},
  )


class FirestoreDeviceRepository:
  """Device reads, token pruning and owner token mirroring."""

  def __init__(self, client: FirestoreClient | None = None) -> None:
    self._client = client

  def _db(self) -> FirestoreClient:
    if self._client is None:
      self._client = get_firestore_client()
    return self._client

  async def list_registered_devices(self) -> list[DeviceRegistration]:
    return await run_in_threadpool(self._list_registered_devices_sync)

  def _list_registered_devices_sync(self) -> list[DeviceRegistration]:
    query = self._db().collection(DEVICES_COLLECTION).where(filter=FieldFilter(PUSH_TOKEN_FIELD, "!=", None))
    devices = [device_from_snapshot(snapshot.id, snapshot.to_dict()) for snapshot in query.stream()]
    return [device for device in devices if device.push_token]

  async def remove_push_token(self, token: str) -> int:
    """Strip the token from every device and user holding it; return the number of documents touched."""
    return await run_in_threadpool(self._remove_push_token_sync, token)

  def _remove_push_token_sync(self, token: str) -> int:
    db = self._db()
    device_refs = [snapshot.reference for snapshot in db.collection(DEVICES_COLLECTION).where(filter=FieldFilter(PUSH_TOKEN_FIELD, "==", token)).stream()]
    user_refs = [snapshot.reference for snapshot in db.collection(USERS_COLLECTION).where(filter=FieldFilter(REGISTERED_TOKENS_FIELD, "array_contains", token)).stream()]

    writes = [(ref, {PUSH_TOKEN_FIELD: firestore.DELETE_FIELD}) for ref in device_refs]
    writes.extend((ref, {REGISTERED_TOKENS_FIELD: firestore.ArrayRemove([token])}) for ref in user_refs)

    # A token shared by many documents may exceed one batch.
    for chunk in chunked(writes, MAX_BATCH_WRITES):
      batch = db.batch()
      for ref, update in chunk:
        batch.update(ref, update)
      batch.commit()
    return len(writes)

  async def apply_token_mutations(self, mutations: Sequence[TokenMutation]) -> None:
    """Mirror device token changes onto their owners in one batch."""
    if not mutations:
      return
    await run_in_threadpool(self._apply_token_mutations_sync, list(mutations))

  def _apply_token_mutations_sync(self, mutations: list[TokenMutation]) -> None:
    db = self._db()
    batch = db.batch()
    for mutation in mutations:
      ref = db.collection(USERS_COLLECTION).document(mutation.user_id)
      # Union and remove on the same field cannot share one write.
      if mutation.remove:
        batch.set(ref, {REGISTERED_TOKENS_FIELD: firestore.ArrayRemove(list(mutation.remove))}, merge=True)
      if mutation.add:
        batch.set(ref, {REGISTERED_TOKENS_FIELD: firestore.ArrayUnion(list(mutation.add))}, merge=True)
    batch.commit()
