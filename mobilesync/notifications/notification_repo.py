"""Firestore persistence for notification records and recipient links."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from google.cloud.firestore import Client as FirestoreClient
from starlette.concurrency import run_in_threadpool

from mobilesync.core.firebase import get_firestore_client
from mobilesync.notifications.user_repo import USERS_COLLECTION

PAST_NOTIFICATIONS_COLLECTION = "past-notifications"

# Firestore rejects write batches with more operations than this.
MAX_BATCH_WRITES = 500


def record_path(notification_id: str) -> str:
  return f"{PAST_NOTIFICATIONS_COLLECTION}/{notification_id}"


def link_path(user_id: str, notification_id: str) -> str:
  return f"{USERS_COLLECTION}/{user_id}/{PAST_NOTIFICATIONS_COLLECTION}/{notification_id}"


class FirestoreNotificationRepository:
  """Write a notification and its recipient links in one batch."""

  def __init__(self, client: FirestoreClient | None = None) -> None:
    self._client = client

  def _db(self) -> FirestoreClient:
    if self._client is None:
      self._client = get_firestore_client()
    return self._client

  async def commit_notification(self, *, notification_id: str, record: Mapping[str, Any], create_record: bool, link_user_ids: Sequence[str]) -> None:
    await run_in_threadpool(self._commit_notification_sync, notification_id, dict(record), create_record, list(link_user_ids))

  def _commit_notification_sync(self, notification_id: str, record: dict[str, Any], create_record: bool, link_user_ids: list[str]) -> None:
    if int(create_record) + len(link_user_ids) > MAX_BATCH_WRITES:
      raise ValueError(f"A notification batch is limited to {MAX_BATCH_WRITES} writes.")

    db = self._db()
    batch = db.batch()
    record_ref = db.document(record_path(notification_id))
    if create_record:
      batch.create(record_ref, record)

    for user_id in link_user_ids:
      if create_record:
        link = {"notificationId": notification_id, "sendTime": record.get("sendTime"), "notification": record_ref}
      else:
        # Without a shared record the link is the only copy, so it carries the content.
        link = {"notificationId": notification_id, **record}
      batch.create(db.document(link_path(user_id, notification_id)), link)

    batch.commit()
