"""Durable notification records and the links from recipients to them."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from mobilesync.core.exceptions import PersistenceError
from mobilesync.notifications.contracts import AudienceKind, NotificationContent, NotificationRepository, ResolvedAudience, UserRepository
from mobilesync.notifications.notification_repo import MAX_BATCH_WRITES, link_path, record_path
from mobilesync.utils.concurrency import settle_all


def format_send_time(moment: datetime) -> str:
  """Render a send time in UTC, floored to the minute."""
  return moment.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:00.000Z")


class NotificationRecordStore:
  """Create a notification record and its recipient links as one unit.

  Explicit recipients get a link each, written in the same batch as the record.
  Attribute and broadcast audiences can be arbitrarily large, so only the record
  is written and every resolved user receives a reference afterwards on a
  best-effort basis.
  """

  def __init__(self, *, notification_repo: NotificationRepository, user_repo: UserRepository, logger: logging.Logger | None = None, clock: Callable[[], datetime] | None = None, id_factory: Callable[[], str] | None = None) -> None:
    self._notification_repo = notification_repo
    self._user_repo = user_repo
    self._logger = logger or logging.getLogger(__name__)
    self._clock = clock or (lambda: datetime.now(UTC))
    self._id_factory = id_factory or (lambda: uuid.uuid4().hex)

  def build_record(self, content: NotificationContent) -> dict[str, Any]:
    return {**content.to_dict(), "sendTime": format_send_time(self._clock())}

  async def create_record(self, content: NotificationContent, audience: ResolvedAudience, *, dry_run: bool = False) -> str:
    """Persist the notification and return its id.

    Dry runs persist nothing and return a synthetic id, except for explicit
    recipients: their links are still written, but without a shared record.
    """
    notification_id = self._id_factory()

    if dry_run and audience.kind is not AudienceKind.RECIPIENTS:
      self._logger.info("Dry run: not persisting %s notification %s for %d recipient(s)", audience.kind.value, notification_id, len(audience.recipients))
      return notification_id

    link_user_ids = audience.user_ids() if audience.kind is AudienceKind.RECIPIENTS else []
    create_record = not dry_run
    if int(create_record) + len(link_user_ids) > MAX_BATCH_WRITES:
      # Partially linked notifications would be orphaned; refuse the whole dispatch.
      raise PersistenceError(f"Too many recipients to link in one batch ({len(link_user_ids)}).", details={"limit": MAX_BATCH_WRITES - int(create_record)})

    record = self.build_record(content)
    try:
      await self._notification_repo.commit_notification(notification_id=notification_id, record=record, create_record=create_record, link_user_ids=link_user_ids)
    except Exception as exc:  # noqa: BLE001
      self._logger.error("Notification %s commit failed: %s", notification_id, exc, exc_info=True)
      raise PersistenceError("Failed to persist the notification.") from exc

    self._logger.info("Persisted notification %s with %d recipient link(s)", notification_id, len(link_user_ids))
    await self._append_references(notification_id, audience, link_user_ids, has_record=create_record)
    return notification_id

  async def _append_references(self, notification_id: str, audience: ResolvedAudience, link_user_ids: list[str], *, has_record: bool) -> None:
    """Append notification references to users; individual failures are only logged."""
    if audience.kind is not AudienceKind.RECIPIENTS:
      targets = [(user_id, record_path(notification_id)) for user_id in audience.user_ids()]
    elif has_record:
      targets = [(user_id, record_path(notification_id)) for user_id in link_user_ids]
    else:
      targets = [(user_id, link_path(user_id, notification_id)) for user_id in link_user_ids]

    results = await settle_all(self._user_repo.add_notification_reference(user_id, path) for user_id, path in targets)
    failures = 0
    for (user_id, _), result in zip(targets, results, strict=True):
      if isinstance(result, BaseException):
        failures += 1
        self._logger.warning("Failed to add notification %s reference for user %s: %s", notification_id, user_id, result)
    if failures:
      self._logger.warning("Notification %s references failed for %d of %d user(s)", notification_id, failures, len(targets))
