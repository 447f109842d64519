from __future__ import annotations

import pytest
from fakes import FakeDeviceRepository, FakeNotificationRepository, FakeTransport, FakeUserRepository, RecordingPruner, make_user, token

from mobilesync.core.exceptions import PersistenceError
from mobilesync.notifications.audience import AudienceResolver
from mobilesync.notifications.batcher import MessageBatcher
from mobilesync.notifications.contracts import DeviceRegistration
from mobilesync.notifications.dispatch import DispatchEngine
from mobilesync.notifications.receipts import ReceiptReconciler
from mobilesync.notifications.records import NotificationRecordStore
from mobilesync.notifications.requests import parse_dispatch_request
from mobilesync.notifications.service import PushNotificationService


def _service(user_repo: FakeUserRepository, device_repo: FakeDeviceRepository, notification_repo: FakeNotificationRepository, transport: FakeTransport, fixed_ids) -> PushNotificationService:
  pruner = RecordingPruner()
  return PushNotificationService(
    resolver=AudienceResolver(user_repo=user_repo, device_repo=device_repo),
    record_store=NotificationRecordStore(notification_repo=notification_repo, user_repo=user_repo, id_factory=fixed_ids),
    batcher=MessageBatcher(transport),
    engine=DispatchEngine(transport, pruner),
    reconciler=ReceiptReconciler(transport, pruner),
  )


@pytest.mark.anyio
async def test_invalid_token_recipient_gets_no_message(user_repo, device_repo, notification_repo, transport, fixed_ids, caplog):
  user_repo.users = {"u1": make_user("u1", "ExponentPushToken[abc]"), "u2": make_user("u2", "garbage")}
  service = _service(user_repo, device_repo, notification_repo, transport, fixed_ids)

  with caplog.at_level("WARNING"):
    result = await service.dispatch(parse_dispatch_request({"notificationTitle": "Test", "notificationBody": "Hi", "notificationRecipients": ["u1", "u2"]}))

  assert [[message.to for message in chunk] for chunk in transport.sent] == [["ExponentPushToken[abc]"]]
  assert len(result.tickets) == 1
  assert "'garbage'" in caplog.text
  assert notification_repo.commits[0]["link_user_ids"] == ["u1", "u2"]


@pytest.mark.anyio
async def test_persistence_failure_sends_nothing(user_repo, device_repo, notification_repo, transport, fixed_ids):
  user_repo.users = {"u1": make_user("u1", token(1))}
  notification_repo.error = RuntimeError("contention")
  service = _service(user_repo, device_repo, notification_repo, transport, fixed_ids)

  with pytest.raises(PersistenceError):
    await service.dispatch(parse_dispatch_request({"notificationTitle": "Test", "notificationBody": "Hi", "notificationRecipients": ["u1"]}))

  assert transport.sent == []


@pytest.mark.anyio
async def test_dry_run_broadcast_sends_and_persists_nothing(user_repo, device_repo, notification_repo, transport, fixed_ids):
  device_repo.devices = {"d1": DeviceRegistration(device_id="d1", push_token=token(1), owner_user_id="u1")}
  service = _service(user_repo, device_repo, notification_repo, transport, fixed_ids)

  result = await service.dispatch(parse_dispatch_request({"notificationTitle": "Test", "notificationBody": "Hi", "sendToAll": True, "dryRun": True}))

  assert result.tickets == []
  assert result.notification_id == "notification-1"
  assert notification_repo.commits == []
  assert transport.sent == []


@pytest.mark.anyio
async def test_dry_run_recipients_still_links_and_sends(user_repo, device_repo, notification_repo, transport, fixed_ids):
  user_repo.users = {"u1": make_user("u1", token(1))}
  service = _service(user_repo, device_repo, notification_repo, transport, fixed_ids)

  result = await service.dispatch(parse_dispatch_request({"notificationTitle": "Test", "notificationBody": "Hi", "notificationRecipients": ["u1"], "dryRun": True}))

  assert len(result.tickets) == 1
  assert notification_repo.commits[0]["create_record"] is False
  assert notification_repo.commits[0]["link_user_ids"] == ["u1"]


@pytest.mark.anyio
async def test_attribute_dispatch_reaches_each_matching_user_once(user_repo, device_repo, notification_repo, transport, fixed_ids):
  user_repo.users = {
    "u1": make_user("u1", token(1), committee="tech-committee", dbRole="committee"),
    "u2": make_user("u2", token(2), committee="tech-committee", dbRole="team-member"),
  }
  service = _service(user_repo, device_repo, notification_repo, transport, fixed_ids)

  result = await service.dispatch(parse_dispatch_request({"notificationTitle": "T", "notificationBody": "B", "notificationAudiences": [{"committee": ["tech-committee"]}, {"dbRole": ["committee"]}]}))

  assert result.to_dict()["notificationId"] == "notification-1"
  assert [message.to for message in transport.sent[0]] == [token(1), token(2)]
  assert notification_repo.commits[0]["link_user_ids"] == []
  assert sorted(user_repo.references) == [("u1", "past-notifications/notification-1"), ("u2", "past-notifications/notification-1")]


@pytest.mark.anyio
async def test_large_attribute_audience_is_sent_without_link_limit(user_repo, device_repo, notification_repo, transport, fixed_ids):
  user_repo.users = {f"u{i}": make_user(f"u{i}", token(i), dbRole="team-member") for i in range(600)}
  service = _service(user_repo, device_repo, notification_repo, transport, fixed_ids)

  result = await service.dispatch(parse_dispatch_request({"notificationTitle": "T", "notificationBody": "B", "notificationAudiences": [{"dbRole": ["team-member"]}]}))

  assert len(transport.sent) == 6
  assert len(result.tickets) == 600
  assert notification_repo.commits[0]["link_user_ids"] == []
  assert len(user_repo.references) == 600
