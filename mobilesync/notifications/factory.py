"""Factory helpers for the push notification service."""

from __future__ import annotations

import httpx
from google.cloud.firestore import Client as FirestoreClient

from mobilesync.config import Settings
from mobilesync.notifications.audience import AudienceResolver
from mobilesync.notifications.batcher import MessageBatcher
from mobilesync.notifications.device_registry import DeviceRegistrySync, DeviceTokenPruner
from mobilesync.notifications.device_repo import FirestoreDeviceRepository
from mobilesync.notifications.dispatch import DispatchEngine
from mobilesync.notifications.expo_transport import ExpoConfig, ExpoPushTransport
from mobilesync.notifications.notification_repo import FirestoreNotificationRepository
from mobilesync.notifications.receipts import ReceiptReconciler
from mobilesync.notifications.records import NotificationRecordStore
from mobilesync.notifications.service import PushNotificationService
from mobilesync.notifications.user_repo import FirestoreUserRepository


def build_expo_transport(settings: Settings, *, http_client: httpx.AsyncClient | None = None) -> ExpoPushTransport:
  config = ExpoConfig(
    base_url=settings.expo_base_url, access_token=settings.expo_access_token, timeout_seconds=settings.expo_timeout_seconds, send_chunk_size=settings.push_chunk_size, receipt_chunk_size=settings.receipt_chunk_size
  )
  return ExpoPushTransport(config=config, client=http_client)


def build_push_notification_service(settings: Settings, *, firestore_client: FirestoreClient | None = None, http_client: httpx.AsyncClient | None = None) -> PushNotificationService:
  """Construct the push pipeline on Firestore and Expo."""
  # Repositories resolve the Firestore client lazily so construction never touches the network.
  user_repo = FirestoreUserRepository(firestore_client)
  device_repo = FirestoreDeviceRepository(firestore_client)
  notification_repo = FirestoreNotificationRepository(firestore_client)

  transport = build_expo_transport(settings, http_client=http_client)
  pruner = DeviceTokenPruner(device_repo)
  return PushNotificationService(
    resolver=AudienceResolver(user_repo=user_repo, device_repo=device_repo),
    record_store=NotificationRecordStore(notification_repo=notification_repo, user_repo=user_repo),
    batcher=MessageBatcher(transport),
    engine=DispatchEngine(transport, pruner),
    reconciler=ReceiptReconciler(transport, pruner),
  )


def build_device_registry_sync(*, firestore_client: FirestoreClient | None = None) -> DeviceRegistrySync:
  return DeviceRegistrySync(FirestoreDeviceRepository(firestore_client))
