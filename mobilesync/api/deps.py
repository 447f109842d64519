"""Shared FastAPI dependencies for the push and claims routes."""

from __future__ import annotations

from functools import lru_cache

from mobilesync.config import get_settings
from mobilesync.core.firebase import set_custom_claims
from mobilesync.directory.claims import ClaimsRefresher
from mobilesync.directory.lookup import DirectoryLookup, FirestoreDirectoryRepository
from mobilesync.notifications.factory import build_push_notification_service
from mobilesync.notifications.service import PushNotificationService


@lru_cache(maxsize=1)
def get_push_notification_service() -> PushNotificationService:
  """Build the push pipeline once per process; it holds no per-request state."""
  return build_push_notification_service(get_settings())


@lru_cache(maxsize=1)
def get_claims_refresher() -> ClaimsRefresher:
  return ClaimsRefresher(DirectoryLookup(FirestoreDirectoryRepository()), set_custom_claims)
