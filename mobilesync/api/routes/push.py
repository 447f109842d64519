"""Routes for push notification dispatch and receipt reconciliation."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends

from mobilesync.api.deps import get_push_notification_service
from mobilesync.core.security import CallerIdentity, require_notification_sender
from mobilesync.notifications.requests import parse_dispatch_request, parse_receipt_ids
from mobilesync.notifications.service import PushNotificationService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/send")
async def send_push_notification(
  payload: Any = Body(...),  # noqa: B008
  caller: CallerIdentity = Depends(require_notification_sender),  # noqa: B008
  service: PushNotificationService = Depends(get_push_notification_service),  # noqa: B008
) -> dict[str, Any]:
  """
  Send a notification to an attribute audience, explicit recipients, or everyone.

  Exactly one of `notificationAudiences`, `notificationRecipients` or
  `sendToAll` must be set. The response lists one ticket per attempted message.
  """
  request = parse_dispatch_request(payload)
  logger.info("Push dispatch requested by %s audience=%s dry_run=%s", caller.uid, request.audience.kind.value, request.dry_run)
  result = await service.dispatch(request)
  return result.to_dict()


@router.post("/receipts")
async def process_push_receipts(
  payload: Any = Body(...),  # noqa: B008
  caller: CallerIdentity = Depends(require_notification_sender),  # noqa: B008
  service: PushNotificationService = Depends(get_push_notification_service),  # noqa: B008
) -> dict[str, Any]:
  """Fetch receipts for previously issued tickets and prune dead tokens."""
  receipt_ids = parse_receipt_ids(payload)
  logger.info("Receipt reconciliation requested by %s for %d id(s)", caller.uid, len(receipt_ids))
  result = await service.reconcile_receipts(receipt_ids)
  return result.to_dict()
