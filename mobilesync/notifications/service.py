"""Push notification orchestration: resolve, persist, batch, send, reconcile."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from mobilesync.notifications.audience import AudienceResolver
from mobilesync.notifications.batcher import MessageBatcher
from mobilesync.notifications.contracts import AudienceKind, DispatchRequest
from mobilesync.notifications.dispatch import DispatchEngine, DispatchResult
from mobilesync.notifications.receipts import ReceiptReconciler, ReconciliationResult
from mobilesync.notifications.records import NotificationRecordStore

logger = logging.getLogger(__name__)


class PushNotificationService:
  """Runs one dispatch or reconciliation per call; holds no per-request state."""

  def __init__(self, *, resolver: AudienceResolver, record_store: NotificationRecordStore, batcher: MessageBatcher, engine: DispatchEngine, reconciler: ReceiptReconciler) -> None:
    self._resolver = resolver
    self._record_store = record_store
    self._batcher = batcher
    self._engine = engine
    self._reconciler = reconciler

  async def dispatch(self, request: DispatchRequest) -> DispatchResult:
    """Deliver a validated request to its audience.

    The record is committed before any chunk is sent, so a persistence failure
    means nothing was delivered. Dry runs stop after resolution, except for
    explicit recipients, which are still linked and sent to.
    """
    audience = await self._resolver.resolve(request.audience)
    notification_id = await self._record_store.create_record(request.content, audience, dry_run=request.dry_run)

    if request.dry_run and audience.kind is not AudienceKind.RECIPIENTS:
      logger.info("Dry run for %s audience resolved %d recipient(s) and %d token(s)", audience.kind.value, len(audience.recipients), len(audience.tokens()))
      return DispatchResult(notification_id=notification_id)

    chunks = self._batcher.build_chunks(request.content, audience.tokens())
    result = await self._engine.send(chunks)
    result.notification_id = notification_id
    return result

  async def reconcile_receipts(self, receipt_ids: Iterable[str | None]) -> ReconciliationResult:
    return await self._reconciler.reconcile(receipt_ids)
