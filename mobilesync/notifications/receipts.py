"""Poll delivery receipts for dispatched tickets and act on their outcomes.

A ticket with an id moves from pending to delivered or failed exactly once.
Receipt chunks that cannot be fetched leave their tickets pending and mark the
whole reconciliation as a partial failure; a rate-limit or unrecognised
receipt error aborts the remaining chunks.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from mobilesync.core.exceptions import UnhandledTransportError
from mobilesync.notifications.contracts import DEVICE_NOT_REGISTERED, MESSAGE_TOO_BIG, PushReceipt, PushTransport, TokenPruner
from mobilesync.utils.concurrency import chunked


class ReceiptOutcome(str, enum.Enum):
  PENDING = "pending"
  DELIVERED = "delivered"
  FAILED = "failed"


@dataclass
class ReconciliationResult:
  status: str = "ok"
  receipts: dict[str, PushReceipt | None] = field(default_factory=dict)
  outcomes: dict[str, ReceiptOutcome] = field(default_factory=dict)

  def to_dict(self) -> dict[str, Any]:
    return {"status": self.status, "receipts": {receipt_id: receipt.to_dict() if receipt else None for receipt_id, receipt in self.receipts.items()}}


class ReceiptReconciler:
  def __init__(self, transport: PushTransport, token_pruner: TokenPruner, *, logger: logging.Logger | None = None) -> None:
    self._transport = transport
    self._token_pruner = token_pruner
    self._logger = logger or logging.getLogger(__name__)

  async def reconcile(self, receipt_ids: Iterable[str | None]) -> ReconciliationResult:
    # Tickets rejected at send time have no id and already carry their error.
    ids = list(dict.fromkeys(receipt_id for receipt_id in receipt_ids if receipt_id))
    result = ReconciliationResult()
    for receipt_id in ids:
      result.receipts[receipt_id] = None
      result.outcomes[receipt_id] = ReceiptOutcome.PENDING

    dead_tokens: list[str] = []
    try:
      for index, chunk in enumerate(chunked(ids, self._transport.receipt_chunk_size)):
        try:
          receipts = await self._transport.get_receipts(chunk)
        except Exception as exc:  # noqa: BLE001
          self._logger.error("Receipt chunk %d (%d id(s)) could not be fetched: %s", index + 1, len(chunk), exc, exc_info=True)
          result.status = "partial-failure"
          continue

        for receipt_id in chunk:
          receipt = receipts.get(receipt_id)
          if receipt is None:
            continue
          result.receipts[receipt_id] = receipt
          result.outcomes[receipt_id] = self._classify(receipt_id, receipt, dead_tokens)
    finally:
      if dead_tokens:
        await self._token_pruner.prune_tokens(dead_tokens)

    delivered = sum(1 for outcome in result.outcomes.values() if outcome is ReceiptOutcome.DELIVERED)
    failed = sum(1 for outcome in result.outcomes.values() if outcome is ReceiptOutcome.FAILED)
    self._logger.info("Reconciled %d receipt(s): %d delivered, %d failed, %d pending (%s)", len(ids), delivered, failed, len(ids) - delivered - failed, result.status)
    return result

  def _classify(self, receipt_id: str, receipt: PushReceipt, dead_tokens: list[str]) -> ReceiptOutcome:
    if receipt.is_ok:
      return ReceiptOutcome.DELIVERED

    code = receipt.error_code
    if code == DEVICE_NOT_REGISTERED:
      token = receipt.push_token
      if token:
        dead_tokens.append(token)
      else:
        self._logger.warning("Receipt %s reported an unregistered device without its token", receipt_id)
      return ReceiptOutcome.FAILED
    if code == MESSAGE_TOO_BIG:
      self._logger.warning("Receipt %s: message too big: %s", receipt_id, receipt.message)
      return ReceiptOutcome.FAILED

    self._logger.error("Receipt %s has unhandled error %s: %s", receipt_id, code, receipt.message)
    raise UnhandledTransportError(f"Unhandled push receipt error: {code or 'unknown'}.", details={"receiptId": receipt_id, "receipt": receipt.to_dict()})
