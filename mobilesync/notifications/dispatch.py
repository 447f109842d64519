"""Sequential chunk delivery and synchronous ticket classification."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from mobilesync.core.exceptions import InternalError, MobileSyncError, TransportChunkError, UnhandledTransportError
from mobilesync.notifications.contracts import DEVICE_NOT_REGISTERED, MESSAGE_RATE_EXCEEDED, MESSAGE_TOO_BIG, PushMessage, PushTicket, PushTransport, TokenPruner


@dataclass
class DispatchResult:
  """Tickets in send order plus per-chunk failures that did not stop the dispatch."""

  notification_id: str | None = None
  tickets: list[PushTicket] = field(default_factory=list)
  errors: list[MobileSyncError] = field(default_factory=list)

  def to_dict(self) -> dict[str, Any]:
    payload: dict[str, Any] = {"tickets": [ticket.to_dict() for ticket in self.tickets], "errors": [error.to_dict() for error in self.errors]}
    if self.notification_id:
      payload["notificationId"] = self.notification_id
    return payload


class DispatchEngine:
  """Send chunks one after another and classify the returned tickets."""

  def __init__(self, transport: PushTransport, token_pruner: TokenPruner, *, logger: logging.Logger | None = None) -> None:
    self._transport = transport
    self._token_pruner = token_pruner
    self._logger = logger or logging.getLogger(__name__)

  async def send(self, chunks: Sequence[Sequence[PushMessage]]) -> DispatchResult:
    result = DispatchResult()
    fatal: MobileSyncError | None = None
    dead_tokens: list[str] = []

    # Chunks go out sequentially to stay under the transport's rate limits.
    for index, chunk in enumerate(chunks):
      if not chunk:
        continue
      try:
        tickets = await self._transport.send(chunk)
      except Exception as exc:  # noqa: BLE001
        self._logger.error("Push chunk %d of %d failed: %s", index + 1, len(chunks), exc, exc_info=True)
        result.errors.append(TransportChunkError(f"Push chunk {index + 1} could not be sent.", details={"chunk": index, "size": len(chunk), "error": exc}))
        continue

      if len(tickets) != len(chunk):
        self._logger.warning("Push chunk %d returned %d ticket(s) for %d message(s)", index + 1, len(tickets), len(chunk))

      for message, ticket in zip(chunk, tickets, strict=False):
        result.tickets.append(ticket)
        if ticket.is_ok:
          continue
        error = self._classify(message, ticket, dead_tokens)
        if error is not None:
          fatal = error
          break

      if fatal is not None:
        break

    if dead_tokens:
      await self._token_pruner.prune_tokens(dead_tokens)

    if fatal is not None:
      raise fatal

    self._logger.info("Dispatched %d chunk(s): %d ticket(s), %d chunk error(s)", len(chunks), len(result.tickets), len(result.errors))
    return result

  def _classify(self, message: PushMessage, ticket: PushTicket, dead_tokens: list[str]) -> MobileSyncError | None:
    """Return a fatal error for the ticket, or None when sending may continue."""
    code = ticket.error_code
    if code == DEVICE_NOT_REGISTERED:
      self._logger.info("Push token %s is no longer registered", message.to)
      dead_tokens.append(message.to)
      return None
    if code == MESSAGE_TOO_BIG:
      self._logger.warning("Push message to %s was too big: %s", message.to, ticket.message)
      return None
    if code == MESSAGE_RATE_EXCEEDED:
      self._logger.error("Push transport rate limit exceeded; aborting dispatch")
      return InternalError("The push transport rate limit was exceeded.", details={"ticket": ticket.to_dict()})

    self._logger.error("Unhandled push ticket error %s: %s", code, ticket.message)
    return UnhandledTransportError(f"Unhandled push ticket error: {code or 'unknown'}.", details={"ticket": ticket.to_dict()})
