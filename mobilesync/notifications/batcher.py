"""Turn resolved tokens into transport-sized message chunks."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from mobilesync.notifications.contracts import NotificationContent, PushMessage, PushTransport
from mobilesync.utils.concurrency import chunked


class MessageBatcher:
  def __init__(self, transport: PushTransport, *, logger: logging.Logger | None = None) -> None:
    self._transport = transport
    self._logger = logger or logging.getLogger(__name__)

  def build_chunks(self, content: NotificationContent, tokens: Iterable[str]) -> list[list[PushMessage]]:
    """Build one message per valid token, grouped in audience order.

    Tokens the transport would reject are logged and dropped; they are never
    sent and never count as a delivery attempt.
    """
    messages: list[PushMessage] = []
    for token in tokens:
      if not self._transport.is_push_token(token):
        self._logger.warning("Push token %r is not a valid push token; skipping", token)
        continue
      messages.append(PushMessage(to=token, title=content.title, body=content.body, data=content.payload))

    return chunked(messages, self._transport.send_chunk_size)
