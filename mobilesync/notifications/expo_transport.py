"""Expo push service transport over HTTP."""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass
from http import HTTPStatus
from typing import Any

import httpx

from mobilesync.config import EXPO_MAX_RECEIPT_CHUNK_SIZE, EXPO_MAX_SEND_CHUNK_SIZE
from mobilesync.notifications.contracts import PushMessage, PushReceipt, PushTicket, PushTransportError, TransientPushTransportError

logger = logging.getLogger(__name__)

_UUID_TOKEN_RE = re.compile(r"^[a-z\d]{8}-[a-z\d]{4}-[a-z\d]{4}-[a-z\d]{4}-[a-z\d]{12}$", re.IGNORECASE)


def is_expo_push_token(token: object) -> bool:
  """Return whether the value looks like a token Expo will accept."""
  if not isinstance(token, str):
    return False
  if token.startswith(("ExponentPushToken[", "ExpoPushToken[")) and token.endswith("]"):
    return True
  return bool(_UUID_TOKEN_RE.match(token))


@dataclass(frozen=True)
class ExpoConfig:
  """Connection settings for the Expo push API."""

  base_url: str = "https://exp.host/--/api/v2"
  access_token: str | None = None
  timeout_seconds: float = 10.0
  send_chunk_size: int = EXPO_MAX_SEND_CHUNK_SIZE
  receipt_chunk_size: int = 300


class ExpoPushTransport:
  """`httpx` backed Expo client with bounded retries for transient failures."""

  def __init__(self, *, config: ExpoConfig, client: httpx.AsyncClient | None = None, backoff_seconds: Sequence[float] = (0.5, 1.0)) -> None:
    if not 0 < config.send_chunk_size <= EXPO_MAX_SEND_CHUNK_SIZE:
      raise ValueError(f"Send chunk size must be between 1 and {EXPO_MAX_SEND_CHUNK_SIZE}.")
    if not 0 < config.receipt_chunk_size <= EXPO_MAX_RECEIPT_CHUNK_SIZE:
      raise ValueError(f"Receipt chunk size must be between 1 and {EXPO_MAX_RECEIPT_CHUNK_SIZE}.")
    self._config = config
    self._client = client
    self._backoff_seconds = list(backoff_seconds)
    self.send_chunk_size = config.send_chunk_size
    self.receipt_chunk_size = config.receipt_chunk_size

  def is_push_token(self, token: object) -> bool:
    return is_expo_push_token(token)

  async def send(self, messages: Sequence[PushMessage]) -> list[PushTicket]:
    """Send one chunk; the service answers with one ticket per message."""
    if len(messages) > self.send_chunk_size:
      raise ValueError(f"A push chunk holds at most {self.send_chunk_size} messages.")
    body = await self._post("/push/send", [message.to_wire() for message in messages], idempotent=False)
    data = body.get("data")
    if not isinstance(data, list):
      raise PushTransportError("Expo send response is missing its ticket list.")
    return [PushTicket.from_wire(item if isinstance(item, dict) else {}) for item in data]

  async def get_receipts(self, receipt_ids: Sequence[str]) -> dict[str, PushReceipt]:
    if len(receipt_ids) > self.receipt_chunk_size:
      raise ValueError(f"A receipt chunk holds at most {self.receipt_chunk_size} ids.")
    body = await self._post("/push/getReceipts", {"ids": list(receipt_ids)}, idempotent=True)
    data = body.get("data")
    if not isinstance(data, dict):
      raise PushTransportError("Expo receipt response is missing its receipt map.")
    return {str(receipt_id): PushReceipt.from_wire(raw) for receipt_id, raw in data.items() if isinstance(raw, dict)}

  def _headers(self) -> dict[str, str]:
    headers = {"Accept": "application/json", "Accept-Encoding": "gzip, deflate", "Content-Type": "application/json"}
    if self._config.access_token:
      headers["Authorization"] = f"Bearer {self._config.access_token}"
    return headers

  async def _post(self, path: str, payload: Any, *, idempotent: bool) -> dict[str, Any]:
    if self._client is not None:
      return await self._post_with_retries(self._client, path, payload, idempotent=idempotent)
    async with httpx.AsyncClient(timeout=self._config.timeout_seconds) as client:
      return await self._post_with_retries(client, path, payload, idempotent=idempotent)

  async def _post_with_retries(self, client: httpx.AsyncClient, path: str, payload: Any, *, idempotent: bool) -> dict[str, Any]:
    """POST with backoff.

    Sends are retried only when Expo cannot have accepted the batch: a 429 or a
    connection that never opened. Receipt lookups are read-only and also retry
    on timeouts and 5xx responses.
    """
    url = f"{self._config.base_url.rstrip('/')}{path}"

    for attempt in range(len(self._backoff_seconds) + 1):
      retry_reason: str
      try:
        response = await client.post(url, json=payload, headers=self._headers(), timeout=self._config.timeout_seconds)
      except (httpx.ConnectError, httpx.ConnectTimeout) as exc:
        retry_reason = f"connect error: {exc}"
      except httpx.RequestError as exc:
        if not idempotent:
          logger.error("Expo request to %s failed after it was sent: %s", path, exc)
          raise TransientPushTransportError(f"Expo request to {path} failed and was not retried ({exc}).") from exc
        retry_reason = f"request error: {exc}"
      else:
        status_code = response.status_code
        if status_code == HTTPStatus.TOO_MANY_REQUESTS:
          retry_reason = f"status={status_code}"
        elif status_code >= 500:
          if not idempotent:
            logger.error("Expo request to %s failed status=%s body=%s", path, status_code, response.text)
            raise TransientPushTransportError(f"Expo request to {path} failed and was not retried (status={status_code}).")
          retry_reason = f"status={status_code}"
        elif status_code >= 400:
          logger.error("Expo request to %s rejected status=%s body=%s", path, status_code, response.text)
          raise PushTransportError(f"Expo rejected the request (status={status_code}).")
        else:
          return _parse_body(response)

      if attempt < len(self._backoff_seconds):
        logger.warning("Expo request to %s failed (%s); retrying", path, retry_reason)
        await asyncio.sleep(self._backoff_seconds[attempt])
        continue

      raise TransientPushTransportError(f"Expo request to {path} failed after retries ({retry_reason}).")

    raise TransientPushTransportError(f"Expo request to {path} failed after retries.")


def _parse_body(response: httpx.Response) -> dict[str, Any]:
  try:
    body = response.json()
  except ValueError as exc:
    raise PushTransportError("Expo returned a non-JSON response.") from exc

  if not isinstance(body, dict):
    raise PushTransportError("Expo returned an unexpected response shape.")

  # Request-level errors reject the whole chunk.
  errors = body.get("errors")
  if errors:
    raise PushTransportError(f"Expo reported request errors: {errors}")
  return body
