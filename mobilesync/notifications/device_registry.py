"""Device registration upkeep: token pruning and owner token mirroring."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any, Protocol

from mobilesync.notifications.contracts import DeviceRepository
from mobilesync.notifications.device_repo import OWNER_FIELD, PUSH_TOKEN_FIELD, TokenMutation
from mobilesync.utils.concurrency import settle_all


class DeviceTokenPruner:
  """Best-effort removal of tokens the transport reported as dead."""

  def __init__(self, device_repo: DeviceRepository, *, logger: logging.Logger | None = None) -> None:
    self._device_repo = device_repo
    self._logger = logger or logging.getLogger(__name__)

  async def prune_tokens(self, tokens: Sequence[str]) -> None:
    unique = [token for token in dict.fromkeys(tokens) if token]
    if not unique:
      return

    results = await settle_all(self._device_repo.remove_push_token(token) for token in unique)
    for token, result in zip(unique, results, strict=True):
      if isinstance(result, BaseException):
        self._logger.error("Failed to prune push token %s: %s", token, result, exc_info=result)
      else:
        self._logger.info("Pruned unregistered push token %s from %d document(s)", token, result)


def _field(snapshot: Mapping[str, Any] | None, name: str) -> str | None:
  if not snapshot:
    return None
  value = snapshot.get(name)
  return value if isinstance(value, str) and value else None


def plan_device_write(before: Mapping[str, Any] | None, after: Mapping[str, Any] | None) -> list[TokenMutation]:
  """Work out which owner token lists must change for one device write.

  A device contributes its token to its owner only while both are set. When
  the (owner, token) pair changes, the old pair is withdrawn and the new pair
  is added; an unchanged pair produces no writes.
  """
  old_pair = (_field(before, OWNER_FIELD), _field(before, PUSH_TOKEN_FIELD))
  new_pair = (_field(after, OWNER_FIELD), _field(after, PUSH_TOKEN_FIELD))
  if old_pair == new_pair:
    return []

  mutations: dict[str, TokenMutation] = {}
  old_owner, old_token = old_pair
  new_owner, new_token = new_pair
  if old_owner and old_token:
    mutations[old_owner] = TokenMutation(user_id=old_owner, remove=(old_token,))
  if new_owner and new_token:
    existing = mutations.get(new_owner)
    mutations[new_owner] = TokenMutation(user_id=new_owner, add=(new_token,), remove=existing.remove if existing else ())
  return list(mutations.values())


class TokenMutationWriter(Protocol):
  async def apply_token_mutations(self, mutations: Sequence[TokenMutation]) -> None:
    """Apply owner token changes atomically."""


class DeviceRegistrySync:
  """Keeps `users/{uid}.registeredPushTokens` in step with device documents."""

  def __init__(self, writer: TokenMutationWriter, *, logger: logging.Logger | None = None) -> None:
    self._writer = writer
    self._logger = logger or logging.getLogger(__name__)

  async def handle_write(self, device_id: str, before: Mapping[str, Any] | None, after: Mapping[str, Any] | None) -> list[TokenMutation]:
    mutations = plan_device_write(before, after)
    if not mutations:
      self._logger.debug("Device %s write does not change any owner tokens", device_id)
      return []

    await self._writer.apply_token_mutations(mutations)
    self._logger.info("Device %s write updated tokens for %d user(s)", device_id, len(mutations))
    return mutations
