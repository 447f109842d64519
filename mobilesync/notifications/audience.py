"""Resolve an audience specification into recipients and their push tokens.

The document store can only combine equality filters with a single bounded
"value in set" filter per query. Each attribute group is therefore turned into
a `QueryPlan`: single-valued attributes become equality filters, the most
specific multi-valued attribute becomes the set-membership filter, and every
attribute left over is applied to the returned rows in memory.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from mobilesync.core.exceptions import InvalidArgumentError
from mobilesync.notifications.contracts import AttributesAudience, AttributeValue, AudienceSpec, BroadcastAudience, DeviceRepository, Recipient, RecipientsAudience, ResolvedAudience, UserDocument, UserRepository

MAX_AUDIENCE_GROUPS = 10
MAX_ATTRIBUTES_PER_GROUP = 10
MAX_SET_FILTER_VALUES = 10

# Most specific first; attributes not listed rank after all of these.
ATTRIBUTE_SPECIFICITY = ("committee", "committeeRank", "spiritTeamId", "spiritCaptain", "dbRole", "marathonAccess")

_MAX_DOCUMENT_ID_BYTES = 1500


@dataclass(frozen=True)
class QueryPlan:
  equals: dict[str, AttributeValue] = field(default_factory=dict, hash=False)
  member_of: tuple[str, tuple[AttributeValue, ...]] | None = None
  post_filter: dict[str, tuple[AttributeValue, ...]] = field(default_factory=dict, hash=False)


def is_document_id(value: object) -> bool:
  """Return whether the value can address a single document."""
  if not isinstance(value, str) or not value:
    return False
  if "/" in value or value in {".", ".."}:
    return False
  if value.startswith("__") and value.endswith("__"):
    return False
  return len(value.encode("utf-8")) <= _MAX_DOCUMENT_ID_BYTES


def validate_audience(spec: AudienceSpec) -> None:
  """Reject malformed audiences before any query is issued."""
  if isinstance(spec, AttributesAudience):
    if not spec.groups:
      raise InvalidArgumentError("At least one audience parameter must be specified.")
    if len(spec.groups) > MAX_AUDIENCE_GROUPS:
      raise InvalidArgumentError(f"Specify at most {MAX_AUDIENCE_GROUPS} audience groups.")
    for index, group in enumerate(spec.groups):
      if not group:
        raise InvalidArgumentError(f"Audience group {index + 1} must name at least one attribute.")
      if len(group) > MAX_ATTRIBUTES_PER_GROUP:
        raise InvalidArgumentError(f"Audience group {index + 1} may use at most {MAX_ATTRIBUTES_PER_GROUP} attributes.")
      for name, values in group.items():
        if not isinstance(name, str) or not name:
          raise InvalidArgumentError(f"Notification audience names must be non-empty strings ({name!r}).")
        if not values:
          raise InvalidArgumentError(f"Notification audience values for {name} must not be empty.")
        if len(values) > MAX_SET_FILTER_VALUES:
          raise InvalidArgumentError(f"Notification audience values for {name} are limited to {MAX_SET_FILTER_VALUES}.")
    return

  if isinstance(spec, RecipientsAudience):
    if not spec.recipient_ids:
      raise InvalidArgumentError("At least one notification recipient must be specified.")
    for recipient_id in spec.recipient_ids:
      if not is_document_id(recipient_id):
        raise InvalidArgumentError(f"Notification recipients must be user ids ({recipient_id!r}).")
    return

  if not isinstance(spec, BroadcastAudience):
    raise InvalidArgumentError("Unknown audience type.")


def _specificity(name: str) -> int:
  try:
    return ATTRIBUTE_SPECIFICITY.index(name)
  except ValueError:
    return len(ATTRIBUTE_SPECIFICITY)


def plan_group(group: Mapping[str, Sequence[AttributeValue]]) -> QueryPlan:
  """Split one attribute group into store filters and an in-memory remainder."""
  equals: dict[str, AttributeValue] = {}
  multi_valued: list[str] = []
  for name, values in group.items():
    if len(values) == 1:
      equals[name] = values[0]
    else:
      multi_valued.append(name)

  member_of = None
  if multi_valued:
    # sorted() is stable, so unranked attributes keep their request order.
    chosen = sorted(multi_valued, key=_specificity)[0]
    member_of = (chosen, tuple(group[chosen]))

  post_filter = {name: tuple(group[name]) for name in multi_valued if member_of is None or name != member_of[0]}
  return QueryPlan(equals=equals, member_of=member_of, post_filter=post_filter)


def _same_value(actual: Any, allowed: AttributeValue) -> bool:
  # bool is an int subclass; keep True from matching 1.
  if isinstance(actual, bool) or isinstance(allowed, bool):
    return isinstance(actual, bool) and isinstance(allowed, bool) and actual is allowed
  if isinstance(actual, int | float) and isinstance(allowed, int | float):
    return actual == allowed
  return type(actual) is type(allowed) and actual == allowed


def matches_post_filter(attributes: Mapping[str, Any], post_filter: Mapping[str, Sequence[AttributeValue]]) -> bool:
  """Every remaining attribute must hold one of its allowed values."""
  for name, allowed_values in post_filter.items():
    if name not in attributes:
      return False
    if not any(_same_value(attributes[name], allowed) for allowed in allowed_values):
      return False
  return True


class AudienceResolver:
  """Turns an `AudienceSpec` into a deduplicated `ResolvedAudience`; read-only."""

  def __init__(self, *, user_repo: UserRepository, device_repo: DeviceRepository, logger: logging.Logger | None = None) -> None:
    self._user_repo = user_repo
    self._device_repo = device_repo
    self._logger = logger or logging.getLogger(__name__)

  async def resolve(self, spec: AudienceSpec) -> ResolvedAudience:
    validate_audience(spec)

    if isinstance(spec, AttributesAudience):
      recipients = await self._resolve_attributes(spec)
    elif isinstance(spec, RecipientsAudience):
      recipients = await self._resolve_recipients(spec)
    else:
      recipients = await self._resolve_broadcast()

    self._logger.debug("Resolved %s audience to %d recipient(s)", spec.kind.value, len(recipients))
    return ResolvedAudience(spec=spec, recipients=tuple(recipients))

  async def _query_group(self, index: int, group: Mapping[str, Sequence[AttributeValue]]) -> list[UserDocument]:
    plan = plan_group(group)
    self._logger.debug("Audience group %d: equality=%s set=%s in-memory=%s", index + 1, sorted(plan.equals), plan.member_of[0] if plan.member_of else None, sorted(plan.post_filter))
    users = await self._user_repo.query_users(equals=plan.equals, member_of=plan.member_of)
    if not plan.post_filter:
      return users
    return [user for user in users if matches_post_filter(user.attributes, plan.post_filter)]

  async def _resolve_attributes(self, spec: AttributesAudience) -> list[Recipient]:
    results = await asyncio.gather(*(self._query_group(index, group) for index, group in enumerate(spec.groups)))

    # Groups may overlap; first occurrence wins so ordering stays stable.
    recipients: dict[str, Recipient] = {}
    for users in results:
      for user in users:
        if user.user_id not in recipients:
          recipients[user.user_id] = Recipient(recipient_id=user.user_id, push_tokens=user.registered_push_tokens, user_id=user.user_id)
    return list(recipients.values())

  async def _resolve_recipients(self, spec: RecipientsAudience) -> list[Recipient]:
    requested = list(dict.fromkeys(spec.recipient_ids))
    users = await self._user_repo.get_users(requested)
    if len(users) < len(requested):
      # Stale references are tolerated; the rest of the audience still receives the message.
      self._logger.info("Skipping %d recipient id(s) with no user document", len(requested) - len(users))
    return [Recipient(recipient_id=user.user_id, push_tokens=user.registered_push_tokens, user_id=user.user_id) for user in users]

  async def _resolve_broadcast(self) -> list[Recipient]:
    devices = await self._device_repo.list_registered_devices()
    recipients: dict[str, Recipient] = {}
    for device in devices:
      if device.push_token and device.device_id not in recipients:
        recipients[device.device_id] = Recipient(recipient_id=device.device_id, push_tokens=(device.push_token,), user_id=device.owner_user_id)
    return list(recipients.values())
