"""Contracts for the push notification fan-out pipeline."""

from __future__ import annotations

import enum
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

AttributeValue = str | bool | int | float

DEVICE_NOT_REGISTERED = "DeviceNotRegistered"
MESSAGE_TOO_BIG = "MessageTooBig"
MESSAGE_RATE_EXCEEDED = "MessageRateExceeded"


@dataclass(frozen=True)
class NotificationContent:
  """Title, body and an opaque payload that is passed through untouched."""

  title: str
  body: str
  payload: Any = field(default=None, hash=False, compare=False)

  def to_dict(self) -> dict[str, Any]:
    return {"title": self.title, "body": self.body, "payload": self.payload}


class AudienceKind(str, enum.Enum):
  ATTRIBUTES = "attributes"
  RECIPIENTS = "recipients"
  BROADCAST = "broadcast"


@dataclass(frozen=True)
class AttributesAudience:
  """OR across groups, AND across the attributes inside a group."""

  groups: tuple[Mapping[str, tuple[AttributeValue, ...]], ...] = field(hash=False)
  kind: AudienceKind = field(default=AudienceKind.ATTRIBUTES, init=False)


@dataclass(frozen=True)
class RecipientsAudience:
  recipient_ids: tuple[str, ...]
  kind: AudienceKind = field(default=AudienceKind.RECIPIENTS, init=False)


@dataclass(frozen=True)
class BroadcastAudience:
  kind: AudienceKind = field(default=AudienceKind.BROADCAST, init=False)


AudienceSpec = AttributesAudience | RecipientsAudience | BroadcastAudience


@dataclass(frozen=True)
class DispatchRequest:
  """A validated dispatch request; built only by `parse_dispatch_request`."""

  content: NotificationContent
  audience: AudienceSpec
  dry_run: bool = False


@dataclass(frozen=True)
class UserDocument:
  user_id: str
  attributes: Mapping[str, Any] = field(default_factory=dict, hash=False)
  registered_push_tokens: tuple[str, ...] = ()


@dataclass(frozen=True)
class DeviceRegistration:
  device_id: str
  push_token: str | None
  owner_user_id: str | None = None
  attributes: Mapping[str, Any] = field(default_factory=dict, hash=False)


@dataclass(frozen=True)
class Recipient:
  """One resolved audience member and the push tokens registered to it."""

  recipient_id: str
  push_tokens: tuple[str, ...]
  user_id: str | None = None


@dataclass(frozen=True)
class ResolvedAudience:
  spec: AudienceSpec
  recipients: tuple[Recipient, ...]

  @property
  def kind(self) -> AudienceKind:
    return self.spec.kind

  def tokens(self) -> list[str]:
    """Return every token once, in resolution order."""
    seen: dict[str, None] = {}
    for recipient in self.recipients:
      for token in recipient.push_tokens:
        seen.setdefault(token, None)
    return list(seen)

  def user_ids(self) -> list[str]:
    """Return owning account ids once, in resolution order."""
    seen: dict[str, None] = {}
    for recipient in self.recipients:
      if recipient.user_id:
        seen.setdefault(recipient.user_id, None)
    return list(seen)


@dataclass(frozen=True)
class PushMessage:
  to: str
  title: str
  body: str
  data: Any = field(default=None, hash=False, compare=False)

  def to_wire(self) -> dict[str, Any]:
    message: dict[str, Any] = {"to": self.to, "title": self.title, "body": self.body}
    if self.data is not None:
      message["data"] = self.data
    return message


def _wire_details(raw: Mapping[str, Any]) -> dict[str, Any]:
  details = raw.get("details")
  return dict(details) if isinstance(details, Mapping) else {}


@dataclass(frozen=True)
class PushTicket:
  """Transport response for one attempted message; `id` is absent on synchronous rejection."""

  status: str
  id: str | None = None
  message: str | None = None
  details: Mapping[str, Any] = field(default_factory=dict, hash=False)

  @classmethod
  def from_wire(cls, raw: Mapping[str, Any]) -> PushTicket:
    ticket_id = raw.get("id")
    return cls(status=str(raw.get("status") or "error"), id=str(ticket_id) if ticket_id else None, message=raw.get("message"), details=_wire_details(raw))

  @property
  def is_ok(self) -> bool:
    return self.status == "ok"

  @property
  def error_code(self) -> str | None:
    if self.is_ok:
      return None
    code = self.details.get("error")
    return str(code) if code else None

  def to_dict(self) -> dict[str, Any]:
    payload: dict[str, Any] = {"status": self.status}
    if self.id:
      payload["id"] = self.id
    if self.message:
      payload["message"] = self.message
    if self.details:
      payload["details"] = dict(self.details)
    return payload


@dataclass(frozen=True)
class PushReceipt:
  status: str
  message: str | None = None
  details: Mapping[str, Any] = field(default_factory=dict, hash=False)

  @classmethod
  def from_wire(cls, raw: Mapping[str, Any]) -> PushReceipt:
    return cls(status=str(raw.get("status") or "error"), message=raw.get("message"), details=_wire_details(raw))

  @property
  def is_ok(self) -> bool:
    return self.status == "ok"

  @property
  def error_code(self) -> str | None:
    if self.is_ok:
      return None
    code = self.details.get("error")
    return str(code) if code else None

  @property
  def push_token(self) -> str | None:
    token = self.details.get("expoPushToken")
    return str(token) if token else None

  def to_dict(self) -> dict[str, Any]:
    payload: dict[str, Any] = {"status": self.status}
    if self.message:
      payload["message"] = self.message
    if self.details:
      payload["details"] = dict(self.details)
    return payload


class NotificationError(Exception):
  """Base class for all notification delivery failures."""


class PushTransportError(NotificationError):
  """Raised when a transport call fails as a whole (network, HTTP status, malformed body)."""


class TransientPushTransportError(PushTransportError):
  """Raised when retriable transport failures exhaust retries."""


class PushTransport(Protocol):
  """Batch push delivery service with a two-phase send/receipt protocol."""

  send_chunk_size: int
  receipt_chunk_size: int

  def is_push_token(self, token: object) -> bool:
    """Return whether the token has the shape the transport accepts."""

  async def send(self, messages: Sequence[PushMessage]) -> list[PushTicket]:
    """Send one chunk and return one ticket per message, in order."""

  async def get_receipts(self, receipt_ids: Sequence[str]) -> dict[str, PushReceipt]:
    """Fetch receipts for one chunk of ticket ids; unknown ids are omitted."""


class UserRepository(Protocol):
  async def query_users(self, *, equals: Mapping[str, AttributeValue], member_of: tuple[str, Sequence[AttributeValue]] | None) -> list[UserDocument]:
    """Query users by attribute equality plus at most one set-membership filter."""

  async def get_users(self, user_ids: Sequence[str]) -> list[UserDocument]:
    """Fetch users by id, silently omitting ids that do not exist."""

  async def add_notification_reference(self, user_id: str, document_path: str) -> None:
    """Append a notification document reference to the user."""


class DeviceRepository(Protocol):
  async def list_registered_devices(self) -> list[DeviceRegistration]:
    """Return every device that carries a push token."""

  async def remove_push_token(self, token: str) -> int:
    """Strip the token from devices and users; return how many documents changed."""


class NotificationRepository(Protocol):
  async def commit_notification(self, *, notification_id: str, record: Mapping[str, Any], create_record: bool, link_user_ids: Sequence[str]) -> None:
    """Atomically create the record and the per-recipient links."""


class TokenPruner(Protocol):
  async def prune_tokens(self, tokens: Sequence[str]) -> None:
    """Remove dead tokens on a best-effort basis; never raises."""
