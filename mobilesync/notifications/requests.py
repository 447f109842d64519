"""Boundary validation for inbound push requests."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictFloat, StrictInt, StrictStr, ValidationError, field_validator

from mobilesync.core.exceptions import InvalidArgumentError, _sanitize_validation_errors
from mobilesync.notifications.audience import validate_audience
from mobilesync.notifications.contracts import AttributesAudience, AudienceSpec, BroadcastAudience, DispatchRequest, NotificationContent, RecipientsAudience

AudienceValue = StrictStr | StrictBool | StrictInt | StrictFloat
AudienceGroup = dict[StrictStr, list[AudienceValue]]


class SendPushNotificationPayload(BaseModel):
  """Callable payload for `POST /v1/push/send`."""

  model_config = ConfigDict(extra="ignore", populate_by_name=True)

  notification_title: StrictStr = Field(alias="notificationTitle", min_length=1)
  notification_body: StrictStr = Field(alias="notificationBody", min_length=1)
  notification_payload: Any = Field(default=None, alias="notificationPayload")
  # A single mapping is accepted as shorthand for a one-group list.
  notification_audiences: AudienceGroup | list[AudienceGroup] | None = Field(default=None, alias="notificationAudiences")
  notification_recipients: list[StrictStr] | None = Field(default=None, alias="notificationRecipients")
  send_to_all: StrictBool | None = Field(default=None, alias="sendToAll")
  dry_run: StrictBool = Field(default=False, alias="dryRun")

  @field_validator("notification_title", "notification_body")
  @classmethod
  def validate_not_blank(cls, value: str) -> str:
    if not value.strip():
      raise ValueError("must not be blank")
    return value


class ProcessReceiptsPayload(BaseModel):
  """Callable payload for `POST /v1/push/receipts`."""

  model_config = ConfigDict(extra="ignore", populate_by_name=True)

  receipt_ids: list[StrictStr] = Field(alias="receiptIds")


def _validate_model(model: type[BaseModel], payload: Any, message: str) -> Any:
  if not isinstance(payload, Mapping):
    raise InvalidArgumentError(message)
  try:
    return model.model_validate(dict(payload))
  except ValidationError as exc:
    raise InvalidArgumentError(message, details={"errors": _sanitize_validation_errors(exc.errors())}) from exc


def _audience_from_payload(parsed: SendPushNotificationPayload) -> AudienceSpec:
  """Pick the single audience variant; zero or several set is ambiguous."""
  audiences = parsed.notification_audiences
  recipients = parsed.notification_recipients
  send_to_all = parsed.send_to_all is True

  selected = [audiences is not None, recipients is not None, send_to_all]
  if sum(selected) != 1:
    raise InvalidArgumentError("Exactly one of notificationAudiences, notificationRecipients, or sendToAll is allowed.")

  if audiences is not None:
    groups = [audiences] if isinstance(audiences, dict) else audiences
    return AttributesAudience(groups=tuple({name: tuple(values) for name, values in group.items()} for group in groups))

  if recipients is not None:
    return RecipientsAudience(recipient_ids=tuple(recipients))

  return BroadcastAudience()


def parse_dispatch_request(payload: Any) -> DispatchRequest:
  """Validate a raw dispatch payload into a `DispatchRequest` without any I/O."""
  parsed: SendPushNotificationPayload = _validate_model(SendPushNotificationPayload, payload, "Notification title and body are required strings and audience fields must be well formed.")
  audience = _audience_from_payload(parsed)
  validate_audience(audience)
  content = NotificationContent(title=parsed.notification_title, body=parsed.notification_body, payload=parsed.notification_payload)
  return DispatchRequest(content=content, audience=audience, dry_run=parsed.dry_run)


def parse_receipt_ids(payload: Any) -> list[str]:
  """Validate a raw receipt payload and return its ids."""
  parsed: ProcessReceiptsPayload = _validate_model(ProcessReceiptsPayload, payload, "The function must be called with an object containing the string array 'receiptIds'.")
  return list(parsed.receipt_ids)
