import asyncio
import logging
from collections.abc import Mapping
from typing import Any

from mangum import Mangum

from mobilesync.config import get_settings
from mobilesync.core.exceptions import InvalidArgumentError, MobileSyncError
from mobilesync.core.logging import initialize_logging
from mobilesync.main import app
from mobilesync.notifications.factory import build_device_registry_sync, build_push_notification_service
from mobilesync.notifications.requests import parse_receipt_ids
from mobilesync.spirit.ledger import SpiritLedger
from mobilesync.spirit.mirrors import SpiritMirror

handler = Mangum(app)

logger = logging.getLogger(__name__)


def _document_data(event: Mapping[str, Any], key: str) -> dict[str, Any] | None:
  value = event.get(key)
  return dict(value) if isinstance(value, Mapping) else None


def _required_str(event: Mapping[str, Any], key: str) -> str:
  value = event.get(key)
  if not isinstance(value, str) or not value:
    raise InvalidArgumentError(f"Event field '{key}' must be a non-empty string.")
  return value


def process_receipts_handler(event: dict[str, Any] | None = None, _context: Any | None = None) -> dict[str, Any]:
  """Scheduled entrypoint for receipt reconciliation; returns the HTTP route's payload."""
  initialize_logging(get_settings())

  async def _process() -> dict[str, Any]:
    receipt_ids = parse_receipt_ids(event or {})
    service = build_push_notification_service(get_settings())
    result = await service.reconcile_receipts(receipt_ids)
    return result.to_dict()

  try:
    return asyncio.run(_process())
  except MobileSyncError as exc:
    logger.error("Receipt reconciliation failed code=%s message=%s", exc.code, exc.message)
    return {"error": exc.to_dict()}


def device_write_handler(event: dict[str, Any], _context: Any | None = None) -> dict[str, Any]:
  """Document-write trigger for `devices/{deviceId}` carrying `before`/`after` snapshots."""
  initialize_logging(get_settings())

  async def _process() -> dict[str, Any]:
    device_id = _required_str(event, "deviceId")
    mutations = await build_device_registry_sync().handle_write(device_id, _document_data(event, "before"), _document_data(event, "after"))
    return {"deviceId": device_id, "updatedUsers": [mutation.user_id for mutation in mutations]}

  return asyncio.run(_process())


def spirit_point_entry_handler(event: dict[str, Any], _context: Any | None = None) -> dict[str, Any]:
  """Create/delete trigger for `spirit/teams/{teamId}/{entryId}` point entries."""
  initialize_logging(get_settings())

  async def _process() -> dict[str, Any]:
    event_type = _required_str(event, "eventType")
    team_id = _required_str(event, "teamId")
    entry_id = _required_str(event, "entryId")
    ledger = SpiritLedger()
    if event_type == "create":
      writes = await ledger.handle_entry_created(team_id=team_id, entry_id=entry_id, data=_document_data(event, "after"))
    elif event_type == "delete":
      writes = await ledger.handle_entry_deleted(team_id=team_id, entry_id=entry_id, data=_document_data(event, "before"))
    else:
      logger.debug("Ignoring spirit point entry event type %s", event_type)
      writes = []
    return {"entryId": entry_id, "writes": len(writes)}

  return asyncio.run(_process())


def spirit_team_write_handler(event: dict[str, Any], _context: Any | None = None) -> dict[str, Any]:
  """Write trigger for `spirit/teams/documents/{teamId}` carrying `before`/`after` snapshots."""
  initialize_logging(get_settings())

  async def _process() -> dict[str, Any]:
    team_id = _required_str(event, "teamId")
    writes = await SpiritMirror().handle_team_write(team_id=team_id, before=_document_data(event, "before"), after=_document_data(event, "after"))
    return {"teamId": team_id, "writes": len(writes)}

  return asyncio.run(_process())


def spirit_opportunity_write_handler(event: dict[str, Any], _context: Any | None = None) -> dict[str, Any]:
  """Write trigger for `spirit/opportunities/documents/{opportunityId}`."""
  initialize_logging(get_settings())

  async def _process() -> dict[str, Any]:
    opportunity_id = _required_str(event, "opportunityId")
    writes = await SpiritMirror().handle_opportunity_write(opportunity_id=opportunity_id, after=_document_data(event, "after"))
    return {"opportunityId": opportunity_id, "writes": len(writes)}

  return asyncio.run(_process())
