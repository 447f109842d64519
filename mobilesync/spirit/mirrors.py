"""Summary maps on the spirit root documents, mirrored from team and opportunity documents."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from firebase_admin import firestore
from google.api_core.exceptions import NotFound
from google.cloud.firestore import Client as FirestoreClient
from google.cloud.firestore_v1.field_path import FieldPath
from starlette.concurrency import run_in_threadpool

from mobilesync.core.firebase import get_firestore_client
from mobilesync.spirit.ledger import SPIRIT_TEAMS_ROOT, LedgerWrite, commit_writes, team_path

logger = logging.getLogger(__name__)

SPIRIT_OPPORTUNITIES_ROOT = "spirit/opportunities"
DEFAULT_TEAM_CLASS = "public"


def _is_number(value: Any) -> bool:
  return isinstance(value, (int, float)) and not isinstance(value, bool)


def _as_timestamp(value: Any) -> datetime | None:
  # Snapshots carry datetimes; JSON trigger events carry ISO-8601 strings.
  if isinstance(value, datetime):
    return value
  if isinstance(value, str):
    try:
      return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
      return None
  return None


def team_basic_info(data: Mapping[str, Any]) -> dict[str, Any]:
  """The subset of a team document shown in `spirit/teams.basicInfo`."""
  info: dict[str, Any] = {}
  if isinstance(data.get("name"), str):
    info["name"] = data["name"]
  if isinstance(data.get("teamClass"), str):
    info["teamClass"] = data["teamClass"]
  if _is_number(data.get("totalPoints")):
    info["totalPoints"] = data["totalPoints"]
  return info


def plan_team_write(team_id: str, before: Mapping[str, Any] | None, after: Mapping[str, Any] | None) -> list[LedgerWrite]:
  """Writes that keep `spirit/teams.basicInfo.<teamId>` in step with one team document.

  A newly created team also gets `totalPoints` and `teamClass` defaults; that
  update re-triggers this handler, which then mirrors the defaulted values.
  """
  basic_info_field = FieldPath("basicInfo", team_id).to_api_repr()
  if after is None:
    return [LedgerWrite("update", SPIRIT_TEAMS_ROOT, {basic_info_field: firestore.DELETE_FIELD})]

  writes: list[LedgerWrite] = []
  if before is None:
    total_points = after.get("totalPoints")
    team_class = after.get("teamClass")
    defaults = {
      "totalPoints": total_points if total_points is not None else 0,
      "teamClass": team_class if team_class is not None else DEFAULT_TEAM_CLASS,
    }
    writes.append(LedgerWrite("update", team_path(team_id), defaults))

  writes.append(LedgerWrite("update", SPIRIT_TEAMS_ROOT, {basic_info_field: team_basic_info(after)}))
  return writes


def plan_opportunity_write(opportunity_id: str, after: Mapping[str, Any] | None) -> list[LedgerWrite]:
  """Merge `{name, date}` into `spirit/opportunities` under the opportunity id."""
  if after is None:
    return []
  name = after.get("name")
  date = _as_timestamp(after.get("date"))
  if not isinstance(name, str) or date is None:
    return []
  return [LedgerWrite("merge", SPIRIT_OPPORTUNITIES_ROOT, {opportunity_id: {"name": name, "date": date}})]


class SpiritMirror:
  def __init__(self, client: FirestoreClient | None = None) -> None:
    self._client = client

  def _db(self) -> FirestoreClient:
    if self._client is None:
      self._client = get_firestore_client()
    return self._client

  async def handle_team_write(self, *, team_id: str, before: Mapping[str, Any] | None, after: Mapping[str, Any] | None) -> list[LedgerWrite]:
    writes = plan_team_write(team_id, before, after)
    try:
      await run_in_threadpool(commit_writes, self._db(), writes)
    except NotFound:
      if after is not None:
        raise
      # Nothing to remove when the summary document was never created.
      logger.warning("No team summary to remove team %s from", team_id)
      return []
    logger.info("Mirrored team %s basic info (%d write(s))", team_id, len(writes))
    return writes

  async def handle_opportunity_write(self, *, opportunity_id: str, after: Mapping[str, Any] | None) -> list[LedgerWrite]:
    writes = plan_opportunity_write(opportunity_id, after)
    if not writes:
      logger.debug("Opportunity %s has no name and date to mirror", opportunity_id)
      return []
    await run_in_threadpool(commit_writes, self._db(), writes)
    return writes
