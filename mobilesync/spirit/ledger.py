"""Spirit point totals kept in step with point entries.

Every total is adjusted with a commutative increment inside one batch, so
concurrent entries never race on read-modify-write.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

from firebase_admin import firestore
from google.cloud.firestore import Client as FirestoreClient
from google.cloud.firestore_v1.field_path import FieldPath
from pydantic import BaseModel, ConfigDict, StrictFloat, StrictInt, StrictStr, ValidationError
from starlette.concurrency import run_in_threadpool

from mobilesync.core.firebase import get_firestore_client

logger = logging.getLogger(__name__)

SPIRIT_TEAMS_ROOT = "spirit/teams"
SPIRIT_INFO = "spirit/info"


class SpiritPointEntry(BaseModel):
  model_config = ConfigDict(extra="allow")

  points: StrictInt | StrictFloat
  teamId: StrictStr  # noqa: N815
  opportunityId: StrictStr  # noqa: N815
  linkblue: StrictStr | None = None
  displayName: StrictStr | None = None  # noqa: N815


@dataclass(frozen=True)
class LedgerWrite:
  op: Literal["set", "merge", "update", "delete"]
  path: str
  data: dict[str, Any] = field(default_factory=dict, hash=False)


def parse_point_entry(data: Mapping[str, Any] | None) -> SpiritPointEntry | None:
  if data is None:
    return None
  try:
    return SpiritPointEntry.model_validate(dict(data))
  except ValidationError:
    return None


def entry_path(team_id: str, entry_id: str) -> str:
  return f"{SPIRIT_TEAMS_ROOT}/{team_id}/{entry_id}"


def team_path(team_id: str) -> str:
  return f"spirit/teams/documents/{team_id}"


def opportunity_path(opportunity_id: str) -> str:
  return f"spirit/opportunities/documents/{opportunity_id}"


def opportunity_entry_path(opportunity_id: str, entry_id: str) -> str:
  return f"{opportunity_path(opportunity_id)}/pointEntries/{entry_id}"


def plan_point_entry_writes(entry: SpiritPointEntry, *, team_id: str, entry_id: str, raw: Mapping[str, Any], created: bool) -> list[LedgerWrite]:
  """Writes that apply (created) or reverse (deleted) one entry."""
  opportunity_id = entry.opportunityId
  delta = entry.points if created else -entry.points
  writes: list[LedgerWrite] = []

  if created:
    writes.append(LedgerWrite("set", opportunity_entry_path(opportunity_id, entry_id), dict(raw)))
  else:
    writes.append(LedgerWrite("delete", opportunity_entry_path(opportunity_id, entry_id)))

  team_update: dict[str, Any] = {"totalPoints": firestore.Increment(delta)}
  if entry.linkblue:
    team_update[FieldPath("individualTotals", entry.linkblue).to_api_repr()] = firestore.Increment(delta)
  writes.append(LedgerWrite("update", team_path(team_id), team_update))
  writes.append(LedgerWrite("update", SPIRIT_TEAMS_ROOT, {FieldPath("points", team_id).to_api_repr(): firestore.Increment(delta)}))
  writes.append(LedgerWrite("update", opportunity_path(opportunity_id), {"totalPoints": firestore.Increment(delta)}))
  writes.append(LedgerWrite("update", SPIRIT_INFO, {"totalPoints": firestore.Increment(delta)}))
  return writes


def commit_writes(db: FirestoreClient, writes: list[LedgerWrite]) -> None:
  """Apply planned writes in one batch."""
  batch = db.batch()
  for write in writes:
    ref = db.document(write.path)
    if write.op == "set":
      batch.set(ref, write.data)
    elif write.op == "merge":
      batch.set(ref, write.data, merge=True)
    elif write.op == "update":
      batch.update(ref, write.data)
    else:
      batch.delete(ref)
  batch.commit()


class SpiritLedger:
  def __init__(self, client: FirestoreClient | None = None) -> None:
    self._client = client

  def _db(self) -> FirestoreClient:
    if self._client is None:
      self._client = get_firestore_client()
    return self._client

  async def handle_entry_created(self, *, team_id: str, entry_id: str, data: Mapping[str, Any] | None) -> list[LedgerWrite]:
    """Apply a new entry; malformed entries are deleted instead."""
    if data is None:
      return []
    entry = parse_point_entry(data)
    if entry is None:
      logger.warning("Deleting malformed spirit point entry %s for team %s", entry_id, team_id)
      await run_in_threadpool(self._delete_entry_sync, team_id, entry_id)
      return []

    writes = plan_point_entry_writes(entry, team_id=team_id, entry_id=entry_id, raw=data, created=True)
    await run_in_threadpool(self._commit_sync, writes)
    logger.info("Applied %s point(s) from entry %s to team %s", entry.points, entry_id, team_id)
    return writes

  async def handle_entry_deleted(self, *, team_id: str, entry_id: str, data: Mapping[str, Any] | None) -> list[LedgerWrite]:
    """Reverse a removed entry; malformed entries never counted, so they are ignored."""
    entry = parse_point_entry(data)
    if entry is None:
      logger.debug("Ignoring deletion of unparseable spirit point entry %s", entry_id)
      return []

    writes = plan_point_entry_writes(entry, team_id=team_id, entry_id=entry_id, raw=data or {}, created=False)
    await run_in_threadpool(self._commit_sync, writes)
    logger.info("Reversed %s point(s) from entry %s for team %s", entry.points, entry_id, team_id)
    return writes

  def _delete_entry_sync(self, team_id: str, entry_id: str) -> None:
    self._db().document(entry_path(team_id, entry_id)).delete()

  def _commit_sync(self, writes: list[LedgerWrite]) -> None:
    commit_writes(self._db(), writes)
