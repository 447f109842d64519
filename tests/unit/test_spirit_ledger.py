from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from google.cloud.firestore_v1.transforms import Increment

from mobilesync.spirit.ledger import SpiritLedger, parse_point_entry, plan_point_entry_writes

_ENTRY = {"points": 5, "teamId": "t1", "opportunityId": "o1", "linkblue": "abc123", "displayName": "Pat"}


def _increments(write) -> dict[str, float]:
  return {path: value.value for path, value in write.data.items() if isinstance(value, Increment)}


def test_created_entry_increments_every_total():
  writes = plan_point_entry_writes(parse_point_entry(_ENTRY), team_id="t1", entry_id="e1", raw=_ENTRY, created=True)

  assert [(write.op, write.path) for write in writes] == [
    ("set", "spirit/opportunities/documents/o1/pointEntries/e1"),
    ("update", "spirit/teams/documents/t1"),
    ("update", "spirit/teams"),
    ("update", "spirit/opportunities/documents/o1"),
    ("update", "spirit/info"),
  ]
  assert writes[0].data == _ENTRY
  assert _increments(writes[1]) == {"totalPoints": 5, "individualTotals.abc123": 5}
  assert _increments(writes[2]) == {"points.t1": 5}
  assert _increments(writes[4]) == {"totalPoints": 5}


def test_deleted_entry_reverses_increments():
  writes = plan_point_entry_writes(parse_point_entry(_ENTRY), team_id="t1", entry_id="e1", raw=_ENTRY, created=False)

  assert writes[0].op == "delete"
  assert _increments(writes[1]) == {"totalPoints": -5, "individualTotals.abc123": -5}


def test_team_entries_without_member_skip_individual_totals():
  entry = {"points": 2.5, "teamId": "t1", "opportunityId": "o1"}
  writes = plan_point_entry_writes(parse_point_entry(entry), team_id="t1", entry_id="e1", raw=entry, created=True)

  assert _increments(writes[1]) == {"totalPoints": 2.5}


@pytest.mark.parametrize("data", [None, {}, {"points": "5", "teamId": "t1", "opportunityId": "o1"}, {"points": True, "teamId": "t1", "opportunityId": "o1"}, {"points": 1, "teamId": "t1"}])
def test_malformed_entries_do_not_parse(data):
  assert parse_point_entry(data) is None


@pytest.mark.anyio
async def test_created_entry_is_committed_in_one_batch():
  client = MagicMock()
  writes = await SpiritLedger(client).handle_entry_created(team_id="t1", entry_id="e1", data=_ENTRY)

  batch = client.batch.return_value
  assert len(writes) == 5
  assert batch.set.call_count == 1
  assert batch.update.call_count == 4
  batch.commit.assert_called_once()


@pytest.mark.anyio
async def test_malformed_created_entry_is_deleted():
  client = MagicMock()
  writes = await SpiritLedger(client).handle_entry_created(team_id="t1", entry_id="e1", data={"points": "lots"})

  assert writes == []
  client.document.assert_called_once_with("spirit/teams/t1/e1")
  client.document.return_value.delete.assert_called_once()
  client.batch.assert_not_called()


@pytest.mark.anyio
async def test_malformed_deleted_entry_is_ignored():
  client = MagicMock()

  assert await SpiritLedger(client).handle_entry_deleted(team_id="t1", entry_id="e1", data={"points": "lots"}) == []
  client.batch.assert_not_called()
