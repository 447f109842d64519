from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import MagicMock

import pytest
from firebase_admin import firestore
from google.api_core.exceptions import NotFound

from mobilesync.spirit.mirrors import SpiritMirror, plan_opportunity_write, plan_team_write

_TEAM = {"name": "Blue Crew", "teamClass": "committee", "totalPoints": 12, "members": ["abc123"]}


def test_new_team_gets_defaults_and_basic_info():
  writes = plan_team_write("t1", None, {"name": "Blue Crew"})

  assert [(write.op, write.path) for write in writes] == [("update", "spirit/teams/documents/t1"), ("update", "spirit/teams")]
  assert writes[0].data == {"totalPoints": 0, "teamClass": "public"}
  assert writes[1].data == {"basicInfo.t1": {"name": "Blue Crew"}}


def test_updated_team_mirrors_only_typed_fields():
  writes = plan_team_write("t1", _TEAM, {**_TEAM, "teamClass": 3, "totalPoints": True})

  assert [(write.op, write.path) for write in writes] == [("update", "spirit/teams")]
  assert writes[0].data == {"basicInfo.t1": {"name": "Blue Crew"}}


def test_existing_defaults_are_kept_for_new_team():
  writes = plan_team_write("t1", None, _TEAM)

  assert writes[0].data == {"totalPoints": 12, "teamClass": "committee"}
  assert writes[1].data == {"basicInfo.t1": {"name": "Blue Crew", "teamClass": "committee", "totalPoints": 12}}


def test_deleted_team_is_removed_from_basic_info():
  writes = plan_team_write("t1", _TEAM, None)

  assert len(writes) == 1
  assert writes[0].path == "spirit/teams"
  assert writes[0].data["basicInfo.t1"] is firestore.DELETE_FIELD


def test_opportunity_name_and_date_are_merged():
  date = datetime(2024, 2, 3, 18, 0, tzinfo=UTC)

  writes = plan_opportunity_write("o1", {"name": "Kickoff", "date": date, "totalPoints": 40})

  assert [(write.op, write.path) for write in writes] == [("merge", "spirit/opportunities")]
  assert writes[0].data == {"o1": {"name": "Kickoff", "date": date}}


def test_opportunity_date_may_arrive_as_iso_string():
  writes = plan_opportunity_write("o1", {"name": "Kickoff", "date": "2024-02-03T18:00:00Z"})

  assert writes[0].data["o1"]["date"] == datetime(2024, 2, 3, 18, 0, tzinfo=UTC)


@pytest.mark.parametrize("after", [None, {"name": "Kickoff"}, {"date": "2024-02-03T18:00:00Z"}, {"name": "Kickoff", "date": "soon"}, {"name": 4, "date": "2024-02-03T18:00:00Z"}])
def test_incomplete_opportunities_are_not_mirrored(after):
  assert plan_opportunity_write("o1", after) == []


@pytest.mark.anyio
async def test_team_write_commits_one_batch():
  client = MagicMock()

  writes = await SpiritMirror(client).handle_team_write(team_id="t1", before=None, after=_TEAM)

  batch = client.batch.return_value
  assert len(writes) == 2
  assert batch.update.call_count == 2
  batch.commit.assert_called_once()


@pytest.mark.anyio
async def test_team_delete_tolerates_missing_summary(caplog):
  client = MagicMock()
  client.batch.return_value.commit.side_effect = NotFound("spirit/teams does not exist")

  with caplog.at_level("WARNING"):
    writes = await SpiritMirror(client).handle_team_write(team_id="t1", before=_TEAM, after=None)

  assert writes == []
  assert "No team summary" in caplog.text


@pytest.mark.anyio
async def test_team_update_against_missing_summary_propagates():
  client = MagicMock()
  client.batch.return_value.commit.side_effect = NotFound("spirit/teams does not exist")

  with pytest.raises(NotFound):
    await SpiritMirror(client).handle_team_write(team_id="t1", before=_TEAM, after=_TEAM)


@pytest.mark.anyio
async def test_opportunity_write_merges_into_summary():
  client = MagicMock()

  await SpiritMirror(client).handle_opportunity_write(opportunity_id="o1", after={"name": "Kickoff", "date": "2024-02-03T18:00:00Z"})

  client.document.assert_called_once_with("spirit/opportunities")
  batch = client.batch.return_value
  batch.set.assert_called_once()
  assert batch.set.call_args.kwargs == {"merge": True}
  batch.commit.assert_called_once()


@pytest.mark.anyio
async def test_incomplete_opportunity_issues_no_writes():
  client = MagicMock()

  assert await SpiritMirror(client).handle_opportunity_write(opportunity_id="o1", after={"name": "Kickoff"}) == []
  client.batch.assert_not_called()
