"""Custom claims derived from the caller's directory entry."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

from starlette.concurrency import run_in_threadpool

from mobilesync.core.exceptions import InternalError, PermissionDeniedError
from mobilesync.core.security import CallerIdentity
from mobilesync.directory.lookup import DirectoryLookup

ClaimValue = str | int | float | bool
ClaimsWriter = Callable[[str, dict[str, Any]], None]


def build_member_claims(entry: Mapping[str, Any] | None) -> dict[str, ClaimValue]:
  """Translate a directory entry into the claims role checks read."""
  claims: dict[str, ClaimValue] = {}
  if not entry:
    return claims

  db_role = entry.get("dbRole") or "public"
  claims["dbRole"] = db_role

  if entry.get("committeeRank"):
    claims["committeeRank"] = entry["committeeRank"]
  if entry.get("committee"):
    claims["committee"] = entry["committee"]

  claims["marathonAccess"] = bool(entry.get("marathonAccess")) or db_role == "committee"

  if db_role == "team-member":
    claims["spiritCaptain"] = bool(entry.get("spiritCaptain"))
    if entry.get("spiritTeamId"):
      claims["spiritTeamId"] = entry["spiritTeamId"]

  return claims


class ClaimsRefresher:
  def __init__(self, lookup: DirectoryLookup, claims_writer: ClaimsWriter, *, logger: logging.Logger | None = None) -> None:
    self._lookup = lookup
    self._claims_writer = claims_writer
    self._logger = logger or logging.getLogger(__name__)

  async def refresh(self, identity: CallerIdentity) -> dict[str, ClaimValue]:
    """Look the caller up by uid and email, then replace their custom claims."""
    email = identity.email
    if not email:
      raise PermissionDeniedError("The function must be called while authenticated with a valid email.")

    entry = await self._lookup.lookup({"lastAssociatedUid": identity.uid, "upn": email, "email": email})
    if isinstance(entry, list):
      raise InternalError("Directory lookup returned several entries when one was requested.")

    claims = build_member_claims(entry)
    self._logger.info("Setting custom claims for %s: %s", identity.uid, sorted(claims))
    await run_in_threadpool(self._claims_writer, identity.uid, dict(claims))
    return claims
