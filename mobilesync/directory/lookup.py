"""Keyed search over the member directory."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Protocol

from google.cloud.firestore import Client as FirestoreClient
from google.cloud.firestore_v1.base_query import FieldFilter
from starlette.concurrency import run_in_threadpool

from mobilesync.core.firebase import get_firestore_client

DIRECTORY_COLLECTION = "directory"

# Searched in order; the first key that returns any entries wins.
SEARCH_KEYS = ("lastAssociatedUid", "upn", "email", "lastName", "firstName")

# Compared in order, most specific first, until a single entry is left.
NARROWING_KEYS = ("lastAssociatedUid", "upn", "email", "firstName", "lastName", "spiritTeamId", "committee", "committeeRank", "dbRole")

DirectoryEntry = dict[str, Any]


class DirectoryRepository(Protocol):
  async def find_by(self, field: str, value: str) -> list[DirectoryEntry]:
    """Return entries whose field equals the value, each with `directoryDocumentId`."""


class FirestoreDirectoryRepository:
  def __init__(self, client: FirestoreClient | None = None) -> None:
    self._client = client

  def _db(self) -> FirestoreClient:
    if self._client is None:
      self._client = get_firestore_client()
    return self._client

  async def find_by(self, field: str, value: str) -> list[DirectoryEntry]:
    return await run_in_threadpool(self._find_by_sync, field, value)

  def _find_by_sync(self, field: str, value: str) -> list[DirectoryEntry]:
    query = self._db().collection(DIRECTORY_COLLECTION).where(filter=FieldFilter(field, "==", value))
    return [{"directoryDocumentId": snapshot.id, **(snapshot.to_dict() or {})} for snapshot in query.stream()]


class DirectoryLookup:
  """Find a directory entry from whatever identifying data is known."""

  def __init__(self, repo: DirectoryRepository, *, logger: logging.Logger | None = None) -> None:
    self._repo = repo
    self._logger = logger or logging.getLogger(__name__)

  async def lookup(self, query: Mapping[str, Any], *, return_all: bool = False) -> DirectoryEntry | list[DirectoryEntry] | None:
    """Return the single matching entry, or None.

    With `return_all`, entries that could not be narrowed to one are returned
    as a list instead of None.
    """
    found: list[DirectoryEntry] = []
    for key in SEARCH_KEYS:
      value = query.get(key)
      if not value:
        continue
      found = await self._repo.find_by(key, str(value))
      if found:
        break

    if not found:
      self._logger.info("No directory entries found for keys %s", sorted(key for key in SEARCH_KEYS if query.get(key)))
      return None

    self._logger.debug("Found %d directory entries before narrowing", len(found))
    for key in NARROWING_KEYS:
      if len(found) <= 1:
        break
      found = [entry for entry in found if entry.get(key) == query.get(key)]

    if len(found) == 1:
      return found[0]
    if found and return_all:
      return found

    self._logger.info("Directory lookup could not be narrowed to a single entry (%d left)", len(found))
    return None
