from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from mobilesync.api.deps import get_claims_refresher
from mobilesync.core.security import CallerIdentity, get_caller_identity
from mobilesync.directory.claims import ClaimsRefresher

router = APIRouter()


@router.post("/refresh")
async def refresh_claims(
  caller: CallerIdentity = Depends(get_caller_identity),  # noqa: B008
  refresher: ClaimsRefresher = Depends(get_claims_refresher),  # noqa: B008
) -> dict[str, Any]:
  """Re-derive the caller's custom claims from their directory entry."""
  claims = await refresher.refresh(caller)
  return {"uid": caller.uid, "claims": claims}
