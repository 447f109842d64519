from __future__ import annotations

from dataclasses import dataclass, field
from typing import Annotated, Any

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from starlette.concurrency import run_in_threadpool

from mobilesync.config import Settings, get_settings
from mobilesync.core.exceptions import PermissionDeniedError, UnauthenticatedError
from mobilesync.core.firebase import verify_id_token

security_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class CallerIdentity:
  """Verified caller uid plus the custom claims carried on its ID token."""

  uid: str
  claims: dict[str, Any] = field(default_factory=dict, hash=False)

  @property
  def email(self) -> str | None:
    email = self.claims.get("email")
    return str(email) if email else None


async def get_caller_identity(token: Annotated[HTTPAuthorizationCredentials | None, Depends(security_scheme)]) -> CallerIdentity:
  """Verify the Firebase ID token on the request and expose its claims."""
  if token is None or not token.credentials:
    raise UnauthenticatedError("This function must be used while authenticated.")

  decoded_claims = await run_in_threadpool(verify_id_token, token.credentials)
  if not decoded_claims:
    raise UnauthenticatedError("Invalid authentication credentials.")

  uid = decoded_claims.get("uid")
  if not uid:
    raise UnauthenticatedError("Invalid token claims.")

  return CallerIdentity(uid=str(uid), claims=dict(decoded_claims))


def verify_notification_sender(identity: CallerIdentity, settings: Settings) -> None:
  """Allow chairs and above, or members of the technical operator committee."""
  committee_rank = identity.claims.get("committeeRank")
  committee = identity.claims.get("committee")

  if not isinstance(committee_rank, str):
    raise PermissionDeniedError("This user does not have the committeeRank claim.")

  if committee_rank in settings.notification_sender_ranks:
    return
  if committee == settings.technical_operator_committee:
    return

  raise PermissionDeniedError("This function may only be used by a chair or a member of the technical operator committee.")


async def require_notification_sender(identity: Annotated[CallerIdentity, Depends(get_caller_identity)]) -> CallerIdentity:
  """Dependency guarding the push dispatch and receipt routes."""
  verify_notification_sender(identity, get_settings())
  return identity
