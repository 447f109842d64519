import logging
from typing import Any

import firebase_admin
from firebase_admin import auth, credentials, firestore
from google.cloud.firestore import Client as FirestoreClient

from mobilesync.config import Settings, get_settings
from mobilesync.core.exceptions import FailedPreconditionError

logger = logging.getLogger(__name__)


def initialize_firebase(settings: Settings | None = None) -> bool:
  """Initialize the default Firebase app once; return whether one is available."""
  if firebase_admin._apps:
    return True

  settings = settings or get_settings()
  if not settings.firebase_project_id:
    logger.warning("MOBILESYNC_FIREBASE_PROJECT_ID is not set; Firestore and token verification are unavailable.")
    return False

  options = {"projectId": settings.firebase_project_id}
  try:
    if settings.firebase_service_account_json_path:
      firebase_admin.initialize_app(credentials.Certificate(settings.firebase_service_account_json_path), options)
    else:
      # Application Default Credentials, as provided by the serverless runtime.
      firebase_admin.initialize_app(options=options)
  except (ValueError, OSError) as exc:
    logger.error("Failed to initialize Firebase for project %s: %s", settings.firebase_project_id, exc)
    return False

  logger.info("Firebase initialized for project %s", settings.firebase_project_id)
  return True


def get_firestore_client() -> FirestoreClient:
  """Return the Firestore client backing every repository."""
  if not initialize_firebase():
    raise FailedPreconditionError("The document store is not configured.")

  try:
    return firestore.client()
  except Exception as exc:
    logger.error("Failed to create the Firestore client: %s", exc)
    raise FailedPreconditionError("The document store is not configured.") from exc


def verify_id_token(id_token: str) -> dict[str, Any] | None:
  """Decode a caller's ID token; any verification failure yields None."""
  if not initialize_firebase():
    return None

  try:
    return auth.verify_id_token(id_token)
  except (ValueError, auth.InvalidIdTokenError, auth.ExpiredIdTokenError, auth.RevokedIdTokenError, auth.CertificateFetchError, auth.UserDisabledError) as exc:
    logger.warning("ID token rejected: %s", exc)
    return None


def set_custom_claims(uid: str, claims: dict[str, Any]) -> None:
  """Write directory-derived custom claims onto the caller's account."""
  if not initialize_firebase():
    raise FailedPreconditionError("The identity provider is not configured.")

  auth.set_custom_user_claims(uid, claims)
