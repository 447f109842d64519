"""Application configuration loaded from environment variables."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache

from mobilesync.utils.env import default_env_path, load_env_file

load_env_file(default_env_path(), override=False)

# Transport-documented ceilings; configured values may be lower but never higher.
EXPO_MAX_SEND_CHUNK_SIZE = 100
EXPO_MAX_RECEIPT_CHUNK_SIZE = 1000


@dataclass(frozen=True)
class Settings:
  """Typed settings for the mobile sync service."""

  environment: str
  debug: bool
  allowed_origins: tuple[str, ...]
  log_level: int
  log_dir: str | None
  log_max_bytes: int
  log_backup_count: int
  log_http_4xx: bool
  firebase_project_id: str | None
  firebase_service_account_json_path: str | None
  expo_access_token: str | None
  expo_base_url: str
  expo_timeout_seconds: float
  push_chunk_size: int
  receipt_chunk_size: int
  notification_sender_ranks: frozenset[str]
  technical_operator_committee: str


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  return value or None


def _parse_bool(raw: str | None) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None:
    return False

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _parse_csv(raw: str | None, default: str) -> tuple[str, ...]:
  value = raw if raw is not None else default
  return tuple(item.strip() for item in value.split(",") if item.strip())


def _parse_origins(raw: str | None) -> tuple[str, ...]:
  origins = _parse_csv(raw, "http://localhost:8081")

  if not origins:
    raise ValueError("MOBILESYNC_ALLOWED_ORIGINS must include at least one origin.")

  if "*" in origins:
    raise ValueError("MOBILESYNC_ALLOWED_ORIGINS must not include wildcard origins.")

  return origins


def _parse_log_level(raw: str | None) -> int:
  name = (raw or "INFO").strip().upper()
  level = logging.getLevelName(name)
  if not isinstance(level, int):
    raise ValueError(f"MOBILESYNC_LOG_LEVEL has an unknown level: {raw!r}")
  return level


def _parse_bounded_int(name: str, raw: str | None, *, default: int, upper: int) -> int:
  value = int(raw) if raw else default
  if value <= 0 or value > upper:
    raise ValueError(f"{name} must be between 1 and {upper}.")
  return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("MOBILESYNC_ENV", "development").strip().lower()
  debug = _parse_bool(os.getenv("MOBILESYNC_DEBUG"))

  log_max_bytes = int(os.getenv("MOBILESYNC_LOG_MAX_BYTES", "5242880"))
  if log_max_bytes <= 0:
    raise ValueError("MOBILESYNC_LOG_MAX_BYTES must be a positive integer.")

  log_backup_count = int(os.getenv("MOBILESYNC_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("MOBILESYNC_LOG_BACKUP_COUNT must be zero or a positive integer.")

  expo_timeout_seconds = float(os.getenv("MOBILESYNC_EXPO_TIMEOUT_SECONDS", "10"))
  if expo_timeout_seconds <= 0:
    raise ValueError("MOBILESYNC_EXPO_TIMEOUT_SECONDS must be positive.")

  push_chunk_size = _parse_bounded_int("MOBILESYNC_PUSH_CHUNK_SIZE", os.getenv("MOBILESYNC_PUSH_CHUNK_SIZE"), default=EXPO_MAX_SEND_CHUNK_SIZE, upper=EXPO_MAX_SEND_CHUNK_SIZE)
  receipt_chunk_size = _parse_bounded_int("MOBILESYNC_RECEIPT_CHUNK_SIZE", os.getenv("MOBILESYNC_RECEIPT_CHUNK_SIZE"), default=300, upper=EXPO_MAX_RECEIPT_CHUNK_SIZE)

  sender_ranks = frozenset(_parse_csv(os.getenv("MOBILESYNC_NOTIFICATION_SENDER_RANKS"), "advisor,overall-chair,chair"))
  if not sender_ranks:
    raise ValueError("MOBILESYNC_NOTIFICATION_SENDER_RANKS must list at least one rank.")

  return Settings(
    environment=environment,
    debug=debug,
    allowed_origins=_parse_origins(os.getenv("MOBILESYNC_ALLOWED_ORIGINS")),
    log_level=_parse_log_level(os.getenv("MOBILESYNC_LOG_LEVEL")),
    log_dir=_optional_str(os.getenv("MOBILESYNC_LOG_DIR")),
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    log_http_4xx=_parse_bool(os.getenv("MOBILESYNC_LOG_HTTP_4XX")),
    firebase_project_id=_optional_str(os.getenv("MOBILESYNC_FIREBASE_PROJECT_ID")),
    firebase_service_account_json_path=_optional_str(os.getenv("MOBILESYNC_FIREBASE_SERVICE_ACCOUNT_JSON_PATH")),
    expo_access_token=_optional_str(os.getenv("MOBILESYNC_EXPO_ACCESS_TOKEN")),
    expo_base_url=(os.getenv("MOBILESYNC_EXPO_BASE_URL") or "https://exp.host/--/api/v2").strip().rstrip("/"),
    expo_timeout_seconds=expo_timeout_seconds,
    push_chunk_size=push_chunk_size,
    receipt_chunk_size=receipt_chunk_size,
    notification_sender_ranks=sender_ranks,
    technical_operator_committee=(os.getenv("MOBILESYNC_TECHNICAL_OPERATOR_COMMITTEE") or "tech-committee").strip(),
  )
