import logging
import logging.handlers
import sys
import time
import traceback
from pathlib import Path
from types import TracebackType

from mobilesync.config import Settings

LOG_LINE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%H:%M:%S"

_LOGGING_INITIALIZED = False


class TruncatedFormatter(logging.Formatter):
  """Formatter that truncates the stack trace to the last few lines."""

  # ruff: noqa: N802
  def formatException(self, ei: tuple[type[BaseException] | None, BaseException | None, TracebackType | None]) -> str:
    lines = traceback.format_exception(*ei)
    # Keep header + last 5 lines of traceback
    if len(lines) > 6:
      return "".join(lines[:1] + ["    ...\n"] + lines[-5:])
    return "".join(lines)


def _rotating_file_handler(settings: Settings, log_dir: Path) -> logging.Handler:
  """Create a rotating file handler inside the configured log directory."""
  try:
    log_dir.mkdir(parents=True, exist_ok=True)
  except OSError as exc:
    raise RuntimeError(f"Failed to create log directory at {log_dir}: {exc}") from exc

  log_path = log_dir / f"mobilesync_{time.strftime('%Y%m%d_%H%M%S')}.log"
  file_handler = logging.handlers.RotatingFileHandler(log_path, encoding="utf-8", maxBytes=settings.log_max_bytes, backupCount=settings.log_backup_count)

  # Name backups app.log-1 instead of app.log.1 so log shippers glob them consistently.
  def custom_namer(default_name: str) -> str:
    base_filename, _, num = default_name.rpartition(".")
    if num.isdigit():
      return f"{base_filename}-{num}"
    return default_name

  file_handler.namer = custom_namer
  file_handler.setFormatter(logging.Formatter(LOG_LINE_FORMAT, datefmt=LOG_DATE_FORMAT))
  return file_handler


def effective_log_level(settings: Settings) -> int:
  """Debug mode always logs at DEBUG, whatever the configured level."""
  return logging.DEBUG if settings.debug else settings.log_level


def setup_logging(settings: Settings) -> list[logging.Handler]:
  """Route root, uvicorn and fastapi loggers through the same handlers."""
  stream = logging.StreamHandler(sys.stdout)
  stream.setFormatter(TruncatedFormatter(LOG_LINE_FORMAT, datefmt=LOG_DATE_FORMAT))
  handlers: list[logging.Handler] = [stream]

  # Serverless filesystems are read-only by default, so file logging is opt-in.
  if settings.log_dir:
    handlers.append(_rotating_file_handler(settings, Path(settings.log_dir)))

  for logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi"):
    log = logging.getLogger(logger_name)
    log.handlers = list(handlers)
    log.propagate = False

  logging.basicConfig(level=effective_log_level(settings), handlers=handlers, force=True)
  return handlers


def initialize_logging(settings: Settings) -> None:
  """Initialize logging once per process."""
  global _LOGGING_INITIALIZED
  if _LOGGING_INITIALIZED:
    return
  handlers = setup_logging(settings)
  _LOGGING_INITIALIZED = True
  logging.getLogger(__name__).info("Logging initialized with %d handler(s) at level %s", len(handlers), logging.getLevelName(effective_log_level(settings)))
