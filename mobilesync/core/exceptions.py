"""Error taxonomy and API exception handlers."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class MobileSyncError(Exception):
  """Base class for errors surfaced to callers with a stable code."""

  code = "internal"
  http_status = status.HTTP_500_INTERNAL_SERVER_ERROR

  def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
    super().__init__(message)
    self.message = message
    self.details = details or {}

  def to_dict(self) -> dict[str, Any]:
    """Render the error as the structured payload returned to callers."""
    payload: dict[str, Any] = {"code": self.code, "message": self.message}
    if self.details:
      payload["details"] = _coerce_json_safe(self.details)
    return payload


class InvalidArgumentError(MobileSyncError):
  """Malformed or ambiguous request; raised before any side effect."""

  code = "invalid-argument"
  http_status = status.HTTP_400_BAD_REQUEST


class UnauthenticatedError(MobileSyncError):
  code = "unauthenticated"
  http_status = status.HTTP_401_UNAUTHORIZED


class PermissionDeniedError(MobileSyncError):
  code = "permission-denied"
  http_status = status.HTTP_403_FORBIDDEN


class FailedPreconditionError(MobileSyncError):
  """The service is not configured to perform the requested operation."""

  code = "failed-precondition"
  http_status = status.HTTP_412_PRECONDITION_FAILED


class PersistenceError(MobileSyncError):
  """The durable-store write failed; the whole operation is aborted."""

  code = "persistence-failed"


class TransportChunkError(MobileSyncError):
  """One chunk failed to send; recorded and never raised past the dispatch engine."""

  code = "transport-chunk-failed"
  http_status = status.HTTP_502_BAD_GATEWAY


class InternalError(MobileSyncError):
  code = "internal"


class UnhandledTransportError(MobileSyncError):
  """The push transport reported an error code this service does not handle."""

  code = "unhandled-internal-error"
  http_status = status.HTTP_502_BAD_GATEWAY


def _coerce_json_safe(value: Any) -> Any:
  """Convert unsupported values into JSON-safe primitives for error responses."""
  if value is None or isinstance(value, bool | int | float | str):
    return value
  if isinstance(value, dict):
    return {str(key): _coerce_json_safe(item) for key, item in value.items()}
  if isinstance(value, list | tuple | set):
    return [_coerce_json_safe(item) for item in value]
  if isinstance(value, BaseException):
    error_message = str(value)
    if error_message:
      return f"{type(value).__name__}: {error_message}"
    return type(value).__name__
  return str(value)


def _error_payload(error: dict[str, Any], *, request_id: str | None = None) -> dict[str, Any]:
  payload: dict[str, Any] = {"error": error}
  # Attach a request id so support can correlate client reports to server logs.
  if request_id:
    payload["requestId"] = request_id
  return payload


def _sanitize_validation_errors(errors: list[dict[str, Any]]) -> list[dict[str, Any]]:
  """Return validation errors without raw input payloads."""
  sanitized: list[dict[str, Any]] = []
  for error in errors:
    scrubbed = {key: value for key, value in error.items() if key not in {"input", "url"}}
    if "ctx" in scrubbed and isinstance(scrubbed["ctx"], dict):
      scrubbed_ctx = dict(scrubbed["ctx"])
      scrubbed_ctx.pop("input", None)
      scrubbed["ctx"] = scrubbed_ctx

    sanitized.append(_coerce_json_safe(scrubbed))

  return sanitized


async def mobilesync_exception_handler(request: Request, exc: MobileSyncError) -> JSONResponse:
  """Render taxonomy errors with their stable code."""
  request_id = getattr(request.state, "request_id", None)
  if exc.http_status >= 500:
    logger.error("Request failed request_id=%s path=%s code=%s message=%s", request_id, request.url.path, exc.code, exc.message, exc_info=exc)
  else:
    from mobilesync.config import get_settings

    if get_settings().log_http_4xx:
      logger.warning("Request rejected request_id=%s path=%s code=%s message=%s", request_id, request.url.path, exc.code, exc.message)
  return JSONResponse(status_code=exc.http_status, content=_error_payload(exc.to_dict(), request_id=request_id))


async def request_validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
  """Map schema failures onto the invalid-argument code without echoing payloads."""
  request_id = getattr(request.state, "request_id", None)
  sanitized_errors = _sanitize_validation_errors(exc.errors())
  logger.warning("Request validation failed request_id=%s path=%s errors=%s", request_id, request.url.path, sanitized_errors)
  error = InvalidArgumentError("Request payload is invalid.", details={"errors": sanitized_errors})
  return JSONResponse(status_code=error.http_status, content=_error_payload(error.to_dict(), request_id=request_id))


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
  """Handle framework HTTPExceptions while avoiding leaking internal diagnostics."""
  request_id = getattr(request.state, "request_id", None)
  if exc.status_code >= 500:
    logger.error("HTTPException request_id=%s path=%s status_code=%s detail=%s", request_id, request.url.path, exc.status_code, exc.detail)
    return JSONResponse(status_code=exc.status_code, content=_error_payload(InternalError("Internal Server Error").to_dict(), request_id=request_id))

  code = {status.HTTP_401_UNAUTHORIZED: UnauthenticatedError.code, status.HTTP_403_FORBIDDEN: PermissionDeniedError.code}.get(exc.status_code, InvalidArgumentError.code)
  return JSONResponse(status_code=exc.status_code, content=_error_payload({"code": code, "message": str(exc.detail)}, request_id=request_id), headers=exc.headers)


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
  """Catch unhandled errors so raw store/transport exceptions never reach callers."""
  request_id = getattr(request.state, "request_id", None)
  logger.error("Unhandled exception request_id=%s path=%s error_type=%s", request_id, request.url.path, type(exc).__name__, exc_info=exc)
  return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=_error_payload(InternalError("Internal Server Error").to_dict(), request_id=request_id))
