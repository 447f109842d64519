"""Unit tests for API exception sanitization behavior."""

from __future__ import annotations

from mobilesync.core.exceptions import InvalidArgumentError, TransportChunkError, _error_payload, _sanitize_validation_errors


def test_sanitize_validation_errors_removes_input_and_serializes_exception_ctx() -> None:
  """Ensure validation errors stay JSON-serializable and redact raw request payloads."""
  errors = [{"type": "value_error", "loc": ("body", "notificationTitle"), "msg": "Value error, must not be blank", "input": "  ", "ctx": {"error": ValueError("must not be blank"), "input": "  "}}]
  sanitized = _sanitize_validation_errors(errors)
  assert "input" not in sanitized[0]
  assert sanitized[0]["ctx"]["error"] == "ValueError: must not be blank"
  assert sanitized[0]["loc"] == ["body", "notificationTitle"]


def test_error_payload_carries_code_message_and_request_id() -> None:
  error = InvalidArgumentError("Exactly one audience is allowed.", details={"fields": ("sendToAll",)})

  assert _error_payload(error.to_dict(), request_id="req-1") == {"error": {"code": "invalid-argument", "message": "Exactly one audience is allowed.", "details": {"fields": ["sendToAll"]}}, "requestId": "req-1"}


def test_chunk_errors_serialize_their_cause() -> None:
  error = TransportChunkError("Push chunk 1 could not be sent.", details={"chunk": 0, "error": RuntimeError("timeout")})

  assert error.to_dict()["details"]["error"] == "RuntimeError: timeout"
