from __future__ import annotations

import pytest
from fakes import FakeTransport, RecordingPruner, token

from mobilesync.core.exceptions import InternalError, TransportChunkError, UnhandledTransportError
from mobilesync.notifications.batcher import MessageBatcher
from mobilesync.notifications.contracts import NotificationContent
from mobilesync.notifications.dispatch import DispatchEngine


def _chunks(transport: FakeTransport, count: int):
  return MessageBatcher(transport).build_chunks(NotificationContent(title="t", body="b"), [token(i) for i in range(count)])


@pytest.mark.anyio
async def test_chunks_are_sent_in_order_and_tickets_collected():
  transport = FakeTransport(send_chunk_size=2)
  engine = DispatchEngine(transport, RecordingPruner())

  result = await engine.send(_chunks(transport, 5))

  assert [len(chunk) for chunk in transport.sent] == [2, 2, 1]
  assert [ticket.id for ticket in result.tickets] == ["ticket-0-0", "ticket-0-1", "ticket-1-0", "ticket-1-1", "ticket-2-0"]
  assert result.errors == []


@pytest.mark.anyio
async def test_failed_chunk_is_recorded_and_later_chunks_still_sent():
  transport = FakeTransport(send_chunk_size=2)
  transport.failing_send_calls = {0}
  engine = DispatchEngine(transport, RecordingPruner())

  result = await engine.send(_chunks(transport, 4))

  assert len(transport.sent) == 1
  assert len(result.tickets) == 2
  assert len(result.errors) == 1
  assert isinstance(result.errors[0], TransportChunkError)
  assert result.to_dict()["errors"][0]["code"] == "transport-chunk-failed"


@pytest.mark.anyio
async def test_device_not_registered_prunes_token_and_continues():
  transport = FakeTransport()
  transport.ticket_errors = {token(1): "DeviceNotRegistered"}
  pruner = RecordingPruner()

  result = await DispatchEngine(transport, pruner).send(_chunks(transport, 3))

  assert pruner.pruned == [token(1)]
  assert [ticket.status for ticket in result.tickets] == ["ok", "error", "ok"]
  assert result.tickets[1].id is None


@pytest.mark.anyio
async def test_message_too_big_is_reported_not_fatal(caplog):
  transport = FakeTransport()
  transport.ticket_errors = {token(0): "MessageTooBig"}

  with caplog.at_level("WARNING"):
    result = await DispatchEngine(transport, RecordingPruner()).send(_chunks(transport, 2))

  assert len(result.tickets) == 2
  assert "too big" in caplog.text


@pytest.mark.anyio
async def test_rate_exceeded_aborts_dispatch_as_internal_error():
  transport = FakeTransport(send_chunk_size=1)
  transport.ticket_errors = {token(0): "MessageRateExceeded"}

  with pytest.raises(InternalError):
    await DispatchEngine(transport, RecordingPruner()).send(_chunks(transport, 3))

  assert len(transport.sent) == 1


@pytest.mark.anyio
async def test_unknown_ticket_error_escalates_after_pruning():
  transport = FakeTransport()
  transport.ticket_errors = {token(0): "DeviceNotRegistered", token(1): "InvalidCredentials"}
  pruner = RecordingPruner()

  with pytest.raises(UnhandledTransportError) as exc_info:
    await DispatchEngine(transport, pruner).send(_chunks(transport, 3))

  assert exc_info.value.code == "unhandled-internal-error"
  assert pruner.pruned == [token(0)]
