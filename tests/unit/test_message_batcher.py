from __future__ import annotations

from fakes import FakeTransport, token

from mobilesync.notifications.batcher import MessageBatcher
from mobilesync.notifications.contracts import NotificationContent

_CONTENT = NotificationContent(title="Test", body="Hi", payload={"k": "v"})


def test_250_tokens_make_three_chunks():
  batcher = MessageBatcher(FakeTransport(send_chunk_size=100))

  chunks = batcher.build_chunks(_CONTENT, [token(i) for i in range(250)])

  assert [len(chunk) for chunk in chunks] == [100, 100, 50]
  assert chunks[0][0].to == token(0)
  assert chunks[2][-1].to == token(249)


def test_invalid_tokens_are_logged_and_never_sent(caplog):
  batcher = MessageBatcher(FakeTransport(send_chunk_size=2))

  with caplog.at_level("WARNING"):
    chunks = batcher.build_chunks(_CONTENT, [token("a"), "garbage", token("b"), None, token("c")])

  sent = [message.to for chunk in chunks for message in chunk]
  assert sent == [token("a"), token("b"), token("c")]
  assert [len(chunk) for chunk in chunks] == [2, 1]
  assert "'garbage'" in caplog.text


def test_messages_carry_content_and_payload():
  chunks = MessageBatcher(FakeTransport()).build_chunks(_CONTENT, [token("a")])

  assert chunks[0][0].to_wire() == {"to": token("a"), "title": "Test", "body": "Hi", "data": {"k": "v"}}


def test_no_valid_tokens_means_no_chunks():
  assert MessageBatcher(FakeTransport()).build_chunks(_CONTENT, ["nope"]) == []
