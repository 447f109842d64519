from __future__ import annotations

import json

import httpx
import pytest

from mobilesync.notifications.contracts import PushMessage, PushTransportError, TransientPushTransportError
from mobilesync.notifications.expo_transport import ExpoConfig, ExpoPushTransport, is_expo_push_token


def _transport(handler, **config) -> ExpoPushTransport:
  client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
  return ExpoPushTransport(config=ExpoConfig(base_url="https://expo.test/--/api/v2", **config), client=client, backoff_seconds=(0, 0))


@pytest.mark.parametrize(
  ("candidate", "expected"),
  [
    ("ExponentPushToken[abc]", True),
    ("ExpoPushToken[xyz-123]", True),
    ("3f2504e0-4f89-11d3-9a0c-0305e82c3301", True),
    ("ExponentPushToken[]", True),
    ("ExponentPushToken[abc", False),
    ("PushToken[abc]", False),
    ("garbage", False),
    (None, False),
    (42, False),
  ],
)
def test_token_predicate(candidate, expected):
  assert is_expo_push_token(candidate) is expected


@pytest.mark.anyio
async def test_send_posts_messages_and_parses_tickets():
  seen = {}

  def handler(request: httpx.Request) -> httpx.Response:
    seen["url"] = str(request.url)
    seen["auth"] = request.headers.get("authorization")
    seen["body"] = json.loads(request.content)
    return httpx.Response(200, json={"data": [{"status": "ok", "id": "r1"}, {"status": "error", "message": "gone", "details": {"error": "DeviceNotRegistered"}}]})

  transport = _transport(handler, access_token="secret")
  tickets = await transport.send([PushMessage(to="ExponentPushToken[a]", title="t", body="b", data={"k": 1}), PushMessage(to="ExponentPushToken[b]", title="t", body="b")])

  assert seen["url"] == "https://expo.test/--/api/v2/push/send"
  assert seen["auth"] == "Bearer secret"
  assert seen["body"][0] == {"to": "ExponentPushToken[a]", "title": "t", "body": "b", "data": {"k": 1}}
  assert "data" not in seen["body"][1]
  assert tickets[0].id == "r1"
  assert tickets[1].error_code == "DeviceNotRegistered"


@pytest.mark.anyio
async def test_get_receipts_parses_receipt_map():
  def handler(request: httpx.Request) -> httpx.Response:
    assert json.loads(request.content) == {"ids": ["r1", "r2"]}
    return httpx.Response(200, json={"data": {"r1": {"status": "ok"}, "r2": {"status": "error", "details": {"error": "DeviceNotRegistered", "expoPushToken": "ExponentPushToken[a]"}}}})

  receipts = await _transport(handler).get_receipts(["r1", "r2"])

  assert receipts["r1"].is_ok
  assert receipts["r2"].push_token == "ExponentPushToken[a]"


@pytest.mark.anyio
async def test_send_timeout_is_not_retried():
  posts = []

  def handler(request: httpx.Request) -> httpx.Response:
    posts.append(request.url.path)
    if len(posts) == 1:
      raise httpx.ReadTimeout("timed out waiting for Expo", request=request)
    return httpx.Response(200, json={"data": [{"status": "ok", "id": "r1"}]})

  with pytest.raises(TransientPushTransportError):
    await _transport(handler).send([PushMessage(to="ExponentPushToken[a]", title="t", body="b")])

  assert posts == ["/--/api/v2/push/send"]


@pytest.mark.anyio
async def test_send_server_error_is_not_retried():
  attempts = {"count": 0}

  def handler(request: httpx.Request) -> httpx.Response:
    attempts["count"] += 1
    return httpx.Response(503)

  with pytest.raises(TransientPushTransportError):
    await _transport(handler).send([PushMessage(to="ExponentPushToken[a]", title="t", body="b")])

  assert attempts["count"] == 1


@pytest.mark.anyio
async def test_send_connect_error_is_retried():
  attempts = {"count": 0}

  def handler(request: httpx.Request) -> httpx.Response:
    attempts["count"] += 1
    if attempts["count"] == 1:
      raise httpx.ConnectError("connection refused", request=request)
    return httpx.Response(200, json={"data": [{"status": "ok", "id": "r1"}]})

  tickets = await _transport(handler).send([PushMessage(to="ExponentPushToken[a]", title="t", body="b")])

  assert tickets[0].id == "r1"
  assert attempts["count"] == 2


@pytest.mark.anyio
async def test_receipt_server_errors_are_retried_then_surface_as_transient():
  attempts = {"count": 0}

  def handler(request: httpx.Request) -> httpx.Response:
    attempts["count"] += 1
    if attempts["count"] == 1:
      raise httpx.ReadTimeout("timed out waiting for Expo", request=request)
    return httpx.Response(503)

  with pytest.raises(TransientPushTransportError):
    await _transport(handler).get_receipts(["r1"])

  assert attempts["count"] == 3


@pytest.mark.anyio
async def test_rate_limited_request_recovers_on_retry():
  responses = iter([httpx.Response(429), httpx.Response(200, json={"data": [{"status": "ok", "id": "r1"}]})])

  tickets = await _transport(lambda request: next(responses)).send([PushMessage(to="ExponentPushToken[a]", title="t", body="b")])

  assert tickets[0].id == "r1"


@pytest.mark.anyio
async def test_client_errors_and_request_level_errors_are_not_retried():
  attempts = {"count": 0}

  def handler(request: httpx.Request) -> httpx.Response:
    attempts["count"] += 1
    if request.url.path.endswith("/push/send"):
      return httpx.Response(400, json={"errors": [{"code": "VALIDATION_ERROR"}]})
    return httpx.Response(200, json={"errors": [{"code": "PUSH_TOO_MANY_RECEIPTS"}]})

  transport = _transport(handler)
  with pytest.raises(PushTransportError):
    await transport.send([PushMessage(to="ExponentPushToken[a]", title="t", body="b")])
  with pytest.raises(PushTransportError):
    await transport.get_receipts(["r1"])

  assert attempts["count"] == 2


def test_chunk_sizes_are_capped():
  with pytest.raises(ValueError):
    ExpoPushTransport(config=ExpoConfig(send_chunk_size=101))
  with pytest.raises(ValueError):
    ExpoPushTransport(config=ExpoConfig(receipt_chunk_size=1001))
