from __future__ import annotations

import json

import httpx
import pytest
from conftest import expo_token

from pushengine.notifications.contracts import CHANNEL_EXPO, PushAddress, PushMessage
from pushengine.notifications.expo_dispatcher import ExpoDispatcher, is_expo_push_token

PUSH_URL = "https://exp.host/--/api/v2/push/send"


def _addresses(count: int) -> list[PushAddress]:
  return [PushAddress(recipient_id=f"u{index}", token=expo_token(str(index)), channel=CHANNEL_EXPO) for index in range(count)]


def _message() -> PushMessage:
  return PushMessage(title="Daily digest", body="Read today's digest", message_type="DAILY_DIGEST", image_ref="https://cdn.example.com/digest.png")


def test_is_expo_push_token():
  assert is_expo_push_token("ExponentPushToken[abc]")
  assert is_expo_push_token("ExpoPushToken[abc]")
  assert is_expo_push_token("3f2504e0-4f89-11d3-9a0c-0305e82c3301")
  assert not is_expo_push_token("ExponentPushToken[]")
  assert not is_expo_push_token("not-a-token")


@pytest.mark.anyio
async def test_send_chunks_requests_and_preserves_order():
  chunk_sizes: list[int] = []

  def _handler(request: httpx.Request) -> httpx.Response:
    items = json.loads(request.content)
    chunk_sizes.append(len(items))
    assert request.headers["authorization"] == "Bearer secret"
    assert items[0]["image"] == "https://cdn.example.com/digest.png"
    assert items[0]["data"]["type"] == "daily-digest"
    # Fail exactly the address whose token ends in [7].
    tickets = [{"status": "error", "message": "rate", "details": {"error": "MessageRateExceeded"}} if item["to"] == expo_token("7") else {"status": "ok", "id": item["to"]} for item in items]
    return httpx.Response(200, json={"data": tickets})

  dispatcher = ExpoDispatcher(push_url=PUSH_URL, access_token="secret", transport=httpx.MockTransport(_handler))
  addresses = _addresses(250)

  result = await dispatcher.send(addresses, _message(), job_id="job-1")

  assert sorted(chunk_sizes) == [50, 100, 100]
  assert result.success_count == 249
  assert result.failure_count == 1
  assert result.failures[0].address.token == expo_token("7")
  assert result.failures[0].reason == "MessageRateExceeded"
  assert [outcome.address for outcome in result.outcomes] == addresses


@pytest.mark.anyio
async def test_device_not_registered_is_marked_for_revocation():
  def _handler(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={"data": [{"status": "ok"}, {"status": "error", "message": "gone", "details": {"error": "DeviceNotRegistered"}}]})

  dispatcher = ExpoDispatcher(push_url=PUSH_URL, transport=httpx.MockTransport(_handler))
  addresses = _addresses(2)

  result = await dispatcher.send(addresses, _message())

  assert result.success_count == 1
  assert result.revoked_addresses == [addresses[1]]


@pytest.mark.anyio
async def test_http_error_fails_only_that_chunk():
  calls = {"count": 0}

  def _handler(request: httpx.Request) -> httpx.Response:
    calls["count"] += 1
    items = json.loads(request.content)
    if items[0]["to"] == expo_token("0"):
      return httpx.Response(503, text="unavailable")
    return httpx.Response(200, json={"data": [{"status": "ok"} for _ in items]})

  dispatcher = ExpoDispatcher(push_url=PUSH_URL, max_batch_size=2, max_concurrent_chunks=1, transport=httpx.MockTransport(_handler))

  result = await dispatcher.send(_addresses(4), _message())

  assert calls["count"] == 2
  assert result.success_count == 2
  assert result.failure_count == 2
  assert all(failure.reason.startswith("transport_error") for failure in result.failures)
  assert not result.revoked_addresses


@pytest.mark.anyio
async def test_malformed_tokens_are_not_sent():
  sent: list[str] = []

  def _handler(request: httpx.Request) -> httpx.Response:
    items = json.loads(request.content)
    sent.extend(item["to"] for item in items)
    return httpx.Response(200, json={"data": [{"status": "ok"} for _ in items]})

  dispatcher = ExpoDispatcher(push_url=PUSH_URL, transport=httpx.MockTransport(_handler))
  addresses = [PushAddress(recipient_id="u1", token="garbage", channel=CHANNEL_EXPO), *_addresses(1)]

  result = await dispatcher.send(addresses, _message())

  assert sent == [expo_token("0")]
  assert result.success_count == 1
  assert result.invalid_count == 1
  assert result.failure_count == 1
  assert result.outcomes[0].reason == "invalid_token"


def test_batch_size_above_channel_limit_is_rejected():
  with pytest.raises(ValueError):
    ExpoDispatcher(max_batch_size=101)
