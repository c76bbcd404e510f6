from __future__ import annotations

import warnings
from types import SimpleNamespace

import pytest
from conftest import fcm_token
from firebase_admin import messaging

from pushengine.notifications.contracts import CHANNEL_FCM, PushAddress, PushMessage
from pushengine.notifications.fcm_dispatcher import FcmDispatcher, is_fcm_token


def _addresses(count: int) -> list[PushAddress]:
  return [PushAddress(recipient_id=f"u{index}", token=fcm_token(str(index)), channel=CHANNEL_FCM) for index in range(count)]


def test_is_fcm_token():
  assert is_fcm_token(fcm_token("a"))
  assert not is_fcm_token("short")
  assert not is_fcm_token("has spaces in the token value")


def test_build_messages_adds_platform_image_fields():
  dispatcher = FcmDispatcher()
  message = PushMessage(title="t", body="b", message_type="EVENT", image_ref="https://cdn.example.com/e.png", data={"count": 3})

  built = dispatcher.build_messages(_addresses(2), message, job_id="job-9")

  assert [item.token for item in built] == [fcm_token("0"), fcm_token("1")]
  first = built[0]
  assert first.data == {"count": "3", "type": "event", "notificationType": "EVENT", "jobId": "job-9", "image": "https://cdn.example.com/e.png"}
  assert first.notification.image == "https://cdn.example.com/e.png"
  assert first.android.priority == "high"
  assert first.android.notification.image == "https://cdn.example.com/e.png"
  assert first.apns is not None


def test_build_messages_without_image_skips_apns():
  built = FcmDispatcher().build_messages(_addresses(1), PushMessage(title="t", body="b", message_type="EVENT"))
  assert built[0].apns is None


def test_build_messages_emits_no_deprecation_warning():
  with warnings.catch_warnings(record=True) as caught:
    warnings.simplefilter("always")
    FcmDispatcher().build_messages(_addresses(3), PushMessage(title="t", body="b", message_type="EVENT"))

  assert not [item for item in caught if issubclass(item.category, DeprecationWarning)]


@pytest.mark.anyio
async def test_send_batches_messages_and_classifies_responses(monkeypatch):
  batches: list[list[str]] = []

  def _send_each(messages, dry_run=False, app=None):
    batches.append([item.token for item in messages])
    responses = []
    for item in messages:
      if item.token == fcm_token("3"):
        responses.append(SimpleNamespace(success=False, exception=messaging.UnregisteredError("Requested entity was not found.")))
      elif item.token == fcm_token("4"):
        responses.append(SimpleNamespace(success=False, exception=ValueError("quota")))
      else:
        responses.append(SimpleNamespace(success=True, exception=None))
    return SimpleNamespace(responses=responses)

  monkeypatch.setattr("pushengine.notifications.fcm_dispatcher.messaging.send_each", _send_each)

  dispatcher = FcmDispatcher(max_batch_size=3)
  addresses = _addresses(7)
  result = await dispatcher.send(addresses, PushMessage(title="t", body="b", message_type="GK"))

  assert sorted(len(batch) for batch in batches) == [1, 3, 3]
  assert result.success_count == 5
  assert result.failure_count == 2
  assert result.revoked_addresses == [addresses[3]]
  reasons = {failure.address.token: failure.reason for failure in result.failures}
  assert reasons[fcm_token("4")] == "ValueError: quota"


@pytest.mark.anyio
async def test_sdk_failure_fails_the_chunk(monkeypatch):
  def _raise(messages, dry_run=False, app=None):
    raise RuntimeError("credentials revoked")

  monkeypatch.setattr("pushengine.notifications.fcm_dispatcher.messaging.send_each", _raise)

  result = await FcmDispatcher().send(_addresses(2), PushMessage(title="t", body="b", message_type="GK"))

  assert result.success_count == 0
  assert [failure.reason for failure in result.failures] == ["transport_error: credentials revoked"] * 2
