"""Test configuration for importing the push engine package."""

from __future__ import annotations

import sys
from collections.abc import Sequence
from datetime import UTC, datetime
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
  sys.path.insert(0, str(ROOT))

import pytest  # noqa: E402

from pushengine.notifications.contracts import CHANNEL_EXPO, CHANNEL_FCM, AddressFailure, DispatchResult, PushAddress, PushMessage  # noqa: E402
from pushengine.notifications.dispatcher import NullDispatcher  # noqa: E402
from pushengine.storage.delivery_records_repo import DeliveryRecordEntry, DeliveryRecordRepository  # noqa: E402
from pushengine.storage.directory_repo import DirectoryRecipient, InMemoryRecipientDirectory  # noqa: E402

T0 = datetime(2025, 3, 10, 9, 0, tzinfo=UTC)


@pytest.fixture
def anyio_backend():
  return "asyncio"


class RecordingSink(DeliveryRecordRepository):
  """Keep delivery records in memory."""

  def __init__(self) -> None:
    self.entries: list[DeliveryRecordEntry] = []

  async def insert_many(self, entries: Sequence[DeliveryRecordEntry]) -> int:
    self.entries.extend(entries)
    return len(entries)


class FakeDispatcher(NullDispatcher):
  """Succeed for every address except those whose token is listed in fail_tokens."""

  def __init__(self, channel: str, *, fail_tokens: set[str] | None = None, revoke_tokens: set[str] | None = None, error: Exception | None = None) -> None:
    super().__init__(channel)
    self.fail_tokens = fail_tokens or set()
    self.revoke_tokens = revoke_tokens or set()
    self.error = error
    self.calls: list[list[PushAddress]] = []

  async def send(self, addresses: Sequence[PushAddress], message: PushMessage, *, job_id: str | None = None) -> DispatchResult:
    self.calls.append(list(addresses))
    if self.error is not None:
      raise self.error
    failures = tuple(AddressFailure(address=address, reason="rejected", revoke=address.token in self.revoke_tokens) for address in addresses if address.token in self.fail_tokens or address.token in self.revoke_tokens)
    return DispatchResult(channel=self.channel, success_count=len(addresses) - len(failures), failures=failures)

  @property
  def sent_tokens(self) -> list[str]:
    return [address.token for call in self.calls for address in call]


def expo_token(suffix: str) -> str:
  return f"ExponentPushToken[{suffix}]"


def fcm_token(suffix: str) -> str:
  return f"fcm-token-{suffix}-" + "x" * 24


@pytest.fixture
def directory() -> InMemoryRecipientDirectory:
  return InMemoryRecipientDirectory(
    [
      DirectoryRecipient(id="u1", phone_number="+91 98765-43210", language="en", institution_id="inst-1", program_id="prog-1", stage="1", expo_push_token=expo_token("u1")),
      DirectoryRecipient(id="u2", phone_number="+919876500002", language="EN", institution_id="inst-1", program_id="prog-2", stage="2", fcm_tokens={fcm_token("u2"): True}),
      DirectoryRecipient(id="u3", phone_number="+919876500003", language="hi", institution_id="inst-2", expo_push_token=expo_token("u3"), fcm_tokens={fcm_token("u3"): True}),
      DirectoryRecipient(id="u4", language="en", is_active=False, expo_push_token=expo_token("u4")),
      DirectoryRecipient(id="u5", language="en", institution_id="inst-1"),
    ]
  )


@pytest.fixture
def record_sink() -> RecordingSink:
  return RecordingSink()


@pytest.fixture
def expo_dispatcher() -> FakeDispatcher:
  return FakeDispatcher(CHANNEL_EXPO)


@pytest.fixture
def fcm_dispatcher() -> FakeDispatcher:
  return FakeDispatcher(CHANNEL_FCM)


class FixedClock:
  """Settable clock for scheduler and service tests."""

  def __init__(self, now: datetime = T0) -> None:
    self.now = now

  def __call__(self) -> datetime:
    return self.now


@pytest.fixture
def clock() -> FixedClock:
  return FixedClock()
