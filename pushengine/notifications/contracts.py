"""Contracts for push delivery channels."""

from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from pushengine.jobs.type_mapper import routing_key_for

CHANNEL_EXPO = "expo"
CHANNEL_FCM = "fcm"


@dataclass(frozen=True)
class PushMessage:
  """Represents one logical notification before channel-specific shaping."""

  title: str
  body: str
  message_type: str
  image_ref: str | None = None
  redirect_target: str | None = None
  data: dict[str, Any] = field(default_factory=dict)

  def payload_data(self, *, job_id: str | None = None) -> dict[str, Any]:
    """Return the client data payload shared by every channel."""
    payload: dict[str, Any] = dict(self.data)
    payload["type"] = routing_key_for(self.message_type)
    payload["notificationType"] = self.message_type
    if job_id is not None:
      payload["jobId"] = job_id
    if self.redirect_target:
      payload["redirectUrl"] = self.redirect_target
    if self.image_ref:
      payload["image"] = self.image_ref
    return payload


@dataclass(frozen=True)
class PushAddress:
  """A deliverable token owned by one recipient on one channel."""

  recipient_id: str
  token: str
  channel: str


@dataclass(frozen=True)
class PushAddressBook:
  """Addresses for a recipient set, partitioned by channel."""

  expo: tuple[PushAddress, ...] = ()
  fcm: tuple[PushAddress, ...] = ()
  unreachable: frozenset[str] = frozenset()

  def for_channel(self, channel: str) -> tuple[PushAddress, ...]:
    if channel == CHANNEL_EXPO:
      return self.expo
    if channel == CHANNEL_FCM:
      return self.fcm
    return ()


@dataclass(frozen=True)
class AddressOutcome:
  """Delivery outcome for a single address."""

  address: PushAddress
  success: bool
  reason: str | None = None
  revoke: bool = False


@dataclass(frozen=True)
class AddressFailure:
  """A failed address with the reason reported by the channel or the dispatcher."""

  address: PushAddress
  reason: str
  revoke: bool = False


@dataclass(frozen=True)
class DispatchResult:
  """Aggregate result of one channel send. Outcomes follow the input address order."""

  channel: str
  success_count: int = 0
  failures: tuple[AddressFailure, ...] = ()
  invalid_count: int = 0
  outcomes: tuple[AddressOutcome, ...] = ()

  @property
  def failure_count(self) -> int:
    return len(self.failures) + self.invalid_count

  @property
  def revoked_addresses(self) -> list[PushAddress]:
    return [failure.address for failure in self.failures if failure.revoke]

  @classmethod
  def empty(cls, channel: str) -> DispatchResult:
    return cls(channel=channel)

  @classmethod
  def failed(cls, channel: str, addresses: Sequence[PushAddress], reason: str) -> DispatchResult:
    """Mark every address failed, used when a dispatcher itself breaks."""
    outcomes = tuple(AddressOutcome(address=address, success=False, reason=reason) for address in addresses)
    failures = tuple(AddressFailure(address=address, reason=reason) for address in addresses)
    return cls(channel=channel, success_count=0, failures=failures, invalid_count=0, outcomes=outcomes)


class NotificationError(Exception):
  """Base class for all notification delivery failures."""


class DispatchTransportError(NotificationError):
  """Exception raised when a whole channel call fails for a chunk."""


class PushDispatcher(Protocol):
  """Delivery contract shared by every push channel."""

  channel: str

  async def send(self, addresses: Sequence[PushAddress], message: PushMessage, *, job_id: str | None = None) -> DispatchResult:
    """Send one message to many addresses and report per-address outcomes."""


def stringify_data(data: dict[str, Any]) -> dict[str, str]:
  """Convert data values to strings, JSON-encoding non-string values."""
  return {str(key): value if isinstance(value, str) else json.dumps(value) for key, value in data.items() if value is not None}
