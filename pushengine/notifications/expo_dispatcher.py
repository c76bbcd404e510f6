"""Expo push API channel."""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from typing import Any

import httpx

from pushengine.config import DEFAULT_EXPO_PUSH_URL
from pushengine.notifications.contracts import CHANNEL_EXPO, DispatchTransportError, PushAddress, PushMessage
from pushengine.notifications.dispatcher import BatchingDispatcher, ChunkItemResult

logger = logging.getLogger(__name__)

EXPO_MAX_BATCH_SIZE = 100

_EXPO_TOKEN_PATTERN = re.compile(r"^(?:ExponentPushToken|ExpoPushToken)\[.+\]$")
_LEGACY_UUID_PATTERN = re.compile(r"^[a-z\d]{8}-[a-z\d]{4}-[a-z\d]{4}-[a-z\d]{4}-[a-z\d]{12}$", re.IGNORECASE)


def is_expo_push_token(token: str) -> bool:
  """Return True for ExponentPushToken[...], ExpoPushToken[...] or a legacy UUID token."""
  if not isinstance(token, str):
    return False
  return bool(_EXPO_TOKEN_PATTERN.match(token) or _LEGACY_UUID_PATTERN.match(token))


class ExpoDispatcher(BatchingDispatcher):
  """`httpx` backed sender for the Expo push service."""

  channel = CHANNEL_EXPO

  def __init__(
    self,
    *,
    push_url: str = DEFAULT_EXPO_PUSH_URL,
    access_token: str | None = None,
    timeout_seconds: float = 15.0,
    max_batch_size: int = EXPO_MAX_BATCH_SIZE,
    max_concurrent_chunks: int = 4,
    transport: httpx.AsyncBaseTransport | None = None,
  ) -> None:
    if max_batch_size > EXPO_MAX_BATCH_SIZE:
      raise ValueError(f"Expo accepts at most {EXPO_MAX_BATCH_SIZE} messages per request.")
    super().__init__(max_batch_size=max_batch_size, timeout_seconds=timeout_seconds, max_concurrent_chunks=max_concurrent_chunks)
    self._push_url = push_url
    self._access_token = access_token
    self._transport = transport

  def is_valid_token(self, token: str) -> bool:
    return is_expo_push_token(token)

  def _build_client(self) -> httpx.AsyncClient:
    """Build an httpx client; tests inject a mock transport."""
    if self._transport is not None:
      return httpx.AsyncClient(transport=self._transport, trust_env=False)
    return httpx.AsyncClient(trust_env=False)

  def _headers(self) -> dict[str, str]:
    headers = {"accept": "application/json", "accept-encoding": "gzip, deflate", "content-type": "application/json"}
    if self._access_token:
      headers["authorization"] = f"Bearer {self._access_token}"
    return headers

  def build_payload(self, chunk: Sequence[PushAddress], message: PushMessage, *, job_id: str | None = None) -> list[dict[str, Any]]:
    """Shape one Expo message per address; the image sits at the top level."""
    data = message.payload_data(job_id=job_id)
    payload: list[dict[str, Any]] = []
    for address in chunk:
      item: dict[str, Any] = {"to": address.token, "sound": "default", "title": message.title, "body": message.body, "data": data}
      if message.image_ref:
        item["image"] = message.image_ref
      payload.append(item)
    return payload

  async def send_chunk(self, chunk: Sequence[PushAddress], message: PushMessage, *, job_id: str | None = None) -> list[ChunkItemResult]:
    payload = self.build_payload(chunk, message, job_id=job_id)
    async with self._build_client() as client:
      response = await client.post(self._push_url, json=payload, headers=self._headers(), timeout=self._timeout_seconds)

    if response.status_code >= 400:
      raise DispatchTransportError(f"Expo push API returned HTTP {response.status_code}: {response.text[:200]}")

    try:
      body = response.json()
    except ValueError as exc:
      raise DispatchTransportError("Expo push API returned a non-JSON body.") from exc

    tickets = body.get("data") if isinstance(body, dict) else None
    if not isinstance(tickets, list):
      errors = body.get("errors") if isinstance(body, dict) else None
      raise DispatchTransportError(f"Expo push API response missing tickets: {errors!r}")

    return [_ticket_to_result(ticket) for ticket in tickets]


def _ticket_to_result(ticket: Any) -> ChunkItemResult:
  """Classify one Expo push ticket."""
  if not isinstance(ticket, dict):
    return ChunkItemResult(success=False, reason="malformed_ticket")
  if ticket.get("status") == "ok":
    return ChunkItemResult(success=True)

  details = ticket.get("details") or {}
  error_code = details.get("error") if isinstance(details, dict) else None
  reason = str(error_code or ticket.get("message") or "unknown_error")
  return ChunkItemResult(success=False, reason=reason, revoke=error_code == "DeviceNotRegistered")
