"""Shared batching behavior for push delivery channels."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass

from pushengine.notifications.contracts import AddressFailure, AddressOutcome, DispatchResult, DispatchTransportError, PushAddress, PushDispatcher, PushMessage

logger = logging.getLogger(__name__)

REASON_INVALID_TOKEN = "invalid_token"
REASON_TIMEOUT = "timeout"
REASON_MISSING_OUTCOME = "missing_outcome"


@dataclass(frozen=True)
class ChunkItemResult:
  """Per-item result reported by a channel for one address of a chunk."""

  success: bool
  reason: str | None = None
  revoke: bool = False


class BatchingDispatcher(PushDispatcher):
  """Base class that filters, chunks and concurrently sends addresses for one channel.

  Subclasses implement token validation and the single-chunk network call; every
  input address is accounted for in the returned outcomes, in input order.
  """

  channel = "unknown"

  def __init__(self, *, max_batch_size: int, timeout_seconds: float, max_concurrent_chunks: int = 4) -> None:
    if max_batch_size <= 0:
      raise ValueError("max_batch_size must be positive.")
    if max_concurrent_chunks <= 0:
      raise ValueError("max_concurrent_chunks must be positive.")
    self._max_batch_size = max_batch_size
    self._timeout_seconds = timeout_seconds
    self._max_concurrent_chunks = max_concurrent_chunks

  @property
  def max_batch_size(self) -> int:
    return self._max_batch_size

  def is_valid_token(self, token: str) -> bool:
    """Return True when the token has the channel's expected format."""
    raise NotImplementedError

  async def send_chunk(self, chunk: Sequence[PushAddress], message: PushMessage, *, job_id: str | None = None) -> Sequence[ChunkItemResult]:
    """Send one bounded chunk and return per-item results in chunk order."""
    raise NotImplementedError

  async def send(self, addresses: Sequence[PushAddress], message: PushMessage, *, job_id: str | None = None) -> DispatchResult:
    if not addresses:
      return DispatchResult.empty(self.channel)

    outcomes: list[AddressOutcome | None] = [None] * len(addresses)
    valid_indexes: list[int] = []
    invalid_count = 0
    for index, address in enumerate(addresses):
      if self.is_valid_token(address.token):
        valid_indexes.append(index)
      else:
        outcomes[index] = AddressOutcome(address=address, success=False, reason=REASON_INVALID_TOKEN)
        invalid_count += 1

    if invalid_count:
      logger.warning("Skipping %d malformed %s tokens before dispatch.", invalid_count, self.channel)

    chunks = [valid_indexes[start : start + self._max_batch_size] for start in range(0, len(valid_indexes), self._max_batch_size)]
    semaphore = asyncio.Semaphore(self._max_concurrent_chunks)

    async def _run(chunk_indexes: list[int]) -> None:
      chunk = [addresses[index] for index in chunk_indexes]
      async with semaphore:
        chunk_outcomes = await self._send_chunk_guarded(chunk, message, job_id=job_id)
      for index, outcome in zip(chunk_indexes, chunk_outcomes, strict=False):
        outcomes[index] = outcome

    await asyncio.gather(*(_run(chunk_indexes) for chunk_indexes in chunks))

    missing = sum(1 for outcome in outcomes if outcome is None)
    if missing:
      raise DispatchTransportError(f"{self.channel} dispatch left {missing} addresses without an outcome.")
    resolved = [outcome for outcome in outcomes if outcome is not None]

    success_count = 0
    failures: list[AddressFailure] = []
    for index in valid_indexes:
      outcome = resolved[index]
      if outcome.success:
        success_count += 1
      else:
        failures.append(AddressFailure(address=outcome.address, reason=outcome.reason or "unknown_error", revoke=outcome.revoke))

    result = DispatchResult(channel=self.channel, success_count=success_count, failures=tuple(failures), invalid_count=invalid_count, outcomes=tuple(resolved))
    logger.info("Dispatched %s chunks=%d success=%d failed=%d invalid=%d", self.channel, len(chunks), success_count, len(failures), invalid_count)
    return result

  async def _send_chunk_guarded(self, chunk: list[PushAddress], message: PushMessage, *, job_id: str | None) -> list[AddressOutcome]:
    """Send one chunk, converting chunk-level errors into per-address failures."""
    try:
      items = await asyncio.wait_for(self.send_chunk(chunk, message, job_id=job_id), timeout=self._timeout_seconds)
    except TimeoutError:
      logger.warning("%s chunk of %d addresses timed out after %.1fs.", self.channel, len(chunk), self._timeout_seconds)
      return [AddressOutcome(address=address, success=False, reason=REASON_TIMEOUT) for address in chunk]
    except Exception as exc:  # noqa: BLE001
      logger.error("%s chunk of %d addresses failed: %s", self.channel, len(chunk), exc, exc_info=True)
      reason = f"transport_error: {exc}"
      return [AddressOutcome(address=address, success=False, reason=reason) for address in chunk]

    items = list(items)
    if len(items) != len(chunk):
      logger.warning("%s returned %d outcomes for a chunk of %d addresses.", self.channel, len(items), len(chunk))

    outcomes: list[AddressOutcome] = []
    for position, address in enumerate(chunk):
      if position < len(items):
        item = items[position]
        outcomes.append(AddressOutcome(address=address, success=item.success, reason=item.reason, revoke=item.revoke))
      else:
        outcomes.append(AddressOutcome(address=address, success=False, reason=REASON_MISSING_OUTCOME))
    return outcomes


class NullDispatcher(PushDispatcher):
  """No-op dispatcher used when a channel is disabled or unconfigured."""

  def __init__(self, channel: str) -> None:
    self.channel = channel

  async def send(self, addresses: Sequence[PushAddress], message: PushMessage, *, job_id: str | None = None) -> DispatchResult:
    """Drop the addresses while recording a debug log."""
    logger.debug("Push channel %s disabled; dropping %d addresses", self.channel, len(addresses))
    return DispatchResult.empty(self.channel)
