"""Fan one logical message out to every recipient's push addresses."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from pushengine.notifications.contracts import DispatchResult, PushAddress, PushDispatcher, PushMessage
from pushengine.notifications.token_registry import TokenRegistry
from pushengine.storage.delivery_records_repo import DeliveryRecordEntry, DeliveryRecordRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryResult:
  """Aggregate outcome of one send.

  Counters are per channel attempt: a recipient reached on both channels counts twice.
  """

  recipient_count: int
  records_written: int
  success_count: int
  failure_count: int
  unreachable_count: int
  channel_results: tuple[DispatchResult, ...] = ()

  def for_channel(self, channel: str) -> DispatchResult | None:
    for result in self.channel_results:
      if result.channel == channel:
        return result
    return None


class DeliveryEngine:
  """Write delivery records, look up addresses and run every channel concurrently."""

  def __init__(self, *, record_sink: DeliveryRecordRepository, token_registry: TokenRegistry, dispatchers: Sequence[PushDispatcher]) -> None:
    self._record_sink = record_sink
    self._token_registry = token_registry
    self._dispatchers = tuple(dispatchers)

  async def execute(self, message: PushMessage, recipients: Iterable[str], *, job_id: str | None = None) -> DeliveryResult:
    """Deliver a message. Per-address failures are counted, sink and registry errors propagate."""
    recipient_ids = sorted(set(recipients))
    if not recipient_ids:
      logger.info("No recipients for message_type=%s job_id=%s; nothing to send.", message.message_type, job_id)
      return DeliveryResult(recipient_count=0, records_written=0, success_count=0, failure_count=0, unreachable_count=0)

    # History is written before dispatch so it survives any push failure.
    data = message.payload_data(job_id=job_id)
    entries = [DeliveryRecordEntry(recipient_id=recipient_id, title=message.title, body=message.body, message_type=message.message_type, data=data, job_id=job_id) for recipient_id in recipient_ids]
    records_written = await self._record_sink.insert_many(entries)

    address_book = await self._token_registry.lookup(recipient_ids)
    channel_results = await asyncio.gather(*(self._dispatch(dispatcher, address_book.for_channel(dispatcher.channel), message, job_id=job_id) for dispatcher in self._dispatchers))

    revoked = [address for result in channel_results for address in result.revoked_addresses]
    if revoked:
      await self._token_registry.revoke(revoked)

    success_count = sum(result.success_count for result in channel_results)
    failure_count = sum(result.failure_count for result in channel_results)
    logger.info(
      "Delivered job_id=%s recipients=%d records=%d success=%d failed=%d unreachable=%d",
      job_id,
      len(recipient_ids),
      records_written,
      success_count,
      failure_count,
      len(address_book.unreachable),
    )
    return DeliveryResult(
      recipient_count=len(recipient_ids),
      records_written=records_written,
      success_count=success_count,
      failure_count=failure_count,
      unreachable_count=len(address_book.unreachable),
      channel_results=tuple(channel_results),
    )

  @staticmethod
  async def _dispatch(dispatcher: PushDispatcher, addresses: Sequence[PushAddress], message: PushMessage, *, job_id: str | None) -> DispatchResult:
    """Run one channel; a broken dispatcher fails its own addresses and never the other channel."""
    if not addresses:
      return DispatchResult.empty(dispatcher.channel)
    try:
      return await dispatcher.send(addresses, message, job_id=job_id)
    except Exception as exc:  # noqa: BLE001
      logger.error("Dispatcher %s failed for %d addresses: %s", dispatcher.channel, len(addresses), exc, exc_info=True)
      return DispatchResult.failed(dispatcher.channel, addresses, f"dispatcher_error: {exc}")
