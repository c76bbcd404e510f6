"""Append-only sink for per-recipient delivery records."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from sqlalchemy import insert

from pushengine.core.database import get_session_factory
from pushengine.schema.notifications import DeliveryRecord

logger = logging.getLogger(__name__)

_INSERT_BATCH_SIZE = 1000


@dataclass(frozen=True)
class DeliveryRecordEntry:
  """Capture one recipient's copy of a sent notification."""

  recipient_id: str
  title: str
  body: str
  message_type: str
  data: dict[str, Any]
  job_id: str | None = None


class DeliveryRecordRepository:
  """Persist delivery records to Postgres."""

  async def insert_many(self, entries: Sequence[DeliveryRecordEntry]) -> int:
    """Insert all entries in one transaction and return the number written."""
    if not entries:
      return 0
    session_factory = get_session_factory()
    if session_factory is None:
      raise RuntimeError("Database not initialized")

    async with session_factory() as session:
      for start in range(0, len(entries), _INSERT_BATCH_SIZE):
        batch = entries[start : start + _INSERT_BATCH_SIZE]
        rows = [{"user_id": entry.recipient_id, "job_id": entry.job_id, "message_type": entry.message_type, "title": entry.title, "body": entry.body, "data_json": entry.data, "read": False} for entry in batch]
        await session.execute(insert(DeliveryRecord), rows)
      await session.commit()
    return len(entries)


class NullDeliveryRecordRepository(DeliveryRecordRepository):
  """No-op repository when persistence is unavailable."""

  async def insert_many(self, entries: Sequence[DeliveryRecordEntry]) -> int:
    logger.debug("Delivery record persistence disabled; dropping %d records", len(entries))
    return 0
