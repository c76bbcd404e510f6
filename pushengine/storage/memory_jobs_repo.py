"""In-process notification job store for development and tests."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from datetime import datetime, timedelta

from pushengine.jobs.models import Frequency, JobStatus, NotificationJobRecord
from pushengine.storage.jobs_repo import NotificationJobsRepository

logger = logging.getLogger(__name__)


class InMemoryNotificationJobsRepository(NotificationJobsRepository):
  """Keep jobs in a dict guarded by one lock so each operation is atomic within the process."""

  def __init__(self) -> None:
    self._jobs: dict[str, NotificationJobRecord] = {}
    self._lock = asyncio.Lock()

  async def create_job(self, record: NotificationJobRecord) -> None:
    async with self._lock:
      if record.id in self._jobs:
        raise ValueError(f"Notification job {record.id} already exists.")
      self._jobs[record.id] = record

  async def get_job(self, job_id: str) -> NotificationJobRecord | None:
    async with self._lock:
      return self._jobs.get(job_id)

  async def update_definition(self, record: NotificationJobRecord, *, expected: NotificationJobRecord, now: datetime) -> NotificationJobRecord | None:
    async with self._lock:
      current = self._jobs.get(record.id)
      if current is None or current.is_leased(now):
        return None
      if (current.status, current.updated_at, current.last_sent_at) != (expected.status, expected.updated_at, expected.last_sent_at):
        return None
      updated = dataclasses.replace(
        current,
        title=record.title,
        body=record.body,
        message_type=record.message_type,
        image_ref=record.image_ref,
        redirect_target=record.redirect_target,
        scheduled_at=record.scheduled_at,
        frequency=record.frequency,
        recipients=record.recipients,
        phone_numbers=record.phone_numbers,
        attribute_filter=record.attribute_filter,
        updated_at=record.updated_at,
      )
      if record.status != expected.status:
        updated = dataclasses.replace(updated, status=record.status)
      if record.next_send_at != expected.next_send_at:
        updated = dataclasses.replace(updated, next_send_at=record.next_send_at)
      self._jobs[record.id] = updated
      return updated

  async def mark_cancelled(self, job_id: str, *, now: datetime) -> NotificationJobRecord | None:
    async with self._lock:
      current = self._jobs.get(job_id)
      if current is None or current.is_terminal:
        return None
      updated = dataclasses.replace(current, status=JobStatus.CANCELLED, next_send_at=None, updated_at=now)
      self._jobs[job_id] = updated
      return updated

  async def delete_job(self, job_id: str) -> bool:
    async with self._lock:
      current = self._jobs.get(job_id)
      if current is None or current.total_sent > 0:
        return False
      del self._jobs[job_id]
      return True

  async def list_jobs(self, *, limit: int, offset: int, status: JobStatus | None = None, message_type: str | None = None) -> tuple[list[NotificationJobRecord], int]:
    async with self._lock:
      matches = [job for job in self._jobs.values() if (status is None or job.status == status) and (message_type is None or job.message_type == message_type)]
    matches.sort(key=lambda job: job.created_at, reverse=True)
    return matches[offset : offset + limit], len(matches)

  async def find_due(self, now: datetime, *, limit: int = 100) -> list[NotificationJobRecord]:
    async with self._lock:
      due = [job for job in self._jobs.values() if job.is_due(now) and not job.is_leased(now)]
    due.sort(key=lambda job: job.due_at)  # type: ignore[arg-type, return-value]
    return due[:limit]

  async def claim_due(self, job_id: str, *, owner: str, now: datetime, lease_seconds: float, force: bool = False) -> NotificationJobRecord | None:
    async with self._lock:
      current = self._jobs.get(job_id)
      if current is None or current.is_leased(now):
        return None
      eligible = not current.is_terminal if force else current.is_due(now)
      if not eligible:
        return None
      claimed = dataclasses.replace(current, lease_owner=owner, lease_expires_at=now + timedelta(seconds=lease_seconds))
      self._jobs[job_id] = claimed
      return claimed

  async def record_run(self, job_id: str, *, owner: str, now: datetime, sent: int, failed: int, next_send_at: datetime | None) -> NotificationJobRecord | None:
    async with self._lock:
      current = self._jobs.get(job_id)
      if current is None:
        return None
      if current.status == JobStatus.CANCELLED:
        status, next_at = JobStatus.CANCELLED, None
      elif current.frequency == Frequency.ONCE:
        status, next_at = JobStatus.COMPLETED, None
      else:
        status, next_at = JobStatus.ACTIVE, next_send_at
      holds_lease = current.lease_owner == owner
      if not holds_lease:
        logger.warning("Recording run for job %s without holding its lease (owner=%s, holder=%s).", job_id, owner, current.lease_owner)
      updated = dataclasses.replace(
        current,
        total_sent=current.total_sent + sent,
        total_failed=current.total_failed + failed,
        last_sent_at=now,
        updated_at=now,
        status=status,
        next_send_at=next_at,
        lease_owner=None if holds_lease else current.lease_owner,
        lease_expires_at=None if holds_lease else current.lease_expires_at,
      )
      self._jobs[job_id] = updated
      return updated

  async def release_claim(self, job_id: str, *, owner: str) -> None:
    async with self._lock:
      current = self._jobs.get(job_id)
      if current is not None and current.lease_owner == owner:
        self._jobs[job_id] = dataclasses.replace(current, lease_owner=None, lease_expires_at=None)
