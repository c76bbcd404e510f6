"""Storage interface for notification jobs."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from pushengine.jobs.models import JobStatus, NotificationJobRecord


class NotificationJobsRepository(Protocol):
  """Repository contract for notification job persistence.

  Scheduler-owned fields (status after firing, counters, last_sent_at, lease) only
  change through claim_due, record_run and release_claim. Counter updates are
  applied as increments so concurrent runs never lose a delta.
  """

  async def create_job(self, record: NotificationJobRecord) -> None:
    """Persist a new job."""

  async def get_job(self, job_id: str) -> NotificationJobRecord | None:
    """Fetch a job by identifier."""

  async def update_definition(self, record: NotificationJobRecord, *, expected: NotificationJobRecord, now: datetime) -> NotificationJobRecord | None:
    """Compare-and-set the job definition.

    The write applies only while the stored row still has expected's status,
    updated_at and last_sent_at and holds no live lease. status and next_send_at are written only when
    they differ from expected; counters and lease are never touched. Returns None when
    the job is missing or changed since expected was read.
    """

  async def mark_cancelled(self, job_id: str, *, now: datetime) -> NotificationJobRecord | None:
    """Cancel a non-terminal job and clear next_send_at. Returns None if the job is missing or terminal."""

  async def delete_job(self, job_id: str) -> bool:
    """Hard-delete a job that has never sent. Returns False when the row is missing or has sends."""

  async def list_jobs(self, *, limit: int, offset: int, status: JobStatus | None = None, message_type: str | None = None) -> tuple[list[NotificationJobRecord], int]:
    """Return a page of jobs, newest first, and the total count for the filters."""

  async def find_due(self, now: datetime, *, limit: int = 100) -> list[NotificationJobRecord]:
    """Return unleased jobs whose due time is at or before now."""

  async def claim_due(self, job_id: str, *, owner: str, now: datetime, lease_seconds: float, force: bool = False) -> NotificationJobRecord | None:
    """Atomically lease a due job. With force, any non-terminal unleased job is claimable."""

  async def record_run(self, job_id: str, *, owner: str, now: datetime, sent: int, failed: int, next_send_at: datetime | None) -> NotificationJobRecord | None:
    """Apply one run's outcome and release the lease held by owner."""

  async def release_claim(self, job_id: str, *, owner: str) -> None:
    """Release a lease without touching status or counters."""
