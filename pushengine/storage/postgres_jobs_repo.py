"""Postgres-backed repository for notification jobs using SQLAlchemy."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import DateTime, Delete, Update, and_, case, cast, delete, func, null, or_, select, update

from pushengine.core.database import get_session_factory
from pushengine.jobs.models import AttributeFilter, Frequency, JobStatus, NotificationJobRecord, recipients_from_storage, recipients_to_storage
from pushengine.schema.notification_jobs import NotificationJob
from pushengine.storage.jobs_repo import NotificationJobsRepository

_TERMINAL = (JobStatus.COMPLETED.value, JobStatus.CANCELLED.value)
_SCHEDULABLE = (JobStatus.PENDING.value, JobStatus.ACTIVE.value)


def _due_clause(now: datetime):  # type: ignore[no-untyped-def]
  pending_due = and_(NotificationJob.status == JobStatus.PENDING.value, NotificationJob.scheduled_at <= now)
  active_due = and_(NotificationJob.status == JobStatus.ACTIVE.value, NotificationJob.next_send_at.is_not(None), NotificationJob.next_send_at <= now)
  return or_(pending_due, active_due)


def _unleased_clause(now: datetime):  # type: ignore[no-untyped-def]
  return or_(NotificationJob.lease_owner.is_(None), NotificationJob.lease_expires_at.is_(None), NotificationJob.lease_expires_at <= now)


def _definition_values(record: NotificationJobRecord) -> dict[str, Any]:
  """Column values for the user-editable part of a job."""
  recipient_mode, recipient_ids = recipients_to_storage(record.recipients)
  return {
    "title": record.title,
    "body": record.body,
    "message_type": record.message_type,
    "image_ref": record.image_ref,
    "redirect_target": record.redirect_target,
    "scheduled_at": record.scheduled_at,
    "frequency": record.frequency.value,
    "recipient_mode": recipient_mode,
    "recipient_ids": recipient_ids,
    "phone_numbers": list(record.phone_numbers),
    "attribute_filter": record.attribute_filter.to_dict() if record.attribute_filter is not None else None,
    "updated_at": record.updated_at,
  }


def _update_definition_statement(record: NotificationJobRecord, *, expected: NotificationJobRecord, now: datetime) -> Update:
  values = _definition_values(record)
  if record.status != expected.status:
    values["status"] = record.status.value
  if record.next_send_at != expected.next_send_at:
    values["next_send_at"] = record.next_send_at
  last_sent_unchanged = NotificationJob.last_sent_at.is_(None) if expected.last_sent_at is None else NotificationJob.last_sent_at == expected.last_sent_at
  return (
    update(NotificationJob)
    .where(NotificationJob.id == record.id, NotificationJob.status == expected.status.value, NotificationJob.updated_at == expected.updated_at, last_sent_unchanged, _unleased_clause(now))
    .values(**values)
    .returning(NotificationJob)
    .execution_options(synchronize_session=False)
  )


def _delete_statement(job_id: str) -> Delete:
  # The total_sent guard lives in the statement so a concurrent run cannot slip in.
  return delete(NotificationJob).where(NotificationJob.id == job_id, NotificationJob.total_sent == 0).returning(NotificationJob.id)


def _claim_statement(job_id: str, *, owner: str, now: datetime, lease_seconds: float, force: bool) -> Update:
  eligible = NotificationJob.status.in_(_SCHEDULABLE) if force else _due_clause(now)
  return (
    update(NotificationJob)
    .where(NotificationJob.id == job_id, eligible, _unleased_clause(now))
    .values(lease_owner=owner, lease_expires_at=now + timedelta(seconds=lease_seconds))
    .returning(NotificationJob)
    .execution_options(synchronize_session=False)
  )


def _record_run_statement(job_id: str, *, owner: str, now: datetime, sent: int, failed: int, next_send_at: datetime | None) -> Update:
  was_cancelled = NotificationJob.status == JobStatus.CANCELLED.value
  is_once = NotificationJob.frequency == Frequency.ONCE.value
  holds_lease = NotificationJob.lease_owner == owner
  return (
    update(NotificationJob)
    .where(NotificationJob.id == job_id)
    .values(
      total_sent=NotificationJob.total_sent + sent,
      total_failed=NotificationJob.total_failed + failed,
      last_sent_at=now,
      updated_at=now,
      status=case((was_cancelled, JobStatus.CANCELLED.value), (is_once, JobStatus.COMPLETED.value), else_=JobStatus.ACTIVE.value),
      next_send_at=case((or_(was_cancelled, is_once), null()), else_=cast(next_send_at, DateTime(timezone=True))),
      lease_owner=case((holds_lease, None), else_=NotificationJob.lease_owner),
      lease_expires_at=case((holds_lease, None), else_=NotificationJob.lease_expires_at),
    )
    .returning(NotificationJob)
    .execution_options(synchronize_session=False)
  )


class PostgresNotificationJobsRepository(NotificationJobsRepository):
  """Persist notification jobs to Postgres using SQLAlchemy."""

  def __init__(self) -> None:
    self._session_factory = get_session_factory()
    if self._session_factory is None:
      raise RuntimeError("Database not initialized")

  async def create_job(self, record: NotificationJobRecord) -> None:
    async with self._session_factory() as session:
      row = NotificationJob(
        id=record.id,
        status=record.status.value,
        next_send_at=record.next_send_at,
        last_sent_at=record.last_sent_at,
        total_sent=record.total_sent,
        total_failed=record.total_failed,
        created_by=record.created_by,
        created_at=record.created_at,
        **_definition_values(record),
      )
      session.add(row)
      await session.commit()

  async def get_job(self, job_id: str) -> NotificationJobRecord | None:
    async with self._session_factory() as session:
      row = await session.get(NotificationJob, job_id)
      if row is None:
        return None
      return self._model_to_record(row)

  async def update_definition(self, record: NotificationJobRecord, *, expected: NotificationJobRecord, now: datetime) -> NotificationJobRecord | None:
    async with self._session_factory() as session:
      row = (await session.execute(_update_definition_statement(record, expected=expected, now=now))).scalar_one_or_none()
      await session.commit()
      return self._model_to_record(row) if row is not None else None

  async def mark_cancelled(self, job_id: str, *, now: datetime) -> NotificationJobRecord | None:
    async with self._session_factory() as session:
      stmt = (
        update(NotificationJob)
        .where(NotificationJob.id == job_id, NotificationJob.status.not_in(_TERMINAL))
        .values(status=JobStatus.CANCELLED.value, next_send_at=None, updated_at=now)
        .returning(NotificationJob)
        .execution_options(synchronize_session=False)
      )
      row = (await session.execute(stmt)).scalar_one_or_none()
      await session.commit()
      return self._model_to_record(row) if row is not None else None

  async def delete_job(self, job_id: str) -> bool:
    async with self._session_factory() as session:
      deleted = (await session.execute(_delete_statement(job_id))).scalar_one_or_none()
      await session.commit()
      return deleted is not None

  async def list_jobs(self, *, limit: int, offset: int, status: JobStatus | None = None, message_type: str | None = None) -> tuple[list[NotificationJobRecord], int]:
    async with self._session_factory() as session:
      filters = []
      if status is not None:
        filters.append(NotificationJob.status == JobStatus(status).value)
      if message_type is not None:
        filters.append(NotificationJob.message_type == message_type)

      count_stmt = select(func.count()).select_from(NotificationJob).where(*filters)
      total = int((await session.execute(count_stmt)).scalar_one())

      stmt = select(NotificationJob).where(*filters).order_by(NotificationJob.created_at.desc()).offset(offset).limit(limit)
      rows = (await session.execute(stmt)).scalars().all()
      return [self._model_to_record(row) for row in rows], total

  async def find_due(self, now: datetime, *, limit: int = 100) -> list[NotificationJobRecord]:
    async with self._session_factory() as session:
      due_at = func.coalesce(NotificationJob.next_send_at, NotificationJob.scheduled_at)
      stmt = select(NotificationJob).where(_due_clause(now), _unleased_clause(now)).order_by(due_at.asc()).limit(limit)
      rows = (await session.execute(stmt)).scalars().all()
      return [self._model_to_record(row) for row in rows]

  async def claim_due(self, job_id: str, *, owner: str, now: datetime, lease_seconds: float, force: bool = False) -> NotificationJobRecord | None:
    async with self._session_factory() as session:
      row = (await session.execute(_claim_statement(job_id, owner=owner, now=now, lease_seconds=lease_seconds, force=force))).scalar_one_or_none()
      await session.commit()
      return self._model_to_record(row) if row is not None else None

  async def record_run(self, job_id: str, *, owner: str, now: datetime, sent: int, failed: int, next_send_at: datetime | None) -> NotificationJobRecord | None:
    async with self._session_factory() as session:
      row = (await session.execute(_record_run_statement(job_id, owner=owner, now=now, sent=sent, failed=failed, next_send_at=next_send_at))).scalar_one_or_none()
      await session.commit()
      return self._model_to_record(row) if row is not None else None

  async def release_claim(self, job_id: str, *, owner: str) -> None:
    async with self._session_factory() as session:
      stmt = update(NotificationJob).where(NotificationJob.id == job_id, NotificationJob.lease_owner == owner).values(lease_owner=None, lease_expires_at=None).execution_options(synchronize_session=False)
      await session.execute(stmt)
      await session.commit()

  @staticmethod
  def _model_to_record(row: NotificationJob) -> NotificationJobRecord:
    return NotificationJobRecord(
      id=row.id,
      title=row.title,
      body=row.body,
      message_type=row.message_type,
      scheduled_at=row.scheduled_at,
      frequency=Frequency(row.frequency),
      status=JobStatus(row.status),
      created_by=row.created_by,
      created_at=row.created_at,
      updated_at=row.updated_at,
      recipients=recipients_from_storage(row.recipient_mode, row.recipient_ids),
      phone_numbers=tuple(row.phone_numbers or ()),
      attribute_filter=AttributeFilter.from_dict(row.attribute_filter),
      image_ref=row.image_ref,
      redirect_target=row.redirect_target,
      next_send_at=row.next_send_at,
      last_sent_at=row.last_sent_at,
      total_sent=row.total_sent,
      total_failed=row.total_failed,
      lease_owner=row.lease_owner,
      lease_expires_at=row.lease_expires_at,
    )
