"""Notification job write path and execution."""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from pushengine.jobs.errors import JobBusyError, JobLifecycleError, JobNotFoundError, JobValidationError
from pushengine.jobs.models import ExecutionOutcome, Frequency, JobStatus, NotificationJobRecord
from pushengine.jobs.recurrence import next_occurrence_after
from pushengine.jobs.requests import AdhocSendRequest, NotificationJobCreate, NotificationJobUpdate
from pushengine.notifications.contracts import PushMessage
from pushengine.notifications.delivery import DeliveryEngine, DeliveryResult
from pushengine.notifications.targeting import TargetingResolver
from pushengine.storage.jobs_repo import NotificationJobsRepository
from pushengine.utils.clock import Clock, utc_now
from pushengine.utils.db_retry import ROLLED_BACK_CATEGORIES, execute_with_retry
from pushengine.utils.ids import generate_job_id

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

MAX_PAGE_SIZE = 100
_REQUIRED_UPDATE_FIELDS = ("title", "body", "message_type", "scheduled_at", "frequency")


def message_for_job(job: NotificationJobRecord) -> PushMessage:
  """Build the push message a job sends."""
  return PushMessage(title=job.title, body=job.body, message_type=job.message_type, image_ref=job.image_ref, redirect_target=job.redirect_target)


def _parse(model: type[ModelT], payload: ModelT | Mapping[str, Any]) -> ModelT:
  if isinstance(payload, model):
    return payload
  try:
    return model.model_validate(payload)
  except ValidationError as exc:
    raise JobValidationError(f"Invalid {model.__name__}: {exc.error_count()} error(s)", details=exc.errors(include_url=False)) from exc


def _ensure_targeting(record: NotificationJobRecord) -> None:
  if not record.has_targeting():
    raise JobValidationError("A notification job needs recipients, phone numbers or an attribute filter.")


class NotificationJobService:
  """Create, mutate and execute notification jobs."""

  def __init__(
    self,
    *,
    jobs_repo: NotificationJobsRepository,
    resolver: TargetingResolver,
    engine: DeliveryEngine,
    worker_id: str,
    lease_seconds: float = 300.0,
    clock: Clock = utc_now,
  ) -> None:
    self._jobs_repo = jobs_repo
    self._resolver = resolver
    self._engine = engine
    self._worker_id = worker_id
    self._lease_seconds = lease_seconds
    self._clock = clock

  @property
  def worker_id(self) -> str:
    return self._worker_id

  @property
  def lease_seconds(self) -> float:
    return self._lease_seconds

  async def create_job(self, payload: NotificationJobCreate | Mapping[str, Any]) -> NotificationJobRecord:
    request = _parse(NotificationJobCreate, payload)
    now = self._clock()
    attribute_filter = request.attribute_filter.to_filter() if request.attribute_filter is not None else None
    record = NotificationJobRecord(
      id=generate_job_id(),
      title=request.title,
      body=request.body,
      message_type=request.message_type,
      scheduled_at=request.scheduled_at,
      frequency=request.frequency,
      status=JobStatus.PENDING,
      created_by=request.created_by,
      created_at=now,
      updated_at=now,
      recipients=request.targeting(),
      phone_numbers=tuple(number.strip() for number in request.phone_numbers if number.strip()),
      attribute_filter=attribute_filter if attribute_filter is not None and not attribute_filter.is_empty() else None,
      image_ref=request.image_ref,
      redirect_target=request.redirect_target,
    )
    _ensure_targeting(record)
    await self._jobs_repo.create_job(record)
    logger.info("Created notification job %s frequency=%s scheduled_at=%s", record.id, record.frequency.value, record.scheduled_at.isoformat())
    return record

  async def get_job(self, job_id: str) -> NotificationJobRecord:
    record = await self._jobs_repo.get_job(job_id)
    if record is None:
      raise JobNotFoundError(job_id)
    return record

  async def list_jobs(self, *, limit: int = 20, offset: int = 0, status: JobStatus | str | None = None, message_type: str | None = None) -> tuple[list[NotificationJobRecord], int]:
    if limit < 1 or limit > MAX_PAGE_SIZE:
      raise JobValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}.")
    if offset < 0:
      raise JobValidationError("offset must not be negative.")
    try:
      status_filter = JobStatus(status) if status is not None else None
    except ValueError as exc:
      raise JobValidationError(f"Unknown job status: {status}") from exc
    return await self._jobs_repo.list_jobs(limit=limit, offset=offset, status=status_filter, message_type=message_type)

  async def update_job(self, job_id: str, payload: NotificationJobUpdate | Mapping[str, Any]) -> NotificationJobRecord:
    request = _parse(NotificationJobUpdate, payload)
    current = await self.get_job(job_id)
    now = self._clock()
    if current.is_terminal:
      raise JobLifecycleError(f"Notification job {job_id} is {current.status.value} and can no longer be updated.")
    if current.is_leased(now):
      raise JobBusyError(f"Notification job {job_id} is executing; retry the update later.")

    for name in _REQUIRED_UPDATE_FIELDS:
      if request.supplied(name) and getattr(request, name) is None:
        raise JobValidationError(f"{name} cannot be null.")

    changes: dict[str, Any] = {}
    for name in ("title", "body", "message_type", "image_ref", "redirect_target", "scheduled_at", "frequency"):
      if request.supplied(name):
        changes[name] = getattr(request, name)
    recipients = request.recipients_value()
    if recipients is not None:
      changes["recipients"] = recipients
    if request.supplied("phone_numbers"):
      changes["phone_numbers"] = tuple(number.strip() for number in (request.phone_numbers or []) if number.strip())
    if request.supplied("attribute_filter"):
      attribute_filter = request.attribute_filter.to_filter() if request.attribute_filter is not None else None
      changes["attribute_filter"] = attribute_filter if attribute_filter is not None and not attribute_filter.is_empty() else None

    updated = dataclasses.replace(current, **changes, updated_at=now)
    _ensure_targeting(updated)

    schedule_changed = updated.scheduled_at != current.scheduled_at or updated.frequency != current.frequency
    if schedule_changed and current.status == JobStatus.ACTIVE:
      updated = self._reschedule_active(updated, now)

    saved = await self._jobs_repo.update_definition(updated, expected=current, now=now)
    if saved is None:
      raise await self._update_conflict(job_id)
    logger.info("Updated notification job %s fields=%s", job_id, sorted(changes))
    return saved

  async def _update_conflict(self, job_id: str) -> Exception:
    """Explain why a compare-and-set update matched no row."""
    latest = await self._jobs_repo.get_job(job_id)
    if latest is None:
      return JobNotFoundError(job_id)
    if latest.is_terminal:
      return JobLifecycleError(f"Notification job {job_id} became {latest.status.value} while it was being updated.")
    if latest.is_leased(self._clock()):
      return JobBusyError(f"Notification job {job_id} is executing; retry the update later.")
    return JobBusyError(f"Notification job {job_id} changed while it was being updated; retry the update.")

  @staticmethod
  def _reschedule_active(job: NotificationJobRecord, now: datetime) -> NotificationJobRecord:
    """Recompute next_send_at for a job that has already fired."""
    if job.frequency == Frequency.ONCE:
      # A fired job switched to ONCE has already had its single send.
      return dataclasses.replace(job, status=JobStatus.COMPLETED, next_send_at=None)
    if job.scheduled_at > now:
      return dataclasses.replace(job, next_send_at=job.scheduled_at)
    return dataclasses.replace(job, next_send_at=next_occurrence_after(job.scheduled_at, job.frequency, now))

  async def delete_job(self, job_id: str) -> None:
    """Hard-delete a job that has never delivered anything."""
    current = await self.get_job(job_id)
    if current.total_sent > 0:
      raise JobLifecycleError(f"Notification job {job_id} has already sent {current.total_sent} notifications and cannot be deleted.")
    if current.is_leased(self._clock()):
      raise JobBusyError(f"Notification job {job_id} is executing and cannot be deleted.")
    if not await self._jobs_repo.delete_job(job_id):
      # Lost a race with a run that recorded sends, or with another delete.
      latest = await self._jobs_repo.get_job(job_id)
      if latest is None:
        raise JobNotFoundError(job_id)
      raise JobLifecycleError(f"Notification job {job_id} has already sent notifications and cannot be deleted.")
    logger.info("Deleted notification job %s", job_id)

  async def cancel_job(self, job_id: str) -> NotificationJobRecord:
    current = await self.get_job(job_id)
    if current.is_terminal:
      raise JobLifecycleError(f"Notification job {job_id} is already {current.status.value}.")
    cancelled = await self._jobs_repo.mark_cancelled(job_id, now=self._clock())
    if cancelled is None:
      raise JobLifecycleError(f"Notification job {job_id} reached a terminal state before it could be cancelled.")
    logger.info("Cancelled notification job %s", job_id)
    return cancelled

  async def execute_now(self, job_id: str) -> ExecutionOutcome:
    """Run a job immediately regardless of its due time. Terminal jobs are a no-op."""
    current = await self.get_job(job_id)
    if current.is_terminal:
      logger.warning("Job %s is %s; skipping execution", job_id, current.status.value)
      return ExecutionOutcome(job_id=job_id, executed=False, reason=current.status.value.lower())

    now = self._clock()
    claimed = await self._jobs_repo.claim_due(job_id, owner=self._worker_id, now=now, lease_seconds=self._lease_seconds, force=True)
    if claimed is None:
      latest = await self.get_job(job_id)
      if latest.is_terminal:
        return ExecutionOutcome(job_id=job_id, executed=False, reason=latest.status.value.lower())
      raise JobBusyError(f"Notification job {job_id} is being executed by {latest.lease_owner}.")
    return await self.run_claimed(claimed, now=now)

  async def run_claimed(self, job: NotificationJobRecord, *, now: datetime) -> ExecutionOutcome:
    """Execute a job this worker has leased and record the outcome.

    On failure the lease is released and status and counters stay untouched, so the
    job is retried on the next tick.
    """
    try:
      recipients = await self._resolver.resolve(job)
      result = await self._engine.execute(message_for_job(job), recipients, job_id=job.id)
    except Exception:
      await self._release(job.id)
      raise

    next_send_at = self._next_send_at(job, now)
    recorded = await execute_with_retry(
      operation_name="notification_job_record_run",
      func=lambda: self._jobs_repo.record_run(job.id, owner=self._worker_id, now=now, sent=result.success_count, failed=result.failure_count, next_send_at=next_send_at),
      retry_categories=ROLLED_BACK_CATEGORIES,
    )
    if recorded is None:
      logger.warning("Job %s disappeared before its run could be recorded", job.id)
    else:
      logger.info("Job %s ran: recipients=%d sent=%d failed=%d status=%s next_send_at=%s", job.id, result.recipient_count, result.success_count, result.failure_count, recorded.status.value, recorded.next_send_at)
    return ExecutionOutcome(job_id=job.id, executed=True, recipient_count=result.recipient_count, success_count=result.success_count, failure_count=result.failure_count)

  @staticmethod
  def _next_send_at(job: NotificationJobRecord, now: datetime) -> datetime | None:
    if job.frequency == Frequency.ONCE:
      return None
    anchor = job.due_at or job.scheduled_at
    # A forced run ahead of schedule keeps the scheduled fire.
    if anchor > now:
      return anchor
    return next_occurrence_after(anchor, job.frequency, now)

  async def _release(self, job_id: str) -> None:
    try:
      await execute_with_retry(operation_name="notification_job_release_claim", func=lambda: self._jobs_repo.release_claim(job_id, owner=self._worker_id))
    except Exception as exc:  # noqa: BLE001
      # The lease still expires on its own.
      logger.error("Failed releasing lease for job %s: %s", job_id, exc, exc_info=True)

  async def send_adhoc(self, payload: AdhocSendRequest | Mapping[str, Any]) -> DeliveryResult:
    """Send once to explicit recipients or to everyone, outside any job."""
    request = _parse(AdhocSendRequest, payload)
    recipients = request.recipients_value()
    if recipients is None:
      raise JobValidationError("recipients must be supplied: a list of ids, or null to broadcast.")
    recipient_ids = await self._resolver.resolve_recipients(recipients, language=request.language)
    message = PushMessage(title=request.title, body=request.body, message_type=request.message_type, image_ref=request.image_ref, redirect_target=request.redirect_target)
    return await self._engine.execute(message, recipient_ids)
