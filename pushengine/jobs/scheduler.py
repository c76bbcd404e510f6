"""Poll loop that fires due notification jobs."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import datetime

from pushengine.jobs.models import ExecutionOutcome, NotificationJobRecord
from pushengine.jobs.service import NotificationJobService
from pushengine.storage.jobs_repo import NotificationJobsRepository
from pushengine.utils.clock import Clock, utc_now
from pushengine.utils.db_retry import execute_with_retry

logger = logging.getLogger(__name__)


class NotificationScheduler:
  """Find due jobs, lease them and hand each to the job service.

  Ticks never overlap. Jobs within one tick run concurrently up to
  max_concurrent_jobs, and one job's failure never affects the others.
  """

  def __init__(
    self,
    *,
    jobs_repo: NotificationJobsRepository,
    service: NotificationJobService,
    poll_interval_seconds: float = 60.0,
    batch_limit: int = 100,
    max_concurrent_jobs: int = 4,
    clock: Clock = utc_now,
  ) -> None:
    if poll_interval_seconds <= 0:
      raise ValueError("poll_interval_seconds must be positive.")
    if max_concurrent_jobs <= 0:
      raise ValueError("max_concurrent_jobs must be positive.")
    self._jobs_repo = jobs_repo
    self._service = service
    self._poll_interval_seconds = poll_interval_seconds
    self._batch_limit = batch_limit
    self._max_concurrent_jobs = max_concurrent_jobs
    self._clock = clock
    self._tick_lock = asyncio.Lock()
    self._task: asyncio.Task[None] | None = None

  @property
  def running(self) -> bool:
    return self._task is not None and not self._task.done()

  async def tick(self) -> list[ExecutionOutcome]:
    """Run one poll: every due job this worker manages to claim is executed."""
    async with self._tick_lock:
      now = self._clock()
      due_jobs = await execute_with_retry(operation_name="notification_jobs_find_due", func=lambda: self._jobs_repo.find_due(now, limit=self._batch_limit))
      if not due_jobs:
        logger.debug("No notification jobs due at %s", now.isoformat())
        return []

      logger.info("Found %d due notification jobs at %s", len(due_jobs), now.isoformat())
      semaphore = asyncio.Semaphore(self._max_concurrent_jobs)

      async def _bounded(job: NotificationJobRecord) -> ExecutionOutcome | None:
        async with semaphore:
          return await self._run_job(job, now)

      results = await asyncio.gather(*(_bounded(job) for job in due_jobs))
      return [result for result in results if result is not None]

  async def _run_job(self, job: NotificationJobRecord, now: datetime) -> ExecutionOutcome | None:
    """Claim and execute one job; failures are logged and reported, never raised."""
    try:
      claimed = await execute_with_retry(
        operation_name="notification_job_claim",
        func=lambda: self._jobs_repo.claim_due(job.id, owner=self._service.worker_id, now=now, lease_seconds=self._service.lease_seconds),
      )
      if claimed is None:
        logger.debug("Notification job %s was claimed by another worker", job.id)
        return None
      return await self._service.run_claimed(claimed, now=now)
    except Exception as exc:  # noqa: BLE001
      logger.error("Notification job %s failed: %s", job.id, exc, exc_info=True)
      return ExecutionOutcome(job_id=job.id, executed=False, reason=f"error: {exc}")

  async def run_forever(self) -> None:
    """Tick immediately, then once per poll interval until cancelled."""
    while True:
      try:
        await self.tick()
      except Exception as exc:  # noqa: BLE001
        logger.error("Notification scheduler tick failed: %s", exc, exc_info=True)
      await asyncio.sleep(self._poll_interval_seconds)

  def start(self) -> None:
    """Start the loop on the running event loop; a second call is a no-op."""
    if self.running:
      return
    loop = asyncio.get_running_loop()
    self._task = loop.create_task(self.run_forever())
    self._task.add_done_callback(self._log_task_failure)
    logger.info("Notification scheduler started (poll every %.1fs).", self._poll_interval_seconds)

  async def stop(self) -> None:
    """Cancel the loop; an in-flight tick is abandoned and its leases expire."""
    if self._task is None:
      return
    task, self._task = self._task, None
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
      await task
    logger.info("Notification scheduler stopped.")

  @staticmethod
  def _log_task_failure(task: asyncio.Task[None]) -> None:
    """Log unexpected failures from the background loop."""
    if task.cancelled():
      return
    try:
      task.result()
    except Exception as exc:  # noqa: BLE001
      logger.error("Notification scheduler loop failed: %s", exc, exc_info=True)
