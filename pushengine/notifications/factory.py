"""Factory helpers for the delivery core."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from pushengine.config import Settings
from pushengine.core.firebase import initialize_firebase
from pushengine.jobs.scheduler import NotificationScheduler
from pushengine.jobs.service import NotificationJobService
from pushengine.notifications.contracts import CHANNEL_EXPO, CHANNEL_FCM, PushDispatcher
from pushengine.notifications.delivery import DeliveryEngine
from pushengine.notifications.dispatcher import NullDispatcher
from pushengine.notifications.expo_dispatcher import ExpoDispatcher
from pushengine.notifications.fcm_dispatcher import FcmDispatcher
from pushengine.notifications.targeting import TargetingResolver
from pushengine.notifications.token_registry import TokenRegistry
from pushengine.storage.delivery_records_repo import DeliveryRecordRepository, NullDeliveryRecordRepository
from pushengine.storage.directory_repo import InMemoryRecipientDirectory, PostgresRecipientDirectory, RecipientDirectory
from pushengine.storage.jobs_repo import NotificationJobsRepository
from pushengine.storage.memory_jobs_repo import InMemoryNotificationJobsRepository
from pushengine.storage.postgres_jobs_repo import PostgresNotificationJobsRepository
from pushengine.storage.push_tokens_repo import PushTokenRepository, PushTokenStore
from pushengine.utils.clock import Clock, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationRuntime:
  """Wired components sharing one job store and one delivery engine."""

  jobs_repo: NotificationJobsRepository
  engine: DeliveryEngine
  service: NotificationJobService
  scheduler: NotificationScheduler


def build_dispatchers(settings: Settings) -> list[PushDispatcher]:
  """Construct one dispatcher per channel, falling back to no-op senders when disabled."""
  if settings.expo_enabled:
    expo: PushDispatcher = ExpoDispatcher(
      push_url=settings.expo_push_url,
      access_token=settings.expo_access_token,
      timeout_seconds=settings.expo_timeout_seconds,
      max_batch_size=settings.expo_max_batch_size,
      max_concurrent_chunks=settings.dispatch_max_concurrent_chunks,
    )
  else:
    expo = NullDispatcher(CHANNEL_EXPO)

  # FCM needs an initialized Firebase app; without one the channel is skipped.
  firebase_app = initialize_firebase(settings) if settings.fcm_enabled else None
  if firebase_app is not None:
    fcm: PushDispatcher = FcmDispatcher(app=firebase_app, timeout_seconds=settings.fcm_timeout_seconds, max_batch_size=settings.fcm_max_batch_size, max_concurrent_chunks=settings.dispatch_max_concurrent_chunks)
  else:
    if settings.fcm_enabled:
      logger.warning("FCM delivery enabled but Firebase is not initialized; FCM tokens will be skipped.")
    fcm = NullDispatcher(CHANNEL_FCM)

  return [expo, fcm]


def build_runtime(
  settings: Settings,
  *,
  jobs_repo: NotificationJobsRepository | None = None,
  directory: RecipientDirectory | None = None,
  record_sink: DeliveryRecordRepository | None = None,
  token_store: PushTokenStore | None = None,
  dispatchers: list[PushDispatcher] | None = None,
  clock: Clock = utc_now,
) -> NotificationRuntime:
  """Wire the delivery core from configuration; explicit arguments override the defaults."""
  # Persist jobs and history only when Postgres is configured.
  if settings.pg_dsn:
    jobs_repo = jobs_repo or PostgresNotificationJobsRepository()
    directory = directory or PostgresRecipientDirectory()
    record_sink = record_sink or DeliveryRecordRepository()
    token_store = token_store or PushTokenRepository()
  else:
    logger.warning("PUSHENGINE_PG_DSN is not set; using the in-memory job store and dropping delivery records.")
    jobs_repo = jobs_repo or InMemoryNotificationJobsRepository()
    in_memory_directory = InMemoryRecipientDirectory()
    directory = directory or in_memory_directory
    record_sink = record_sink or NullDeliveryRecordRepository()
    if token_store is None and isinstance(directory, InMemoryRecipientDirectory):
      token_store = directory

  token_registry = TokenRegistry(directory, token_store)
  engine = DeliveryEngine(record_sink=record_sink, token_registry=token_registry, dispatchers=dispatchers if dispatchers is not None else build_dispatchers(settings))
  service = NotificationJobService(jobs_repo=jobs_repo, resolver=TargetingResolver(directory), engine=engine, worker_id=settings.scheduler_instance_id, lease_seconds=settings.scheduler_lease_seconds, clock=clock)
  scheduler = NotificationScheduler(
    jobs_repo=jobs_repo,
    service=service,
    poll_interval_seconds=settings.scheduler_poll_seconds,
    batch_limit=settings.scheduler_batch_limit,
    max_concurrent_jobs=settings.scheduler_max_concurrent_jobs,
    clock=clock,
  )
  return NotificationRuntime(jobs_repo=jobs_repo, engine=engine, service=service, scheduler=scheduler)
