from __future__ import annotations

from datetime import timedelta

import pytest
from conftest import T0, FakeDispatcher, RecordingSink, expo_token, fcm_token

from pushengine.config import get_settings
from pushengine.jobs.models import JobStatus
from pushengine.notifications.contracts import CHANNEL_EXPO, CHANNEL_FCM
from pushengine.notifications.dispatcher import NullDispatcher
from pushengine.notifications.expo_dispatcher import ExpoDispatcher
from pushengine.notifications.factory import build_dispatchers, build_runtime
from pushengine.storage.directory_repo import DirectoryRecipient, InMemoryRecipientDirectory
from pushengine.storage.memory_jobs_repo import InMemoryNotificationJobsRepository


@pytest.fixture
def settings(monkeypatch):
  for key in ("PUSHENGINE_PG_DSN", "DATABASE_URL", "PUSHENGINE_FCM_ENABLED", "PUSHENGINE_EXPO_ENABLED"):
    monkeypatch.delenv(key, raising=False)
  get_settings.cache_clear()
  yield get_settings()
  get_settings.cache_clear()


@pytest.fixture
def population() -> InMemoryRecipientDirectory:
  return InMemoryRecipientDirectory(
    [
      DirectoryRecipient(id="s1", language="en", expo_push_token=expo_token("s1")),
      DirectoryRecipient(id="s2", language="en", fcm_tokens={fcm_token("s2"): True}),
      DirectoryRecipient(id="s3", language="en", expo_push_token=expo_token("s3-stale")),
      DirectoryRecipient(id="s4", language="hi", expo_push_token=expo_token("s4")),
      DirectoryRecipient(id="s5", language="mr", fcm_tokens={fcm_token("s5"): True}),
    ]
  )


def test_dispatchers_follow_channel_switches(settings):
  expo, fcm = build_dispatchers(settings)
  assert isinstance(expo, ExpoDispatcher)
  assert isinstance(fcm, NullDispatcher)
  assert fcm.channel == CHANNEL_FCM


@pytest.mark.anyio
async def test_daily_job_with_language_filter(settings, population, clock):
  sink = RecordingSink()
  expo = FakeDispatcher(CHANNEL_EXPO, revoke_tokens={expo_token("s3-stale")})
  fcm = FakeDispatcher(CHANNEL_FCM)
  runtime = build_runtime(settings, jobs_repo=InMemoryNotificationJobsRepository(), directory=population, record_sink=sink, dispatchers=[expo, fcm], clock=clock)

  job = await runtime.service.create_job(
    {"title": "Daily digest", "body": "Your digest is ready", "messageType": "DAILY_DIGEST", "scheduledAt": T0.isoformat(), "frequency": "DAILY", "attributeFilter": {"language": "en"}, "createdBy": "admin-1"}
  )

  outcomes = await runtime.scheduler.tick()

  assert [outcome.job_id for outcome in outcomes] == [job.id]
  assert sorted(entry.recipient_id for entry in sink.entries) == ["s1", "s2", "s3"]
  assert {entry.data["type"] for entry in sink.entries} == {"daily-digest"}
  stored = await runtime.service.get_job(job.id)
  assert stored.status == JobStatus.ACTIVE
  assert stored.next_send_at == T0 + timedelta(hours=24)
  assert stored.last_sent_at == T0
  assert stored.total_sent == 2
  assert stored.total_failed == 1
  assert population.get("s3").expo_push_token is None

  # Nothing more fires until the next day.
  clock.now = T0 + timedelta(hours=23)
  assert await runtime.scheduler.tick() == []

  clock.now = T0 + timedelta(hours=24)
  await runtime.scheduler.tick()
  stored = await runtime.service.get_job(job.id)
  assert len(sink.entries) == 6
  assert stored.next_send_at == T0 + timedelta(hours=48)
  assert stored.total_sent == 4
