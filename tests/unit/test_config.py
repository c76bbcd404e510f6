from __future__ import annotations

import pytest

from pushengine.config import DEFAULT_EXPO_PUSH_URL, get_settings

_KEYS = (
  "PUSHENGINE_PG_DSN",
  "DATABASE_URL",
  "PUSHENGINE_SCHEDULER_POLL_SECONDS",
  "PUSHENGINE_SCHEDULER_LEASE_SECONDS",
  "PUSHENGINE_SCHEDULER_INSTANCE_ID",
  "PUSHENGINE_EXPO_PUSH_URL",
  "PUSHENGINE_EXPO_MAX_BATCH_SIZE",
  "PUSHENGINE_FCM_ENABLED",
  "FIREBASE_PROJECT_ID",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
  for key in _KEYS:
    monkeypatch.delenv(key, raising=False)
  get_settings.cache_clear()
  yield
  get_settings.cache_clear()


def test_defaults():
  settings = get_settings()

  assert settings.pg_dsn is None
  assert settings.scheduler_poll_seconds == 60
  assert settings.scheduler_lease_seconds == 300
  assert settings.expo_push_url == DEFAULT_EXPO_PUSH_URL
  assert settings.expo_max_batch_size == 100
  assert settings.fcm_max_batch_size == 500
  assert settings.fcm_enabled is False
  assert settings.scheduler_instance_id


def test_database_url_fallback(monkeypatch):
  monkeypatch.setenv("DATABASE_URL", "postgresql://user:pw@db:5432/push")
  assert get_settings().pg_dsn == "postgresql://user:pw@db:5432/push"


def test_instance_id_override(monkeypatch):
  monkeypatch.setenv("PUSHENGINE_SCHEDULER_INSTANCE_ID", "worker-7")
  assert get_settings().scheduler_instance_id == "worker-7"


@pytest.mark.parametrize(
  ("key", "value"),
  [("PUSHENGINE_EXPO_MAX_BATCH_SIZE", "101"), ("PUSHENGINE_SCHEDULER_POLL_SECONDS", "0"), ("PUSHENGINE_EXPO_PUSH_URL", "http://exp.host/push"), ("PUSHENGINE_FCM_ENABLED", "true")],
)
def test_invalid_values_fail_fast(monkeypatch, key, value):
  monkeypatch.setenv(key, value)
  with pytest.raises(ValueError):
    get_settings()


def test_lease_must_cover_poll_interval(monkeypatch):
  monkeypatch.setenv("PUSHENGINE_SCHEDULER_POLL_SECONDS", "120")
  monkeypatch.setenv("PUSHENGINE_SCHEDULER_LEASE_SECONDS", "60")
  with pytest.raises(ValueError):
    get_settings()
