"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
import socket
from dataclasses import dataclass
from functools import lru_cache

from pushengine.utils.env import default_env_path, load_env_file

load_env_file(default_env_path(), override=False)

_ENV_PREFIX = "PUSHENGINE_"
DEFAULT_EXPO_PUSH_URL = "https://exp.host/--/api/v2/push/send"


@dataclass(frozen=True)
class Settings:
  """Typed settings for the push delivery service."""

  environment: str
  debug: bool
  pg_dsn: str | None
  pg_connect_timeout: int
  log_max_bytes: int
  log_backup_count: int
  scheduler_enabled: bool
  scheduler_poll_seconds: float
  scheduler_batch_limit: int
  scheduler_lease_seconds: int
  scheduler_max_concurrent_jobs: int
  scheduler_instance_id: str
  expo_enabled: bool
  expo_push_url: str
  expo_access_token: str | None
  expo_timeout_seconds: float
  expo_max_batch_size: int
  fcm_enabled: bool
  firebase_project_id: str | None
  firebase_service_account_json_path: str | None
  fcm_timeout_seconds: float
  fcm_max_batch_size: int
  dispatch_max_concurrent_chunks: int


@dataclass(frozen=True)
class DatabaseSettings:
  """Typed settings for database connectivity."""

  debug: bool
  pg_dsn: str | None
  pg_connect_timeout: int


def _env(name: str) -> str | None:
  return os.getenv(f"{_ENV_PREFIX}{name}")


def _parse_bool(raw: str | None, *, default: bool = False) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None or raw.strip() == "":
    return default

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  if value == "":
    return None
  return value


def _positive_int(name: str, default: str, *, maximum: int | None = None) -> int:
  value = int(_env(name) or default)
  if value <= 0:
    raise ValueError(f"{_ENV_PREFIX}{name} must be a positive integer.")
  if maximum is not None and value > maximum:
    raise ValueError(f"{_ENV_PREFIX}{name} must not exceed {maximum}.")
  return value


def _positive_float(name: str, default: str) -> float:
  value = float(_env(name) or default)
  if value <= 0:
    raise ValueError(f"{_ENV_PREFIX}{name} must be a positive number.")
  return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = (_env("ENV") or "development").lower()
  debug = _parse_bool(_env("DEBUG"))

  log_max_bytes = _positive_int("LOG_MAX_BYTES", "5242880")
  log_backup_count = int(_env("LOG_BACKUP_COUNT") or "10")
  if log_backup_count < 0:
    raise ValueError("PUSHENGINE_LOG_BACKUP_COUNT must be zero or a positive integer.")

  scheduler_lease_seconds = _positive_int("SCHEDULER_LEASE_SECONDS", "300")
  scheduler_poll_seconds = _positive_float("SCHEDULER_POLL_SECONDS", "60")
  # A lease shorter than one poll interval lets a slow job be claimed twice.
  if scheduler_lease_seconds < scheduler_poll_seconds:
    raise ValueError("PUSHENGINE_SCHEDULER_LEASE_SECONDS must be at least PUSHENGINE_SCHEDULER_POLL_SECONDS.")

  expo_enabled = _parse_bool(_env("EXPO_ENABLED"), default=True)
  expo_push_url = (_env("EXPO_PUSH_URL") or DEFAULT_EXPO_PUSH_URL).strip()
  if expo_enabled and not expo_push_url.startswith("https://"):
    raise ValueError("PUSHENGINE_EXPO_PUSH_URL must use https.")

  fcm_enabled = _parse_bool(_env("FCM_ENABLED"))
  firebase_project_id = _optional_str(os.getenv("FIREBASE_PROJECT_ID"))
  if fcm_enabled and not firebase_project_id:
    raise ValueError("FIREBASE_PROJECT_ID must be set when FCM delivery is enabled.")

  return Settings(
    environment=environment,
    debug=debug,
    pg_dsn=_optional_str(_env("PG_DSN")) or _optional_str(os.getenv("DATABASE_URL")),
    pg_connect_timeout=_positive_int("PG_CONNECT_TIMEOUT", "5"),
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    scheduler_enabled=_parse_bool(_env("SCHEDULER_ENABLED"), default=True),
    scheduler_poll_seconds=scheduler_poll_seconds,
    scheduler_batch_limit=_positive_int("SCHEDULER_BATCH_LIMIT", "100"),
    scheduler_lease_seconds=scheduler_lease_seconds,
    scheduler_max_concurrent_jobs=_positive_int("SCHEDULER_MAX_CONCURRENT_JOBS", "4"),
    scheduler_instance_id=_optional_str(_env("SCHEDULER_INSTANCE_ID")) or f"{socket.gethostname()}:{os.getpid()}",
    expo_enabled=expo_enabled,
    expo_push_url=expo_push_url,
    expo_access_token=_optional_str(_env("EXPO_ACCESS_TOKEN")),
    expo_timeout_seconds=_positive_float("EXPO_TIMEOUT_SECONDS", "15"),
    expo_max_batch_size=_positive_int("EXPO_MAX_BATCH_SIZE", "100", maximum=100),
    fcm_enabled=fcm_enabled,
    firebase_project_id=firebase_project_id,
    firebase_service_account_json_path=_optional_str(os.getenv("FIREBASE_SERVICE_ACCOUNT_JSON_PATH")),
    fcm_timeout_seconds=_positive_float("FCM_TIMEOUT_SECONDS", "30"),
    fcm_max_batch_size=_positive_int("FCM_MAX_BATCH_SIZE", "500", maximum=500),
    dispatch_max_concurrent_chunks=_positive_int("DISPATCH_MAX_CONCURRENT_CHUNKS", "4"),
  )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
  """Load database settings without requiring the delivery channel configuration."""
  pg_connect_timeout = int(_env("PG_CONNECT_TIMEOUT") or "5")
  if pg_connect_timeout <= 0:
    raise ValueError("PUSHENGINE_PG_CONNECT_TIMEOUT must be a positive integer.")

  pg_dsn = _optional_str(_env("PG_DSN")) or _optional_str(os.getenv("DATABASE_URL"))
  return DatabaseSettings(debug=_parse_bool(_env("DEBUG")), pg_dsn=pg_dsn, pg_connect_timeout=pg_connect_timeout)
