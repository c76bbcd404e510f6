"""Database retry logic with retryable vs non-retryable error classification."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

logger = logging.getLogger(__name__)

T = TypeVar("T")

ROLLED_BACK_CATEGORIES = frozenset({"serialization_conflict", "deadlock"})
_RETRYABLE_SQLSTATES = {"40001": "serialization_conflict", "40P01": "deadlock"}
_CONNECTIVITY_PATTERNS = ("connection", "timeout", "reset", "network", "broken pipe", "lost connection")


@dataclass(frozen=True)
class DBFailureClassification:
  """Classification result for a database failure."""

  retryable: bool
  reason: str
  sqlstate: str | None
  category: str


def _extract_sqlstate(exc: Exception) -> str | None:
  """Extract Postgres SQLSTATE from a SQLAlchemy exception."""
  if isinstance(exc, DBAPIError) and exc.orig is not None:
    # asyncpg exposes sqlstate; psycopg exposes pgcode.
    for attribute in ("sqlstate", "pgcode"):
      value = getattr(exc.orig, attribute, None)
      if value:
        return str(value)
  return None


def classify_db_failure(exc: Exception) -> DBFailureClassification:
  """
  Classify a database failure as retryable or non-retryable.

  Retryable: serialization failures (40001), deadlocks (40P01) and dropped connections.
  Everything else (integrity 23xxx, schema 42xxx, auth 28xxx, programming errors) fails fast.
  """
  sqlstate = _extract_sqlstate(exc)

  if sqlstate in _RETRYABLE_SQLSTATES:
    return DBFailureClassification(retryable=True, reason=f"Transient transaction failure ({sqlstate})", sqlstate=sqlstate, category=_RETRYABLE_SQLSTATES[sqlstate])

  if (sqlstate and sqlstate.startswith("23")) or isinstance(exc, IntegrityError):
    return DBFailureClassification(retryable=False, reason="Integrity constraint violation", sqlstate=sqlstate, category="integrity_error")

  if sqlstate and sqlstate.startswith("42"):
    return DBFailureClassification(retryable=False, reason="Schema/SQL error (undefined table/column, syntax error)", sqlstate=sqlstate, category="schema_error")

  if sqlstate and sqlstate.startswith("28"):
    return DBFailureClassification(retryable=False, reason="Authentication/permission error", sqlstate=sqlstate, category="permission_error")

  if isinstance(exc, OperationalError):
    error_msg = str(exc).lower()
    if any(pattern in error_msg for pattern in _CONNECTIVITY_PATTERNS):
      return DBFailureClassification(retryable=True, reason="Transient connection/network error", sqlstate=sqlstate, category="connectivity_error")
    return DBFailureClassification(retryable=False, reason="Operational error (unknown cause)", sqlstate=sqlstate, category="operational_error_unknown")

  return DBFailureClassification(retryable=False, reason=f"Unknown error type: {type(exc).__name__}", sqlstate=sqlstate, category="unknown_error")


async def execute_with_retry(
  *, operation_name: str, func: Callable[[], Awaitable[T]], max_attempts: int = 3, initial_backoff_ms: int = 100, max_backoff_ms: int = 2000, jitter: bool = True, retry_categories: frozenset[str] | None = None
) -> T:
  """
  Execute a database operation, retrying transient failures with exponential backoff.

  Operations that are not idempotent pass retry_categories to restrict retries to
  failures that are known to have rolled back (serialization conflicts, deadlocks).

  Raises the original exception when the failure is non-retryable or attempts are exhausted.
  """
  attempt = 0
  while True:
    attempt += 1
    try:
      result = await func()
    except Exception as exc:
      classification = classify_db_failure(exc)
      logger.warning(
        "DB operation failed: operation=%s, attempt=%d/%d, category=%s, sqlstate=%s, retryable=%s, reason=%s",
        operation_name,
        attempt,
        max_attempts,
        classification.category,
        classification.sqlstate or "none",
        classification.retryable,
        classification.reason,
      )
      retryable = classification.retryable and (retry_categories is None or classification.category in retry_categories)
      if not retryable or attempt >= max_attempts:
        raise

      backoff_ms = min(initial_backoff_ms * (2 ** (attempt - 1)), max_backoff_ms)
      if jitter:
        jitter_range = backoff_ms * 0.25
        backoff_ms += random.uniform(-jitter_range, jitter_range)
      await asyncio.sleep(backoff_ms / 1000.0)
      continue

    if attempt > 1:
      logger.info("DB operation succeeded after retry: operation=%s, attempt=%d/%d", operation_name, attempt, max_attempts)
    return result
