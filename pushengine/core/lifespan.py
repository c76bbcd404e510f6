import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from urllib.parse import urlparse

from fastapi import FastAPI

from pushengine.config import get_settings
from pushengine.core.database import dispose_engine
from pushengine.core.logging import initialize_logging
from pushengine.notifications.factory import build_runtime


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Initialize logging, wire the delivery core and run the scheduler for the app's lifetime."""
  settings = get_settings()
  logger = logging.getLogger("pushengine.core.lifespan")

  initialize_logging(settings)
  logger.info("Starting push engine env=%s database=%s", settings.environment, _redact_dsn(settings.pg_dsn))

  runtime = build_runtime(settings)
  app.state.notifications = runtime

  if settings.scheduler_enabled:
    runtime.scheduler.start()
  else:
    logger.info("Notification scheduler disabled by configuration.")

  try:
    yield
  finally:
    await runtime.scheduler.stop()
    await dispose_engine()


def _redact_dsn(raw: str | None) -> str:
  """Redact credentials from a DSN while keeping host/db visible."""
  if not raw:
    return "<unset>"

  parsed = urlparse(raw)
  if not parsed.scheme:
    return "<invalid>"

  user = parsed.username or ""
  host = parsed.hostname or ""
  port = f":{parsed.port}" if parsed.port else ""
  netloc = f"{user}@{host}{port}" if user else f"{host}{port}"
  database = parsed.path.lstrip("/")
  path = f"/{database}" if database else ""
  return f"{parsed.scheme}://{netloc}{path}"
