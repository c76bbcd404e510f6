from __future__ import annotations

from fastapi import FastAPI

from pushengine import __version__
from pushengine.core.lifespan import lifespan

app = FastAPI(lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)


@app.get("/health", include_in_schema=False)
async def health_check() -> dict[str, str]:
  """Return a simple health status."""
  scheduler_state = "running" if getattr(app.state, "notifications", None) is not None and app.state.notifications.scheduler.running else "stopped"
  return {"status": "ok", "version": __version__, "scheduler": scheduler_state}
