import logging
import logging.handlers
import sys
import time
import traceback
from pathlib import Path
from types import TracebackType

from pushengine.config import Settings

LOG_LINE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%H:%M:%S"

_LOG_FILE_PATH: Path | None = None
_LOGGING_INITIALIZED = False

# Third-party loggers that flood DEBUG output during batch sends.
_NOISY_LOGGERS = ("httpx", "httpcore", "urllib3", "google.auth", "asyncio")


class TruncatedFormatter(logging.Formatter):
  """Formatter that keeps only the head and tail of a stack trace."""

  # ruff: noqa: N802
  def formatException(self, ei: tuple[type[BaseException] | None, BaseException | None, TracebackType | None]) -> str:
    lines = traceback.format_exception(*ei)
    if len(lines) > 6:
      return "".join(lines[:1] + ["    ...\n"] + lines[-5:])
    return "".join(lines)


def _build_handlers(settings: Settings) -> tuple[logging.Handler, logging.Handler, Path]:
  """Create a stdout handler and a rotating file handler under <repo>/logs."""
  log_dir = Path(__file__).resolve().parents[2] / "logs"
  try:
    log_dir.mkdir(parents=True, exist_ok=True)
  except OSError as exc:
    raise RuntimeError(f"Failed to create log directory at {log_dir}: {exc}") from exc

  log_path = log_dir / f"pushengine_{time.strftime('%Y%m%d_%H%M%S')}.log"

  stream = logging.StreamHandler(sys.stdout)
  stream.setFormatter(TruncatedFormatter(LOG_LINE_FORMAT, datefmt=LOG_DATE_FORMAT))

  file_handler = logging.handlers.RotatingFileHandler(log_path, encoding="utf-8", maxBytes=settings.log_max_bytes, backupCount=settings.log_backup_count)

  # app.log.1 -> app.log-1
  def custom_namer(default_name: str) -> str:
    parts = default_name.rsplit(".", 1)
    if len(parts) == 2 and parts[1].isdigit():
      return f"{parts[0]}-{parts[1]}"
    return default_name

  file_handler.namer = custom_namer
  file_handler.setFormatter(logging.Formatter(LOG_LINE_FORMAT, datefmt=LOG_DATE_FORMAT))
  return stream, file_handler, log_path


def setup_logging(settings: Settings) -> Path:
  """Route root and uvicorn loggers to the shared handlers."""
  stream_handler, file_handler, log_path = _build_handlers(settings)
  for logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi"):
    log = logging.getLogger(logger_name)
    log.handlers = [stream_handler, file_handler]
    log.propagate = False

  level = logging.DEBUG if settings.debug else logging.INFO
  logging.basicConfig(level=level, handlers=[stream_handler, file_handler], force=True)
  for logger_name in _NOISY_LOGGERS:
    logging.getLogger(logger_name).setLevel(logging.WARNING)
  return log_path


def initialize_logging(settings: Settings) -> None:
  """Initialize logging once per process."""
  global _LOG_FILE_PATH, _LOGGING_INITIALIZED
  if _LOGGING_INITIALIZED:
    return
  _LOG_FILE_PATH = setup_logging(settings)
  _LOGGING_INITIALIZED = True
  logging.getLogger("pushengine.core.logging").info("Logging initialized. Writing to %s", _LOG_FILE_PATH)
