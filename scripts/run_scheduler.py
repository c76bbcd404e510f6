"""Run the notification scheduler outside the web service.

Use `--once` from cron-style runners; without it the loop polls until interrupted.
"""

import argparse
import asyncio
import logging
import os
import sys

# Add the project root to the path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from pushengine.config import get_settings  # noqa: E402
from pushengine.core.database import dispose_engine  # noqa: E402
from pushengine.core.logging import initialize_logging  # noqa: E402
from pushengine.notifications.factory import build_runtime  # noqa: E402

logger = logging.getLogger("pushengine.scripts.run_scheduler")


async def _run(*, once: bool) -> int:
  settings = get_settings()
  initialize_logging(settings)
  runtime = build_runtime(settings)
  try:
    if once:
      outcomes = await runtime.scheduler.tick()
      executed = sum(1 for outcome in outcomes if outcome.executed)
      logger.info("Scheduler tick finished: jobs=%d executed=%d", len(outcomes), executed)
      return 0 if executed == len(outcomes) else 1
    await runtime.scheduler.run_forever()
    return 0
  finally:
    await dispose_engine()


def main() -> None:
  parser = argparse.ArgumentParser(description="Fire due notification jobs.")
  parser.add_argument("--once", action="store_true", help="Run a single scheduler tick and exit.")
  args = parser.parse_args()

  try:
    exit_code = asyncio.run(_run(once=args.once))
  except KeyboardInterrupt:
    exit_code = 0
  sys.exit(exit_code)


if __name__ == "__main__":
  main()
