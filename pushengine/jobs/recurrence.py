"""Next-fire-time arithmetic for recurring notification jobs."""

from __future__ import annotations

import calendar
from datetime import datetime, timedelta

from pushengine.jobs.models import Frequency

_FIXED_STEPS = {Frequency.HOURLY: timedelta(hours=1), Frequency.DAILY: timedelta(days=1), Frequency.WEEKLY: timedelta(weeks=1)}


def add_months(value: datetime, months: int) -> datetime:
  """Add calendar months, clamping the day to the end of the target month."""
  month_index = value.month - 1 + months
  year = value.year + month_index // 12
  month = month_index % 12 + 1
  day = min(value.day, calendar.monthrange(year, month)[1])
  return value.replace(year=year, month=month, day=day)


def _advance(anchor: datetime, frequency: Frequency, steps: int) -> datetime:
  if frequency == Frequency.MONTHLY:
    return add_months(anchor, steps)
  return anchor + _FIXED_STEPS[frequency] * steps


def next_send_at(anchor: datetime, frequency: Frequency) -> datetime | None:
  """Return the fire time one unit after the anchor, or None for ONCE."""
  if frequency == Frequency.ONCE:
    return None
  return _advance(anchor, frequency, 1)


def next_occurrence_after(anchor: datetime, frequency: Frequency, now: datetime) -> datetime | None:
  """
  Return the first occurrence on the anchor's grid that is strictly after now.

  Missed occurrences are skipped, so a scheduler that was down for a while fires once
  and then resumes its regular cadence. Steps are always counted from the anchor so
  MONTHLY clamping (Jan 31 -> Feb 28) does not shift later months.
  """
  if frequency == Frequency.ONCE:
    return None

  if frequency == Frequency.MONTHLY:
    # The month difference is a lower bound on the step count.
    steps = max(1, (now.year - anchor.year) * 12 + (now.month - anchor.month))
  else:
    unit = _FIXED_STEPS[frequency]
    steps = max(1, (now - anchor) // unit + 1) if now >= anchor else 1

  candidate = _advance(anchor, frequency, steps)
  while candidate <= now:
    steps += 1
    candidate = _advance(anchor, frequency, steps)
  return candidate
