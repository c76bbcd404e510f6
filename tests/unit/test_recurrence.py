from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from pushengine.jobs.models import Frequency
from pushengine.jobs.recurrence import add_months, next_occurrence_after, next_send_at

ANCHOR = datetime(2025, 1, 31, 8, 30, tzinfo=UTC)


@pytest.mark.parametrize(
  ("frequency", "expected"),
  [
    (Frequency.HOURLY, ANCHOR + timedelta(hours=1)),
    (Frequency.DAILY, ANCHOR + timedelta(days=1)),
    (Frequency.WEEKLY, ANCHOR + timedelta(weeks=1)),
    (Frequency.MONTHLY, datetime(2025, 2, 28, 8, 30, tzinfo=UTC)),
  ],
)
def test_next_send_at_advances_one_unit(frequency, expected):
  assert next_send_at(ANCHOR, frequency) == expected


def test_next_send_at_once_has_no_successor():
  assert next_send_at(ANCHOR, Frequency.ONCE) is None


def test_add_months_clamps_to_month_end_and_rolls_year():
  assert add_months(datetime(2024, 1, 31, tzinfo=UTC), 1) == datetime(2024, 2, 29, tzinfo=UTC)
  assert add_months(datetime(2025, 11, 30, tzinfo=UTC), 3) == datetime(2026, 2, 28, tzinfo=UTC)


def test_monthly_grid_does_not_drift_after_short_month():
  # Feb clamps to the 28th but March returns to the 31st.
  now = datetime(2025, 3, 1, tzinfo=UTC)
  assert next_occurrence_after(ANCHOR, Frequency.MONTHLY, now) == datetime(2025, 3, 31, 8, 30, tzinfo=UTC)


def test_missed_occurrences_are_skipped():
  anchor = datetime(2025, 3, 1, 9, 0, tzinfo=UTC)
  now = datetime(2025, 3, 5, 12, 0, tzinfo=UTC)
  assert next_occurrence_after(anchor, Frequency.DAILY, now) == datetime(2025, 3, 6, 9, 0, tzinfo=UTC)


def test_occurrence_equal_to_now_is_not_returned():
  anchor = datetime(2025, 3, 1, 9, 0, tzinfo=UTC)
  now = anchor + timedelta(hours=3)
  assert next_occurrence_after(anchor, Frequency.HOURLY, now) == anchor + timedelta(hours=4)


def test_future_anchor_yields_first_step():
  anchor = datetime(2025, 3, 10, 9, 0, tzinfo=UTC)
  now = anchor - timedelta(days=2)
  assert next_occurrence_after(anchor, Frequency.WEEKLY, now) == anchor + timedelta(weeks=1)
