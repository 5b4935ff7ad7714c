from datetime import date, timedelta

import pytest

from ccbacktest.cycles import cycle_index_of, flatten_boundaries, generate_cycle_boundaries
from ccbacktest.models import Cycle

YEAR_END = ["2024-12-30", "2024-12-31", "2025-01-02", "2025-01-03", "2025-01-06", "2025-01-07"]


def test_weekly_splits_new_year_week_at_jan_1():
    weekly = generate_cycle_boundaries(YEAR_END, "weekly")
    # Dec 30 2024 .. Jan 3 2025 is ISO week 1, split at the calendar year
    assert weekly == [Cycle(0, 1), Cycle(2, 3), Cycle(4, 5)]
    flat = flatten_boundaries(weekly)
    assert len(flat) % 2 == 0
    assert flat[0] == 0


def test_weekly_first_two_days_share_a_week():
    weekly = flatten_boundaries(generate_cycle_boundaries(YEAR_END[:2] + ["2025-01-06"], "weekly"))
    assert weekly[:2] == [0, 1]


def test_monthly_splits_on_calendar_month():
    monthly = generate_cycle_boundaries(YEAR_END, "monthly")
    assert monthly == [Cycle(0, 1), Cycle(2, 5)]
    assert flatten_boundaries(monthly)[2] == 2


def test_cycles_partition_series_without_gaps():
    start = date(2024, 1, 1)
    dates = [start + timedelta(days=i) for i in range(120) if (start + timedelta(days=i)).weekday() < 5]
    for freq in ("weekly", "monthly"):
        cycles = generate_cycle_boundaries(dates, freq)
        assert cycles[0].start_index == 0
        assert cycles[-1].end_index == len(dates) - 1
        for a, b in zip(cycles, cycles[1:]):
            assert b.start_index == a.end_index + 1
        assert cycle_index_of(cycles) == sorted(cycle_index_of(cycles))
        assert len(cycle_index_of(cycles)) == len(dates)


def test_empty_and_bad_frequency():
    assert generate_cycle_boundaries([], "weekly") == []
    with pytest.raises(ValueError):
        generate_cycle_boundaries(YEAR_END, "daily")
