from __future__ import annotations
from datetime import date
from typing import List, Sequence, Union

import numpy as np
import pandas as pd

from .models import Cycle, Frequency

# ---------------------------------------------------------
# Option cycle partitioning (weekly by ISO week, monthly by calendar month)
# ---------------------------------------------------------


def _cycle_keys(dates: Sequence[Union[str, date]], freq: Frequency) -> np.ndarray:
    idx = pd.DatetimeIndex(pd.to_datetime(list(dates)))
    year = idx.year.to_numpy(dtype=np.int64) * 100
    if freq == "weekly":
        # ISO-8601 week number (Thursday anchored) within the calendar year, so
        # the week that straddles New Year is split at Jan 1
        return year + idx.isocalendar()["week"].to_numpy(dtype=np.int64)
    if freq == "monthly":
        return year + idx.month.to_numpy(dtype=np.int64)
    raise ValueError("freq must be 'weekly' or 'monthly'")


def generate_cycle_boundaries(dates: Sequence[Union[str, date]], freq: Frequency) -> List[Cycle]:
    """Partition an ascending date series into contiguous option cycles.

    Consecutive days that share an ISO week number (``weekly``) or a calendar
    month (``monthly``) within the same calendar year form one cycle. The
    cycles cover every index exactly once, in order.

    Parameters
    ----------
    dates : sequence of date | str
        Trading dates, ascending. ISO strings are accepted.
    freq : {"weekly", "monthly"}
        Cycle frequency.

    Returns
    -------
    list[Cycle]
        ``Cycle(start_index, end_index)`` pairs, both inclusive.
    """
    if freq not in ("weekly", "monthly"):
        raise ValueError("freq must be 'weekly' or 'monthly'")
    if len(dates) == 0:
        return []

    keys = _cycle_keys(dates, freq)
    cycles: List[Cycle] = []
    start = 0
    for i in range(1, len(keys)):
        if keys[i] != keys[i - 1]:
            cycles.append(Cycle(start, i - 1))
            start = i
    cycles.append(Cycle(start, len(keys) - 1))
    return cycles


def flatten_boundaries(cycles: Sequence[Cycle]) -> List[int]:
    """Flat ``[s0, e0, s1, e1, ...]`` form of *cycles*."""
    out: List[int] = []
    for c in cycles:
        out.extend((c.start_index, c.end_index))
    return out


def cycle_index_of(cycles: Sequence[Cycle]) -> List[int]:
    """Map every day index to the number of the cycle that contains it."""
    out: List[int] = []
    for n, c in enumerate(cycles):
        out.extend([n] * (c.end_index - c.start_index + 1))
    return out
