from __future__ import annotations
"""Run one backtest per target delta over the same bars.

Each variant is an independent, pure engine call, so they can be spread over
a process pool; the default is to run them one after another.
"""
import logging
from concurrent.futures import ProcessPoolExecutor
from typing import Dict, Iterable, List, Optional, Sequence

from .backtest_core import run_backtest
from .models import BacktestParams, BacktestResult, DateLike, PriceBar, to_date_set

logger = logging.getLogger(__name__)


def _run_variant(bars: Sequence[PriceBar], params: BacktestParams, delta: float) -> BacktestResult:
    return run_backtest(bars, params=params.with_overrides(target_delta=delta))


def compare_target_deltas(
    bars: Sequence[PriceBar],
    earnings_dates: Optional[Iterable[DateLike]],
    params: BacktestParams,
    deltas: Iterable[float],
    *,
    max_workers: Optional[int] = None,
) -> Dict[float, BacktestResult]:
    """Backtest *params* once per value in *deltas*.

    Parameters
    ----------
    bars, earnings_dates, params
        As for :func:`ccbacktest.backtest_core.run_backtest`.
    deltas : iterable of float
        Target deltas to try. Duplicates are run once.
    max_workers : int, optional
        ``> 1`` runs the variants in a ``ProcessPoolExecutor``.

    Returns
    -------
    dict
        ``{delta: BacktestResult}`` in the order the deltas were given.
    """
    unique: List[float] = list(dict.fromkeys(float(d) for d in deltas))
    if earnings_dates is not None:
        params = params.with_overrides(earnings_dates=to_date_set(earnings_dates))
    bars = list(bars)

    if not max_workers or max_workers <= 1 or len(unique) <= 1:
        return {d: _run_variant(bars, params, d) for d in unique}

    logger.info(f"comparing {len(unique)} deltas on {max_workers} workers")
    with ProcessPoolExecutor(max_workers=max_workers) as pool:
        futures = [pool.submit(_run_variant, bars, params, d) for d in unique]
        return {d: f.result() for d, f in zip(unique, futures)}
