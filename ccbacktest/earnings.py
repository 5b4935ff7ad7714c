from __future__ import annotations
import logging
from datetime import date, datetime
from pathlib import Path
from typing import Iterable, List, Optional, Set, Union

import pandas as pd
import yfinance as yf

from .config import get_settings
from .models import to_date
from .paths import yf_earnings_cache_file
from .symbols import to_yahoo_ticker

logger = logging.getLogger(__name__)

# A one-row cache file carrying one of these columns means "nothing to avoid today"
SENTINEL_FLAGS = ("no_earnings_flag", "error_flag")


# ---------------------------------------------------------
# Cache file helpers
# ---------------------------------------------------------

def _written_today(cache_file: Path) -> bool:
    if not cache_file.exists():
        return False
    modified = datetime.fromtimestamp(cache_file.stat().st_mtime).date()
    if modified != date.today():
        logger.info(f"Earnings cache {cache_file} outdated; mod={modified}")
        return False
    return True


def _read_cache(cache_file: Path) -> Optional[List[date]]:
    """Cached earnings dates; ``[]`` for a sentinel row, ``None`` when unreadable."""
    try:
        cached = pd.read_csv(cache_file, parse_dates=["earnings_date"])
    except (OSError, ValueError, KeyError) as e:
        logger.warning(f"Ignoring unreadable earnings cache {cache_file}: {e}")
        return None
    if len(cached) == 1 and any(flag in cached.columns and bool(cached.iloc[0][flag]) for flag in SENTINEL_FLAGS):
        return []
    return [ts.date() for ts in cached["earnings_date"]]


def _write_sentinel(cache_file: Path, flag: str, message: Optional[str] = None) -> None:
    today = date.today()
    row = {"earnings_date": [today], flag: [True], "checked_until": [today.strftime("%Y-%m-%d")]}
    if message is not None:
        row["error_message"] = [message]
    pd.DataFrame(row).to_csv(cache_file, index=False)


def _between(dates: Iterable[date], start_dt: date, end_dt: date) -> Set[date]:
    return {d for d in dates if start_dt <= d <= end_dt}


# ---------------------------------------------------------
# Public API
# ---------------------------------------------------------

def get_earnings_dates(
    ticker: str,
    start_date: Union[str, date],
    end_date: Union[str, date],
) -> Set[date]:
    """Known earnings dates for *ticker* within [start_date, end_date].

    yfinance is asked at most once a day per ticker: the full list goes to
    data/yfinance/earnings/{TICKER}_earnings.csv and same-day calls read it
    back. An empty answer or a failure is cached as a one-row sentinel
    (``no_earnings_flag`` / ``error_flag``) and yields an empty set, so the
    backtest then runs without earnings avoidance instead of failing.
    """
    start_dt, end_dt = to_date(start_date), to_date(end_date)
    yf_ticker = to_yahoo_ticker(ticker)
    cache_file = yf_earnings_cache_file(yf_ticker)

    if _written_today(cache_file):
        cached = _read_cache(cache_file)
        if cached is not None:
            logger.debug(f"earnings cache hit: {cache_file}")
            return _between(cached, start_dt, end_dt)

    try:
        logger.info(f"Fetching earnings dates from yfinance for {ticker}")
        df = yf.Ticker(yf_ticker).get_earnings_dates(limit=get_settings().earnings_fetch_limit)
    # yfinance surfaces scraping, HTTP and parsing failures as assorted exception types
    except Exception as e:
        logger.warning(f"Unable to fetch earnings dates for {ticker}: {e}")
        _write_sentinel(cache_file, "error_flag", str(e))
        return set()

    if df is None or df.empty:
        _write_sentinel(cache_file, "no_earnings_flag")
        return set()

    all_dates = sorted({pd.Timestamp(idx).date() for idx in df.index})
    pd.DataFrame({"earnings_date": all_dates}).to_csv(cache_file, index=False)
    return _between(all_dates, start_dt, end_dt)
