# ccbacktest/prices.py
from __future__ import annotations

import logging
import math
from datetime import date, datetime, timedelta
from typing import List, Optional, Sequence, Union

import pandas as pd
import requests

from .config import get_settings
from .models import PriceBar, to_date
from .paths import yf_price_cache_file
from .symbols import to_yahoo_ticker

logger = logging.getLogger(__name__)

PRICE_COLUMNS = ["date", "close", "adj_close"]


class PriceDataError(ValueError):
    """Price series that cannot be fed to the backtest engine."""


def _to_naive_dt(dt: Union[str, date, datetime]) -> datetime:
    if isinstance(dt, datetime):
        return dt
    return datetime.combine(to_date(dt), datetime.min.time())


def fetch_yahoo_daily(
    ticker: str,
    start: Union[str, date, datetime],
    end: Union[str, date, datetime],
    *,
    session: Optional[requests.Session] = None,
) -> List[PriceBar]:
    """
    Download daily bars from the Yahoo chart API.

    Parameters
    ----------
    ticker : str
        Raw ticker; normalized with :func:`to_yahoo_ticker`.
    start, end : date | datetime | str
        Inclusive date range.
    session : requests.Session, optional
        Reused when given (tests inject a fake here).

    Returns
    -------
    list[PriceBar]
        Ascending bars; rows without a finite close are skipped and a missing
        adjusted close falls back to the close.
    """
    s = get_settings()
    start_dt = _to_naive_dt(start)
    # Yahoo's chart API treats period2 as exclusive
    end_dt = _to_naive_dt(end) + timedelta(days=1)
    if end_dt <= start_dt:
        raise PriceDataError("Invalid time range")

    if session is None:
        session = requests.Session()
        session.headers.update(
            {
                "User-Agent": "Mozilla/5.0 (compatible; YahooFinanceClient/1.0)",
                "Accept": "application/json, text/plain, */*",
            }
        )

    url = s.yahoo_chart_url.format(ticker=to_yahoo_ticker(ticker))
    params = {
        "period1": int(start_dt.timestamp()),
        "period2": int(end_dt.timestamp()),
        "interval": "1d",
        "includePrePost": "false",
        "events": "div,splits",
    }
    resp = session.get(url, params=params, timeout=s.request_timeout)
    resp.raise_for_status()
    return parse_chart_payload(resp.json())


def parse_chart_payload(payload: dict) -> List[PriceBar]:
    """Turn a Yahoo v8 chart response into ``PriceBar`` rows."""
    try:
        result = payload["chart"]["result"][0]
        ts = result.get("timestamp") or []
        closes = result["indicators"]["quote"][0].get("close") or []
    except (KeyError, IndexError, TypeError):
        raise PriceDataError("Unexpected response structure or no data returned")

    try:
        adj = result["indicators"]["adjclose"][0].get("adjclose") or closes
    except (KeyError, IndexError, TypeError):
        adj = closes

    bars: List[PriceBar] = []
    for i, t in enumerate(ts):
        close = closes[i] if i < len(closes) else None
        if close is None or not math.isfinite(close):
            continue
        adj_close = adj[i] if i < len(adj) else None
        if adj_close is None or not math.isfinite(adj_close):
            adj_close = close
        day = pd.to_datetime(t, unit="s").date()
        bars.append(PriceBar(date=day, close=float(close), adj_close=float(adj_close)))
    if not bars:
        raise PriceDataError("No data returned from Yahoo Finance")
    return bars


# ---------------------------------------------------------
# DataFrame <-> bars
# ---------------------------------------------------------

def bars_to_frame(bars: Sequence[PriceBar]) -> pd.DataFrame:
    return pd.DataFrame(
        {
            "date": [b.date for b in bars],
            "close": [b.close for b in bars],
            "adj_close": [b.adj_close for b in bars],
        },
        columns=PRICE_COLUMNS,
    )


def bars_from_frame(df: pd.DataFrame) -> List[PriceBar]:
    out: List[PriceBar] = []
    has_adj = "adj_close" in df.columns
    for row in df.itertuples(index=False):
        adj = row.adj_close if has_adj else None
        if adj is not None and pd.isna(adj):
            adj = None
        out.append(PriceBar(date=pd.Timestamp(row.date).date(), close=float(row.close),
                            adj_close=None if adj is None else float(adj)))
    return out


def load_price_bars(
    ticker: str,
    start_date: str,
    end_date: str,
    *,
    use_cache: bool = True,
    session: Optional[requests.Session] = None,
) -> List[PriceBar]:
    """
    Daily bars for *ticker* in [start_date, end_date], cached as CSV.

    The cache under data/yfinance/prices/{TICKER}_prices.csv is reused when it
    spans the requested window (start within a week, end at or past the last
    weekday on or before the requested end) and was refreshed no earlier than
    that weekday.
    """
    cache_file = yf_price_cache_file(to_yahoo_ticker(ticker))
    requested_start = to_date(start_date)
    requested_end = to_date(end_date)

    today = date.today()
    # Weekend guard: markets closed, the last bar is the previous Friday
    last_weekday = today - timedelta(days=max(0, today.weekday() - 4))
    effective_end = min(requested_end, last_weekday)

    if use_cache and cache_file.exists():
        try:
            cached = pd.read_csv(cache_file, parse_dates=["date"])
            if not cached.empty:
                cached_start = cached["date"].min().date()
                cached_end = cached["date"].max().date()
                file_mod_date = datetime.fromtimestamp(cache_file.stat().st_mtime).date()
                fresh = file_mod_date >= last_weekday or requested_end < last_weekday
                if (cached_start - requested_start).days <= 7 and cached_end >= effective_end and fresh:
                    window = cached.loc[
                        (cached["date"].dt.date >= requested_start) & (cached["date"].dt.date <= requested_end)
                    ]
                    if not window.empty:
                        logger.debug(f"price cache hit: {cache_file}")
                        return bars_from_frame(window)
        except (OSError, ValueError, KeyError) as e:
            logger.warning(f"Ignoring unreadable price cache {cache_file}: {e}")

    bars = fetch_yahoo_daily(ticker, requested_start, requested_end, session=session)
    bars_to_frame(bars).to_csv(cache_file, index=False)
    return bars


# ---------------------------------------------------------
# Caller-side validation (the engine does not check these)
# ---------------------------------------------------------

def validate_price_bars(bars: Sequence[PriceBar], min_bars: Optional[int] = None) -> None:
    """Raise :class:`PriceDataError` unless *bars* meets the engine's input contract.

    Checks: at least ``min_bars`` bars (default ``Settings.min_bars``),
    strictly ascending dates, positive finite prices.
    """
    min_bars = get_settings().min_bars if min_bars is None else min_bars
    if len(bars) < min_bars:
        raise PriceDataError(f"Too few bars: {len(bars)} < {min_bars}; widen the date range")
    prev: Optional[date] = None
    for b in bars:
        if prev is not None and b.date <= prev:
            raise PriceDataError(f"Dates not strictly ascending at {b.date}")
        if not math.isfinite(b.price) or b.price <= 0:
            raise PriceDataError(f"Invalid price {b.price!r} on {b.date}")
        prev = b.date
