# ccbacktest/paths.py
from __future__ import annotations

import os
from pathlib import Path

# Root project directory (one parent up from this file: ccbacktest/)
ROOT_DIR = Path(__file__).resolve().parents[1]

# Cache and output directories
DATA_ROOT = Path(os.getenv("CCBACKTEST_DATA_ROOT", str(ROOT_DIR / "data"))).resolve()
YF_PRICE_DIR = DATA_ROOT / "yfinance" / "prices"
YF_EARNINGS_DIR = DATA_ROOT / "yfinance" / "earnings"
PLOT_DIR = DATA_ROOT / "covered_call_plots"
EXPORT_DIR = DATA_ROOT / "exports"


def ensure_dir(p: str | Path) -> None:
    """Ensure directory exists."""
    Path(p).mkdir(parents=True, exist_ok=True)


# -----------------------------
# Historical prices
# -----------------------------

def yf_price_cache_file(ticker: str) -> Path:
    """
    CSV cache file for Yahoo Finance daily bars (close + adjclose).
    Example: data/yfinance/prices/AAPL_prices.csv
    """
    ensure_dir(YF_PRICE_DIR)
    return YF_PRICE_DIR / f"{ticker.upper()}_prices.csv"


# -----------------------------
# Earnings
# -----------------------------

def yf_earnings_cache_file(ticker: str) -> Path:
    """
    CSV cache file for Yahoo Finance earnings dates.
    """
    ensure_dir(YF_EARNINGS_DIR)
    return YF_EARNINGS_DIR / f"{ticker.upper()}_earnings.csv"


# -----------------------------
# Backtest outputs
# -----------------------------

def export_csv_file(ticker: str, start: str, end: str) -> Path:
    """CSV export path, named like the dashboard download: TICKER_start_end_results.csv"""
    ensure_dir(EXPORT_DIR)
    return EXPORT_DIR / f"{(ticker.strip() or 'backtest').upper()}_{start}_{end}_results.csv"
