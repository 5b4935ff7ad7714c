#!/usr/bin/env python3
from __future__ import annotations
import argparse
import logging
import os
import sys

# Allow running from a checkout without installing the package
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ccbacktest.backtest_core import run_backtest
from ccbacktest.comparison import compare_target_deltas
from ccbacktest.config import get_settings
from ccbacktest.earnings import get_earnings_dates
from ccbacktest.logging_setup import init_logging, timed
from ccbacktest.models import BacktestParams
from ccbacktest.paths import export_csv_file
from ccbacktest.prices import PriceDataError, load_price_bars, validate_price_bars

logger = logging.getLogger("run_backtest")


def _on_off(p: argparse.ArgumentParser, name: str, default: bool, help_: str) -> None:
    p.add_argument(f"--{name}", dest=name.replace("-", "_"), action=argparse.BooleanOptionalAction,
                   default=default, help=help_)


def parse_args(argv=None):
    s = get_settings()
    p = argparse.ArgumentParser(description="Covered call vs buy & hold backtest on daily Yahoo bars.")
    p.add_argument("-t", "--ticker", required=True, help="Underlying ticker, e.g. AAPL")
    p.add_argument("-s", "--start", required=True, help="Start date YYYY-MM-DD")
    p.add_argument("-e", "--end", required=True, help="End date YYYY-MM-DD")
    p.add_argument("--capital", type=float, default=s.initial_capital, help="Initial cash")
    p.add_argument("--shares", type=int, default=s.shares, help="Starting share count")
    p.add_argument("--rate", type=float, default=s.risk_free_rate, help="Risk-free rate r")
    p.add_argument("--div-yield", type=float, default=s.dividend_yield, help="Dividend yield q")
    p.add_argument("--delta", type=float, default=s.target_delta, help="Target call delta")
    p.add_argument("--freq", choices=["weekly", "monthly"], default="weekly")
    p.add_argument("--iv", type=float, default=None, help="Implied volatility override (e.g. 0.3)")
    _on_off(p, "reinvest", True, "Reinvest premium into shares")
    p.add_argument("--reinvest-threshold", type=int, default=s.premium_reinvest_share_threshold,
                   help="Buy only once premium covers this many shares")
    _on_off(p, "round-strike", True, "Round strikes to whole dollars")
    _on_off(p, "skip-earnings", False, "Skip cycles containing an earnings date")
    _on_off(p, "dynamic-contracts", True, "Size contracts from current shares")
    _on_off(p, "roll", True, "Roll up and out when delta/schedule triggers")
    p.add_argument("--roll-delta", type=float, default=s.roll_delta_threshold, help="Delta that triggers a roll")
    p.add_argument("--roll-days", type=int, default=None, help="Roll this many trading days before expiry (0-4)")
    p.add_argument("--entry-days", type=int, default=None,
                   help="Open the next cycle this many days before the current cycle ends (default: --roll-days)")
    p.add_argument("--compare-deltas", type=float, nargs="*", default=[], help="Extra target deltas to compare")
    p.add_argument("--workers", type=int, default=1, help="Processes for --compare-deltas")
    p.add_argument("--csv", action="store_true", help="Export the curve to CSV")
    p.add_argument("--plot", action="store_true", help="Save a chart PNG")
    p.add_argument("--show", action="store_true", help="Display the chart")
    p.add_argument("--log-level", default="INFO")
    return p.parse_args(argv)


def build_params(a: argparse.Namespace) -> BacktestParams:
    return BacktestParams(
        initial_capital=a.capital,
        shares=a.shares,
        r=a.rate,
        q=a.div_yield,
        target_delta=a.delta,
        freq=a.freq,
        iv_override=a.iv,
        reinvest_premium=a.reinvest,
        premium_reinvest_share_threshold=a.reinvest_threshold,
        round_strike_to_int=a.round_strike,
        skip_earnings_week=a.skip_earnings,
        dynamic_contracts=a.dynamic_contracts,
        enable_roll=a.roll,
        roll_delta_threshold=a.roll_delta,
        roll_days_before_expiry=a.roll_days,
        entry_days_before_cycle_end=a.entry_days,
    )


def main(argv=None):
    a = parse_args(argv)
    init_logging(a.log_level)

    try:
        bars = load_price_bars(a.ticker, a.start, a.end)
        validate_price_bars(bars)
    except PriceDataError as e:
        logger.error(f"{a.ticker}: {e}")
        return 1

    earnings = get_earnings_dates(a.ticker, a.start, a.end) if a.skip_earnings else set()
    params = build_params(a)

    with timed(f"backtest {a.ticker}", logger=logger, level=logging.INFO):
        res = run_backtest(bars, earnings, params)
    comparisons = {}
    if a.compare_deltas:
        with timed(f"compare {len(a.compare_deltas)} deltas", logger=logger, level=logging.INFO):
            comparisons = compare_target_deltas(bars, earnings, params, a.compare_deltas, max_workers=a.workers)

    from ccbacktest.report import export_csv, format_summary, plot_backtest

    print(format_summary(res, title=f"{a.ticker.upper()} {a.start} ~ {a.end} ({len(bars)} bars)"))
    for delta, other in comparisons.items():
        print(f"  Δ{delta:.2f}: cc={other.cc_return * 100:.2f}% win={other.cc_win_rate * 100:.1f}%")
    if a.csv:
        path = export_csv(res, export_csv_file(a.ticker, a.start, a.end), comparisons)
        print(f"CSV written to {path}")
    if a.plot or a.show:
        plot_backtest(res, a.ticker.upper(), comparisons, save=a.plot, show=a.show)
    print("Done.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
