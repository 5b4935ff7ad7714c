# ccbacktest/report.py
from __future__ import annotations
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional, Union

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import matplotlib.dates as mdates

from .config import CURVE_FIELD_MAP, LEDGER_FIELD_MAP, SETTLEMENT_FIELD_MAP
from .models import BacktestResult
from .paths import PLOT_DIR as _DEFAULT_PLOT_DIR, ensure_dir

PLOT_DIR = _DEFAULT_PLOT_DIR

ORANGE = "#f97316"
BLUE = "#2563eb"
GREEN = "#22c55e"
RED = "#ef4444"
SLATE = "#64748b"
PURPLE = "#7c3aed"


def _comparison_label(delta: float) -> str:
    return f"Covered Call Value (Δ{delta:.2f})"


# ---------------------------------------------------------
# Tabular export
# ---------------------------------------------------------

def result_to_frame(
    result: BacktestResult,
    comparisons: Optional[Dict[float, BacktestResult]] = None,
) -> pd.DataFrame:
    """One row per curve point, settlement columns blank on quiet days.

    Each comparison run adds a covered-call value column joined on date; the
    ledger columns (share count) come last.
    """
    rows = []
    for pt in result.curve:
        row = {header: getattr(pt, attr) for header, attr in CURVE_FIELD_MAP.items()}
        ev = pt.settlement
        for header, attr in SETTLEMENT_FIELD_MAP.items():
            row[header] = getattr(ev, attr) if ev is not None else None
        rows.append(row)
    columns = list(CURVE_FIELD_MAP) + list(SETTLEMENT_FIELD_MAP)
    df = pd.DataFrame(rows, columns=columns)

    for delta, other in (comparisons or {}).items():
        by_date = {pt.date: pt.covered_call for pt in other.curve}
        df[_comparison_label(delta)] = [by_date.get(d, np.nan) for d in df["Date"]]
    for header, attr in LEDGER_FIELD_MAP.items():
        df[header] = [getattr(pt, attr) for pt in result.curve]
    return df


def export_csv(
    result: BacktestResult,
    path: Union[str, Path],
    comparisons: Optional[Dict[float, BacktestResult]] = None,
) -> Path:
    """Write :func:`result_to_frame` to *path*; non-finite numbers become blanks."""
    path = Path(path)
    ensure_dir(path.parent)
    df = result_to_frame(result, comparisons).replace([np.inf, -np.inf], np.nan)
    df.to_csv(path, index=False, date_format="%Y-%m-%d")
    return path


# ---------------------------------------------------------
# Text summary
# ---------------------------------------------------------

def format_summary(result: BacktestResult, *, title: Optional[str] = None) -> str:
    def pct(x: float) -> str:
        return f"{x * 100:.2f}%"

    lines = []
    if title:
        lines.append(title)
    lines.extend(
        [
            f"Buy & Hold return   : {pct(result.bh_return)} (annualized {pct(result.bh_annualized)})",
            f"Covered Call return : {pct(result.cc_return)} (annualized {pct(result.cc_annualized)})",
            f"Covered Call win    : {result.cc_win_rate * 100:.1f}% over {result.cc_settlement_count} settlements",
            f"HV / IV used        : {pct(result.hv)} / {pct(result.iv_used)}",
            f"Shares B&H / CC     : {result.bh_shares} / {result.cc_shares}",
            f"Target delta        : {result.effective_target_delta:.2f}"
            f"  roll trigger: {result.roll_delta_trigger:.2f}  delta rolls: {len(result.roll_events)}",
        ]
    )
    return "\n".join(lines)


# ---------------------------------------------------------
# Chart
# ---------------------------------------------------------

def plot_backtest(
    result: BacktestResult,
    ticker: str,
    comparisons: Optional[Dict[float, BacktestResult]] = None,
    *,
    save: bool = True,
    show: bool = False,
):
    """Plot portfolio values and the underlying with the short strike.

    Top panel: buy-and-hold vs covered-call value (plus any comparison runs),
    expiries marked green/red by P&L sign, rolls as dotted verticals.
    Bottom panel: underlying price and the open call strike.

    When *save* is true the figure is written as a PNG under :data:`PLOT_DIR`.
    Returns the :class:`~matplotlib.figure.Figure`.
    """
    dates = pd.to_datetime([pt.date for pt in result.curve])
    bh = [pt.buy_and_hold for pt in result.curve]
    cc = [pt.covered_call for pt in result.curve]
    px = [pt.underlying_price for pt in result.curve]
    strikes = [np.nan if pt.call_strike is None else pt.call_strike for pt in result.curve]

    fig, (ax_val, ax_px) = plt.subplots(2, 1, figsize=(14, 9), sharex=True, gridspec_kw={"height_ratios": [3, 2]})

    ax_val.plot(dates, bh, color=BLUE, linewidth=2.0, label="Buy & Hold")
    ax_val.plot(dates, cc, color=ORANGE, linewidth=2.0, label="Covered Call")
    for delta, other in (comparisons or {}).items():
        ax_val.plot(
            pd.to_datetime([pt.date for pt in other.curve]),
            [pt.covered_call for pt in other.curve],
            linewidth=1.2,
            linestyle="--",
            label=f"Covered Call Δ{delta:.2f}",
        )

    for pt in result.curve:
        ev = pt.settlement
        if ev is None:
            continue
        x = pd.Timestamp(pt.date)
        if ev.type == "expiry":
            ax_val.scatter([x], [pt.covered_call], s=36, color=GREEN if ev.pnl >= 0 else RED, zorder=5,
                           edgecolors="white", linewidths=1.0)
        else:
            ax_val.axvline(x, color=PURPLE if ev.roll_reason == "delta" else SLATE, linestyle=":", linewidth=1.0,
                           alpha=0.7)

    ax_val.set_title(f"{ticker} covered call vs buy & hold  "
                     f"(Δ {result.effective_target_delta:.2f}, IV {result.iv_used:.2%})")
    ax_val.set_ylabel("Portfolio value")
    ax_val.grid(True, linestyle="--", alpha=0.4)
    ax_val.legend(loc="upper left")

    ax_px.plot(dates, px, color=SLATE, linewidth=1.5, label="Underlying")
    ax_px.plot(dates, strikes, color=RED, linewidth=1.2, linestyle="--", label="Call strike")
    ax_px.set_ylabel("Price")
    ax_px.grid(True, linestyle="--", alpha=0.4)
    ax_px.legend(loc="upper left")
    ax_px.xaxis.set_major_formatter(mdates.DateFormatter("%Y-%m-%d"))
    fig.autofmt_xdate()
    fig.tight_layout()

    if save and result.curve:
        ensure_dir(PLOT_DIR)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        start, end = result.curve[0].date, result.curve[-1].date
        filename = Path(PLOT_DIR) / f"covered_call_{ticker}_{start}_to_{end}_{timestamp}.png"
        fig.savefig(filename, bbox_inches="tight", dpi=150)
    if show:
        plt.show()
    return fig
