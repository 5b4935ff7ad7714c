from datetime import date, timedelta

import matplotlib
matplotlib.use("Agg")
import pandas as pd
import pytest

from ccbacktest.models import PriceBar
from ccbacktest.prices import PriceDataError
from scripts import run_backtest as cli


def _bars(n=40):
    out, d = [], date(2024, 1, 2)
    while len(out) < n:
        if d.weekday() < 5:
            out.append(PriceBar(date=d, close=100.0 + 0.25 * len(out)))
        d += timedelta(days=1)
    return out


@pytest.fixture
def offline(monkeypatch, tmp_path):
    calls = {"earnings": 0}

    def fake_earnings(ticker, start, end):
        calls["earnings"] += 1
        return {date(2024, 1, 10)}

    monkeypatch.setattr(cli, "init_logging", lambda level: None)
    monkeypatch.setattr(cli, "load_price_bars", lambda ticker, start, end: _bars())
    monkeypatch.setattr(cli, "get_earnings_dates", fake_earnings)
    monkeypatch.setattr(cli, "export_csv_file", lambda ticker, start, end: tmp_path / f"{ticker}.csv")
    return calls


ARGS = ["-t", "TST", "-s", "2024-01-02", "-e", "2024-02-27"]


def test_build_params_maps_flags():
    a = cli.parse_args(ARGS + ["--no-roll", "--skip-earnings", "--delta", "0.2", "--freq", "monthly",
                               "--roll-days", "2", "--iv", "0.4", "--no-reinvest"])
    params = cli.build_params(a)
    assert params.enable_roll is False
    assert params.skip_earnings_week is True
    assert params.reinvest_premium is False
    assert params.target_delta == 0.2
    assert params.freq == "monthly"
    assert params.roll_days_before_expiry == 2
    assert params.entry_days_before_cycle_end is None
    assert params.iv_override == 0.4


def test_main_prints_summary(offline, capsys):
    assert cli.main(ARGS) == 0
    out = capsys.readouterr().out
    assert "TST 2024-01-02 ~ 2024-02-27 (40 bars)" in out
    assert "Covered Call return" in out
    assert out.strip().endswith("Done.")
    assert offline["earnings"] == 0


def test_main_fetches_earnings_only_when_skipping(offline):
    assert cli.main(ARGS + ["--skip-earnings"]) == 0
    assert offline["earnings"] == 1


def test_main_exports_csv_with_comparisons(offline, tmp_path, capsys):
    assert cli.main(ARGS + ["--csv", "--compare-deltas", "0.2", "0.4"]) == 0
    df = pd.read_csv(tmp_path / "TST.csv")
    assert len(df) == 40
    assert "Covered Call Value (Δ0.20)" in df.columns
    assert "Covered Call Value (Δ0.40)" in df.columns
    assert "Δ0.40" in capsys.readouterr().out


def test_main_rejects_short_series(offline, monkeypatch):
    monkeypatch.setattr(cli, "load_price_bars", lambda ticker, start, end: _bars(5))
    assert cli.main(ARGS) == 1


def test_main_reports_fetch_errors(offline, monkeypatch):
    def boom(ticker, start, end):
        raise PriceDataError("No data returned from Yahoo Finance")

    monkeypatch.setattr(cli, "load_price_bars", boom)
    assert cli.main(ARGS) == 1
