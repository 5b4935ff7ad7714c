from datetime import date

import pytest
import requests

from ccbacktest import prices
from ccbacktest.models import PriceBar
from ccbacktest.prices import (
    PriceDataError,
    bars_from_frame,
    bars_to_frame,
    fetch_yahoo_daily,
    load_price_bars,
    parse_chart_payload,
    validate_price_bars,
)

# 2024-01-02 .. 2024-01-05, 14:30 UTC
TS = [1704205800 + 86400 * i for i in range(4)]


def _payload(closes, adj=None):
    result = {"timestamp": TS[: len(closes)], "indicators": {"quote": [{"close": closes}]}}
    if adj is not None:
        result["indicators"]["adjclose"] = [{"adjclose": adj}]
    return {"chart": {"result": [result], "error": None}}


class FakeResponse:
    def __init__(self, payload, status=200):
        self._payload = payload
        self.status_code = status

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self._payload


class FakeSession:
    def __init__(self, payload, status=200):
        self.payload = payload
        self.status = status
        self.calls = []

    def get(self, url, params=None, timeout=None):
        self.calls.append((url, params, timeout))
        return FakeResponse(self.payload, self.status)


class FailingSession:
    def get(self, *args, **kwargs):
        raise AssertionError("network should not be used")


def test_parse_chart_payload():
    bars = parse_chart_payload(_payload([100.0, None, 102.0, 103.0], adj=[99.0, None, None, 102.5]))
    assert [b.date for b in bars] == [date(2024, 1, 2), date(2024, 1, 4), date(2024, 1, 5)]
    assert [b.close for b in bars] == [100.0, 102.0, 103.0]
    # missing adjusted close falls back to close
    assert [b.price for b in bars] == [99.0, 102.0, 102.5]


def test_parse_chart_payload_without_adjclose():
    bars = parse_chart_payload(_payload([10.0, 11.0]))
    assert [b.adj_close for b in bars] == [10.0, 11.0]


@pytest.mark.parametrize("payload", [{}, {"chart": {"result": []}}, _payload([None, None])])
def test_parse_chart_payload_rejects_empty(payload):
    with pytest.raises(PriceDataError):
        parse_chart_payload(payload)


def test_fetch_yahoo_daily_builds_request():
    session = FakeSession(_payload([100.0, 101.0]))
    bars = fetch_yahoo_daily("brk.b", "2024-01-02", "2024-01-03", session=session)
    assert len(bars) == 2
    url, params, timeout = session.calls[0]
    assert url.endswith("/BRK-B")
    assert params["interval"] == "1d"
    assert params["period2"] - params["period1"] == 2 * 86400
    assert timeout > 0


def test_fetch_yahoo_daily_http_error():
    with pytest.raises(requests.HTTPError):
        fetch_yahoo_daily("AAPL", "2024-01-02", "2024-01-03", session=FakeSession({}, status=404))


def test_fetch_yahoo_daily_invalid_range():
    with pytest.raises(PriceDataError):
        fetch_yahoo_daily("AAPL", "2024-01-05", "2024-01-02", session=FailingSession())


def test_frame_round_trip_keeps_missing_adj_close():
    bars = [PriceBar("2024-01-02", 10.0, 9.5), PriceBar("2024-01-03", 11.0)]
    back = bars_from_frame(bars_to_frame(bars))
    assert back == bars


def test_load_price_bars_uses_cache(tmp_path, monkeypatch):
    cache = tmp_path / "AAPL_prices.csv"
    monkeypatch.setattr(prices, "yf_price_cache_file", lambda ticker: cache)

    session = FakeSession(_payload([100.0, 101.0, 102.0, 103.0]))
    first = load_price_bars("AAPL", "2024-01-02", "2024-01-05", session=session)
    assert len(session.calls) == 1
    assert cache.exists()

    second = load_price_bars("AAPL", "2024-01-03", "2024-01-05", session=FailingSession())
    assert second == first[1:]


def test_load_price_bars_bypasses_cache(tmp_path, monkeypatch):
    cache = tmp_path / "AAPL_prices.csv"
    monkeypatch.setattr(prices, "yf_price_cache_file", lambda ticker: cache)
    bars_to_frame([PriceBar("2024-01-02", 1.0)]).to_csv(cache, index=False)

    session = FakeSession(_payload([100.0, 101.0]))
    bars = load_price_bars("AAPL", "2024-01-02", "2024-01-03", use_cache=False, session=session)
    assert [b.close for b in bars] == [100.0, 101.0]
    assert len(session.calls) == 1


def _series(n):
    return [PriceBar(date(2024, 1, 1).replace(day=1 + i), 100.0 + i) for i in range(n)]


def test_validate_price_bars():
    validate_price_bars(_series(5), min_bars=5)
    with pytest.raises(PriceDataError, match="Too few bars"):
        validate_price_bars(_series(4), min_bars=5)


def test_validate_price_bars_rejects_bad_rows():
    bars = _series(3)
    with pytest.raises(PriceDataError, match="ascending"):
        validate_price_bars([bars[0], bars[2], bars[1]], min_bars=1)
    with pytest.raises(PriceDataError, match="ascending"):
        validate_price_bars([bars[0], bars[0]], min_bars=1)
    with pytest.raises(PriceDataError, match="Invalid price"):
        validate_price_bars([bars[0], PriceBar("2024-02-01", 0.0)], min_bars=1)
    with pytest.raises(PriceDataError, match="Invalid price"):
        validate_price_bars([PriceBar("2024-02-01", float("nan"))], min_bars=1)


def test_validate_uses_configured_minimum():
    with pytest.raises(PriceDataError):
        validate_price_bars(_series(10))
