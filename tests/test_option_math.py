import math

import numpy as np
import pytest
from scipy.stats import norm

from ccbacktest.option_math import (
    bs_call_delta,
    bs_call_price,
    estimate_hv,
    find_strike_for_delta,
    normal_cdf,
)


def test_normal_cdf_bounds_and_tails():
    assert 0.49 < normal_cdf(0) < 0.51
    assert normal_cdf(5) > 0.999
    assert normal_cdf(-5) < 0.0015


def test_normal_cdf_symmetry():
    for x in (0.1, 0.7, 1.3, 2.9):
        assert normal_cdf(-x) == pytest.approx(1.0 - normal_cdf(x), abs=1e-15)


def test_normal_cdf_tracks_exact_cdf():
    # Zelen & Severo is accurate to ~7.5e-8
    xs = np.linspace(-6, 6, 241)
    err = max(abs(normal_cdf(float(x)) - norm.cdf(x)) for x in xs)
    assert err < 1e-7


def test_call_price_increases_with_spot_and_decreases_with_strike():
    r, q, sigma, T = 0.03, 0.0, 0.3, 0.5
    p1 = bs_call_price(100, 100, r, q, sigma, T)
    assert bs_call_price(110, 100, r, q, sigma, T) > p1
    assert bs_call_price(100, 110, r, q, sigma, T) < p1


def test_call_price_degenerate_is_discounted_intrinsic():
    assert bs_call_price(110, 100, 0.03, 0.01, 0.0, 0.5) == pytest.approx(
        110 * math.exp(-0.01 * 0.5) - 100 * math.exp(-0.03 * 0.5)
    )
    assert bs_call_price(90, 100, 0.03, 0.0, 0.3, 0.0) == 0.0


def test_delta_in_unit_interval_and_grows_with_spot():
    r, q, sigma, T = 0.03, 0.0, 0.3, 0.25
    deltas = [bs_call_delta(S, 100, r, q, sigma, T) for S in range(60, 160, 5)]
    assert all(0.0 <= d <= 1.0 for d in deltas)
    assert all(b >= a for a, b in zip(deltas, deltas[1:]))
    assert bs_call_delta(110, 100, r, q, sigma, T) > bs_call_delta(90, 100, r, q, sigma, T)


def test_delta_step_at_degenerate_boundary():
    assert bs_call_delta(101, 100, 0.03, 0.0, 0.3, 0.0) == 1.0
    assert bs_call_delta(100, 100, 0.03, 0.0, 0.0, 0.5) == 0.0


def test_strike_solver_hits_target_delta():
    S, r, q, sigma, T, target = 100, 0.03, 0.0, 0.3, 0.2, 0.3
    K = find_strike_for_delta(S, target, r, q, sigma, T)
    assert abs(bs_call_delta(S, K, r, q, sigma, T) - target) < 0.02
    assert K > S  # 0.3 delta call is out of the money


def test_strike_solver_stays_in_bracket():
    # unreachable target: delta at 0.5 S is still below 0.999
    K = find_strike_for_delta(100, 0.999, 0.03, 0.0, 0.3, 1.0)
    assert K == pytest.approx(50.0, rel=1e-9)


def test_hv_sane_value():
    hv = estimate_hv([100, 101, 99, 100, 102, 103, 101, 100, 104, 105])
    assert 0 < hv < 2


def test_hv_matches_sample_std_annualized():
    prices = [100, 102, 101, 105, 104]
    rets = np.diff(np.log(prices))
    assert estimate_hv(prices) == pytest.approx(np.std(rets, ddof=1) * math.sqrt(252))


def test_hv_fallback_for_short_or_degenerate_history():
    assert estimate_hv([]) == 0.20
    assert estimate_hv([100, 101]) == 0.20
    # zero prices produce non-finite returns that are dropped
    assert estimate_hv([100, 0, 0, 100]) == 0.20
