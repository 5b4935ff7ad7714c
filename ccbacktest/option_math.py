from __future__ import annotations
"""Option math utilities: Black–Scholes call pricing/delta, strike-for-delta
solver, and historical volatility.

The normal CDF is the Zelen & Severo polynomial approximation rather than an
exact implementation; strikes and deltas produced by the backtest depend on it.
"""
import math
from typing import Sequence

import numpy as np

TRADING_DAYS = 252
FALLBACK_VOLATILITY = 0.20

# Zelen & Severo (Abramowitz & Stegun 26.2.17)
_P = 0.2316419
_A = (0.319381530, -0.356563782, 1.781477937, -1.821255978, 1.330274429)
_INV_SQRT_2PI = 1.0 / math.sqrt(2.0 * math.pi)

STRIKE_SEARCH_LOW = 0.5
STRIKE_SEARCH_HIGH = 2.0
STRIKE_SEARCH_ITERATIONS = 60


def normal_cdf(x: float) -> float:
    k = 1.0 / (1.0 + _P * abs(x))
    poly = _A[0] * k + _A[1] * k ** 2 + _A[2] * k ** 3 + _A[3] * k ** 4 + _A[4] * k ** 5
    m = 1.0 - _INV_SQRT_2PI * math.exp(-0.5 * x * x) * poly
    return m if x >= 0 else 1.0 - m


# ------------------------------
# Black–Scholes core functions
# ------------------------------

def _d1(S: float, K: float, r: float, q: float, sigma: float, T: float) -> float:
    return (math.log(S / K) + (r - q + 0.5 * sigma * sigma) * T) / (sigma * math.sqrt(T))


def bs_call_price(S: float, K: float, r: float, q: float, sigma: float, T: float) -> float:
    """European call with continuous dividend yield.

    Falls back to the discounted intrinsic value when ``sigma`` or ``T`` is not
    positive.
    """
    if sigma <= 0 or T <= 0:
        return max(0.0, S * math.exp(-q * T) - K * math.exp(-r * T))
    d1 = _d1(S, K, r, q, sigma, T)
    d2 = d1 - sigma * math.sqrt(T)
    return S * math.exp(-q * T) * normal_cdf(d1) - K * math.exp(-r * T) * normal_cdf(d2)


def bs_call_delta(S: float, K: float, r: float, q: float, sigma: float, T: float) -> float:
    """Call delta ``e^(-qT) N(d1)``; a 0/1 step at the degenerate boundary."""
    if sigma <= 0 or T <= 0:
        return 1.0 if S > K else 0.0
    return math.exp(-q * T) * normal_cdf(_d1(S, K, r, q, sigma, T))


# ------------------------------
# Strike for a target delta (fixed-iteration bisection)
# ------------------------------

def find_strike_for_delta(S: float, target_delta: float, r: float, q: float, sigma: float, T: float) -> float:
    """Return the strike whose call delta matches *target_delta*.

    Bisects over ``[0.5 S, 2 S]`` for exactly 60 iterations; delta decreases
    with strike, so a delta above target raises the lower bound. There is no
    tolerance check, the iteration count is the contract.
    """
    low, high = STRIKE_SEARCH_LOW * S, STRIKE_SEARCH_HIGH * S
    for _ in range(STRIKE_SEARCH_ITERATIONS):
        mid = (low + high) / 2.0
        if bs_call_delta(S, mid, r, q, sigma, T) > target_delta:
            low = mid
        else:
            high = mid
    return (low + high) / 2.0


# ------------------------------
# Historical volatility
# ------------------------------

def estimate_hv(prices: Sequence[float], trading_days: int = TRADING_DAYS) -> float:
    """Annualized close-to-close volatility from daily log returns.

    Non-finite returns are dropped; with fewer than two usable returns the
    fixed fallback of 0.20 is returned.
    """
    arr = np.asarray(prices, dtype=float)
    if arr.size < 3:
        return FALLBACK_VOLATILITY
    with np.errstate(divide="ignore", invalid="ignore"):
        rets = np.log(arr[1:] / arr[:-1])
    rets = rets[np.isfinite(rets)]
    if rets.size < 2:
        return FALLBACK_VOLATILITY
    return float(np.std(rets, ddof=1) * math.sqrt(trading_days))


__all__ = [
    "normal_cdf",
    "bs_call_price",
    "bs_call_delta",
    "find_strike_for_delta",
    "estimate_hv",
]
