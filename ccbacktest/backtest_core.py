from __future__ import annotations
"""
Covered-call backtest engine.

A single forward pass over a daily price series. Each day runs the steps in
``DAY_PRECEDENCE`` order against one mutable ``Ledger`` and at most one open
``Position``; the buy-and-hold curve is computed alongside and never interacts
with the option ledger.

Design goals
------------
- Pure and synchronous: no I/O, no shared state between runs
- Total over well-formed input: degenerate numbers fall back, out-of-range
  settings are clamped, empty and single-bar series produce short curves
- State kept on one object so each day's step can be inspected in isolation
"""
import logging
import math
import numbers
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from .config import get_settings
from .cycles import cycle_index_of, generate_cycle_boundaries
from .models import (
    BacktestParams,
    BacktestResult,
    CurvePoint,
    Cycle,
    DateLike,
    Ledger,
    Position,
    PriceBar,
    RollReason,
    SettlementEvent,
    to_date_set,
)
from .option_math import bs_call_delta, bs_call_price, estimate_hv, find_strike_for_delta

logger = logging.getLogger(__name__)

# Order of the per-day steps. Reordering changes results on days where a roll,
# a new sale and an expiry could all apply.
DAY_PRECEDENCE = ("roll", "open", "settle", "mark")


# ----------------------------
# Parameter normalization
# ----------------------------

def _finite_or(value: Optional[float], default: float) -> float:
    if isinstance(value, numbers.Real) and not isinstance(value, bool) and math.isfinite(value):
        return float(value)
    return default


def clamp_delta(value: Optional[float], default: float) -> float:
    """Clamp a delta setting into [0.05, 0.95], using *default* when unusable."""
    s = get_settings()
    return min(s.max_delta, max(s.min_delta, _finite_or(value, default)))


def clamp_days_offset(value: Optional[float]) -> Optional[int]:
    """Floor and clamp a day offset into [0, 4]; ``None`` stays ``None``."""
    if value is None:
        return None
    v = _finite_or(value, float("nan"))
    if math.isnan(v):
        return None
    return max(0, min(get_settings().max_roll_days_before_expiry, int(math.floor(v))))


def _round_half_up(x: float) -> float:
    return float(math.floor(x + 0.5))


@dataclass(frozen=True)
class EffectiveSettings:
    """Clamped, run-ready view of ``BacktestParams``."""
    target_delta: float
    roll_delta_trigger: float
    roll_offset: Optional[int]
    entry_offset: int
    reinvest_threshold: int

    @staticmethod
    def from_params(params: BacktestParams) -> "EffectiveSettings":
        s = get_settings()
        roll_offset = clamp_days_offset(params.roll_days_before_expiry)
        entry_offset = clamp_days_offset(params.entry_days_before_cycle_end)
        if entry_offset is None:
            entry_offset = roll_offset if roll_offset is not None else 0
        threshold = _finite_or(params.premium_reinvest_share_threshold, float(s.premium_reinvest_share_threshold))
        return EffectiveSettings(
            target_delta=clamp_delta(params.target_delta, s.target_delta),
            roll_delta_trigger=clamp_delta(params.roll_delta_threshold, s.roll_delta_threshold),
            roll_offset=roll_offset,
            entry_offset=entry_offset,
            reinvest_threshold=max(1, int(math.floor(threshold))),
        )


# ----------------------------
# Summary helpers
# ----------------------------

def total_return(values: Sequence[float]) -> float:
    if not values or values[0] == 0:
        return 0.0
    return values[-1] / values[0] - 1.0


def annualized_return(total: float, n_days: int, trading_days: int = 252) -> float:
    """Compound *total* over ``max(1/12, n_days/252)`` years."""
    if 1.0 + total <= 0:
        return -1.0
    years = max(1.0 / 12.0, n_days / trading_days)
    return (1.0 + total) ** (1.0 / years) - 1.0


# ----------------------------
# Engine
# ----------------------------

class CoveredCallBacktest:
    """Walk-forward covered-call simulator for one parameter set.

    Build once, then call :meth:`run`. :meth:`step` advances a single day and
    is exposed so the state machine can be driven and inspected day by day.
    """

    def __init__(self, bars: Sequence[PriceBar], params: BacktestParams) -> None:
        s = get_settings()
        self.params = params
        self.eff = EffectiveSettings.from_params(params)
        self.multiplier = s.contract_multiplier
        self.trading_days = s.trading_days

        self.dates = [b.date for b in bars]
        self.prices = [float(b.price) for b in bars]
        self.n = len(self.prices)

        self.hv = estimate_hv(self.prices, self.trading_days)
        iv = _finite_or(params.iv_override, 0.0)
        self.iv = iv if iv > 0 else self.hv

        self.cycles: List[Cycle] = generate_cycle_boundaries(self.dates, params.freq)
        self.cycle_of_day = cycle_index_of(self.cycles)
        self.eligible = self._cycle_eligibility()
        self.planned_sales = self._plan_sales()

        self.bh_values = [params.initial_capital + params.shares * p for p in self.prices]
        self.base_contracts = int(params.shares // self.multiplier)

        # working state
        self.ledger = Ledger(cash=float(params.initial_capital), shares=int(params.shares))
        self.position: Optional[Position] = None
        self.curve: List[CurvePoint] = []
        self.settlements: List[SettlementEvent] = []
        self.roll_events: List[SettlementEvent] = []

    # ----- pre-pass planning -----

    def _cycle_eligibility(self) -> List[bool]:
        if not self.params.skip_earnings_week or not self.params.earnings_dates:
            return [True] * len(self.cycles)
        earnings = self.params.earnings_dates
        return [
            not any(self.dates[i] in earnings for i in range(c.start_index, c.end_index + 1))
            for c in self.cycles
        ]

    def _plan_sales(self) -> Dict[int, List[int]]:
        """Day index -> candidate target cycles, most preferred first.

        Every cycle is a candidate on its own first day. With an entry offset,
        cycle k is also a candidate ``offset`` days before the end of cycle
        k-1, so a flat book can be re-positioned ahead of the boundary; those
        early candidates win over first-day candidates on the same day.
        """
        early: Dict[int, List[int]] = defaultdict(list)
        first_day: Dict[int, List[int]] = defaultdict(list)
        offset = self.eff.entry_offset
        for k, c in enumerate(self.cycles):
            if k > 0 and offset > 0:
                prev = self.cycles[k - 1]
                day = min(prev.end_index, max(prev.start_index, prev.end_index - offset))
                early[day].append(k)
            first_day[c.start_index].append(k)
        plan: Dict[int, List[int]] = {}
        for day in sorted(set(early) | set(first_day)):
            plan[day] = early.get(day, []) + first_day.get(day, [])
        return plan

    def _next_eligible_cycle_end(self, after_cycle: int) -> Optional[int]:
        for k in range(after_cycle + 1, len(self.cycles)):
            if self.eligible[k]:
                return self.cycles[k].end_index
        return None

    # ----- ledger helpers -----

    def _term(self, days: int) -> float:
        return max(days / self.trading_days, 1.0 / self.trading_days)

    def _contract_qty(self) -> int:
        if self.params.dynamic_contracts:
            return int(self.ledger.shares // self.multiplier)
        return self.base_contracts

    def _receive_premium(self, amount: float, S: float) -> None:
        self.ledger.cash += amount
        if not self.params.reinvest_premium or S <= 0:
            return
        self.ledger.pending_premium += amount
        lot = int(math.floor(self.ledger.pending_premium / S))
        if lot > 0 and lot >= self.eff.reinvest_threshold:
            cost = lot * S
            self.ledger.shares += lot
            self.ledger.cash -= cost
            self.ledger.pending_premium -= cost
            logger.debug(f"reinvest: bought {lot} shares @ {S:.2f}")

    def _sell_call(self, i: int, S: float, strike: float, qty: int, expiry_index: int) -> Position:
        T = self._term(expiry_index - i)
        premium = bs_call_price(S, strike, self.params.r, self.params.q, self.iv, T)
        self.position = Position(strike=strike, premium=premium, qty=qty, sale_index=i, expiry_index=expiry_index)
        self._receive_premium(premium * qty * self.multiplier, S)
        logger.debug(
            f"{self.dates[i]} sell {qty}x K={strike:.2f} prem={premium:.4f} exp_idx={expiry_index} S={S:.2f}"
        )
        return self.position

    def _event(self, i: int, S: float, pos: Position, *, pnl: float, type_: str,
               delta: Optional[float], roll_reason: Optional[RollReason] = None) -> SettlementEvent:
        return SettlementEvent(
            day_index=i,
            date=self.dates[i],
            total_value_after=self.ledger.value(S),
            pnl=pnl,
            strike=pos.strike,
            underlying=S,
            premium=pos.premium,
            qty=pos.qty,
            type=type_,
            delta=delta,
            roll_reason=roll_reason,
        )

    # ----- per-day steps -----

    def _roll_step(self, i: int, S: float) -> Optional[SettlementEvent]:
        pos = self.position
        if not self.params.enable_roll or pos is None:
            return None
        dte = pos.expiry_index - i
        if dte < 0:
            return None
        p = self.params
        T = self._term(dte)
        current_delta = bs_call_delta(S, pos.strike, p.r, p.q, self.iv, T)
        delta_hit = dte > 2 and current_delta >= self.eff.roll_delta_trigger
        scheduled_hit = self.eff.roll_offset is not None and dte <= self.eff.roll_offset
        if not (delta_hit or scheduled_hit):
            return None

        # buy back the open contract
        close_value = bs_call_price(S, pos.strike, p.r, p.q, self.iv, T)
        self.ledger.cash -= close_value * pos.qty * self.multiplier
        pnl = (pos.premium - close_value) * pos.qty * self.multiplier
        reason: RollReason = "delta" if delta_hit else "scheduled"
        self.position = None
        # valued after the buy-back, before the replacement call is sold
        event = self._event(i, S, pos, pnl=pnl, type_="roll", delta=current_delta, roll_reason=reason)
        self.settlements.append(event)
        if delta_hit:
            self.roll_events.append(event)

        # and sell the next one
        new_expiry = self._next_eligible_cycle_end(self.cycle_of_day[pos.expiry_index])
        if new_expiry is None:
            new_expiry = min(self.n - 1, i + max(1, pos.expiry_index - pos.sale_index))
        strike = find_strike_for_delta(S, self.eff.target_delta, p.r, p.q, self.iv, self._term(new_expiry - i))
        if p.round_strike_to_int:
            strike = _round_half_up(strike)
        if delta_hit and strike <= pos.strike:
            bump = 1.0 if p.round_strike_to_int else max(0.5, strike * 0.01)
            strike = pos.strike + bump
            if p.round_strike_to_int:
                strike = _round_half_up(strike)
        qty = self._contract_qty()
        if qty > 0:
            self._sell_call(i, S, strike, qty, new_expiry)
        logger.debug(
            f"{self.dates[i]} roll ({reason}) K={pos.strike:.2f} delta={current_delta:.3f} "
            f"close={close_value:.4f} pnl={pnl:.2f}"
        )
        return event

    def _open_step(self, i: int, S: float) -> Optional[Position]:
        if self.position is not None:
            return None
        for k in self.planned_sales.get(i, ()):
            expiry = self.cycles[k].end_index
            if not self.eligible[k] or expiry <= i:
                continue
            qty = self._contract_qty()
            if qty <= 0:
                return None
            p = self.params
            strike = find_strike_for_delta(S, self.eff.target_delta, p.r, p.q, self.iv, self._term(expiry - i))
            if p.round_strike_to_int:
                strike = max(1.0, _round_half_up(strike))
            return self._sell_call(i, S, strike, qty, expiry)
        return None

    def _settle_step(self, i: int, S: float) -> Optional[SettlementEvent]:
        pos = self.position
        if pos is None:
            return None
        is_last_day = i == self.n - 1
        if not (pos.expiry_index == i or (is_last_day and pos.expiry_index > i)):
            return None

        if S > pos.strike:
            # deliver at the strike, then rebuy the same count at market
            deliverable = min(pos.qty * self.multiplier, self.ledger.shares)
            self.ledger.shares -= deliverable
            self.ledger.cash += deliverable * pos.strike
            if deliverable > 0:
                self.ledger.cash -= deliverable * S
                self.ledger.shares += deliverable
            logger.debug(f"{self.dates[i]} assigned {deliverable} shares @ {pos.strike:.2f}, rebought @ {S:.2f}")

        intrinsic = max(0.0, S - pos.strike)
        pnl = (pos.premium - intrinsic) * pos.qty * self.multiplier
        self.position = None
        event = self._event(i, S, pos, pnl=pnl, type_="expiry", delta=1.0 if intrinsic > 0 else 0.0)
        self.settlements.append(event)
        logger.debug(f"{self.dates[i]} expiry K={pos.strike:.2f} S={S:.2f} pnl={pnl:.2f}")
        return event

    def _mark_step(self, i: int, S: float, event: Optional[SettlementEvent]) -> CurvePoint:
        strike = delta = None
        pos = self.position
        if pos is not None:
            T = self._term(max(pos.expiry_index - i, 0))
            delta = bs_call_delta(S, pos.strike, self.params.r, self.params.q, self.iv, T)
            strike = pos.strike
        point = CurvePoint(
            date=self.dates[i],
            buy_and_hold=self.bh_values[i],
            covered_call=self.ledger.value(S),
            underlying_price=S,
            call_strike=strike,
            call_delta=delta,
            cash=self.ledger.cash,
            shares=self.ledger.shares,
            settlement=event,
        )
        self.curve.append(point)
        return point

    def step(self, i: int) -> CurvePoint:
        """Advance day *i*: roll, open, settle, then mark to market."""
        S = self.prices[i]
        rolled = self._roll_step(i, S)
        self._open_step(i, S)
        settled = self._settle_step(i, S)
        return self._mark_step(i, S, settled or rolled)

    def run(self) -> BacktestResult:
        for i in range(self.n):
            self.step(i)
        return self._summarize()

    def _summarize(self) -> BacktestResult:
        cc_values = [pt.covered_call for pt in self.curve]
        bh_return = total_return(self.bh_values)
        cc_return = total_return(cc_values)
        trades = [e for e in self.settlements if e.qty > 0]
        wins = sum(1 for e in trades if e.pnl > 0)
        result = BacktestResult(
            curve=list(self.curve),
            bh_return=bh_return,
            cc_return=cc_return,
            hv=self.hv,
            iv_used=self.iv,
            bh_shares=int(self.params.shares),
            cc_shares=self.ledger.shares,
            settlements=list(self.settlements),
            roll_events=list(self.roll_events),
            cc_win_rate=wins / len(trades) if trades else 0.0,
            cc_settlement_count=len(trades),
            effective_target_delta=self.eff.target_delta,
            roll_delta_trigger=self.eff.roll_delta_trigger,
            bh_annualized=annualized_return(bh_return, self.n, self.trading_days),
            cc_annualized=annualized_return(cc_return, self.n, self.trading_days),
        )
        logger.info(
            f"backtest done: days={self.n} settlements={len(trades)} rolls={len(self.roll_events)} "
            f"bh={bh_return:.4f} cc={cc_return:.4f} iv={self.iv:.4f}"
        )
        return result


def run_backtest(
    bars: Sequence[PriceBar],
    earnings_dates: Optional[Iterable[DateLike]] = None,
    params: Optional[BacktestParams] = None,
) -> BacktestResult:
    """Run the covered-call backtest over *bars*.

    Parameters
    ----------
    bars : sequence of PriceBar
        Ascending, unique trading days. Validation is the caller's job
        (see :func:`ccbacktest.prices.validate_price_bars`).
    earnings_dates : iterable of date | str, optional
        Known earnings dates; replaces ``params.earnings_dates`` when given.
    params : BacktestParams, optional
        Strategy parameters; defaults from :func:`BacktestParams.from_settings`.

    Returns
    -------
    BacktestResult
        Curve (one point per bar), settlement and roll logs, summary stats.
    """
    params = params or BacktestParams.from_settings()
    if earnings_dates is not None:
        params = params.with_overrides(earnings_dates=to_date_set(earnings_dates))
    return CoveredCallBacktest(bars, params).run()


__all__ = [
    "DAY_PRECEDENCE",
    "EffectiveSettings",
    "CoveredCallBacktest",
    "run_backtest",
    "annualized_return",
    "total_return",
    "clamp_delta",
    "clamp_days_offset",
]
