from __future__ import annotations
"""Data model shared by the engine, the loaders and the report layer."""
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import FrozenSet, Iterable, List, Literal, Optional, Union

from .config import get_settings

Frequency = Literal["weekly", "monthly"]
SettlementType = Literal["roll", "expiry"]
RollReason = Literal["delta", "scheduled"]

DateLike = Union[str, date, datetime]


def to_date(x: DateLike) -> date:
    """Normalize an ISO string / datetime / date to a plain ``date``."""
    if isinstance(x, datetime):
        return x.date()
    if isinstance(x, date):
        return x
    if isinstance(x, str):
        return datetime.strptime(x.strip()[:10], "%Y-%m-%d").date()
    raise TypeError(f"Unsupported date value: {x!r}")


def to_date_set(values: Optional[Iterable[DateLike]]) -> FrozenSet[date]:
    return frozenset(to_date(v) for v in (values or ()))


# ---------------------------------------------------------
# Inputs
# ---------------------------------------------------------

@dataclass(frozen=True)
class PriceBar:
    date: date
    close: float
    adj_close: Optional[float] = None  # dividend/split adjusted

    def __post_init__(self) -> None:
        object.__setattr__(self, "date", to_date(self.date))

    @property
    def price(self) -> float:
        """Price used by the backtest: adjusted close when present."""
        return self.adj_close if self.adj_close is not None else self.close


@dataclass(frozen=True)
class BacktestParams:
    initial_capital: float = 0.0
    shares: int = 100
    r: float = 0.03
    q: float = 0.0
    target_delta: float = 0.30
    freq: Frequency = "weekly"
    iv_override: Optional[float] = None
    reinvest_premium: bool = True
    premium_reinvest_share_threshold: int = 1
    round_strike_to_int: bool = True
    skip_earnings_week: bool = False
    dynamic_contracts: bool = True
    enable_roll: bool = True
    roll_delta_threshold: float = 0.70
    roll_days_before_expiry: Optional[int] = None
    # None: follow roll_days_before_expiry (0 when that is None)
    entry_days_before_cycle_end: Optional[int] = None
    earnings_dates: FrozenSet[date] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        if not isinstance(self.earnings_dates, frozenset) or any(
            not isinstance(d, date) for d in self.earnings_dates
        ):
            object.__setattr__(self, "earnings_dates", to_date_set(self.earnings_dates))

    @staticmethod
    def from_settings(**overrides) -> "BacktestParams":
        s = get_settings()
        base = BacktestParams(
            initial_capital=s.initial_capital,
            shares=s.shares,
            r=s.risk_free_rate,
            q=s.dividend_yield,
            target_delta=s.target_delta,
            roll_delta_threshold=s.roll_delta_threshold,
            premium_reinvest_share_threshold=s.premium_reinvest_share_threshold,
        )
        return base.with_overrides(**overrides) if overrides else base

    def with_overrides(self, **changes) -> "BacktestParams":
        return replace(self, **changes)


# ---------------------------------------------------------
# Mutable working state (owned by a single backtest run)
# ---------------------------------------------------------

@dataclass
class Position:
    strike: float
    premium: float  # per share, at sale
    qty: int  # contracts, 1 contract = 100 shares
    sale_index: int
    expiry_index: int


@dataclass
class Ledger:
    cash: float
    shares: int
    pending_premium: float = 0.0  # premium not yet reinvested

    def value(self, price: float) -> float:
        return self.cash + self.shares * price


# ---------------------------------------------------------
# Outputs
# ---------------------------------------------------------

@dataclass(frozen=True)
class Cycle:
    start_index: int
    end_index: int


@dataclass(frozen=True)
class SettlementEvent:
    day_index: int
    date: date
    total_value_after: float
    pnl: float
    strike: float
    underlying: float
    premium: float
    qty: int
    type: SettlementType
    delta: Optional[float] = None
    roll_reason: Optional[RollReason] = None


@dataclass(frozen=True)
class CurvePoint:
    date: date
    buy_and_hold: float
    covered_call: float
    underlying_price: float
    call_strike: Optional[float]
    call_delta: Optional[float]
    cash: float
    shares: int
    settlement: Optional[SettlementEvent] = None


@dataclass(frozen=True)
class BacktestResult:
    curve: List[CurvePoint]
    bh_return: float
    cc_return: float
    hv: float
    iv_used: float
    bh_shares: int
    cc_shares: int
    settlements: List[SettlementEvent]
    roll_events: List[SettlementEvent]
    cc_win_rate: float
    cc_settlement_count: int
    effective_target_delta: float
    roll_delta_trigger: float
    bh_annualized: float = 0.0
    cc_annualized: float = 0.0


__all__ = [
    "PriceBar",
    "BacktestParams",
    "Position",
    "Ledger",
    "Cycle",
    "SettlementEvent",
    "CurvePoint",
    "BacktestResult",
    "to_date",
    "to_date_set",
]
