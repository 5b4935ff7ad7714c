from dataclasses import dataclass

# ---------------------------------------------------------
# Config / Settings
# ---------------------------------------------------------

@dataclass(frozen=True)
class Settings:
    # Market assumptions
    risk_free_rate: float = 0.03
    dividend_yield: float = 0.0
    trading_days: int = 252
    fallback_volatility: float = 0.20

    # Strategy defaults
    initial_capital: float = 0.0
    shares: int = 100
    target_delta: float = 0.30
    roll_delta_threshold: float = 0.70
    min_delta: float = 0.05
    max_delta: float = 0.95
    max_roll_days_before_expiry: int = 4
    premium_reinvest_share_threshold: int = 1
    contract_multiplier: int = 100

    # Input validation (caller side)
    min_bars: int = 30

    # Data sources
    yahoo_chart_url: str = "https://query1.finance.yahoo.com/v8/finance/chart/{ticker}"
    request_timeout: float = 15.0
    earnings_fetch_limit: int = 100

# ---------------------------------------------------------
# Field Maps
# ---------------------------------------------------------

# CSV export header -> CurvePoint / SettlementEvent attribute
CURVE_FIELD_MAP = {
    "Date": "date",
    "Buy & Hold Value": "buy_and_hold",
    "Covered Call Value": "covered_call",
    "Underlying Price": "underlying_price",
    "Call Strike": "call_strike",
    "Call Delta": "call_delta",
}

SETTLEMENT_FIELD_MAP = {
    "Settlement Type": "type",
    "Settlement PnL": "pnl",
    "Settlement Strike": "strike",
    "Settlement Underlying": "underlying",
    "Settlement Premium": "premium",
    "Settlement Qty": "qty",
}

# Appended after any comparison columns so the exported layout above stays a prefix
LEDGER_FIELD_MAP = {
    "Covered Call Shares": "shares",
}

# ---------------------------------------------------------
# Singleton Accessor
# ---------------------------------------------------------

_settings_instance: Settings | None = None

def get_settings() -> Settings:
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
    return _settings_instance
