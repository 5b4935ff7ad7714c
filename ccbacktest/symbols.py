from __future__ import annotations

# ---------------------------------------------------------
# Ticker normalization helpers
# ---------------------------------------------------------

# Yahoo expects dashes for share classes and carets for indices
_YF_CANONICAL: dict[str, str] = {
    "BRK.B": "BRK-B",
    "BRK.A": "BRK-A",
    "BF.B": "BF-B",
    "SPX": "^GSPC",
    "NDX": "^NDX",
    "VIX": "^VIX",
}


def to_yahoo_ticker(ticker: str) -> str:
    """Normalize *ticker* for Yahoo Finance.

    Known aliases are mapped explicitly; any other dot-class symbol
    (``XYZ.B``) is rewritten with a dash.
    """
    t = ticker.strip().upper()
    if t in _YF_CANONICAL:
        return _YF_CANONICAL[t]
    if "." in t and not t.startswith("^"):
        return t.replace(".", "-")
    return t
