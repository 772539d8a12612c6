"""
Position sizing helpers for the analysis panel.

Model output formats prices as text ("$1,234.50", "₹2980"); parse_price
turns those into floats.
"""

from __future__ import annotations

import math
import re


_NON_NUMERIC = re.compile(r"[^0-9.\-]")


def parse_price(text: str | float | int | None) -> float | None:
    """Strip currency symbols and separators. None if nothing numeric remains."""
    if text is None:
        return None
    if isinstance(text, (int, float)) and not isinstance(text, bool):
        return float(text) if math.isfinite(text) else None
    cleaned = _NON_NUMERIC.sub("", str(text))
    try:
        value = float(cleaned)
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def position_size(balance: float, risk_pct: float, entry: float, stop: float) -> float | None:
    """
    Units to buy so that hitting the stop loses risk_pct of the balance.

    Returns None when the inputs cannot produce a size (non-positive
    balance/risk/prices or entry == stop).
    """
    if balance <= 0 or risk_pct <= 0 or entry <= 0 or stop <= 0:
        return None
    risk_per_unit = abs(entry - stop)
    if risk_per_unit == 0:
        return None
    return balance * risk_pct / 100 / risk_per_unit
