from __future__ import annotations

import math

from core.trading.models import SignalType


def round2(value: float) -> float:
    """Round a price to 2 decimals the way the exchange displays it (half up)."""
    return math.floor(value * 100 + 0.5) / 100


def normalize_ticker(ticker: str) -> str:
    """Canonical form used for catalog keys and duplicate tracking."""
    return (ticker or "").strip().upper()


def price_deviation_pct(reference_price: float, actual_price: float) -> float:
    """Absolute deviation of ``actual_price`` from ``reference_price`` in percent."""
    if reference_price <= 0:
        return 0.0
    return abs(actual_price - reference_price) / reference_price * 100


def to_signal_type(value: str) -> SignalType:
    """Map a broker transaction type to a side; unknown values default to BUY."""
    try:
        side = SignalType(str(value).upper())
    except ValueError:
        return SignalType.BUY
    return SignalType.BUY if side == SignalType.HOLD else side
