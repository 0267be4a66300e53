"""
Inbound signal payload validation.
"""

import math
from datetime import datetime
from typing import Any, Mapping

from core.trading.models import SignalType, TradingSignal
from core.utils.exceptions import ValidationError

REQUIRED_FIELDS = ("ticker", "price", "signal")


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            pass
    raise ValidationError("Invalid timestamp format", field="timestamp", value=value,
                          expected_type="ISO 8601 string")


def validate_signal(payload: Any) -> TradingSignal:
    """
    Validate a raw signal payload.

    Raises:
        ValidationError: naming the first offending field
    """
    if not isinstance(payload, Mapping):
        raise ValidationError("Payload must be a JSON object", field="payload",
                              value=type(payload).__name__, expected_type="object")

    for name in REQUIRED_FIELDS:
        if name not in payload:
            raise ValidationError(f"Missing required field: {name}", field=name, value=None)

    ticker = payload["ticker"]
    if not isinstance(ticker, str) or not ticker.strip():
        raise ValidationError("Ticker must be a non-empty string", field="ticker", value=ticker,
                              expected_type="string")

    price = payload["price"]
    if (isinstance(price, bool) or not isinstance(price, (int, float))
            or not math.isfinite(price) or price <= 0):
        raise ValidationError("Price must be a positive number", field="price", value=price,
                              expected_type="positive number")

    raw_signal = payload["signal"]
    try:
        signal = SignalType(str(raw_signal).strip().upper())
    except ValueError:
        raise ValidationError("Signal must be BUY, SELL, or HOLD", field="signal",
                              value=raw_signal) from None

    strategy = payload.get("strategy")
    if strategy is not None and (not isinstance(strategy, str) or not strategy.strip()):
        raise ValidationError("Strategy must be a non-empty string", field="strategy",
                              value=strategy, expected_type="string")

    custom_note = payload.get("custom_note")
    if custom_note is not None and not isinstance(custom_note, str):
        raise ValidationError("Custom note must be a string if provided", field="custom_note",
                              value=custom_note, expected_type="string")

    timestamp = payload.get("timestamp")
    return TradingSignal(
        ticker=ticker.strip().upper(),
        price=float(price),
        signal=signal,
        strategy=strategy.strip() if strategy else None,
        timestamp=_parse_timestamp(timestamp) if timestamp is not None else None,
        custom_note=custom_note.strip() or None if custom_note else None,
    )
