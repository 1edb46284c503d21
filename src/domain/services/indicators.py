"""Indicator calculations for indicator alerts.

All functions take closing prices oldest first and return ``math.nan``
when there is not enough history; callers treat NaN as "not yet
evaluable" rather than an error.

RSI here is the simple form: plain average gain/loss over
the last ``period`` changes, without Wilder's smoothing.
"""

import math
import re
from dataclasses import dataclass
from typing import Sequence

from src.domain.models.enums import IndicatorKind
from src.domain.rules import DEFAULT_INDICATOR_PERIOD, FIB_SPEC_PREFIX


@dataclass(frozen=True)
class IndicatorKey:
    """Parsed indicator key, e.g. ``sma7`` -> (SMA, 7)."""

    kind: IndicatorKind
    period: int


def calculate_sma(closes: Sequence[float], period: int) -> float:
    """Simple moving average of the last ``period`` closes.

    Args:
        closes: Closing prices, oldest first
        period: Lookback period

    Returns:
        Mean of the last ``period`` closes, NaN if fewer are available
    """
    if period <= 0 or len(closes) < period:
        return math.nan
    window = closes[len(closes) - period:]
    return sum(window) / period


def calculate_ema(closes: Sequence[float], period: int) -> float:
    """Exponential moving average over the last ``period`` closes.

    Seeded with the first close of the window, then
    ``ema = (value - ema) * 2/(period+1) + ema`` for the rest.

    Args:
        closes: Closing prices, oldest first
        period: Lookback period

    Returns:
        EMA value, NaN if fewer than ``period`` closes
    """
    if period <= 0 or len(closes) < period:
        return math.nan
    window = closes[len(closes) - period:]
    multiplier = 2.0 / (period + 1)
    ema = window[0]
    for value in window[1:]:
        ema = (value - ema) * multiplier + ema
    return ema


def calculate_rsi(closes: Sequence[float], period: int) -> float:
    """Simple RSI from the last ``period`` price changes.

    Needs ``period + 1`` closes. Gains and absolute losses are summed and
    divided by ``period``; RSI = 100 - 100 / (1 + avg_gain / avg_loss),
    or 100 when there were no losses.

    Args:
        closes: Closing prices, oldest first
        period: Number of changes to average

    Returns:
        RSI in [0, 100], NaN if fewer than ``period + 1`` closes
    """
    if period <= 0 or len(closes) < period + 1:
        return math.nan

    gain = 0.0
    loss = 0.0
    for i in range(len(closes) - period, len(closes)):
        change = closes[i] - closes[i - 1]
        if change > 0:
            gain += change
        else:
            loss += abs(change)

    avg_gain = gain / period
    avg_loss = loss / period
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100.0 - (100.0 / (1.0 + rs))


def calculate_fib_level(fib_spec: str) -> float:
    """Fibonacci retracement level from a ``fib_{high}_{low}_{ratio}`` string.

    Example: ``fib_100_0_0.5`` -> 50.

    Returns:
        ``high - (high - low) * ratio``, NaN if the string is malformed
    """
    parts = fib_spec.split("_")
    if len(parts) < 4 or parts[0].lower() != FIB_SPEC_PREFIX:
        return math.nan
    try:
        high = float(parts[1])
        low = float(parts[2])
        ratio = float(parts[3])
    except ValueError:
        return math.nan
    return high - (high - low) * ratio


def parse_indicator_key(key: str) -> IndicatorKey | None:
    """Parse an indicator key such as ``sma7``, ``ema25``, ``ma99``, ``rsi14``.

    Letters give the kind (``ma`` is an alias of ``sma``), digits give the
    period; a key without digits uses the default period.

    Returns:
        IndicatorKey, or None for an unknown kind
    """
    if key.lower().startswith(f"{FIB_SPEC_PREFIX}_"):
        return IndicatorKey(IndicatorKind.FIB, 0)

    name = re.sub(r"[0-9]", "", key).lower()
    digits = re.sub(r"[a-zA-Z]", "", key)
    if name == "ma":
        name = IndicatorKind.SMA.value
    try:
        kind = IndicatorKind(name)
    except ValueError:
        return None
    try:
        period = int(digits)
    except ValueError:
        period = DEFAULT_INDICATOR_PERIOD
    return IndicatorKey(kind, period)


def calculate_indicator(key: str, closes: Sequence[float]) -> float:
    """Compute the indicator named by ``key`` from a close series.

    Args:
        key: Indicator key (sma/ema/rsi with period) or fib spec string
        closes: Closing prices, oldest first

    Returns:
        Indicator value, NaN if unknown or not enough data
    """
    parsed = parse_indicator_key(key)
    if parsed is None:
        return math.nan

    match parsed.kind:
        case IndicatorKind.SMA:
            return calculate_sma(closes, parsed.period)
        case IndicatorKind.EMA:
            return calculate_ema(closes, parsed.period)
        case IndicatorKind.RSI:
            return calculate_rsi(closes, parsed.period)
        case IndicatorKind.FIB:
            return calculate_fib_level(key)
    return math.nan
