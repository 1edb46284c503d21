"""Domain enumerations for the price alert system."""

from enum import Enum


class TargetType(str, Enum):
    """What an alert compares the live value against."""

    PRICE = "price"  # User threshold vs ticker price
    INDICATOR = "indicator"  # SMA/EMA/fib value, or RSI vs threshold
    DRAWING = "drawing"  # Chart drawing resolved to price(s)


class Condition(str, Enum):
    """Crossing direction."""

    CROSSING_UP = "crossing_up"  # value >= target
    CROSSING_DOWN = "crossing_down"  # value <= target


class Confirmation(str, Enum):
    """Policy for how long a crossing must hold before firing."""

    IMMEDIATE = "immediate"
    TIME_DELAY = "time_delay"
    CANDLE_CLOSE = "candle_close"
    CANDLE_DELAY = "candle_delay"

    @property
    def needs_candles(self) -> bool:
        """Whether this mode is driven by candle closes."""
        return self in (Confirmation.CANDLE_CLOSE, Confirmation.CANDLE_DELAY)


class CandleInterval(str, Enum):
    """Supported candle intervals."""

    M1 = "1m"
    M5 = "5m"
    M15 = "15m"
    H1 = "1h"
    H4 = "4h"
    D1 = "1d"


class DrawingType(str, Enum):
    """Chart drawing kinds that can back an alert."""

    HLINE = "hline"
    TRENDLINE = "trendline"
    CHANNEL = "channel"
    FIB = "fib"
    RECT = "rect"


class AlgoKind(str, Enum):
    """Portable target algorithms derived from drawings."""

    PRICE_LEVEL = "price_level"
    LINEAR_RAY = "linear_ray"
    PARALLEL_CHANNEL = "parallel_channel"
    MULTI_RAY = "multi_ray"
    RECT_ZONE = "rect_zone"


class IndicatorKind(str, Enum):
    """Indicators computable from a close series."""

    SMA = "sma"
    EMA = "ema"
    RSI = "rsi"
    FIB = "fib"


class VibrationMode(str, Enum):
    """Haptic feedback on trigger."""

    NONE = "none"
    ONCE = "once"  # Single short pulse
    CONTINUOUS = "continuous"  # Repeated pulses


class SoundRepeat(str, Enum):
    """Sound playback mode."""

    ONCE = "once"
    LOOP = "loop"


class ConfirmationOutcome(str, Enum):
    """Report produced by the confirmation state machine per tick."""

    ALREADY_TRIGGERED = "already_triggered"
    TRIGGERED_IMMEDIATE = "triggered_immediate"
    TRIGGERED = "triggered"
    TIMER_STARTED = "timer_started"
    WAITING = "waiting"
    TIMER_RESET = "timer_reset"
    WAITING_CLOSE = "waiting_close"
    COUNTING = "counting"
    RESET = "reset"
    NO_ACTION = "no_action"

    @property
    def fires(self) -> bool:
        """Whether this outcome means the alert fires now."""
        return self in (
            ConfirmationOutcome.TRIGGERED,
            ConfirmationOutcome.TRIGGERED_IMMEDIATE,
        )
