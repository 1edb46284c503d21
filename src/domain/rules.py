"""Alert evaluation rules and constants.

Constants that drive target resolution, indicator history, trigger
side effects and persistence bounds live here so they stay explicit
and testable.
"""

from typing import Final

# =============================================================================
# TARGET RESOLUTION
# =============================================================================

# Fibonacci channel levels (0 = base ray, 1 = third control point, 1.618 = extension)
FIB_CHANNEL_LEVELS: Final[tuple[float, ...]] = (
    0.0,
    0.236,
    0.382,
    0.5,
    0.618,
    0.786,
    1.0,
    1.618,
)

# Fib retracement spec prefix: "fib_{high}_{low}_{ratio}"
FIB_SPEC_PREFIX: Final[str] = "fib"


# =============================================================================
# INDICATORS & CANDLE HISTORY
# =============================================================================

# Period used when an indicator key carries no digits (e.g. "rsi")
DEFAULT_INDICATOR_PERIOD: Final[int] = 14

# Closes retained per (symbol, interval); must cover the longest period (sma99)
PRICE_HISTORY_LIMIT: Final[int] = 180

# Closes fetched when a (symbol, interval) history is first loaded
HISTORY_BOOTSTRAP_CANDLES: Final[int] = 100

# Interval used when an alert needs candles but carries none
DEFAULT_CANDLE_INTERVAL: Final[str] = "1m"


# =============================================================================
# COMPOSITE SYMBOLS
# =============================================================================

QUOTE_ASSET: Final[str] = "USDT"
PERP_SUFFIX: Final[str] = ".P"


# =============================================================================
# TRIGGER SIDE EFFECTS
# =============================================================================

# Most recent history records kept
ALERT_HISTORY_LIMIT: Final[int] = 50

# Vibration patterns in milliseconds, alternating pulse/pause
VIBRATION_ONCE_PATTERN: Final[tuple[int, ...]] = (500,)
VIBRATION_CONTINUOUS_PATTERN: Final[tuple[int, ...]] = (1000, 1200, 1000, 1200, 1000)

# sound_id -> (tone name, default duration ms)
SOUND_TONES: Final[dict[int, tuple[str, int]]] = {
    1: ("success", 2000),
    2: ("danger", 5000),
    3: ("coin", 1000),
    4: ("laser", 1000),
    5: ("rise", 3000),
    6: ("pop", 500),
    7: ("tech", 4000),
    8: ("low_battery", 3000),
    9: ("confirm", 2000),
    10: ("attention", 4000),
}
DEFAULT_SOUND_TONE: Final[tuple[str, int]] = ("beep", 3000)

NOTIFICATION_TITLE: Final[str] = "Price Alert"
