"""Alert rule and alert history models."""

import time
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from src.domain.models.enums import (
    CandleInterval,
    Condition,
    Confirmation,
    SoundRepeat,
    TargetType,
    VibrationMode,
)
from src.domain.rules import DEFAULT_CANDLE_INTERVAL


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class AlertActions(BaseModel):
    """Side effects configured for an alert."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    toast: bool = True
    notification: bool = True
    vibration: VibrationMode = VibrationMode.ONCE
    sound_id: int = Field(default=0, ge=0)  # 0 = silent
    sound_repeat: SoundRepeat = SoundRepeat.ONCE
    sound_duration: int = Field(default=0, ge=0)  # Seconds, 0 = tone default
    loop_pause: int = Field(default=0, ge=0)  # Seconds between loops


class AlertSpec(BaseModel):
    """A user-authored alert rule.

    Alerts are one-shot: once triggered they are persisted with
    ``active=False`` and never evaluated again.

    The authoritative target depends on ``target_type``:
    - price: ``target`` is the threshold
    - indicator: ``target_value`` names the indicator (sma7, ema25,
      rsi14, fib_100_0_0.5); RSI additionally needs a ``target`` threshold
    - drawing: ``target_value`` is the drawing id
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(default_factory=lambda: uuid4().hex)
    symbol: str
    target_type: TargetType = TargetType.PRICE
    target: float | None = None
    target_value: str | None = None
    condition: Condition
    confirmation: Confirmation = Confirmation.IMMEDIATE
    interval: CandleInterval | None = None
    delay_seconds: int = Field(default=0, ge=0)
    delay_candles: int = Field(default=0, ge=0)
    actions: AlertActions = Field(default_factory=AlertActions)
    active: bool = True
    created_at: int = Field(default_factory=now_ms)

    @model_validator(mode="after")
    def check_target_consistency(self) -> "AlertSpec":
        """Validate that the target fields match the target type."""
        if self.target_type == TargetType.PRICE:
            if self.target is None:
                raise ValueError("price alerts require a numeric target")
        elif self.target_type == TargetType.INDICATOR:
            if not self.target_value:
                raise ValueError("indicator alerts require an indicator key")
            if self.target_value.lower().startswith("rsi") and self.target is None:
                raise ValueError("RSI alerts require a numeric threshold")
        elif self.target_type == TargetType.DRAWING:
            if not self.target_value:
                raise ValueError("drawing alerts require a drawing id")

        # Ratio symbols are priced from tickers only; no exchange serves their klines
        if "/" in self.symbol and self.needs_candles:
            raise ValueError(
                f"composite symbol {self.symbol} cannot use indicator targets "
                "or candle confirmation"
            )
        return self

    @property
    def needs_candles(self) -> bool:
        """Whether this alert is evaluated from candle data instead of tickers."""
        return self.target_type == TargetType.INDICATOR or self.confirmation.needs_candles

    @property
    def candle_interval(self) -> str:
        """Interval used for candle data, falling back to the default."""
        return self.interval.value if self.interval else DEFAULT_CANDLE_INTERVAL

    @property
    def uses_threshold(self) -> bool:
        """Whether ``target`` is a user threshold rather than a computed value."""
        if self.target_type == TargetType.PRICE:
            return True
        if self.target_type == TargetType.INDICATOR:
            return bool(self.target_value and self.target_value.lower().startswith("rsi"))
        return False


class AlertHistoryRecord(BaseModel):
    """A triggered-alert log entry shown to the user."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    symbol: str
    message: str
    target: str
    price: float
    timestamp: int = Field(default_factory=now_ms)
