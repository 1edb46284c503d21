"""Market data domain models."""

from pydantic import BaseModel, Field, field_validator

from src.domain.rules import DEFAULT_CANDLE_INTERVAL


class Ticker(BaseModel):
    """Latest price snapshot for a symbol - immutable value object."""

    model_config = {"frozen": True}

    symbol: str
    price: float
    change_percent: float | None = None
    received_at: int | None = None  # Epoch ms

    @field_validator("symbol")
    @classmethod
    def upper_symbol(cls, v: str) -> str:
        """Normalize symbol to upper case."""
        return v.upper().strip()


class CandleUpdate(BaseModel):
    """A single kline update: appended or in-place update of the open candle.

    ``closed`` marks the final update of a candle; ``open_time`` identifies
    the candle so a repeated close is recognised.
    """

    model_config = {"frozen": True}

    symbol: str
    interval: str = DEFAULT_CANDLE_INTERVAL
    close: float
    open_time: int
    closed: bool = False

    @field_validator("symbol")
    @classmethod
    def upper_symbol(cls, v: str) -> str:
        """Normalize symbol to upper case."""
        return v.upper().strip()


class CandleHistory(BaseModel):
    """Bootstrap history for a (symbol, interval): closes oldest first."""

    model_config = {"frozen": True}

    symbol: str
    interval: str = DEFAULT_CANDLE_INTERVAL
    closes: list[float] = Field(default_factory=list)
    last_open_time: int | None = None
    last_closed: bool = True

    @field_validator("symbol")
    @classmethod
    def upper_symbol(cls, v: str) -> str:
        """Normalize symbol to upper case."""
        return v.upper().strip()
