"""Bounded closing-price history per (symbol, interval).

The last element is the open candle: live updates overwrite it in place
until the candle closes, and the next candle is appended. A market state
object owns one history per key, so separate evaluation loops never
share buffers.
"""

from collections import deque
from dataclasses import dataclass, field

from src.domain.models.market import CandleHistory, CandleUpdate, Ticker
from src.domain.rules import PRICE_HISTORY_LIMIT
from src.domain.services.symbols import normalize_symbol


class PriceHistory:
    """Closing prices for one (symbol, interval), oldest first."""

    def __init__(self, limit: int = PRICE_HISTORY_LIMIT) -> None:
        if limit < 1:
            raise ValueError(f"History limit must be positive, got {limit}")
        self._closes: deque[float] = deque(maxlen=limit)
        self._last_open_time: int | None = None
        self._last_closed = True

    def __len__(self) -> int:
        return len(self._closes)

    @property
    def limit(self) -> int:
        return self._closes.maxlen or 0

    @property
    def closes(self) -> list[float]:
        """Snapshot of closes, oldest first."""
        return list(self._closes)

    @property
    def last_close(self) -> float | None:
        return self._closes[-1] if self._closes else None

    @property
    def last_open_time(self) -> int | None:
        return self._last_open_time

    @property
    def last_closed(self) -> bool:
        """Whether the most recent update closed its candle."""
        return self._last_closed

    def load(self, closes: list[float], last_open_time: int | None = None,
             last_closed: bool = True) -> None:
        """Replace the history with bootstrap closes (oldest first)."""
        self._closes.clear()
        self._closes.extend(closes)
        self._last_open_time = last_open_time
        self._last_closed = last_closed

    def apply(self, close: float, open_time: int, closed: bool) -> None:
        """Apply a kline update.

        Same candle as the last one: update the last close in place.
        New candle: append (the oldest close drops off at the limit).
        """
        if self._closes and self._last_open_time == open_time:
            self._closes[-1] = close
        elif self._closes and self._last_open_time is None and not self._last_closed:
            # Open candle of unknown time from bootstrap: adopt this update
            self._closes[-1] = close
        else:
            self._closes.append(close)
        self._last_open_time = open_time
        self._last_closed = closed


def history_key(symbol: str, interval: str) -> str:
    """Key used for (symbol, interval) lookups, e.g. ``BTCUSDT_1m``."""
    return f"{normalize_symbol(symbol)}_{interval}"


@dataclass
class CandleSnapshot:
    """What the evaluation loop needs from a history on one cycle."""

    close: float
    closes: list[float]
    closed: bool
    open_time: int | None


@dataclass
class MarketState:
    """Latest tickers and candle histories seen by one evaluation loop."""

    history_limit: int = PRICE_HISTORY_LIMIT
    tickers: dict[str, Ticker] = field(default_factory=dict)
    histories: dict[str, PriceHistory] = field(default_factory=dict)
    # Closed candles applied since the last cycle, per key, oldest first
    pending_closes: dict[str, list[CandleSnapshot]] = field(default_factory=dict)

    def history(self, symbol: str, interval: str) -> PriceHistory:
        """Get or create the history for a key."""
        key = history_key(symbol, interval)
        history = self.histories.get(key)
        if history is None:
            history = PriceHistory(self.history_limit)
            self.histories[key] = history
        return history

    def apply_ticker(self, ticker: Ticker) -> None:
        self.tickers[ticker.symbol] = ticker

    def apply_candle(self, update: CandleUpdate) -> None:
        history = self.history(update.symbol, update.interval)
        history.apply(update.close, update.open_time, update.closed)
        if update.closed:
            key = history_key(update.symbol, update.interval)
            self.pending_closes.setdefault(key, []).append(
                CandleSnapshot(
                    close=update.close,
                    closes=history.closes,
                    closed=True,
                    open_time=update.open_time,
                )
            )

    def apply_history(self, bootstrap: CandleHistory) -> None:
        self.history(bootstrap.symbol, bootstrap.interval).load(
            bootstrap.closes, bootstrap.last_open_time, bootstrap.last_closed
        )

    def candle_events(self, symbol: str, interval: str) -> list[CandleSnapshot]:
        """Candle views to evaluate this cycle for a key, oldest first.

        Every close applied since the last cycle is reported once, with the
        history as it stood at that close. If the latest update left a candle
        open (or nothing closed), the live candle is reported as not closed.

        Returns:
            Snapshots to evaluate, empty when no closes are known
        """
        key = history_key(symbol, interval)
        history = self.histories.get(key)
        if history is None or history.last_close is None:
            return []

        events = list(self.pending_closes.get(key, []))
        if not events or not history.last_closed:
            events.append(
                CandleSnapshot(
                    close=history.last_close,
                    closes=history.closes,
                    closed=False,
                    open_time=history.last_open_time,
                )
            )
        return events

    def clear_pending_closes(self) -> None:
        """Forget closes already reported to the evaluation loop."""
        self.pending_closes.clear()

    def drop_unused(self, keys: set[str]) -> list[str]:
        """Drop histories whose key is no longer subscribed by any alert."""
        dropped = [key for key in self.histories if key not in keys]
        for key in dropped:
            del self.histories[key]
            self.pending_closes.pop(key, None)
        return dropped
