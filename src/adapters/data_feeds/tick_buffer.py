"""Bounded ingestion buffer between market data I/O and evaluation.

Feeds push tickers, candle updates and history bootstraps as they
arrive; the evaluation loop drains everything on its own tick cadence.
When the buffer is full the oldest item is discarded, so a stalled
evaluator never blocks ingestion.
"""

import asyncio

from src.domain.models.market import CandleHistory, CandleUpdate, Ticker
from src.infrastructure.logging import get_logger

logger = get_logger(__name__)

MarketItem = Ticker | CandleUpdate | CandleHistory


class TickBuffer:
    """FIFO of market items backed by a bounded ``asyncio.Queue``."""

    def __init__(self, maxsize: int = 10_000) -> None:
        if maxsize < 1:
            raise ValueError(f"Buffer size must be positive, got {maxsize}")
        self._queue: asyncio.Queue[MarketItem] = asyncio.Queue(maxsize=maxsize)
        self._dropped = 0

    @property
    def dropped(self) -> int:
        """Items discarded because the buffer was full."""
        return self._dropped

    def qsize(self) -> int:
        return self._queue.qsize()

    def empty(self) -> bool:
        return self._queue.empty()

    def put(self, item: MarketItem) -> None:
        """Enqueue an item, discarding the oldest one when full."""
        try:
            self._queue.put_nowait(item)
        except asyncio.QueueFull:
            self._queue.get_nowait()
            self._dropped += 1
            if self._dropped % 1000 == 1:
                logger.warning(f"Tick buffer full, {self._dropped} items dropped so far")
            self._queue.put_nowait(item)

    def put_ticker(
        self,
        symbol: str,
        price: float,
        change_percent: float | None = None,
        received_at: int | None = None,
    ) -> None:
        self.put(
            Ticker(
                symbol=symbol,
                price=price,
                change_percent=change_percent,
                received_at=received_at,
            )
        )

    def put_candle(
        self,
        symbol: str,
        interval: str,
        close: float,
        open_time: int,
        closed: bool,
    ) -> None:
        self.put(
            CandleUpdate(
                symbol=symbol,
                interval=interval,
                close=close,
                open_time=open_time,
                closed=closed,
            )
        )

    def load_history(
        self,
        symbol: str,
        interval: str,
        closes: list[float],
        last_open_time: int | None = None,
        last_closed: bool = True,
    ) -> None:
        self.put(
            CandleHistory(
                symbol=symbol,
                interval=interval,
                closes=closes,
                last_open_time=last_open_time,
                last_closed=last_closed,
            )
        )

    def drain(self, max_items: int | None = None) -> list[MarketItem]:
        """Remove and return buffered items in arrival order.

        Args:
            max_items: Upper bound on items returned (None = everything)
        """
        items: list[MarketItem] = []
        while not self._queue.empty():
            if max_items is not None and len(items) >= max_items:
                break
            items.append(self._queue.get_nowait())
        return items
