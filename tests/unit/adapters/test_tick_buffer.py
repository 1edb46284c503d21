"""Unit tests for TickBuffer."""

import pytest

from src.adapters.data_feeds.tick_buffer import TickBuffer
from src.domain.models.market import CandleHistory, CandleUpdate, Ticker


class TestTickBuffer:
    """Tests for the bounded ingestion buffer."""

    def test_drain_in_arrival_order(self):
        buffer = TickBuffer(10)
        buffer.put_ticker("BTCUSDT", 1)
        buffer.put_candle("BTCUSDT", "1m", 2, open_time=0, closed=False)
        buffer.load_history("BTCUSDT", "1m", [1.0, 2.0])

        items = buffer.drain()

        assert [type(i) for i in items] == [Ticker, CandleUpdate, CandleHistory]
        assert buffer.empty()

    def test_full_buffer_drops_oldest(self):
        buffer = TickBuffer(2)
        for price in (1, 2, 3):
            buffer.put_ticker("BTCUSDT", price)

        items = buffer.drain()

        assert [i.price for i in items] == [2, 3]
        assert buffer.dropped == 1

    def test_drain_max_items(self):
        buffer = TickBuffer(10)
        for price in range(5):
            buffer.put_ticker("BTCUSDT", price)

        assert len(buffer.drain(max_items=3)) == 3
        assert buffer.qsize() == 2

    def test_drain_empty(self):
        assert TickBuffer().drain() == []

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            TickBuffer(0)
