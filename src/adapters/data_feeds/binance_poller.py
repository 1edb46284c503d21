"""Binance REST polling feed.

Polls 24h tickers and recent klines over HTTP and pushes them into the
TickBuffer. Spot symbols use the spot API; perpetual symbols (``.P``
suffix) use the USD-M futures API.

Each (symbol, interval) is bootstrapped once with the last 100 closes;
after that every poll fetches the last two klines, pushing the live one
as an update and a just-closed one exactly once.
"""

import asyncio
import time

import httpx

from src.adapters.data_feeds.tick_buffer import TickBuffer
from src.domain.rules import HISTORY_BOOTSTRAP_CANDLES, PERP_SUFFIX
from src.infrastructure.config import get_settings
from src.infrastructure.logging import get_logger

logger = get_logger(__name__)

# Kline array positions in Binance responses
KLINE_OPEN_TIME = 0
KLINE_CLOSE = 4
KLINE_CLOSE_TIME = 6


def _is_perp(symbol: str) -> bool:
    return symbol.endswith(PERP_SUFFIX)


def _exchange_symbol(symbol: str) -> str:
    return symbol[: -len(PERP_SUFFIX)] if _is_perp(symbol) else symbol


class BinanceRestPoller:
    """Periodic REST poller feeding a TickBuffer."""

    def __init__(
        self,
        buffer: TickBuffer,
        client: httpx.AsyncClient | None = None,
        spot_url: str | None = None,
        futures_url: str | None = None,
        poll_interval_seconds: float | None = None,
        timeout_seconds: float | None = None,
    ):
        """Initialize the poller.

        Args:
            buffer: Buffer to push market items into
            client: HTTP client (created if not provided)
            spot_url: Spot REST base URL (defaults to settings)
            futures_url: Futures REST base URL (defaults to settings)
            poll_interval_seconds: Delay between polls (defaults to settings)
            timeout_seconds: HTTP timeout (defaults to settings)
        """
        settings = get_settings()

        self._buffer = buffer
        self._spot_url = (spot_url or settings.binance_rest_url).rstrip("/")
        self._futures_url = (futures_url or settings.binance_futures_url).rstrip("/")
        self._poll_interval = (
            poll_interval_seconds
            if poll_interval_seconds is not None
            else settings.poll_interval_seconds
        )
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=timeout_seconds or settings.http_timeout_seconds
        )

        self._ticker_symbols: set[str] = set()
        self._candle_keys: set[tuple[str, str]] = set()
        self._bootstrapped: set[tuple[str, str]] = set()
        self._last_closed_open_time: dict[tuple[str, str], int] = {}
        self._stop_requested = False

    @property
    def ticker_symbols(self) -> set[str]:
        return set(self._ticker_symbols)

    @property
    def candle_keys(self) -> set[tuple[str, str]]:
        return set(self._candle_keys)

    def subscribe(
        self,
        ticker_symbols: set[str],
        candle_keys: set[tuple[str, str]],
    ) -> None:
        """Replace the polled markets.

        Args:
            ticker_symbols: Market symbols to poll tickers for
            candle_keys: (symbol, interval) pairs to poll klines for
        """
        self._ticker_symbols = {s.upper() for s in ticker_symbols}
        self._candle_keys = {(s.upper(), i) for s, i in candle_keys}
        # Forget bootstrap state for dropped keys so a re-subscribe reloads history
        self._bootstrapped &= self._candle_keys
        for key in list(self._last_closed_open_time):
            if key not in self._candle_keys:
                del self._last_closed_open_time[key]

    def _base_url(self, symbol: str) -> str:
        return self._futures_url if _is_perp(symbol) else self._spot_url

    def _klines_path(self, symbol: str) -> str:
        return "/fapi/v1/klines" if _is_perp(symbol) else "/api/v3/klines"

    async def _get_json(self, url: str, params: dict | None = None):
        response = await self._client.get(url, params=params)
        response.raise_for_status()
        return response.json()

    async def fetch_tickers(self, now_ms: int | None = None) -> int:
        """Poll 24h tickers for every subscribed symbol.

        Returns:
            Number of tickers pushed
        """
        if not self._ticker_symbols:
            return 0
        received_at = now_ms if now_ms is not None else int(time.time() * 1000)
        pushed = 0

        spot = sorted(s for s in self._ticker_symbols if not _is_perp(s))
        perps = sorted(s for s in self._ticker_symbols if _is_perp(s))

        if spot:
            symbols_param = "[" + ",".join(f'"{s}"' for s in spot) + "]"
            data = await self._get_json(
                f"{self._spot_url}/api/v3/ticker/24hr", {"symbols": symbols_param}
            )
            for row in data:
                self._buffer.put_ticker(
                    symbol=row["symbol"],
                    price=float(row["lastPrice"]),
                    change_percent=float(row["priceChangePercent"]),
                    received_at=received_at,
                )
                pushed += 1

        if perps:
            wanted = {_exchange_symbol(s) for s in perps}
            data = await self._get_json(f"{self._futures_url}/fapi/v1/ticker/24hr")
            for row in data:
                if row["symbol"] not in wanted:
                    continue
                self._buffer.put_ticker(
                    symbol=f"{row['symbol']}{PERP_SUFFIX}",
                    price=float(row["lastPrice"]),
                    change_percent=float(row["priceChangePercent"]),
                    received_at=received_at,
                )
                pushed += 1

        return pushed

    async def bootstrap_history(
        self,
        symbol: str,
        interval: str,
        now_ms: int | None = None,
    ) -> int:
        """Load the most recent closes for a (symbol, interval).

        Returns:
            Number of closes loaded
        """
        now = now_ms if now_ms is not None else int(time.time() * 1000)
        data = await self._get_json(
            f"{self._base_url(symbol)}{self._klines_path(symbol)}",
            {
                "symbol": _exchange_symbol(symbol),
                "interval": interval,
                "limit": HISTORY_BOOTSTRAP_CANDLES,
            },
        )
        if not data:
            return 0

        closes = [float(k[KLINE_CLOSE]) for k in data]
        last = data[-1]
        self._buffer.load_history(
            symbol=symbol,
            interval=interval,
            closes=closes,
            last_open_time=int(last[KLINE_OPEN_TIME]),
            last_closed=int(last[KLINE_CLOSE_TIME]) < now,
        )

        key = (symbol, interval)
        # Closes already in the bootstrap must not be pushed again as updates
        for kline in reversed(data):
            if int(kline[KLINE_CLOSE_TIME]) < now:
                self._last_closed_open_time[key] = int(kline[KLINE_OPEN_TIME])
                break
        self._bootstrapped.add(key)
        logger.info(f"Loaded {len(closes)} {interval} closes for {symbol}")
        return len(closes)

    async def fetch_candles(
        self,
        symbol: str,
        interval: str,
        now_ms: int | None = None,
    ) -> int:
        """Push the latest klines for a (symbol, interval) as candle updates.

        A closed kline is pushed once; the live kline on every poll.

        Returns:
            Number of updates pushed
        """
        now = now_ms if now_ms is not None else int(time.time() * 1000)
        data = await self._get_json(
            f"{self._base_url(symbol)}{self._klines_path(symbol)}",
            {"symbol": _exchange_symbol(symbol), "interval": interval, "limit": 2},
        )
        key = (symbol, interval)
        pushed = 0
        for kline in data:
            open_time = int(kline[KLINE_OPEN_TIME])
            closed = int(kline[KLINE_CLOSE_TIME]) < now
            if closed:
                last_seen = self._last_closed_open_time.get(key)
                if last_seen is not None and open_time <= last_seen:
                    continue
                self._last_closed_open_time[key] = open_time
            self._buffer.put_candle(
                symbol=symbol,
                interval=interval,
                close=float(kline[KLINE_CLOSE]),
                open_time=open_time,
                closed=closed,
            )
            pushed += 1
        return pushed

    async def poll_once(self, now_ms: int | None = None) -> int:
        """Run one poll over all subscriptions.

        Request failures are logged and skipped; the next poll retries.

        Returns:
            Number of items pushed
        """
        pushed = 0
        try:
            pushed += await self.fetch_tickers(now_ms)
        except (httpx.HTTPError, KeyError, ValueError) as e:
            logger.warning(f"Ticker poll failed: {e}")

        for symbol, interval in sorted(self._candle_keys):
            try:
                if (symbol, interval) not in self._bootstrapped:
                    await self.bootstrap_history(symbol, interval, now_ms)
                pushed += await self.fetch_candles(symbol, interval, now_ms)
            except (httpx.HTTPError, KeyError, ValueError, IndexError) as e:
                logger.warning(f"Kline poll failed for {symbol} {interval}: {e}")

        return pushed

    async def run(self, max_polls: int | None = None) -> None:
        """Poll until ``stop()`` is called or ``max_polls`` is reached."""
        self._stop_requested = False
        polls = 0
        while not self._stop_requested:
            if max_polls is not None and polls >= max_polls:
                break
            await self.poll_once()
            polls += 1
            if not self._stop_requested:
                await asyncio.sleep(self._poll_interval)

    def stop(self) -> None:
        """Request the polling loop to stop."""
        self._stop_requested = True

    async def aclose(self) -> None:
        """Close the HTTP client if this poller created it."""
        if self._owns_client:
            await self._client.aclose()
