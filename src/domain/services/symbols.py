"""Symbol normalization and composite (ratio) symbol pricing.

A composite symbol ``BASE/QUOTE`` is priced as ``base / quote``. Each
leg prefers its spot market (``BASEUSDT``) and falls back to the
perpetual (``BASEUSDT.P``) independently, so one leg may be spot while
the other is perpetual.
"""

from dataclasses import dataclass
from typing import Mapping

from src.domain.models.market import Ticker
from src.domain.rules import PERP_SUFFIX, QUOTE_ASSET


@dataclass(frozen=True)
class CompositeLegs:
    """Spot and perpetual market symbols for both legs of a ratio."""

    symbol: str  # e.g. "ETH/BTC"
    base_token: str
    quote_token: str
    base_spot: str
    base_perp: str
    quote_spot: str
    quote_perp: str

    @property
    def market_symbols(self) -> tuple[str, str, str, str]:
        """All underlying markets that must be streamed for this ratio."""
        return (self.base_spot, self.base_perp, self.quote_spot, self.quote_perp)


@dataclass(frozen=True)
class CompositeQuote:
    """Derived price of a composite symbol."""

    symbol: str
    price: float
    change_percent: float | None
    base_source: str  # Market symbol actually used for the base leg
    quote_source: str


def normalize_symbol(value: str | None) -> str:
    """Upper-case and strip all whitespace."""
    if not value:
        return ""
    return "".join(str(value).upper().split())


def is_composite_symbol(value: str | None) -> bool:
    """Whether the symbol is a ``BASE/QUOTE`` ratio with both parts present."""
    v = normalize_symbol(value)
    parts = v.split("/")
    return len(parts) == 2 and bool(parts[0]) and bool(parts[1])


def strip_perp_suffix(symbol: str) -> str:
    """Remove a trailing ``.P`` perpetual marker."""
    v = normalize_symbol(symbol)
    return v[: -len(PERP_SUFFIX)] if v.endswith(PERP_SUFFIX) else v


def token_to_spot_symbol(token: str) -> str:
    """Map a token (``ETH``) to its spot market (``ETHUSDT``)."""
    clean = strip_perp_suffix(token)
    if not clean:
        return ""
    return clean if clean.endswith(QUOTE_ASSET) else f"{clean}{QUOTE_ASSET}"


def get_composite_legs(value: str) -> CompositeLegs | None:
    """Parse a composite symbol into its leg markets.

    Returns:
        CompositeLegs, or None if the symbol is not a composite
    """
    if not is_composite_symbol(value):
        return None
    base, quote = normalize_symbol(value).split("/")
    base_token = strip_perp_suffix(base)
    quote_token = strip_perp_suffix(quote)
    base_spot = token_to_spot_symbol(base_token)
    quote_spot = token_to_spot_symbol(quote_token)
    if not base_spot or not quote_spot:
        return None
    return CompositeLegs(
        symbol=f"{base}/{quote}",
        base_token=base_token,
        quote_token=quote_token,
        base_spot=base_spot,
        base_perp=f"{base_spot}{PERP_SUFFIX}",
        quote_spot=quote_spot,
        quote_perp=f"{quote_spot}{PERP_SUFFIX}",
    )


def expand_market_symbols(symbols: list[str]) -> list[str]:
    """Expand display symbols into the underlying markets to subscribe to.

    Plain symbols pass through; composites expand to spot and perpetual
    markets of both legs. Order is preserved, duplicates removed.
    """
    out: dict[str, None] = {}
    for raw in symbols:
        normalized = normalize_symbol(raw)
        if not normalized:
            continue
        legs = get_composite_legs(normalized)
        if legs is None:
            out[normalized] = None
        else:
            for market in legs.market_symbols:
                out[market] = None
    return list(out)


def _pick_leg(
    tickers: Mapping[str, Ticker], spot: str, perp: str
) -> Ticker | None:
    """Prefer the spot ticker, fall back to the perpetual."""
    return tickers.get(spot) or tickers.get(perp)


def resolve_composite_quote(
    symbol: str,
    tickers: Mapping[str, Ticker],
) -> CompositeQuote | None:
    """Price a composite symbol from the latest leg tickers.

    Args:
        symbol: Composite symbol, e.g. "ETH/BTC"
        tickers: Latest tickers keyed by market symbol

    Returns:
        CompositeQuote, or None if a leg is missing or the quote price is zero
    """
    legs = get_composite_legs(symbol)
    if legs is None:
        return None

    base = _pick_leg(tickers, legs.base_spot, legs.base_perp)
    quote = _pick_leg(tickers, legs.quote_spot, legs.quote_perp)
    if base is None or quote is None or quote.price == 0:
        return None

    change = None
    if base.change_percent is not None and quote.change_percent is not None:
        ratio = (1 + base.change_percent / 100.0) / (1 + quote.change_percent / 100.0) - 1
        change = ratio * 100.0

    return CompositeQuote(
        symbol=legs.symbol,
        price=base.price / quote.price,
        change_percent=change,
        base_source=base.symbol,
        quote_source=quote.symbol,
    )


def resolve_price(symbol: str, tickers: Mapping[str, Ticker]) -> float | None:
    """Current price for a plain or composite symbol, None if unavailable."""
    if is_composite_symbol(symbol):
        quote = resolve_composite_quote(symbol, tickers)
        return quote.price if quote else None
    ticker = tickers.get(normalize_symbol(symbol))
    return ticker.price if ticker else None
