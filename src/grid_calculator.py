"""Target price levels for a symmetric geometric grid."""

from __future__ import annotations

from decimal import Decimal
from typing import List, Optional

from errors import ConfigurationError
from market_utils import price_step, quantize_buy_price, quantize_sell_price
from models import GridLevel, Side, SymbolMeta


def _next_buy(raw: Decimal, previous: Optional[Decimal], meta: SymbolMeta) -> Decimal:
    price = quantize_buy_price(raw, meta)
    if previous is not None and price >= previous:
        price = quantize_buy_price(previous - price_step(previous, meta), meta)
    return price


def _next_sell(raw: Decimal, previous: Optional[Decimal], meta: SymbolMeta) -> Decimal:
    price = quantize_sell_price(raw, meta)
    if previous is not None and price <= previous:
        price = quantize_sell_price(previous + price_step(previous, meta), meta)
    return price


def compute_grid_levels(
    mid: Decimal, grid_size: int, spacing_pct, meta: SymbolMeta
) -> List[GridLevel]:
    """Return ``2 * grid_size`` levels around ``mid``.

    Rung ``i`` (1-based) sits at ``mid / factor**i`` on the buy side and
    ``mid * factor**i`` on the sell side, with ``factor = 1 + spacing_pct/100``.
    Both carry ``level_index = i - 1``.  Buy prices are floored and sell
    prices ceiled to the symbol precision so that every buy stays strictly
    below ``mid`` and every sell strictly above it.

    When the spacing is finer than the price step, a rung that would land on
    its inner neighbour's price is pushed one step further out, so prices on
    each side stay distinct and move strictly away from ``mid``.
    """
    mid = Decimal(str(mid))
    if not mid.is_finite() or mid <= 0:
        raise ConfigurationError(f"mid price must be positive, got {mid}")
    if grid_size < 1:
        raise ConfigurationError("grid_size must be at least 1")
    factor = 1 + Decimal(str(spacing_pct)) / 100
    if factor <= 1:
        raise ConfigurationError("spacing_pct must be positive")

    levels: List[GridLevel] = []
    step = Decimal(1)
    buy: Optional[Decimal] = None
    sell: Optional[Decimal] = None
    for i in range(1, grid_size + 1):
        step *= factor
        buy = _next_buy(mid / step, buy, meta)
        sell = _next_sell(mid * step, sell, meta)
        if buy <= 0 or sell <= 0:
            raise ConfigurationError(
                f"grid level {i} quantizes to a non-positive price (mid={mid}, spacing={spacing_pct}%)"
            )
        levels.append(GridLevel(price=buy, side=Side.BUY, level_index=i - 1))
        levels.append(GridLevel(price=sell, side=Side.SELL, level_index=i - 1))
    return levels
