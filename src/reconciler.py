"""Diff target grid levels against resting orders and place what is missing.

Reconciliation only ever adds orders.  A level counts as covered when a
resting order on the same side sits within half a grid spacing of it; the
band absorbs quantization jitter while still catching levels left behind by
a moving mid.  Cancelling is left to :meth:`engine.GridEngine.stop`.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal, InvalidOperation
from typing import Iterable, List, Optional, Sequence, Tuple

from backoff_utils import call_with_retries
from config import PLACE_DELAY_SEC, StrategyConfig
from errors import ConfigurationError, TransientExchangeError
from grid_calculator import compute_grid_levels
from id_generator import level_client_order_id, parse_client_order_id
from market_utils import quantize_size
from models import GridLevel, OpenOrder, Side, SymbolMeta, side_from_raw
from utils import logger


def _as_decimal(value) -> Optional[Decimal]:
    try:
        num = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    return num if num.is_finite() else None


def price_within_tolerance(a, b, tolerance_pct) -> bool:
    """``|a - b| / avg(a, b) * 100 <= tolerance_pct`` (edge inclusive).

    Evaluated in Decimal without dividing, so an order sitting exactly on
    the band edge is reliably treated as inside it.
    """
    da, db = _as_decimal(a), _as_decimal(b)
    if da is None or db is None:
        return False
    total = da + db
    if total == 0:
        return True
    # diff / (total / 2) * 100 <= tol  <=>  diff * 200 <= tol * |total|
    return abs(da - db) * 200 <= Decimal(str(tolerance_pct)) * abs(total)


def covering_order(
    level: GridLevel, orders: Iterable[OpenOrder], tolerance_pct
) -> Optional[OpenOrder]:
    for order in orders:
        if side_from_raw(order.side) != level.side:
            continue
        if price_within_tolerance(order.price, level.price, tolerance_pct):
            return order
    return None


def levels_to_place(
    levels: Sequence[GridLevel], orders: Sequence[OpenOrder], tolerance_pct
) -> List[GridLevel]:
    return [lvl for lvl in levels if covering_order(lvl, orders, tolerance_pct) is None]


def grid_slots(orders: Iterable[OpenOrder]) -> List[Tuple[int, Side]]:
    """Grid slots (level index, side) of the orders tagged with a grid client id."""
    slots = (parse_client_order_id(o.client_order_id) for o in orders)
    return sorted((s for s in slots if s is not None), key=lambda s: (s[0], s[1].value))


def order_size_for(config: StrategyConfig, meta: SymbolMeta) -> Decimal:
    size = quantize_size(config.order_size, meta)
    if size <= 0:
        raise ConfigurationError(
            f"Order size too small for symbol precision: {config.order_size} "
            f"rounds to {size} at {meta.size_decimals} decimals"
        )
    return size


async def reconcile_grid(
    gateway,
    config: StrategyConfig,
    meta: SymbolMeta,
    *,
    limiter=None,
    place_delay: float = PLACE_DELAY_SEC,
    sleep=asyncio.sleep,
) -> List[GridLevel]:
    """Run one reconciliation pass and return the levels that were placed.

    Placements go out one at a time, each through the retry policy and each
    followed by ``place_delay`` seconds of quiet.  The first placement that
    still fails after its retries aborts the pass; orders placed earlier in
    the pass are left resting.
    """
    mid = await gateway.mid_price(config.symbol)
    if mid is None:
        raise TransientExchangeError(f"No mid price for {config.symbol}")

    expected = compute_grid_levels(mid, config.grid_size, config.spacing_pct, meta)
    orders = [o for o in await gateway.open_orders() if o.symbol == config.symbol]
    missing = levels_to_place(expected, orders, config.tolerance_pct)
    if not missing:
        logger.debug(
            "grid in sync | symbol=%s mid=%s resting=%d", config.symbol, mid, len(orders)
        )
        return []

    size = order_size_for(config, meta)
    logger.info(
        "reconcile | symbol=%s mid=%s resting=%d tagged=%d missing=%d",
        config.symbol,
        mid,
        len(orders),
        len(grid_slots(orders)),
        len(missing),
    )

    placed: List[GridLevel] = []
    for level in missing:
        cloid = level_client_order_id(level.level_index, level.side)
        await call_with_retries(
            lambda level=level, cloid=cloid: gateway.place_order(
                symbol=config.symbol,
                side=level.side,
                price=level.price,
                size=size,
                client_order_id=cloid,
            ),
            limiter=limiter,
        )
        placed.append(level)
        logger.info(
            "order placed | symbol=%s side=%s idx=%d price=%s size=%s cloid=%s",
            config.symbol,
            level.side.value,
            level.level_index,
            level.price,
            size,
            cloid,
        )
        await sleep(place_delay)
    return placed
