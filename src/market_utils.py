# market_utils.py
import re
import difflib
from decimal import Decimal, ROUND_CEILING, ROUND_DOWN, ROUND_FLOOR
from typing import Dict, Iterable, List, Optional, Tuple

from errors import ConfigurationError
from models import SymbolMeta

# Hyperliquid perp prices: 5 significant figures, at most 6 - szDecimals decimals.
MAX_SIG_FIGS = 5
MAX_PERP_DECIMALS = 6


def _normalize(name: str) -> str:
    """Normalise a symbol (case, separators, exotic characters)."""
    name = name.strip().upper()
    name = re.sub(r"[\s_]+", "-", name)
    name = re.sub(r"[^A-Z0-9\-]", "", name)
    return name


def verify_symbol(
    instruments: Iterable[SymbolMeta], symbol: str
) -> Tuple[Optional[SymbolMeta], List[str]]:
    """Return ``(meta, suggestions)``; ``meta`` is ``None`` when not listed."""
    cache: Dict[str, SymbolMeta] = {m.symbol: m for m in instruments}

    if symbol in cache:
        return cache[symbol], []

    norm_map = {_normalize(k): k for k in cache}
    norm = _normalize(symbol)
    if norm in norm_map:
        return cache[norm_map[norm]], []

    close = difflib.get_close_matches(norm, list(norm_map), n=5, cutoff=0.6)
    return None, [norm_map[s] for s in close]


def ensure_symbol(instruments: Iterable[SymbolMeta], symbol: str) -> SymbolMeta:
    """Resolve ``symbol`` or raise :class:`ConfigurationError` with suggestions."""
    meta, suggestions = verify_symbol(instruments, symbol)
    if meta:
        return meta
    hint = f" (did you mean: {', '.join(suggestions)})" if suggestions else ""
    raise ConfigurationError(f"Unknown symbol: {symbol}{hint}")


def decimals_of(step) -> int:
    """Number of decimals in a step such as ``Decimal("0.001")`` -> 3."""
    exp = Decimal(str(step)).normalize().as_tuple().exponent
    return max(0, -exp)


def price_step(price: Decimal, meta: SymbolMeta) -> Decimal:
    """Smallest price increment allowed around ``price``.

    The fixed tick when the symbol has one; otherwise the last digit kept
    by the significant-figure rule (never finer than ``6 - size_decimals``
    decimals, never coarser than 1).
    """
    if meta.price_tick:
        return meta.price_tick
    max_decimals = max(0, MAX_PERP_DECIMALS - meta.size_decimals)
    exp = min(max(price.adjusted() - (MAX_SIG_FIGS - 1), -max_decimals), 0)
    return Decimal(1).scaleb(exp)


def quantize_price(price: Decimal, meta: SymbolMeta, rounding=ROUND_FLOOR) -> Decimal:
    """Snap ``price`` to the symbol's allowed precision.

    With a fixed ``price_tick`` the result is a multiple of the tick.
    Otherwise at most 5 significant figures and ``6 - size_decimals``
    decimals are kept; integer prices are always allowed.
    """
    if price <= 0:
        return Decimal(0)
    step = price_step(price, meta)
    if meta.price_tick:
        return (price / step).to_integral_value(rounding=rounding) * step
    return price.quantize(step, rounding=rounding)


def quantize_buy_price(price: Decimal, meta: SymbolMeta) -> Decimal:
    return quantize_price(price, meta, rounding=ROUND_FLOOR)


def quantize_sell_price(price: Decimal, meta: SymbolMeta) -> Decimal:
    return quantize_price(price, meta, rounding=ROUND_CEILING)


def quantize_size(size, meta: SymbolMeta) -> Decimal:
    """Truncate an order size to ``size_decimals``."""
    step = Decimal(1).scaleb(-meta.size_decimals)
    return Decimal(str(size)).quantize(step, rounding=ROUND_DOWN)
