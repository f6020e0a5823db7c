from __future__ import annotations

from typing import Optional, Tuple

from models import Side

# 0x + 32 hex digits: the client order id width Hyperliquid accepts.
CLOID_HEX_DIGITS = 32


def level_slot(level_index: int, side: Side) -> int:
    """Pack ``(level_index, side)`` into a positive integer.

    Buys take the even slots and sells the odd ones, offset by one so the id
    is never all zeros.
    """
    if level_index < 0:
        raise ValueError("level_index must be non-negative")
    return level_index * 2 + (0 if side == Side.BUY else 1) + 1


def level_client_order_id(level_index: int, side: Side) -> str:
    """Return the stable client order id for a grid level.

    The same level always maps to the same id, across passes and restarts,
    and distinct levels never share one.
    """
    return "0x" + format(level_slot(level_index, side), f"0{CLOID_HEX_DIGITS}x")


def parse_client_order_id(cloid: Optional[str]) -> Optional[Tuple[int, Side]]:
    """Inverse of :func:`level_client_order_id`; ``None`` for foreign ids."""
    if not cloid or not cloid.startswith("0x") or len(cloid) != CLOID_HEX_DIGITS + 2:
        return None
    try:
        slot = int(cloid[2:], 16)
    except ValueError:
        return None
    if slot < 1:
        return None
    slot -= 1
    return slot // 2, Side.BUY if slot % 2 == 0 else Side.SELL
