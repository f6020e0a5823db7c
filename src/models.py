"""Plain records exchanged between the gateway, the reconciler and the engine."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, asdict
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from config import StrategyConfig


class Side(str, Enum):
    BUY = "buy"
    SELL = "sell"


# Raw side encodings seen on the supported venues.
_RAW_BUY = {"B", "BUY", "BID"}
_RAW_SELL = {"A", "S", "SELL", "ASK"}


def side_from_raw(raw: Any) -> Optional[Side]:
    """Map an exchange side encoding (``"B"``, ``OrderSide.SELL``...) to :class:`Side`."""
    if raw is None:
        return None
    value = getattr(raw, "value", None) or getattr(raw, "name", None) or raw
    text = str(value).strip().upper()
    if text in _RAW_BUY:
        return Side.BUY
    if text in _RAW_SELL:
        return Side.SELL
    return None


@dataclass(frozen=True)
class SymbolMeta:
    """Precision data for one tradable instrument.

    ``price_tick`` is set for venues with a fixed price increment; when it is
    ``None`` prices follow the significant-figure rule in ``market_utils``.
    """

    symbol: str
    asset_id: Any
    size_decimals: int
    price_tick: Optional[Decimal] = None


@dataclass(frozen=True)
class GridLevel:
    price: Decimal
    side: Side
    level_index: int


@dataclass(frozen=True)
class OpenOrder:
    order_id: Any
    symbol: str
    side: str
    price: str
    size: str
    client_order_id: Optional[str] = None


@dataclass(frozen=True)
class Position:
    symbol: str
    size: str
    entry_price: str
    unrealized_pnl: str = "0"


@dataclass(frozen=True)
class AccountState:
    account_value: Optional[str]
    total_raw_usd: Optional[str] = None
    positions: List[Position] = field(default_factory=list)

    def position_for(self, symbol: str) -> Optional[Position]:
        wanted = symbol.upper()
        return next((p for p in self.positions if p.symbol.upper() == wanted), None)


@dataclass(frozen=True)
class PnlSummary:
    account_value: str = "0"
    total_raw_usd: str = "0"
    unrealized_pnl: str = "0"


@dataclass
class EngineState:
    """Mutable run state; only :class:`engine.GridEngine` writes to it."""

    running: bool = False
    config: Optional[StrategyConfig] = None
    last_error: Optional[str] = None
    meta: Optional[SymbolMeta] = None
    initial_account_value: Optional[float] = None
    tick_task: Optional[asyncio.Task] = None

    def clear_run(self) -> None:
        self.running = False
        self.config = None
        self.meta = None
        self.initial_account_value = None
        self.tick_task = None


@dataclass(frozen=True)
class EngineStatus:
    running: bool
    config: Optional[StrategyConfig] = None
    error: Optional[str] = None
    orders: List[OpenOrder] = field(default_factory=list)
    positions: List[Position] = field(default_factory=list)
    pnl: PnlSummary = field(default_factory=PnlSummary)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if self.config is not None:
            data["config"] = self.config.to_dict()
        return data
