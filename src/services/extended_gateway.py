"""Exchange gateway for Extended / X10 perpetuals.

Wraps :class:`x10.perpetual.trading_client.PerpetualTradingClient` behind the
small async interface the engine consumes.  SDK and transport failures
surface as :class:`errors.TransientExchangeError`.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Any, Iterable, List, Optional, Tuple

import aiohttp
from x10.errors import X10Error
from x10.perpetual.orders import OrderSide

from errors import TransientExchangeError
from market_utils import decimals_of
from models import AccountState, OpenOrder, Position, Side, SymbolMeta
from utils import logger, to_decimal


def _get(obj: Any, *names: str, default=None):
    for name in names:
        value = getattr(obj, name, None)
        if value is not None:
            return value
    return default


def get_tick(cfg) -> Optional[Decimal]:
    min_change = getattr(cfg, "min_price_change", None)
    if min_change is not None:
        return Decimal(str(min_change))
    prec = getattr(cfg, "price_precision", None)
    return Decimal(1).scaleb(-prec) if prec is not None else None


def _signed_size(position) -> str:
    size = to_decimal(_get(position, "size"), Decimal(0))
    side = str(_get(position, "side", default="")).upper()
    if side.endswith("SHORT"):
        size = -abs(size)
    return str(size)


class ExtendedGateway:
    def __init__(self, account):
        self.account = account
        self.client = account.get_async_client()

    async def _call(self, what: str, op):
        try:
            resp = await op()
        except (X10Error, aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransientExchangeError(f"{what} failed: {e}", status_code=getattr(e, "status", None)) from e
        error = getattr(resp, "error", None)
        if error:
            raise TransientExchangeError(f"{what} failed: {error}")
        return resp

    # ------------------------------------------------------------------
    async def list_instruments(self) -> List[SymbolMeta]:
        res = await self._call("get_markets", lambda: self.client.markets_info.get_markets())
        instruments = []
        for market in res.data or []:
            cfg = market.trading_config
            instruments.append(
                SymbolMeta(
                    symbol=market.name,
                    asset_id=_get(market, "asset_name", default=market.name),
                    size_decimals=decimals_of(_get(cfg, "min_order_size_change", default="1")),
                    price_tick=get_tick(cfg),
                )
            )
        return instruments

    async def mid_price(self, symbol: str) -> Optional[Decimal]:
        res = await self._call(
            "get_markets", lambda: self.client.markets_info.get_markets(market_names=[symbol])
        )
        market = next((m for m in res.data or [] if m.name == symbol), None)
        stats = _get(market, "market_stats") if market is not None else None
        if stats is None:
            return None
        bid = to_decimal(_get(stats, "bid_price"))
        ask = to_decimal(_get(stats, "ask_price"))
        if bid and ask and bid > 0 and ask > 0:
            return (bid + ask) / 2
        mark = to_decimal(_get(stats, "mark_price", "last_price"))
        return mark if mark and mark > 0 else None

    async def open_orders(self) -> List[OpenOrder]:
        res = await self._call("get_open_orders", lambda: self.client.account.get_open_orders())
        return [
            OpenOrder(
                order_id=o.id,
                symbol=o.market,
                side=str(getattr(o.side, "value", o.side)),
                price=str(o.price),
                size=str(_get(o, "qty", "size", default="0")),
                client_order_id=_get(o, "external_id"),
            )
            for o in res.data or []
        ]

    async def account_state(self) -> AccountState:
        balance, positions = await asyncio.gather(
            self._call("get_balance", lambda: self.client.account.get_balance()),
            self._call("get_positions", lambda: self.client.account.get_positions()),
        )
        bal = balance.data
        return AccountState(
            account_value=str(_get(bal, "equity", default="")) or None,
            total_raw_usd=str(_get(bal, "balance", default="")) or None,
            positions=[
                Position(
                    symbol=p.market,
                    size=_signed_size(p),
                    entry_price=str(_get(p, "open_price", default="0")),
                    unrealized_pnl=str(_get(p, "unrealised_pnl", default="0")),
                )
                for p in positions.data or []
            ],
        )

    async def place_order(
        self, *, symbol: str, side: Side, price: Decimal, size: Decimal, client_order_id: str
    ):
        res = await self._call(
            "place_order",
            lambda: self.client.place_order(
                market_name=symbol,
                amount_of_synthetic=size,
                price=price,
                side=OrderSide.BUY if side == Side.BUY else OrderSide.SELL,
                post_only=False,
                external_id=client_order_id,
            ),
        )
        return res.data

    async def cancel_orders(self, cancels: Iterable[Tuple[str, Any]]):
        order_ids = [int(oid) for _symbol, oid in cancels]
        if not order_ids:
            return None
        return await self._call(
            "mass_cancel", lambda: self.client.orders.mass_cancel(order_ids=order_ids)
        )

    async def close(self) -> None:
        try:
            await self.account.close()
        except Exception as exc:  # pragma: no cover - best effort cleanup
            logger.debug("error closing extended client: %s", exc)
