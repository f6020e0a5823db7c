"""Exchange gateway for Hyperliquid perpetuals.

The official SDK is blocking (``requests``), so every call is pushed to the
default executor.  Instruments are the ``meta`` universe; the asset id is
the universe index.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

import requests
from eth_account import Account
from hyperliquid.exchange import Exchange
from hyperliquid.info import Info
from hyperliquid.utils import constants
from hyperliquid.utils.error import Error as HyperliquidError
from hyperliquid.utils.types import Cloid

from errors import TransientExchangeError
from models import AccountState, OpenOrder, Position, Side, SymbolMeta
from utils import to_decimal, wire_decimal

GTC_LIMIT = {"limit": {"tif": "Gtc"}}


def _order_errors(resp: Any) -> List[str]:
    """Collect per-order error strings from an ``order``/``cancel`` response."""
    if not isinstance(resp, dict):
        return [f"unexpected response: {resp!r}"]
    if resp.get("status") != "ok":
        return [str(resp.get("response", resp))]
    data = (resp.get("response") or {}).get("data") or {}
    return [
        str(s["error"])
        for s in data.get("statuses", [])
        if isinstance(s, dict) and "error" in s
    ]


class HyperliquidGateway:
    def __init__(self, account, *, info: Optional[Info] = None, exchange: Optional[Exchange] = None):
        base_url = constants.TESTNET_API_URL if account.testnet else constants.MAINNET_API_URL
        wallet = Account.from_key(account.private_key)
        self.address = account.account_address or wallet.address
        self.info = info or Info(base_url, skip_ws=True)
        self.exchange = exchange or Exchange(
            wallet, base_url, account_address=account.account_address
        )

    async def _call(self, what: str, fn):
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, fn)
        except (HyperliquidError, requests.RequestException) as e:
            status = getattr(e, "status_code", None)
            raise TransientExchangeError(f"{what} failed: {e}", status_code=status) from e

    # ------------------------------------------------------------------
    async def list_instruments(self) -> List[SymbolMeta]:
        meta = await self._call("meta", self.info.meta)
        return [
            SymbolMeta(symbol=u["name"], asset_id=idx, size_decimals=int(u["szDecimals"]))
            for idx, u in enumerate(meta.get("universe", []))
        ]

    async def mid_price(self, symbol: str) -> Optional[Decimal]:
        mids: Dict[str, str] = await self._call("all_mids", self.info.all_mids)
        mid = to_decimal(mids.get(symbol))
        return mid if mid and mid > 0 else None

    async def open_orders(self) -> List[OpenOrder]:
        raw = await self._call("open_orders", lambda: self.info.open_orders(self.address))
        return [
            OpenOrder(
                order_id=o["oid"],
                symbol=o["coin"],
                side=o["side"],
                price=o.get("limitPx") or "0",
                size=o.get("sz") or "0",
                client_order_id=o.get("cloid"),
            )
            for o in raw or []
        ]

    async def account_state(self) -> AccountState:
        state = await self._call("user_state", lambda: self.info.user_state(self.address))
        summary = state.get("marginSummary") or state.get("crossMarginSummary") or {}
        positions = []
        for ap in state.get("assetPositions") or []:
            p = ap.get("position", {})
            positions.append(
                Position(
                    symbol=p.get("coin", ""),
                    size=p.get("szi") or "0",
                    entry_price=p.get("entryPx") or "0",
                    unrealized_pnl=p.get("unrealizedPnl") or "0",
                )
            )
        return AccountState(
            account_value=summary.get("accountValue"),
            total_raw_usd=summary.get("totalRawUsd"),
            positions=positions,
        )

    async def place_order(
        self, *, symbol: str, side: Side, price: Decimal, size: Decimal, client_order_id: str
    ):
        resp = await self._call(
            "order",
            lambda: self.exchange.order(
                symbol,
                side == Side.BUY,
                float(wire_decimal(size)),
                float(wire_decimal(price)),
                GTC_LIMIT,
                reduce_only=False,
                cloid=Cloid.from_str(client_order_id),
            ),
        )
        errors = _order_errors(resp)
        if errors:
            raise TransientExchangeError(f"order rejected: {'; '.join(errors)}")
        return resp

    async def cancel_orders(self, cancels: Iterable[Tuple[str, Any]]):
        requests_ = [{"coin": symbol, "oid": int(oid)} for symbol, oid in cancels]
        if not requests_:
            return None
        resp = await self._call("bulk_cancel", lambda: self.exchange.bulk_cancel(requests_))
        errors = _order_errors(resp)
        if errors:
            raise TransientExchangeError(f"cancel rejected: {'; '.join(errors)}")
        return resp

    async def close(self) -> None:
        # Info was created without a websocket; nothing to release.
        return None
