import sys
from decimal import Decimal
from pathlib import Path
from types import SimpleNamespace

import aiohttp
import pytest
import requests

# Ensure src/ is importable
sys.path.append(str(Path(__file__).resolve().parents[1] / "src"))

from x10.perpetual.orders import OrderSide  # noqa: E402

from account import HyperliquidAccount  # noqa: E402
from errors import ConfigurationError, TransientExchangeError  # noqa: E402
from models import Side, SymbolMeta, side_from_raw  # noqa: E402
from services.extended_gateway import ExtendedGateway  # noqa: E402
from services.hyperliquid_gateway import GTC_LIMIT, HyperliquidGateway  # noqa: E402

TEST_KEY = "0x" + "11" * 32


def _ok(data):
    return SimpleNamespace(data=data, error=None)


class Recorder:
    """Async callable returning a canned response and keeping its kwargs."""

    def __init__(self, response=None, exc=None):
        self.response = response
        self.exc = exc
        self.calls = []

    async def __call__(self, *args, **kwargs):
        self.calls.append((args, kwargs))
        if self.exc is not None:
            raise self.exc
        return self.response


def _extended(**client_parts):
    client = SimpleNamespace(
        markets_info=SimpleNamespace(get_markets=client_parts.get("get_markets", Recorder(_ok([])))),
        account=SimpleNamespace(
            get_open_orders=client_parts.get("get_open_orders", Recorder(_ok([]))),
            get_balance=client_parts.get("get_balance", Recorder(_ok(None))),
            get_positions=client_parts.get("get_positions", Recorder(_ok([]))),
        ),
        orders=SimpleNamespace(mass_cancel=client_parts.get("mass_cancel", Recorder(_ok(None)))),
        place_order=client_parts.get("place_order", Recorder(_ok(SimpleNamespace(id=1)))),
    )
    account = SimpleNamespace(get_async_client=lambda: client)
    return ExtendedGateway(account)


def _market(name="BTC-USD", bid="100", ask="102", mark="101.5"):
    return SimpleNamespace(
        name=name,
        asset_name=name.split("-")[0],
        trading_config=SimpleNamespace(
            min_order_size_change=Decimal("0.0001"), min_price_change=Decimal("1")
        ),
        market_stats=SimpleNamespace(bid_price=bid, ask_price=ask, mark_price=mark),
    )


# --- Extended ----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_extended_list_instruments():
    gw = _extended(get_markets=Recorder(_ok([_market()])))
    assert await gw.list_instruments() == [
        SymbolMeta(symbol="BTC-USD", asset_id="BTC", size_decimals=4, price_tick=Decimal("1"))
    ]


@pytest.mark.asyncio
async def test_extended_mid_price_from_book_then_mark():
    markets = Recorder(_ok([_market()]))
    gw = _extended(get_markets=markets)
    assert await gw.mid_price("BTC-USD") == Decimal("101")
    assert markets.calls[0][1] == {"market_names": ["BTC-USD"]}

    gw = _extended(get_markets=Recorder(_ok([_market(bid="0", ask=None)])))
    assert await gw.mid_price("BTC-USD") == Decimal("101.5")

    gw = _extended(get_markets=Recorder(_ok([])))
    assert await gw.mid_price("BTC-USD") is None


@pytest.mark.asyncio
async def test_extended_open_orders_mapping():
    raw = SimpleNamespace(
        id=77, market="BTC-USD", side=OrderSide.BUY, price=Decimal("99"), qty=Decimal("0.01"),
        external_id="0x" + "0" * 31 + "1",
    )
    gw = _extended(get_open_orders=Recorder(_ok([raw])))

    (order,) = await gw.open_orders()

    assert order.order_id == 77
    assert order.symbol == "BTC-USD"
    assert side_from_raw(order.side) == Side.BUY
    assert order.price == "99"
    assert order.size == "0.01"
    assert order.client_order_id.endswith("1")


@pytest.mark.asyncio
async def test_extended_account_state_signs_short_positions():
    balance = SimpleNamespace(equity=Decimal("1500.5"), balance=Decimal("1400"))
    short = SimpleNamespace(
        market="BTC-USD", side="SHORT", size=Decimal("0.5"), open_price=Decimal("60000"),
        unrealised_pnl=Decimal("-3.2"),
    )
    gw = _extended(get_balance=Recorder(_ok(balance)), get_positions=Recorder(_ok([short])))

    state = await gw.account_state()

    assert state.account_value == "1500.5"
    assert state.total_raw_usd == "1400"
    assert state.position_for("btc-usd").size == "-0.5"
    assert state.positions[0].unrealized_pnl == "-3.2"


@pytest.mark.asyncio
async def test_extended_place_order_arguments():
    place = Recorder(_ok(SimpleNamespace(id=5)))
    gw = _extended(place_order=place)

    await gw.place_order(
        symbol="BTC-USD", side=Side.SELL, price=Decimal("60100"), size=Decimal("0.001"),
        client_order_id="0x" + "0" * 31 + "2",
    )

    kwargs = place.calls[0][1]
    assert kwargs["market_name"] == "BTC-USD"
    assert kwargs["side"] == OrderSide.SELL
    assert kwargs["price"] == Decimal("60100")
    assert kwargs["amount_of_synthetic"] == Decimal("0.001")
    assert kwargs["post_only"] is False
    assert kwargs["external_id"].endswith("2")


@pytest.mark.asyncio
async def test_extended_cancel_orders_single_mass_cancel():
    cancel = Recorder(_ok(None))
    gw = _extended(mass_cancel=cancel)

    await gw.cancel_orders([("BTC-USD", "11"), ("BTC-USD", 12)])
    await gw.cancel_orders([])

    assert cancel.calls == [((), {"order_ids": [11, 12]})]


@pytest.mark.asyncio
async def test_extended_errors_become_transient():
    gw = _extended(get_open_orders=Recorder(exc=aiohttp.ClientError("reset")))
    with pytest.raises(TransientExchangeError, match="get_open_orders failed"):
        await gw.open_orders()

    gw = _extended(place_order=Recorder(SimpleNamespace(data=None, error="Invalid price")))
    with pytest.raises(TransientExchangeError, match="Invalid price"):
        await gw.place_order(
            symbol="BTC-USD", side=Side.BUY, price=Decimal("1"), size=Decimal("1"),
            client_order_id="0x" + "0" * 32,
        )


# --- Hyperliquid -------------------------------------------------------------------------


class StubInfo:
    def __init__(self):
        self.mids = {"ETH": "2000.5"}
        self.orders = []
        self.state = {}
        self.meta_exc = None

    def meta(self):
        if self.meta_exc is not None:
            raise self.meta_exc
        return {"universe": [{"name": "BTC", "szDecimals": 5}, {"name": "ETH", "szDecimals": 4}]}

    def all_mids(self):
        return self.mids

    def open_orders(self, address):
        self.queried = address
        return self.orders

    def user_state(self, address):
        self.queried = address
        return self.state


class StubExchange:
    def __init__(self, response=None):
        self.response = response or {
            "status": "ok",
            "response": {"type": "order", "data": {"statuses": [{"resting": {"oid": 1}}]}},
        }
        self.orders = []
        self.cancels = []

    def order(self, name, is_buy, sz, limit_px, order_type, reduce_only=False, cloid=None):
        self.orders.append((name, is_buy, sz, limit_px, order_type, reduce_only, cloid))
        return self.response

    def bulk_cancel(self, cancel_requests):
        self.cancels.append(cancel_requests)
        return {"status": "ok", "response": {"type": "cancel", "data": {"statuses": ["success"]}}}


def _hyperliquid(exchange=None, address=None):
    account = SimpleNamespace(private_key=TEST_KEY, account_address=address, testnet=True)
    info = StubInfo()
    return HyperliquidGateway(account, info=info, exchange=exchange or StubExchange()), info


@pytest.mark.asyncio
async def test_hyperliquid_instruments_and_mid():
    gw, info = _hyperliquid()

    assert await gw.list_instruments() == [SymbolMeta("BTC", 0, 5), SymbolMeta("ETH", 1, 4)]
    assert await gw.mid_price("ETH") == Decimal("2000.5")
    assert await gw.mid_price("DOGE") is None


@pytest.mark.asyncio
async def test_hyperliquid_queries_account_address():
    address = "0x" + "ab" * 20
    gw, info = _hyperliquid(address=address)
    info.orders = [
        {"coin": "ETH", "side": "A", "limitPx": "2020.0", "sz": "0.01", "oid": 9,
         "cloid": "0x" + "0" * 31 + "2"},
    ]

    (order,) = await gw.open_orders()

    assert info.queried == address
    assert order.order_id == 9
    assert side_from_raw(order.side) == Side.SELL
    assert order.price == "2020.0"


@pytest.mark.asyncio
async def test_hyperliquid_defaults_to_wallet_address():
    gw, _info = _hyperliquid()
    assert gw.address.lower().startswith("0x")
    assert len(gw.address) == 42


@pytest.mark.asyncio
async def test_hyperliquid_account_state():
    gw, info = _hyperliquid()
    info.state = {
        "marginSummary": {"accountValue": "1012.3", "totalRawUsd": "980.0"},
        "assetPositions": [
            {"position": {"coin": "ETH", "szi": "-0.05", "entryPx": "2010", "unrealizedPnl": "0.5"}}
        ],
    }

    state = await gw.account_state()

    assert state.account_value == "1012.3"
    assert state.total_raw_usd == "980.0"
    assert state.position_for("ETH").size == "-0.05"


@pytest.mark.asyncio
async def test_hyperliquid_place_order_is_gtc_limit_with_cloid():
    exchange = StubExchange()
    gw, _info = _hyperliquid(exchange=exchange)
    cloid = "0x" + "0" * 31 + "1"

    await gw.place_order(
        symbol="ETH", side=Side.BUY, price=Decimal("1980.10"), size=Decimal("0.0100"),
        client_order_id=cloid,
    )

    name, is_buy, sz, px, order_type, reduce_only, sent_cloid = exchange.orders[0]
    assert (name, is_buy, sz, px) == ("ETH", True, 0.01, 1980.1)
    assert order_type == GTC_LIMIT
    assert reduce_only is False
    assert sent_cloid.to_raw() == cloid


@pytest.mark.asyncio
async def test_hyperliquid_rejected_order_raises():
    rejected = {
        "status": "ok",
        "response": {"type": "order", "data": {"statuses": [{"error": "Insufficient margin"}]}},
    }
    gw, _info = _hyperliquid(exchange=StubExchange(rejected))

    with pytest.raises(TransientExchangeError, match="Insufficient margin"):
        await gw.place_order(
            symbol="ETH", side=Side.SELL, price=Decimal("2020"), size=Decimal("0.01"),
            client_order_id="0x" + "0" * 31 + "2",
        )


@pytest.mark.asyncio
async def test_hyperliquid_bulk_cancel():
    exchange = StubExchange()
    gw, _info = _hyperliquid(exchange=exchange)

    await gw.cancel_orders([("ETH", 1), ("ETH", "2")])

    assert exchange.cancels == [[{"coin": "ETH", "oid": 1}, {"coin": "ETH", "oid": 2}]]


@pytest.mark.asyncio
async def test_hyperliquid_transport_error_becomes_transient():
    gw, info = _hyperliquid()
    info.meta_exc = requests.ConnectionError("connection reset")

    with pytest.raises(TransientExchangeError, match="meta failed"):
        await gw.list_instruments()


# --- credentials -------------------------------------------------------------------------


def test_hyperliquid_account_from_env(monkeypatch):
    monkeypatch.setenv("HL_API_WALLET_PRIVATE_KEY", "11" * 32)
    monkeypatch.setenv("HL_ACCOUNT_ADDRESS", "0x" + "AB" * 20)
    monkeypatch.setenv("HL_TESTNET", "false")

    account = HyperliquidAccount()

    assert account.private_key == TEST_KEY
    assert account.account_address == "0x" + "ab" * 20
    assert account.testnet is False


@pytest.mark.parametrize(
    "key, address",
    [("", None), ("1234", None), ("11" * 32, "0x1234"), ("11" * 32, "ab" * 21)],
)
def test_hyperliquid_account_validation(monkeypatch, key, address):
    monkeypatch.setenv("HL_API_WALLET_PRIVATE_KEY", key)
    if address is None:
        monkeypatch.delenv("HL_ACCOUNT_ADDRESS", raising=False)
    else:
        monkeypatch.setenv("HL_ACCOUNT_ADDRESS", address)

    with pytest.raises(ConfigurationError):
        HyperliquidAccount()
