import os
import inspect
from dotenv import load_dotenv
from x10.perpetual.accounts import StarkPerpetualAccount
from x10.perpetual.configuration import MAINNET_CONFIG
from x10.perpetual.trading_client import PerpetualTradingClient

from errors import ConfigurationError

load_dotenv()


def _require_env(*names: str) -> tuple:
    """Fetch and validate required environment variables."""
    values = []
    for name in names:
        value = (os.getenv(name) or "").strip()
        if not value:
            raise ConfigurationError(f"Environment variable '{name}' is missing or empty")
        values.append(value)
    return tuple(values)


class TradingAccount:
    """Extended / X10 credentials and the async trading client built from them."""

    def __init__(self, endpoint_config=None):
        api_key, public_key, private_key, vault = _require_env(
            "API_KEY", "PUBLIC_KEY", "PRIVATE_KEY", "VAULT"
        )
        self.endpoint_config = endpoint_config or MAINNET_CONFIG
        self.vault = int(vault)

        self.stark_account = StarkPerpetualAccount(
            vault=self.vault,
            private_key=private_key,
            public_key=public_key,
            api_key=api_key,
        )
        self.async_client = PerpetualTradingClient(
            endpoint_config=self.endpoint_config,
            stark_account=self.stark_account,
        )

    def get_async_client(self):
        return self.async_client

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        close_method = getattr(self.async_client, "close", None)
        if close_method:
            if inspect.iscoroutinefunction(close_method):
                await close_method()
            else:
                close_method()


class HyperliquidAccount:
    """Hyperliquid API-wallet credentials.

    The API wallet signs; ``account_address`` (the main account or vault) is
    the one whose orders and margin are queried.
    """

    HEX_KEY_LEN = 64

    def __init__(self):
        (private_key,) = _require_env("HL_API_WALLET_PRIVATE_KEY")
        address = (os.getenv("HL_ACCOUNT_ADDRESS") or "").strip().lower()
        key = private_key if private_key.startswith("0x") else f"0x{private_key}"
        if len(key) != self.HEX_KEY_LEN + 2:
            raise ConfigurationError(
                "HL_API_WALLET_PRIVATE_KEY must be a 32-byte hex string (with or without 0x prefix)"
            )
        if address and (not address.startswith("0x") or len(address) != 42):
            raise ConfigurationError("HL_ACCOUNT_ADDRESS must be a 20-byte hex address with 0x prefix")
        self.private_key = key
        self.account_address = address or None
        self.testnet = os.getenv("HL_TESTNET", "1").strip().lower() not in ("0", "false", "no")
