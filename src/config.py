"""Strategy parameters and runtime tunables.

Tunables are read from the environment once at import so the bot can be
configured without modifying the source.  Strategy parameters are validated
into an immutable :class:`StrategyConfig` which the engine replaces wholesale
on every start.
"""

from __future__ import annotations

import math
import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from errors import ConfigurationError


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


# --- Runtime tunables -------------------------------------------------------------------

MAINTENANCE_INTERVAL_SEC = _env_float("GRID_MAINTENANCE_INTERVAL_SEC", 6.0)
# Quiet period after each placement to stay under exchange rate limits
PLACE_DELAY_SEC = _env_float("GRID_PLACE_DELAY_SEC", 0.4)
RETRY_ATTEMPTS = _env_int("GRID_RETRY_ATTEMPTS", 3)
RETRY_BASE_DELAY_SEC = _env_float("GRID_RETRY_BASE_DELAY_SEC", 1.0)

MIN_GRID_SIZE, MAX_GRID_SIZE = 1, 20
MIN_SPACING_PCT, MAX_SPACING_PCT = Decimal("0.01"), Decimal("10")


@dataclass(frozen=True)
class RiskLimits:
    max_position_abs: Optional[str] = None
    max_drawdown_usd: Optional[str] = None

    def is_empty(self) -> bool:
        return self.max_position_abs is None and self.max_drawdown_usd is None


@dataclass(frozen=True)
class StrategyConfig:
    symbol: str
    grid_size: int
    spacing_pct: Decimal
    order_size: str
    risk: Optional[RiskLimits] = None

    def __post_init__(self):
        if not self.symbol or not self.symbol.strip():
            raise ConfigurationError("symbol is required")
        if isinstance(self.grid_size, bool) or not isinstance(self.grid_size, int):
            raise ConfigurationError("gridSize must be an integer")
        if not MIN_GRID_SIZE <= self.grid_size <= MAX_GRID_SIZE:
            raise ConfigurationError(f"gridSize must be {MIN_GRID_SIZE}-{MAX_GRID_SIZE}")
        spacing = Decimal(str(self.spacing_pct))
        if not spacing.is_finite() or not MIN_SPACING_PCT <= spacing <= MAX_SPACING_PCT:
            raise ConfigurationError(f"spacingPct must be {MIN_SPACING_PCT}-{MAX_SPACING_PCT}")
        size = _parse_decimal(self.order_size, "orderSize")
        if size <= 0:
            raise ConfigurationError("orderSize must be a positive number")

    @property
    def tolerance_pct(self) -> Decimal:
        """Half the spacing: the band within which an order covers a level."""
        return Decimal(str(self.spacing_pct)) / 2

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "symbol": self.symbol,
            "gridSize": self.grid_size,
            "spacingPct": str(self.spacing_pct),
            "orderSize": self.order_size,
        }
        if self.risk is not None and not self.risk.is_empty():
            data["risk"] = {
                k: v
                for k, v in (
                    ("maxPositionAbs", self.risk.max_position_abs),
                    ("maxDrawdownUsd", self.risk.max_drawdown_usd),
                )
                if v is not None
            }
        return data


def _parse_decimal(raw: Any, name: str) -> Decimal:
    try:
        value = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError):
        raise ConfigurationError(f"{name} must be a number") from None
    if not value.is_finite():
        raise ConfigurationError(f"{name} must be a finite number")
    return value


def _risk_value(raw: Any, name: str) -> Optional[str]:
    if raw is None or str(raw).strip() == "":
        return None
    try:
        num = float(raw)
    except (TypeError, ValueError):
        raise ConfigurationError(f"risk.{name} must be a positive number") from None
    if not math.isfinite(num) or num <= 0:
        raise ConfigurationError(f"risk.{name} must be a positive number")
    return str(raw).strip()


def build_config(
    symbol: str,
    grid_size: Any,
    spacing_pct: Any,
    order_size: Any,
    *,
    max_position_abs: Any = None,
    max_drawdown_usd: Any = None,
) -> StrategyConfig:
    """Normalise loosely-typed user input into a validated :class:`StrategyConfig`.

    The symbol is trimmed and upper-cased, numbers may arrive as strings, and
    blank risk limits mean "not configured".
    """
    if symbol is None or not str(symbol).strip():
        raise ConfigurationError("Missing required field: symbol")
    try:
        size_levels = int(str(grid_size).strip())
    except (TypeError, ValueError):
        raise ConfigurationError("gridSize must be an integer") from None
    spacing = _parse_decimal(spacing_pct, "spacingPct")
    size = _parse_decimal(order_size, "orderSize")

    risk = RiskLimits(
        max_position_abs=_risk_value(max_position_abs, "maxPositionAbs"),
        max_drawdown_usd=_risk_value(max_drawdown_usd, "maxDrawdownUsd"),
    )
    return StrategyConfig(
        symbol=str(symbol).strip().upper(),
        grid_size=size_levels,
        spacing_pct=spacing,
        order_size=str(size),
        risk=None if risk.is_empty() else risk,
    )


def config_from_env(prompt=input) -> StrategyConfig:
    """Read the strategy from ``GRID_*`` variables, asking for missing ones."""
    return build_config(
        os.getenv("GRID_SYMBOL") or prompt("Symbol ? "),
        os.getenv("GRID_SIZE") or prompt("Levels per side (1-20) ? "),
        os.getenv("GRID_SPACING_PCT") or prompt("Spacing % ? "),
        os.getenv("GRID_ORDER_SIZE") or prompt("Order size ? "),
        max_position_abs=os.getenv("GRID_MAX_POSITION_ABS"),
        max_drawdown_usd=os.getenv("GRID_MAX_DRAWDOWN_USD"),
    )
