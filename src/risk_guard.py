"""Position and drawdown guardrails."""

from __future__ import annotations

from typing import Optional

from config import StrategyConfig
from errors import GuardrailViolation
from utils import logger, parse_finite


async def enforce_risk_guardrails(
    gateway, config: StrategyConfig, initial_account_value: Optional[float]
) -> Optional[float]:
    """Check the account against ``config.risk``.

    Returns the drawdown baseline to keep: the one passed in, or the account
    value read now when no baseline was captured yet.  Raises
    :class:`GuardrailViolation` on a breach.  Values that do not parse to a
    finite number skip their check.  Without any usable limit the exchange
    is not queried at all.
    """
    risk = config.risk
    if risk is None:
        return initial_account_value
    max_position = parse_finite(risk.max_position_abs)
    max_drawdown = parse_finite(risk.max_drawdown_usd)
    if max_position is None and max_drawdown is None:
        return initial_account_value

    state = await gateway.account_state()
    account_value = parse_finite(state.account_value)
    if initial_account_value is None and account_value is not None:
        initial_account_value = account_value
        logger.info(
            "drawdown baseline captured | symbol=%s account_value=%.2f",
            config.symbol,
            account_value,
        )

    if max_position is not None:
        position = state.position_for(config.symbol)
        size = parse_finite(position.size) if position is not None else 0.0
        if size is not None and abs(size) > max_position:
            raise GuardrailViolation(
                "position",
                abs(size),
                max_position,
                f"|position| {abs(size):.6f} > maxPositionAbs {max_position}",
            )

    if max_drawdown is not None and initial_account_value is not None and account_value is not None:
        drawdown = initial_account_value - account_value
        if drawdown > max_drawdown:
            raise GuardrailViolation(
                "drawdown",
                drawdown,
                max_drawdown,
                f"drawdown {drawdown:.2f} USD > maxDrawdownUsd {max_drawdown}",
            )

    return initial_account_value
