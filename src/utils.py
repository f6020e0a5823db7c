import logging
import os
from decimal import Decimal, InvalidOperation
from typing import Optional, Union, Any

logger = logging.getLogger("grid_bot")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LEVEL_ENV_VARS = ("LOG_LEVEL", "GRID_LOG_LEVEL")

_root_configured = False


def _level_from_name(name: str) -> Optional[int]:
    resolved = logging.getLevelName(name.strip().upper())
    return resolved if isinstance(resolved, int) else None


def _resolve_level(level: Optional[Union[int, str]]) -> int:
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        return _level_from_name(level) or logging.INFO
    for var in LEVEL_ENV_VARS:
        raw = os.getenv(var)
        if raw and _level_from_name(raw) is not None:
            return _level_from_name(raw)
    return logging.INFO


def setup_logging(log_level: Optional[Union[int, str]] = None) -> None:
    """Configure console output for the ``grid_bot`` logger.

    Safe to call repeatedly: the root logger is configured on the first call
    only and the bot handler is attached once.  The level comes from
    ``log_level``, then ``LOG_LEVEL``/``GRID_LOG_LEVEL``, then INFO.
    """
    global _root_configured

    level = _resolve_level(log_level)
    if not _root_configured:
        logging.basicConfig(level=level, format=LOG_FORMAT)
        _root_configured = True

    logger.setLevel(level)
    # Records go to the handler below only
    logger.propagate = False
    if all(isinstance(h, logging.NullHandler) for h in logger.handlers):
        console = logging.StreamHandler()
        console.setLevel(level)
        console.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(console)


def parse_finite(value: Any) -> Optional[float]:
    """Best-effort parse of an exchange decimal string.

    Returns ``None`` for missing, blank, malformed, NaN or infinite input.
    """
    if value is None:
        return None
    if isinstance(value, str) and not value.strip():
        return None
    try:
        num = float(value)
    except (TypeError, ValueError):
        return None
    if num != num or num in (float("inf"), float("-inf")):
        return None
    return num


def to_decimal(value: Any, default: Optional[Decimal] = None) -> Optional[Decimal]:
    if value is None:
        return default
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return default


def wire_decimal(value: Decimal) -> str:
    """Render ``value`` without exponent or trailing zeros (``"1980.2"``)."""
    text = format(value.normalize(), "f")
    return text if text != "-0" else "0"
