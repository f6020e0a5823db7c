"""Error kinds raised by the grid engine.

Callers tell guardrail breaches apart from everything else through the
``GuardrailViolation`` type (or its ``is_guardrail`` marker); the message
prefix is kept for log scraping.
"""

from __future__ import annotations

from typing import Optional

GUARDRAIL_PREFIX = "Risk guardrail hit:"


class GridError(Exception):
    """Base class for every error the engine raises on purpose."""

    is_guardrail = False


class ConfigurationError(GridError, ValueError):
    """Bad symbol, invalid parameters, or an order size that rounds to zero."""


class TransientExchangeError(GridError):
    """Network failure, timeout, rate limit or rejection from the exchange."""

    def __init__(self, message: str, *, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class AlreadyRunningError(GridError):
    pass


class GuardrailViolation(GridError):
    """A configured risk limit was breached; the run must stop."""

    is_guardrail = True

    def __init__(self, kind: str, measured: float, limit: float, detail: str):
        super().__init__(f"{GUARDRAIL_PREFIX} {detail}")
        self.kind = kind
        self.measured = measured
        self.limit = limit


def is_guardrail_violation(exc: BaseException) -> bool:
    return bool(getattr(exc, "is_guardrail", False)) or str(exc).startswith(GUARDRAIL_PREFIX)
