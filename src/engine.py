# engine.py
"""Lifecycle owner for one grid run.

:class:`GridEngine` holds the only mutable :class:`~models.EngineState`.  A
start resolves the symbol, runs one guard check and one reconciliation pass,
and only then arms the maintenance task; callers therefore learn right away
when the initial ladder cannot be built.  Each maintenance tick repeats the
guard check and the reconciliation pass.  A guardrail breach stops the run;
any other tick failure is recorded and retried on the next tick.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import List

from backoff_utils import call_with_retries
from config import MAINTENANCE_INTERVAL_SEC, PLACE_DELAY_SEC, StrategyConfig
from errors import AlreadyRunningError, ConfigurationError, GridError, is_guardrail_violation
from market_utils import ensure_symbol
from models import EngineState, EngineStatus, OpenOrder, PnlSummary, Position
from rate_limit import build_rate_limiter
from reconciler import reconcile_grid
from risk_guard import enforce_risk_guardrails
from utils import logger, parse_finite


class GridEngine:
    """Grid supervisor exposing ``start``/``stop``/``status``/``full_status``."""

    def __init__(
        self,
        gateway,
        *,
        interval: float = MAINTENANCE_INTERVAL_SEC,
        place_delay: float = PLACE_DELAY_SEC,
        limiter=None,
    ):
        self.gateway = gateway
        self.interval = interval
        self.place_delay = place_delay
        self._limiter = limiter if limiter is not None else build_rate_limiter()
        self.state = EngineState()
        # Serialises start/stop transitions
        self._transition_lock = asyncio.Lock()
        # Set whenever no run is active
        self._stopped = asyncio.Event()
        self._stopped.set()

    # ------------------------------------------------------------------
    @property
    def running(self) -> bool:
        return self.state.running

    async def start(self, config: StrategyConfig) -> None:
        """Start a run with ``config``.

        Raises :class:`AlreadyRunningError` while a run is active or another
        start/stop is in flight, :class:`ConfigurationError` for an unusable
        config or unknown symbol, and whatever the initial guard check or
        reconciliation pass raised.  On failure the engine is left idle; orders
        the initial pass placed before failing stay resting on the exchange
        and are not cancelled.
        """
        if self.state.running or self._transition_lock.locked():
            raise AlreadyRunningError("Bot already running")

        async with self._transition_lock:
            state = self.state
            try:
                if not isinstance(config, StrategyConfig):
                    raise ConfigurationError("config must be a StrategyConfig")
                logger.info("fetching instruments | symbol=%s", config.symbol)
                instruments = await self.gateway.list_instruments()
                meta = ensure_symbol(instruments, config.symbol)

                state.config = config
                state.meta = meta
                state.last_error = None
                state.initial_account_value = None
                state.running = True

                logger.info(
                    "initial pass | symbol=%s levels=%d spacing=%s%% size=%s",
                    config.symbol,
                    config.grid_size,
                    config.spacing_pct,
                    config.order_size,
                )
                await self._run_pass()
            except Exception as e:
                state.last_error = str(e)
                state.clear_run()
                logger.error(
                    "start failed; orders already placed stay resting | symbol=%s error=%s",
                    getattr(config, "symbol", "?"),
                    e,
                )
                raise

            state.tick_task = asyncio.create_task(self._maintenance_loop())
            self._stopped.clear()
            logger.info("[grid] started on %s", config.symbol)

    async def stop(self) -> None:
        """Stop the run: disarm the tick, cancel resting orders, reset state.

        Idempotent and never raises.  When another transition holds the lock
        the call is a no-op.
        """
        if self._transition_lock.locked():
            logger.debug("stop ignored; transition in flight")
            return
        async with self._transition_lock:
            state = self.state
            config = state.config
            task = state.tick_task
            state.running = False
            state.tick_task = None

            if task is not None and task is not asyncio.current_task():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

            try:
                if config is not None:
                    await self._cancel_symbol_orders(config.symbol)
            except Exception:
                logger.exception("cancel on stop failed | symbol=%s", config.symbol)
            finally:
                state.clear_run()
                self._stopped.set()
            if config is not None:
                logger.info("[grid] stopped on %s", config.symbol)

    async def wait_stopped(self) -> None:
        """Return once the current run has ended (immediately when idle)."""
        await self._stopped.wait()

    async def close(self) -> None:
        await self.stop()
        close = getattr(self.gateway, "close", None)
        if close is not None:
            await close()

    # ------------------------------------------------------------------
    def status(self) -> EngineStatus:
        return EngineStatus(
            running=self.state.running,
            config=self.state.config,
            error=self.state.last_error,
        )

    async def full_status(self) -> EngineStatus:
        """Status enriched with live orders, positions and pnl.

        Never raises: a failed fetch returns :meth:`status` with the error.
        """
        base = self.status()
        config = self.state.config
        if config is None:
            return base
        try:
            orders, account = await asyncio.gather(
                self.gateway.open_orders(), self.gateway.account_state()
            )
        except Exception as e:
            return EngineStatus(running=base.running, config=base.config, error=str(e))

        positions: List[Position] = list(account.positions)
        unrealized = sum((parse_finite(p.unrealized_pnl) or 0.0) for p in positions)
        pnl = PnlSummary(
            account_value=account.account_value or "0",
            total_raw_usd=account.total_raw_usd or "0",
            unrealized_pnl=f"{unrealized:.2f}",
        )
        return EngineStatus(
            running=base.running,
            config=base.config,
            error=base.error,
            orders=[o for o in orders if o.symbol == config.symbol],
            positions=positions,
            pnl=pnl,
        )

    # ------------------------------------------------------------------
    async def _run_pass(self) -> None:
        state = self.state
        config, meta = state.config, state.meta
        if config is None or meta is None:
            return
        baseline = await enforce_risk_guardrails(
            self.gateway, config, state.initial_account_value
        )
        # A stop may have landed while we were awaiting
        if state.config is not config:
            return
        state.initial_account_value = baseline
        await reconcile_grid(
            self.gateway,
            config,
            meta,
            limiter=self._limiter,
            place_delay=self.place_delay,
        )

    async def _tick(self) -> None:
        if not self.state.running:
            return
        config = self.state.config
        try:
            await self._run_pass()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if self.state.config is not config:
                # The run ended while this tick's calls were in flight
                logger.warning("stale tick error ignored | error=%s", e)
                return
            self.state.last_error = str(e)
            if is_guardrail_violation(e):
                logger.error(
                    "maintenance halted | kind=%s measured=%s limit=%s error=%s",
                    getattr(e, "kind", None),
                    getattr(e, "measured", None),
                    getattr(e, "limit", None),
                    e,
                )
                await self.stop()
            elif isinstance(e, GridError):
                logger.error("maintenance loop error | %s", e)
            else:
                logger.exception("maintenance loop error | %s", e)

    async def _maintenance_loop(self) -> None:
        while self.state.running:
            await asyncio.sleep(self.interval)
            if not self.state.running:
                break
            await self._tick()

    async def _cancel_symbol_orders(self, symbol: str) -> None:
        orders: List[OpenOrder] = [o for o in await self.gateway.open_orders() if o.symbol == symbol]
        if not orders:
            logger.info("no orders to cancel | symbol=%s", symbol)
            return
        cancels = [(o.symbol, o.order_id) for o in orders]
        await call_with_retries(
            lambda: self.gateway.cancel_orders(cancels), limiter=self._limiter
        )
        logger.info("cancelled %d resting orders | symbol=%s", len(cancels), symbol)
