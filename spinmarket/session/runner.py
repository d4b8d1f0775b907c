"""
Cooperative scheduler for a GameSession.

Runs the periodic work of a session on one asyncio event loop, so every
mutation of session state happens on the same thread and no locking is
needed:

- market tick (1 s): price evolution, skipped while a spin is in flight
- order tick (500 ms): incremental fills, liquidity decay, purge
- event scheduler (random 20-60 s): possibly emit one market event
- phase watcher: resolves spins whose animation elapsed, fires ready
  countdowns and chained spins

Changes are reported to an optional on_change(kind, payload) callback; the
transport that fans them out to clients lives with the caller.

Example:
    >>> runner = SessionRunner(session, on_change=broadcast)
    >>> task = runner.start()
    >>> ...
    >>> runner.stop()
    >>> await task
"""

import asyncio
import logging
import signal
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Union

from ..config import MARKET_TICK_SECONDS, ORDER_TICK_SECONDS
from ..market import events
from .game import GameSession
from .persistence import (
    flush_trade_log,
    flush_trade_log_async,
    save_snapshot,
    save_snapshot_async,
)

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[str, Any], None]

# Phase watcher poll interval (seconds)
PHASE_POLL_SECONDS = 0.1

# Persist the snapshot every N market ticks that changed prices
SAVE_EVERY_TICKS = 10


@dataclass
class RunnerState:
    """
    Counters of a running scheduler.

    Attributes:
        is_running: Whether the loops are active.
        market_ticks: Market ticks that updated prices.
        order_ticks: Order ticks that changed something.
        events_fired: Market events created.
        spins_resolved: Spins resolved by the phase watcher.
        last_error: Last exception message raised by a loop step.
    """

    is_running: bool = False
    market_ticks: int = 0
    order_ticks: int = 0
    events_fired: int = 0
    spins_resolved: int = 0
    last_error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_running": self.is_running,
            "market_ticks": self.market_ticks,
            "order_ticks": self.order_ticks,
            "events_fired": self.events_fired,
            "spins_resolved": self.spins_resolved,
            "last_error": self.last_error,
        }


class SessionRunner:
    """Drives a GameSession's ticks on the asyncio event loop."""

    def __init__(
        self,
        session: GameSession,
        on_change: Optional[ChangeCallback] = None,
        state_path: Union[str, Path, None] = None,
        trade_log_path: Union[str, Path, None] = None,
        market_interval: float = MARKET_TICK_SECONDS,
        order_interval: float = ORDER_TICK_SECONDS,
        phase_interval: float = PHASE_POLL_SECONDS,
    ) -> None:
        self.session = session
        self.on_change = on_change
        self.state_path = Path(state_path) if state_path else None
        self.trade_log_path = Path(trade_log_path) if trade_log_path else None
        self.market_interval = market_interval
        self.order_interval = order_interval
        self.phase_interval = phase_interval

        self.state = RunnerState()
        self._shutdown_event = asyncio.Event()
        self._pending_saves: set[asyncio.Task] = set()
        self._trade_flush: Optional[asyncio.Task] = None

        logger.info(
            f"SessionRunner initialized: market={market_interval}s, "
            f"orders={order_interval}s, state_path={self.state_path}"
        )

    def install_signal_handlers(self) -> None:
        """Stop cleanly on SIGINT/SIGTERM."""
        try:
            signal.signal(signal.SIGINT, self._signal_handler)
            signal.signal(signal.SIGTERM, self._signal_handler)
        except (ValueError, RuntimeError):
            # Signal handlers can only be set in main thread
            pass

    def _signal_handler(self, signum: int, frame: Any) -> None:
        logger.info(f"Received signal {signum}, initiating shutdown...")
        self.stop()

    # =========================================================================
    # Steps
    # =========================================================================

    async def market_step(self) -> None:
        if not self.session.tick_market():
            return
        self.state.market_ticks += 1
        self._emit("prices", self.session.snapshot())
        if self.state_path and self.state.market_ticks % SAVE_EVERY_TICKS == 0:
            self._track(save_snapshot_async(self.session.state, self.state_path))

    async def order_step(self) -> None:
        changed = self.session.tick_orders()
        # One flush in flight at a time keeps the log in fill order
        if self._trade_flush is None or self._trade_flush.done():
            self._trade_flush = self._track(
                flush_trade_log_async(self.session.state, self.trade_log_path)
            )
        updates = self.session.drain_order_updates()
        if changed:
            self.state.order_ticks += 1
        if updates:
            self._emit("orders", updates)
        if changed:
            self._emit("portfolios", self.session.snapshot())

    async def event_step(self) -> None:
        if self.session.tick_events():
            self.state.events_fired += 1
            self._emit("events", [e.to_dict() for e in self.session.state.events])

    async def phase_step(self) -> None:
        session = self.session
        if session.spin_due():
            result = session.resolve_spin()
            if result is not None:
                self.state.spins_resolved += 1
                self._emit("spin_result", result)
        outcome = session.advance()
        if outcome is not None:
            self._emit("spin_started", outcome)

    # =========================================================================
    # Loop control
    # =========================================================================

    async def _loop(
        self,
        name: str,
        step: Callable[[], Awaitable[None]],
        interval: Callable[[], float],
    ) -> None:
        while not self._shutdown_event.is_set():
            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=interval())
                break
            except asyncio.TimeoutError:
                pass  # Normal timeout, run the step

            try:
                await step()
            except Exception as e:
                logger.error(f"Unexpected error in {name} loop: {e}", exc_info=True)
                self.state.last_error = str(e)

    async def run(self) -> None:
        """Run every loop until stop() is called."""
        logger.info("Starting session loops")
        self.state.is_running = True
        state = self.session.state
        try:
            await asyncio.gather(
                self._loop("market", self.market_step, lambda: self.market_interval),
                self._loop("orders", self.order_step, lambda: self.order_interval),
                self._loop("events", self.event_step, lambda: events.next_delay(state)),
                self._loop("phase", self.phase_step, lambda: self.phase_interval),
            )
        except asyncio.CancelledError:
            logger.info("Session run cancelled")
        finally:
            self.state.is_running = False
            if self._pending_saves:
                await asyncio.gather(*self._pending_saves, return_exceptions=True)
            flush_trade_log(state, self.trade_log_path)
            if self.state_path:
                try:
                    save_snapshot(state, self.state_path)
                except OSError as e:
                    logger.warning(f"Failed to save final snapshot: {e}")
            logger.info("Session loops stopped")

    def start(self) -> asyncio.Task:
        """Start the loops as a background task."""
        return asyncio.create_task(self.run())

    def stop(self) -> None:
        logger.info("Stopping session loops...")
        self._shutdown_event.set()

    def _emit(self, kind: str, payload: Any) -> None:
        if self.on_change is not None:
            self.on_change(kind, payload)

    def _track(self, coro: Awaitable[Any]) -> asyncio.Task:
        """Run a persistence write in the background, awaited at shutdown."""
        task = asyncio.ensure_future(coro)
        self._pending_saves.add(task)
        task.add_done_callback(self._pending_saves.discard)
        return task
