"""
Tests for the SessionRunner scheduler.

Tests cover:
- Market and order loops ticking and reporting changes
- Automatic spin resolution once the animation elapsed
- Loop errors logged without stopping the scheduler
- Final snapshot on shutdown and background trade log writes
"""

import asyncio
import random

import pytest

from spinmarket.session import GameSession, SessionRunner
from spinmarket.wheel import SpinPhase

CONFIG = {"wheels": {"main": {"entries": ["A", "B", "C"]}}}


class Clock:
    """Manually advanced clock."""

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def session(clock):
    session = GameSession(config=CONFIG, rng=random.Random(8), clock=clock, hidden_drift=0.0)
    session.join("alice")
    return session


def make_runner(session, **kwargs):
    return SessionRunner(
        session,
        market_interval=0.01,
        order_interval=0.01,
        phase_interval=0.01,
        **kwargs,
    )


async def run_briefly(runner, seconds=0.15):
    task = runner.start()
    await asyncio.sleep(seconds)
    runner.stop()
    await task


class TestRunnerLoops:
    """Tests for the periodic loops."""

    @pytest.mark.asyncio
    async def test_market_and_orders_tick(self, session):
        changes = []
        runner = make_runner(session, on_change=lambda kind, payload: changes.append(kind))
        session.place_order("alice", "A", 2, "buy")

        await run_briefly(runner)

        assert runner.state.market_ticks > 0
        assert "prices" in changes
        assert "orders" in changes
        assert session.state.players["alice"].portfolio.get("A", 0) > 0
        assert runner.state.is_running is False

    @pytest.mark.asyncio
    async def test_spin_resolved_when_due(self, session, clock):
        results = []
        runner = make_runner(
            session,
            on_change=lambda kind, payload: results.append(payload) if kind == "spin_result" else None,
        )
        session.request_spin(skip_ready_up=True)
        clock.now = 100.0

        await run_briefly(runner)

        assert runner.state.spins_resolved == 1
        assert results[0].wheel_id == "main"
        assert session.phase == SpinPhase.COOLDOWN

    @pytest.mark.asyncio
    async def test_spin_not_resolved_early(self, session):
        runner = make_runner(session)
        session.request_spin(skip_ready_up=True)

        await run_briefly(runner, seconds=0.05)

        assert runner.state.spins_resolved == 0
        assert session.phase == SpinPhase.SPINNING

    @pytest.mark.asyncio
    async def test_errors_do_not_stop_loops(self, session):
        def boom(kind, payload):
            raise RuntimeError("boom")

        runner = make_runner(session, on_change=boom)
        await run_briefly(runner)

        assert runner.state.last_error == "boom"
        assert runner.state.market_ticks > 1


class TestShutdown:
    """Tests for shutdown persistence."""

    @pytest.mark.asyncio
    async def test_final_snapshot_and_trade_log(self, session, tmp_path):
        state_path = tmp_path / "state.json"
        trade_path = tmp_path / "trades.jsonl"
        runner = make_runner(session, state_path=state_path, trade_log_path=trade_path)
        session.place_order("alice", "A", 1, "buy")

        await run_briefly(runner)

        assert state_path.exists()
        assert trade_path.exists()
        assert not session.state.pending_trades

    @pytest.mark.asyncio
    async def test_stop_before_first_tick(self, session):
        runner = make_runner(session)
        task = runner.start()
        runner.stop()
        await task
        assert runner.state.market_ticks == 0

    @pytest.mark.asyncio
    async def test_order_step_writes_trade_log_in_background(self, session, tmp_path):
        trade_path = tmp_path / "trades.jsonl"
        runner = make_runner(session, trade_log_path=trade_path)
        session.place_order("alice", "A", 1, "buy")

        await runner.order_step()

        assert not trade_path.exists()

        await asyncio.gather(*runner._pending_saves)
        assert not session.state.pending_trades
        assert len(trade_path.read_text().splitlines()) == 1
