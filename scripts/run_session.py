#!/usr/bin/env python3
"""
Run a Spin Market Session

Runs the authoritative session core headless, with simulated players that
bet, buy boosts, trade and ready up. Useful for watching the market react to
spins and for soak-testing the tick scheduler.

Usage:
    # Default demo (3 players, unlimited, Ctrl+C to stop)
    python scripts/run_session.py

    # Run for a specific duration (in seconds)
    python scripts/run_session.py --duration 120

    # Custom wheel configuration (JSON with wheels / activeWheelId / eventTemplates)
    python scripts/run_session.py --config wheels.json

    # Show the persisted stock table and player records
    python scripts/run_session.py --status

    # Verbose output
    python scripts/run_session.py --verbose

Environment Variables:
    STATE_PATH - Snapshot file (default data/session_state.json)
    TRADE_LOG_PATH - JSONL fill log (default data/trades.jsonl)
    MARKET_TICK_SECONDS / ORDER_TICK_SECONDS - Tick intervals
"""

import argparse
import asyncio
import json
import logging
import random
import sys
from datetime import datetime
from pathlib import Path
from typing import Any

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from spinmarket.config import LOGS_DIR, PROJECT_ROOT, STATE_PATH, TRADE_LOG_PATH
from spinmarket.market.base import OrderSide, SpinMarketError
from spinmarket.session import GameSession, SessionRunner, load_snapshot
from spinmarket.wheel import ByName, SpinPhase

DEFAULT_CONFIG: dict[str, Any] = {
    "activeWheelId": "main",
    "wheels": {
        "main": {
            "entries": "Pizza\nTacos\nSushi\nBurgers\nRamen\nSpin Again",
            "entryWeights": {"Spin Again": 0.5},
            "triggers": {"Spin Again": "__spin_again", "Ramen": "bonus"},
        },
        "bonus": {
            "entries": ["Double", "Nothing", "Jackpot"],
            "entryWeights": {"Jackpot": 0.3},
        },
    },
}


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the session."""
    level = logging.DEBUG if verbose else logging.INFO

    console_format = "%(asctime)s [%(levelname)s] %(message)s"
    file_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(console_format, datefmt="%H:%M:%S"))

    log_dir = LOGS_DIR
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / f"session_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"
    file_handler = logging.FileHandler(log_file)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(file_format))

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)

    print(f"Logs will be written to: {log_file}")


def load_config(path: str) -> dict[str, Any]:
    with open(path) as f:
        return json.load(f)


def show_status(state_path: Path) -> None:
    """Print the persisted snapshot without starting a session."""
    print("\n" + "=" * 70)
    print("Spin Market Status")
    print("=" * 70)

    if not state_path.exists():
        print(f"\nNo snapshot at {state_path}")
        return

    try:
        with open(state_path) as f:
            data = json.load(f)
    except Exception as e:
        print(f"\nError reading snapshot: {e}")
        return

    print("\nStocks:")
    for name, record in (data.get("stocks") or {}).items():
        print(
            f"  {name:<12} price={record.get('price', 0):>8.2f} "
            f"real={record.get('realValue', 0):>8.2f} dev={record.get('development', 0):.3f}"
        )

    print("\nPlayers:")
    for name, record in (data.get("players") or {}).items():
        stats = record.get("stats") or {}
        print(
            f"  {name:<12} points={record.get('points', 0):>9.2f} "
            f"spins={stats.get('totalSpins', 0)} wins={stats.get('totalWins', 0)} "
            f"holdings={record.get('portfolio') or {}}"
        )
    print("\n" + "=" * 70)


async def simulate_players(session: GameSession, names: list[str], stop: asyncio.Event) -> None:
    """Random player behavior: ready up, bet, boost, trade and start spins."""
    rng = random.Random()
    while not stop.is_set():
        await asyncio.sleep(rng.uniform(0.5, 2.0))
        name = rng.choice(names)
        wheel = session.state.active_wheel
        if wheel is None:
            continue
        entry = rng.choice(wheel.unique_names)
        try:
            if session.phase == SpinPhase.IDLE:
                session.request_spin(initiator=name)
            elif session.phase == SpinPhase.READY:
                action = rng.random()
                if action < 0.4:
                    session.place_bet(name, ByName(entry), rng.randint(10, 60))
                elif action < 0.6:
                    session.buy_boost(name, wheel.wheel_id, ByName(entry), rng.randint(5, 30))
                else:
                    session.mark_ready(name)
            elif session.phase == SpinPhase.SPINNING and rng.random() < 0.1:
                session.nudge_spin(name)

            if rng.random() < 0.3 and entry in session.state.stocks:
                account = session.state.players[name]
                if account.shares_of(entry) and rng.random() < 0.5:
                    session.place_order(name, entry, account.shares_of(entry), OrderSide.SELL)
                else:
                    session.place_order(name, entry, rng.randint(1, 20), OrderSide.BUY)
        except SpinMarketError as e:
            logging.getLogger("simulate").debug(f"{name}: {e.reason}")


async def run_session(config: dict[str, Any], players: int, duration: float, state_path: Path) -> None:
    session = GameSession(config=config)
    load_snapshot(session.state, state_path)
    names = [f"player{i + 1}" for i in range(players)]
    for name in names:
        session.join(name)

    def on_change(kind: str, payload: Any) -> None:
        if kind == "spin_result":
            print(f"  >> {payload.winner_name} wins on {payload.wheel_id}")

    runner = SessionRunner(
        session,
        on_change=on_change,
        state_path=state_path,
        trade_log_path=PROJECT_ROOT / TRADE_LOG_PATH,
    )
    runner.install_signal_handlers()

    stop = asyncio.Event()
    sim_task = asyncio.create_task(simulate_players(session, names, stop))
    runner_task = runner.start()
    try:
        if duration > 0:
            try:
                await asyncio.wait_for(runner_task, timeout=duration)
            except asyncio.TimeoutError:
                print(f"\nDuration limit reached ({duration:.0f} seconds)")
        else:
            await runner_task
    except KeyboardInterrupt:
        print("\nShutdown requested by user...")
    finally:
        runner.stop()
        stop.set()
        await sim_task

        print("\n" + "=" * 70)
        print("Final Status")
        print("=" * 70)
        snapshot = session.snapshot()
        print("\nPrices:")
        for name, price in snapshot["prices"].items():
            print(f"  {name:<12} {price:>8.2f}")
        print("\nPlayers:")
        for name in names:
            account = session.state.players[name]
            print(f"  {name:<12} points={account.points:>9.2f} holdings={account.portfolio}")
        print(f"\nRunner: {runner.state.to_dict()}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Run a headless spin market session")
    parser.add_argument("--config", type=str, help="Path to a JSON wheel configuration")
    parser.add_argument("--players", type=int, default=3, help="Simulated players (default 3)")
    parser.add_argument("--duration", type=float, default=0, help="Seconds to run (0 = unlimited)")
    parser.add_argument("--status", action="store_true", help="Show persisted state and exit")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    state_path = PROJECT_ROOT / STATE_PATH

    if args.status:
        show_status(state_path)
        return

    setup_logging(args.verbose)
    config = load_config(args.config) if args.config else DEFAULT_CONFIG

    try:
        asyncio.run(run_session(config, max(1, args.players), args.duration, state_path))
    except KeyboardInterrupt:
        print("\nInterrupted")


if __name__ == "__main__":
    main()
