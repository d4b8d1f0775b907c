"""
Session persistence.

The stock table and player records survive restarts; order book, liquidity,
events and weight modifiers are transient. Snapshots are written to a temp
file and atomically replaced so a crash mid-write never corrupts the last
good copy. Filled trades are appended to a JSONL log.
"""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any, Optional, Union

from ..market.models import CostBasis, MarketState, PlayerAccount, Stock

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


# =========================================================================
# Records
# =========================================================================


def stock_record(stock: Stock) -> dict[str, Any]:
    return {
        "price": stock.price,
        "realValue": stock.real_value,
        "development": stock.development,
        "momentum": stock.momentum,
        "history": list(stock.history),
    }


def load_stock(name: str, data: dict[str, Any]) -> Stock:
    stock = Stock(
        name=name,
        price=float(data.get("price", 100.0)),
        real_value=float(data.get("realValue", 100.0)),
        development=float(data.get("development", 1.0)),
        momentum=float(data.get("momentum", 0.0)),
    )
    stock.prev_price = stock.price
    stock.history.extend(float(p) for p in data.get("history") or [])
    return stock


def player_record(account: PlayerAccount) -> dict[str, Any]:
    return {
        "name": account.name,
        "points": account.points,
        "stats": dict(account.stats),
        "portfolio": dict(account.portfolio),
        "costBasis": {entry: basis.to_dict() for entry, basis in account.cost_basis.items()},
    }


def load_player(data: dict[str, Any]) -> PlayerAccount:
    account = PlayerAccount(
        name=str(data["name"]),
        points=float(data.get("points", 0.0)),
        portfolio={str(k): int(v) for k, v in (data.get("portfolio") or {}).items() if int(v) > 0},
        connected=False,
    )
    account.stats.update({str(k): int(v) for k, v in (data.get("stats") or {}).items()})
    for entry, basis in (data.get("costBasis") or {}).items():
        account.cost_basis[str(entry)] = CostBasis(
            total_cost=float(basis.get("totalCost", 0.0)),
            shares=int(basis.get("shares", 0)),
        )
    return account


# =========================================================================
# Snapshots
# =========================================================================


def build_snapshot(state: MarketState) -> dict[str, Any]:
    return {
        "stocks": {name: stock_record(stock) for name, stock in state.stocks.items()},
        "players": {name: player_record(account) for name, account in state.players.items()},
    }


def save_snapshot(state: MarketState, path: PathLike) -> Path:
    """Write the stock table and player records atomically."""
    path = Path(path)
    _write_payload(build_snapshot(state), path)
    logger.debug(f"Snapshot saved to {path}")
    return path


async def save_snapshot_async(state: MarketState, path: PathLike) -> None:
    """
    Persist off the event loop.

    The payload is built on the loop so the worker thread never sees state
    mid-mutation. Failures are logged, not raised.
    """
    try:
        payload = build_snapshot(state)
        await asyncio.to_thread(_write_payload, payload, Path(path))
    except (OSError, TypeError, ValueError) as e:
        logger.warning(f"Failed to save snapshot to {path}: {e}")


def _write_payload(payload: dict[str, Any], path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    with open(tmp, "w") as f:
        json.dump(payload, f, indent=2)
    os.replace(tmp, path)


def load_snapshot(state: MarketState, path: PathLike) -> bool:
    """
    Restore stocks and players from disk.

    Stocks are only restored for names on the active wheel. Missing or
    corrupt files leave the state untouched.

    Returns:
        True if a snapshot was loaded.
    """
    path = Path(path)
    if not path.exists():
        return False
    try:
        with open(path) as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Ignoring unreadable snapshot {path}: {e}")
        return False

    wheel = state.active_wheel
    names = set(wheel.unique_names) if wheel else set()
    for name, record in (data.get("stocks") or {}).items():
        if name in names:
            state.stocks[name] = load_stock(name, record)

    for record in (data.get("players") or {}).values():
        account = load_player(record)
        state.players[account.name] = account

    state.win_probabilities = None
    logger.info(
        f"Loaded snapshot from {path}: {len(state.stocks)} stocks, {len(state.players)} players"
    )
    return True


# =========================================================================
# Trade log
# =========================================================================


def _drain_trades(state: MarketState) -> list[dict[str, Any]]:
    trades = list(state.pending_trades)
    state.pending_trades.clear()
    return trades


def _append_trades(trades: list[dict[str, Any]], path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "a") as f:
        for trade in trades:
            f.write(json.dumps(trade) + "\n")


def flush_trade_log(state: MarketState, path: Optional[PathLike]) -> int:
    """
    Append queued fills to the JSONL trade log.

    Returns:
        Number of trades written.
    """
    trades = _drain_trades(state)
    if not trades or path is None:
        return 0
    try:
        _append_trades(trades, Path(path))
    except (OSError, TypeError, ValueError) as e:
        logger.warning(f"Failed to write to trade log: {e}")
        return 0
    return len(trades)


async def flush_trade_log_async(state: MarketState, path: Optional[PathLike]) -> int:
    """
    Append queued fills from a worker thread.

    The queue is drained on the loop; only the file write leaves it.
    """
    trades = _drain_trades(state)
    if not trades or path is None:
        return 0
    try:
        await asyncio.to_thread(_append_trades, trades, Path(path))
    except (OSError, TypeError, ValueError) as e:
        logger.warning(f"Failed to write to trade log: {e}")
        return 0
    return len(trades)
