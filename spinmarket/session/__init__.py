"""
Game session: spin state machine, bets, persistence and the tick scheduler.
"""

from .bets import BetBook, BetError, BetResult
from .game import GameSession, NextAction, ReadyState, SpinRejected, SpinResult
from .persistence import flush_trade_log, flush_trade_log_async, load_snapshot, save_snapshot
from .runner import RunnerState, SessionRunner

__all__ = [
    "BetBook",
    "BetError",
    "BetResult",
    "GameSession",
    "NextAction",
    "ReadyState",
    "SpinRejected",
    "SpinResult",
    "flush_trade_log",
    "flush_trade_log_async",
    "load_snapshot",
    "save_snapshot",
    "RunnerState",
    "SessionRunner",
]
