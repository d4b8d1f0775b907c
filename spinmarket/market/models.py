"""
Data models for the spin market simulation.

Defines the per-entry stock and liquidity state, market events, player
accounts with average-cost accounting, the tunable market settings, and the
MarketState aggregate that every tick and handler receives explicitly.
"""

import random
import secrets
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from ..config import (
    BASE_INCOME,
    EVENT_MAX_INTERVAL,
    EVENT_MIN_INTERVAL,
    MAX_ACTIVE_EVENTS,
    ORDER_RETENTION_SECONDS,
    STARTING_POINTS,
)
from ..wheel.models import ActiveConfiguration, SpinPhase, WheelConfig
from ..wheel.weights import WeightStore
from .base import Order, OrderUpdate

MIN_PRICE = 0.01
HISTORY_LENGTH = 50


@dataclass
class MarketSettings:
    """
    Tunable constants of the market simulation.

    Attributes:
        base_value: Real value of an entry at uniform win probability and
            development 1.0.
        gravity_k: Fraction of the price/real-value gap closed per tick.
        dead_zone: Relative deviation below which gravity does nothing.
        momentum_decay: Geometric momentum decay per tick.
        momentum_epsilon: Momentum below this magnitude is zeroed.
        momentum_damping: Momentum push is scaled by 1 / (1 + damping * |d|).
        noise: Maximum multiplicative noise per tick (fraction of price).
        win_momentum: Momentum bump for a spin winner.
        trade_momentum: Momentum per sqrt(share) of a filled order.
        win_development: Development gained by a spin winner.
        opposite_development: Development lost by the opposite entry.
        development_floor: Lower bound for development.
        move_per_unit: Price fraction one liquidity unit lets momentum move.
        initial_liquidity: Starting volume on each side.
        liquidity_regen: Base volume added per side each market tick.
        liquidity_skew: Extra volume per unit of relative deviation.
        event_liquidity_bonus: Extra volume per unit of event strength.
        liquidity_decay: Multiplier applied each order tick.
        liquidity_floor: Volumes below this are zeroed.
        fill_fraction: Share of the remaining order attempted per tick.
        order_retention: Seconds completed orders stay visible.
        max_active_events: Event capacity.
        event_development_rate: Development nudge per tick per unit strength.
        event_momentum_rate: Momentum nudge per tick per unit strength.
        world_event_chance: Probability a fired event is market-wide.
        event_min_interval: Minimum seconds between event attempts.
        event_max_interval: Maximum seconds between event attempts.
        starting_points: Funds of a new player.
        base_income: Funds paid to connected players after each spin.
    """

    base_value: float = 100.0
    gravity_k: float = 0.05
    dead_zone: float = 0.10
    momentum_decay: float = 0.95
    momentum_epsilon: float = 1e-4
    momentum_damping: float = 5.0
    noise: float = 0.003
    win_momentum: float = 0.02
    trade_momentum: float = 0.004
    win_development: float = 0.05
    opposite_development: float = 0.02
    development_floor: float = 0.1
    move_per_unit: float = 0.0005
    initial_liquidity: float = 10.0
    liquidity_regen: float = 8.0
    liquidity_skew: float = 40.0
    event_liquidity_bonus: float = 3.0
    liquidity_decay: float = 0.5
    liquidity_floor: float = 0.1
    fill_fraction: float = 0.3
    order_retention: float = ORDER_RETENTION_SECONDS
    max_active_events: int = MAX_ACTIVE_EVENTS
    event_development_rate: float = 0.002
    event_momentum_rate: float = 0.003
    world_event_chance: float = 0.3
    event_min_interval: float = EVENT_MIN_INTERVAL
    event_max_interval: float = EVENT_MAX_INTERVAL
    starting_points: float = STARTING_POINTS
    base_income: float = BASE_INCOME

    def validate(self) -> bool:
        """Validate configuration parameters."""
        if self.base_value <= 0:
            raise ValueError("base_value must be positive")
        if not 0 <= self.dead_zone < 1:
            raise ValueError("dead_zone must be between 0 and 1")
        if not 0 < self.momentum_decay <= 1:
            raise ValueError("momentum_decay must be in (0, 1]")
        if not 0 <= self.liquidity_decay <= 1:
            raise ValueError("liquidity_decay must be between 0 and 1")
        if not 0 < self.fill_fraction <= 1:
            raise ValueError("fill_fraction must be in (0, 1]")
        if self.event_min_interval > self.event_max_interval:
            raise ValueError("event_min_interval must not exceed event_max_interval")
        return True


@dataclass
class Stock:
    """
    Tradable state for one entry name.

    Attributes:
        name: Entry name.
        price: Observable, tradable price (>= 0.01, cents).
        prev_price: Price before the last tick.
        real_value: Fair value derived from win probability and development.
        development: Slow long-run quality multiplier.
        momentum: Short-term directional pressure.
        history: Last HISTORY_LENGTH prices.
    """

    name: str
    price: float = 100.0
    prev_price: float = 100.0
    real_value: float = 100.0
    development: float = 1.0
    momentum: float = 0.0
    history: deque = field(default_factory=lambda: deque(maxlen=HISTORY_LENGTH))

    @property
    def deviation(self) -> float:
        """Relative deviation of price from real value (0 when undefined)."""
        if self.real_value <= 0:
            return 0.0
        return (self.price - self.real_value) / self.real_value


@dataclass
class LiquidityState:
    """Synthetic counterparty depth for one entry."""

    buy_volume: float = 0.0
    sell_volume: float = 0.0

    def to_dict(self) -> dict[str, float]:
        return {"buyVolume": round(self.buy_volume, 2), "sellVolume": round(self.sell_volume, 2)}


@dataclass
class MarketEvent:
    """
    Timed sentiment event.

    Attributes:
        event_id: Unique identifier.
        headline: Display headline.
        sentiment: +1 bullish, -1 bearish.
        strength: Positive magnitude.
        spins_remaining: Lifetime in spins.
        affected_entries: Stock names nudged while alive.
        kind: "world" or "entry".
    """

    event_id: str
    headline: str
    sentiment: int
    strength: float
    spins_remaining: int
    affected_entries: list[str] = field(default_factory=list)
    kind: str = "entry"

    @property
    def is_alive(self) -> bool:
        return self.spins_remaining > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.event_id,
            "headline": self.headline,
            "sentiment": self.sentiment,
            "strength": round(self.strength, 3),
            "spinsRemaining": self.spins_remaining,
            "affectedEntries": list(self.affected_entries),
            "kind": self.kind,
        }


@dataclass
class CostBasis:
    """Average-cost accounting for one position."""

    total_cost: float = 0.0
    shares: int = 0

    @property
    def average_cost(self) -> float:
        return self.total_cost / self.shares if self.shares else 0.0

    def to_dict(self) -> dict[str, float]:
        return {"totalCost": round(self.total_cost, 2), "shares": self.shares}


@dataclass
class PlayerAccount:
    """
    A player's funds, holdings and stats.

    Portfolio and cost basis change only through fills (and liquidation of
    removed entries), never through price ticks.
    """

    name: str
    points: float = STARTING_POINTS
    portfolio: dict[str, int] = field(default_factory=dict)
    cost_basis: dict[str, CostBasis] = field(default_factory=dict)
    stats: dict[str, int] = field(
        default_factory=lambda: {"totalSpins": 0, "totalWins": 0}
    )
    connected: bool = True

    def shares_of(self, entry: str) -> int:
        return self.portfolio.get(entry, 0)


@dataclass
class MarketState:
    """
    The single owned aggregate of simulation state.

    All ticks and handlers mutate state only through this object, from one
    cooperative scheduler, so no locking is required.
    """

    config: ActiveConfiguration = field(default_factory=ActiveConfiguration)
    weights: WeightStore = field(default_factory=WeightStore)
    stocks: dict[str, Stock] = field(default_factory=dict)
    liquidity: dict[str, LiquidityState] = field(default_factory=dict)
    events: list[MarketEvent] = field(default_factory=list)
    orders: dict[str, Order] = field(default_factory=dict)
    players: dict[str, PlayerAccount] = field(default_factory=dict)
    settings: MarketSettings = field(default_factory=MarketSettings)
    rng: random.Random = field(default_factory=secrets.SystemRandom)
    clock: Callable[[], float] = time.monotonic
    phase: SpinPhase = SpinPhase.IDLE
    win_probabilities: Optional[dict[str, float]] = None
    order_updates: list[OrderUpdate] = field(default_factory=list)
    pending_trades: deque = field(default_factory=lambda: deque(maxlen=1000))
    event_counter: int = 0

    @property
    def active_wheel(self) -> Optional[WheelConfig]:
        return self.config.active_wheel

    @property
    def spin_in_progress(self) -> bool:
        return self.phase in (SpinPhase.SPINNING, SpinPhase.RESOLVING)

    def now(self, now: Optional[float] = None) -> float:
        return self.clock() if now is None else now

    def get_player(self, name: str) -> Optional[PlayerAccount]:
        return self.players.get(name)
