"""
Synthetic liquidity pool.

Player orders never match against each other; they fill against synthetic
counterparty volume that regenerates every market tick and halves every
order tick. Volume is skewed by mispricing: an overvalued stock offers more
synthetic sellers, an undervalued one more synthetic buyers. Active events
add volume on the side of their sentiment.

Side conventions:
- sell_volume: synthetic sellers, consumed by player buys and upward momentum
- buy_volume: synthetic buyers, consumed by player sells and downward momentum
"""

import logging
import math

from .base import OrderSide
from .models import LiquidityState, MarketState

logger = logging.getLogger(__name__)


def ensure_pool(state: MarketState, name: str) -> LiquidityState:
    """Get or create the pool for a stock, seeded with the initial depth."""
    pool = state.liquidity.get(name)
    if pool is None:
        initial = state.settings.initial_liquidity
        pool = LiquidityState(buy_volume=initial, sell_volume=initial)
        state.liquidity[name] = pool
    return pool


def replenish(state: MarketState) -> None:
    """Regenerate volume for every stock (called once per market tick)."""
    settings = state.settings
    for name, stock in state.stocks.items():
        pool = ensure_pool(state, name)
        pool.buy_volume += settings.liquidity_regen
        pool.sell_volume += settings.liquidity_regen

        deviation = stock.deviation
        skew = abs(deviation) * settings.liquidity_skew
        if deviation > 0:
            pool.sell_volume += skew
        elif deviation < 0:
            pool.buy_volume += skew

    for event in state.events:
        if not event.is_alive:
            continue
        bonus = event.strength * settings.event_liquidity_bonus
        for name in event.affected_entries:
            if name not in state.stocks:
                continue
            pool = ensure_pool(state, name)
            if event.sentiment > 0:
                pool.buy_volume += bonus
            else:
                pool.sell_volume += bonus


def decay(state: MarketState) -> None:
    """Halve every pool (called once per order tick), zeroing dust."""
    factor = state.settings.liquidity_decay
    floor = state.settings.liquidity_floor
    for pool in state.liquidity.values():
        pool.buy_volume *= factor
        pool.sell_volume *= factor
        if pool.buy_volume < floor:
            pool.buy_volume = 0.0
        if pool.sell_volume < floor:
            pool.sell_volume = 0.0


def available_shares(pool: LiquidityState, side: OrderSide) -> int:
    """Whole shares a player order on this side can fill right now."""
    volume = pool.sell_volume if side == OrderSide.BUY else pool.buy_volume
    return max(0, math.floor(volume))


def consume(pool: LiquidityState, side: OrderSide, shares: float) -> None:
    """Remove volume taken by a player order."""
    if side == OrderSide.BUY:
        pool.sell_volume = max(0.0, pool.sell_volume - shares)
    else:
        pool.buy_volume = max(0.0, pool.buy_volume - shares)


def absorb_momentum(state: MarketState, name: str, push: float, price: float) -> float:
    """
    Limit a momentum-driven price move by available liquidity.

    Each liquidity unit allows a move of move_per_unit * price. The units
    used are consumed from the side the move trades against.

    Returns:
        The price move actually permitted (same sign as push).
    """
    if push == 0 or price <= 0:
        return 0.0
    pool = ensure_pool(state, name)
    units_needed = abs(push) / (price * state.settings.move_per_unit)
    available = pool.sell_volume if push > 0 else pool.buy_volume
    if available <= 0:
        return 0.0

    if units_needed <= available:
        used, permitted = units_needed, push
    else:
        used, permitted = available, push * (available / units_needed)

    if push > 0:
        pool.sell_volume -= used
    else:
        pool.buy_volume -= used
    return permitted
