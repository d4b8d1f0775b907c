"""
Stock market simulation driven by spin outcomes.

This module provides:
- MarketState: the single aggregate every tick and handler receives
- engine: price evolution (gravity, momentum, noise) and spin feedback
- events: timed sentiment events
- liquidity: synthetic counterparty volume
- orders: incremental order filling against the liquidity pool

Usage:
    from spinmarket.market import MarketState, tick_market, tick_orders

    state = MarketState(config=config)
    sync_stocks(state)
    tick_market(state)
    tick_orders(state)
"""

from .base import (
    Fill,
    Order,
    OrderError,
    OrderSide,
    OrderStatus,
    OrderType,
    OrderUpdate,
    SpinMarketError,
)
from .engine import apply_spin_result, compute_gravity, sync_stocks, tick_market
from .events import expire_events, tick_events
from .models import (
    CostBasis,
    LiquidityState,
    MarketEvent,
    MarketSettings,
    MarketState,
    PlayerAccount,
    Stock,
)
from .orders import cancel_order, place_order, tick_orders

__all__ = [
    # Orders
    "Fill",
    "Order",
    "OrderSide",
    "OrderStatus",
    "OrderType",
    "OrderUpdate",
    # Exceptions
    "SpinMarketError",
    "OrderError",
    # State
    "CostBasis",
    "LiquidityState",
    "MarketEvent",
    "MarketSettings",
    "MarketState",
    "PlayerAccount",
    "Stock",
    # Operations
    "apply_spin_result",
    "compute_gravity",
    "sync_stocks",
    "tick_market",
    "expire_events",
    "tick_events",
    "cancel_order",
    "place_order",
    "tick_orders",
]
