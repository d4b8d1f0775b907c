"""
Core order abstractions for the spin market.

This module defines order sides, types and statuses, the order and fill
records advanced by the order-processing tick, and the error taxonomy shared
by the market and session layers. Every error carries a machine-readable
reason code that collaborators forward to clients verbatim.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class OrderSide(Enum):
    """Order side enumeration."""

    BUY = "buy"
    SELL = "sell"

    def __str__(self) -> str:
        return self.value


class OrderType(Enum):
    """Order type enumeration."""

    MARKET = "market"
    LIMIT = "limit"

    def __str__(self) -> str:
        return self.value


class OrderStatus(Enum):
    """Order status enumeration."""

    PENDING = "pending"
    PARTIAL = "partial"
    FILLED = "filled"
    CANCELLED = "cancelled"

    def __str__(self) -> str:
        return self.value


@dataclass
class Fill:
    """One partial execution of an order."""

    shares: int
    price: float
    timestamp: float

    def to_dict(self) -> dict[str, Any]:
        return {"shares": self.shares, "price": self.price, "timestamp": self.timestamp}


@dataclass
class Order:
    """
    Represents a player order against the synthetic liquidity pool.

    Attributes:
        order_id: Unique identifier for the order.
        player: Owning player name.
        entry: Stock (entry name) traded.
        side: Buy or sell side.
        order_type: Market or limit.
        total_shares: Requested share count.
        limit_price: Limit price (limit orders only).
        status: Current order status.
        filled_shares: Shares filled so far.
        fills: Individual partial fills.
        created_at: Creation time (scheduler clock seconds).
        updated_at: Last update time.
        completed_at: Time the order reached a terminal status.
        cancel_reason: Reason code when cancelled.
    """

    order_id: str
    player: str
    entry: str
    side: OrderSide
    order_type: OrderType
    total_shares: int
    limit_price: Optional[float] = None
    status: OrderStatus = OrderStatus.PENDING
    filled_shares: int = 0
    fills: list[Fill] = field(default_factory=list)
    created_at: float = 0.0
    updated_at: float = 0.0
    completed_at: Optional[float] = None
    cancel_reason: Optional[str] = None

    @property
    def is_open(self) -> bool:
        """Check if order is still active."""
        return self.status in (OrderStatus.PENDING, OrderStatus.PARTIAL)

    @property
    def is_filled(self) -> bool:
        """Check if order is completely filled."""
        return self.status == OrderStatus.FILLED

    @property
    def remaining_shares(self) -> int:
        """Calculate remaining unfilled shares."""
        return self.total_shares - self.filled_shares

    @property
    def average_fill_price(self) -> Optional[float]:
        if not self.filled_shares:
            return None
        notional = sum(f.shares * f.price for f in self.fills)
        return round(notional / self.filled_shares, 4)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.order_id,
            "player": self.player,
            "entry": self.entry,
            "side": self.side.value,
            "type": self.order_type.value,
            "totalShares": self.total_shares,
            "filledShares": self.filled_shares,
            "limitPrice": self.limit_price,
            "status": self.status.value,
            "fills": [f.to_dict() for f in self.fills],
            "averageFillPrice": self.average_fill_price,
            "cancelReason": self.cancel_reason,
        }


@dataclass
class OrderUpdate:
    """Fill/status notification scoped to the owning player."""

    player: str
    order: dict[str, Any]
    event: str  # "fill" or "status"


class SpinMarketError(Exception):
    """Base exception carrying a reason code."""

    def __init__(self, reason: str, message: Optional[str] = None) -> None:
        self.reason = reason
        super().__init__(message or reason)


class OrderError(SpinMarketError):
    """Raised when an order is rejected or cannot be cancelled."""

    pass
