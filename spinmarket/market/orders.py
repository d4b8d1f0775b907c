"""
Order book against the synthetic liquidity pool.

Orders are admitted synchronously and then filled incrementally by the
order-processing tick (every 500 ms). Nothing fills in full at once: each
tick attempts max(1, ceil(30% of remaining)) shares, capped by the liquidity
on the opposite side and, for sells, by shares actually owned. Large orders
therefore walk the synthetic book over several ticks, and every fill pushes
momentum back into the market model.

Features:
- Market and limit orders (limit orders wait, uncancelled, until price crosses)
- Weighted average cost basis per position
- Cancellation on insufficient funds/shares at fill time
- Completed orders retained briefly for client history, then purged
- Per-player fill/status notifications
- Fill history queued for the trade log
"""

import logging
import math
import uuid
from datetime import datetime, timezone
from typing import Any, Optional, Union

from . import liquidity
from .base import (
    Fill,
    Order,
    OrderError,
    OrderSide,
    OrderStatus,
    OrderType,
    OrderUpdate,
)
from .models import CostBasis, MarketState, PlayerAccount

logger = logging.getLogger(__name__)


def _coerce_shares(shares: Any) -> int:
    if isinstance(shares, bool):
        raise OrderError("invalid_shares", "Share count must be a positive integer")
    if isinstance(shares, float) and shares.is_integer():
        shares = int(shares)
    if not isinstance(shares, int) or shares <= 0:
        raise OrderError("invalid_shares", f"Share count must be a positive integer, got {shares!r}")
    return shares


def _coerce_enum(value: Any, enum_cls: Any, reason: str) -> Any:
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).lower())
    except ValueError:
        raise OrderError(reason, f"Unknown {enum_cls.__name__}: {value!r}") from None


def place_order(
    state: MarketState,
    player: str,
    entry: str,
    shares: Any,
    side: Union[OrderSide, str],
    order_type: Union[OrderType, str] = OrderType.MARKET,
    limit_price: Optional[float] = None,
    now: Optional[float] = None,
) -> Order:
    """
    Admit a new order. It will be filled by subsequent order ticks.

    Args:
        state: Market state.
        player: Owning player.
        entry: Stock name.
        shares: Positive integer share count.
        side: Buy or sell.
        order_type: Market or limit.
        limit_price: Required for limit orders.
        now: Clock override.

    Returns:
        The pending Order.

    Raises:
        OrderError: invalid_shares, player_not_found, stock_not_found,
            limit_price_required, insufficient_funds, insufficient_shares.
            No state is mutated on rejection.
    """
    shares = _coerce_shares(shares)
    side = _coerce_enum(side, OrderSide, "invalid_side")
    order_type = _coerce_enum(order_type, OrderType, "invalid_order_type")

    account = state.players.get(player)
    if account is None:
        raise OrderError("player_not_found", f"Unknown player: {player}")

    stock = state.stocks.get(entry)
    if stock is None:
        raise OrderError("stock_not_found", f"Stock not found: {entry}")

    if order_type == OrderType.LIMIT:
        if limit_price is None or float(limit_price) <= 0:
            raise OrderError("limit_price_required", "Limit orders require a positive price")
        limit_price = round(float(limit_price), 2)
    else:
        limit_price = None

    if side == OrderSide.BUY:
        reference = limit_price if limit_price is not None else stock.price
        required = round(shares * reference, 2)
        if account.points < required:
            raise OrderError(
                "insufficient_funds",
                f"Insufficient funds: {account.points:.2f} < {required:.2f}",
            )
    elif account.shares_of(entry) < shares:
        raise OrderError(
            "insufficient_shares",
            f"Insufficient shares: own {account.shares_of(entry)}, selling {shares}",
        )

    now = state.now(now)
    order = Order(
        order_id=str(uuid.uuid4())[:8],
        player=player,
        entry=entry,
        side=side,
        order_type=order_type,
        total_shares=shares,
        limit_price=limit_price,
        created_at=now,
        updated_at=now,
    )
    state.orders[order.order_id] = order
    _notify(state, order, "status")

    logger.info(
        f"Order {order.order_id} placed: {player} {side.value} {shares} {entry} "
        f"({order_type.value}{f' @ {limit_price:.2f}' if limit_price is not None else ''})"
    )
    return order


def cancel_order(
    state: MarketState,
    order_id: str,
    player: str,
    now: Optional[float] = None,
) -> Order:
    """
    Cancel an open order on behalf of its owner.

    Raises:
        OrderError: not_found, not_owner, already_completed.
    """
    order = state.orders.get(order_id)
    if order is None:
        raise OrderError("not_found", f"Order not found: {order_id}")
    if order.player != player:
        raise OrderError("not_owner", f"Order {order_id} belongs to another player")
    if not order.is_open:
        raise OrderError("already_completed", f"Order {order_id} is already {order.status.value}")

    _close(state, order, OrderStatus.CANCELLED, state.now(now), reason="cancelled_by_player")
    logger.info(f"Order {order_id} cancelled by {player}")
    return order


def orders_for(state: MarketState, player: str) -> list[Order]:
    """All retained orders of a player, oldest first."""
    return sorted(
        (o for o in state.orders.values() if o.player == player),
        key=lambda o: o.created_at,
    )


def tick_orders(state: MarketState, now: Optional[float] = None) -> bool:
    """
    Order-processing tick.

    Advances every open order by at most one partial fill, then decays the
    liquidity pool and purges expired completed orders.

    Returns:
        True if any order, portfolio or the order list changed.
    """
    now = state.now(now)
    changed = False
    for order in list(state.orders.values()):
        if order.is_open and _process_order(state, order, now):
            changed = True

    liquidity.decay(state)

    if purge_completed(state, now):
        changed = True
    return changed


def purge_completed(state: MarketState, now: Optional[float] = None) -> bool:
    """Drop completed orders older than the retention window."""
    now = state.now(now)
    retention = state.settings.order_retention
    expired = [
        oid
        for oid, order in state.orders.items()
        if order.completed_at is not None and now - order.completed_at >= retention
    ]
    for oid in expired:
        del state.orders[oid]
    return bool(expired)


def liquidate_entries(
    state: MarketState,
    last_prices: dict[str, float],
    now: Optional[float] = None,
) -> None:
    """
    Close out everything referring to removed entries.

    Open orders are cancelled with stock_not_found; holdings are sold at the
    last known price and the cost basis dropped.
    """
    now = state.now(now)
    names = set(last_prices)
    for order in list(state.orders.values()):
        if order.is_open and order.entry in names:
            _close(state, order, OrderStatus.CANCELLED, now, reason="stock_not_found")

    for account in state.players.values():
        for name in names:
            held = account.portfolio.pop(name, 0)
            account.cost_basis.pop(name, None)
            if held > 0:
                proceeds = round(held * last_prices[name], 2)
                account.points = round(account.points + proceeds, 2)
                logger.info(
                    f"Liquidated {held} {name} for {account.name} at "
                    f"{last_prices[name]:.2f} (+{proceeds:.2f})"
                )


# =========================================================================
# Private helpers
# =========================================================================


def _process_order(state: MarketState, order: Order, now: float) -> bool:
    stock = state.stocks.get(order.entry)
    if stock is None:
        _close(state, order, OrderStatus.CANCELLED, now, reason="stock_not_found")
        return True

    account = state.players.get(order.player)
    if account is None:
        _close(state, order, OrderStatus.CANCELLED, now, reason="player_not_found")
        return True

    price = stock.price
    if order.order_type == OrderType.LIMIT:
        if order.side == OrderSide.BUY and price > order.limit_price:
            return False
        if order.side == OrderSide.SELL and price < order.limit_price:
            return False

    remaining = order.remaining_shares
    # Rounded first so 10 * 0.3 attempts 3 shares, not 4
    desired = min(remaining, max(1, math.ceil(round(remaining * state.settings.fill_fraction, 9))))
    pool = liquidity.ensure_pool(state, order.entry)
    quantity = min(desired, liquidity.available_shares(pool, order.side))

    if order.side == OrderSide.SELL:
        owned = account.shares_of(order.entry)
        if owned <= 0:
            _close(state, order, OrderStatus.CANCELLED, now, reason="insufficient_shares")
            return True
        quantity = min(quantity, owned)

    if quantity <= 0:
        # Liquidity shortfall: try again next tick
        return False

    if order.side == OrderSide.BUY:
        cost = round(quantity * price, 2)
        if account.points < cost:
            _close(state, order, OrderStatus.CANCELLED, now, reason="insufficient_funds")
            return True
        _apply_buy(account, order.entry, quantity, cost)
        direction = 1.0
    else:
        proceeds = round(quantity * price, 2)
        _apply_sell(account, order.entry, quantity, proceeds)
        direction = -1.0

    liquidity.consume(pool, order.side, quantity)
    stock.momentum += direction * state.settings.trade_momentum * math.sqrt(quantity)

    order.fills.append(Fill(shares=quantity, price=price, timestamp=now))
    order.filled_shares += quantity
    order.updated_at = now
    _queue_trade(state, order, quantity, price, account)

    if order.filled_shares == order.total_shares:
        _close(state, order, OrderStatus.FILLED, now)
    else:
        order.status = OrderStatus.PARTIAL
        _notify(state, order, "fill")

    logger.debug(
        f"Order {order.order_id} filled {quantity} {order.entry} @ {price:.2f} "
        f"({order.filled_shares}/{order.total_shares})"
    )
    return True


def _apply_buy(account: PlayerAccount, entry: str, quantity: int, cost: float) -> None:
    account.points = round(account.points - cost, 2)
    account.portfolio[entry] = account.shares_of(entry) + quantity
    basis = account.cost_basis.setdefault(entry, CostBasis())
    basis.total_cost = round(basis.total_cost + cost, 4)
    basis.shares += quantity


def _apply_sell(account: PlayerAccount, entry: str, quantity: int, proceeds: float) -> None:
    account.points = round(account.points + proceeds, 2)
    held = account.shares_of(entry) - quantity
    if held > 0:
        account.portfolio[entry] = held
    else:
        account.portfolio.pop(entry, None)

    basis = account.cost_basis.get(entry)
    if basis is None:
        return
    if held <= 0:
        del account.cost_basis[entry]
        return
    released = basis.average_cost * quantity
    basis.total_cost = max(0.0, round(basis.total_cost - released, 4))
    basis.shares = held


def _close(
    state: MarketState,
    order: Order,
    status: OrderStatus,
    now: float,
    reason: Optional[str] = None,
) -> None:
    order.status = status
    order.updated_at = now
    order.completed_at = now
    if status == OrderStatus.CANCELLED:
        order.cancel_reason = reason
        logger.info(f"Order {order.order_id} cancelled ({reason})")
    _notify(state, order, "fill" if status == OrderStatus.FILLED else "status")


def _notify(state: MarketState, order: Order, event: str) -> None:
    state.order_updates.append(OrderUpdate(player=order.player, order=order.to_dict(), event=event))


def _queue_trade(
    state: MarketState,
    order: Order,
    quantity: int,
    price: float,
    account: PlayerAccount,
) -> None:
    state.pending_trades.append(
        {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "order_id": order.order_id,
            "player": order.player,
            "entry": order.entry,
            "side": order.side.value,
            "shares": quantity,
            "price": price,
            "balance_after": account.points,
        }
    )
