"""
Market simulation engine.

Every market tick (1 second, skipped while a spin is in flight):

1. Real value per stock = BASE * (win probability / uniform probability)
   * development, using the probability distribution cached by the previous
   tick. The cache is refreshed at the end of the tick, so real value lags
   configuration and weight changes by exactly one tick.
2. Active events nudge development and momentum.
3. The liquidity pool regenerates.
4. Price update per stock:
   - gravity pulls toward real value, only outside the dead zone
   - momentum pushes, dampened by distance from real value and capped by
     the liquidity available on the side it trades against
   - small multiplicative noise
   - clamp >= 0.01, round to cents, append to history, decay momentum

Spin wins feed development and momentum through apply_spin_result().
"""

import logging
from typing import Optional

from ..wheel.models import WheelConfig
from . import liquidity
from .events import apply_events
from .models import MIN_PRICE, MarketState, Stock

logger = logging.getLogger(__name__)


def compute_gravity(price: float, real_value: float, k: float, dead_zone: float) -> float:
    """
    Mean-reversion contribution to the next price change.

    Returns 0 inside the dead zone, so small deviations persist and price is
    not a pure mirror of real value.
    """
    if real_value <= 0:
        return 0.0
    deviation = (price - real_value) / real_value
    if abs(deviation) <= dead_zone:
        return 0.0
    return -(price - real_value) * k


def win_probabilities(state: MarketState) -> dict[str, float]:
    """Win probability per unique entry name on the active wheel."""
    wheel = state.active_wheel
    if wheel is None or not wheel.entries:
        return {}
    weights = state.weights.effective_weights(wheel)
    total = sum(weights)
    probabilities: dict[str, float] = {}
    for name, weight in zip(wheel.entries, weights):
        probabilities[name] = probabilities.get(name, 0.0) + weight / total
    return probabilities


def _real_value(state: MarketState, stock: Stock, probabilities: dict[str, float]) -> float:
    if not probabilities:
        return stock.real_value
    uniform = 1.0 / len(probabilities)
    p = probabilities.get(stock.name, 0.0)
    return round(state.settings.base_value * (p / uniform) * stock.development, 4)


def sync_stocks(state: MarketState) -> list[str]:
    """
    Align the stock table with the active wheel's entry names.

    New names get a stock priced at their current real value. Names no
    longer on the wheel are removed along with their liquidity.

    Returns:
        Names that were removed; callers liquidate positions in them.
    """
    wheel = state.active_wheel
    names = wheel.unique_names if wheel else []
    probabilities = win_probabilities(state)

    for name in names:
        if name in state.stocks:
            continue
        stock = Stock(name=name)
        value = _real_value(state, stock, probabilities) if probabilities else state.settings.base_value
        stock.real_value = value
        stock.price = stock.prev_price = max(MIN_PRICE, round(value, 2))
        stock.history.append(stock.price)
        state.stocks[name] = stock
        liquidity.ensure_pool(state, name)
        logger.info(f"Listed stock {name} at {stock.price:.2f}")

    removed = [name for name in state.stocks if name not in names]
    for name in removed:
        del state.stocks[name]
        state.liquidity.pop(name, None)
        logger.info(f"Delisted stock {name}")

    state.win_probabilities = None
    return removed


def advance_price(state: MarketState, stock: Stock) -> None:
    """Apply gravity, momentum and noise to one stock."""
    settings = state.settings
    price = stock.price
    stock.prev_price = price

    gravity = compute_gravity(price, stock.real_value, settings.gravity_k, settings.dead_zone)

    dampening = 1.0 / (1.0 + abs(stock.deviation) * settings.momentum_damping)
    desired_push = price * stock.momentum * dampening
    push = liquidity.absorb_momentum(state, stock.name, desired_push, price)

    noise = price * state.rng.uniform(-settings.noise, settings.noise)

    new_price = price + gravity + push + noise
    stock.price = max(MIN_PRICE, round(max(MIN_PRICE, new_price), 2))
    stock.history.append(stock.price)

    stock.momentum *= settings.momentum_decay
    if abs(stock.momentum) < settings.momentum_epsilon:
        stock.momentum = 0.0


def tick_market(state: MarketState) -> bool:
    """
    Advance every stock by one market tick.

    Returns:
        True if prices were updated (observers should be notified).
    """
    if state.spin_in_progress or not state.stocks:
        return False

    probabilities = state.win_probabilities
    if probabilities is None:
        probabilities = win_probabilities(state)

    for stock in state.stocks.values():
        stock.real_value = _real_value(state, stock, probabilities)

    apply_events(state)
    liquidity.replenish(state)

    for stock in state.stocks.values():
        advance_price(state, stock)

    state.win_probabilities = win_probabilities(state)
    logger.debug(
        "Market tick: "
        + ", ".join(f"{s.name}={s.price:.2f}/{s.real_value:.2f}" for s in state.stocks.values())
    )
    return True


def apply_spin_result(
    state: MarketState,
    wheel: Optional[WheelConfig],
    winner_index: int,
) -> None:
    """
    Feed a spin winner into the market.

    The winner gains development and a momentum bump; the entry diametrically
    opposite on the wheel loses a smaller amount of development. Spins of
    wheels other than the active (traded) one do not move the market.
    """
    active = state.active_wheel
    if wheel is None or active is None or wheel.wheel_id != active.wheel_id:
        return
    entries = wheel.entries
    if not entries or not 0 <= winner_index < len(entries):
        return

    settings = state.settings
    winner_name = entries[winner_index]
    winner = state.stocks.get(winner_name)
    if winner is not None:
        winner.development += settings.win_development
        winner.momentum += settings.win_momentum

    opposite_name = entries[(winner_index + len(entries) // 2) % len(entries)]
    opposite = state.stocks.get(opposite_name)
    if opposite is not None and opposite_name != winner_name:
        opposite.development = max(
            settings.development_floor,
            opposite.development - settings.opposite_development,
        )

    logger.info(
        f"Spin result fed to market: {winner_name} up, {opposite_name} down"
    )
