"""
Market event scheduler.

Events are timed sentiment shocks. When the scheduler fires it emits either
a world event (all stocks, or the subset a template names) drawn from the
default templates merged with the host's configured templates, or a
single-entry event with a headline generated from bullish/bearish templates.

An event lives for a number of spins: it nudges development and momentum of
its stocks on every market tick and is expired by the spin-completion
handler. At most max_active_events are alive at once; while at capacity a
firing is skipped and the scheduler simply waits for its next interval.
"""

import logging
import random
from typing import Any, Optional

from ..wheel.models import parse_entries
from .models import MarketEvent, MarketState

logger = logging.getLogger(__name__)


MIN_STRENGTH = 0.5
MAX_STRENGTH = 1.5
MIN_LIFETIME = 2
MAX_LIFETIME = 5

DEFAULT_WORLD_EVENTS: list[dict[str, Any]] = [
    {"headline": "Spectators flood the floor, everyone wants a piece", "sentiment": 1},
    {"headline": "Wheel commission announces surprise audit", "sentiment": -1},
    {"headline": "Rumors of a rigged bearing rattle traders", "sentiment": -1, "strength": 1.2},
    {"headline": "Lucky-streak mania sweeps the room", "sentiment": 1, "strength": 1.2},
    {"headline": "Central bank of snacks cuts interest rates", "sentiment": 1, "duration": 3},
    {"headline": "Power flicker spooks the market", "sentiment": -1, "duration": 2},
]

BULLISH_HEADLINES = [
    "{entry} lands a blockbuster sponsorship deal",
    "Analysts upgrade {entry} to strong buy",
    "{entry} spotted carrying a four-leaf clover",
    "Insiders quietly loading up on {entry}",
]

BEARISH_HEADLINES = [
    "{entry} caught in an accounting scandal",
    "Analysts downgrade {entry} to sell",
    "{entry} CEO seen leaving through the back door",
    "Short sellers circle {entry}",
]


def merged_templates(state: MarketState) -> list[dict[str, Any]]:
    """Default world templates followed by the host's configured ones."""
    return DEFAULT_WORLD_EVENTS + list(state.config.event_templates)


def next_delay(state: MarketState) -> float:
    """Seconds until the scheduler should fire again."""
    settings = state.settings
    return state.rng.uniform(settings.event_min_interval, settings.event_max_interval)


def _next_id(state: MarketState) -> str:
    state.event_counter += 1
    return f"evt_{state.event_counter}"


def _sentiment(value: Any, rng: random.Random) -> int:
    try:
        value = float(value)
    except (TypeError, ValueError):
        value = 0.0
    if value > 0:
        return 1
    if value < 0:
        return -1
    return rng.choice((1, -1))


def event_from_template(state: MarketState, template: dict[str, Any]) -> Optional[MarketEvent]:
    """
    Build a world event from a template.

    Missing strength/duration are drawn at random. A template naming an
    entries subset only affects those that are listed stocks; if none are,
    no event is produced.
    """
    rng = state.rng
    subset = parse_entries(template.get("entries"))
    if subset:
        affected = [name for name in subset if name in state.stocks]
        if not affected:
            return None
    else:
        affected = list(state.stocks)

    strength = template.get("strength")
    duration = template.get("duration")
    return MarketEvent(
        event_id=_next_id(state),
        headline=str(template.get("headline") or "Market-moving news"),
        sentiment=_sentiment(template.get("sentiment"), rng),
        strength=float(strength) if strength else rng.uniform(MIN_STRENGTH, MAX_STRENGTH),
        spins_remaining=int(duration) if duration else rng.randint(MIN_LIFETIME, MAX_LIFETIME),
        affected_entries=affected,
        kind="world",
    )


def single_entry_event(state: MarketState, name: str) -> MarketEvent:
    rng = state.rng
    sentiment = rng.choice((1, -1))
    headlines = BULLISH_HEADLINES if sentiment > 0 else BEARISH_HEADLINES
    return MarketEvent(
        event_id=_next_id(state),
        headline=rng.choice(headlines).format(entry=name),
        sentiment=sentiment,
        strength=rng.uniform(MIN_STRENGTH, MAX_STRENGTH),
        spins_remaining=rng.randint(MIN_LIFETIME, MAX_LIFETIME),
        affected_entries=[name],
        kind="entry",
    )


def tick_events(state: MarketState) -> bool:
    """
    Scheduler firing: possibly emit one event.

    Returns:
        True if an event was created.
    """
    if not state.stocks:
        return False
    if len(state.events) >= state.settings.max_active_events:
        logger.debug(f"Event skipped: {len(state.events)} events already active")
        return False

    rng = state.rng
    if rng.random() < state.settings.world_event_chance:
        event = event_from_template(state, rng.choice(merged_templates(state)))
    else:
        event = single_entry_event(state, rng.choice(list(state.stocks)))
    if event is None:
        return False

    state.events.append(event)
    mood = "bullish" if event.sentiment > 0 else "bearish"
    logger.info(
        f"Market event {event.event_id} ({mood}, strength={event.strength:.2f}, "
        f"{event.spins_remaining} spins): {event.headline}"
    )
    return True


def apply_events(state: MarketState) -> None:
    """Nudge development and momentum of every affected stock (per market tick)."""
    settings = state.settings
    for event in state.events:
        if not event.is_alive:
            continue
        force = event.sentiment * event.strength
        for name in event.affected_entries:
            stock = state.stocks.get(name)
            if stock is None:
                continue
            stock.development = max(
                settings.development_floor,
                stock.development + force * settings.event_development_rate,
            )
            stock.momentum += force * settings.event_momentum_rate


def expire_events(state: MarketState) -> list[MarketEvent]:
    """
    Count one spin off every event's lifetime (spin completion).

    Returns:
        Events that expired.
    """
    expired = []
    for event in state.events:
        event.spins_remaining -= 1
        if event.spins_remaining <= 0:
            expired.append(event)
    if expired:
        state.events = [e for e in state.events if e.spins_remaining > 0]
        for event in expired:
            logger.info(f"Market event {event.event_id} expired: {event.headline}")
    return expired
