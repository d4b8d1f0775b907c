"""
Weight modifier store.

Holds the three independent modifiers layered on top of a wheel's base
config weights:

- hidden: per-entry random drift in [0.5, 2.0], nudged on every draw
- fatigue: floored for the entry that just won, recovering each spin
- boosts: per-player additive weight bought before a spin, decaying after it

Effective weight = max(0.01, hidden * (base + sum(boosts)) * fatigue)
"""

import logging
import random
from dataclasses import dataclass, field
from typing import Optional, Union

from .models import ByIndex, ByName, EntryRef, WheelConfig

logger = logging.getLogger(__name__)


HIDDEN_MIN = 0.5
HIDDEN_MAX = 2.0
HIDDEN_DRIFT = 0.15

FATIGUE_FLOOR = 0.3
FATIGUE_RECOVERY = 0.12

BOOST_DECAY = 0.7
BOOST_EPSILON = 0.01

MIN_EFFECTIVE_WEIGHT = 0.01


class _AllObservers:
    """Sentinel: include every player's boosts (authoritative view)."""

    def __repr__(self) -> str:
        return "ALL"


ALL = _AllObservers()

Observer = Union[_AllObservers, str, None]
BoostKey = tuple[str, str, EntryRef]


@dataclass
class WeightStore:
    """
    Per-wheel weight modifier state.

    Attributes:
        hidden: wheel_id -> {index: hidden multiplier}; absent = 1.0.
        fatigue: wheel_id -> {index: fatigue multiplier}; absent = 1.0.
        boosts: (player, wheel_id, EntryRef) -> additive weight.
        drift_amount: Maximum hidden drift per draw (0 disables drift).
    """

    hidden: dict[str, dict[int, float]] = field(default_factory=dict)
    fatigue: dict[str, dict[int, float]] = field(default_factory=dict)
    boosts: dict[BoostKey, float] = field(default_factory=dict)
    drift_amount: float = HIDDEN_DRIFT

    # =========================================================================
    # Hidden drift
    # =========================================================================

    def drift(self, wheel_id: str, count: int, rng: random.Random) -> None:
        """Drift every entry's hidden weight by up to +/- drift_amount, clamped."""
        if self.drift_amount <= 0:
            return
        table = self.hidden.setdefault(wheel_id, {})
        for idx in range(count):
            value = table.get(idx, 1.0) + rng.uniform(-self.drift_amount, self.drift_amount)
            table[idx] = min(HIDDEN_MAX, max(HIDDEN_MIN, value))

    def hidden_of(self, wheel_id: str, index: int) -> float:
        return self.hidden.get(wheel_id, {}).get(index, 1.0)

    # =========================================================================
    # Fatigue
    # =========================================================================

    def apply_fatigue(self, wheel_id: str, winner_index: int) -> None:
        """
        Floor the winner's fatigue and let every other entry recover.

        Recovered entries are dropped once they reach 1.0 (implicit no-op).
        """
        table = self.fatigue.setdefault(wheel_id, {})
        for idx in list(table):
            if idx == winner_index:
                continue
            recovered = round(table[idx] + FATIGUE_RECOVERY, 6)
            if recovered >= 1.0:
                del table[idx]
            else:
                table[idx] = recovered
        table[winner_index] = FATIGUE_FLOOR

    def fatigue_of(self, wheel_id: str, index: int) -> float:
        return self.fatigue.get(wheel_id, {}).get(index, 1.0)

    # =========================================================================
    # Boosts
    # =========================================================================

    def add_boost(self, player: str, wheel_id: str, ref: EntryRef, amount: float) -> float:
        """Add boost weight for a player; returns the player's new total for that key."""
        key = (player, wheel_id, ref)
        self.boosts[key] = self.boosts.get(key, 0.0) + amount
        return self.boosts[key]

    def decay_boosts(self) -> None:
        """Multiply every boost by the decay factor, dropping negligible ones."""
        for key in list(self.boosts):
            value = self.boosts[key] * BOOST_DECAY
            if value < BOOST_EPSILON:
                del self.boosts[key]
            else:
                self.boosts[key] = value

    def boost_sum(
        self,
        wheel_id: str,
        index: int,
        name: str,
        observer: Observer = ALL,
    ) -> float:
        total = 0.0
        for (player, wid, ref), value in self.boosts.items():
            if wid != wheel_id:
                continue
            if observer is not ALL and player != observer:
                continue
            if ref == ByIndex(index) or ref == ByName(name):
                total += value
        return total

    # =========================================================================
    # Effective weights
    # =========================================================================

    def effective_weights(self, wheel: WheelConfig, observer: Observer = ALL) -> list[float]:
        """
        Compute the effective weight vector for a wheel.

        Args:
            wheel: Wheel configuration.
            observer: ALL for the authoritative view, a player name for that
                player's private view, or None for the public view.
        """
        weights = []
        for idx, name in enumerate(wheel.entries):
            base = wheel.base_weight(name)
            boosts = 0.0 if observer is None else self.boost_sum(
                wheel.wheel_id, idx, name, observer
            )
            weight = (
                self.hidden_of(wheel.wheel_id, idx)
                * (base + boosts)
                * self.fatigue_of(wheel.wheel_id, idx)
            )
            weights.append(max(MIN_EFFECTIVE_WEIGHT, weight))
        return weights

    # =========================================================================
    # Configuration changes
    # =========================================================================

    def revalidate(self, wheel: WheelConfig, previous: Optional[WheelConfig]) -> None:
        """
        Re-validate per-index state after a configuration change.

        If the entry list changed, the wheel's hidden/fatigue state and its
        index-keyed boosts are dropped since indices no longer map to the
        same labels. Name-keyed boosts survive when the name still exists.
        """
        wheel_id = wheel.wheel_id
        changed = previous is None or previous.entries != wheel.entries
        if changed:
            self.hidden.pop(wheel_id, None)
            self.fatigue.pop(wheel_id, None)

        names = set(wheel.entries)
        for key in list(self.boosts):
            _, wid, ref = key
            if wid != wheel_id:
                continue
            if isinstance(ref, ByIndex) and (changed or ref.resolve(wheel.entries) is None):
                del self.boosts[key]
            elif isinstance(ref, ByName) and ref.name not in names:
                del self.boosts[key]

        if changed and previous is not None:
            logger.info(f"Wheel {wheel_id} entries changed; per-index weight state reset")

    def forget_wheel(self, wheel_id: str) -> None:
        self.hidden.pop(wheel_id, None)
        self.fatigue.pop(wheel_id, None)
        for key in [k for k in self.boosts if k[1] == wheel_id]:
            del self.boosts[key]
