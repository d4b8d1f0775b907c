"""
Weighted outcome selector.

Draws a single winner per spin from the authoritative effective weights and
derives a landing angle for every observer. Private boosts are only visible
to their owner, so each observer may see a different segment layout; the
winner index is shared while the angle is placed inside that observer's own
view of the winning segment.

Spins are two-phase: the winner is predetermined at draw time, then mid-draw
boost items may shift the authoritative angle by a bounded offset. The
segment containing the shifted angle becomes the actual winner.
"""

import logging
import math
import random
import secrets
from typing import Iterable, Optional, Sequence

from .models import SpinOutcome, SpinTicket, WheelConfig
from .weights import WeightStore

logger = logging.getLogger(__name__)


TWO_PI = 2 * math.pi

# Fraction of a segment's arc kept clear on each side of a landing angle
SEGMENT_PADDING = 0.1

# Animation parameters (seconds / rotations)
MIN_DURATION = 9.0
DURATION_SPREAD = 3.0
MIN_ROTATIONS = 6
ROTATION_SPREAD = 5

# Radians added by one mid-draw boost item, before weight scaling
NUDGE_MIN = 0.3
NUDGE_MAX = 0.8


def pick_index(weights: Sequence[float], r: float) -> int:
    """
    Select an index from a weight vector with a uniform draw r in [0, 1).

    The first cumulative-normalized bucket exceeding r wins. If rounding
    leaves r above the final cumulative value, the last index is returned.
    """
    total = sum(weights)
    cumulative = 0.0
    for idx, weight in enumerate(weights):
        cumulative += weight / total
        if r < cumulative:
            return idx
    return len(weights) - 1


def segment_bounds(weights: Sequence[float], index: int) -> tuple[float, float]:
    """Start and end angle (radians) of a segment."""
    total = sum(weights)
    start = TWO_PI * sum(weights[:index]) / total
    end = start + TWO_PI * weights[index] / total
    return start, end


def segment_at(weights: Sequence[float], angle: float) -> int:
    """Index of the segment containing an angle."""
    return pick_index(weights, (angle % TWO_PI) / TWO_PI)


def angle_in_segment(weights: Sequence[float], index: int, u: float) -> float:
    """Angle inside a segment, kept SEGMENT_PADDING of the arc away from its edges."""
    start, end = segment_bounds(weights, index)
    arc = end - start
    pad = arc * SEGMENT_PADDING
    return start + pad + u * (arc - 2 * pad)


class OutcomeSelector:
    """
    Draws spin winners.

    Attributes:
        rng: Random source. Defaults to the OS entropy pool; tests inject a
            seeded random.Random.
    """

    def __init__(self, rng: Optional[random.Random] = None) -> None:
        self.rng = rng or secrets.SystemRandom()

    def draw(
        self,
        wheel: WheelConfig,
        store: WeightStore,
        observers: Iterable[str] = (),
        visited_chain: Sequence[str] = (),
        initiator: Optional[str] = None,
    ) -> SpinOutcome:
        """
        Draw a winner for a wheel.

        Hidden weights drift before the effective weights are computed.

        Raises:
            ValueError: If the wheel has fewer than 2 entries.
        """
        if len(wheel.entries) < 2:
            raise ValueError(f"Wheel {wheel.wheel_id} needs at least 2 entries to spin")

        store.drift(wheel.wheel_id, len(wheel.entries), self.rng)
        weights = store.effective_weights(wheel)
        total = sum(weights)

        r = self.rng.random()
        winner = pick_index(weights, r)
        target = angle_in_segment(weights, winner, self.rng.random())

        observer_angles = {}
        for observer in observers:
            view = store.effective_weights(wheel, observer)
            observer_angles[observer] = angle_in_segment(view, winner, self.rng.random())

        outcome = SpinOutcome(
            wheel_id=wheel.wheel_id,
            winner_index=winner,
            winner_name=wheel.entries[winner],
            weights=tuple(weights),
            total_weight=total,
            target_angle=target,
            observer_angles=observer_angles,
            duration=MIN_DURATION + self.rng.random() * DURATION_SPREAD,
            min_spins=MIN_ROTATIONS + int(self.rng.random() * ROTATION_SPREAD),
            visited_chain=tuple(visited_chain),
            initiator=initiator,
            entries=tuple(wheel.entries),
        )

        logger.debug(
            f"Drew {wheel.wheel_id}: r={r:.4f} winner={winner} ({outcome.winner_name}) "
            f"p={weights[winner] / total:.3f}"
        )
        return outcome

    def nudge(
        self,
        ticket: SpinTicket,
        wheel: WheelConfig,
        amount: Optional[float] = None,
        player: Optional[str] = None,
    ) -> float:
        """
        Accumulate an angular offset on an in-flight spin.

        The raw amount is divided by the wheel's average base weight so the
        nudge is proportional to segment size rather than absolute.

        Returns:
            The offset added (radians).
        """
        if amount is None:
            amount = NUDGE_MIN + self.rng.random() * (NUDGE_MAX - NUDGE_MIN)
        base = wheel.base_weights
        average = sum(base) / len(base) if base else 1.0
        offset = amount / average if average > 0 else amount
        ticket.angle_offset += offset
        ticket.nudges.append({"player": player, "amount": amount, "offset": offset})
        return offset

    def resolve(self, ticket: SpinTicket) -> int:
        """Final winner index after applying the accumulated offset."""
        outcome = ticket.outcome
        if ticket.angle_offset == 0:
            return outcome.winner_index
        shifted = (outcome.target_angle + ticket.angle_offset) % TWO_PI
        return segment_at(outcome.weights, shifted)
