"""
Game session: the authoritative facade over wheel and market state.

Owns one MarketState and drives the spin state machine:

    IDLE -> READY -> SPINNING -> RESOLVING -> COOLDOWN -> IDLE

- READY: betting is open; the first ready player starts a 30 s countdown,
  everyone ready cuts it to 5 s. Chained spins (sub-wheels, spin-again)
  skip this phase.
- SPINNING: the winner is predetermined; mid-draw boost items may shift it.
- RESOLVING: winner applied to weights, market, events, bets and funds.
- COOLDOWN: result is displayed; market ticks resume, chained spins launch
  when it ends.

Transitions happen either on explicit calls (request_spin, mark_ready,
resolve_spin) or on elapsed time via advance(), so ordering is explicit and
auditable. The transport, rendering and scheduling are left to collaborators.

Example:
    >>> session = GameSession(config={"wheels": {"main": {"entries": "A\\nB\\nC"}}})
    >>> session.join("alice")
    >>> outcome = session.request_spin("main", skip_ready_up=True)
    >>> result = session.resolve_spin("main")
    >>> print(result.winner_name, session.snapshot()["prices"])
"""

import logging
import math
import random
import secrets
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Union

from ..config import (
    ALL_READY_COUNTDOWN_SECONDS,
    CHAIN_COOLDOWN_SECONDS,
    COOLDOWN_SECONDS,
    READY_COUNTDOWN_SECONDS,
)
from ..market import engine, events, orders
from ..market.base import Order, OrderSide, OrderType, OrderUpdate, SpinMarketError
from ..market.models import MarketSettings, MarketState, PlayerAccount
from ..wheel.models import (
    ActiveConfiguration,
    EntryRef,
    SpinOutcome,
    SpinPhase,
    SpinTicket,
    WheelConfig,
)
from ..wheel.selector import OutcomeSelector
from .bets import BetBook, BetError, BetResult

logger = logging.getLogger(__name__)


# Each point spent on a boost adds this much weight
BOOST_WEIGHT_PER_POINT = 0.1

CHAIN_ACTIONS = ("subwheel", "__spin_again")


class SpinRejected(SpinMarketError):
    """Raised when a spin request or mid-spin action is not allowed."""

    pass


@dataclass
class NextAction:
    """Follow-up requested by the winning entry's trigger."""

    type: str
    wheel_id: Optional[str] = None
    target_wheel_id: Optional[str] = None
    visited_chain: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type}
        if self.wheel_id is not None:
            data["wheelId"] = self.wheel_id
        if self.target_wheel_id is not None:
            data["targetWheelId"] = self.target_wheel_id
            data["visitedChain"] = list(self.visited_chain)
        return data


@dataclass
class SpinResult:
    """What resolve_spin reports back to the collaborator."""

    wheel_id: str
    winner_name: str
    winner_index: int
    predetermined_index: int
    bet_results: list[BetResult] = field(default_factory=list)
    next_action: Optional[NextAction] = None

    @property
    def was_nudged(self) -> bool:
        return self.winner_index != self.predetermined_index

    def to_dict(self) -> dict[str, Any]:
        return {
            "wheelId": self.wheel_id,
            "winnerName": self.winner_name,
            "winnerIndex": self.winner_index,
            "betResults": [r.to_dict() for r in self.bet_results],
            "nextAction": self.next_action.to_dict() if self.next_action else None,
        }


@dataclass
class ReadyState:
    """Ready-up phase bookkeeping."""

    wheel_id: str
    visited_chain: tuple[str, ...] = ()
    initiator: Optional[str] = None
    ready_players: set[str] = field(default_factory=set)
    countdown_end: Optional[float] = None


class GameSession:
    """
    Authoritative simulation core of one party-game session.

    Attributes:
        state: The MarketState aggregate.
        selector: Outcome selector.
        bets: Open stakes for the upcoming spin.
        ticket: In-flight spin, if any.
        ready: Ready-phase bookkeeping, if any.
        last_result: Result of the most recent spin.
    """

    def __init__(
        self,
        config: Union[ActiveConfiguration, dict[str, Any], None] = None,
        settings: Optional[MarketSettings] = None,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], float]] = None,
        hidden_drift: Optional[float] = None,
    ) -> None:
        """
        Initialize the session.

        Args:
            config: Host configuration (parsed object or raw dict).
            settings: Market tuning (defaults from config module).
            rng: Random source shared by every subsystem (OS entropy by default).
            clock: Monotonic clock in seconds.
            hidden_drift: Override for hidden weight drift per draw (0 disables).
        """
        if not isinstance(config, ActiveConfiguration):
            config = ActiveConfiguration.from_dict(config)
        settings = settings or MarketSettings()
        settings.validate()

        self.state = MarketState(
            config=config,
            settings=settings,
            rng=rng or secrets.SystemRandom(),
            clock=clock or time.monotonic,
        )
        if hidden_drift is not None:
            self.state.weights.drift_amount = hidden_drift

        self.selector = OutcomeSelector(rng=self.state.rng)
        self.bets = BetBook()
        self.ticket: Optional[SpinTicket] = None
        self.ready: Optional[ReadyState] = None
        self.cooldown_until: Optional[float] = None
        self.pending_action: Optional[NextAction] = None
        self.last_result: Optional[SpinResult] = None

        engine.sync_stocks(self.state)

        wheel = config.active_wheel
        logger.info(
            f"GameSession initialized: active wheel={wheel.wheel_id if wheel else None}, "
            f"stocks={len(self.state.stocks)}"
        )

    @property
    def phase(self) -> SpinPhase:
        return self.state.phase

    # =========================================================================
    # Players
    # =========================================================================

    def join(self, name: str) -> PlayerAccount:
        """Restore or create a player's account and mark it connected."""
        account = self.state.players.get(name)
        if account is None:
            account = PlayerAccount(name=name, points=self.state.settings.starting_points)
            self.state.players[name] = account
            logger.info(f"New player {name} with {account.points:.0f} points")
        account.connected = True
        return account

    def leave(self, name: str) -> None:
        account = self.state.players.get(name)
        if account is not None:
            account.connected = False

    def connected_players(self) -> list[str]:
        return [p.name for p in self.state.players.values() if p.connected]

    # =========================================================================
    # Configuration
    # =========================================================================

    def apply_config(
        self,
        config: Union[ActiveConfiguration, dict[str, Any]],
        now: Optional[float] = None,
    ) -> list[str]:
        """
        Replace the active configuration.

        Per-index weight state is re-validated, the stock table follows the
        active wheel, and everything tied to removed entries is liquidated.

        Returns:
            Names of delisted stocks.
        """
        if not isinstance(config, ActiveConfiguration):
            config = ActiveConfiguration.from_dict(config)
        state = self.state
        previous = state.config

        for wheel_id, wheel in config.wheels.items():
            state.weights.revalidate(wheel, previous.wheels.get(wheel_id))
        for wheel_id in previous.wheels:
            if wheel_id not in config.wheels:
                state.weights.forget_wheel(wheel_id)

        state.config = config
        last_prices = {name: stock.price for name, stock in state.stocks.items()}
        removed = engine.sync_stocks(state)
        if removed:
            orders.liquidate_entries(state, {n: last_prices[n] for n in removed}, now)
            for event in state.events:
                event.affected_entries = [n for n in event.affected_entries if n in state.stocks]
            state.events = [e for e in state.events if e.affected_entries]

        bet_wheel = self._bet_wheel()
        self.bets.refund_unresolvable(bet_wheel.entries if bet_wheel else [], state.players)
        return removed

    # =========================================================================
    # Spin flow
    # =========================================================================

    def request_spin(
        self,
        wheel_id: Optional[str] = None,
        visited_chain: Optional[list[str]] = None,
        initiator: Optional[str] = None,
        skip_ready_up: bool = False,
        now: Optional[float] = None,
    ) -> Optional[SpinOutcome]:
        """
        Ask for a spin.

        Args:
            wheel_id: Wheel to spin (active wheel if None).
            visited_chain: Wheels already visited by a sub-wheel chain.
            initiator: Requesting player.
            skip_ready_up: Draw immediately (chains and spin-again).
            now: Clock override.

        Returns:
            The SpinOutcome when drawn immediately, None when the ready
            phase was opened instead.

        Raises:
            SpinRejected: already_spinning, already_in_ready_phase,
                wheel_not_found, not_enough_entries.
        """
        state = self.state
        if state.phase in (SpinPhase.SPINNING, SpinPhase.RESOLVING, SpinPhase.COOLDOWN):
            raise SpinRejected("already_spinning")

        wheel = state.config.get_wheel(wheel_id)
        if wheel is None:
            raise SpinRejected("wheel_not_found", f"Unknown wheel: {wheel_id}")
        if len(wheel.entries) < 2:
            raise SpinRejected("not_enough_entries", f"Wheel {wheel.wheel_id} needs 2+ entries")

        chain = tuple(visited_chain or ())
        now = state.now(now)

        if skip_ready_up:
            self.ready = None
            return self._start_spin(wheel, chain, initiator, now)

        if state.phase == SpinPhase.READY:
            raise SpinRejected("already_in_ready_phase")

        self.ready = ReadyState(wheel_id=wheel.wheel_id, visited_chain=chain, initiator=initiator)
        state.phase = SpinPhase.READY
        logger.info(f"Ready phase opened for {wheel.wheel_id} by {initiator or 'server'}")
        return None

    def mark_ready(self, player: str, now: Optional[float] = None) -> Optional[float]:
        """
        Record a ready player and adjust the countdown.

        Returns:
            The countdown deadline, or None outside the ready phase.
        """
        if self.state.phase != SpinPhase.READY or self.ready is None:
            return None
        now = self.state.now(now)
        ready = self.ready
        ready.ready_players.add(player)

        if ready.countdown_end is None:
            ready.countdown_end = now + READY_COUNTDOWN_SECONDS

        connected = self.connected_players()
        if connected and all(name in ready.ready_players for name in connected):
            if ready.countdown_end - now > ALL_READY_COUNTDOWN_SECONDS:
                ready.countdown_end = now + ALL_READY_COUNTDOWN_SECONDS

        logger.info(
            f"{player} ready ({len(ready.ready_players)}/{len(connected)}), "
            f"spin in {ready.countdown_end - now:.1f}s"
        )
        return ready.countdown_end

    def advance(self, now: Optional[float] = None) -> Optional[SpinOutcome]:
        """
        Advance time-driven transitions.

        Fires the spin when the ready countdown expires, ends the cooldown
        and launches a chained spin if the last winner requested one.

        Returns:
            A SpinOutcome if a spin started.
        """
        state = self.state
        now = state.now(now)

        if state.phase == SpinPhase.READY and self.ready is not None:
            ready = self.ready
            if ready.countdown_end is not None and now >= ready.countdown_end:
                wheel = state.config.get_wheel(ready.wheel_id)
                self.ready = None
                if wheel is None or len(wheel.entries) < 2:
                    state.phase = SpinPhase.IDLE
                    logger.warning(f"Ready phase dropped: wheel {ready.wheel_id} not spinnable")
                    return None
                return self._start_spin(wheel, ready.visited_chain, ready.initiator, now)
            return None

        if state.phase == SpinPhase.COOLDOWN and self.cooldown_until is not None:
            if now < self.cooldown_until:
                return None
            state.phase = SpinPhase.IDLE
            self.cooldown_until = None
            action, self.pending_action = self.pending_action, None
            if action is None:
                return None
            target = action.target_wheel_id if action.type == "subwheel" else action.wheel_id
            try:
                return self.request_spin(
                    target,
                    visited_chain=list(action.visited_chain),
                    skip_ready_up=True,
                    now=now,
                )
            except SpinRejected as e:
                logger.warning(f"Chained spin on {target} rejected: {e.reason}")
        return None

    def spin_due(self, now: Optional[float] = None) -> bool:
        """True once an in-flight spin's animation duration has elapsed."""
        if self.state.phase != SpinPhase.SPINNING or self.ticket is None:
            return False
        now = self.state.now(now)
        return now >= self.ticket.started_at + self.ticket.outcome.duration

    def nudge_spin(self, player: str, amount: Optional[float] = None) -> float:
        """
        Use a mid-draw boost item on the in-flight spin.

        Returns:
            The angular offset added (radians).

        Raises:
            SpinRejected: no_spin_in_progress, wheel_not_found.
        """
        if self.state.phase != SpinPhase.SPINNING or self.ticket is None:
            raise SpinRejected("no_spin_in_progress")
        wheel = self.state.config.get_wheel(self.ticket.outcome.wheel_id)
        if wheel is None:
            raise SpinRejected("wheel_not_found")
        offset = self.selector.nudge(self.ticket, wheel, amount, player=player)
        logger.info(f"{player} nudged the spin by {offset:.3f} rad")
        return offset

    def resolve_spin(
        self,
        wheel_id: Optional[str] = None,
        now: Optional[float] = None,
    ) -> Optional[SpinResult]:
        """
        Resolve the in-flight spin. Called exactly once per spin start.

        Returns:
            The SpinResult, or None if no spin is active (idempotent no-op).
        """
        state = self.state
        ticket = self.ticket
        if state.phase != SpinPhase.SPINNING or ticket is None:
            return None
        outcome = ticket.outcome
        if wheel_id is not None and wheel_id != outcome.wheel_id:
            logger.warning(f"Ignoring resolve for {wheel_id}: {outcome.wheel_id} is spinning")
            return None

        state.phase = SpinPhase.RESOLVING
        now = state.now(now)

        wheel = state.config.get_wheel(outcome.wheel_id)
        layout_intact = wheel is not None and tuple(wheel.entries) == outcome.entries

        winner_index = self.selector.resolve(ticket)
        if layout_intact:
            winner_name = wheel.entries[winner_index]
            state.weights.apply_fatigue(wheel.wheel_id, winner_index)
            engine.apply_spin_result(state, wheel, winner_index)
            entries = wheel.entries
        else:
            # Entries changed mid-spin: keep the predetermined result only
            winner_index, winner_name = outcome.winner_index, outcome.winner_name
            entries = list(outcome.entries) or [
                outcome.winner_name if i == winner_index else "" for i in range(len(outcome.weights))
            ]

        state.weights.decay_boosts()
        events.expire_events(state)

        bet_results = self.bets.resolve(entries, outcome.weights, winner_index, state.players)

        for account in state.players.values():
            if account.connected:
                account.points = round(account.points + state.settings.base_income, 2)

        winner_account = state.players.get(winner_name)
        if winner_account is not None:
            winner_account.stats["totalWins"] = winner_account.stats.get("totalWins", 0) + 1

        next_action = self._next_action(wheel, winner_name, outcome.visited_chain) if wheel else None

        chained = next_action is not None and next_action.type in CHAIN_ACTIONS
        self.pending_action = next_action if chained else None
        self.cooldown_until = now + (CHAIN_COOLDOWN_SECONDS if chained else COOLDOWN_SECONDS)
        self.ticket = None
        state.phase = SpinPhase.COOLDOWN

        result = SpinResult(
            wheel_id=outcome.wheel_id,
            winner_name=winner_name,
            winner_index=winner_index,
            predetermined_index=outcome.winner_index,
            bet_results=bet_results,
            next_action=next_action,
        )
        self.last_result = result
        logger.info(
            f"Spin resolved on {outcome.wheel_id}: {winner_name} (idx {winner_index})"
            + (f" [nudged from {outcome.winner_index}]" if result.was_nudged else "")
            + (f" -> {next_action.type}" if next_action else "")
        )
        return result

    # =========================================================================
    # Boosts and bets
    # =========================================================================

    def buy_boost(self, player: str, wheel_id: Optional[str], ref: EntryRef, amount: float) -> float:
        """
        Spend points to add weight to an entry. Each point adds 0.1 weight.

        Returns:
            The weight added.

        Raises:
            SpinMarketError: player_not_found, wheel_not_found,
                entry_not_found, insufficient_funds.
        """
        account = self.state.players.get(player)
        if account is None:
            raise SpinMarketError("player_not_found", f"Unknown player: {player}")
        wheel = self.state.config.get_wheel(wheel_id)
        if wheel is None:
            raise SpinMarketError("wheel_not_found", f"Unknown wheel: {wheel_id}")
        if ref.resolve(wheel.entries) is None:
            raise SpinMarketError("entry_not_found", f"{ref} is not on {wheel.wheel_id}")

        cost = max(0, min(math.floor(amount), math.floor(account.points)))
        if cost <= 0:
            raise SpinMarketError("insufficient_funds", "Not enough funds to boost")

        account.points = round(account.points - cost, 2)
        added = cost * BOOST_WEIGHT_PER_POINT
        self.state.weights.add_boost(player, wheel.wheel_id, ref, added)
        logger.info(f"{player} boosted {ref.label(wheel.entries)} by +{added:.1f} weight for {cost}")
        return added

    def place_bet(self, player: str, ref: EntryRef, amount: float) -> int:
        """
        Change a player's stake on an entry of the wheel about to spin.

        Raises:
            BetError: spin_in_progress, player_not_found, entry_not_found,
                insufficient_funds.
        """
        if self.state.phase in (SpinPhase.SPINNING, SpinPhase.RESOLVING):
            raise BetError("spin_in_progress", "Cannot bet during spin")
        account = self.state.players.get(player)
        if account is None:
            raise BetError("player_not_found", f"Unknown player: {player}")
        wheel = self._bet_wheel()
        if wheel is None or ref.resolve(wheel.entries) is None:
            raise BetError("entry_not_found", f"{ref} is not on the wheel")
        return self.bets.place(account, ref, amount)

    # =========================================================================
    # Market operations
    # =========================================================================

    def place_order(
        self,
        player: str,
        entry: str,
        shares: Any,
        side: Union[OrderSide, str],
        order_type: Union[OrderType, str] = OrderType.MARKET,
        limit_price: Optional[float] = None,
        now: Optional[float] = None,
    ) -> Order:
        return orders.place_order(
            self.state, player, entry, shares, side, order_type, limit_price, now
        )

    def cancel_order(self, order_id: str, player: str, now: Optional[float] = None) -> Order:
        return orders.cancel_order(self.state, order_id, player, now)

    def tick_market(self) -> bool:
        return engine.tick_market(self.state)

    def tick_orders(self, now: Optional[float] = None) -> bool:
        return orders.tick_orders(self.state, now)

    def tick_events(self) -> bool:
        return events.tick_events(self.state)

    # =========================================================================
    # Observability
    # =========================================================================

    def snapshot(self) -> dict[str, Any]:
        """Delta payload for observers: prices, portfolios, cost bases, events, open bets."""
        state = self.state
        bet_wheel = self._bet_wheel()
        return {
            "prices": {name: stock.price for name, stock in state.stocks.items()},
            "stocks": {
                name: {
                    "price": stock.price,
                    "prevPrice": stock.prev_price,
                    "realValue": stock.real_value,
                    "history": list(stock.history),
                    "liquidity": state.liquidity[name].to_dict() if name in state.liquidity else None,
                }
                for name, stock in state.stocks.items()
            },
            "portfolios": {
                name: dict(account.portfolio) for name, account in state.players.items()
            },
            "costBases": {
                name: {entry: basis.to_dict() for entry, basis in account.cost_basis.items()}
                for name, account in state.players.items()
            },
            "activeEvents": [event.to_dict() for event in state.events],
            "bets": self.bets.to_list(bet_wheel.entries if bet_wheel else []),
            "phase": state.phase.value,
        }

    def drain_order_updates(self) -> list[OrderUpdate]:
        """Pending per-player order notifications, oldest first."""
        updates, self.state.order_updates = self.state.order_updates, []
        return updates

    # =========================================================================
    # Private helpers
    # =========================================================================

    def _start_spin(
        self,
        wheel: WheelConfig,
        visited_chain: tuple[str, ...],
        initiator: Optional[str],
        now: float,
    ) -> SpinOutcome:
        state = self.state
        outcome = self.selector.draw(
            wheel,
            state.weights,
            observers=self.connected_players(),
            visited_chain=visited_chain,
            initiator=initiator,
        )
        self.ticket = SpinTicket(outcome=outcome, started_at=now)
        state.phase = SpinPhase.SPINNING

        account = state.players.get(initiator) if initiator else None
        if account is not None:
            account.stats["totalSpins"] = account.stats.get("totalSpins", 0) + 1

        logger.info(
            f"Spin started on {wheel.wheel_id} by {initiator or 'server'}: "
            f"target {math.degrees(outcome.target_angle):.1f} deg, "
            f"{outcome.duration:.1f}s"
        )
        return outcome

    def _bet_wheel(self) -> Optional[WheelConfig]:
        if self.ready is not None:
            return self.state.config.get_wheel(self.ready.wheel_id)
        return self.state.active_wheel

    def _next_action(
        self,
        wheel: WheelConfig,
        winner_name: str,
        visited_chain: tuple[str, ...],
    ) -> Optional[NextAction]:
        trigger = wheel.trigger_for(winner_name)
        if not trigger:
            return None
        if trigger in ("__add_entry", "__remove_entry"):
            return NextAction(type=trigger, wheel_id=wheel.wheel_id)
        if trigger == "__spin_again":
            active = self.state.active_wheel
            return NextAction(type=trigger, wheel_id=active.wheel_id if active else wheel.wheel_id)
        if trigger in self.state.config.wheels and trigger not in visited_chain:
            return NextAction(
                type="subwheel",
                target_wheel_id=trigger,
                visited_chain=tuple(visited_chain) + (wheel.wheel_id,),
            )
        return None
