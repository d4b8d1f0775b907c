"""
Bets placed during the ready phase.

Stakes are taken from a player's funds when placed and refunded when
lowered. At resolution a winning stake pays floor(odds * stake), where the
odds come from the spin's effective weight vector (total / weight of the
bet entry, at least 1x). Boosting an entry therefore lowers its payout and
cannot be combined with a bet for free money.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from ..market.base import SpinMarketError
from ..market.models import PlayerAccount
from ..wheel.models import ByIndex, EntryRef

logger = logging.getLogger(__name__)


class BetError(SpinMarketError):
    """Raised when a bet cannot be placed."""

    pass


@dataclass
class BetResult:
    """Outcome of one stake."""

    player: str
    entry: str
    entry_index: Optional[int]
    amount: int
    won: bool
    payout: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.player,
            "entry": self.entry,
            "entryIndex": self.entry_index,
            "amount": self.amount,
            "won": self.won,
            "payout": self.payout,
        }


class BetBook:
    """
    Open stakes per player for the upcoming spin.

    Attributes:
        bets: player -> {EntryRef: stake}.
    """

    def __init__(self) -> None:
        self.bets: dict[str, dict[EntryRef, int]] = {}

    def __len__(self) -> int:
        return sum(len(stakes) for stakes in self.bets.values())

    def stake(self, player: str, ref: EntryRef) -> int:
        return self.bets.get(player, {}).get(ref, 0)

    def place(self, account: PlayerAccount, ref: EntryRef, amount: float) -> int:
        """
        Change a player's stake on an entry by amount (negative refunds).

        Increases beyond the player's funds are capped to what they can afford.

        Returns:
            The new stake.

        Raises:
            BetError: insufficient_funds if nothing can be staked.
        """
        delta = math.floor(amount)
        current = self.stake(account.name, ref)
        if delta == 0:
            return current

        new_stake = max(0, current + delta)
        actual = new_stake - current
        if actual > account.points:
            affordable = max(0, math.floor(account.points))
            if affordable <= 0:
                raise BetError("insufficient_funds", "Not enough funds to bet")
            actual = affordable
            new_stake = current + affordable

        account.points = round(account.points - actual, 2)

        stakes = self.bets.setdefault(account.name, {})
        if new_stake == 0:
            stakes.pop(ref, None)
        else:
            stakes[ref] = new_stake
        if not stakes:
            del self.bets[account.name]

        logger.info(f"Bet: {account.name} stake on {ref} now {new_stake} ({actual:+d})")
        return new_stake

    def to_list(self, entries: Sequence[str]) -> list[dict[str, Any]]:
        """Every open stake, with index references resolved to names."""
        listing = []
        for player, stakes in self.bets.items():
            for ref, amount in stakes.items():
                listing.append(
                    {
                        "playerName": player,
                        "entry": ref.label(list(entries)),
                        "entryIndex": ref.index if isinstance(ref, ByIndex) else None,
                        "amount": amount,
                    }
                )
        return listing

    def refund_unresolvable(self, entries: Sequence[str], accounts: dict[str, PlayerAccount]) -> int:
        """Refund stakes whose entry no longer exists on the wheel."""
        entries = list(entries)
        refunded = 0
        for player in list(self.bets):
            stakes = self.bets[player]
            for ref in [r for r in stakes if r.resolve(entries) is None]:
                amount = stakes.pop(ref)
                account = accounts.get(player)
                if account is not None:
                    account.points = round(account.points + amount, 2)
                refunded += amount
                logger.info(f"Bet: refunded {amount} to {player}, {ref} left the wheel")
            if not stakes:
                del self.bets[player]
        return refunded

    def resolve(
        self,
        entries: Sequence[str],
        weights: Sequence[float],
        winner_index: int,
        accounts: dict[str, PlayerAccount],
    ) -> list[BetResult]:
        """
        Settle every stake against the winner and clear the book.

        Index bets win by index, name bets by name.
        """
        entries = list(entries)
        total = sum(weights)
        winner_name = entries[winner_index] if 0 <= winner_index < len(entries) else ""
        results = []

        for player, stakes in self.bets.items():
            account = accounts.get(player)
            if account is None:
                continue
            for ref, amount in stakes.items():
                idx = ref.resolve(entries)
                weight = weights[idx] if idx is not None else 1.0
                odds = max(1.0, total / weight) if weight > 0 else 1.0

                if isinstance(ref, ByIndex):
                    won = ref.index == winner_index
                else:
                    won = ref.name == winner_name

                payout = math.floor(odds * amount) if won else 0
                account.points = round(account.points + payout, 2)
                results.append(
                    BetResult(
                        player=player,
                        entry=ref.label(entries),
                        entry_index=ref.index if isinstance(ref, ByIndex) else None,
                        amount=amount,
                        won=won,
                        payout=payout,
                    )
                )
                if won:
                    logger.info(f"Bet: {player} WON {payout} ({amount} on {ref.label(entries)} at {odds:.2f}x)")
                else:
                    logger.info(f"Bet: {player} LOST {amount} on {ref.label(entries)}")

        self.bets.clear()
        return results
