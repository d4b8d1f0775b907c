"""
Tests for the GameSession facade and spin state machine.

Tests cover:
- Spin request rejections and the ready-up phase
- Resolution (idempotent, income, stats, market feedback)
- Bets and boosts
- Mid-draw nudges
- Triggers: sub-wheel chains, spin again, add/remove entry
- Configuration changes
- Snapshots and order notifications
"""

import math
import random

import pytest

from spinmarket.market import OrderStatus, SpinMarketError
from spinmarket.session import BetError, GameSession, SpinRejected
from spinmarket.wheel import ByIndex, ByName, SpinPhase


class FixedRandom(random.Random):
    """random() always returns the same value; the winner is always index 0 at 0.0."""

    def __init__(self, value: float = 0.0) -> None:
        super().__init__(0)
        self.value = value

    def random(self) -> float:
        return self.value


CONFIG = {
    "activeWheelId": "main",
    "wheels": {
        "main": {"entries": "A\nB\nC\nD"},
        "bonus": {"entries": ["X", "Y"]},
        "solo": {"entries": ["Only"]},
    },
}


def make_session(config=None, value=0.0) -> GameSession:
    session = GameSession(
        config=config or CONFIG,
        rng=FixedRandom(value),
        clock=lambda: 0.0,
        hidden_drift=0.0,
    )
    session.join("alice")
    return session


@pytest.fixture
def session():
    return make_session()


class TestSpinRequests:
    """Tests for request_spin and its rejections."""

    def test_ready_phase_opened(self, session):
        assert session.request_spin("main", initiator="alice") is None
        assert session.phase == SpinPhase.READY

        with pytest.raises(SpinRejected) as exc:
            session.request_spin("main")
        assert exc.value.reason == "already_in_ready_phase"

    def test_skip_ready_up_draws_immediately(self, session):
        outcome = session.request_spin("main", initiator="alice", skip_ready_up=True)
        assert outcome.winner_index == 0
        assert outcome.winner_name == "A"
        assert session.phase == SpinPhase.SPINNING
        assert session.state.players["alice"].stats["totalSpins"] == 1

    def test_already_spinning(self, session):
        session.request_spin("main", skip_ready_up=True)
        with pytest.raises(SpinRejected) as exc:
            session.request_spin("main", skip_ready_up=True)
        assert exc.value.reason == "already_spinning"

    def test_cooldown_counts_as_spinning(self, session):
        session.request_spin("main", skip_ready_up=True)
        session.resolve_spin("main", now=10.0)
        with pytest.raises(SpinRejected) as exc:
            session.request_spin("main")
        assert exc.value.reason == "already_spinning"

    def test_unknown_wheel(self, session):
        with pytest.raises(SpinRejected) as exc:
            session.request_spin("nope")
        assert exc.value.reason == "wheel_not_found"

    def test_not_enough_entries(self, session):
        with pytest.raises(SpinRejected) as exc:
            session.request_spin("solo", skip_ready_up=True)
        assert exc.value.reason == "not_enough_entries"

    def test_defaults_to_active_wheel(self, session):
        outcome = session.request_spin(skip_ready_up=True)
        assert outcome.wheel_id == "main"

    def test_observer_angles_for_connected_players(self, session):
        session.join("bob")
        session.leave("bob")
        outcome = session.request_spin(skip_ready_up=True)
        assert list(outcome.observer_angles) == ["alice"]


class TestReadyUp:
    """Tests for the ready countdown."""

    def test_countdown_and_all_ready(self, session):
        session.join("bob")
        session.request_spin("main", initiator="alice")

        assert session.mark_ready("alice", now=0.0) == 30.0
        assert session.mark_ready("bob", now=1.0) == 6.0

        assert session.advance(now=5.9) is None
        outcome = session.advance(now=6.0)
        assert outcome is not None
        assert outcome.initiator == "alice"
        assert session.phase == SpinPhase.SPINNING

    def test_countdown_not_extended(self, session):
        session.join("bob")
        session.request_spin("main")
        session.mark_ready("alice", now=0.0)
        assert session.mark_ready("bob", now=27.0) == 30.0

    def test_mark_ready_outside_phase(self, session):
        assert session.mark_ready("alice") is None


class TestResolution:
    """Tests for resolve_spin."""

    def test_resolve_and_idempotent(self, session):
        session.request_spin("main", skip_ready_up=True)
        result = session.resolve_spin("main", now=10.0)

        assert result.winner_name == "A"
        assert result.winner_index == 0
        assert not result.was_nudged
        assert session.phase == SpinPhase.COOLDOWN
        assert session.resolve_spin("main", now=10.0) is None

    def test_resolve_without_spin(self, session):
        assert session.resolve_spin() is None

    def test_resolve_other_wheel_ignored(self, session):
        session.request_spin("main", skip_ready_up=True)
        assert session.resolve_spin("bonus") is None
        assert session.phase == SpinPhase.SPINNING

    def test_cooldown_returns_to_idle(self, session):
        session.request_spin("main", skip_ready_up=True)
        session.resolve_spin(now=10.0)

        assert session.advance(now=12.9) is None
        assert session.phase == SpinPhase.COOLDOWN
        assert session.advance(now=13.0) is None
        assert session.phase == SpinPhase.IDLE

    def test_fatigue_applied_to_winner(self, session):
        session.request_spin("main", skip_ready_up=True)
        session.resolve_spin()
        assert session.state.weights.fatigue_of("main", 0) == pytest.approx(0.3)

    def test_income_paid_to_connected(self, session):
        session.join("bob")
        session.leave("bob")
        session.request_spin("main", skip_ready_up=True)
        session.resolve_spin()

        assert session.state.players["alice"].points == pytest.approx(1015.0)
        assert session.state.players["bob"].points == pytest.approx(1000.0)

    def test_player_named_after_winner_gets_win(self):
        session = make_session({"wheels": {"main": {"entries": ["alice", "bob"]}}})
        session.join("bob")
        session.request_spin(skip_ready_up=True)
        session.resolve_spin()
        assert session.state.players["alice"].stats["totalWins"] == 1
        assert session.state.players["bob"].stats["totalWins"] == 0

    def test_market_feedback(self, session):
        session.request_spin("main", skip_ready_up=True)
        session.resolve_spin()
        stocks = session.state.stocks
        assert stocks["A"].development == pytest.approx(1.05)
        assert stocks["C"].development == pytest.approx(0.98)

    def test_non_active_wheel_leaves_market(self, session):
        session.request_spin("bonus", skip_ready_up=True)
        session.resolve_spin()
        assert all(s.development == 1.0 for s in session.state.stocks.values())

    def test_market_paused_during_spin(self, session):
        session.request_spin("main", skip_ready_up=True)
        assert session.tick_market() is False
        session.resolve_spin()
        assert session.tick_market() is True

    def test_events_expire_on_resolution(self, session):
        session.state.settings.world_event_chance = 0.0
        session.tick_events()
        event = session.state.events[0]
        lifetime = event.spins_remaining

        session.request_spin("main", skip_ready_up=True)
        session.resolve_spin()
        if lifetime > 1:
            assert session.state.events[0].spins_remaining == lifetime - 1
        else:
            assert not session.state.events

    def test_spin_due(self, session):
        outcome = session.request_spin("main", skip_ready_up=True, now=0.0)
        assert not session.spin_due(now=outcome.duration - 0.1)
        assert session.spin_due(now=outcome.duration)


class TestBets:
    """Tests for betting on the upcoming spin."""

    def test_winning_bet_pays_odds(self, session):
        session.request_spin("main")
        assert session.place_bet("alice", ByName("A"), 100) == 100
        assert session.state.players["alice"].points == pytest.approx(900.0)

        session.mark_ready("alice", now=0.0)
        session.advance(now=5.0)
        result = session.resolve_spin()

        bet = result.bet_results[0]
        assert bet.won and bet.payout == 400  # 4 equal segments -> 4x
        assert session.state.players["alice"].points == pytest.approx(900 + 400 + 15)
        assert len(session.bets) == 0

    def test_losing_bet(self, session):
        session.place_bet("alice", ByIndex(1), 50)
        session.request_spin("main", skip_ready_up=True)
        result = session.resolve_spin()

        assert result.bet_results[0].won is False
        assert result.bet_results[0].payout == 0
        assert session.state.players["alice"].points == pytest.approx(950 + 15)

    def test_stake_lowered_refunds(self, session):
        session.place_bet("alice", ByName("B"), 100)
        assert session.place_bet("alice", ByName("B"), -40) == 60
        assert session.state.players["alice"].points == pytest.approx(940.0)

    def test_stake_capped_to_funds(self, session):
        assert session.place_bet("alice", ByName("B"), 5000) == 1000
        with pytest.raises(BetError) as exc:
            session.place_bet("alice", ByName("C"), 10)
        assert exc.value.reason == "insufficient_funds"

    def test_no_bets_during_spin(self, session):
        session.request_spin("main", skip_ready_up=True)
        with pytest.raises(BetError) as exc:
            session.place_bet("alice", ByName("A"), 10)
        assert exc.value.reason == "spin_in_progress"

    def test_unknown_entry(self, session):
        with pytest.raises(BetError) as exc:
            session.place_bet("alice", ByName("Z"), 10)
        assert exc.value.reason == "entry_not_found"


class TestBoosts:
    """Tests for buying boosts."""

    def test_boost_costs_points_and_adds_weight(self, session):
        added = session.buy_boost("alice", "main", ByName("B"), 50.7)
        assert added == pytest.approx(5.0)
        assert session.state.players["alice"].points == pytest.approx(950.0)

        weights = session.state.weights.effective_weights(session.state.active_wheel)
        assert weights[1] == pytest.approx(6.0)

    def test_boost_decays_after_spin(self, session):
        session.buy_boost("alice", "main", ByName("B"), 10)
        session.request_spin("main", skip_ready_up=True)
        session.resolve_spin()
        (value,) = session.state.weights.boosts.values()
        assert value == pytest.approx(0.7)

    def test_boost_rejections(self, session):
        with pytest.raises(SpinMarketError) as exc:
            session.buy_boost("mallory", "main", ByName("A"), 10)
        assert exc.value.reason == "player_not_found"

        with pytest.raises(SpinMarketError) as exc:
            session.buy_boost("alice", "main", ByName("Z"), 10)
        assert exc.value.reason == "entry_not_found"

        session.state.players["alice"].points = 0.5
        with pytest.raises(SpinMarketError) as exc:
            session.buy_boost("alice", "main", ByName("A"), 10)
        assert exc.value.reason == "insufficient_funds"


class TestNudge:
    """Tests for mid-draw nudges."""

    def test_nudge_changes_winner(self, session):
        session.request_spin("main", skip_ready_up=True)
        session.nudge_spin("alice", amount=math.pi / 2)
        result = session.resolve_spin()

        assert result.predetermined_index == 0
        assert result.winner_index == 1
        assert result.winner_name == "B"
        assert result.was_nudged

    def test_nudge_requires_spin(self, session):
        with pytest.raises(SpinRejected) as exc:
            session.nudge_spin("alice")
        assert exc.value.reason == "no_spin_in_progress"


class TestTriggers:
    """Tests for winner triggers."""

    def test_subwheel_chain(self):
        session = make_session(
            {
                "activeWheelId": "main",
                "wheels": {
                    "main": {"entries": ["A", "B"], "triggers": {"A": "bonus"}},
                    "bonus": {"entries": ["X", "Y"], "triggers": {"X": "main"}},
                },
            }
        )
        session.request_spin("main", skip_ready_up=True)
        result = session.resolve_spin(now=10.0)

        assert result.next_action.type == "subwheel"
        assert result.next_action.target_wheel_id == "bonus"
        assert session.cooldown_until == pytest.approx(12.0)

        outcome = session.advance(now=12.0)
        assert outcome.wheel_id == "bonus"
        assert outcome.visited_chain == ("main",)

        # X points back at main, which was already visited
        result = session.resolve_spin(now=20.0)
        assert result.winner_name == "X"
        assert result.next_action is None

    def test_spin_again(self):
        session = make_session(
            {"wheels": {"main": {"entries": ["A", "B"], "triggers": {"A": "__spin_again"}}}}
        )
        session.request_spin(skip_ready_up=True)
        result = session.resolve_spin(now=0.0)
        assert result.next_action.type == "__spin_again"

        outcome = session.advance(now=2.0)
        assert outcome is not None
        assert session.phase == SpinPhase.SPINNING

    def test_add_entry_reported_without_chain(self):
        session = make_session(
            {"wheels": {"main": {"entries": ["A", "B"], "defaultTrigger": "__add_entry"}}}
        )
        session.request_spin(skip_ready_up=True)
        result = session.resolve_spin(now=0.0)

        assert result.next_action.to_dict() == {"type": "__add_entry", "wheelId": "main"}
        assert session.pending_action is None
        assert session.cooldown_until == pytest.approx(3.0)

    def test_none_overrides_default(self):
        session = make_session(
            {
                "wheels": {
                    "main": {
                        "entries": ["A", "B"],
                        "defaultTrigger": "__spin_again",
                        "triggers": {"A": "__none"},
                    }
                }
            }
        )
        session.request_spin(skip_ready_up=True)
        assert session.resolve_spin().next_action is None


class TestConfiguration:
    """Tests for configuration changes."""

    def test_removed_entry_liquidated(self, session):
        alice = session.state.players["alice"]
        alice.portfolio["D"] = 2
        price = session.state.stocks["D"].price

        removed = session.apply_config(
            {"activeWheelId": "main", "wheels": {"main": {"entries": "A\nB\nC"}}}
        )

        assert removed == ["D"]
        assert "D" not in session.state.stocks
        assert "D" not in alice.portfolio
        assert alice.points == pytest.approx(1000 + 2 * price)

    def test_open_orders_cancelled(self, session):
        order = session.place_order("alice", "D", 1, "buy")
        session.apply_config({"wheels": {"main": {"entries": "A\nB"}}})
        assert order.status == OrderStatus.CANCELLED
        assert order.cancel_reason == "stock_not_found"

    def test_unresolvable_bets_refunded(self, session):
        session.place_bet("alice", ByIndex(3), 100)
        session.place_bet("alice", ByName("A"), 50)
        session.apply_config({"wheels": {"main": {"entries": "A\nB\nC"}}})

        assert session.bets.stake("alice", ByIndex(3)) == 0
        assert session.bets.stake("alice", ByName("A")) == 50
        assert session.state.players["alice"].points == pytest.approx(950.0)

    def test_new_entry_listed(self, session):
        session.apply_config({"wheels": {"main": {"entries": "A\nB\nC\nD\nE"}}})
        assert "E" in session.state.stocks

    def test_same_length_rename_mid_spin_keeps_drawn_winner(self, session):
        session.request_spin("main", skip_ready_up=True)
        session.apply_config(
            {"activeWheelId": "main", "wheels": {"main": {"entries": "W\nX\nY\nZ"}}}
        )

        result = session.resolve_spin()

        assert result.winner_name == "A"
        assert result.winner_index == 0
        assert set(session.state.stocks) == {"W", "X", "Y", "Z"}
        assert all(s.development == 1.0 for s in session.state.stocks.values())
        assert all(s.momentum == 0.0 for s in session.state.stocks.values())
        assert session.state.weights.fatigue_of("main", 0) == 1.0

    def test_resized_wheel_mid_spin_keeps_drawn_winner(self, session):
        session.place_bet("alice", ByName("A"), 100)
        session.request_spin("main", skip_ready_up=True)
        session.apply_config(
            {"activeWheelId": "main", "wheels": {"main": {"entries": "B\nA\nC"}}}
        )

        result = session.resolve_spin()

        assert result.winner_name == "A"
        assert "D" not in session.state.stocks
        assert all(s.development == 1.0 for s in session.state.stocks.values())
        assert session.state.weights.fatigue_of("main", 0) == 1.0
        # Settled against the wheel as drawn: A at index 0 of 4 equal segments
        assert result.bet_results[0].won and result.bet_results[0].payout == 400
        assert session.state.players["alice"].points == pytest.approx(900 + 400 + 15)

    def test_unchanged_entries_mid_spin_resolve_normally(self, session):
        session.request_spin("main", skip_ready_up=True)
        session.apply_config(
            {
                "activeWheelId": "main",
                "wheels": {"main": {"entries": "A\nB\nC\nD"}, "bonus": {"entries": ["X"]}},
            }
        )

        session.resolve_spin()

        assert session.state.stocks["A"].development == pytest.approx(1.05)
        assert session.state.weights.fatigue_of("main", 0) == pytest.approx(0.3)


class TestObservability:
    """Tests for snapshots and notifications."""

    def test_snapshot(self, session):
        snapshot = session.snapshot()
        assert set(snapshot["prices"]) == {"A", "B", "C", "D"}
        assert snapshot["portfolios"] == {"alice": {}}
        assert snapshot["costBases"] == {"alice": {}}
        assert snapshot["activeEvents"] == []
        assert snapshot["bets"] == []
        assert snapshot["phase"] == "idle"

    def test_snapshot_lists_open_bets(self, session):
        session.place_bet("alice", ByIndex(1), 30)
        bets = session.snapshot()["bets"]
        assert bets == [{"playerName": "alice", "entry": "B", "entryIndex": 1, "amount": 30}]

    def test_drain_order_updates(self, session):
        session.place_order("alice", "A", 1, "buy")
        updates = session.drain_order_updates()
        assert [u.player for u in updates] == ["alice"]
        assert session.drain_order_updates() == []

    def test_rejoin_restores_account(self, session):
        session.state.players["alice"].points = 42.0
        session.leave("alice")
        account = session.join("alice")
        assert account.points == 42.0
        assert account.connected
