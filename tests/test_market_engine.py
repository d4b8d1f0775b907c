"""
Tests for the market simulation engine and liquidity pool.

Tests cover:
- Gravity dead zone and direction
- Price floor and rounding
- Bounded price history
- Stock listing/delisting on configuration changes
- Spin result feedback (winner / opposite entry)
- One-tick lag of real value behind weight changes
- Liquidity regeneration, skew, decay and momentum capping
"""

import random

import pytest

from spinmarket.market import (
    LiquidityState,
    MarketEvent,
    MarketSettings,
    MarketState,
    apply_spin_result,
    compute_gravity,
    sync_stocks,
    tick_market,
)
from spinmarket.market import engine, liquidity
from spinmarket.market.base import OrderSide
from spinmarket.wheel import ActiveConfiguration, SpinPhase, WheelConfig


def make_state(entries=("A", "B", "C", "D"), **settings) -> MarketState:
    wheel = WheelConfig(wheel_id="main", entries=list(entries))
    state = MarketState(
        config=ActiveConfiguration(wheels={"main": wheel}, active_wheel_id="main"),
        settings=MarketSettings(**settings),
        rng=random.Random(1),
    )
    sync_stocks(state)
    return state


class TestGravity:
    """Tests for compute_gravity."""

    def test_zero_at_fair_value(self):
        assert compute_gravity(100, 100, 0.05, 0.10) == 0

    def test_zero_inside_dead_zone(self):
        assert compute_gravity(105, 100, 0.05, 0.10) == 0
        assert compute_gravity(91, 100, 0.05, 0.10) == 0

    def test_pulls_toward_real_value(self):
        assert compute_gravity(150, 100, 0.05, 0.10) == pytest.approx(-2.5)
        assert compute_gravity(50, 100, 0.05, 0.10) == pytest.approx(2.5)

    def test_undefined_real_value(self):
        assert compute_gravity(50, 0, 0.05, 0.10) == 0


class TestSyncStocks:
    """Tests for listing and delisting stocks."""

    def test_lists_unique_names_at_real_value(self):
        state = make_state(entries=("A", "B", "A"))
        assert set(state.stocks) == {"A", "B"}
        # A holds 2/3 of the weight against a uniform 1/2
        assert state.stocks["A"].price == pytest.approx(133.33)
        assert state.stocks["B"].price == pytest.approx(66.67)
        assert set(state.liquidity) == {"A", "B"}

    def test_removed_names_returned(self):
        state = make_state()
        state.config.wheels["main"] = WheelConfig(wheel_id="main", entries=["A", "B", "E"])
        removed = sync_stocks(state)

        assert sorted(removed) == ["C", "D"]
        assert set(state.stocks) == {"A", "B", "E"}
        assert "C" not in state.liquidity

    def test_win_probabilities_aggregate_duplicates(self):
        state = make_state(entries=("A", "B", "A"))
        probabilities = engine.win_probabilities(state)
        assert probabilities["A"] == pytest.approx(2 / 3)
        assert sum(probabilities.values()) == pytest.approx(1.0)


class TestPriceUpdate:
    """Tests for per-tick price evolution."""

    def test_price_floor_under_extreme_momentum(self):
        state = make_state(noise=0.0)
        stock = state.stocks["A"]
        stock.price = 0.02
        stock.real_value = 0
        stock.momentum = -10.0
        state.liquidity["A"] = LiquidityState(buy_volume=1e9, sell_volume=1e9)

        engine.advance_price(state, stock)
        assert stock.price == 0.01

    def test_prices_rounded_to_cents(self):
        state = make_state()
        for _ in range(5):
            tick_market(state)
        for stock in state.stocks.values():
            assert round(stock.price, 2) == stock.price
            assert stock.price >= 0.01

    def test_history_bounded(self):
        state = make_state()
        for _ in range(60):
            tick_market(state)
        assert len(state.stocks["A"].history) == 50

    def test_momentum_decays_to_zero(self):
        state = make_state(noise=0.0)
        state.stocks["A"].momentum = 0.001
        for _ in range(60):
            tick_market(state)
        assert state.stocks["A"].momentum == 0.0

    def test_skipped_while_spinning(self):
        state = make_state()
        state.phase = SpinPhase.SPINNING
        before = [s.price for s in state.stocks.values()]
        assert tick_market(state) is False
        assert [s.price for s in state.stocks.values()] == before

    def test_no_stocks_no_tick(self):
        state = MarketState(rng=random.Random(1))
        assert tick_market(state) is False


class TestRealValueLag:
    """Real value follows weight changes one tick late."""

    def test_one_tick_lag(self):
        state = make_state(entries=("A", "B"))
        tick_market(state)
        assert state.stocks["A"].real_value == pytest.approx(100.0)

        state.weights.apply_fatigue("main", 0)

        tick_market(state)
        assert state.stocks["A"].real_value == pytest.approx(100.0)

        tick_market(state)
        expected = 100.0 * (0.3 / 1.3) / 0.5
        assert state.stocks["A"].real_value == pytest.approx(expected, rel=1e-3)

    def test_development_scales_real_value(self):
        state = make_state(entries=("A", "B"))
        state.stocks["A"].development = 1.5
        tick_market(state)
        assert state.stocks["A"].real_value == pytest.approx(150.0, rel=1e-2)


class TestSpinFeedback:
    """Tests for apply_spin_result."""

    def test_winner_and_opposite(self):
        state = make_state()
        apply_spin_result(state, state.active_wheel, 0)

        assert state.stocks["A"].development == pytest.approx(1.05)
        assert state.stocks["A"].momentum == pytest.approx(0.02)
        assert state.stocks["C"].development == pytest.approx(0.98)
        assert state.stocks["B"].development == 1.0

    def test_opposite_development_floored(self):
        state = make_state()
        state.stocks["C"].development = 0.105
        apply_spin_result(state, state.active_wheel, 0)
        assert state.stocks["C"].development == pytest.approx(0.1)

    def test_opposite_with_same_name_skipped(self):
        state = make_state(entries=("A", "B", "A", "C"))
        apply_spin_result(state, state.active_wheel, 0)
        assert state.stocks["A"].development == pytest.approx(1.05)

    def test_inactive_wheel_ignored(self):
        state = make_state()
        other = WheelConfig(wheel_id="bonus", entries=["A", "B"])
        state.config.wheels["bonus"] = other
        apply_spin_result(state, other, 0)
        assert state.stocks["A"].development == 1.0


class TestLiquidity:
    """Tests for the synthetic liquidity pool."""

    def test_initial_depth(self):
        state = make_state()
        pool = state.liquidity["A"]
        assert pool.buy_volume == 10.0
        assert pool.sell_volume == 10.0

    def test_replenish_skews_toward_mispricing(self):
        state = make_state()
        stock = state.stocks["A"]
        stock.price, stock.real_value = 120.0, 100.0
        state.liquidity["A"] = LiquidityState()

        liquidity.replenish(state)
        pool = state.liquidity["A"]
        assert pool.buy_volume == pytest.approx(8.0)
        assert pool.sell_volume == pytest.approx(16.0)

    def test_event_bonus(self):
        state = make_state()
        state.liquidity["A"] = LiquidityState()
        state.events.append(
            MarketEvent(
                event_id="evt_1",
                headline="Good news",
                sentiment=1,
                strength=1.0,
                spins_remaining=2,
                affected_entries=["A"],
            )
        )
        liquidity.replenish(state)
        assert state.liquidity["A"].buy_volume == pytest.approx(11.0)

    def test_decay_halves_and_zeroes_dust(self):
        state = make_state()
        state.liquidity["A"] = LiquidityState(buy_volume=10.0, sell_volume=0.15)
        liquidity.decay(state)
        assert state.liquidity["A"].buy_volume == pytest.approx(5.0)
        assert state.liquidity["A"].sell_volume == 0.0

    def test_available_shares_uses_opposite_side(self):
        pool = LiquidityState(buy_volume=3.7, sell_volume=5.2)
        assert liquidity.available_shares(pool, OrderSide.BUY) == 5
        assert liquidity.available_shares(pool, OrderSide.SELL) == 3

    def test_momentum_capped_by_liquidity(self):
        state = make_state()
        state.liquidity["A"] = LiquidityState(buy_volume=0.0, sell_volume=2.0)
        # 2 units at 0.0005 each allow a 0.1% move of 100
        permitted = liquidity.absorb_momentum(state, "A", 5.0, 100.0)
        assert permitted == pytest.approx(0.1)
        assert state.liquidity["A"].sell_volume == pytest.approx(0.0)

        assert liquidity.absorb_momentum(state, "A", -5.0, 100.0) == 0.0
