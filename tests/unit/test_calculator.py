"""
Tests for available balance and power calculation.
"""

from decimal import Decimal

from perp_sdk.core.decimal_math import ZERO, div
from perp_sdk.core.models import OrderStatus, OrderType, Side
from perp_sdk.ledger.calculator import (
    FeeSchedule,
    LedgerSnapshot,
    aggregate_open_orders,
    compute_available_balance,
    compute_power,
    order_unfilled_volume,
    position_margin,
    unrealized_pnl,
)

from tests.mocks import make_funding, make_order, make_position, make_transfer

TAKER = FeeSchedule(maker=Decimal("0.0002"), taker=Decimal("0.001"))


def snapshot(funding="1000", positions=(), orders=(), marks=None, withdrawals=()):
    return LedgerSnapshot(
        funding={"usdt": make_funding(funding)},
        positions=tuple(positions),
        orders=tuple(orders),
        mark_prices={k: Decimal(v) for k, v in (marks or {}).items()},
        pending_withdrawals=tuple(withdrawals),
    )


# =============================================================================
# Building Blocks
# =============================================================================


class TestBuildingBlocks:
    """Test per-record margin helpers."""

    def test_position_margin(self):
        margin = position_margin(make_position(quantity="1", avg_price="20000", leverage="10"))
        assert margin.volume == Decimal("20000")
        assert margin.initial_margin == Decimal("2000")

    def test_zero_leverage_treated_as_one(self):
        margin = position_margin(make_position(leverage="0"))
        assert margin.initial_margin == Decimal("20000")

    def test_unfilled_volume_truncated(self):
        order = make_order(unfilled="0.123456789", limit_price="1")
        assert order_unfilled_volume(order) == Decimal("0.12345678")

    def test_market_order_uses_cash_quantity(self):
        order = make_order(type=OrderType.MARKET, unfilled="0", limit_price="0", cash_quantity="500")
        assert order_unfilled_volume(order) == Decimal("500")

    def test_unrealized_pnl_short(self):
        position = make_position(side=Side.SELL, quantity="2", avg_price="100")
        assert unrealized_pnl(position, Decimal("90")) == Decimal("20")

    def test_unrealized_pnl_without_mark(self):
        assert unrealized_pnl(make_position(), None) == ZERO

    def test_aggregate_groups_by_side(self):
        orders = [
            make_order("a", side=Side.BUY, unfilled="1", limit_price="100"),
            make_order("b", side=Side.BUY, unfilled="2", limit_price="100"),
            make_order("c", side=Side.SELL, unfilled="1", limit_price="100"),
        ]
        positions = {"BTCUSDT": make_position(leverage="10")}
        grouped = aggregate_open_orders(orders, positions)

        buy = grouped[("BTCUSDT", Side.BUY)]
        assert buy.unfilled_volume == Decimal("300")
        assert buy.unfilled_initial_margin == Decimal("30")
        assert grouped[("BTCUSDT", Side.SELL)].unfilled_volume == Decimal("100")

    def test_aggregate_without_position_has_no_margin(self):
        grouped = aggregate_open_orders([make_order()], {})
        assert grouped[("BTCUSDT", Side.SELL)].unfilled_initial_margin == ZERO

    def test_aggregate_skips_terminal_orders(self):
        grouped = aggregate_open_orders([make_order(status=OrderStatus.FILLED)], {})
        assert grouped == {}


# =============================================================================
# Available Balance
# =============================================================================


class TestAvailableBalance:
    """Test free collateral."""

    def test_margin_exceeds_funding(self):
        """Test 1000 funding against 2000 initial margin floors at zero."""
        result = compute_available_balance(
            snapshot("1000", [make_position()], marks={"BTCUSDT": "20000"})
        )
        assert result.available_balance == ZERO
        assert result.positions[0].initial_margin == Decimal("2000")

    def test_loss_never_goes_negative(self):
        result = compute_available_balance(
            snapshot("1000", [make_position()], marks={"BTCUSDT": "19000"})
        )
        assert result.available_balance == ZERO

    def test_profit_ignored(self):
        result = compute_available_balance(
            snapshot("5000", [make_position()], marks={"BTCUSDT": "21000"})
        )
        assert result.available_balance == Decimal("3000")

    def test_loss_reduces_balance(self):
        result = compute_available_balance(
            snapshot("5000", [make_position()], marks={"BTCUSDT": "19500"})
        )
        assert result.available_balance == Decimal("2500")

    def test_same_side_orders_add_to_lock(self):
        order = make_order(side=Side.BUY, unfilled="0.5", limit_price="20000")
        result = compute_available_balance(snapshot("5000", [make_position()], [order]))
        assert result.available_balance == Decimal("2000")

    def test_opposite_side_orders_offset_lock(self):
        order = make_order(side=Side.SELL, unfilled="1", limit_price="20000")
        result = compute_available_balance(snapshot("5000", [make_position()], [order]))
        assert result.available_balance == Decimal("3000")

    def test_opposite_orders_beyond_position(self):
        order = make_order(side=Side.SELL, unfilled="3", limit_price="20000")
        result = compute_available_balance(snapshot("5000", [make_position()], [order]))
        # |2000 - 6000| = 4000 locked
        assert result.available_balance == Decimal("1000")

    def test_pending_withdrawals_subtracted(self):
        result = compute_available_balance(
            snapshot("1000", withdrawals=[make_transfer("a", "100"), make_transfer("b", "50")])
        )
        assert result.available_balance == Decimal("850")

    def test_no_funding(self):
        result = compute_available_balance(LedgerSnapshot())
        assert result.funding.balance == ZERO
        assert result.available_balance == ZERO

    def test_open_orders_breakdown(self):
        order = make_order(side=Side.BUY, unfilled="1", limit_price="100")
        result = compute_available_balance(snapshot("1000", orders=[order]))
        assert len(result.open_orders) == 1
        assert result.open_orders[0].unfilled_volume == Decimal("100")


# =============================================================================
# Power
# =============================================================================


class TestPower:
    """Test maximum additional notional."""

    def test_no_position_is_symmetric(self):
        """Test power without a position uses the same-side formula for both sides."""
        power = compute_power(snapshot("500"), "ETHUSDT", TAKER)
        assert power.buy == power.sell
        assert power.buy == div(Decimal("500"), Decimal("1.001"))

    def test_long_position(self):
        snap = snapshot("5000", [make_position()], marks={"BTCUSDT": "20000"})
        power = compute_power(snap, "BTCUSDT", TAKER)

        fee = Decimal("1.01")
        assert power.buy == div(Decimal("30000"), fee)
        # close 20000 at mark plus (3000 - 20) * 10 + 20000 reopened
        assert power.sell == Decimal("20000") + div(Decimal("49800"), fee)

    def test_short_position_mirrors(self):
        position = make_position(side=Side.SELL)
        snap = snapshot("5000", [position], marks={"BTCUSDT": "20000"})
        power = compute_power(snap, "BTCUSDT", TAKER)
        assert power.sell == div(Decimal("30000"), Decimal("1.01"))
        assert power.buy > power.sell

    def test_resting_close_orders_reduce_close_volume(self):
        order = make_order(side=Side.SELL, unfilled="1", limit_price="20000")
        snap = snapshot("5000", [make_position()], [order], marks={"BTCUSDT": "20000"})
        power = compute_power(snap, "BTCUSDT", TAKER)
        assert power.sell == div(Decimal("30000"), Decimal("1.01"))

    def test_missing_mark_price(self):
        snap = snapshot("5000", [make_position()])
        power = compute_power(snap, "BTCUSDT", TAKER)
        assert power.sell == div(Decimal("50000"), Decimal("1.01"))

    def test_zero_balance(self):
        power = compute_power(snapshot("0"), "BTCUSDT", TAKER)
        assert power.buy == ZERO
        assert power.sell == ZERO

    def test_as_floats(self):
        power = compute_power(snapshot("1000"), "BTCUSDT", FeeSchedule())
        assert power.as_floats() == {"buy": 1000.0, "sell": 1000.0}
