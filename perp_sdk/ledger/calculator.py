"""
Available balance and power calculation.

Pure functions over a ``LedgerSnapshot``. They reproduce the matcher's
accounting with exact decimals:

Available balance:
    funding - pending withdrawals + sum(negative unrealized PnL) - sum(lock)
    floored at zero, where for each position
    lock = max(IM + same-side unfilled / lev, |IM - opposite-side unfilled / lev|)

Power for an instrument (per side):
    fee    = 1 + lev * taker
    same   = max(0, available * lev) / fee
    opposite = close@mark + max(0, (available - close@mark * taker) * lev + close@avg) / fee
    close@p  = max(0, qty * p - opposite unfilled notional - opposite cash notional)

Missing data never raises: no position means a flat long with leverage 1,
no mark price means zero unrealized PnL.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from perp_sdk.core.decimal_math import (
    ONE,
    ZERO,
    div,
    dmax,
    dsum,
    leverage_or_one,
    money_context,
    non_negative,
    to_display_float,
    to_matcher_number,
)
from perp_sdk.core.models import (
    CollateralCurrency,
    Funding,
    OpenedOrder,
    OrderType,
    Position,
    Side,
    Transfer,
)


# =============================================================================
# Inputs and Results
# =============================================================================


@dataclass(frozen=True)
class FeeSchedule:
    """Maker / taker fee rates."""
    maker: Decimal = ZERO
    taker: Decimal = ZERO


@dataclass(frozen=True)
class LedgerSnapshot:
    """
    Point-in-time copy of the ledger stores.

    Attributes:
        funding: Funding records by collateral currency
        positions: Open positions
        orders: Active orders
        mark_prices: Mark price by instrument
        pending_withdrawals: Pending futures-to-balance transfers
    """
    funding: Mapping[str, Funding] = field(default_factory=dict)
    positions: Sequence[Position] = ()
    orders: Sequence[OpenedOrder] = ()
    mark_prices: Mapping[str, Decimal] = field(default_factory=dict)
    pending_withdrawals: Sequence[Transfer] = ()

    def position(self, instrument: str) -> Optional[Position]:
        for position in self.positions:
            if position.instrument == instrument:
                return position
        return None


@dataclass(frozen=True)
class FundingBalance:
    currency: str
    balance: Decimal


@dataclass(frozen=True)
class PositionMargin:
    """Position with its notional volume and initial margin."""
    instrument: str
    side: Side
    quantity: Decimal
    avg_price: Decimal
    leverage: Decimal
    volume: Decimal
    initial_margin: Decimal


@dataclass(frozen=True)
class OpenOrderAggregate:
    """Unfilled order volume on one side of one instrument."""
    instrument: str
    side: Side
    unfilled_volume: Decimal
    unfilled_initial_margin: Decimal


@dataclass(frozen=True)
class AvailableBalance:
    funding: FundingBalance
    positions: Tuple[PositionMargin, ...]
    open_orders: Tuple[OpenOrderAggregate, ...]
    available_balance: Decimal


@dataclass(frozen=True)
class Power:
    """Maximum additional notional per side."""
    buy: Decimal
    sell: Decimal

    def as_floats(self) -> Dict[str, float]:
        """Display form. Never use the floats for further arithmetic."""
        return {"buy": to_display_float(self.buy), "sell": to_display_float(self.sell)}


# =============================================================================
# Building Blocks
# =============================================================================


def order_unfilled_volume(order: OpenedOrder) -> Decimal:
    """Unfilled notional of an order, truncated to matcher precision."""
    if order.type == OrderType.MARKET and order.cash_quantity > 0:
        return to_matcher_number(order.cash_quantity)
    with money_context():
        return to_matcher_number(order.un_filled_quantity * order.limit_price)


def position_margin(position: Position) -> PositionMargin:
    leverage = leverage_or_one(position.leverage)
    with money_context():
        volume = position.quantity * position.avg_price
    return PositionMargin(
        instrument=position.instrument,
        side=position.side,
        quantity=position.quantity,
        avg_price=position.avg_price,
        leverage=position.leverage,
        volume=volume,
        initial_margin=div(volume, leverage),
    )


def unrealized_pnl(position: Position, mark_price: Optional[Decimal]) -> Decimal:
    """(mark - avg) * sign(side) * quantity; zero while no mark price is known."""
    if not mark_price:
        return ZERO
    with money_context():
        return (mark_price - position.avg_price) * position.side.sign * position.quantity


def aggregate_open_orders(
    orders: Iterable[OpenedOrder],
    positions: Mapping[str, Position],
) -> Dict[Tuple[str, Side], OpenOrderAggregate]:
    """
    Group unfilled order volume by (instrument, side).

    The initial margin share uses the leverage of the position held on the
    instrument and is zero when there is none.
    """
    grouped: Dict[Tuple[str, Side], OpenOrderAggregate] = {}
    for order in orders:
        if not order.is_active:
            continue

        volume = order_unfilled_volume(order)
        position = positions.get(order.instrument)
        initial_margin = (
            div(volume, leverage_or_one(position.leverage)) if position else ZERO
        )

        key = (order.instrument, order.side)
        current = grouped.get(key)
        if current is None:
            grouped[key] = OpenOrderAggregate(
                instrument=order.instrument,
                side=order.side,
                unfilled_volume=volume,
                unfilled_initial_margin=to_matcher_number(initial_margin),
            )
            continue

        with money_context():
            grouped[key] = OpenOrderAggregate(
                instrument=order.instrument,
                side=order.side,
                unfilled_volume=to_matcher_number(current.unfilled_volume + volume),
                unfilled_initial_margin=to_matcher_number(
                    current.unfilled_initial_margin + initial_margin
                ),
            )
    return grouped


def position_lock(
    margin: PositionMargin,
    open_orders: Mapping[Tuple[str, Side], OpenOrderAggregate],
) -> Decimal:
    """Collateral locked by a position together with its resting orders."""
    leverage = leverage_or_one(margin.leverage)
    same = open_orders.get((margin.instrument, margin.side))
    opposite = open_orders.get((margin.instrument, margin.side.opposite))

    same_margin = div(same.unfilled_volume, leverage) if same else ZERO
    opposite_margin = div(opposite.unfilled_volume, leverage) if opposite else ZERO

    with money_context():
        return dmax(
            margin.initial_margin + same_margin,
            abs(margin.initial_margin - opposite_margin),
        )


# =============================================================================
# Available Balance
# =============================================================================


def compute_available_balance(
    snapshot: LedgerSnapshot,
    currency: CollateralCurrency = CollateralCurrency.USDT,
) -> AvailableBalance:
    """
    Free collateral for a ledger snapshot.

    Positive unrealized PnL is ignored; only losses reduce the balance.

    Args:
        snapshot: Ledger snapshot
        currency: Collateral currency

    Returns:
        AvailableBalance with funding, per-position margins, open order
        aggregates that still carry volume, and the available balance
    """
    funding_record = snapshot.funding.get(currency.value)
    funding = funding_record.quantity if funding_record else ZERO
    pending = dsum(t.amount for t in snapshot.pending_withdrawals)

    positions_by_instrument = {p.instrument: p for p in snapshot.positions}
    open_orders = aggregate_open_orders(snapshot.orders, positions_by_instrument)
    margins: List[PositionMargin] = [position_margin(p) for p in snapshot.positions]

    negative_pnl = ZERO
    lock = ZERO
    with money_context():
        for position, margin in zip(snapshot.positions, margins):
            pnl = unrealized_pnl(position, snapshot.mark_prices.get(position.instrument))
            if pnl < 0:
                negative_pnl += pnl
            lock += position_lock(margin, open_orders)

        available = non_negative(funding - pending + negative_pnl - lock)

    return AvailableBalance(
        funding=FundingBalance(currency=currency.value, balance=funding),
        positions=tuple(margins),
        open_orders=tuple(o for o in open_orders.values() if o.unfilled_volume > 0),
        available_balance=available,
    )


# =============================================================================
# Power
# =============================================================================


def close_volume(
    position_side: Side,
    order_side: Side,
    quantity: Decimal,
    price: Decimal,
    unfilled_notional: Decimal,
    cash_notional: Decimal,
) -> Decimal:
    """
    Notional of the position still closable by new orders on ``order_side``.

    Orders on the position's own side close nothing.
    """
    if order_side == position_side:
        return ZERO
    with money_context():
        return non_negative(quantity * price - unfilled_notional - cash_notional)


def opposing_order_notional(
    orders: Iterable[OpenedOrder],
    instrument: str,
    side: Side,
) -> Tuple[Decimal, Decimal]:
    """
    Unfilled notional of active orders on one side of an instrument.

    Returns:
        (limit notional, market cash notional)
    """
    unfilled = ZERO
    cash = ZERO
    with money_context():
        for order in orders:
            if order.instrument != instrument or order.side != side or not order.is_active:
                continue
            if order.type == OrderType.MARKET and order.cash_quantity > 0:
                cash += order.cash_quantity
            else:
                unfilled += order_unfilled_volume(order)
    return unfilled, cash


def compute_power(
    snapshot: LedgerSnapshot,
    instrument: str,
    fees: FeeSchedule,
    available_balance: Optional[Decimal] = None,
) -> Power:
    """
    Maximum additional notional that can be opened on each side.

    Args:
        snapshot: Ledger snapshot
        instrument: Instrument name
        fees: Fee schedule; the taker rate is applied
        available_balance: Precomputed available balance for the snapshot

    Returns:
        Power with buy and sell notional
    """
    if available_balance is None:
        available_balance = compute_available_balance(snapshot).available_balance

    position = snapshot.position(instrument)
    if position is not None:
        side = position.side
        quantity = position.quantity
        avg_price = position.avg_price
        leverage = leverage_or_one(position.leverage)
    else:
        side, quantity, avg_price, leverage = Side.BUY, ZERO, ZERO, ONE

    mark_price = snapshot.mark_prices.get(instrument) or ZERO
    opposite = side.opposite
    unfilled, cash = opposing_order_notional(snapshot.orders, instrument, opposite)

    close_at_mark = close_volume(side, opposite, quantity, mark_price, unfilled, cash)
    close_at_avg = close_volume(side, opposite, quantity, avg_price, unfilled, cash)

    taker = fees.taker
    with money_context():
        fee = ONE + leverage * taker
        opposite_power = close_at_mark + div(
            non_negative((available_balance - close_at_mark * taker) * leverage + close_at_avg),
            fee,
        )
        same_power = div(non_negative(available_balance * leverage), fee)

    if side == Side.BUY:
        return Power(buy=same_power, sell=opposite_power)
    return Power(buy=opposite_power, sell=same_power)
