"""
Data models for the trading SDK.

Pydantic v2 models for the exchange's account, order, position and market
records. Models parse the exchange's camelCase wire format, keep monetary
fields as ``Decimal`` and normalise every timestamp to an aware UTC
``datetime`` so that records from REST snapshots and push messages compare
as instants.

Records are frozen: the ledger hands them to consumers as read-only values.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Optional

from pydantic import (
    AfterValidator,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
)
from pydantic.alias_generators import to_camel

from .utils import ensure_utc, timestamp_to_datetime


def _epoch_ms_to_datetime(value: Any) -> Any:
    """Epoch milliseconds arrive on some channels; ISO strings on others."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return timestamp_to_datetime(value, unit="ms")
    if isinstance(value, str) and value.strip().isdigit():
        return timestamp_to_datetime(int(value.strip()), unit="ms")
    return value


Instant = Annotated[
    datetime,
    BeforeValidator(_epoch_ms_to_datetime),
    AfterValidator(ensure_utc),
]


# =============================================================================
# Enums
# =============================================================================


class Side(str, Enum):
    """Order / position side."""

    BUY = "BUY"
    SELL = "SELL"

    @property
    def opposite(self) -> "Side":
        return Side.SELL if self is Side.BUY else Side.BUY

    @property
    def sign(self) -> int:
        """+1 for the long side, -1 for the short side."""
        return 1 if self is Side.BUY else -1


class OrderType(str, Enum):
    """Order type."""

    LIMIT = "LIMIT"
    MARKET = "MARKET"
    STOP_LIMIT = "STOP_LIMIT"
    STOP_MARKET = "STOP_MARKET"


class OrderStatus(str, Enum):
    """Order status."""

    NEW = "NEW"
    PARTIALLY_FILLED = "PARTIALLY_FILLED"
    FILLED = "FILLED"
    CANCELLED = "CANCELLED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"
    REPLACED = "REPLACED"
    ERROR = "ERROR"


ACTIVE_ORDER_STATUSES = frozenset({OrderStatus.NEW, OrderStatus.PARTIALLY_FILLED})


class TimeInForce(str, Enum):
    """Limit order time in force."""

    GTC = "GTC"
    IOC = "IOC"
    FOK = "FOK"


class TpSlType(str, Enum):
    """Take-profit / stop-loss kind."""

    TAKE_PROFIT = "take-profit"
    STOP_LOSS = "stop-loss"


class TpSlStatus(str, Enum):
    """TP/SL entry status."""

    ACTIVE = "active"
    EXECUTED = "executed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class TransferType(str, Enum):
    """Collateral transfer direction."""

    BALANCE_TO_FUTURES = "balance-to-futures"
    FUTURES_TO_BALANCE = "futures-to-balance"


class TransferStatus(str, Enum):
    """Collateral transfer status."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class CollateralCurrency(str, Enum):
    """Supported collateral currencies."""

    USDT = "usdt"


class OrderBookRoundPrice(str, Enum):
    """Price aggregation step for order book snapshots."""

    ONE_TENTH = "0.1"
    ONE = "1"
    TEN = "10"
    HUNDRED = "100"


# =============================================================================
# Base Model Configuration
# =============================================================================


class ExchangeModel(BaseModel):
    """Base model for records received from the exchange."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )


# =============================================================================
# Account
# =============================================================================


class ExchangeAccount(ExchangeModel):
    """Exchange-side user summary."""

    id: str
    exchange_id: str
    wallet: Optional[str] = None
    name: Optional[str] = None
    margin_call: bool = False
    updated_at: Instant


class AccountEvent(ExchangeModel):
    """Account summary push event."""

    user: str
    margin_call: bool = False
    updated_at: Instant


class Funding(ExchangeModel):
    """Collateral balance for one currency."""

    coin: str
    quantity: Decimal
    updated_at: Instant


class Transfer(ExchangeModel):
    """Collateral transfer between balance and futures account."""

    id: str
    type: TransferType
    status: TransferStatus
    amount: Decimal
    coin: Optional[str] = None
    updated_at: Instant

    @property
    def is_pending_withdrawal(self) -> bool:
        return (
            self.status == TransferStatus.PENDING
            and self.type == TransferType.FUTURES_TO_BALANCE
        )


# =============================================================================
# Positions and Orders
# =============================================================================


class Position(ExchangeModel):
    """Open position on one instrument."""

    instrument: str
    side: Side
    quantity: Decimal
    avg_price: Decimal
    leverage: Decimal = Decimal("1")
    updated_at: Instant


class OpenedOrder(ExchangeModel):
    """Order as reported by the open-orders snapshot and order channel."""

    id: str
    instrument: str
    side: Side
    type: OrderType
    status: OrderStatus
    quantity: Decimal = Decimal("0")
    un_filled_quantity: Decimal = Decimal("0")
    limit_price: Decimal = Decimal("0")
    stop_price: Optional[Decimal] = None
    cash_quantity: Decimal = Decimal("0")
    created_at: Optional[Instant] = None
    updated_at: Instant

    @property
    def is_active(self) -> bool:
        """True while the order can still be filled."""
        return self.status in ACTIVE_ORDER_STATUSES


class OrderFill(ExchangeModel):
    """Execution report for an order."""

    order_id: str = Field(alias="order")
    instrument: str
    side: Side
    fill_quantity: Decimal
    fill_price: Decimal
    fee: Decimal = Decimal("0")
    created_at: Instant


class TpSl(ExchangeModel):
    """Take-profit / stop-loss entry attached to a position."""

    id: str
    instrument: str
    type: TpSlType
    side: Side
    quantity: Decimal
    price: Decimal
    status: TpSlStatus
    updated_at: Instant


# =============================================================================
# Market
# =============================================================================


class InstrumentMarkPrice(ExchangeModel):
    """Mark price of one instrument."""

    name: str
    mark_price: Decimal
    updated_at: Instant


class InstrumentState(ExchangeModel):
    """Instrument ticker state pushed on the instruments channel."""

    id: Optional[str] = None
    name: str
    last_price: Optional[Decimal] = None
    mark_price: Decimal
    high: Optional[Decimal] = None
    low: Optional[Decimal] = None
    volume: Optional[Decimal] = None
    open_interest: Optional[Decimal] = None
    min_price: Optional[Decimal] = None
    max_price: Optional[Decimal] = None
    trading: Optional[str] = None
    market_state: Optional[str] = None
    updated_at: Instant

    def mark(self) -> InstrumentMarkPrice:
        return InstrumentMarkPrice(
            name=self.name,
            mark_price=self.mark_price,
            updated_at=self.updated_at,
        )


class Instrument(ExchangeModel):
    """Tradable instrument definition."""

    id: str
    name: str
    display_name: Optional[str] = None
    max_leverage: Optional[int] = None
    lot_size: Optional[Decimal] = None
    min_quantity: Optional[Decimal] = None
    max_quantity: Optional[Decimal] = None
    price_increment: Optional[Decimal] = None
    trading: Optional[str] = None
    visibility: Optional[str] = None


class InstrumentMetrics(Instrument):
    """Instrument definition with live metrics."""

    last_price: Optional[Decimal] = None
    mark_price: Decimal = Decimal("0")
    high: Optional[Decimal] = None
    low: Optional[Decimal] = None
    volume: Optional[Decimal] = None
    open_interest: Optional[Decimal] = None
    funding_rate: Decimal = Decimal("0")
    funding_rate_created_at: Optional[Instant] = None
    market_state: Optional[str] = None
    updated_at: Instant

    def state(self) -> InstrumentState:
        return InstrumentState(
            id=self.id,
            name=self.name,
            last_price=self.last_price,
            mark_price=self.mark_price,
            high=self.high,
            low=self.low,
            volume=self.volume,
            open_interest=self.open_interest,
            trading=self.trading,
            market_state=self.market_state,
            updated_at=self.updated_at,
        )


class Coin(ExchangeModel):
    """Collateral coin with its last price."""

    name: str
    price: Optional[Decimal] = None


class Fees(ExchangeModel):
    """Maker / taker fee rates."""

    maker: Decimal = Decimal("0")
    taker: Decimal = Decimal("0")


class MarketInfo(ExchangeModel):
    """Matcher state and fee schedule."""

    state: str
    fees: Fees = Field(default_factory=Fees)
    updated_at: Instant


class MatcherState(ExchangeModel):
    """Matcher state push event."""

    state: str
    updated_at: Instant


class FundingRateEvent(ExchangeModel):
    """Funding rate update for an instrument."""

    instrument: str
    funding_rate: Decimal
    created_at: Instant


class PriceLevel(ExchangeModel):
    """Aggregated order book level."""

    price: Decimal
    quantity: Decimal


class OrderBook(ExchangeModel):
    """Order book snapshot or update; ``t`` is the matcher sequence time (ms)."""

    instrument: str = ""
    t: int
    bids: list[PriceLevel] = Field(default_factory=list)
    asks: list[PriceLevel] = Field(default_factory=list)


class RecentTrade(ExchangeModel):
    """Public trade print."""

    instrument: str
    side: Side
    fill_price: Decimal
    fill_quantity: Decimal
    created_at: Instant


class ServerPower(ExchangeModel):
    """Power as computed by the exchange."""

    buy: Decimal
    sell: Decimal


# =============================================================================
# Auth
# =============================================================================


class AuthUser(ExchangeModel):
    """Authentication service user."""

    id: str
    wallet: Optional[str] = None


class TokenPair(ExchangeModel):
    """Bearer access token with optional refresh token."""

    access_token: str
    refresh_token: Optional[str] = None


class Session(ExchangeModel):
    """Result of a successful sign-in."""

    token: TokenPair
    user: AuthUser


# =============================================================================
# Market Data Events
# =============================================================================


class OrderBookBest(ExchangeModel):
    """Best bid / ask of an instrument."""

    instrument: str
    t: int
    bids: list[PriceLevel] = Field(default_factory=list)
    asks: list[PriceLevel] = Field(default_factory=list)

    @classmethod
    def from_book(cls, book: OrderBook) -> "OrderBookBest":
        """Top of book from a depth snapshot (asks ascending, bids ascending)."""
        return cls(
            instrument=book.instrument,
            t=book.t,
            asks=book.asks[:1],
            bids=book.bids[-1:],
        )


# =============================================================================
# Request Payloads
# =============================================================================


class PayloadModel(ExchangeModel):
    """Base model for signed request payloads."""

    def to_wire(self) -> dict[str, Any]:
        """camelCase JSON-ready dict, decimals rendered as strings."""
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class LimitOrderPayload(PayloadModel):
    id: Optional[str] = None
    instrument: str
    side: Side
    leverage: int = 1
    quantity: Decimal
    limit_price: Decimal
    time_in_force: TimeInForce = TimeInForce.GTC


class MarketOrderPayload(PayloadModel):
    id: Optional[str] = None
    instrument: str
    side: Side
    leverage: int = 1
    time_in_force: TimeInForce = TimeInForce.IOC
    quantity: Optional[Decimal] = None
    cash_quantity: Optional[Decimal] = None


class StopLimitOrderPayload(PayloadModel):
    id: Optional[str] = None
    instrument: str
    side: Side
    leverage: int = 1
    quantity: Decimal
    limit_price: Decimal
    stop_price: Decimal


class PositionCloseOrderPayload(PayloadModel):
    id: Optional[str] = None
    instrument: str
    leverage: int = 1
    quantity: Decimal


class ReplaceLimitOrder(PayloadModel):
    order_id: str
    quantity: Decimal
    limit_price: Decimal


class ReplaceStopLimitOrder(PayloadModel):
    order_id: str
    quantity: Decimal
    limit_price: Decimal
    stop_price: Decimal


class TpSlCreatePayload(PayloadModel):
    instrument: str
    type: TpSlType
    side: Side
    quantity: Decimal
    price: Decimal


class TradingBalanceWithdraw(PayloadModel):
    recipient: str
    amount: Decimal
    coin: CollateralCurrency = CollateralCurrency.USDT


class LimitOrderBatchResult(ExchangeModel):
    """Per-order outcome of a batch limit order request."""

    id: str
    success: bool = True
    error: Optional[str] = None
