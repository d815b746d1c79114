"""
Exchange account.

One capability object per signed-in user. Every account can read its
exchange state; accounts created with a wallet can also sign and send
trading requests. Trading calls on an account without a wallet raise
``SigningUnavailableError``.
"""

from typing import TYPE_CHECKING, Any, Dict, List, Optional

from perp_sdk.core import get_logger
from perp_sdk.core.exceptions import SigningUnavailableError
from perp_sdk.core.models import (
    AuthUser,
    ExchangeAccount,
    Funding,
    LimitOrderBatchResult,
    LimitOrderPayload,
    MarketOrderPayload,
    OpenedOrder,
    OrderStatus,
    PayloadModel,
    Position,
    PositionCloseOrderPayload,
    ReplaceLimitOrder,
    ReplaceStopLimitOrder,
    ServerPower,
    StopLimitOrderPayload,
    TpSl,
    TpSlCreatePayload,
    TpSlStatus,
    TradingBalanceWithdraw,
    Transfer,
    TransferStatus,
    TransferType,
)
from perp_sdk.core.utils import generate_short_uuid
from perp_sdk.crypto import PayloadSigner, TypedDataSigner, Wallet
from perp_sdk.ledger import AccountLedger

if TYPE_CHECKING:
    from perp_sdk.exchange.api import ExchangeRestGateway
    from perp_sdk.exchange.gateway import Gateway
    from perp_sdk.exchange.ws import ExchangeWsGateway

logger = get_logger(__name__)


def _with_id(order: PayloadModel) -> PayloadModel:
    """Fill a missing client order id."""
    if getattr(order, "id", None):
        return order
    return order.model_copy(update={"id": generate_short_uuid()})


class Account:
    """
    Exchange account with its own credentials on a shared gateway.

    Example:
        >>> account = await gateway.sign_in_wallet_account(wallet)
        >>> order = await account.create_limit_order(
        ...     LimitOrderPayload(instrument="BTCUSDT", side=Side.BUY,
        ...                       quantity=Decimal("0.01"), limit_price=Decimal("60000"))
        ... )
        >>> ledger = account.create_ledger()
        >>> await ledger.start()
    """

    def __init__(
        self,
        gateway: "Gateway",
        exchange_account: ExchangeAccount,
        exchange: Optional["ExchangeRestGateway"] = None,
        ws: Optional["ExchangeWsGateway"] = None,
        auth_user: Optional[AuthUser] = None,
        wallet: Optional[Wallet] = None,
        signer: Optional[PayloadSigner] = None,
    ):
        """
        Initialize Account.

        Args:
            gateway: Gateway this account was created on
            exchange_account: Exchange-side user summary
            exchange: REST gateway carrying this account's credentials;
                the gateway's own by default
            ws: Channel gateway carrying this account's token;
                the gateway's own by default
            auth_user: Authentication service user, for signed-in accounts
            wallet: Wallet enabling trading requests
            signer: Payload signer; typed data signer over the wallet by default
        """
        self.gateway = gateway
        self.exchange_account = exchange_account
        self._exchange = exchange
        self._ws = ws
        self.auth_user = auth_user
        self.wallet = wallet
        if signer is None and wallet is not None:
            signer = TypedDataSigner(wallet)
        self.signer = signer

    def __repr__(self) -> str:
        return (
            f"Account(exchange_id={self.exchange_account.exchange_id!r}, "
            f"can_sign={self.can_sign})"
        )

    @property
    def exchange(self) -> "ExchangeRestGateway":
        return self._exchange or self.gateway.exchange

    @property
    def ws(self) -> "ExchangeWsGateway":
        return self._ws or self.gateway.ws

    @property
    def exchange_id(self) -> str:
        return self.exchange_account.exchange_id

    @property
    def can_sign(self) -> bool:
        return self.signer is not None

    def _require_signer(self) -> PayloadSigner:
        if self.signer is None:
            raise SigningUnavailableError(
                f"Account {self.exchange_id} has no wallet for trading requests"
            )
        return self.signer

    def _sign(self, payload: PayloadModel) -> Dict[str, Any]:
        return self._require_signer().sign_payload(payload)

    # =========================================================================
    # Reads
    # =========================================================================

    async def fetch_me(self) -> ExchangeAccount:
        self.exchange_account = await self.exchange.me()
        return self.exchange_account

    async def fetch_funding(self) -> List[Funding]:
        return await self.exchange.get_funding()

    async def fetch_transfers(
        self,
        type: Optional[TransferType] = None,
        status: Optional[TransferStatus] = None,
    ) -> List[Transfer]:
        return await self.exchange.get_transfers(type=type, status=status)

    async def fetch_positions(self) -> List[Position]:
        return await self.exchange.get_positions()

    async def fetch_orders(
        self,
        instrument: Optional[str] = None,
        status: Optional[OrderStatus] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[OpenedOrder]:
        return await self.exchange.get_orders(instrument, status, limit, offset)

    async def fetch_open_orders(self) -> List[OpenedOrder]:
        return await self.exchange.get_opened_orders()

    async def fetch_tpsl(
        self,
        instrument: Optional[str] = None,
        status: Optional[TpSlStatus] = TpSlStatus.ACTIVE,
    ) -> List[TpSl]:
        return await self.exchange.get_tpsl(instrument, status)

    async def fetch_available_balance(self) -> Dict[str, Any]:
        """Available balance as computed by the exchange."""
        return await self.exchange.get_available_balance()

    async def fetch_power(self, instrument: str) -> ServerPower:
        """Power as computed by the exchange."""
        return await self.exchange.get_power(instrument)

    # =========================================================================
    # Orders
    # =========================================================================

    async def create_limit_order(self, order: LimitOrderPayload) -> OpenedOrder:
        return await self.exchange.create_limit_order(self._sign(_with_id(order)))

    async def batch_create_limit_order(
        self,
        instrument: str,
        orders: List[LimitOrderPayload],
    ) -> List[LimitOrderBatchResult]:
        """
        Sign and send several limit orders for one instrument.

        Returns:
            Per-order results in request order
        """
        signed = [self._sign(_with_id(order)) for order in orders]
        return await self.exchange.batch_create_limit_order(instrument, signed)

    async def create_market_order(self, order: MarketOrderPayload) -> OpenedOrder:
        return await self.exchange.create_market_order(self._sign(_with_id(order)))

    async def create_stop_limit_order(self, order: StopLimitOrderPayload) -> OpenedOrder:
        return await self.exchange.create_stop_limit_order(self._sign(_with_id(order)))

    async def create_close_position_order(self, order: PositionCloseOrderPayload) -> OpenedOrder:
        return await self.exchange.close_position(self._sign(_with_id(order)))

    async def replace_limit_order(self, order: ReplaceLimitOrder) -> OpenedOrder:
        return await self.exchange.replace_limit_order(self._sign(order))

    async def replace_stop_limit_order(self, order: ReplaceStopLimitOrder) -> OpenedOrder:
        return await self.exchange.replace_stop_limit_order(self._sign(order))

    async def cancel_order(self, order_id: str) -> None:
        self._require_signer()
        await self.exchange.cancel_order(order_id)

    async def mass_cancel_user_orders(self, instrument: str) -> None:
        self._require_signer()
        await self.exchange.mass_cancel_user_orders(instrument)

    async def mass_cancel_user_orders_by_id(self, order_ids: List[str]) -> None:
        self._require_signer()
        await self.exchange.mass_cancel_user_orders_by_id(order_ids)

    # =========================================================================
    # Positions, TP/SL and Withdrawals
    # =========================================================================

    async def update_position(self, instrument: str, leverage: int) -> Position:
        self._require_signer()
        return await self.exchange.update_position(instrument, leverage)

    async def create_tpsl(self, tpsl: TpSlCreatePayload) -> TpSl:
        return await self.exchange.create_tpsl(self._sign(tpsl))

    async def update_tpsl(
        self,
        tpsl_id: str,
        quantity: Optional[str] = None,
        price: Optional[str] = None,
    ) -> TpSl:
        self._require_signer()
        return await self.exchange.update_tpsl(tpsl_id, quantity, price)

    async def cancel_tpsl(self, tpsl_id: str) -> None:
        self._require_signer()
        await self.exchange.cancel_tpsl(tpsl_id)

    async def create_withdraw(self, withdraw: TradingBalanceWithdraw) -> Dict[str, Any]:
        logger.info(f"Withdrawing {withdraw.amount} {withdraw.coin.value} to {withdraw.recipient}")
        return await self.exchange.withdraw(self._sign(withdraw))

    # =========================================================================
    # Ledger
    # =========================================================================

    def create_ledger(self) -> AccountLedger:
        """New ledger over this account's snapshots and channels; not started."""
        return AccountLedger(self.exchange_id, self.exchange, self.ws)
