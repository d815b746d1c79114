"""
Exchange REST gateways.

``AuthRestGateway`` talks to the authentication service (nonce, SIWE
sign-in, token refresh). ``ExchangeRestGateway`` covers the market, account,
position, order, TP/SL, transfer and withdraw endpoints. Both share one
``RestClient`` and return parsed models.
"""

from typing import Any, Dict, List, Optional

from perp_sdk.core import get_logger
from perp_sdk.core.models import (
    Coin,
    ExchangeAccount,
    Funding,
    Instrument,
    InstrumentMetrics,
    LimitOrderBatchResult,
    MarketInfo,
    OpenedOrder,
    OrderBook,
    OrderBookRoundPrice,
    OrderStatus,
    Position,
    RecentTrade,
    ServerPower,
    Session,
    TpSl,
    TpSlStatus,
    Transfer,
    TransferStatus,
    TransferType,
)

from .constants import (
    ORDER_BOOK_LEVELS,
    AuthEndpoints,
    PrivateEndpoints,
    PublicEndpoints,
)
from .rest import JwtSession, RestClient

logger = get_logger(__name__)


def _items(data: Any) -> List[Any]:
    """List payload, unwrapping ``{"list": [...], "count": n}`` pages."""
    if isinstance(data, dict) and "list" in data:
        return data["list"] or []
    return data or []


def jwt_from_session(session: Session) -> JwtSession:
    return JwtSession(
        access_token=session.token.access_token,
        refresh_token=session.token.refresh_token,
    )


# =============================================================================
# Auth Gateway
# =============================================================================


class AuthRestGateway:
    """Authentication service client."""

    def __init__(self, auth_uri: str, http: RestClient):
        self._base_url = auth_uri.rstrip("/")
        self.http = http

    def _url(self, endpoint: AuthEndpoints) -> str:
        return f"{self._base_url}{endpoint.value.path}"

    async def get_nonce(self) -> str:
        data = await self.http.request("GET", self._url(AuthEndpoints.NONCE))
        return data["nonce"]

    async def sign_in_siwe(
        self,
        wallet: str,
        message: str,
        nonce: str,
        signature: str,
    ) -> Session:
        """
        Exchange a signed SIWE message for a session.

        Args:
            wallet: Wallet address
            message: Prepared SIWE message
            nonce: Nonce embedded in the message
            signature: Wallet signature of the message

        Returns:
            Session with tokens and the auth user
        """
        data = await self.http.request(
            "POST",
            self._url(AuthEndpoints.SIGN_IN_SIWE),
            json={
                "wallet": wallet,
                "message": message,
                "nonce": nonce,
                "signature": signature,
            },
        )
        return Session.model_validate(data)

    async def refresh(self, session: JwtSession) -> JwtSession:
        """Renew a bearer session with its refresh token."""
        data = await self.http.request(
            "POST",
            self._url(AuthEndpoints.REFRESH),
            json={"refreshToken": session.refresh_token},
        )
        token = data.get("token", data)
        return JwtSession(
            access_token=token["accessToken"],
            refresh_token=token.get("refreshToken", session.refresh_token),
        )


# =============================================================================
# Exchange Gateway
# =============================================================================


class ExchangeRestGateway:
    """
    Exchange REST API client.

    Example:
        >>> gateway = ExchangeRestGateway("https://exchange-api", http)
        >>> positions = await gateway.get_positions()
        >>> info = await gateway.get_market_info()
    """

    def __init__(self, exchange_uri: str, http: RestClient):
        self._base_url = exchange_uri.rstrip("/")
        self.http = http

    def _url(self, endpoint: Any, **path: str) -> str:
        return f"{self._base_url}{endpoint.value.format(**path)}"

    async def _public(self, endpoint: PublicEndpoints, params: Optional[Dict] = None, **path: str) -> Any:
        return await self.http.request(
            endpoint.value.method, self._url(endpoint, **path), params=params
        )

    async def _private(
        self,
        endpoint: PrivateEndpoints,
        params: Optional[Dict] = None,
        json: Any = None,
        **path: str,
    ) -> Any:
        return await self.http.auth_request(
            endpoint.value.method, self._url(endpoint, **path), params=params, json=json
        )

    # =========================================================================
    # Market (public)
    # =========================================================================

    async def get_market_info(self) -> MarketInfo:
        return MarketInfo.model_validate(await self._public(PublicEndpoints.MARKET_INFO))

    async def get_instruments(self) -> List[Instrument]:
        data = await self._public(PublicEndpoints.INSTRUMENTS)
        return [Instrument.model_validate(item) for item in _items(data)]

    async def get_instruments_metrics(self) -> List[InstrumentMetrics]:
        data = await self._public(PublicEndpoints.INSTRUMENTS_METRICS)
        return [InstrumentMetrics.model_validate(item) for item in _items(data)]

    async def get_coins(self) -> List[Coin]:
        data = await self._public(PublicEndpoints.COINS)
        return [Coin.model_validate(item) for item in _items(data)]

    async def get_market_depth(
        self,
        instrument: str,
        max_level: int = ORDER_BOOK_LEVELS,
        round_price: OrderBookRoundPrice = OrderBookRoundPrice.ONE_TENTH,
    ) -> OrderBook:
        data = await self._public(
            PublicEndpoints.MARKET_DEPTH,
            params={"maxLevel": max_level, "roundPrice": round_price},
            instrument=instrument,
        )
        return OrderBook.model_validate({"instrument": instrument, **data})

    async def get_recent_trades(self, instrument: str) -> List[RecentTrade]:
        data = await self._public(PublicEndpoints.RECENT_TRADES, instrument=instrument)
        return [
            RecentTrade.model_validate({"instrument": instrument, **item})
            for item in _items(data)
        ]

    # =========================================================================
    # Account
    # =========================================================================

    async def me(self) -> ExchangeAccount:
        return ExchangeAccount.model_validate(await self._private(PrivateEndpoints.ME))

    async def get_funding(self) -> List[Funding]:
        data = await self._private(PrivateEndpoints.FUNDING)
        return [Funding.model_validate(item) for item in _items(data)]

    async def get_transfers(
        self,
        type: Optional[TransferType] = None,
        status: Optional[TransferStatus] = None,
    ) -> List[Transfer]:
        data = await self._private(
            PrivateEndpoints.TRANSFERS, params={"type": type, "status": status}
        )
        return [Transfer.model_validate(item) for item in _items(data)]

    async def get_available_balance(self) -> Dict[str, Any]:
        """Server-side available balance breakdown, as returned."""
        return await self._private(PrivateEndpoints.AVAILABLE_BALANCE)

    async def get_power(self, instrument: str) -> ServerPower:
        data = await self._private(PrivateEndpoints.POWER, params={"instrument": instrument})
        return ServerPower.model_validate(data)

    async def withdraw(self, signed: Dict[str, Any]) -> Dict[str, Any]:
        return await self._private(PrivateEndpoints.WITHDRAW, json=signed)

    # =========================================================================
    # Positions
    # =========================================================================

    async def get_positions(self) -> List[Position]:
        data = await self._private(PrivateEndpoints.POSITIONS)
        return [Position.model_validate(item) for item in _items(data)]

    async def update_position(self, instrument: str, leverage: int) -> Position:
        data = await self._private(
            PrivateEndpoints.POSITION_UPDATE,
            json={"leverage": leverage},
            instrument=instrument,
        )
        return Position.model_validate(data)

    async def close_position(self, signed: Dict[str, Any]) -> OpenedOrder:
        data = await self._private(
            PrivateEndpoints.POSITION_CLOSE, json=signed, instrument=signed["instrument"]
        )
        return OpenedOrder.model_validate(data)

    # =========================================================================
    # Orders
    # =========================================================================

    async def get_orders(
        self,
        instrument: Optional[str] = None,
        status: Optional[OrderStatus] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[OpenedOrder]:
        data = await self._private(
            PrivateEndpoints.ORDERS,
            params={"instrument": instrument, "status": status, "limit": limit, "offset": offset},
        )
        return [OpenedOrder.model_validate(item) for item in _items(data)]

    async def get_opened_orders(self) -> List[OpenedOrder]:
        data = await self._private(PrivateEndpoints.OPENED_ORDERS)
        return [OpenedOrder.model_validate(item) for item in _items(data)]

    async def create_limit_order(self, signed: Dict[str, Any]) -> OpenedOrder:
        data = await self._private(PrivateEndpoints.LIMIT_ORDER, json=signed)
        return OpenedOrder.model_validate(data)

    async def batch_create_limit_order(
        self,
        instrument: str,
        signed: List[Dict[str, Any]],
    ) -> List[LimitOrderBatchResult]:
        data = await self._private(
            PrivateEndpoints.LIMIT_ORDER_BATCH, json=signed, instrument=instrument
        )
        return [LimitOrderBatchResult.model_validate(item) for item in _items(data)]

    async def create_market_order(self, signed: Dict[str, Any]) -> OpenedOrder:
        data = await self._private(PrivateEndpoints.MARKET_ORDER, json=signed)
        return OpenedOrder.model_validate(data)

    async def create_stop_limit_order(self, signed: Dict[str, Any]) -> OpenedOrder:
        data = await self._private(PrivateEndpoints.STOP_LIMIT_ORDER, json=signed)
        return OpenedOrder.model_validate(data)

    async def replace_limit_order(self, signed: Dict[str, Any]) -> OpenedOrder:
        data = await self._private(
            PrivateEndpoints.REPLACE_LIMIT_ORDER, json=signed, order_id=signed["orderId"]
        )
        return OpenedOrder.model_validate(data)

    async def replace_stop_limit_order(self, signed: Dict[str, Any]) -> OpenedOrder:
        data = await self._private(
            PrivateEndpoints.REPLACE_STOP_LIMIT_ORDER, json=signed, order_id=signed["orderId"]
        )
        return OpenedOrder.model_validate(data)

    async def cancel_order(self, order_id: str) -> None:
        await self._private(PrivateEndpoints.CANCEL_ORDER, order_id=order_id)

    async def mass_cancel_user_orders(self, instrument: str) -> None:
        await self._private(PrivateEndpoints.MASS_CANCEL, json={"instrument": instrument})

    async def mass_cancel_user_orders_by_id(self, order_ids: List[str]) -> None:
        await self._private(PrivateEndpoints.MASS_CANCEL_BY_ID, json={"orderIds": order_ids})

    # =========================================================================
    # TP/SL
    # =========================================================================

    async def get_tpsl(
        self,
        instrument: Optional[str] = None,
        status: Optional[TpSlStatus] = TpSlStatus.ACTIVE,
    ) -> List[TpSl]:
        data = await self._private(
            PrivateEndpoints.TPSL, params={"instrument": instrument, "status": status}
        )
        return [TpSl.model_validate(item) for item in _items(data)]

    async def create_tpsl(self, signed: Dict[str, Any]) -> TpSl:
        return TpSl.model_validate(await self._private(PrivateEndpoints.TPSL_CREATE, json=signed))

    async def update_tpsl(
        self,
        tpsl_id: str,
        quantity: Optional[str] = None,
        price: Optional[str] = None,
    ) -> TpSl:
        body = {k: v for k, v in {"quantity": quantity, "price": price}.items() if v is not None}
        data = await self._private(PrivateEndpoints.TPSL_UPDATE, json=body, tpsl_id=tpsl_id)
        return TpSl.model_validate(data)

    async def cancel_tpsl(self, tpsl_id: str) -> None:
        await self._private(PrivateEndpoints.TPSL_CANCEL, tpsl_id=tpsl_id)
