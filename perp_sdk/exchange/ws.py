"""
Typed push channel subscriptions.

Each ``listen_*`` method subscribes one exchange channel and hands parsed
model instances to the handler. Private channels are scoped by the
exchange-side user id. Publications carrying a list are delivered record
by record; malformed records are logged and skipped.
"""

from typing import Any, Callable, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from perp_sdk.core import get_logger
from perp_sdk.core.models import (
    AccountEvent,
    Funding,
    FundingRateEvent,
    InstrumentState,
    MatcherState,
    OpenedOrder,
    OrderBook,
    OrderBookBest,
    OrderFill,
    Position,
    RecentTrade,
    TpSl,
    Transfer,
)

from .channels import ChannelClient, ChannelSubscription

logger = get_logger(__name__)

M = TypeVar("M", bound=BaseModel)

Resubscribe = Optional[Callable[[], Any]]


class ChannelNames:
    """Channel names, without the deployment prefix."""

    INSTRUMENTS = "instruments"
    FUNDING_RATE = "funding-rate"
    MATCHER = "matcher"

    @staticmethod
    def order_book_best(instrument: str) -> str:
        return f"orderBook-{instrument}-best"

    @staticmethod
    def order_book(instrument: str) -> str:
        return f"orderBook-{instrument}"

    @staticmethod
    def recent_trades(instrument: str) -> str:
        return f"recent-trade-{instrument}"

    @staticmethod
    def account(user_exchange_id: str) -> str:
        return f"user-{user_exchange_id}"

    @staticmethod
    def funding(user_exchange_id: str) -> str:
        return f"funding-{user_exchange_id}"

    @staticmethod
    def transfers(user_exchange_id: str) -> str:
        return f"transfer-{user_exchange_id}"

    @staticmethod
    def positions(user_exchange_id: str) -> str:
        return f"position-{user_exchange_id}"

    @staticmethod
    def orders(user_exchange_id: str) -> str:
        return f"order-{user_exchange_id}"

    @staticmethod
    def order_fills(user_exchange_id: str) -> str:
        return f"orderFills-{user_exchange_id}"

    @staticmethod
    def tpsl(user_exchange_id: str) -> str:
        return f"tpsl-{user_exchange_id}"


class ExchangeWsGateway:
    """
    Exchange push channels.

    Example:
        >>> ws = ExchangeWsGateway(channel_client)
        >>> sub = await ws.listen_positions(user_exchange_id, on_position)
        >>> await sub.unsubscribe()
    """

    def __init__(
        self,
        client: ChannelClient,
        get_token: Optional[Callable[[], Optional[str]]] = None,
    ):
        """
        Initialize ExchangeWsGateway.

        Args:
            client: Shared channel client
            get_token: Access token of the account owning the private channels
        """
        self.client = client
        self.get_token = get_token

    def _parser(
        self,
        model: Type[M],
        handler: Callable[[M], Any],
        extra: Optional[dict] = None,
    ) -> Callable[[Any], None]:
        """Wrap handler so it receives validated models."""

        def on_data(data: Any) -> None:
            records = data if isinstance(data, list) else [data]
            for record in records:
                if extra and isinstance(record, dict):
                    record = {**extra, **record}
                try:
                    parsed = model.model_validate(record)
                except ValidationError as e:
                    logger.warning(f"Skipping malformed {model.__name__}: {e}")
                    continue
                handler(parsed)

        return on_data

    async def _listen(
        self,
        name: str,
        model: Type[M],
        handler: Callable[[M], Any],
        on_resubscribe: Resubscribe = None,
        extra: Optional[dict] = None,
        private: bool = False,
    ) -> ChannelSubscription:
        return await self.client.subscribe(
            name, self._parser(model, handler, extra), on_resubscribe,
            get_token=self.get_token if private else None,
        )

    # =========================================================================
    # Public Channels
    # =========================================================================

    async def listen_instruments(
        self, handler: Callable[[InstrumentState], Any], on_resubscribe: Resubscribe = None
    ) -> ChannelSubscription:
        return await self._listen(ChannelNames.INSTRUMENTS, InstrumentState, handler, on_resubscribe)

    async def listen_funding_rate(
        self, handler: Callable[[FundingRateEvent], Any], on_resubscribe: Resubscribe = None
    ) -> ChannelSubscription:
        return await self._listen(ChannelNames.FUNDING_RATE, FundingRateEvent, handler, on_resubscribe)

    async def listen_matcher(
        self, handler: Callable[[MatcherState], Any], on_resubscribe: Resubscribe = None
    ) -> ChannelSubscription:
        return await self._listen(ChannelNames.MATCHER, MatcherState, handler, on_resubscribe)

    async def listen_order_book_best(
        self,
        instrument: str,
        handler: Callable[[OrderBookBest], Any],
        on_resubscribe: Resubscribe = None,
    ) -> ChannelSubscription:
        return await self._listen(
            ChannelNames.order_book_best(instrument), OrderBookBest, handler,
            on_resubscribe, extra={"instrument": instrument},
        )

    async def listen_order_book(
        self,
        instrument: str,
        handler: Callable[[OrderBook], Any],
        on_resubscribe: Resubscribe = None,
    ) -> ChannelSubscription:
        return await self._listen(
            ChannelNames.order_book(instrument), OrderBook, handler,
            on_resubscribe, extra={"instrument": instrument},
        )

    async def listen_recent_trades(
        self,
        instrument: str,
        handler: Callable[[RecentTrade], Any],
        on_resubscribe: Resubscribe = None,
    ) -> ChannelSubscription:
        return await self._listen(
            ChannelNames.recent_trades(instrument), RecentTrade, handler,
            on_resubscribe, extra={"instrument": instrument},
        )

    # =========================================================================
    # Private Channels
    # =========================================================================

    async def listen_account(
        self, user_exchange_id: str, handler: Callable[[AccountEvent], Any],
        on_resubscribe: Resubscribe = None,
    ) -> ChannelSubscription:
        return await self._listen(
            ChannelNames.account(user_exchange_id), AccountEvent, handler, on_resubscribe,
            private=True,
        )

    async def listen_funding(
        self, user_exchange_id: str, handler: Callable[[Funding], Any],
        on_resubscribe: Resubscribe = None,
    ) -> ChannelSubscription:
        return await self._listen(
            ChannelNames.funding(user_exchange_id), Funding, handler, on_resubscribe,
            private=True,
        )

    async def listen_transfers(
        self, user_exchange_id: str, handler: Callable[[Transfer], Any],
        on_resubscribe: Resubscribe = None,
    ) -> ChannelSubscription:
        return await self._listen(
            ChannelNames.transfers(user_exchange_id), Transfer, handler, on_resubscribe,
            private=True,
        )

    async def listen_positions(
        self, user_exchange_id: str, handler: Callable[[Position], Any],
        on_resubscribe: Resubscribe = None,
    ) -> ChannelSubscription:
        return await self._listen(
            ChannelNames.positions(user_exchange_id), Position, handler, on_resubscribe,
            private=True,
        )

    async def listen_orders(
        self, user_exchange_id: str, handler: Callable[[OpenedOrder], Any],
        on_resubscribe: Resubscribe = None,
    ) -> ChannelSubscription:
        return await self._listen(
            ChannelNames.orders(user_exchange_id), OpenedOrder, handler, on_resubscribe,
            private=True,
        )

    async def listen_order_fills(
        self, user_exchange_id: str, handler: Callable[[OrderFill], Any],
        on_resubscribe: Resubscribe = None,
    ) -> ChannelSubscription:
        return await self._listen(
            ChannelNames.order_fills(user_exchange_id), OrderFill, handler, on_resubscribe,
            private=True,
        )

    async def listen_tpsl(
        self, user_exchange_id: str, handler: Callable[[TpSl], Any],
        on_resubscribe: Resubscribe = None,
    ) -> ChannelSubscription:
        return await self._listen(
            ChannelNames.tpsl(user_exchange_id), TpSl, handler, on_resubscribe,
            private=True,
        )
