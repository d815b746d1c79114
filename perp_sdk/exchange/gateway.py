"""
Exchange gateway.

Composes the REST client, the auth and exchange REST gateways and the push
channel client, and exposes:

- market data streams (instrument state, funding rate, matcher state, best
  bid/ask, order book, recent trades). Each ``listen_*`` call is idempotent,
  subscribes the channel and seeds the stream from the matching REST
  snapshot; updates pass a merge guard so only strictly newer records reach
  the ``on_*`` channels.
- account factories for API key, session and wallet sign-in accounts. Each
  account gets REST and channel gateways bound to its own credentials over
  the shared HTTP session and channel connection.
"""

from typing import Any, Dict, List, Optional, Tuple

from perp_sdk.account import Account
from perp_sdk.config.environments import GatewayParams
from perp_sdk.config.models import TransportConfig
from perp_sdk.core import get_logger
from perp_sdk.core.events import EventChannel
from perp_sdk.core.models import (
    Coin,
    FundingRateEvent,
    Instrument,
    InstrumentMetrics,
    InstrumentState,
    MarketInfo,
    MatcherState,
    OrderBook,
    OrderBookBest,
    OrderBookRoundPrice,
    RecentTrade,
    Session,
)
from perp_sdk.crypto import PayloadSigner, TypedDataSigner, Wallet
from perp_sdk.ledger.merge import MergeGuard

from .api import AuthRestGateway, ExchangeRestGateway, jwt_from_session
from .channels import ChannelClient, ChannelSubscription
from .constants import ORDER_BOOK_BEST_LEVELS, ORDER_BOOK_LEVELS
from .rest import ApiKeySession, RestClient, SessionCredentials
from .ws import ExchangeWsGateway

logger = get_logger(__name__)

MATCHER_KEY = "matcher"


class Gateway:
    """
    Entry point to one exchange deployment.

    Example:
        >>> gateway = Gateway(get_gateway_params(Environment.DEMO))
        >>> gateway.on_order_book_best.subscribe(print)
        >>> await gateway.listen_order_book_best("BTCUSDT")
        >>> account = await gateway.create_api_key_account("key")
        >>> await gateway.close()
    """

    def __init__(
        self,
        params: GatewayParams,
        transport: Optional[TransportConfig] = None,
        http: Optional[RestClient] = None,
        channels: Optional[ChannelClient] = None,
    ):
        """
        Initialize Gateway.

        Args:
            params: Deployment endpoints
            transport: Timeouts, retries and reconnect delays
            http: REST client to use instead of building one
            channels: Channel client to use instead of building one
        """
        self.params = params
        transport = transport or TransportConfig()

        self.http = http or RestClient(
            timeout=transport.request_timeout,
            max_retries=transport.max_retries,
            retry_delay=transport.retry_delay,
        )
        self.auth = AuthRestGateway(params.auth_uri, self.http)
        self.http.set_refresher(self.auth)
        self.exchange = ExchangeRestGateway(params.exchange_uri, self.http)

        self.channels = channels or ChannelClient(
            params.centrifuge_uri,
            params.centrifuge_prefix,
            request_timeout=transport.request_timeout,
            reconnect_delay=transport.reconnect_delay,
            max_reconnect_delay=transport.max_reconnect_delay,
        )
        self.ws = ExchangeWsGateway(self.channels)
        self.on_recover = self.channels.on_recover

        # Market data notifications
        self.on_instrument_state: EventChannel[InstrumentState] = EventChannel("instrument_state")
        self.on_funding_rate: EventChannel[FundingRateEvent] = EventChannel("funding_rate")
        self.on_matcher_state: EventChannel[MatcherState] = EventChannel("matcher_state")
        self.on_order_book_best: EventChannel[OrderBookBest] = EventChannel("order_book_best")
        self.on_order_book: EventChannel[OrderBook] = EventChannel("order_book")
        self.on_trade: EventChannel[RecentTrade] = EventChannel("trade")

        # Per-stream guards keyed by instrument name
        self._instrument_states: MergeGuard[InstrumentState] = MergeGuard("instrument_state")
        self._funding_rates: MergeGuard[FundingRateEvent] = MergeGuard("funding_rate")
        self._matcher: MergeGuard[MatcherState] = MergeGuard("matcher_state")
        self._books_best: MergeGuard[OrderBookBest] = MergeGuard("order_book_best")
        self._books: MergeGuard[OrderBook] = MergeGuard("order_book")
        self._trades: MergeGuard[RecentTrade] = MergeGuard("trade")

        # Active streams; None while the subscription is in flight
        self._streams: Dict[Tuple[str, str], Optional[ChannelSubscription]] = {}
        self._accounts_created = 0

    # =========================================================================
    # Connection
    # =========================================================================

    async def connect(self) -> None:
        await self.http.connect()
        await self.channels.connect()

    async def close(self) -> None:
        """Close the channel connection and the HTTP session."""
        await self.channels.close()
        await self.http.close()
        self._streams.clear()
        logger.info("Gateway closed")

    async def __aenter__(self) -> "Gateway":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # =========================================================================
    # Merge-guarded updates
    # =========================================================================

    def _update_instrument_state(self, state: InstrumentState) -> None:
        if self._instrument_states.try_apply(state.name, state.updated_at, state):
            self.on_instrument_state.emit(state)

    def _update_funding_rate(self, event: FundingRateEvent) -> None:
        if self._funding_rates.try_apply(event.instrument, event.created_at, event):
            self.on_funding_rate.emit(event)

    def _update_matcher_state(self, state: MatcherState) -> None:
        if self._matcher.try_apply(MATCHER_KEY, state.updated_at, state):
            self.on_matcher_state.emit(state)

    def _update_order_book_best(self, book: OrderBookBest) -> None:
        if self._books_best.try_apply(book.instrument, book.t, book):
            self.on_order_book_best.emit(book)

    def _update_order_book(self, book: OrderBook) -> None:
        if self._books.try_apply(book.instrument, book.t, book):
            self.on_order_book.emit(book)

    def _update_trade(self, trade: RecentTrade) -> None:
        if self._trades.try_apply(trade.instrument, trade.created_at, trade):
            self.on_trade.emit(trade)

    # =========================================================================
    # Stream Management
    # =========================================================================

    def _claim(self, stream: str, instrument: str = "") -> bool:
        """Reserve a stream; False if it is already active or starting."""
        key = (stream, instrument)
        if key in self._streams:
            return False
        self._streams[key] = None
        return True

    async def _release(self, stream: str, instrument: str = "") -> None:
        handle = self._streams.pop((stream, instrument), None)
        if handle is not None:
            await handle.unsubscribe()

    async def _open(self, stream: str, instrument: str, subscribe) -> None:
        try:
            self._streams[(stream, instrument)] = await subscribe
        except Exception:
            self._streams.pop((stream, instrument), None)
            raise

    def is_listening(self, stream: str, instrument: str = "") -> bool:
        return (stream, instrument) in self._streams

    # =========================================================================
    # Market Data Streams
    # =========================================================================

    async def listen_instrument_state(self) -> None:
        if not self._claim("instruments"):
            return
        await self._open(
            "instruments", "", self.ws.listen_instruments(self._update_instrument_state)
        )
        for metrics in await self.fetch_instruments_with_metrics():
            self._update_instrument_state(metrics.state())

    async def unlisten_instrument_state(self) -> None:
        await self._release("instruments")
        self._instrument_states.clear()

    async def listen_funding_rate(self) -> None:
        if not self._claim("funding_rate"):
            return
        await self._open(
            "funding_rate", "", self.ws.listen_funding_rate(self._update_funding_rate)
        )
        for metrics in await self.fetch_instruments_with_metrics():
            if metrics.funding_rate_created_at is None:
                continue
            self._update_funding_rate(
                FundingRateEvent(
                    instrument=metrics.name,
                    funding_rate=metrics.funding_rate,
                    created_at=metrics.funding_rate_created_at,
                )
            )

    async def unlisten_funding_rate(self) -> None:
        await self._release("funding_rate")
        self._funding_rates.clear()

    async def listen_matcher_state(self) -> None:
        if not self._claim("matcher"):
            return
        await self._open("matcher", "", self.ws.listen_matcher(self._update_matcher_state))
        info = await self.fetch_market_info()
        self._update_matcher_state(MatcherState(state=info.state, updated_at=info.updated_at))

    async def unlisten_matcher_state(self) -> None:
        await self._release("matcher")
        self._matcher.clear()

    async def listen_order_book_best(self, instrument: str) -> None:
        if not self._claim("order_book_best", instrument):
            return
        await self._open(
            "order_book_best", instrument,
            self.ws.listen_order_book_best(instrument, self._update_order_book_best),
        )
        book = await self.fetch_market_depth(instrument, max_level=ORDER_BOOK_BEST_LEVELS)
        self._update_order_book_best(OrderBookBest.from_book(book))

    async def unlisten_order_book_best(self, instrument: str) -> None:
        await self._release("order_book_best", instrument)
        self._books_best.forget(instrument)

    async def listen_order_book(self, instrument: str) -> None:
        if not self._claim("order_book", instrument):
            return
        await self._open(
            "order_book", instrument,
            self.ws.listen_order_book(instrument, self._update_order_book),
        )
        self._update_order_book(
            await self.fetch_market_depth(instrument, max_level=ORDER_BOOK_LEVELS)
        )

    async def unlisten_order_book(self, instrument: str) -> None:
        await self._release("order_book", instrument)
        self._books.forget(instrument)

    async def listen_trades(self, instrument: str) -> None:
        if not self._claim("trades", instrument):
            return
        await self._open(
            "trades", instrument,
            self.ws.listen_recent_trades(instrument, self._update_trade),
        )
        trades = await self.fetch_trades(instrument)
        for trade in sorted(trades, key=lambda t: t.created_at):
            self._update_trade(trade)

    async def unlisten_trades(self, instrument: str) -> None:
        await self._release("trades", instrument)
        self._trades.forget(instrument)

    # =========================================================================
    # Fetch Helpers
    # =========================================================================

    async def fetch_instruments(self) -> List[Instrument]:
        return await self.exchange.get_instruments()

    async def fetch_instruments_with_metrics(self) -> List[InstrumentMetrics]:
        return await self.exchange.get_instruments_metrics()

    async def fetch_coins(self) -> List[Coin]:
        return await self.exchange.get_coins()

    async def fetch_trades(self, instrument: str) -> List[RecentTrade]:
        return await self.exchange.get_recent_trades(instrument)

    async def fetch_market_info(self) -> MarketInfo:
        return await self.exchange.get_market_info()

    async def fetch_market_depth(
        self,
        instrument: str,
        max_level: int = ORDER_BOOK_LEVELS,
        round_price: OrderBookRoundPrice = OrderBookRoundPrice.ONE_TENTH,
    ) -> OrderBook:
        return await self.exchange.get_market_depth(instrument, max_level, round_price)

    # =========================================================================
    # Account Factories
    # =========================================================================

    def bind(self, credentials: SessionCredentials) -> Tuple[ExchangeRestGateway, ExchangeWsGateway]:
        """
        REST and channel gateways carrying one account's credentials.

        Both reuse the gateway's HTTP session and channel connection.
        """
        http = self.http.bind(credentials)
        exchange = ExchangeRestGateway(self.params.exchange_uri, http)
        ws = ExchangeWsGateway(self.channels, get_token=http.access_token)
        return exchange, ws

    async def _create_account(self, credentials: SessionCredentials, **kwargs: Any) -> Account:
        exchange, ws = self.bind(credentials)
        account = Account(
            gateway=self,
            exchange_account=await exchange.me(),
            exchange=exchange,
            ws=ws,
            **kwargs,
        )
        self._accounts_created += 1
        return account

    async def create_api_key_account(self, api_key: str) -> Account:
        """Account authenticated with an API key; read-only."""
        return await self._create_account(ApiKeySession(api_key))

    async def create_session_account(self, session: Session) -> Account:
        """Account from an existing sign-in session; read-only."""
        return await self._create_account(jwt_from_session(session), auth_user=session.user)

    async def sign_in_session_account(
        self,
        wallet: str,
        message: str,
        nonce: str,
        signature: str,
    ) -> Account:
        """Sign in with a message signed elsewhere."""
        session = await self.auth.sign_in_siwe(wallet, message, nonce, signature)
        return await self.create_session_account(session)

    async def sign_in_wallet_account(
        self,
        wallet: Wallet,
        signer: Optional[PayloadSigner] = None,
    ) -> Account:
        """
        Sign in with a local wallet and return a trading account.

        Args:
            wallet: Wallet signing the sign-in message and trading payloads
            signer: Payload signer; typed data signer over the wallet by default

        Returns:
            Account able to sign trading requests
        """
        signer = signer or TypedDataSigner(wallet)
        nonce = await self.auth.get_nonce()
        signed = signer.sign_auth_message(nonce)

        session = await self.auth.sign_in_siwe(
            wallet.address, signed.message, nonce, signed.signature
        )
        logger.info(f"Signed in wallet {wallet.address}")

        return await self._create_account(
            jwt_from_session(session),
            auth_user=session.user,
            wallet=wallet,
            signer=signer,
        )

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "connected": self.channels.is_connected,
            "streams": sorted(f"{s}:{i}" if i else s for s, i in self._streams),
            "accounts": self._accounts_created,
        }
