"""
Account Ledger.

Keeps a consistent in-memory view of one trading account by merging two
sources into the same per-entity stores:

- push channels (account, funding, transfers, positions, orders, order
  fills, TP/SL, instrument mark prices)
- bulk REST snapshots issued when the ledger starts, and again for a single
  entity kind when its channel was resubscribed without history

Every record, whatever its source, goes through the store's merge guard, so
the arrival order of snapshot and push records never matters. Notifications
fire only for accepted merges. Available balance and power are computed on
demand from a snapshot of the stores.

Lifecycle is idle -> listening -> idle. ``stop`` unsubscribes every channel
and clears every store; records from fetches that complete after ``stop``
are dropped. Orders and transfers that are no longer live leave their
stores at once; their timestamps are remembered only while a bulk fetch
that could still carry an older copy is in flight.
"""

import asyncio
from decimal import Decimal
from functools import partial
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Protocol,
    Set,
    Tuple,
)

from perp_sdk.core import get_logger
from perp_sdk.core.decimal_math import ZERO, dsum
from perp_sdk.core.events import EventChannel
from perp_sdk.core.exceptions import SnapshotFetchError
from perp_sdk.core.models import (
    AccountEvent,
    CollateralCurrency,
    ExchangeAccount,
    Funding,
    InstrumentMetrics,
    InstrumentState,
    MarketInfo,
    OpenedOrder,
    OrderFill,
    Position,
    TpSl,
    Transfer,
    TransferStatus,
    TransferType,
)

from .calculator import (
    AvailableBalance,
    FeeSchedule,
    LedgerSnapshot,
    Power,
    compute_available_balance,
    compute_power,
)
from .notifier import ChangeNotifier, EntityKind
from .stores import (
    EntityStore,
    OpenOrderStore,
    PendingWithdrawalStore,
    account_store,
    funding_store,
    mark_price_store,
    position_store,
    tpsl_store,
)

logger = get_logger(__name__)


# =============================================================================
# Collaborators
# =============================================================================


class ChannelHandle(Protocol):
    """Handle of one push channel registration."""

    async def unsubscribe(self) -> None:
        ...


class LedgerSnapshotSource(Protocol):
    """Bulk REST reads used to seed and resync the ledger."""

    async def me(self) -> ExchangeAccount:
        ...

    async def get_market_info(self) -> MarketInfo:
        ...

    async def get_funding(self) -> List[Funding]:
        ...

    async def get_transfers(
        self,
        type: Optional[TransferType] = None,
        status: Optional[TransferStatus] = None,
    ) -> List[Transfer]:
        ...

    async def get_positions(self) -> List[Position]:
        ...

    async def get_opened_orders(self) -> List[OpenedOrder]:
        ...

    async def get_tpsl(self) -> List[TpSl]:
        ...

    async def get_instruments_metrics(self) -> List[InstrumentMetrics]:
        ...


class LedgerChannelSource(Protocol):
    """
    Push channels used by the ledger.

    Handlers are called synchronously with parsed records. ``on_resubscribe``
    is called when a channel came back after a connection loss without
    history recovery.
    """

    async def listen_account(
        self, user_exchange_id: str, handler: Callable[[AccountEvent], Any],
        on_resubscribe: Optional[Callable[[], Any]] = None,
    ) -> ChannelHandle:
        ...

    async def listen_funding(
        self, user_exchange_id: str, handler: Callable[[Funding], Any],
        on_resubscribe: Optional[Callable[[], Any]] = None,
    ) -> ChannelHandle:
        ...

    async def listen_transfers(
        self, user_exchange_id: str, handler: Callable[[Transfer], Any],
        on_resubscribe: Optional[Callable[[], Any]] = None,
    ) -> ChannelHandle:
        ...

    async def listen_positions(
        self, user_exchange_id: str, handler: Callable[[Position], Any],
        on_resubscribe: Optional[Callable[[], Any]] = None,
    ) -> ChannelHandle:
        ...

    async def listen_orders(
        self, user_exchange_id: str, handler: Callable[[OpenedOrder], Any],
        on_resubscribe: Optional[Callable[[], Any]] = None,
    ) -> ChannelHandle:
        ...

    async def listen_order_fills(
        self, user_exchange_id: str, handler: Callable[[OrderFill], Any],
        on_resubscribe: Optional[Callable[[], Any]] = None,
    ) -> ChannelHandle:
        ...

    async def listen_tpsl(
        self, user_exchange_id: str, handler: Callable[[TpSl], Any],
        on_resubscribe: Optional[Callable[[], Any]] = None,
    ) -> ChannelHandle:
        ...

    async def listen_instruments(
        self, handler: Callable[[InstrumentState], Any],
        on_resubscribe: Optional[Callable[[], Any]] = None,
    ) -> ChannelHandle:
        ...


# =============================================================================
# Ledger
# =============================================================================


class AccountLedger:
    """
    Reconciled view of one trading account.

    Example:
        >>> ledger = AccountLedger(user_exchange_id, rest_gateway, ws_gateway)
        >>> ledger.notifier.order.subscribe(on_order)
        >>> await ledger.start()
        >>>
        >>> balance = ledger.get_available_balance()
        >>> power = ledger.get_power("BTCUSDT")
        >>>
        >>> await ledger.stop()
    """

    def __init__(
        self,
        user_exchange_id: str,
        snapshots: LedgerSnapshotSource,
        channels: LedgerChannelSource,
        currency: CollateralCurrency = CollateralCurrency.USDT,
    ):
        """
        Initialize account ledger.

        Args:
            user_exchange_id: Exchange-side account id scoping the private channels
            snapshots: Bulk REST reads
            channels: Push channel subscriptions
            currency: Collateral currency of the account
        """
        self.user_exchange_id = user_exchange_id
        self.snapshots = snapshots
        self.channels = channels
        self.currency = currency
        self.notifier = ChangeNotifier()

        # Stores
        self._accounts: EntityStore[AccountEvent] = account_store()
        self._funding: EntityStore[Funding] = funding_store()
        self._transfers = PendingWithdrawalStore()
        self._positions: EntityStore[Position] = position_store()
        self._orders = OpenOrderStore()
        self._tpsl: EntityStore[TpSl] = tpsl_store()
        self._mark_prices = mark_price_store()

        # Fee configuration, fetched once
        self._fees: Optional[FeeSchedule] = None

        # State
        self._listening = False
        self._generation = 0
        self._handles: Dict[EntityKind, ChannelHandle] = {}
        self._resync_tasks: Set[asyncio.Task] = set()
        self._loading: Optional[asyncio.Future] = None
        self._lifecycle_lock = asyncio.Lock()

    @property
    def listening(self) -> bool:
        return self._listening

    @property
    def fees(self) -> FeeSchedule:
        """Cached fee schedule; zero fees until fetched."""
        return self._fees or FeeSchedule()

    def _routes(self) -> Dict[EntityKind, Tuple[EntityStore, EventChannel]]:
        return {
            EntityKind.ACCOUNT: (self._accounts, self.notifier.account),
            EntityKind.FUNDING: (self._funding, self.notifier.funding),
            EntityKind.TRANSFER: (self._transfers, self.notifier.transfer),
            EntityKind.POSITION: (self._positions, self.notifier.position),
            EntityKind.ORDER: (self._orders, self.notifier.order),
            EntityKind.TPSL: (self._tpsl, self.notifier.tpsl),
            EntityKind.MARK_PRICE: (self._mark_prices, self.notifier.mark_price),
        }

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """
        Subscribe every channel and load the bulk snapshots.

        Resolves once every snapshot fetch completed. A call while an earlier
        start is still loading waits for that load; a call after it is a
        no-op.

        Raises:
            SnapshotFetchError: If any subscription or fetch failed. Records
                applied before the failure are kept and the ledger stays
                listening.
        """
        async with self._lifecycle_lock:
            if self._listening:
                loading = self._loading
                if loading is None or loading.done():
                    return
            else:
                self._listening = True
                self._generation += 1
                generation = self._generation
                failures = await self._subscribe_all(generation)
                loading = asyncio.ensure_future(self._load_snapshots(generation, failures))
                loading.add_done_callback(self._loading_done)
                self._loading = loading

        await asyncio.shield(loading)

    async def _load_snapshots(self, generation: int, failures: Dict[str, BaseException]) -> None:
        kinds = list(self._routes())
        results = await asyncio.gather(
            self._fetch_fees(),
            *(self._fetch(kind, generation) for kind in kinds),
            return_exceptions=True,
        )

        for kind, result in zip(["fees", *[k.value for k in kinds]], results):
            if isinstance(result, BaseException):
                logger.error(f"Snapshot fetch failed for {kind}: {result}")
                failures[kind] = result

        if failures:
            raise SnapshotFetchError(
                f"Ledger start incomplete for {self.user_exchange_id}",
                failures=failures,
            )

        if generation == self._generation:
            logger.info(
                f"Ledger started for {self.user_exchange_id}: "
                f"{len(self._positions)} positions, {len(self._orders)} orders"
            )

    def _loading_done(self, task: asyncio.Future) -> None:
        if self._loading is task:
            self._loading = None
        if not task.cancelled():
            # Raised to the start() callers; retrieved here for callers that went away
            task.exception()

    async def stop(self) -> None:
        """
        Unsubscribe every channel and clear every store.

        Unsubscribe failures are logged and never block the teardown.
        No-op while idle.
        """
        async with self._lifecycle_lock:
            if not self._listening:
                return

            self._listening = False
            self._generation += 1

            resyncs = list(self._resync_tasks)
            for task in resyncs:
                task.cancel()
            self._resync_tasks.clear()
            if resyncs:
                await asyncio.gather(*resyncs, return_exceptions=True)

            handles, self._handles = self._handles, {}
            for kind, handle in handles.items():
                try:
                    await handle.unsubscribe()
                except Exception as e:
                    logger.warning(f"Unsubscribe failed for {kind.value} channel: {e}")

            for store, _ in self._routes().values():
                store.clear()

            logger.info(f"Ledger stopped for {self.user_exchange_id}")

    async def resync(self, kind: EntityKind) -> None:
        """
        Re-issue the bulk fetch for one entity kind.

        Records are merged through the same guard as push records, so only
        updates missed while the channel was down change the state.
        """
        kind = EntityKind(kind)
        if not self._listening:
            return
        await self._fetch(kind, self._generation)
        logger.debug(f"Resynced {kind.value} for {self.user_exchange_id}")

    async def _subscribe_all(self, generation: int) -> Dict[str, BaseException]:
        scope = self.user_exchange_id
        listeners: List[Tuple[EntityKind, Callable[[], Awaitable[ChannelHandle]]]] = [
            (EntityKind.ACCOUNT, partial(
                self.channels.listen_account, scope,
                partial(self._on_record, generation, EntityKind.ACCOUNT),
                self._resync_callback(generation, EntityKind.ACCOUNT),
            )),
            (EntityKind.FUNDING, partial(
                self.channels.listen_funding, scope,
                partial(self._on_record, generation, EntityKind.FUNDING),
                self._resync_callback(generation, EntityKind.FUNDING),
            )),
            (EntityKind.TRANSFER, partial(
                self.channels.listen_transfers, scope,
                partial(self._on_record, generation, EntityKind.TRANSFER),
                self._resync_callback(generation, EntityKind.TRANSFER),
            )),
            (EntityKind.POSITION, partial(
                self.channels.listen_positions, scope,
                partial(self._on_record, generation, EntityKind.POSITION),
                self._resync_callback(generation, EntityKind.POSITION),
            )),
            (EntityKind.ORDER, partial(
                self.channels.listen_orders, scope,
                partial(self._on_record, generation, EntityKind.ORDER),
                self._resync_callback(generation, EntityKind.ORDER),
            )),
            (EntityKind.ORDER_FILL, partial(
                self.channels.listen_order_fills, scope,
                partial(self._on_order_fill, generation),
            )),
            (EntityKind.TPSL, partial(
                self.channels.listen_tpsl, scope,
                partial(self._on_record, generation, EntityKind.TPSL),
                self._resync_callback(generation, EntityKind.TPSL),
            )),
            (EntityKind.MARK_PRICE, partial(
                self.channels.listen_instruments,
                partial(self._on_instrument_state, generation),
                self._resync_callback(generation, EntityKind.MARK_PRICE),
            )),
        ]

        results = await asyncio.gather(
            *(listen() for _, listen in listeners),
            return_exceptions=True,
        )

        failures: Dict[str, BaseException] = {}
        for (kind, _), result in zip(listeners, results):
            if isinstance(result, BaseException):
                logger.error(f"Subscription failed for {kind.value} channel: {result}")
                failures[f"{kind.value}_channel"] = result
            else:
                self._handles[kind] = result
                logger.debug(f"Subscribed {kind.value} channel for {self.user_exchange_id}")
        return failures

    async def _fetch(self, kind: EntityKind, generation: int) -> int:
        """Fetch one entity kind and merge the records. Returns accepted count."""
        store, _ = self._routes()[kind]
        accepted = 0
        with store.fetching():
            records = await self._fetch_records(kind)
            for record in records:
                if self._merge(generation, kind, record):
                    accepted += 1
        return accepted

    async def _fetch_records(self, kind: EntityKind) -> List[Any]:
        if kind == EntityKind.ACCOUNT:
            account = await self.snapshots.me()
            return [
                AccountEvent(
                    user=account.id,
                    margin_call=account.margin_call,
                    updated_at=account.updated_at,
                )
            ]
        if kind == EntityKind.FUNDING:
            return await self.snapshots.get_funding()
        if kind == EntityKind.TRANSFER:
            return await self.snapshots.get_transfers(
                type=TransferType.FUTURES_TO_BALANCE,
                status=TransferStatus.PENDING,
            )
        if kind == EntityKind.POSITION:
            return await self.snapshots.get_positions()
        if kind == EntityKind.ORDER:
            return await self.snapshots.get_opened_orders()
        if kind == EntityKind.TPSL:
            return await self.snapshots.get_tpsl()
        if kind == EntityKind.MARK_PRICE:
            metrics = await self.snapshots.get_instruments_metrics()
            return [m.state().mark() for m in metrics]
        raise ValueError(f"No snapshot source for {kind.value}")

    async def _fetch_fees(self) -> None:
        if self._fees is not None:
            return
        info = await self.snapshots.get_market_info()
        self._fees = FeeSchedule(maker=info.fees.maker, taker=info.fees.taker)

    # =========================================================================
    # Merge Path
    # =========================================================================

    def _is_current(self, generation: int) -> bool:
        return self._listening and generation == self._generation

    def _merge(self, generation: int, kind: EntityKind, record: Any) -> bool:
        """Merge one record if the ledger is still in the given generation."""
        if not self._is_current(generation):
            logger.debug(f"Dropped {kind.value} record for inactive ledger")
            return False

        store, channel = self._routes()[kind]
        if not store.upsert_if_newer(record):
            return False

        channel.emit(record)
        return True

    def _on_record(self, generation: int, kind: EntityKind, record: Any) -> None:
        self._merge(generation, kind, record)

    def _on_instrument_state(self, generation: int, state: InstrumentState) -> None:
        self._merge(generation, EntityKind.MARK_PRICE, state.mark())

    def _on_order_fill(self, generation: int, fill: OrderFill) -> None:
        if self._is_current(generation):
            self.notifier.order_fill.emit(fill)

    def _resync_callback(self, generation: int, kind: EntityKind) -> Callable[[], None]:
        def on_resubscribe() -> None:
            if not self._is_current(generation):
                return
            logger.warning(f"{kind.value} channel resubscribed without recovery, resyncing")
            task = asyncio.create_task(self._run_resync(kind))
            self._resync_tasks.add(task)
            task.add_done_callback(self._resync_tasks.discard)

        return on_resubscribe

    async def _run_resync(self, kind: EntityKind) -> None:
        try:
            await self.resync(kind)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Resync failed for {kind.value}: {e}")

    # =========================================================================
    # Queries
    # =========================================================================

    def get_account(self) -> Optional[AccountEvent]:
        """Latest account summary, if any."""
        accounts = self._accounts.list()
        return accounts[0] if accounts else None

    @property
    def margin_call(self) -> bool:
        account = self.get_account()
        return account.margin_call if account else False

    def get_funding_quantity(
        self,
        currency: Optional[CollateralCurrency] = None,
    ) -> Decimal:
        funding = self._funding.get((currency or self.currency).value)
        return funding.quantity if funding else ZERO

    def get_withdraw_pending_quantity(self) -> Decimal:
        return dsum(t.amount for t in self._transfers.list())

    def get_position_list(self) -> List[Position]:
        return self._positions.list()

    def get_position(self, instrument: str) -> Optional[Position]:
        return self._positions.get(instrument)

    def get_order_list(self) -> List[OpenedOrder]:
        return self._orders.list()

    def get_tpsl_list(self) -> List[TpSl]:
        return self._tpsl.list()

    def get_transfer_list(self) -> List[Transfer]:
        return self._transfers.list()

    def get_mark_price(self, instrument: str) -> Optional[Decimal]:
        mark = self._mark_prices.get(instrument)
        return mark.mark_price if mark else None

    def snapshot(self) -> LedgerSnapshot:
        """Copy the current store contents for calculation."""
        return LedgerSnapshot(
            funding={f.coin: f for f in self._funding.list()},
            positions=tuple(self._positions.list()),
            orders=tuple(self._orders.list()),
            mark_prices={m.name: m.mark_price for m in self._mark_prices.list()},
            pending_withdrawals=tuple(self._transfers.list()),
        )

    def get_available_balance(self) -> AvailableBalance:
        """Free collateral with the per-position and open-order breakdown."""
        return compute_available_balance(self.snapshot(), self.currency)

    def get_power(self, instrument: str) -> Power:
        """
        Maximum additional notional per side of an instrument.

        Args:
            instrument: Instrument name

        Returns:
            Power with exact buy / sell notional; use ``as_floats`` for display
        """
        snapshot = self.snapshot()
        available = compute_available_balance(snapshot, self.currency).available_balance
        return compute_power(snapshot, instrument, self.fees, available)

    def get_statistics(self) -> Dict[str, Any]:
        """Get ledger statistics."""
        return {
            "user_exchange_id": self.user_exchange_id,
            "listening": self._listening,
            "channels": sorted(kind.value for kind in self._handles),
            "funding": len(self._funding),
            "pending_withdrawals": len(self._transfers),
            "positions": len(self._positions),
            "orders": len(self._orders),
            "pruned_watermarks": self._orders.watermark_count + self._transfers.watermark_count,
            "tpsl": len(self._tpsl),
            "mark_prices": len(self._mark_prices),
            "fees_loaded": self._fees is not None,
        }
