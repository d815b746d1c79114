"""
Fake exchange sources for testing.

``FakeSnapshotSource`` serves bulk REST reads from in-memory lists and can
hold a read until the test releases it, which lets tests interleave push
records with in-flight snapshot fetches. ``FakeChannelSource`` records the
handlers registered by ``listen_*`` and lets tests push records into them.
"""

import asyncio
from collections import defaultdict
from decimal import Decimal
from typing import Any, Callable, Optional
from unittest.mock import AsyncMock, MagicMock

from perp_sdk.core.models import (
    ExchangeAccount,
    Fees,
    InstrumentMetrics,
    MarketInfo,
)

from .data_mock import T0


def make_response(status=200, data=None, headers=None, reason="OK"):
    """Fake aiohttp response usable as ``async with``."""
    response = MagicMock()
    response.status = status
    response.headers = headers or {}
    response.reason = reason
    response.json = AsyncMock(return_value=data)
    response.text = AsyncMock(return_value="")

    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=response)
    context.__aexit__ = AsyncMock(return_value=False)
    return context


class FakeSnapshotSource:
    """
    In-memory bulk reads.

    Read names: me, market_info, funding, transfers, positions, orders,
    tpsl, metrics.

    Example:
        >>> source = FakeSnapshotSource()
        >>> source.positions.append(make_position())
        >>> gate = source.hold("positions")
        >>> ...
        >>> gate.set()
    """

    def __init__(self):
        self.account = ExchangeAccount(
            id="user-1", exchange_id="ex-1", margin_call=False, updated_at=T0
        )
        self.market_info = MarketInfo(
            state="OPEN",
            fees=Fees(maker=Decimal("0.0002"), taker=Decimal("0.001")),
            updated_at=T0,
        )
        self.funding: list = []
        self.transfers: list = []
        self.positions: list = []
        self.orders: list = []
        self.tpsl: list = []
        self.metrics: list[InstrumentMetrics] = []

        self.calls: dict[str, int] = defaultdict(int)
        self.transfer_queries: list[dict[str, Any]] = []
        self._gates: dict[str, asyncio.Event] = {}
        self._failures: dict[str, Exception] = {}

    def hold(self, name: str) -> asyncio.Event:
        """Block a read until the returned event is set."""
        gate = asyncio.Event()
        self._gates[name] = gate
        return gate

    def fail(self, name: str, error: Exception) -> None:
        self._failures[name] = error

    async def _serve(self, name: str, value: Any) -> Any:
        self.calls[name] += 1
        gate = self._gates.get(name)
        if gate is not None:
            await gate.wait()
        if name in self._failures:
            raise self._failures[name]
        return list(value) if isinstance(value, list) else value

    async def me(self) -> ExchangeAccount:
        return await self._serve("me", self.account)

    async def get_market_info(self) -> MarketInfo:
        return await self._serve("market_info", self.market_info)

    async def get_funding(self) -> list:
        return await self._serve("funding", self.funding)

    async def get_transfers(self, type=None, status=None) -> list:
        self.transfer_queries.append({"type": type, "status": status})
        return await self._serve("transfers", self.transfers)

    async def get_positions(self) -> list:
        return await self._serve("positions", self.positions)

    async def get_opened_orders(self) -> list:
        return await self._serve("orders", self.orders)

    async def get_tpsl(self) -> list:
        return await self._serve("tpsl", self.tpsl)

    async def get_instruments_metrics(self) -> list:
        return await self._serve("metrics", self.metrics)


class FakeChannelHandle:
    """Subscription handle recording its unsubscribe."""

    def __init__(self, source: "FakeChannelSource", name: str, error: Optional[Exception] = None):
        self.source = source
        self.name = name
        self.unsubscribed = False
        self._error = error

    async def unsubscribe(self) -> None:
        if self._error is not None:
            raise self._error
        self.unsubscribed = True
        self.source.handlers.pop(self.name, None)
        self.source.resubscribe_callbacks.pop(self.name, None)


class FakeChannelSource:
    """
    In-memory push channels.

    Channel names: account, funding, transfers, positions, orders,
    order_fills, tpsl, instruments.
    """

    def __init__(self):
        self.handlers: dict[str, Callable[[Any], Any]] = {}
        self.resubscribe_callbacks: dict[str, Callable[[], Any]] = {}
        self.scopes: dict[str, Optional[str]] = {}
        self.handles: list[FakeChannelHandle] = []
        self.subscribe_failures: dict[str, Exception] = {}
        self.unsubscribe_failures: dict[str, Exception] = {}

    async def _listen(
        self,
        name: str,
        scope: Optional[str],
        handler: Callable[[Any], Any],
        on_resubscribe: Optional[Callable[[], Any]],
    ) -> FakeChannelHandle:
        await asyncio.sleep(0)
        if name in self.subscribe_failures:
            raise self.subscribe_failures[name]

        self.handlers[name] = handler
        self.scopes[name] = scope
        if on_resubscribe is not None:
            self.resubscribe_callbacks[name] = on_resubscribe

        handle = FakeChannelHandle(self, name, self.unsubscribe_failures.get(name))
        self.handles.append(handle)
        return handle

    def push(self, name: str, record: Any) -> None:
        """Deliver a record to the handler of a channel."""
        self.handlers[name](record)

    def recover(self, name: str) -> None:
        """Simulate a resubscription without history recovery."""
        self.resubscribe_callbacks[name]()

    async def listen_account(self, user_exchange_id, handler, on_resubscribe=None):
        return await self._listen("account", user_exchange_id, handler, on_resubscribe)

    async def listen_funding(self, user_exchange_id, handler, on_resubscribe=None):
        return await self._listen("funding", user_exchange_id, handler, on_resubscribe)

    async def listen_transfers(self, user_exchange_id, handler, on_resubscribe=None):
        return await self._listen("transfers", user_exchange_id, handler, on_resubscribe)

    async def listen_positions(self, user_exchange_id, handler, on_resubscribe=None):
        return await self._listen("positions", user_exchange_id, handler, on_resubscribe)

    async def listen_orders(self, user_exchange_id, handler, on_resubscribe=None):
        return await self._listen("orders", user_exchange_id, handler, on_resubscribe)

    async def listen_order_fills(self, user_exchange_id, handler, on_resubscribe=None):
        return await self._listen("order_fills", user_exchange_id, handler, on_resubscribe)

    async def listen_tpsl(self, user_exchange_id, handler, on_resubscribe=None):
        return await self._listen("tpsl", user_exchange_id, handler, on_resubscribe)

    async def listen_instruments(self, handler, on_resubscribe=None):
        return await self._listen("instruments", None, handler, on_resubscribe)
