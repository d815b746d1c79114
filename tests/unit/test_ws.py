"""
Tests for typed push channel subscriptions.
"""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from perp_sdk.core.models import Position, Side
from perp_sdk.exchange.ws import ChannelNames, ExchangeWsGateway

POSITION = {
    "instrument": "BTCUSDT",
    "side": "SELL",
    "quantity": "0.5",
    "avgPrice": "21000",
    "leverage": "5",
    "updatedAt": 1704067200000,
}


@pytest.fixture
def client():
    client = MagicMock()
    client.subscribe = AsyncMock(return_value=MagicMock())
    return client


@pytest.fixture
def gateway(client):
    return ExchangeWsGateway(client)


def registered_listener(client):
    """Raw data listener passed to ChannelClient.subscribe."""
    args, _ = client.subscribe.call_args
    return args[1]


class TestChannelNames:
    """Test channel naming."""

    def test_private_names_scoped_by_user(self):
        assert ChannelNames.positions("ex-1") == "position-ex-1"
        assert ChannelNames.order_fills("ex-1") == "orderFills-ex-1"
        assert ChannelNames.account("ex-1") == "user-ex-1"

    def test_market_names(self):
        assert ChannelNames.order_book_best("BTCUSDT") == "orderBook-BTCUSDT-best"
        assert ChannelNames.recent_trades("BTCUSDT") == "recent-trade-BTCUSDT"


class TestExchangeWsGateway:
    """Test parsing of channel publications."""

    @pytest.mark.asyncio
    async def test_listen_positions_parses_models(self, gateway, client):
        handler = MagicMock()
        on_resubscribe = MagicMock()

        await gateway.listen_positions("ex-1", handler, on_resubscribe)
        registered_listener(client)(POSITION)

        args, _ = client.subscribe.call_args
        assert args[0] == "position-ex-1"
        assert args[2] is on_resubscribe
        position = handler.call_args[0][0]
        assert isinstance(position, Position)
        assert position.side == Side.SELL
        assert position.avg_price == Decimal("21000")
        assert position.updated_at.year == 2024

    @pytest.mark.asyncio
    async def test_private_channels_carry_account_token(self, client):
        def token():
            return "jwt-A"

        gateway = ExchangeWsGateway(client, get_token=token)

        await gateway.listen_orders("ex-A", MagicMock())
        _, kwargs = client.subscribe.call_args
        assert kwargs["get_token"] is token

        await gateway.listen_instruments(MagicMock())
        _, kwargs = client.subscribe.call_args
        assert kwargs["get_token"] is None

    @pytest.mark.asyncio
    async def test_list_payload_split(self, gateway, client):
        handler = MagicMock()

        await gateway.listen_positions("ex-1", handler)
        registered_listener(client)([POSITION, {**POSITION, "instrument": "ETHUSDT"}])

        assert [c[0][0].instrument for c in handler.call_args_list] == ["BTCUSDT", "ETHUSDT"]

    @pytest.mark.asyncio
    async def test_malformed_record_skipped(self, gateway, client):
        """Test a record failing validation is skipped and the rest delivered."""
        handler = MagicMock()

        await gateway.listen_positions("ex-1", handler)
        registered_listener(client)([{"instrument": "BTCUSDT"}, POSITION])

        assert handler.call_count == 1

    @pytest.mark.asyncio
    async def test_instrument_added_to_book(self, gateway, client):
        handler = MagicMock()

        await gateway.listen_order_book_best("BTCUSDT", handler)
        registered_listener(client)({
            "t": 1704067200000,
            "bids": [{"price": "19999", "quantity": "1"}],
            "asks": [],
        })

        best = handler.call_args[0][0]
        assert best.instrument == "BTCUSDT"
        assert best.bids[0].price == Decimal("19999")

    @pytest.mark.asyncio
    async def test_order_fill_alias(self, gateway, client):
        handler = MagicMock()

        await gateway.listen_order_fills("ex-1", handler)
        registered_listener(client)({
            "order": "o1",
            "instrument": "BTCUSDT",
            "side": "BUY",
            "fillQuantity": "1",
            "fillPrice": "20000",
            "createdAt": "2024-01-01T00:00:00Z",
        })

        assert handler.call_args[0][0].order_id == "o1"
