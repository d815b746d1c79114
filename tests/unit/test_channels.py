"""
Tests for the push channel client.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from perp_sdk.core.exceptions import ChannelError
from perp_sdk.exchange.channels import ChannelClient

from tests.mocks import FakeWebSocket, wait_until

PREFIX = "futures-perp"


def make_client(**kwargs) -> ChannelClient:
    return ChannelClient(
        "wss://ws.test/connection/websocket",
        PREFIX,
        reconnect_delay=0,
        resubscribe_delay=0,
        **kwargs,
    )


@pytest.fixture
def connect_patch():
    """Patch websockets.connect; set ``side_effect`` to the sockets to hand out."""
    with patch("perp_sdk.exchange.channels.websockets.connect", new_callable=AsyncMock) as mock_connect:
        yield mock_connect


# =============================================================================
# Connection
# =============================================================================


class TestChannelClientConnect:
    """Test connection handshake."""

    @pytest.mark.asyncio
    async def test_connect_sends_connect_command(self, connect_patch):
        ws = FakeWebSocket()
        connect_patch.side_effect = [ws]
        client = make_client()
        connected = MagicMock()
        client.on_connected.subscribe(connected)

        await client.connect()

        assert client.is_connected
        assert ws.sent[0] == {"id": 1, "connect": {"name": "perp-sdk"}}
        connected.assert_called_once_with(client.uri)
        await client.close()
        assert not client.is_connected
        assert ws.closed

    @pytest.mark.asyncio
    async def test_rejected_connect(self, connect_patch):
        ws = FakeWebSocket({"connect": {"error": {"code": 3500, "message": "invalid token"}}})
        connect_patch.side_effect = [ws]
        client = make_client()

        with pytest.raises(ChannelError, match="invalid token"):
            await client.connect()

        assert not client.is_connected

    @pytest.mark.asyncio
    async def test_ping_answered(self, connect_patch):
        ws = FakeWebSocket()
        connect_patch.side_effect = [ws]
        client = make_client()
        await client.connect()

        ws.feed({})
        await wait_until(lambda: {} in ws.sent)

        await client.close()


# =============================================================================
# Subscriptions
# =============================================================================


class TestChannelClientSubscribe:
    """Test subscribe, delivery and unsubscribe."""

    @pytest.mark.asyncio
    async def test_subscribe_with_token_and_deliver(self, connect_patch):
        """Test subscribe carries the access token and pushes reach the listener."""
        ws = FakeWebSocket()
        connect_patch.side_effect = [ws]
        client = make_client(get_token=lambda: "jwt-1")
        received = []

        await client.subscribe("position-ex-1", received.append)
        ws.feed({"push": {"channel": f"{PREFIX}:position-ex-1", "pub": {"data": {"q": 1}, "offset": 4}}})
        await wait_until(lambda: received)

        assert ws.commands("subscribe") == [
            {"channel": f"{PREFIX}:position-ex-1", "data": {"accessToken": "jwt-1"}}
        ]
        assert received == [{"q": 1}]
        assert client._channels["position-ex-1"].offset == 4
        await client.close()

    @pytest.mark.asyncio
    async def test_channel_token_overrides_client_token(self, connect_patch):
        """Test each account's private channel is subscribed with its own token."""
        ws = FakeWebSocket()
        connect_patch.side_effect = [ws]
        client = make_client()

        await client.subscribe("position-ex-A", MagicMock(), get_token=lambda: "jwt-A")
        await client.subscribe("position-ex-B", MagicMock(), get_token=lambda: "jwt-B")
        await client.subscribe("instruments", MagicMock())

        assert ws.commands("subscribe") == [
            {"channel": f"{PREFIX}:position-ex-A", "data": {"accessToken": "jwt-A"}},
            {"channel": f"{PREFIX}:position-ex-B", "data": {"accessToken": "jwt-B"}},
            {"channel": f"{PREFIX}:instruments"},
        ]
        await client.close()

    @pytest.mark.asyncio
    async def test_async_listener(self, connect_patch):
        ws = FakeWebSocket()
        connect_patch.side_effect = [ws]
        client = make_client()
        listener = AsyncMock()

        await client.subscribe("instruments", listener)
        ws.feed({"push": {"channel": f"{PREFIX}:instruments", "pub": {"data": [1, 2]}}})
        await wait_until(lambda: listener.await_count == 1)

        listener.assert_awaited_once_with([1, 2])
        await client.close()

    @pytest.mark.asyncio
    async def test_newline_delimited_frame(self, connect_patch):
        ws = FakeWebSocket()
        connect_patch.side_effect = [ws]
        client = make_client()
        received = []

        await client.subscribe("matcher", received.append)
        channel = f"{PREFIX}:matcher"
        ws.feed_raw(
            f'{{"push":{{"channel":"{channel}","pub":{{"data":"a"}}}}}}\n'
            f'{{"push":{{"channel":"{channel}","pub":{{"data":"b"}}}}}}'
        )
        await wait_until(lambda: len(received) == 2)

        assert received == ["a", "b"]
        await client.close()

    @pytest.mark.asyncio
    async def test_listeners_share_one_subscription(self, connect_patch):
        """Test the server subscription is removed with the last listener only."""
        ws = FakeWebSocket()
        connect_patch.side_effect = [ws]
        client = make_client()

        first = await client.subscribe("instruments", MagicMock())
        second = await client.subscribe("instruments", MagicMock())
        assert len(ws.commands("subscribe")) == 1

        await first.unsubscribe()
        assert ws.commands("unsubscribe") == []

        await second.unsubscribe()
        await second.unsubscribe()
        assert ws.commands("unsubscribe") == [{"channel": f"{PREFIX}:instruments"}]
        assert client.channel_names() == []
        await client.close()

    @pytest.mark.asyncio
    async def test_rejected_subscribe_removes_channel(self, connect_patch):
        ws = FakeWebSocket({"subscribe": {"error": {"code": 103, "message": "permission denied"}}})
        connect_patch.side_effect = [ws]
        client = make_client()

        with pytest.raises(ChannelError) as exc_info:
            await client.subscribe("order-ex-1", MagicMock())

        assert exc_info.value.code == "103"
        assert client.channel_names() == []
        await client.close()

    @pytest.mark.asyncio
    async def test_listener_error_isolated(self, connect_patch):
        ws = FakeWebSocket()
        connect_patch.side_effect = [ws]
        client = make_client()
        good = MagicMock()

        await client.subscribe("instruments", MagicMock(side_effect=ValueError("bad")))
        await client.subscribe("instruments", good)
        ws.feed({"push": {"channel": f"{PREFIX}:instruments", "pub": {"data": 1}}})
        await wait_until(lambda: good.called)

        good.assert_called_once_with(1)
        await client.close()


# =============================================================================
# Recovery
# =============================================================================


class TestChannelClientRecovery:
    """Test reconnect and resubscribe."""

    @pytest.mark.asyncio
    async def test_reconnect_resubscribes_with_recovery(self, connect_patch):
        """Test a dropped connection resubscribes from the last offset."""
        subscribe_reply = {"subscribe": {"recoverable": True, "epoch": "e1", "offset": 3}}
        first_ws = FakeWebSocket({"subscribe": subscribe_reply})
        second_ws = FakeWebSocket({"subscribe": {"subscribe": {
            "recoverable": True, "epoch": "e1", "offset": 9, "recovered": True,
        }}})
        connect_patch.side_effect = [first_ws, second_ws]
        client = make_client()
        on_resubscribe = MagicMock()
        disconnected = MagicMock()
        client.on_disconnected.subscribe(disconnected)

        await client.subscribe("position-ex-1", MagicMock(), on_resubscribe)
        first_ws.feed({"push": {"channel": f"{PREFIX}:position-ex-1", "pub": {"data": {}, "offset": 7}}})
        await wait_until(lambda: client._channels["position-ex-1"].offset == 7)

        first_ws.drop()
        await wait_until(lambda: second_ws.commands("subscribe"))

        disconnected.assert_called_once()
        assert second_ws.commands("subscribe") == [{
            "channel": f"{PREFIX}:position-ex-1",
            "recover": True,
            "epoch": "e1",
            "offset": 7,
        }]
        on_resubscribe.assert_not_called()
        await client.close()

    @pytest.mark.asyncio
    async def test_unrecovered_channel_notifies(self, connect_patch):
        first_ws = FakeWebSocket({"subscribe": {"subscribe": {"recoverable": True, "epoch": "e1"}}})
        second_ws = FakeWebSocket({"subscribe": {"subscribe": {
            "recoverable": True, "epoch": "e2", "recovered": False,
        }}})
        connect_patch.side_effect = [first_ws, second_ws]
        client = make_client()
        on_resubscribe = MagicMock()
        recovered = MagicMock()
        client.on_recover.subscribe(recovered)

        await client.subscribe("order-ex-1", MagicMock(), on_resubscribe)
        first_ws.drop()
        await wait_until(lambda: on_resubscribe.called)

        recovered.assert_called_once_with("order-ex-1")
        await client.close()

    @pytest.mark.asyncio
    async def test_auth_unsubscribe_resubscribes(self, connect_patch):
        ws = FakeWebSocket()
        connect_patch.side_effect = [ws]
        client = make_client(get_token=lambda: "jwt-2")

        await client.subscribe("funding-ex-1", MagicMock())
        ws.feed({"push": {
            "channel": f"{PREFIX}:funding-ex-1",
            "unsubscribe": {"code": 2500, "reason": "token expired"},
        }})
        state = client._channels["funding-ex-1"]
        await wait_until(lambda: len(ws.commands("subscribe")) == 2 and state.subscribed)

        assert ws.commands("subscribe")[1]["data"] == {"accessToken": "jwt-2"}
        await client.close()

    @pytest.mark.asyncio
    async def test_close_stops_reconnect(self, connect_patch):
        ws = FakeWebSocket()
        connect_patch.side_effect = [ws]
        client = make_client()
        await client.connect()

        await client.close()

        assert connect_patch.await_count == 1
        assert client._reconnect_task is None
