"""
Push channel client.

Centrifugo JSON protocol client over websockets. Channel names are
namespaced with the deployment prefix (``<prefix>:<name>``). Several
listeners may share one channel; the server subscription is sent for the
first listener and removed with the last one.

After a connection loss the client reconnects with exponential backoff and
resubscribes every channel, asking the server to recover missed publications.
When the server cannot recover a channel, its ``on_resubscribe`` callbacks
and the client-wide ``on_recover`` channel fire so owners can resync.
"""

import asyncio
import json
from dataclasses import dataclass, field
from itertools import count
from typing import Any, Callable, Dict, List, Optional

import websockets
from websockets.asyncio.client import ClientConnection

from perp_sdk.core import get_logger
from perp_sdk.core.events import EventChannel
from perp_sdk.core.exceptions import ChannelError

logger = get_logger(__name__)

Listener = Callable[[Any], Any]

# Server unsubscribe reasons after which the channel is subscribed again
AUTH_UNSUBSCRIBE_REASONS = frozenset({"jwt malformed", "token expired", "unauthorized"})


@dataclass
class _ChannelState:
    """Client-side state of one server subscription."""
    name: str
    listeners: Dict[int, Listener] = field(default_factory=dict)
    recover_callbacks: Dict[int, Callable[[], Any]] = field(default_factory=dict)
    get_token: Optional[Callable[[], Optional[str]]] = None
    subscribed: bool = False
    recoverable: bool = False
    epoch: Optional[str] = None
    offset: int = 0


class ChannelSubscription:
    """Handle of one listener registration on a channel."""

    def __init__(self, client: "ChannelClient", channel: str, listener_id: int):
        self._client = client
        self._channel = channel
        self._listener_id = listener_id
        self._active = True

    @property
    def channel(self) -> str:
        return self._channel

    @property
    def active(self) -> bool:
        return self._active

    async def unsubscribe(self) -> None:
        """Remove the listener; the last one unsubscribes the channel."""
        if not self._active:
            return
        self._active = False
        await self._client._remove_listener(self._channel, self._listener_id)


class ChannelClient:
    """
    Centrifugo pub/sub client.

    Example:
        >>> client = ChannelClient("wss://ws/connection/websocket", "futures-perp")
        >>> await client.connect()
        >>> sub = await client.subscribe("instruments", print)
        >>> await sub.unsubscribe()
        >>> await client.close()
    """

    def __init__(
        self,
        uri: str,
        prefix: str,
        get_token: Optional[Callable[[], Optional[str]]] = None,
        request_timeout: float = 10.0,
        reconnect_delay: float = 1.0,
        max_reconnect_delay: float = 60.0,
        resubscribe_delay: float = 5.0,
    ):
        """
        Initialize ChannelClient.

        Args:
            uri: Websocket URL
            prefix: Namespace prefixed to every channel name
            get_token: Returns the access token sent with subscriptions
            request_timeout: Seconds to wait for a command reply
            reconnect_delay: Initial reconnect delay in seconds
            max_reconnect_delay: Maximum reconnect delay in seconds
            resubscribe_delay: Delay before resubscribing after an auth unsubscribe
        """
        self.uri = uri
        self.prefix = prefix
        self._get_token = get_token
        self._request_timeout = request_timeout
        self.reconnect_delay = reconnect_delay
        self.max_reconnect_delay = max_reconnect_delay
        self.resubscribe_delay = resubscribe_delay

        # Connection state
        self._ws: Optional[ClientConnection] = None
        self._connected = False
        self._intentional_close = False
        self._connect_lock = asyncio.Lock()

        # Commands and channels
        self._command_ids = count(1)
        self._listener_ids = count(1)
        self._pending: Dict[int, asyncio.Future] = {}
        self._channels: Dict[str, _ChannelState] = {}

        # Background tasks
        self._message_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._background: set[asyncio.Task] = set()

        # Notifications
        self.on_connected: EventChannel[str] = EventChannel("connected")
        self.on_disconnected: EventChannel[str] = EventChannel("disconnected")
        self.on_recover: EventChannel[str] = EventChannel("recover")

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def is_connected(self) -> bool:
        return self._connected and self._ws is not None

    def full_name(self, name: str) -> str:
        return f"{self.prefix}:{name}"

    # =========================================================================
    # Connection Management
    # =========================================================================

    async def connect(self) -> None:
        """
        Open the websocket and send the connect command.

        Raises:
            ChannelError: If the server rejects the connection
        """
        async with self._connect_lock:
            if self.is_connected:
                return

            self._intentional_close = False
            logger.info(f"Connecting to {self.uri}")
            self._ws = await websockets.connect(self.uri)
            self._connected = True
            self._message_task = asyncio.create_task(self._message_loop(self._ws))

            try:
                await self._command({"connect": {"name": "perp-sdk"}})
            except Exception:
                await self._close_socket()
                raise

            logger.info("Channel client connected")
            self.on_connected.emit(self.uri)

    async def close(self) -> None:
        """Close the connection and stop reconnecting."""
        self._intentional_close = True

        for task in (self._reconnect_task, *self._background):
            if task and not task.done():
                task.cancel()
        self._reconnect_task = None
        self._background.clear()

        await self._close_socket()
        for state in self._channels.values():
            state.subscribed = False
        logger.debug("Channel client closed")

    async def _close_socket(self) -> None:
        self._connected = False
        ws, self._ws = self._ws, None

        if self._message_task and not self._message_task.done():
            self._message_task.cancel()
            try:
                await self._message_task
            except asyncio.CancelledError:
                pass
        self._message_task = None

        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                logger.debug(f"Error closing websocket: {e}")

        self._fail_pending(ChannelError("Connection closed"))

    async def _reconnect(self) -> None:
        """Reconnect with exponential backoff, then resubscribe every channel."""
        delay = self.reconnect_delay
        attempt = 0
        while not self._intentional_close:
            attempt += 1
            logger.warning(f"Reconnection attempt {attempt} in {delay:.1f}s")
            await asyncio.sleep(delay)
            delay = min(delay * 2, self.max_reconnect_delay)

            try:
                await self.connect()
            except Exception as e:
                logger.warning(f"Reconnect failed: {e}")
                continue

            await self._resubscribe_all()
            return

    async def _resubscribe_all(self) -> None:
        for state in list(self._channels.values()):
            try:
                await self._send_subscribe(state)
            except Exception as e:
                logger.error(f"Resubscribe failed for {state.name}: {e}")

    # =========================================================================
    # Subscription Management
    # =========================================================================

    async def subscribe(
        self,
        name: str,
        listener: Listener,
        on_resubscribe: Optional[Callable[[], Any]] = None,
        get_token: Optional[Callable[[], Optional[str]]] = None,
    ) -> ChannelSubscription:
        """
        Add a listener to a channel.

        Args:
            name: Channel name without prefix
            listener: Called with each publication's data
            on_resubscribe: Called when the channel was resubscribed without recovery
            get_token: Token source for this channel; the client-wide one by default

        Returns:
            Handle removing this listener

        Raises:
            ChannelError: If the server rejects the subscription
        """
        if not self.is_connected:
            await self.connect()

        listener_id = next(self._listener_ids)
        state = self._channels.get(name)
        first = state is None
        if first:
            state = _ChannelState(name=name, get_token=get_token)
            self._channels[name] = state

        state.listeners[listener_id] = listener
        if on_resubscribe is not None:
            state.recover_callbacks[listener_id] = on_resubscribe

        if first:
            try:
                await self._send_subscribe(state)
            except Exception:
                self._channels.pop(name, None)
                raise

        return ChannelSubscription(self, name, listener_id)

    async def _remove_listener(self, name: str, listener_id: int) -> None:
        state = self._channels.get(name)
        if state is None:
            return

        state.listeners.pop(listener_id, None)
        state.recover_callbacks.pop(listener_id, None)
        if state.listeners:
            return

        del self._channels[name]
        if state.subscribed and self.is_connected:
            await self._command({"unsubscribe": {"channel": self.full_name(name)}})
            logger.debug(f"Unsubscribed from {name}")

    async def _send_subscribe(self, state: _ChannelState) -> None:
        request: Dict[str, Any] = {"channel": self.full_name(state.name)}

        get_token = state.get_token or self._get_token
        token = get_token() if get_token else None
        if token:
            request["data"] = {"accessToken": token}

        recovering = state.recoverable and state.epoch is not None
        if recovering:
            request.update(recover=True, epoch=state.epoch, offset=state.offset)

        reply = await self._command({"subscribe": request})
        state.subscribed = True
        state.recoverable = bool(reply.get("recoverable"))
        state.epoch = reply.get("epoch", state.epoch)
        state.offset = int(reply.get("offset", state.offset) or 0)
        logger.debug(f"Subscribed to {state.name}")

        for publication in reply.get("publications") or []:
            await self._deliver(state, publication)

        was_recovering = recovering or reply.get("was_recovering", False)
        if was_recovering and not reply.get("recovered", False):
            self._notify_recover(state)

    def _notify_recover(self, state: _ChannelState) -> None:
        logger.warning(f"Channel {state.name} resubscribed without recovery")
        for callback in list(state.recover_callbacks.values()):
            try:
                callback()
            except Exception as e:
                logger.warning(f"Recover callback error on {state.name}: {e}")
        self.on_recover.emit(state.name)

    # =========================================================================
    # Commands
    # =========================================================================

    async def _command(self, command: Dict[str, Any]) -> Dict[str, Any]:
        """Send a command and wait for its reply body."""
        if self._ws is None:
            raise ChannelError("Not connected")

        command_id = next(self._command_ids)
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[command_id] = future

        try:
            await self._ws.send(json.dumps({"id": command_id, **command}))
            reply = await asyncio.wait_for(future, timeout=self._request_timeout)
        except asyncio.TimeoutError as e:
            raise ChannelError(f"No reply to {next(iter(command))} command") from e
        except websockets.ConnectionClosed as e:
            raise ChannelError(f"Connection closed: {e}") from e
        finally:
            self._pending.pop(command_id, None)

        error = reply.get("error")
        if error:
            raise ChannelError(
                error.get("message", "Command failed"),
                code=str(error.get("code", "")),
            )

        body = {k: v for k, v in reply.items() if k != "id"}
        return next(iter(body.values()), {}) if body else {}

    def _fail_pending(self, error: Exception) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)
        self._pending.clear()

    # =========================================================================
    # Message Processing
    # =========================================================================

    async def _message_loop(self, ws: ClientConnection) -> None:
        """Main message receiving loop."""
        try:
            async for raw in ws:
                await self._handle_frame(raw)

        except asyncio.CancelledError:
            logger.debug("Message loop cancelled")
            raise

        except websockets.ConnectionClosed as e:
            logger.warning(f"Connection closed: {e}")

        except Exception as e:
            logger.error(f"Message loop error: {e}")

        finally:
            if self._ws is ws:
                self._connected = False
                self._ws = None
                self._fail_pending(ChannelError("Connection lost"))
                for state in self._channels.values():
                    state.subscribed = False
                self.on_disconnected.emit(self.uri)

                if not self._intentional_close:
                    self._reconnect_task = asyncio.create_task(self._reconnect())

    async def _handle_frame(self, raw: str | bytes) -> None:
        """A frame may carry several newline-delimited JSON messages."""
        text = raw.decode() if isinstance(raw, bytes) else raw
        for line in text.splitlines():
            if not line.strip():
                continue
            try:
                message = json.loads(line)
            except json.JSONDecodeError as e:
                logger.error(f"JSON decode error: {e}")
                continue
            await self._handle_message(message)

    async def _handle_message(self, message: Dict[str, Any]) -> None:
        # Server ping
        if not message:
            if self._ws is not None:
                await self._ws.send("{}")
            return

        if "id" in message:
            future = self._pending.get(message["id"])
            if future is not None and not future.done():
                future.set_result(message)
            return

        push = message.get("push")
        if push:
            await self._handle_push(push)

    async def _handle_push(self, push: Dict[str, Any]) -> None:
        channel = push.get("channel", "")
        name = channel[len(self.prefix) + 1:] if channel.startswith(f"{self.prefix}:") else channel
        state = self._channels.get(name)
        if state is None:
            return

        if "pub" in push:
            await self._deliver(state, push["pub"])
        elif "unsubscribe" in push:
            state.subscribed = False
            reason = (push["unsubscribe"] or {}).get("reason", "")
            logger.warning(f"Server unsubscribed {name}: {reason}")
            if reason in AUTH_UNSUBSCRIBE_REASONS:
                self._spawn(self._delayed_resubscribe(name))

    async def _delayed_resubscribe(self, name: str) -> None:
        await asyncio.sleep(self.resubscribe_delay)
        state = self._channels.get(name)
        if state is None or state.subscribed or not self.is_connected:
            return
        try:
            await self._send_subscribe(state)
        except Exception as e:
            logger.error(f"Resubscribe failed for {name}: {e}")

    async def _deliver(self, state: _ChannelState, publication: Dict[str, Any]) -> None:
        if "offset" in publication:
            state.offset = int(publication["offset"])

        data = publication.get("data")
        for listener in list(state.listeners.values()):
            await self._invoke_listener(state.name, listener, data)

    async def _invoke_listener(self, name: str, listener: Listener, data: Any) -> None:
        """Invoke listener, handling both sync and async callbacks."""
        try:
            result = listener(data)
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            logger.error(f"Listener error for {name}: {e}")

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def channel_names(self) -> List[str]:
        return sorted(self._channels)
