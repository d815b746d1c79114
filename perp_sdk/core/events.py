"""
Typed publish/subscribe channels.

An ``EventChannel[T]`` carries one kind of notification. ``subscribe``
returns a ``Subscription`` handle whose ``unsubscribe`` removes exactly that
listener, so callers own the lifetime of their registrations.

Example:
    >>> fills = EventChannel[str]("order_fill")
    >>> sub = fills.subscribe(print)
    >>> fills.emit("filled")
    filled
    >>> sub.unsubscribe()
    >>> fills.listener_count
    0
"""

from typing import Callable, Generic, List, TypeVar

from .logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

Listener = Callable[[T], object]


class Subscription:
    """Handle returned by ``EventChannel.subscribe``."""

    def __init__(self, channel: "EventChannel", listener: Callable) -> None:
        self._channel = channel
        self._listener = listener
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        """Remove the listener. Calling it twice is harmless."""
        if not self._active:
            return
        self._active = False
        self._channel._remove(self._listener)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.unsubscribe()


class EventChannel(Generic[T]):
    """
    Synchronous notification channel for a single payload type.

    Listeners run in registration order. An exception raised by one listener
    is logged and does not prevent the remaining listeners from running.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._listeners: List[Callable[[T], object]] = []

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def subscribe(self, listener: Callable[[T], object]) -> Subscription:
        """Register a listener and return its handle."""
        self._listeners.append(listener)
        return Subscription(self, listener)

    def emit(self, payload: T) -> None:
        """Deliver payload to a snapshot of the current listeners."""
        for listener in list(self._listeners):
            try:
                listener(payload)
            except Exception as e:
                logger.warning(f"Listener error on {self.name}: {e}")

    def clear(self) -> None:
        """Drop every listener."""
        self._listeners.clear()

    def _remove(self, listener: Callable) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass
