"""
Change notifications for the account ledger.

One typed ``EventChannel`` per entity kind. The ledger emits on a channel
only after the merge guard accepted the record, so observers never see stale
or duplicate updates.
"""

from enum import Enum
from typing import Callable, Dict

from perp_sdk.core.events import EventChannel, Subscription
from perp_sdk.core.models import (
    AccountEvent,
    Funding,
    InstrumentMarkPrice,
    OpenedOrder,
    OrderFill,
    Position,
    TpSl,
    Transfer,
)


class EntityKind(str, Enum):
    """Entity kinds tracked by the ledger."""
    ACCOUNT = "account"
    FUNDING = "funding"
    TRANSFER = "transfer"
    POSITION = "position"
    ORDER = "order"
    ORDER_FILL = "order_fill"
    TPSL = "tpsl"
    MARK_PRICE = "mark_price"


class ChangeNotifier:
    """
    Typed notification channels of one ledger.

    Example:
        >>> notifier = ChangeNotifier()
        >>> sub = notifier.order.subscribe(lambda order: print(order.id))
        >>> sub.unsubscribe()
    """

    def __init__(self) -> None:
        self.account: EventChannel[AccountEvent] = EventChannel("account")
        self.funding: EventChannel[Funding] = EventChannel("funding")
        self.transfer: EventChannel[Transfer] = EventChannel("transfer")
        self.position: EventChannel[Position] = EventChannel("position")
        self.order: EventChannel[OpenedOrder] = EventChannel("order")
        self.order_fill: EventChannel[OrderFill] = EventChannel("order_fill")
        self.tpsl: EventChannel[TpSl] = EventChannel("tpsl")
        self.mark_price: EventChannel[InstrumentMarkPrice] = EventChannel("mark_price")

        self._channels: Dict[EntityKind, EventChannel] = {
            EntityKind.ACCOUNT: self.account,
            EntityKind.FUNDING: self.funding,
            EntityKind.TRANSFER: self.transfer,
            EntityKind.POSITION: self.position,
            EntityKind.ORDER: self.order,
            EntityKind.ORDER_FILL: self.order_fill,
            EntityKind.TPSL: self.tpsl,
            EntityKind.MARK_PRICE: self.mark_price,
        }

    def channel(self, kind: EntityKind) -> EventChannel:
        return self._channels[EntityKind(kind)]

    def subscribe(self, kind: EntityKind, listener: Callable) -> Subscription:
        """Register listener for one entity kind."""
        return self.channel(kind).subscribe(listener)

    def clear(self) -> None:
        """Drop every listener on every channel."""
        for channel in self._channels.values():
            channel.clear()
