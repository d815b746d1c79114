"""Fake exchange sources and record factories for testing."""

from .data_mock import (
    T0,
    at,
    make_account_event,
    make_funding,
    make_instrument_state,
    make_mark_price,
    make_order,
    make_position,
    make_tpsl,
    make_transfer,
)
from .exchange_mock import (
    FakeChannelHandle,
    FakeChannelSource,
    FakeSnapshotSource,
    make_response,
)
from .ws_mock import FakeWebSocket, wait_until

__all__ = [
    "FakeSnapshotSource",
    "FakeChannelSource",
    "FakeChannelHandle",
    "FakeWebSocket",
    "wait_until",
    "make_response",
    "T0",
    "at",
    "make_account_event",
    "make_funding",
    "make_instrument_state",
    "make_mark_price",
    "make_order",
    "make_position",
    "make_tpsl",
    "make_transfer",
]
