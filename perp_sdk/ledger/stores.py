"""
Entity stores for the account ledger.

Each store is a keyed map of one record kind governed by its own
``MergeGuard``. Reads return the stored frozen records or fresh lists, never
the internal map.
"""

from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Generic, Hashable, Iterator, List, Optional, TypeVar

from perp_sdk.core.models import (
    AccountEvent,
    Funding,
    InstrumentMarkPrice,
    OpenedOrder,
    Position,
    TpSl,
    Transfer,
)

from .merge import MergeGuard

T = TypeVar("T")


class EntityStore(Generic[T]):
    """
    Keyed store that only accepts strictly newer records.

    Args:
        name: Store name used in log messages
        key_of: Extracts the entity key from a record
        timestamp_of: Extracts the record timestamp
    """

    def __init__(
        self,
        name: str,
        key_of: Callable[[T], Hashable],
        timestamp_of: Callable[[T], datetime] = lambda record: record.updated_at,
    ) -> None:
        self.name = name
        self._key_of = key_of
        self._timestamp_of = timestamp_of
        self._guard: MergeGuard[T] = MergeGuard(name)

    def __len__(self) -> int:
        return len(self._guard)

    def upsert_if_newer(self, record: T) -> bool:
        """Store record if it is newer than the held one. Returns acceptance."""
        return self._guard.try_apply(
            self._key_of(record), self._timestamp_of(record), record
        )

    def get(self, key: Hashable) -> Optional[T]:
        return self._guard.get(key)

    def list(self) -> List[T]:
        return list(self._guard.values())

    def clear(self) -> int:
        return self._guard.clear()

    @property
    def watermark_count(self) -> int:
        return self._guard.watermark_count

    @contextmanager
    def fetching(self) -> Iterator[None]:
        """Mark a bulk fetch of this store's records as in flight."""
        yield


class PrunableStore(EntityStore[T]):
    """
    Store whose records leave it once they are no longer live.

    ``upsert_if_newer`` merges the record and, if the merged record fails
    ``is_live``, removes it straight away. While a bulk fetch is in flight
    the removal keeps the timestamp as a watermark, so an older live copy in
    that snapshot is still rejected. Watermarks are dropped once the last
    in-flight fetch has been merged; push channels deliver each key in
    order, so only snapshots can carry an older copy.
    """

    def __init__(
        self,
        name: str,
        key_of: Callable[[T], Hashable],
        is_live: Callable[[T], bool],
        timestamp_of: Callable[[T], datetime] = lambda record: record.updated_at,
    ) -> None:
        super().__init__(name, key_of, timestamp_of)
        self._is_live = is_live
        self._fetches_in_flight = 0

    def upsert_if_newer(self, record: T) -> bool:
        accepted = super().upsert_if_newer(record)
        if accepted and not self._is_live(record):
            key = self._key_of(record)
            if self._fetches_in_flight:
                self._guard.discard(key)
            else:
                self._guard.forget(key)
        return accepted

    @contextmanager
    def fetching(self) -> Iterator[None]:
        self._fetches_in_flight += 1
        try:
            yield
        finally:
            self._fetches_in_flight -= 1
            if not self._fetches_in_flight:
                self._guard.drop_watermarks()


class OpenOrderStore(PrunableStore[OpenedOrder]):
    """Open orders by id; terminal orders are pruned on merge."""

    def __init__(self) -> None:
        super().__init__(
            "order",
            key_of=lambda order: order.id,
            is_live=lambda order: order.is_active,
        )

    def for_instrument(self, instrument: str) -> List[OpenedOrder]:
        return [o for o in self.list() if o.instrument == instrument]


class PendingWithdrawalStore(PrunableStore[Transfer]):
    """Pending futures-to-balance transfers by id."""

    def __init__(self) -> None:
        super().__init__(
            "transfer",
            key_of=lambda transfer: transfer.id,
            is_live=lambda transfer: transfer.is_pending_withdrawal,
        )


def account_store() -> EntityStore[AccountEvent]:
    return EntityStore("account", key_of=lambda event: event.user)


def funding_store() -> EntityStore[Funding]:
    return EntityStore("funding", key_of=lambda funding: funding.coin)


def position_store() -> EntityStore[Position]:
    return EntityStore("position", key_of=lambda position: position.instrument)


def tpsl_store() -> EntityStore[TpSl]:
    return EntityStore("tpsl", key_of=lambda tpsl: tpsl.id)


def mark_price_store() -> EntityStore[InstrumentMarkPrice]:
    return EntityStore("mark_price", key_of=lambda mark: mark.name)
