"""
Monotonic merge guard.

Applies a record for a key only if it is strictly newer than what is already
held for that key. The same guard is used for bulk snapshot records and push
records, so the order in which the two sources arrive never matters for the
final state.
"""

from datetime import datetime
from typing import Any, Dict, Generic, Hashable, Iterator, Optional, Tuple, TypeVar

from perp_sdk.core import get_logger
from perp_sdk.core.utils import parse_instant

logger = get_logger(__name__)

T = TypeVar("T")


class MergeGuard(Generic[T]):
    """
    Keyed "apply only if newer" register.

    Besides live records the guard remembers a watermark for keys whose
    record was discarded with ``discard``, so a late, older copy of a pruned
    record cannot bring it back.

    Example:
        >>> guard = MergeGuard[str]("orders")
        >>> guard.try_apply("o1", 5, "filled")
        True
        >>> guard.try_apply("o1", 3, "new")
        False
        >>> guard.get("o1")
        'filled'
    """

    def __init__(self, name: str = "records") -> None:
        self.name = name
        self._records: Dict[Hashable, Tuple[datetime, T]] = {}
        self._watermarks: Dict[Hashable, datetime] = {}

    def __len__(self) -> int:
        return len(self._records)

    @property
    def watermark_count(self) -> int:
        """Number of discarded keys still remembered."""
        return len(self._watermarks)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._records

    def latest_timestamp(self, key: Hashable) -> Optional[datetime]:
        """Timestamp of the newest record ever accepted for key."""
        held = self._records.get(key)
        if held is not None:
            return held[0]
        return self._watermarks.get(key)

    def try_apply(self, key: Hashable, timestamp: Any, record: T) -> bool:
        """
        Store record for key if its timestamp is strictly newer.

        Args:
            key: Entity key
            timestamp: Record timestamp (datetime, ISO string or epoch ms)
            record: Record to store

        Returns:
            True if the record was accepted
        """
        instant = parse_instant(timestamp)
        current = self.latest_timestamp(key)
        if current is not None and current >= instant:
            logger.debug(
                f"Stale {self.name} update ignored: key={key} "
                f"held={current.isoformat()} incoming={instant.isoformat()}"
            )
            return False

        self._watermarks.pop(key, None)
        self._records[key] = (instant, record)
        return True

    def discard(self, key: Hashable) -> bool:
        """Drop the record for key, keeping its timestamp as a watermark."""
        held = self._records.pop(key, None)
        if held is None:
            return False
        self._watermarks[key] = held[0]
        return True

    def forget(self, key: Hashable) -> None:
        """Drop the record and watermark for key."""
        self._records.pop(key, None)
        self._watermarks.pop(key, None)

    def drop_watermarks(self) -> int:
        """Forget the watermarks of discarded keys. Returns how many were dropped."""
        count = len(self._watermarks)
        self._watermarks.clear()
        return count

    def get(self, key: Hashable) -> Optional[T]:
        held = self._records.get(key)
        return held[1] if held is not None else None

    def values(self) -> Iterator[T]:
        for _, record in self._records.values():
            yield record

    def clear(self) -> int:
        """Forget every record and watermark. Returns the number of records."""
        count = len(self._records)
        self._records.clear()
        self._watermarks.clear()
        return count
