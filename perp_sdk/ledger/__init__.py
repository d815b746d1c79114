"""
Account ledger.

Merges push channel records and bulk snapshots into per-entity stores and
computes available balance and power from them.
"""

from .calculator import (
    AvailableBalance,
    FeeSchedule,
    FundingBalance,
    LedgerSnapshot,
    OpenOrderAggregate,
    PositionMargin,
    Power,
    compute_available_balance,
    compute_power,
)
from .merge import MergeGuard
from .notifier import ChangeNotifier, EntityKind
from .reconciler import (
    AccountLedger,
    ChannelHandle,
    LedgerChannelSource,
    LedgerSnapshotSource,
)
from .stores import EntityStore, OpenOrderStore, PendingWithdrawalStore, PrunableStore

__all__ = [
    # Ledger
    "AccountLedger",
    "ChannelHandle",
    "LedgerChannelSource",
    "LedgerSnapshotSource",
    # Stores
    "MergeGuard",
    "EntityStore",
    "PrunableStore",
    "OpenOrderStore",
    "PendingWithdrawalStore",
    # Notifications
    "ChangeNotifier",
    "EntityKind",
    # Calculation
    "AvailableBalance",
    "FeeSchedule",
    "FundingBalance",
    "LedgerSnapshot",
    "OpenOrderAggregate",
    "PositionMargin",
    "Power",
    "compute_available_balance",
    "compute_power",
]
