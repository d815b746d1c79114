"""
Perpetual futures trading SDK.

Gateway, accounts and the account ledger that keeps positions, orders and
collateral in sync from push channels and REST snapshots.
"""

from .account import Account
from .config import Environment, SdkConfig, load_config
from .container import Container, init_container
from .crypto import Wallet
from .exchange import Gateway
from .ledger import AccountLedger, AvailableBalance, EntityKind, Power

__version__ = "0.1.0"

__all__ = [
    "Account",
    "AccountLedger",
    "AvailableBalance",
    "Container",
    "EntityKind",
    "Environment",
    "Gateway",
    "Power",
    "SdkConfig",
    "Wallet",
    "init_container",
    "load_config",
]
