"""
Wallet and payload signing.
"""

from .signing import (
    PayloadSigner,
    SignedMessage,
    TypedDataSigner,
    build_siwe_message,
)
from .wallet import Wallet

__all__ = [
    "Wallet",
    "PayloadSigner",
    "TypedDataSigner",
    "SignedMessage",
    "build_siwe_message",
]
