"""
Local key wallet.

Wraps an eth-account ``LocalAccount`` and exposes the address, the chain id
it signs for and the two signing primitives used by the exchange: personal
messages (sign-in) and EIP-712 typed data (orders, withdrawals, TP/SL).
"""

from typing import Any, Dict, List, Optional

from eth_account import Account
from eth_account.messages import encode_defunct

from perp_sdk.core import get_logger
from perp_sdk.core.exceptions import ChainIdUndeterminedError, SigningError

logger = get_logger(__name__)


def _hex(signature: bytes) -> str:
    return "0x" + bytes(signature).hex()


class Wallet:
    """
    Private key wallet.

    Example:
        >>> wallet = Wallet("0x" + "11" * 32, chain_id=421614)
        >>> address = wallet.address
        >>> signature = wallet.sign_message("hello")
    """

    def __init__(self, private_key: str, chain_id: Optional[int | str] = None):
        """
        Initialize Wallet.

        Args:
            private_key: Hex private key, with or without ``0x``
            chain_id: Chain the wallet signs for

        Raises:
            SigningError: If the private key is invalid
        """
        try:
            self._account = Account.from_key(private_key)
        except (ValueError, TypeError) as e:
            raise SigningError(f"Invalid private key: {e}") from e
        self._chain_id = chain_id

    def __repr__(self) -> str:
        return f"Wallet(address={self.address!r}, chain_id={self._chain_id!r})"

    @property
    def address(self) -> str:
        """Checksummed address."""
        return self._account.address

    @property
    def chain_id(self) -> int:
        """
        Raises:
            ChainIdUndeterminedError: If no chain id was configured
        """
        if self._chain_id is None or str(self._chain_id).strip() == "":
            raise ChainIdUndeterminedError()
        try:
            return int(self._chain_id)
        except ValueError as e:
            raise ChainIdUndeterminedError(f"Invalid chain id: {self._chain_id!r}") from e

    def sign_message(self, message: str) -> str:
        """Sign a personal message (EIP-191); returns the 0x-prefixed signature."""
        signed = self._account.sign_message(encode_defunct(text=message))
        return _hex(signed.signature)

    def sign_typed_data(
        self,
        domain: Dict[str, Any],
        types: Dict[str, List[Dict[str, str]]],
        message: Dict[str, Any],
    ) -> str:
        """
        Sign EIP-712 typed data.

        Args:
            domain: EIP-712 domain (name, version, chainId, ...)
            types: Struct definitions, without ``EIP712Domain``
            message: Values of the primary struct

        Returns:
            0x-prefixed signature
        """
        signed = self._account.sign_typed_data(
            domain_data=domain,
            message_types=types,
            message_data=message,
        )
        return _hex(signed.signature)
