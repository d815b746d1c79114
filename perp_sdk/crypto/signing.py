"""
Payload signing.

Trading requests (orders, replacements, position close, TP/SL, withdraw)
are signed as EIP-712 typed data: every field of the camelCase wire payload
is a ``string`` member of the payload's struct, and the signature is added
to the payload as ``signature``. The sign-in message follows EIP-4361.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

from perp_sdk.core import get_logger
from perp_sdk.core.models import (
    LimitOrderPayload,
    MarketOrderPayload,
    PayloadModel,
    PositionCloseOrderPayload,
    ReplaceLimitOrder,
    ReplaceStopLimitOrder,
    StopLimitOrderPayload,
    TpSlCreatePayload,
    TradingBalanceWithdraw,
)

from .wallet import Wallet

logger = get_logger(__name__)


# Primary EIP-712 struct per payload model
PRIMARY_TYPES: Dict[type, str] = {
    LimitOrderPayload: "LimitOrder",
    MarketOrderPayload: "MarketOrder",
    StopLimitOrderPayload: "StopLimitOrder",
    PositionCloseOrderPayload: "PositionCloseOrder",
    ReplaceLimitOrder: "ReplaceLimitOrder",
    ReplaceStopLimitOrder: "ReplaceStopLimitOrder",
    TpSlCreatePayload: "TpSl",
    TradingBalanceWithdraw: "TradingBalanceWithdraw",
}

SIWE_DOMAIN = "evedex.com"
SIWE_URI = "https://evedex.com"
SIWE_STATEMENT = "Sign in to evedex.com"


class PayloadSigner(Protocol):
    """Signs request payloads for the exchange."""

    @property
    def address(self) -> str:
        ...

    def sign_payload(self, payload: PayloadModel) -> Dict[str, Any]:
        ...

    def sign_auth_message(self, nonce: str, issued_at: Optional[datetime] = None) -> "SignedMessage":
        ...


class SignedMessage:
    """Sign-in message with its signature."""

    __slots__ = ("message", "signature")

    def __init__(self, message: str, signature: str):
        self.message = message
        self.signature = signature

    def __repr__(self) -> str:
        return f"SignedMessage(signature={self.signature[:10]}...)"


def _isoformat(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def build_siwe_message(
    address: str,
    chain_id: int,
    nonce: str,
    issued_at: Optional[datetime] = None,
    expiration_time: Optional[datetime] = None,
    domain: str = SIWE_DOMAIN,
    uri: str = SIWE_URI,
    statement: str = SIWE_STATEMENT,
) -> str:
    """
    Build an EIP-4361 sign-in message.

    Args:
        address: Checksummed wallet address
        chain_id: Chain id of the wallet
        nonce: Nonce issued by the auth service
        issued_at: Issue time, now by default
        expiration_time: Optional expiry
        domain: Requesting domain
        uri: Requesting URI
        statement: Human readable statement

    Returns:
        Message text to be signed with ``Wallet.sign_message``
    """
    issued_at = issued_at or datetime.now(timezone.utc)
    lines = [
        f"https://{domain} wants you to sign in with your Ethereum account:",
        address,
        "",
        statement,
        "",
        f"URI: {uri}",
        "Version: 1",
        f"Chain ID: {chain_id}",
        f"Nonce: {nonce}",
        f"Issued At: {_isoformat(issued_at)}",
    ]
    if expiration_time is not None:
        lines.append(f"Expiration Time: {_isoformat(expiration_time)}")
    return "\n".join(lines)


def typed_fields(wire: Dict[str, Any]) -> List[Dict[str, str]]:
    return [{"name": name, "type": "string"} for name in wire]


class TypedDataSigner:
    """
    EIP-712 signer for trading payloads.

    Example:
        >>> signer = TypedDataSigner(wallet)
        >>> signed = signer.sign_payload(LimitOrderPayload(...))
        >>> signed["signature"]
        '0x...'
    """

    def __init__(
        self,
        wallet: Wallet,
        domain_name: str = "EVEDEX",
        domain_version: str = "1",
        domain: Optional[Dict[str, Any]] = None,
    ):
        """
        Initialize TypedDataSigner.

        Args:
            wallet: Signing wallet
            domain_name: EIP-712 domain name
            domain_version: EIP-712 domain version
            domain: Full domain override; ``chainId`` defaults to the wallet's
        """
        self.wallet = wallet
        self._domain_name = domain_name
        self._domain_version = domain_version
        self._domain = domain

    @property
    def address(self) -> str:
        return self.wallet.address

    def domain(self) -> Dict[str, Any]:
        if self._domain is not None:
            return {"chainId": self.wallet.chain_id, **self._domain}
        return {
            "name": self._domain_name,
            "version": self._domain_version,
            "chainId": self.wallet.chain_id,
        }

    def sign_payload(self, payload: PayloadModel) -> Dict[str, Any]:
        """
        Sign a payload.

        Returns:
            Wire payload with ``signature`` added
        """
        primary = PRIMARY_TYPES.get(type(payload))
        if primary is None:
            raise TypeError(f"No typed data definition for {type(payload).__name__}")

        wire = payload.to_wire()
        message = {name: str(value) for name, value in wire.items()}
        signature = self.wallet.sign_typed_data(
            self.domain(),
            {primary: typed_fields(wire)},
            message,
        )
        logger.debug(f"Signed {primary} payload")
        return {**wire, "signature": signature}

    def sign_auth_message(
        self,
        nonce: str,
        issued_at: Optional[datetime] = None,
    ) -> SignedMessage:
        message = build_siwe_message(
            self.wallet.address, self.wallet.chain_id, nonce, issued_at=issued_at
        )
        return SignedMessage(message, self.wallet.sign_message(message))
