"""
Tests for wallet signing and payload signing.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct

from perp_sdk.core.exceptions import ChainIdUndeterminedError, SigningError
from perp_sdk.core.models import (
    LimitOrderPayload,
    PayloadModel,
    Side,
    TradingBalanceWithdraw,
)
from perp_sdk.crypto import TypedDataSigner, Wallet, build_siwe_message
from perp_sdk.crypto.signing import typed_fields

PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
ISSUED_AT = datetime(2024, 1, 1, 12, 30, 15, 250000, tzinfo=timezone.utc)


@pytest.fixture
def wallet():
    return Wallet(PRIVATE_KEY, chain_id="16182")


# =============================================================================
# Wallet
# =============================================================================


class TestWallet:
    """Test key handling and message signing."""

    def test_address_matches_key(self, wallet):
        assert wallet.address == Account.from_key(PRIVATE_KEY).address

    def test_invalid_key(self):
        with pytest.raises(SigningError):
            Wallet("not-a-key")

    def test_chain_id_parsed(self, wallet):
        assert wallet.chain_id == 16182

    def test_missing_chain_id(self):
        with pytest.raises(ChainIdUndeterminedError):
            Wallet(PRIVATE_KEY).chain_id

    def test_invalid_chain_id(self):
        with pytest.raises(ChainIdUndeterminedError):
            Wallet(PRIVATE_KEY, chain_id="mainnet").chain_id

    def test_message_signature_recovers_address(self, wallet):
        signature = wallet.sign_message("hello")

        assert signature.startswith("0x")
        recovered = Account.recover_message(encode_defunct(text="hello"), signature=signature)
        assert recovered == wallet.address


# =============================================================================
# Sign-in Message
# =============================================================================


class TestSiweMessage:
    """Test EIP-4361 message layout."""

    def test_layout(self, wallet):
        message = build_siwe_message(wallet.address, 16182, "nonce-1", issued_at=ISSUED_AT)

        assert message.split("\n") == [
            "https://evedex.com wants you to sign in with your Ethereum account:",
            wallet.address,
            "",
            "Sign in to evedex.com",
            "",
            "URI: https://evedex.com",
            "Version: 1",
            "Chain ID: 16182",
            "Nonce: nonce-1",
            "Issued At: 2024-01-01T12:30:15.250Z",
        ]

    def test_expiration_time(self, wallet):
        message = build_siwe_message(
            wallet.address, 1, "n", issued_at=ISSUED_AT,
            expiration_time=datetime(2024, 1, 2, tzinfo=timezone.utc),
        )
        assert message.endswith("Expiration Time: 2024-01-02T00:00:00.000Z")

    def test_signed_auth_message(self, wallet):
        signed = TypedDataSigner(wallet).sign_auth_message("nonce-2", issued_at=ISSUED_AT)

        assert "Nonce: nonce-2" in signed.message
        recovered = Account.recover_message(
            encode_defunct(text=signed.message), signature=signed.signature
        )
        assert recovered == wallet.address


# =============================================================================
# Typed Data
# =============================================================================


class TestTypedDataSigner:
    """Test payload signing."""

    def test_sign_limit_order(self, wallet):
        order = LimitOrderPayload(
            id="abc",
            instrument="BTCUSDT",
            side=Side.BUY,
            leverage=10,
            quantity=Decimal("0.01"),
            limit_price=Decimal("60000"),
        )

        signed = TypedDataSigner(wallet).sign_payload(order)

        assert signed["instrument"] == "BTCUSDT"
        assert signed["limitPrice"] == "60000"
        assert signed["timeInForce"] == "GTC"
        assert signed["signature"].startswith("0x")
        assert len(signed["signature"]) == 132

    def test_signature_is_deterministic(self, wallet):
        withdraw = TradingBalanceWithdraw(recipient="0xabc", amount=Decimal("10"))
        signer = TypedDataSigner(wallet)

        assert signer.sign_payload(withdraw) == signer.sign_payload(withdraw)

    def test_domain_uses_wallet_chain(self, wallet):
        assert TypedDataSigner(wallet).domain() == {
            "name": "EVEDEX",
            "version": "1",
            "chainId": 16182,
        }

    def test_unknown_payload_rejected(self, wallet):
        class Unknown(PayloadModel):
            value: str

        with pytest.raises(TypeError):
            TypedDataSigner(wallet).sign_payload(Unknown(value="x"))

    def test_typed_fields_are_strings(self):
        assert typed_fields({"a": 1, "b": "x"}) == [
            {"name": "a", "type": "string"},
            {"name": "b", "type": "string"},
        ]
