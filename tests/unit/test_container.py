"""
Tests for the SDK container.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from perp_sdk.config import Environment, SdkConfig
from perp_sdk.container import Container, init_container
from perp_sdk.core.exceptions import ApiKeyNotFoundError, WalletNotFoundError
from perp_sdk.exchange.gateway import Gateway

PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"


@pytest.fixture
def config():
    return SdkConfig(
        environment="demo",
        wallets={"main": {"private_key": PRIVATE_KEY}},
        api_keys={"bot": {"api_key": "key-1"}},
    )


@pytest.fixture
def gateway():
    gateway = MagicMock()
    gateway.sign_in_wallet_account = AsyncMock(side_effect=lambda wallet: MagicMock(wallet=wallet))
    gateway.create_api_key_account = AsyncMock(side_effect=lambda key: MagicMock(api_key=key))
    gateway.close = AsyncMock()
    return gateway


class TestContainer:
    """Test wiring of wallets, keys and accounts."""

    def test_wallet_uses_environment_chain(self, config):
        wallet = Container(config).wallet("main")
        assert wallet.chain_id == 16182

    def test_unknown_wallet(self, config):
        with pytest.raises(WalletNotFoundError) as exc_info:
            Container(config).wallet("other")
        assert exc_info.value.wallet_name == "other"

    def test_unknown_api_key(self, config):
        with pytest.raises(ApiKeyNotFoundError):
            Container(config).api_key("other")

    def test_gateway_built_lazily(self, config):
        container = Container(config)
        assert container._gateway is None

        gateway = container.gateway

        assert isinstance(gateway, Gateway)
        assert container.gateway is gateway
        assert gateway.params.centrifuge_prefix == "futures-perp-demo"

    @pytest.mark.asyncio
    async def test_account_created_once(self, config, gateway):
        """Test concurrent requests for one wallet sign in once."""
        container = Container(config, gateway=gateway)

        first, second = await asyncio.gather(container.account("main"), container.account("main"))

        assert first is second
        assert gateway.sign_in_wallet_account.await_count == 1

    @pytest.mark.asyncio
    async def test_api_key_account_cached(self, config, gateway):
        container = Container(config, gateway=gateway)

        account = await container.api_key_account("bot")

        assert account.api_key == "key-1"
        assert await container.api_key_account("bot") is account

    @pytest.mark.asyncio
    async def test_context_manager_closes_gateway(self, config, gateway):
        async with Container(config, gateway=gateway):
            pass
        gateway.close.assert_awaited_once()


class TestInitContainer:
    """Test container construction helper."""

    def test_environment_replaced(self, config):
        container = init_container(Environment.PROD, config)

        assert container.config.environment == Environment.PROD
        assert "main" in container.config.wallets

    def test_from_mapping(self):
        container = init_container("demo", {"api_keys": {"bot": {"api_key": "k"}}})
        assert container.api_key("bot") == "k"

    def test_without_config(self):
        assert init_container("dev").config.environment == Environment.DEV
