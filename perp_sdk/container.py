"""
SDK container.

Owns one gateway per configuration and hands out accounts by the names
used in the configuration. Accounts are created once per name and reused.
"""

import asyncio
from typing import Any, Dict, Optional

from perp_sdk.account import Account
from perp_sdk.config import Environment, GatewayParams, SdkConfig
from perp_sdk.core import get_logger, set_log_level
from perp_sdk.core.exceptions import ApiKeyNotFoundError, WalletNotFoundError
from perp_sdk.crypto import Wallet
from perp_sdk.exchange.gateway import Gateway

logger = get_logger(__name__)


class Container:
    """
    Wiring of gateway, wallets and accounts for one deployment.

    Example:
        >>> container = Container(load_config("config/sdk.yaml"))
        >>> account = await container.account("main")
        >>> ledger = account.create_ledger()
        >>> await ledger.start()
        >>> ...
        >>> await container.close()
    """

    def __init__(self, config: SdkConfig, gateway: Optional[Gateway] = None):
        """
        Initialize Container.

        Args:
            config: SDK configuration
            gateway: Gateway to use instead of building one lazily
        """
        self.config = config
        self.gateway_params: GatewayParams = config.gateway_params
        self._gateway = gateway
        self._accounts: Dict[str, Account] = {}
        self._api_key_accounts: Dict[str, Account] = {}
        self._lock = asyncio.Lock()

        if config.debug:
            set_log_level("perp_sdk", "DEBUG")

    @property
    def gateway(self) -> Gateway:
        if self._gateway is None:
            self._gateway = Gateway(self.gateway_params, self.config.transport)
            logger.debug(f"Gateway created for {self.config.environment.value}")
        return self._gateway

    def wallet(self, wallet_name: str) -> Wallet:
        """
        Raises:
            WalletNotFoundError: If the wallet is not configured
        """
        wallet_config = self.config.wallets.get(wallet_name)
        if wallet_config is None or not wallet_config.private_key:
            raise WalletNotFoundError(wallet_name)
        return Wallet(wallet_config.private_key, chain_id=self.gateway_params.chain_id)

    def api_key(self, api_key_name: str) -> str:
        """
        Raises:
            ApiKeyNotFoundError: If the API key is not configured
        """
        api_key_config = self.config.api_keys.get(api_key_name)
        if api_key_config is None or not api_key_config.api_key:
            raise ApiKeyNotFoundError(api_key_name)
        return api_key_config.api_key

    async def account(self, wallet_name: str) -> Account:
        """Wallet account signed in once per name."""
        async with self._lock:
            account = self._accounts.get(wallet_name)
            if account is None:
                account = await self.gateway.sign_in_wallet_account(self.wallet(wallet_name))
                self._accounts[wallet_name] = account
            return account

    async def api_key_account(self, api_key_name: str) -> Account:
        """API key account created once per name."""
        async with self._lock:
            account = self._api_key_accounts.get(api_key_name)
            if account is None:
                account = await self.gateway.create_api_key_account(self.api_key(api_key_name))
                self._api_key_accounts[api_key_name] = account
            return account

    async def close(self) -> None:
        """Close the gateway transports, if the gateway was built."""
        if self._gateway is not None:
            await self._gateway.close()

    async def __aenter__(self) -> "Container":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


def init_container(
    environment: Environment | str,
    config: Optional[SdkConfig | Dict[str, Any]] = None,
) -> Container:
    """
    Build a container for an environment.

    Args:
        environment: Deployment to connect to
        config: Configuration (model or mapping); its environment is replaced

    Returns:
        Container for the environment
    """
    if config is None:
        data: Dict[str, Any] = {}
    elif isinstance(config, SdkConfig):
        data = config.model_dump()
    else:
        data = dict(config)
    data["environment"] = Environment(environment)
    return Container(SdkConfig(**data))
