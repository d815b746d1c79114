"""
Exchange Environments.

Endpoint parameters for each exchange deployment.
"""

from enum import Enum
from typing import Dict

from pydantic import BaseModel, ConfigDict


class Environment(str, Enum):
    """Exchange deployment."""
    DEV = "dev"
    DEMO = "demo"
    PROD = "prod"


class GatewayParams(BaseModel):
    """
    Endpoints of one deployment.

    Attributes:
        exchange_uri: Exchange REST API base URL
        auth_uri: Authentication service base URL
        centrifuge_uri: Push channel websocket URL
        centrifuge_prefix: Namespace prefixed to every channel name
        chain_id: Chain id used for typed data signing
    """

    model_config = ConfigDict(frozen=True)

    exchange_uri: str
    auth_uri: str
    centrifuge_uri: str
    centrifuge_prefix: str
    chain_id: str


GATEWAY_PARAMS: Dict[Environment, GatewayParams] = {
    Environment.DEV: GatewayParams(
        exchange_uri="https://exchange.evedex.tech",
        auth_uri="https://auth.evedex.tech",
        centrifuge_uri="wss://ws.evedex.tech/connection/websocket",
        centrifuge_prefix="futures-perp-dev",
        chain_id="16182",
    ),
    Environment.DEMO: GatewayParams(
        exchange_uri="https://demo-exchange-api.evedex.com",
        auth_uri="https://auth.evedex.com",
        centrifuge_uri="wss://ws.evedex.com/connection/websocket",
        centrifuge_prefix="futures-perp-demo",
        chain_id="16182",
    ),
    Environment.PROD: GatewayParams(
        exchange_uri="https://exchange-api.evedex.com",
        auth_uri="https://auth.evedex.com",
        centrifuge_uri="wss://stream.evedex.com/connection/websocket",
        centrifuge_prefix="futures-perp",
        chain_id="161803",
    ),
}


def get_gateway_params(environment: Environment) -> GatewayParams:
    """Endpoint parameters of an environment; unknown values fall back to dev."""
    try:
        return GATEWAY_PARAMS[Environment(environment)]
    except (KeyError, ValueError):
        return GATEWAY_PARAMS[Environment.DEV]
