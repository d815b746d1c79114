"""
Exchange transports and gateway.

REST client and gateways over aiohttp, the push channel client over
websockets, typed channel subscriptions and the composed ``Gateway``.
"""

from .api import AuthRestGateway, ExchangeRestGateway
from .channels import ChannelClient, ChannelSubscription
from .gateway import Gateway
from .rest import ApiKeySession, JwtSession, RestClient, SessionCredentials
from .ws import ChannelNames, ExchangeWsGateway

__all__ = [
    "Gateway",
    # REST
    "RestClient",
    "ApiKeySession",
    "JwtSession",
    "SessionCredentials",
    "AuthRestGateway",
    "ExchangeRestGateway",
    # Push channels
    "ChannelClient",
    "ChannelSubscription",
    "ChannelNames",
    "ExchangeWsGateway",
]
