# Config module - SDK configuration
from .environments import GATEWAY_PARAMS, Environment, GatewayParams, get_gateway_params
from .exceptions import (
    ConfigError,
    ConfigFileNotFoundError,
    ConfigParseError,
    ConfigValidationError,
)
from .loader import load_config, load_yaml
from .models import (
    ApiKeyConfig,
    BaseConfig,
    GatewayOverrides,
    SdkConfig,
    TransportConfig,
    WalletConfig,
)

__all__ = [
    # Exceptions
    "ConfigError",
    "ConfigFileNotFoundError",
    "ConfigParseError",
    "ConfigValidationError",
    # Loader
    "load_config",
    "load_yaml",
    # Environments
    "Environment",
    "GatewayParams",
    "GATEWAY_PARAMS",
    "get_gateway_params",
    # Models
    "BaseConfig",
    "WalletConfig",
    "ApiKeyConfig",
    "TransportConfig",
    "GatewayOverrides",
    "SdkConfig",
]
