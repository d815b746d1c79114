"""
SDK Configuration Models.

Pydantic models for the SDK configuration with environment variable
substitution (``${VAR}`` / ``${VAR:default}``) and masking of secrets in
``repr``.
"""

import os
import re
from typing import Any, ClassVar, Dict, Optional, Set

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .environments import Environment, GatewayParams, get_gateway_params


# Pattern for environment variable substitution: ${VAR} or ${VAR:default}
ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+)(?::([^}]*))?\}")


def substitute_env_vars(value: str) -> str:
    """
    Substitute environment variables in a string.

    Supports formats:
    - ${VAR} - substitutes with VAR value, empty if not set
    - ${VAR:default} - substitutes with VAR value, or 'default' if not set
    """

    def replace_match(match: re.Match) -> str:
        env_value = os.environ.get(match.group(1))
        if env_value is not None:
            return env_value
        return match.group(2) or ""

    return ENV_VAR_PATTERN.sub(replace_match, value)


def process_value(value: Any) -> Any:
    """Substitute env vars in strings, recursing into dicts and lists."""
    if isinstance(value, str):
        return substitute_env_vars(value)
    elif isinstance(value, dict):
        return {k: process_value(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [process_value(item) for item in value]
    return value


class BaseConfig(BaseModel):
    """
    Base configuration model.

    Features:
    - Environment variable substitution: ${VAR} or ${VAR:default}
    - Sensitive field masking for display
    - Immutable (frozen)

    Example:
        >>> class MyConfig(BaseConfig):
        ...     api_key: str
        ...
        >>> config = MyConfig(api_key="${PERP_API_KEY:demo}")
    """

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        validate_default=True,
        str_strip_whitespace=True,
    )

    _sensitive_fields: ClassVar[Set[str]] = {
        "api_key",
        "private_key",
        "secret",
        "password",
        "token",
    }

    @model_validator(mode="before")
    @classmethod
    def substitute_environment_variables(cls, data: Any) -> Any:
        """Substitute environment variables in all string values."""
        if isinstance(data, dict):
            return process_value(data)
        return data

    def masked_dict(self) -> dict[str, Any]:
        """Dictionary with sensitive values replaced by '***'."""
        return self._mask_sensitive(self.model_dump(mode="json"))

    def _mask_sensitive(self, data: dict[str, Any]) -> dict[str, Any]:
        result = {}
        for key, value in data.items():
            if isinstance(value, dict):
                result[key] = self._mask_sensitive(value)
            elif self._is_sensitive_field(key) and value:
                result[key] = "***"
            else:
                result[key] = value
        return result

    def _is_sensitive_field(self, field_name: str) -> bool:
        field_lower = field_name.lower()
        return any(sensitive in field_lower for sensitive in self._sensitive_fields)

    def __repr__(self) -> str:
        masked = self.masked_dict()
        fields = ", ".join(f"{k}={v!r}" for k, v in masked.items())
        return f"{self.__class__.__name__}({fields})"

    def __str__(self) -> str:
        return self.__repr__()


class WalletConfig(BaseConfig):
    """Signing wallet credentials."""

    private_key: str = Field(description="Hex encoded private key")

    @field_validator("private_key")
    @classmethod
    def validate_private_key(cls, v: str) -> str:
        if not v:
            raise ValueError("private_key must not be empty")
        return v


class ApiKeyConfig(BaseConfig):
    """Exchange API key credentials."""

    api_key: str = Field(description="API key sent in the x-api-key header")

    @field_validator("api_key")
    @classmethod
    def validate_api_key(cls, v: str) -> str:
        if not v:
            raise ValueError("api_key must not be empty")
        return v


class TransportConfig(BaseConfig):
    """REST and push channel transport settings."""

    request_timeout: float = Field(
        default=30.0,
        gt=0,
        description="REST request timeout in seconds",
    )
    max_retries: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Retries for failed REST requests",
    )
    retry_delay: float = Field(
        default=1.0,
        ge=0,
        description="Base delay between retries in seconds",
    )
    reconnect_delay: float = Field(
        default=1.0,
        gt=0,
        description="Initial websocket reconnect delay in seconds",
    )
    max_reconnect_delay: float = Field(
        default=60.0,
        gt=0,
        description="Maximum websocket reconnect delay in seconds",
    )


class GatewayOverrides(BaseConfig):
    """Per-field overrides of the environment endpoints."""

    exchange_uri: Optional[str] = None
    auth_uri: Optional[str] = None
    centrifuge_uri: Optional[str] = None
    centrifuge_prefix: Optional[str] = None
    chain_id: Optional[str] = None


class SdkConfig(BaseConfig):
    """
    Root SDK configuration.

    Example:
        >>> config = SdkConfig(
        ...     environment="demo",
        ...     wallets={"main": {"private_key": "${PERP_PRIVATE_KEY}"}},
        ...     api_keys={"bot": {"api_key": "${PERP_API_KEY}"}},
        ... )
        >>> config.gateway_params.centrifuge_prefix
        'futures-perp-demo'
    """

    environment: Environment = Environment.DEV
    wallets: Dict[str, WalletConfig] = Field(default_factory=dict)
    api_keys: Dict[str, ApiKeyConfig] = Field(default_factory=dict)
    gateway_overrides: GatewayOverrides = Field(default_factory=GatewayOverrides)
    transport: TransportConfig = Field(default_factory=TransportConfig)
    debug: bool = False

    @property
    def gateway_params(self) -> GatewayParams:
        """Environment endpoints with the overrides applied."""
        base = get_gateway_params(self.environment)
        overrides = self.gateway_overrides.model_dump(exclude_none=True)
        return base.model_copy(update=overrides)
