"""
Tests for configuration loading.
"""

import pytest

from perp_sdk.config import (
    ConfigFileNotFoundError,
    ConfigParseError,
    ConfigValidationError,
    Environment,
    GATEWAY_PARAMS,
    SdkConfig,
    get_gateway_params,
    load_config,
)
from perp_sdk.config.models import substitute_env_vars


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.delenv("PERP_TEST_API_KEY", raising=False)
    monkeypatch.delenv("PERP_TEST_PRIVATE_KEY", raising=False)


# =============================================================================
# Environment Substitution
# =============================================================================


class TestEnvSubstitution:
    """Test ${VAR} and ${VAR:default} substitution."""

    def test_variable_set(self, monkeypatch):
        monkeypatch.setenv("PERP_TEST_API_KEY", "abc")
        assert substitute_env_vars("${PERP_TEST_API_KEY}") == "abc"

    def test_default_used(self):
        assert substitute_env_vars("${PERP_TEST_API_KEY:fallback}") == "fallback"

    def test_unset_without_default(self):
        assert substitute_env_vars("key=${PERP_TEST_API_KEY}") == "key="


# =============================================================================
# Models
# =============================================================================


class TestSdkConfig:
    """Test the root configuration model."""

    def test_defaults(self):
        config = SdkConfig()
        assert config.environment == Environment.DEV
        assert config.transport.max_retries == 3
        assert config.wallets == {}

    def test_gateway_params_for_environment(self):
        config = SdkConfig(environment="prod")
        assert config.gateway_params == GATEWAY_PARAMS[Environment.PROD]

    def test_gateway_overrides(self):
        config = SdkConfig(
            environment="demo",
            gateway_overrides={"exchange_uri": "http://localhost:8080", "chain_id": "1"},
        )
        params = config.gateway_params
        assert params.exchange_uri == "http://localhost:8080"
        assert params.chain_id == "1"
        assert params.centrifuge_prefix == "futures-perp-demo"

    def test_secrets_masked(self):
        config = SdkConfig(
            wallets={"main": {"private_key": "0xdeadbeef"}},
            api_keys={"bot": {"api_key": "secret"}},
        )
        masked = config.masked_dict()
        assert masked["wallets"]["main"]["private_key"] == "***"
        assert masked["api_keys"]["bot"]["api_key"] == "***"
        assert "0xdeadbeef" not in repr(config)

    def test_empty_api_key_rejected(self):
        with pytest.raises(ValueError):
            SdkConfig(api_keys={"bot": {"api_key": "${PERP_TEST_API_KEY}"}})

    def test_unknown_environment_falls_back_to_dev(self):
        assert get_gateway_params("staging") == GATEWAY_PARAMS[Environment.DEV]


# =============================================================================
# Loader
# =============================================================================


class TestLoadConfig:
    """Test YAML loading with .env support."""

    def test_load_with_dotenv(self, config_dir):
        """Test values from the .env next to the config resolve in the YAML."""
        config = load_config(config_dir / "sdk.yaml")

        assert config.environment == Environment.DEMO
        assert config.api_keys["bot"].api_key == "from-dotenv"
        assert config.wallets["main"].private_key.startswith("0x4c0883")
        assert config.transport.max_retries == 1

    def test_environment_wins_over_dotenv(self, config_dir, monkeypatch):
        monkeypatch.setenv("PERP_TEST_API_KEY", "from-environment")

        config = load_config(config_dir / "sdk.yaml")

        assert config.api_keys["bot"].api_key == "from-environment"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigFileNotFoundError):
            load_config(tmp_path / "missing.yaml")

    def test_missing_env_file(self, config_dir):
        with pytest.raises(ConfigFileNotFoundError):
            load_config(config_dir / "sdk.yaml", env_file=config_dir / "other.env")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("environment: [demo\n")

        with pytest.raises(ConfigParseError):
            load_config(path)

    def test_validation_error_lists_fields(self, tmp_path):
        path = tmp_path / "sdk.yaml"
        path.write_text("transport:\n  max_retries: 50\n")

        with pytest.raises(ConfigValidationError) as exc_info:
            load_config(path)

        assert any("transport.max_retries" in e for e in exc_info.value.errors)

    def test_empty_file(self, tmp_path):
        path = tmp_path / "sdk.yaml"
        path.write_text("")

        assert load_config(path).environment == Environment.DEV
