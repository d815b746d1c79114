"""
Pytest configuration and fixtures for SDK tests.
"""

import pytest

from perp_sdk.ledger import AccountLedger

from tests.mocks import FakeChannelSource, FakeSnapshotSource


# =============================================================================
# Ledger Fixtures
# =============================================================================


@pytest.fixture
def snapshots() -> FakeSnapshotSource:
    """Bulk reads serving empty lists by default."""
    return FakeSnapshotSource()


@pytest.fixture
def channels() -> FakeChannelSource:
    """Push channels recording their handlers."""
    return FakeChannelSource()


@pytest.fixture
def ledger(snapshots, channels) -> AccountLedger:
    """Idle ledger over the fake sources."""
    return AccountLedger("ex-1", snapshots, channels)


# =============================================================================
# Config Fixtures
# =============================================================================


@pytest.fixture
def config_dir(tmp_path):
    """Temporary directory holding a config file and a .env file."""
    (tmp_path / ".env").write_text("PERP_TEST_API_KEY=from-dotenv\n")
    (tmp_path / "sdk.yaml").write_text(
        "environment: demo\n"
        "api_keys:\n"
        "  bot:\n"
        "    api_key: ${PERP_TEST_API_KEY}\n"
        "wallets:\n"
        "  main:\n"
        "    private_key: ${PERP_TEST_PRIVATE_KEY:0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318}\n"
        "transport:\n"
        "  max_retries: 1\n"
    )
    return tmp_path
