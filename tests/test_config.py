"""
Test suite for environment-driven settings.
"""

from decimal import Decimal

import pytest
from pydantic import ValidationError
from solders.keypair import Keypair

from smart_transaction.config import (
    HeliusSettings,
    Settings,
    SubmissionSettings,
    WalletSettings,
    get_settings,
    reload_settings,
)
from smart_transaction.exceptions import ConfigurationError
from smart_transaction.types import Cluster, CommitmentLevel

HELIUS_VARS = ("HELIUS_API_KEY", "HELIUS_ENDPOINT", "HELIUS_CLUSTER")


@pytest.fixture
def clean_env(monkeypatch):
    for name in HELIUS_VARS + ("SOLANA_PRIVATE_KEY", "SMART_TX_RETRIES", "LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    yield monkeypatch
    get_settings.cache_clear()


class TestSubmissionSettings:

    def test_defaults(self, clean_env):
        settings = SubmissionSettings()

        assert settings.retries == 4
        assert settings.attempt_timeout == 15.0
        assert settings.commitment == CommitmentLevel.CONFIRMED
        assert settings.compute_unit_margin == Decimal("1.1")
        assert settings.raise_on_exhaustion is False

    def test_env_overrides(self, clean_env):
        clean_env.setenv("SMART_TX_RETRIES", "7")
        clean_env.setenv("SMART_TX_COMMITMENT", "finalized")

        settings = SubmissionSettings()

        assert settings.retries == 7
        assert settings.commitment == CommitmentLevel.FINALIZED

    def test_retries_must_be_positive(self, clean_env):
        with pytest.raises(ValidationError):
            SubmissionSettings(retries=0)


class TestHeliusSettings:

    def test_requires_key_or_endpoint(self, clean_env):
        with pytest.raises(ValidationError):
            HeliusSettings()

    def test_from_env(self, clean_env):
        clean_env.setenv("HELIUS_API_KEY", "secret-key")
        clean_env.setenv("HELIUS_CLUSTER", "devnet")

        settings = HeliusSettings()

        assert settings.api_key.get_secret_value() == "secret-key"
        assert settings.cluster == Cluster.DEVNET

    def test_empty_endpoint_is_unset(self, clean_env):
        settings = HeliusSettings(api_key="k", endpoint="")

        assert settings.endpoint is None


class TestWalletSettings:

    def test_keypair_round_trip(self, clean_env):
        keypair = Keypair()

        loaded = WalletSettings(private_key=str(keypair)).keypair()

        assert loaded.pubkey() == keypair.pubkey()

    def test_missing_key(self, clean_env):
        with pytest.raises(ConfigurationError):
            WalletSettings().keypair()

    def test_invalid_key(self, clean_env):
        with pytest.raises(ConfigurationError):
            WalletSettings(private_key="not-a-key").keypair()


class TestSettings:

    def test_require_helius_without_credentials(self, clean_env):
        with pytest.raises(ConfigurationError):
            Settings().require_helius()

    def test_require_helius_loads_lazily(self, clean_env):
        settings = Settings()
        clean_env.setenv("HELIUS_API_KEY", "secret-key")

        assert settings.require_helius().api_key.get_secret_value() == "secret-key"

    def test_redacted_dump(self, clean_env):
        settings = Settings(wallet=WalletSettings(private_key="abcdefghijklmnop"))

        masked = settings.redacted_dump()

        assert masked["wallet"]["private_key"] == "abcd...mnop"

    def test_get_settings_cached_until_reload(self, clean_env):
        first = get_settings()

        assert get_settings() is first

        clean_env.setenv("LOG_LEVEL", "DEBUG")
        reloaded = reload_settings()

        assert reloaded is not first
        assert reloaded.logging.level == "DEBUG"
