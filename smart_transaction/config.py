"""
Environment-driven settings.

Each section reads its own prefix (HELIUS_, SMART_TX_, SOLANA_, LOG_) from
the environment or a .env file. The estimation pipeline and the submitter
never read the environment themselves; settings only feed the client
factories and the `from_settings` constructors.

Usage:
    settings = get_settings()
    client = create_client_from_settings(settings.require_helius())
    submitter = RetryingSubmitter.from_settings(client, settings.submission)
"""

from __future__ import annotations

from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import AnyHttpUrl, Field, SecretStr, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from solders.keypair import Keypair

from .exceptions import ConfigurationError
from .types import Cluster, CommitmentLevel

LogLevelName = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def _section(prefix: str) -> SettingsConfigDict:
    return SettingsConfigDict(
        env_prefix=prefix,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )


class HeliusSettings(BaseSettings):
    """Endpoint for the ledger client. Needs an API key or an explicit URL."""

    model_config = _section("HELIUS_")

    api_key: Optional[SecretStr] = Field(default=None, description="Used to derive the Helius endpoint URL")
    endpoint: Optional[AnyHttpUrl] = Field(default=None, description="Explicit RPC URL; wins over api_key")
    cluster: Cluster = Field(default=Cluster.MAINNET, description="Selects the priority fee strategy")
    request_timeout: float = Field(default=30.0, gt=0, le=120, description="Per HTTP request, seconds")
    poll_interval: float = Field(default=0.5, gt=0, le=10, description="Signature status polling, seconds")

    @field_validator("endpoint", mode="before")
    @classmethod
    def blank_endpoint_is_unset(cls, v: Any) -> Any:
        return None if v == "" else v

    @model_validator(mode="after")
    def require_credentials(self) -> "HeliusSettings":
        if self.api_key is None and self.endpoint is None:
            raise ValueError("one of HELIUS_API_KEY or HELIUS_ENDPOINT must be set")
        return self


class SubmissionSettings(BaseSettings):
    """Estimation margin and the send-and-confirm loop."""

    model_config = _section("SMART_TX_")

    retries: int = Field(default=4, ge=1, le=50, description="Send-and-confirm attempts")
    attempt_timeout: float = Field(default=15.0, gt=0, le=120, description="Confirmation deadline per attempt")
    commitment: CommitmentLevel = CommitmentLevel.CONFIRMED
    # Applied to simulated compute units, rounded up.
    compute_unit_margin: Decimal = Field(default=Decimal("1.1"), ge=1, le=10)
    raise_on_exhaustion: bool = Field(
        default=False,
        description="Raise SubmissionOutcomeUnknownError instead of returning an EXHAUSTED result",
    )


class WalletSettings(BaseSettings):
    model_config = _section("SOLANA_")

    private_key: Optional[SecretStr] = Field(default=None, description="Base58 encoded 64-byte secret key")

    def keypair(self) -> Keypair:
        if self.private_key is None:
            raise ConfigurationError("SOLANA_PRIVATE_KEY is not set")
        try:
            return Keypair.from_base58_string(self.private_key.get_secret_value())
        except Exception as e:
            raise ConfigurationError(f"Invalid SOLANA_PRIVATE_KEY: {e}") from e


class LoggingSettings(BaseSettings):
    model_config = _section("LOG_")

    level: LogLevelName = "INFO"
    format: str = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
    date_format: str = "%Y-%m-%d %H:%M:%S"
    file_enabled: bool = False
    file_path: Path = Path("logs/smart_transaction.log")
    file_max_bytes: int = Field(default=10 * 1024 * 1024, ge=1024)
    file_backup_count: int = Field(default=5, ge=0, le=100)


class Settings(BaseSettings):
    """
    All sections together.

    `helius` stays unset until `require_helius()` is called, so code that
    only submits through an injected client or only configures logging does
    not need RPC credentials in the environment.
    """

    model_config = _section("")

    helius: Optional[HeliusSettings] = None
    submission: SubmissionSettings = Field(default_factory=SubmissionSettings)
    wallet: WalletSettings = Field(default_factory=WalletSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    def require_helius(self) -> HeliusSettings:
        if self.helius is None:
            try:
                self.helius = HeliusSettings()
            except ValidationError as e:
                raise ConfigurationError(f"RPC settings are incomplete: {e}") from e
        return self.helius

    def redacted_dump(self) -> dict[str, Any]:
        """model_dump() with secrets cut down to their first and last four characters."""
        def redact(value: Any) -> Any:
            if isinstance(value, SecretStr):
                secret = value.get_secret_value()
                return f"{secret[:4]}...{secret[-4:]}" if len(secret) > 8 else "***"
            if isinstance(value, dict):
                return {k: redact(v) for k, v in value.items()}
            return value

        return redact(self.model_dump())


@lru_cache()
def get_settings() -> Settings:
    return Settings()


def reload_settings() -> Settings:
    """Drop the cached Settings and read the environment again."""
    get_settings.cache_clear()
    return get_settings()


__all__ = [
    "HeliusSettings",
    "SubmissionSettings",
    "WalletSettings",
    "LoggingSettings",
    "Settings",
    "get_settings",
    "reload_settings",
]
