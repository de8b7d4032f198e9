"""
Configuration for the smart transaction pipeline.

PipelineConfig is the immutable value the pipeline is built from. It is
normally created from a cluster preset:

    config = PipelineConfig.for_cluster("devnet")
    config = PipelineConfig.for_cluster("helius-mainnet", api_key="...")

Settings loads the same values from environment variables (prefix
``SMART_TX_``) or a ``.env`` file for entry points that want that.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError
from .models import (
    DEFAULT_ATTEMPT_TIMEOUT,
    DEFAULT_CONFIRMATION_TIMEOUT,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_TRANSACTION_RETRIES,
    CommitmentLevel,
)


# =============================================================================
# ENUMS
# =============================================================================

class LogLevel(str, Enum):
    """Logging level options."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


# =============================================================================
# CLUSTER PRESETS
# =============================================================================

@dataclass(frozen=True)
class ClusterPreset:
    name: str
    rpc_url: str
    supports_priority_fee_estimate: bool = False
    enable_client_side_retries: bool = True
    needs_priority_fees: bool = True
    requires_api_key: bool = False


CLUSTERS: Dict[str, ClusterPreset] = {
    "mainnet-beta": ClusterPreset("mainnet-beta", "https://api.mainnet-beta.solana.com"),
    "testnet": ClusterPreset("testnet", "https://api.testnet.solana.com"),
    "devnet": ClusterPreset("devnet", "https://api.devnet.solana.com"),
    "helius-mainnet": ClusterPreset(
        "helius-mainnet",
        "https://mainnet.helius-rpc.com/",
        supports_priority_fee_estimate=True,
        requires_api_key=True,
    ),
    "helius-devnet": ClusterPreset(
        "helius-devnet",
        "https://devnet.helius-rpc.com/",
        requires_api_key=True,
    ),
    "localnet": ClusterPreset(
        "localnet",
        "http://localhost:8899",
        enable_client_side_retries=False,
        needs_priority_fees=False,
    ),
}

CLUSTER_ALIASES: Dict[str, str] = {
    "mainnet": "mainnet-beta",
}


def get_cluster(name: str) -> ClusterPreset:
    key = CLUSTER_ALIASES.get(name.strip().lower(), name.strip().lower())
    try:
        return CLUSTERS[key]
    except KeyError:
        raise ConfigurationError(
            f"Unknown cluster: {name}",
            context={"known_clusters": ", ".join(sorted(CLUSTERS))},
        ) from None


def with_api_key(url: str, api_key: str) -> str:
    """Add the ``api-key`` query parameter, replacing any existing one."""
    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query) if k != "api-key"]
    query.append(("api-key", api_key))
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


# =============================================================================
# PIPELINE CONFIGURATION
# =============================================================================

class PipelineConfig(BaseModel):
    """Feature flags and defaults the pipeline runs with."""

    model_config = ConfigDict(frozen=True)

    rpc_url: str = Field(
        default="https://api.mainnet-beta.solana.com",
        description="RPC endpoint URL",
    )

    api_key: Optional[SecretStr] = Field(
        default=None,
        description="Provider API key, sent as the api-key URL parameter",
    )

    needs_priority_fees: bool = Field(
        default=True,
        description="Estimate and attach compute budget instructions",
    )

    supports_priority_fee_estimate: bool = Field(
        default=False,
        description="Provider implements getPriorityFeeEstimate",
    )

    enable_client_side_retries: bool = Field(
        default=True,
        description="Resend the signed transaction on transport failures",
    )

    default_client_side_retries: int = Field(
        default=DEFAULT_TRANSACTION_RETRIES,
        ge=0,
        le=50,
        description="Retries used when the caller does not pass one",
    )

    commitment: CommitmentLevel = Field(
        default=CommitmentLevel.CONFIRMED,
        description="Default confirmation commitment",
    )

    skip_preflight: bool = Field(
        default=False,
        description="Default for skipping the node's preflight simulation",
    )

    confirmation_timeout: float = Field(
        default=DEFAULT_CONFIRMATION_TIMEOUT,
        gt=0,
        description="Wall-clock budget for a whole submission in seconds",
    )

    attempt_timeout: float = Field(
        default=DEFAULT_ATTEMPT_TIMEOUT,
        gt=0,
        description="Time one send/confirm attempt may take in seconds",
    )

    poll_interval: float = Field(
        default=DEFAULT_POLL_INTERVAL,
        gt=0,
        le=10.0,
        description="Signature status polling interval in seconds",
    )

    retry_base_delay: float = Field(
        default=0.5,
        ge=0,
        le=10.0,
        description="Initial backoff between attempts in seconds",
    )

    retry_max_delay: float = Field(
        default=5.0,
        ge=0,
        le=60.0,
        description="Backoff cap in seconds",
    )

    rpc_timeout: float = Field(
        default=30.0,
        gt=0,
        le=120.0,
        description="RPC request timeout in seconds",
    )

    @model_validator(mode="after")
    def validate_delays(self) -> "PipelineConfig":
        if self.retry_max_delay < self.retry_base_delay:
            raise ValueError("retry_max_delay must be >= retry_base_delay")
        return self

    @property
    def endpoint_url(self) -> str:
        if self.api_key is None:
            return self.rpc_url
        return with_api_key(self.rpc_url, self.api_key.get_secret_value())

    @property
    def client_side_retries(self) -> int:
        """Retries applied when a call does not choose its own."""
        if not self.enable_client_side_retries:
            return 0
        return self.default_client_side_retries

    @classmethod
    def for_cluster(
        cls,
        name: str,
        api_key: Optional[str] = None,
        **overrides: Any,
    ) -> "PipelineConfig":
        preset = get_cluster(name)

        if preset.requires_api_key and not api_key:
            raise ConfigurationError(
                f"Cluster {preset.name} requires an API key",
                context={"cluster": preset.name},
            )

        values: Dict[str, Any] = {
            "rpc_url": preset.rpc_url,
            "needs_priority_fees": preset.needs_priority_fees,
            "supports_priority_fee_estimate": preset.supports_priority_fee_estimate,
            "enable_client_side_retries": preset.enable_client_side_retries,
        }
        if api_key:
            values["api_key"] = SecretStr(api_key)
        values.update(overrides)

        try:
            return cls(**values)
        except ValueError as e:
            raise ConfigurationError(f"Invalid configuration for {preset.name}: {e}") from e


# =============================================================================
# ENVIRONMENT SETTINGS
# =============================================================================

class BaseConfig(BaseSettings):
    """Base configuration with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )


class LoggingSettings(BaseConfig):
    """Logging configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        env_file=".env",
        extra="ignore",
    )

    level: LogLevel = Field(
        default=LogLevel.INFO,
        description="Logging level",
    )

    format: str = Field(
        default="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        description="Log message format",
    )

    date_format: str = Field(
        default="%Y-%m-%d %H:%M:%S",
        description="Log date format",
    )

    file_enabled: bool = Field(
        default=False,
        description="Enable file logging",
    )

    file_path: Path = Field(
        default=Path("logs/smart_transactions.log"),
        description="Log file path",
    )

    file_max_bytes: int = Field(
        default=10 * 1024 * 1024,  # 10 MB
        ge=1024,
        description="Max log file size in bytes",
    )

    file_backup_count: int = Field(
        default=5,
        ge=0,
        le=100,
        description="Number of backup log files",
    )


class Settings(BaseConfig):
    """
    Environment-driven settings.

    Usage:
        settings = get_settings()
        config = settings.to_pipeline_config()
    """

    model_config = SettingsConfigDict(
        env_prefix="SMART_TX_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    cluster: str = Field(
        default="mainnet-beta",
        description="Cluster preset name",
    )

    rpc_url: Optional[str] = Field(
        default=None,
        description="Overrides the preset RPC endpoint",
    )

    api_key: Optional[SecretStr] = Field(
        default=None,
        validation_alias=AliasChoices("SMART_TX_API_KEY", "HELIUS_API_KEY"),
        description="Provider API key",
    )

    commitment: CommitmentLevel = Field(
        default=CommitmentLevel.CONFIRMED,
        description="Default confirmation commitment",
    )

    skip_preflight: bool = Field(default=False)

    max_client_side_retries: Optional[int] = Field(
        default=None,
        ge=0,
        le=50,
        description="Overrides the default retry count",
    )

    confirmation_timeout: float = Field(default=DEFAULT_CONFIRMATION_TIMEOUT, gt=0)

    attempt_timeout: float = Field(default=DEFAULT_ATTEMPT_TIMEOUT, gt=0)

    poll_interval: float = Field(default=DEFAULT_POLL_INTERVAL, gt=0, le=10.0)

    rpc_timeout: float = Field(default=30.0, gt=0, le=120.0)

    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @field_validator("rpc_url", mode="before")
    @classmethod
    def validate_url(cls, v: Any) -> Any:
        """Treat an empty URL as unset."""
        if v is None or v == "":
            return None
        return v

    def to_pipeline_config(self) -> PipelineConfig:
        overrides: Dict[str, Any] = {
            "commitment": self.commitment,
            "skip_preflight": self.skip_preflight,
            "confirmation_timeout": self.confirmation_timeout,
            "attempt_timeout": self.attempt_timeout,
            "poll_interval": self.poll_interval,
            "rpc_timeout": self.rpc_timeout,
        }
        if self.rpc_url:
            overrides["rpc_url"] = self.rpc_url
        if self.max_client_side_retries is not None:
            overrides["default_client_side_retries"] = self.max_client_side_retries

        api_key = self.api_key.get_secret_value() if self.api_key else None
        return PipelineConfig.for_cluster(self.cluster, api_key=api_key, **overrides)


# =============================================================================
# SINGLETON & CACHING
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def reload_settings() -> Settings:
    """Clear settings cache and reload from environment."""
    get_settings.cache_clear()
    return get_settings()


__all__ = [
    "LogLevel",
    "ClusterPreset",
    "CLUSTERS",
    "CLUSTER_ALIASES",
    "get_cluster",
    "with_api_key",
    "PipelineConfig",
    "LoggingSettings",
    "Settings",
    "get_settings",
    "reload_settings",
]
