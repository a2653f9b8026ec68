"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
pump.fun indexer, loading and validating environment variables at
startup.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from pumpfun_indexer.parser.constants import (
    DEFAULT_BONDING_COMPLETE_LAMPORTS,
    DEFAULT_TOKEN_TOTAL_SUPPLY,
    DEFAULT_VIRTUAL_SOL_OFFSET,
    PUMP_FUN_PROGRAM_ID,
    WRAPPED_SOL_MINT,
    ProtocolParams,
)

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"

DEFAULT_SOL_USD_FEED_ID = "0xef0d8b6fda2ceba41da15d4095d1da392a0d2f8ed0c6c7bc0f4cfac8c280b56d"


def _with_api_key(url: str, api_key: SecretStr | None) -> str:
    if api_key is None:
        return url
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}api-key={api_key.get_secret_value()}"


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        alias="DATABASE_URL",
        description="PostgreSQL connection string",
    )
    pool_size: int = Field(
        default=5,
        alias="DATABASE_POOL_SIZE",
        ge=1,
        le=100,
        description="SQLAlchemy connection pool size",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(("postgresql://", "postgres://", "postgresql+asyncpg://")):
            raise ValueError("DATABASE_URL must be a PostgreSQL connection string")
        return v


class RedisSettings(BaseSettings):
    """Redis connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        default="redis://localhost:6379",
        alias="REDIS_URL",
        description="Redis connection string",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate Redis URL format."""
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v


class HeliusSettings(BaseSettings):
    """Solana RPC provider (Helius) settings."""

    model_config = SettingsConfigDict(env_prefix="HELIUS_", extra="ignore")

    api_key: SecretStr | None = Field(
        default=None,
        alias="HELIUS_API_KEY",
        description="Helius API key, appended to both endpoints",
    )
    ws_url: str = Field(
        default="wss://mainnet.helius-rpc.com/",
        alias="HELIUS_WS_URL",
        description="WebSocket endpoint for logsSubscribe",
    )
    rpc_url: str = Field(
        default="https://mainnet.helius-rpc.com/",
        alias="HELIUS_RPC_URL",
        description="HTTP JSON-RPC endpoint for getTransaction",
    )

    @field_validator("ws_url")
    @classmethod
    def validate_ws_url(cls, v: str) -> str:
        """Validate WebSocket URL format."""
        if not v.startswith(("ws://", "wss://")):
            raise ValueError("WebSocket URL must start with ws:// or wss://")
        return v

    @field_validator("rpc_url")
    @classmethod
    def validate_rpc_url(cls, v: str) -> str:
        """Validate RPC URL format."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("RPC URL must be an HTTP(S) endpoint")
        return v

    @property
    def ws_endpoint(self) -> str:
        return _with_api_key(self.ws_url, self.api_key)

    @property
    def rpc_endpoint(self) -> str:
        return _with_api_key(self.rpc_url, self.api_key)


class ProtocolSettings(BaseSettings):
    """Bonding-curve program constants.

    Defaults follow pump.fun conventions; validate them against the live
    program before changing.
    """

    model_config = SettingsConfigDict(env_prefix="PROTOCOL_", extra="ignore")

    program_id: str = Field(
        default=PUMP_FUN_PROGRAM_ID,
        alias="PROTOCOL_PROGRAM_ID",
        description="Program address whose logs are subscribed to",
    )
    native_mint: str = Field(
        default=WRAPPED_SOL_MINT,
        alias="PROTOCOL_NATIVE_MINT",
        description="Wrapped native asset mint, ignored by the parser",
    )
    virtual_sol_offset_lamports: Decimal = Field(
        default=Decimal(DEFAULT_VIRTUAL_SOL_OFFSET),
        alias="PROTOCOL_VIRTUAL_SOL_OFFSET_LAMPORTS",
        ge=0,
        description="Offset added to real SOL reserves to get virtual reserves",
    )
    bonding_complete_lamports: Decimal = Field(
        default=Decimal(DEFAULT_BONDING_COMPLETE_LAMPORTS),
        alias="PROTOCOL_BONDING_COMPLETE_LAMPORTS",
        gt=0,
        description="Virtual SOL reserves at which the curve is complete",
    )
    token_total_supply: Decimal = Field(
        default=Decimal(DEFAULT_TOKEN_TOTAL_SUPPLY),
        alias="PROTOCOL_TOKEN_TOTAL_SUPPLY",
        gt=0,
        description="Total supply in base units assumed for new tokens",
    )

    def params(self) -> ProtocolParams:
        """Build the parser's immutable protocol parameters."""
        return ProtocolParams(
            program_id=self.program_id,
            native_mint=self.native_mint,
            virtual_sol_offset=self.virtual_sol_offset_lamports,
            bonding_complete_lamports=self.bonding_complete_lamports,
            token_total_supply=self.token_total_supply,
        )


class IngestSettings(BaseSettings):
    """Log stream ingestion and event bus settings."""

    model_config = SettingsConfigDict(env_prefix="INGEST_", extra="ignore")

    bus_mode: Literal["redis", "memory"] = Field(
        default="memory",
        alias="INGEST_BUS_MODE",
        description="Bus backend for standalone mode; ingest and worker modes always use Redis",
    )
    channel: str = Field(
        default="solana:transactions",
        alias="INGEST_CHANNEL",
        min_length=1,
        description="Bus channel carrying signature envelopes",
    )
    memory_bus_capacity: int = Field(
        default=10_000,
        alias="INGEST_MEMORY_BUS_CAPACITY",
        ge=1,
        le=1_000_000,
        description="In-memory bus capacity before the oldest envelope is dropped",
    )
    keepalive_interval_seconds: float = Field(
        default=30.0,
        alias="INGEST_KEEPALIVE_INTERVAL_SECONDS",
        gt=0,
        le=600,
        description="Interval between keepalive pings on the stream",
    )
    reconnect_base_delay_seconds: float = Field(
        default=1.0,
        alias="INGEST_RECONNECT_BASE_DELAY_SECONDS",
        ge=0,
        le=60,
        description="Initial reconnect delay (doubles per attempt)",
    )
    reconnect_max_delay_seconds: float = Field(
        default=30.0,
        alias="INGEST_RECONNECT_MAX_DELAY_SECONDS",
        ge=0,
        le=600,
        description="Upper bound on the reconnect delay",
    )
    max_reconnect_attempts: int = Field(
        default=10,
        alias="INGEST_MAX_RECONNECT_ATTEMPTS",
        ge=1,
        le=10_000,
        description="Consecutive failed connections before giving up",
    )
    publish_timeout_seconds: float = Field(
        default=2.0,
        alias="INGEST_PUBLISH_TIMEOUT_SECONDS",
        gt=0,
        le=60,
        description="Max time a bus publish may block the read loop",
    )


class ResolverSettings(BaseSettings):
    """getTransaction retry settings."""

    model_config = SettingsConfigDict(env_prefix="RESOLVER_", extra="ignore")

    max_attempts: int = Field(
        default=5,
        alias="RESOLVER_MAX_ATTEMPTS",
        ge=1,
        le=20,
        description="Attempts per signature before giving up",
    )
    rate_limit_backoff_seconds: float = Field(
        default=1.0,
        alias="RESOLVER_RATE_LIMIT_BACKOFF_SECONDS",
        ge=0,
        le=60,
        description="Base backoff after HTTP 429 (doubles per attempt)",
    )
    not_indexed_delay_seconds: float = Field(
        default=0.5,
        alias="RESOLVER_NOT_INDEXED_DELAY_SECONDS",
        ge=0,
        le=60,
        description="Delay per attempt when the transaction is not indexed yet",
    )
    request_timeout_seconds: float = Field(
        default=10.0,
        alias="RESOLVER_REQUEST_TIMEOUT_SECONDS",
        gt=0,
        le=120,
        description="Per-call HTTP timeout",
    )


class PriceFeedSettings(BaseSettings):
    """SOL/USD price feed (Pyth Hermes) settings."""

    model_config = SettingsConfigDict(env_prefix="PRICE_", extra="ignore")

    hermes_url: str = Field(
        default="https://hermes.pyth.network/v2/updates/price/latest",
        alias="PRICE_HERMES_URL",
        description="Hermes latest-price endpoint",
    )
    feed_id: str = Field(
        default=DEFAULT_SOL_USD_FEED_ID,
        alias="PRICE_FEED_ID",
        description="Pyth price feed id for SOL/USD",
    )
    cache_ttl_seconds: float = Field(
        default=30.0,
        alias="PRICE_CACHE_TTL_SECONDS",
        gt=0,
        le=3600,
        description="How long a quote is served from cache",
    )
    request_timeout_seconds: float = Field(
        default=5.0,
        alias="PRICE_REQUEST_TIMEOUT_SECONDS",
        gt=0,
        le=120,
        description="Per-call HTTP timeout",
    )

    @field_validator("hermes_url")
    @classmethod
    def validate_hermes_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("PRICE_HERMES_URL must be an HTTP(S) endpoint")
        return v


class WorkerSettings(BaseSettings):
    """Pipeline worker settings."""

    model_config = SettingsConfigDict(env_prefix="WORKER_", extra="ignore")

    max_concurrency: int = Field(
        default=16,
        alias="WORKER_MAX_CONCURRENCY",
        ge=1,
        le=1024,
        description="Signatures processed concurrently",
    )


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from pumpfun_indexer.config import get_settings

        settings = get_settings()
        print(settings.database.url)
        print(settings.log_level)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    database: DatabaseSettings = Field(
        default_factory=lambda: DatabaseSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    redis: RedisSettings = Field(
        default_factory=lambda: RedisSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    helius: HeliusSettings = Field(
        default_factory=lambda: HeliusSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    protocol: ProtocolSettings = Field(
        default_factory=lambda: ProtocolSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    ingest: IngestSettings = Field(
        default_factory=lambda: IngestSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    resolver: ResolverSettings = Field(
        default_factory=lambda: ResolverSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    price: PriceFeedSettings = Field(
        default_factory=lambda: PriceFeedSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    worker: WorkerSettings = Field(
        default_factory=lambda: WorkerSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "database_url": self._redact_url(self.database.url),
            "redis_url": self._redact_url(self.redis.url),
            "helius": {
                "ws_url": self.helius.ws_url,
                "rpc_url": self.helius.rpc_url,
                "api_key": "(set)" if self.helius.api_key else "(not set)",
            },
            "protocol": {
                "program_id": self.protocol.program_id,
                "virtual_sol_offset_lamports": str(self.protocol.virtual_sol_offset_lamports),
                "bonding_complete_lamports": str(self.protocol.bonding_complete_lamports),
            },
            "ingest": {
                "bus_mode": self.ingest.bus_mode,
                "channel": self.ingest.channel,
                "max_reconnect_attempts": str(self.ingest.max_reconnect_attempts),
            },
            "resolver": {
                "max_attempts": str(self.resolver.max_attempts),
            },
            "price": {
                "feed_id": self.price.feed_id,
                "cache_ttl_seconds": str(self.price.cache_ttl_seconds),
            },
            "worker": {
                "max_concurrency": str(self.worker.max_concurrency),
            },
            "log_level": self.log_level,
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If required environment variables are missing
            or have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
