#!/usr/bin/env python3
"""
Centralized Configuration Module using Pydantic Settings

This module provides type-safe, environment-based configuration for the
possibility generation engine. Every tunable the scheduler, circuit breakers,
metadata builder and lifecycle state machine consume is declared here.

Architectural Decision: Pydantic Settings for type safety and validation
- Environment variable loading with .env support
- Type validation at startup (fail fast on misconfiguration)
- Grouped views (settings.pool, settings.circuit_breaker, ...) for consumers
- Easy testing with override mechanisms (reload_settings)

Author: System Architect
Date: 2025-12-05
"""

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class PoolSettings(BaseSettings):
    """
    Bounded priority scheduler configuration.

    STAGE-CP: Connection pool sizing
    """

    POOL_MAX_CONCURRENCY: int = Field(default=6, description="Maximum in-flight possibilities")
    POOL_METRICS_WINDOW: int = Field(default=100, description="Rolling window for execution times")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class CircuitBreakerSettings(BaseSettings):
    """
    Circuit breaker configuration for provider isolation.

    STAGE-CB: Circuit breaker thresholds
    """

    CB_FAILURE_THRESHOLD: int = Field(default=3, description="Consecutive failures before opening")
    CB_RECOVERY_TIMEOUT: float = Field(default=60.0, description="Seconds before a trial call")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class GenerationSettings(BaseSettings):
    """
    Permutation, prioritization and lifecycle configuration.

    STAGE-PM: Priority metadata configuration
    """

    GENERATION_MAX_RETRIES: int = Field(default=3, description="Lifecycle retry budget")
    RETRY_BASE_DELAY: float = Field(default=1.0, description="Initial retry backoff (seconds)")
    RETRY_MAX_DELAY: float = Field(default=30.0, description="Maximum retry backoff (seconds)")
    POSSIBILITY_TOKENS_DEFAULT: int = Field(default=100, description="Standard possibility ceiling")
    REASONING_TOKENS_DEFAULT: int = Field(default=1500, description="Reasoning model ceiling")
    STANDARD_TEMPERATURE: float = Field(default=0.7, description="Standard sampling temperature")
    STANDARD_TEMPERATURE_TOLERANCE: float = Field(default=0.1, description="Near-standard band")
    HIGH_PRIORITY_INDEX_THRESHOLD: int = Field(
        default=8, description="First N permutations are always high priority"
    )

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class StreamingSettings(BaseSettings):
    """
    Streaming execution configuration.

    STAGE-ST: Execution endpoint configuration
    """

    EXECUTION_BASE_URL: str | None = Field(
        default=None, description="Provider-fronting endpoint (None = in-process app)"
    )
    EXECUTION_TIMEOUT: float = Field(default=60.0, description="Per-request read timeout")
    STREAM_STAGGER_DELAY: float = Field(
        default=0.0, description="Delay between successive submissions (seconds)"
    )

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class LoggingSettings(BaseSettings):
    """
    Logging configuration for structured logging.

    STAGE-L: Logging configuration

    Architectural Decision: structlog for production-grade logging
    """

    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: Literal["json", "console"] = Field(default="json", description="Log output format")

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v.upper()

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class ApplicationSettings(BaseSettings):
    """
    General application settings.

    STAGE-0: Application initialization
    """

    ENVIRONMENT: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Application environment"
    )
    APP_NAME: str = Field(default="Possibility Engine", description="Application name")
    APP_VERSION: str = Field(default="1.0.0", description="Application version")
    API_HOST: str = Field(default="0.0.0.0", description="API host")
    API_PORT: int = Field(default=8000, description="API port")
    API_BASE_PATH: str = Field(default="/api/v1", description="Prefix for engine routes")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class Settings(BaseSettings):
    """
    Main settings class that aggregates all configuration sections.

    STAGE-0: Centralized configuration initialization

    Usage:
        from possibility_engine.core.config.settings import get_settings

        settings = get_settings()
        concurrency = settings.pool.POOL_MAX_CONCURRENCY
        threshold = settings.circuit_breaker.CB_FAILURE_THRESHOLD
    """

    # Pool settings
    POOL_MAX_CONCURRENCY: int = Field(default=6, description="Maximum in-flight possibilities")
    POOL_METRICS_WINDOW: int = Field(default=100, description="Rolling window for execution times")

    # Circuit Breaker settings
    CB_FAILURE_THRESHOLD: int = Field(default=3, description="Consecutive failures before opening")
    CB_RECOVERY_TIMEOUT: float = Field(default=60.0, description="Seconds before a trial call")

    # Generation settings
    GENERATION_MAX_RETRIES: int = Field(default=3, description="Lifecycle retry budget")
    RETRY_BASE_DELAY: float = Field(default=1.0, description="Initial retry backoff (seconds)")
    RETRY_MAX_DELAY: float = Field(default=30.0, description="Maximum retry backoff (seconds)")
    POSSIBILITY_TOKENS_DEFAULT: int = Field(default=100, description="Standard possibility ceiling")
    REASONING_TOKENS_DEFAULT: int = Field(default=1500, description="Reasoning model ceiling")
    STANDARD_TEMPERATURE: float = Field(default=0.7, description="Standard sampling temperature")
    STANDARD_TEMPERATURE_TOLERANCE: float = Field(default=0.1, description="Near-standard band")
    HIGH_PRIORITY_INDEX_THRESHOLD: int = Field(
        default=8, description="First N permutations are always high priority"
    )

    # Streaming settings
    EXECUTION_BASE_URL: str | None = Field(
        default=None, description="Provider-fronting endpoint (None = in-process app)"
    )
    EXECUTION_TIMEOUT: float = Field(default=60.0, description="Per-request read timeout")
    STREAM_STAGGER_DELAY: float = Field(
        default=0.0, description="Delay between successive submissions (seconds)"
    )

    # Logging settings
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: Literal["json", "console"] = Field(default="json", description="Log output format")

    # Application settings
    ENVIRONMENT: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Application environment"
    )
    APP_NAME: str = Field(default="Possibility Engine", description="Application name")
    APP_VERSION: str = Field(default="1.0.0", description="Application version")
    API_HOST: str = Field(default="0.0.0.0", description="API host")
    API_PORT: int = Field(default=8000, description="API port")
    API_BASE_PATH: str = Field(default="/api/v1", description="Prefix for engine routes")

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v.upper()

    @field_validator("POOL_MAX_CONCURRENCY", "CB_FAILURE_THRESHOLD")
    @classmethod
    def validate_positive(cls, v, info):
        """Concurrency and breaker thresholds must be at least 1."""
        if v < 1:
            raise ValueError(f"{info.field_name} must be >= 1")
        return v

    @field_validator("GENERATION_MAX_RETRIES", "HIGH_PRIORITY_INDEX_THRESHOLD")
    @classmethod
    def validate_non_negative(cls, v, info):
        if v < 0:
            raise ValueError(f"{info.field_name} must be >= 0")
        return v

    # Nested configuration views
    @property
    def pool(self) -> 'PoolSettings':
        """Get scheduler settings."""
        return PoolSettings(
            POOL_MAX_CONCURRENCY=self.POOL_MAX_CONCURRENCY,
            POOL_METRICS_WINDOW=self.POOL_METRICS_WINDOW,
        )

    @property
    def circuit_breaker(self) -> 'CircuitBreakerSettings':
        """Get circuit breaker settings."""
        return CircuitBreakerSettings(
            CB_FAILURE_THRESHOLD=self.CB_FAILURE_THRESHOLD,
            CB_RECOVERY_TIMEOUT=self.CB_RECOVERY_TIMEOUT,
        )

    @property
    def generation(self) -> 'GenerationSettings':
        """Get generation settings."""
        return GenerationSettings(
            GENERATION_MAX_RETRIES=self.GENERATION_MAX_RETRIES,
            RETRY_BASE_DELAY=self.RETRY_BASE_DELAY,
            RETRY_MAX_DELAY=self.RETRY_MAX_DELAY,
            POSSIBILITY_TOKENS_DEFAULT=self.POSSIBILITY_TOKENS_DEFAULT,
            REASONING_TOKENS_DEFAULT=self.REASONING_TOKENS_DEFAULT,
            STANDARD_TEMPERATURE=self.STANDARD_TEMPERATURE,
            STANDARD_TEMPERATURE_TOLERANCE=self.STANDARD_TEMPERATURE_TOLERANCE,
            HIGH_PRIORITY_INDEX_THRESHOLD=self.HIGH_PRIORITY_INDEX_THRESHOLD,
        )

    @property
    def streaming(self) -> 'StreamingSettings':
        """Get streaming settings."""
        return StreamingSettings(
            EXECUTION_BASE_URL=self.EXECUTION_BASE_URL,
            EXECUTION_TIMEOUT=self.EXECUTION_TIMEOUT,
            STREAM_STAGGER_DELAY=self.STREAM_STAGGER_DELAY,
        )

    @property
    def logging(self) -> 'LoggingSettings':
        """Get logging settings."""
        return LoggingSettings(
            LOG_LEVEL=self.LOG_LEVEL,
            LOG_FORMAT=self.LOG_FORMAT,
        )

    @property
    def app(self) -> 'ApplicationSettings':
        """Get application settings."""
        return ApplicationSettings(
            ENVIRONMENT=self.ENVIRONMENT,
            APP_NAME=self.APP_NAME,
            APP_VERSION=self.APP_VERSION,
            API_HOST=self.API_HOST,
            API_PORT=self.API_PORT,
            API_BASE_PATH=self.API_BASE_PATH,
        )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"  # Ignore extra environment variables
    )


# Global settings instance (singleton pattern)
_settings: Settings | None = None


def get_settings() -> Settings:
    """
    Get the global settings instance (singleton).

    STAGE-0.3: Settings initialization

    Returns:
        Settings: Global settings instance
    """
    global _settings

    if _settings is None:
        _settings = Settings()

    return _settings


def reload_settings() -> Settings:
    """
    Reload settings (useful for testing).

    Returns:
        Settings: New settings instance
    """
    global _settings
    _settings = Settings()
    return _settings
