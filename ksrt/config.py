"""
Configuration management for KSRT.

All configuration comes from environment variables; command-line options
override individual values. This module provides typed configuration
classes with validation.

Invariants:
    - All settings have sensible defaults except the registry URL
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that keep current behavior
    - Validate new numeric settings in ToolConfig.validate()
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from typing import Optional, Sequence, Tuple

from .errors import ConfigError
from .registry.http import redact_url
from .registry.retry import RetryPolicy
from .schema.naming import ReferenceSubjects

logger = logging.getLogger(__name__)


def _split_urls(value: Optional[str]) -> Tuple[str, ...]:
    if not value:
        return ()
    return tuple(url.strip() for url in value.split(",") if url.strip())


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, str(default))
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got '{raw}'")


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name, str(default))
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got '{raw}'")


@dataclass(frozen=True)
class RegistryConfig:
    """Schema registry connection configuration.

    Attributes:
        urls: Registry base URLs (failover order)
        username: Basic auth user
        password: Basic auth password
        timeout_seconds: Per-call timeout
    """

    urls: Tuple[str, ...] = ()
    username: Optional[str] = None
    password: Optional[str] = None
    timeout_seconds: float = 30.0

    @classmethod
    def from_env(cls) -> RegistryConfig:
        """Load configuration from environment variables."""
        return cls(
            urls=_split_urls(os.getenv("KSRT_REGISTRY_URL")),
            username=os.getenv("KSRT_REGISTRY_USERNAME"),
            password=os.getenv("KSRT_REGISTRY_PASSWORD"),
            timeout_seconds=_float_env("KSRT_REGISTRY_TIMEOUT", 30.0),
        )


@dataclass(frozen=True)
class RetryConfig:
    """Retry configuration for transient registry failures.

    Attributes:
        max_retries: Additional attempts after the first failure
        retry_delay_ms: Delay before the first retry
        retry_max_delay_ms: Backoff cap
    """

    max_retries: int = 3
    retry_delay_ms: int = 200
    retry_max_delay_ms: int = 5000

    @classmethod
    def from_env(cls) -> RetryConfig:
        """Load configuration from environment variables."""
        return cls(
            max_retries=_int_env("KSRT_MAX_RETRIES", 3),
            retry_delay_ms=_int_env("KSRT_RETRY_DELAY_MS", 200),
            retry_max_delay_ms=_int_env("KSRT_RETRY_MAX_DELAY_MS", 5000),
        )


@dataclass(frozen=True)
class RetrievalConfig:
    """Retrieval configuration.

    Attributes:
        max_concurrency: Maximum registry fetches in flight
    """

    max_concurrency: int = 8

    @classmethod
    def from_env(cls) -> RetrievalConfig:
        """Load configuration from environment variables."""
        return cls(max_concurrency=_int_env("KSRT_RETRIEVAL_CONCURRENCY", 8))


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "WARNING"
    log_format: str = "text"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "WARNING"),
            log_format=os.getenv("LOG_FORMAT", "text"),
        )


@dataclass(frozen=True)
class ToolConfig:
    """Complete tool configuration.

    Attributes:
        registry: Registry connection settings
        retry: Retry settings
        retrieval: Retrieval settings
        observability: Logging settings
        reference_subjects: Subject rule for imported schemas
    """

    registry: RegistryConfig = field(default_factory=RegistryConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)
    reference_subjects: ReferenceSubjects = ReferenceSubjects.RECORD

    @classmethod
    def from_env(cls) -> ToolConfig:
        """Load complete configuration from environment variables.

        Raises:
            ConfigError: If a value is invalid
        """
        mode = os.getenv("KSRT_REFERENCE_SUBJECTS", "record").lower()
        try:
            reference_subjects = ReferenceSubjects(mode)
        except ValueError:
            raise ConfigError(
                f"Invalid KSRT_REFERENCE_SUBJECTS '{mode}'. Must be one of: record, path"
            )

        config = cls(
            registry=RegistryConfig.from_env(),
            retry=RetryConfig.from_env(),
            retrieval=RetrievalConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
            reference_subjects=reference_subjects,
        )
        config.validate()
        return config

    def with_urls(self, urls: Sequence[str]) -> ToolConfig:
        """Copy with registry URLs replaced (when any are given)."""
        if not urls:
            return self
        return replace(self, registry=replace(self.registry, urls=tuple(urls)))

    def retry_policy(self) -> RetryPolicy:
        """Retry policy for registry calls."""
        return RetryPolicy(
            max_retries=self.retry.max_retries,
            retry_delay_ms=self.retry.retry_delay_ms,
            max_delay_ms=self.retry.retry_max_delay_ms,
            timeout_seconds=self.registry.timeout_seconds,
        )

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ConfigError: If configuration is invalid
        """
        if self.registry.timeout_seconds <= 0:
            raise ConfigError("KSRT_REGISTRY_TIMEOUT must be positive")
        if self.retry.max_retries < 0:
            raise ConfigError("KSRT_MAX_RETRIES must not be negative")
        if self.retry.retry_delay_ms < 0 or self.retry.retry_max_delay_ms < 0:
            raise ConfigError("Retry delays must not be negative")
        if self.retrieval.max_concurrency < 1:
            raise ConfigError("KSRT_RETRIEVAL_CONCURRENCY must be at least 1")
        if self.observability.log_format not in ("json", "text"):
            raise ConfigError(
                f"Invalid LOG_FORMAT '{self.observability.log_format}'. Must be one of: json, text"
            )
        if self.registry.password and not self.registry.username:
            logger.warning("KSRT_REGISTRY_PASSWORD is set without KSRT_REGISTRY_USERNAME; ignoring it")

    def require_registry(self) -> None:
        """Raise ConfigError unless at least one registry URL is configured."""
        if not self.registry.urls:
            raise ConfigError(
                "Schema Registry URL is required (argument or KSRT_REGISTRY_URL)"
            )

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Tool configuration loaded",
            extra={
                "registry_urls": [redact_url(url) for url in self.registry.urls],
                "registry_auth": bool(self.registry.username),
                "registry_timeout": self.registry.timeout_seconds,
                "max_retries": self.retry.max_retries,
                "retrieval_concurrency": self.retrieval.max_concurrency,
                "reference_subjects": self.reference_subjects.value,
                "log_level": self.observability.log_level,
            },
        )
