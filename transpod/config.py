"""Configuration management for transpod."""

import os
from dataclasses import dataclass

DEFAULT_USER_AGENT = "transpod/1.0 (Podcast feed item limiter)"
DEFAULT_MAX_FEED_BYTES = 20 * 1024 * 1024


@dataclass
class FetchConfig:
    """Configuration for downloading upstream feeds."""

    timeout: float = 10.0
    max_bytes: int = DEFAULT_MAX_FEED_BYTES
    user_agent: str = DEFAULT_USER_AGENT
    chunk_size: int = 64 * 1024


@dataclass
class TransformConfig:
    """Configuration for the item-limiting transformer."""

    normalize_whitespace: bool = True
    preserve_name_case: bool = False
    chunk_size: int = 64 * 1024


@dataclass
class MetricsConfig:
    """Configuration for CloudWatch metrics."""

    enabled: bool = True
    namespace: str = "Transpod"
    region: str = "us-east-1"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_number(name: str, default, cast):
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        number = cast(value)
    except ValueError:
        raise ValueError(f"Invalid value for {name}: {value!r}")
    if number <= 0:
        raise ValueError(f"{name} must be positive, got {value!r}")
    return number


class Config:
    """Main configuration manager."""

    def __init__(self):
        """Initialize configuration from environment variables."""
        self.fetch_timeout = _env_number("FETCH_TIMEOUT_SECONDS", 10.0, float)
        self.max_feed_bytes = _env_number(
            "MAX_FEED_BYTES", DEFAULT_MAX_FEED_BYTES, int
        )
        self.default_limit = _env_number("DEFAULT_LIMIT", 10, int)
        self.user_agent = os.getenv("USER_AGENT", DEFAULT_USER_AGENT)
        self.normalize_whitespace = _env_bool("NORMALIZE_WHITESPACE", True)
        self.preserve_name_case = _env_bool("PRESERVE_NAME_CASE", False)
        self.metrics_enabled = _env_bool("ENABLE_METRICS", True)
        self.metrics_namespace = os.getenv("METRICS_NAMESPACE", "Transpod")
        self.aws_region = os.getenv(
            "CURRENT_AWS_REGION", os.getenv("AWS_DEFAULT_REGION", "us-east-1")
        )

    def get_fetch_config(self) -> FetchConfig:
        """Get fetcher configuration."""
        return FetchConfig(
            timeout=self.fetch_timeout,
            max_bytes=self.max_feed_bytes,
            user_agent=self.user_agent,
        )

    def get_transform_config(self) -> TransformConfig:
        """Get transformer configuration."""
        return TransformConfig(
            normalize_whitespace=self.normalize_whitespace,
            preserve_name_case=self.preserve_name_case,
        )

    def get_metrics_config(self) -> MetricsConfig:
        """Get CloudWatch metrics configuration."""
        return MetricsConfig(
            enabled=self.metrics_enabled,
            namespace=self.metrics_namespace,
            region=self.aws_region,
        )
