"""
Configuration management for runtree.
Reads tracer settings from environment variables.
"""

import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

DEFAULT_ENDPOINT = "http://localhost:1984"
DEFAULT_SESSION_NAME = "default"


def _optional_int(name: str) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


@dataclass
class TracerConfig:
    """Configuration for the collector tracer."""

    endpoint: str = DEFAULT_ENDPOINT
    api_key: Optional[str] = None

    # Resolved lazily against the collector when not set
    tenant_id: Optional[str] = None

    session_name: str = DEFAULT_SESSION_NAME
    session_extra: Optional[Dict[str, Any]] = None

    # Attached to root runs as reference_example_id
    example_id: Optional[str] = None

    # Network caller tuning
    max_concurrency: Optional[int] = None
    max_retries: int = 6
    timeout: float = 30.0

    @classmethod
    def from_env(cls) -> "TracerConfig":
        """
        Load configuration from environment variables.

        Optional environment variables:
        - RUNTREE_ENDPOINT (default: http://localhost:1984)
        - RUNTREE_API_KEY (default: None, sent as x-api-key when set)
        - RUNTREE_TENANT_ID (default: first tenant listed by the collector)
        - RUNTREE_SESSION (default: "default")
        - RUNTREE_MAX_CONCURRENCY (default: unlimited)
        - RUNTREE_MAX_RETRIES (default: 6)
        - RUNTREE_TIMEOUT (default: 30.0)

        Raises:
            ValueError: If a numeric variable cannot be parsed
        """
        max_retries = _optional_int("RUNTREE_MAX_RETRIES")
        if max_retries is not None and max_retries < 0:
            raise ValueError("RUNTREE_MAX_RETRIES must not be negative")

        max_concurrency = _optional_int("RUNTREE_MAX_CONCURRENCY")
        if max_concurrency is not None and max_concurrency < 1:
            raise ValueError("RUNTREE_MAX_CONCURRENCY must be at least 1")

        timeout_str = os.getenv("RUNTREE_TIMEOUT", "30.0")
        try:
            timeout = float(timeout_str)
        except ValueError:
            raise ValueError(
                f"RUNTREE_TIMEOUT must be a number, got {timeout_str!r}"
            ) from None

        return cls(
            endpoint=os.getenv("RUNTREE_ENDPOINT") or DEFAULT_ENDPOINT,
            api_key=os.getenv("RUNTREE_API_KEY") or None,
            tenant_id=os.getenv("RUNTREE_TENANT_ID") or None,
            session_name=os.getenv("RUNTREE_SESSION") or DEFAULT_SESSION_NAME,
            max_concurrency=max_concurrency,
            max_retries=6 if max_retries is None else max_retries,
            timeout=timeout,
        )

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> "TracerConfig":
        """
        Create configuration from a dictionary.

        Args:
            config: Dictionary with configuration values

        Returns:
            TracerConfig instance
        """
        return cls(
            endpoint=config.get("endpoint", DEFAULT_ENDPOINT),
            api_key=config.get("api_key"),
            tenant_id=config.get("tenant_id"),
            session_name=config.get("session_name", DEFAULT_SESSION_NAME),
            session_extra=config.get("session_extra"),
            example_id=config.get("example_id"),
            max_concurrency=config.get("max_concurrency"),
            max_retries=config.get("max_retries", 6),
            timeout=config.get("timeout", 30.0),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            "endpoint": self.endpoint,
            "api_key": self.api_key,
            "tenant_id": self.tenant_id,
            "session_name": self.session_name,
            "session_extra": self.session_extra,
            "example_id": self.example_id,
            "max_concurrency": self.max_concurrency,
            "max_retries": self.max_retries,
            "timeout": self.timeout,
        }


# Global configuration instance
_config: Optional[TracerConfig] = None


def get_config() -> TracerConfig:
    """
    Get the global tracer configuration.

    Loads from environment on first call.

    Returns:
        TracerConfig instance
    """
    global _config
    if _config is None:
        _config = TracerConfig.from_env()
    return _config


def set_config(config: TracerConfig) -> None:
    """
    Set the global tracer configuration.

    Args:
        config: Configuration to use
    """
    global _config
    _config = config


def reset_config() -> None:
    """Reset the global configuration (useful for testing)."""
    global _config
    _config = None
