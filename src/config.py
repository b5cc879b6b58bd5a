"""
Configuration module for pzctl.

Loads configuration from environment variables. Command line flags
override individual values after loading.
"""

import os
from dataclasses import dataclass, field
from typing import Optional

DEFAULT_API_URL = "https://console.pomerium.app/api/v0"
DEFAULT_STATE_FILE = ".pzctl/state.json"


@dataclass
class ProviderConfig:
    """Pomerium Zero API connection configuration."""

    api_token: str = field(default="", repr=False)  # Never log the token
    api_url: str = DEFAULT_API_URL
    http_timeout: int = 10  # seconds

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            api_token=os.getenv("PZ_API_TOKEN", ""),
            api_url=os.getenv("PZ_API_URL", DEFAULT_API_URL).rstrip("/"),
            http_timeout=int(os.getenv("PZ_HTTP_TIMEOUT", "10")),
        )


@dataclass
class StateConfig:
    """Local state store configuration."""

    path: str = DEFAULT_STATE_FILE

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(path=os.getenv("PZ_STATE_FILE", DEFAULT_STATE_FILE))


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(level=os.getenv("LOG_LEVEL", "INFO").upper())


@dataclass
class Config:
    """Main configuration object."""

    provider: ProviderConfig
    state: StateConfig
    logging: LoggingConfig

    @classmethod
    def from_env(cls):
        """Load all configuration from environment variables."""
        return cls(
            provider=ProviderConfig.from_env(),
            state=StateConfig.from_env(),
            logging=LoggingConfig.from_env(),
        )

    @classmethod
    def default(cls):
        """Return default configuration."""
        return cls(
            provider=ProviderConfig(),
            state=StateConfig(),
            logging=LoggingConfig(),
        )


# Global config instance
config: Optional[Config] = None


def load_config() -> Config:
    """Load configuration (singleton pattern)."""
    global config
    if config is None:
        config = Config.from_env()
    return config


def get_config() -> Config:
    """Get the current configuration."""
    if config is None:
        return load_config()
    return config


def reset_config() -> None:
    """Reset configuration (mainly for testing)."""
    global config
    config = None
