"""
HostFinder Configuration

Discovery settings loaded from YAML with environment overrides.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union
import yaml

from shared.errors import ConfigurationError
from .engine import DEFAULT_CACHE_TTL, DEFAULT_SOURCE_TIMEOUT
from .sources import (
    DEFAULT_HTTP_TIMEOUT,
    SOURCE_HTTP,
    SOURCE_P2P_GLOBAL,
    SOURCE_P2P_LOCAL,
)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

DEFAULT_CONFIG_PATH = Path.home() / ".hostfinder" / "config.yaml"

# Environment variable -> (config key, converter)
ENV_OVERRIDES = {
    "HOSTFINDER_REGISTRY_URL": ("registry_url", str),
    "HOSTFINDER_CACHE_TTL": ("cache_ttl", float),
    "HOSTFINDER_SOURCE_TIMEOUT": ("source_timeout", float),
    "HOSTFINDER_LOG_LEVEL": ("log_level", str),
}


@dataclass
class DiscoveryConfig:
    """Discovery and selection configuration."""
    cache_ttl: float = DEFAULT_CACHE_TTL
    source_timeout: float = DEFAULT_SOURCE_TIMEOUT
    priority: list[str] = field(
        default_factory=lambda: [SOURCE_P2P_LOCAL, SOURCE_P2P_GLOBAL, SOURCE_HTTP]
    )
    enabled_sources: dict[str, bool] = field(default_factory=dict)
    registry_url: Optional[str] = None
    registry_timeout: float = DEFAULT_HTTP_TIMEOUT
    static_hosts: list[dict[str, Any]] = field(default_factory=list)
    selection_seed: Optional[int] = None
    log_level: Optional[str] = None  # Applied by HostFinderClient.connect when set

    def __post_init__(self) -> None:
        if self.cache_ttl < 0:
            raise ConfigurationError("cache_ttl must not be negative")
        if self.source_timeout <= 0:
            raise ConfigurationError("source_timeout must be positive")
        if self.registry_timeout <= 0:
            raise ConfigurationError("registry_timeout must be positive")
        if self.log_level is not None:
            if str(self.log_level).upper() not in LOG_LEVELS:
                raise ConfigurationError(f"Unknown log_level: {self.log_level!r}")
            self.log_level = str(self.log_level).upper()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DiscoveryConfig":
        """Build a config from a mapping, rejecting unknown keys."""
        known = set(cls.__dataclass_fields__)
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {', '.join(unknown)}")
        try:
            return cls(**data)
        except TypeError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

    def is_enabled(self, source: str) -> bool:
        return self.enabled_sources.get(source, True)


def load_config(path: Optional[Union[str, Path]] = None) -> DiscoveryConfig:
    """
    Load configuration from YAML, then apply environment overrides.

    A missing file yields the defaults.

    Args:
        path: Config file, defaults to ~/.hostfinder/config.yaml

    Returns:
        Loaded configuration

    Raises:
        ConfigurationError: Malformed YAML or invalid values
    """
    config_path = Path(path).expanduser() if path else DEFAULT_CONFIG_PATH
    data: dict[str, Any] = {}

    if config_path.exists():
        try:
            with open(config_path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"{config_path} must contain a mapping")

    for env_var, (key, convert) in ENV_OVERRIDES.items():
        value = os.environ.get(env_var)
        if value is None or value == "":
            continue
        try:
            data[key] = convert(value)
        except ValueError as e:
            raise ConfigurationError(f"Invalid value for {env_var}: {value!r}") from e

    return DiscoveryConfig.from_dict(data)
