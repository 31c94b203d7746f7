"""
HostFinder Shared Module

Common models, errors, and logging setup shared between discovery, selection, and clients.
"""

from .models import (
    PRICE_PRECISION,
    HostRecord,
    ReputationScore,
    BlacklistEntry,
    ConnectionQuality,
    ConnectionSample,
    ConnectionMetrics,
    PeerStanding,
    HostSelectionMode,
    ScoreFactors,
    RankedHost,
    DiscoveryOptions,
    SourceStats,
    DiscoveryStats,
)
from .errors import (
    HostFinderError,
    ConfigurationError,
    DiscoverySourceError,
    HostProviderNotSetError,
    HostSelectionError,
    PreferredHostRequiredError,
    UnsupportedModeError,
    HostUnavailableError,
)
from .log_config import configure_logging

__all__ = [
    # Models
    "PRICE_PRECISION",
    "HostRecord",
    "ReputationScore",
    "BlacklistEntry",
    "ConnectionQuality",
    "ConnectionSample",
    "ConnectionMetrics",
    "PeerStanding",
    "HostSelectionMode",
    "ScoreFactors",
    "RankedHost",
    "DiscoveryOptions",
    "SourceStats",
    "DiscoveryStats",
    # Errors
    "HostFinderError",
    "ConfigurationError",
    "DiscoverySourceError",
    "HostProviderNotSetError",
    "HostSelectionError",
    "PreferredHostRequiredError",
    "UnsupportedModeError",
    "HostUnavailableError",
    # Logging
    "configure_logging",
]
