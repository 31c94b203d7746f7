"""
HostFinder Discovery

Multi-source host discovery, reputation bookkeeping and host selection.
"""

from .cache import DiscoveryCache
from .config import DiscoveryConfig, load_config
from .engine import UnifiedDiscoveryEngine
from .ledger import PeerLedger
from .providers import DiscoveryHostProvider, HostInfoProvider
from .selection import (
    HostSelectionService,
    LedgerTelemetry,
    PlaceholderTelemetry,
    MODE_WEIGHTS,
)
from .sources import (
    DiscoverySource,
    GlobalPeerSource,
    HttpRegistrySource,
    LocalPeerSource,
    StaticSource,
)

__all__ = [
    "DiscoveryCache",
    "DiscoveryConfig",
    "load_config",
    "UnifiedDiscoveryEngine",
    "PeerLedger",
    "DiscoveryHostProvider",
    "HostInfoProvider",
    "HostSelectionService",
    "LedgerTelemetry",
    "PlaceholderTelemetry",
    "MODE_WEIGHTS",
    "DiscoverySource",
    "GlobalPeerSource",
    "HttpRegistrySource",
    "LocalPeerSource",
    "StaticSource",
]
