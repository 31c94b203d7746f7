"""
HostFinder Host Info Providers

Authoritative host lookups consumed by the selection engine.
"""

from typing import Optional, Protocol

from shared.models import HostRecord
from .engine import UnifiedDiscoveryEngine


class HostInfoProvider(Protocol):
    """
    Host lookups needed by selection.

    Implementations may be backed by an on-chain registry, the discovery
    engine, or both.
    """

    async def get_host_info(self, address: str) -> Optional[HostRecord]: ...

    async def find_hosts_for_model(self, model_id: str) -> list[HostRecord]: ...

    async def host_supports_model(self, address: str, model_id: str) -> bool: ...


class DiscoveryHostProvider:
    """HostInfoProvider backed by the unified discovery engine."""

    def __init__(self, engine: UnifiedDiscoveryEngine):
        self.engine = engine

    async def get_host_info(self, address: str) -> Optional[HostRecord]:
        return await self.engine.get_host(address)

    async def find_hosts_for_model(self, model_id: str) -> list[HostRecord]:
        return await self.engine.discover_all_hosts(model=model_id)

    async def host_supports_model(self, address: str, model_id: str) -> bool:
        host = await self.get_host_info(address)
        return host is not None and host.supports_model(model_id)
