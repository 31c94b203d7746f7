"""
HostFinder Python SDK

Client library that wires discovery, reputation and selection together.
"""

import random
from typing import Any, Optional, Union
import httpx
import structlog

from discovery.cache import DiscoveryCache
from discovery.config import DiscoveryConfig
from discovery.engine import UnifiedDiscoveryEngine
from discovery.ledger import PeerLedger
from discovery.providers import DiscoveryHostProvider
from discovery.selection import HostSelectionService, LedgerTelemetry
from discovery.sources import (
    GlobalPeerSource,
    HttpRegistrySource,
    LocalPeerSource,
    PeerClient,
    StaticSource,
)
from shared.errors import HostFinderError
from shared.log_config import configure_logging
from shared.models import (
    DiscoveryOptions,
    DiscoveryStats,
    HostRecord,
    HostSelectionMode,
    RankedHost,
    ReputationScore,
)

logger = structlog.get_logger()


class HostFinderClient:
    """
    Async client for finding hosts in the compute marketplace.

    Usage:
        async with HostFinderClient(config) as client:
            host = await client.select_host_for_model("llama-3-8b")
            if host is None:
                ...  # empty marketplace
    """

    def __init__(
        self,
        config: Optional[DiscoveryConfig] = None,
        peer_client: Optional[PeerClient] = None,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self.config = config or DiscoveryConfig()
        self._peer_client = peer_client
        self._http_client = http_client
        self._owns_http_client = False

        self._engine: Optional[UnifiedDiscoveryEngine] = None
        self._selection: Optional[HostSelectionService] = None

    async def __aenter__(self) -> "HostFinderClient":
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.disconnect()

    async def connect(self) -> None:
        """Build sources, engine and selection service from the config."""
        if self._engine is not None:
            return

        config = self.config
        if config.log_level is not None:
            configure_logging(config.log_level)

        ledger = PeerLedger()
        engine = UnifiedDiscoveryEngine(
            ledger=ledger,
            cache=DiscoveryCache(),
            cache_ttl=config.cache_ttl,
            source_timeout=config.source_timeout
        )

        if self._peer_client is not None:
            engine.register_source(LocalPeerSource(self._peer_client))
            engine.register_source(GlobalPeerSource(self._peer_client))

        if config.registry_url:
            if self._http_client is None:
                self._http_client = httpx.AsyncClient(timeout=config.registry_timeout)
                self._owns_http_client = True
            engine.register_source(HttpRegistrySource(
                config.registry_url,
                client=self._http_client,
                timeout=config.registry_timeout
            ))

        if config.static_hosts:
            engine.register_source(StaticSource(config.static_hosts))

        engine.set_discovery_priority(config.priority)
        for name in engine.source_names:
            engine.enable_discovery_source(name, config.is_enabled(name))

        rng = random.Random(config.selection_seed) if config.selection_seed is not None else None
        self._selection = HostSelectionService(
            host_provider=DiscoveryHostProvider(engine),
            telemetry=LedgerTelemetry(ledger),
            rng=rng
        )
        self._engine = engine

        logger.info(
            "hostfinder_client_connected",
            sources=engine.source_names,
            cache_ttl=config.cache_ttl
        )

    async def disconnect(self) -> None:
        """Close the HTTP client if this client created it."""
        if self._http_client is not None and self._owns_http_client:
            await self._http_client.aclose()
            self._http_client = None
            self._owns_http_client = False
        self._engine = None
        self._selection = None

    @property
    def engine(self) -> UnifiedDiscoveryEngine:
        """Get the discovery engine."""
        if self._engine is None:
            raise HostFinderError("Client not connected. Call connect() first.")
        return self._engine

    @property
    def selection(self) -> HostSelectionService:
        """Get the selection service."""
        if self._selection is None:
            raise HostFinderError("Client not connected. Call connect() first.")
        return self._selection

    @property
    def ledger(self) -> PeerLedger:
        return self.engine.ledger

    # =========================================================================
    # Discovery
    # =========================================================================

    async def discover_all_hosts(
        self,
        options: Optional[DiscoveryOptions] = None,
        **kwargs: Any
    ) -> list[HostRecord]:
        return await self.engine.discover_all_hosts(options, **kwargs)

    def get_discovery_stats(self) -> DiscoveryStats:
        return self.engine.get_discovery_stats()

    def set_discovery_priority(self, order: list[str]) -> None:
        self.engine.set_discovery_priority(order)

    def enable_discovery_source(self, name: str, enabled: bool) -> None:
        self.engine.enable_discovery_source(name, enabled)

    def set_cache_ttl(self, ttl: float) -> None:
        self.engine.set_cache_ttl(ttl)

    # =========================================================================
    # Selection
    # =========================================================================

    async def select_host_for_model(
        self,
        model_id: str,
        mode: Union[HostSelectionMode, str] = HostSelectionMode.AUTO,
        preferred_address: Optional[str] = None
    ) -> Optional[HostRecord]:
        """
        Select a host for a model.

        Returns:
            Selected host, or None if no host serves the model
        """
        return await self.selection.select_host_for_model(model_id, mode, preferred_address)

    async def get_ranked_hosts_for_model(
        self,
        model_id: str,
        mode: Union[HostSelectionMode, str] = HostSelectionMode.AUTO,
        limit: int = 10
    ) -> list[RankedHost]:
        return await self.selection.get_ranked_hosts_for_model(model_id, mode, limit)

    # =========================================================================
    # Outcome Reporting
    # =========================================================================

    async def report_success(self, address: str) -> ReputationScore:
        """Record a successful session with a host."""
        return await self.ledger.record_success(address)

    async def report_failure(self, address: str) -> ReputationScore:
        """Record a failed session with a host."""
        return await self.ledger.record_failure(address)

    async def blacklist_host(
        self,
        address: str,
        reason: str,
        duration_ms: Optional[float] = None
    ) -> None:
        """Exclude a host from discovery, permanently if no duration is given."""
        await self.ledger.blacklist_peer(address, reason, duration_ms)
