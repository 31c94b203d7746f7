"""
HostFinder Discovery Sources

Adapters that fetch raw host listings from one origin each.
"""

from typing import Any, Iterable, Optional, Protocol
import httpx
import structlog
from pydantic import ValidationError

from shared.errors import DiscoverySourceError
from shared.models import HostRecord

logger = structlog.get_logger()

# Source names
SOURCE_P2P_LOCAL = "p2p-local"
SOURCE_P2P_GLOBAL = "p2p-global"
SOURCE_HTTP = "http"
SOURCE_STATIC = "static"

DEFAULT_HTTP_TIMEOUT = 10.0  # seconds
DEFAULT_HOSTS_PATH = "/v1/hosts"


class PeerClient(Protocol):
    """
    Peer-network transport consumed by the peer sources.

    Every method is optional; a source whose method is missing reports no hosts.
    """

    async def discover_local(self) -> list[Any]: ...

    async def discover_global(self) -> list[Any]: ...

    async def get_bootstrap_peers(self) -> list[Any]: ...


def coerce_hosts(raw_hosts: Iterable[Any], source: str) -> list[HostRecord]:
    """
    Convert raw host payloads into HostRecords tagged with their source.

    Records that fail validation are skipped.

    Args:
        raw_hosts: HostRecords or dict payloads
        source: Name of the producing adapter

    Returns:
        Valid host records
    """
    hosts = []
    for raw in raw_hosts or []:
        try:
            if isinstance(raw, HostRecord):
                host = raw.model_copy(update={"source": source})
            else:
                host = HostRecord.model_validate({**raw, "source": source})
        except (ValidationError, TypeError) as e:
            logger.warning(
                "invalid_host_record_skipped",
                source=source,
                error=str(e)
            )
            continue
        hosts.append(host)
    return hosts


class DiscoverySource:
    """
    Base class for discovery sources.

    Subclasses implement fetch(). Exceptions raised from fetch() are absorbed
    by the discovery engine and recorded as a failure for this source.
    """

    name: str = "unknown"

    async def fetch(self) -> list[HostRecord]:
        raise NotImplementedError

    async def aclose(self) -> None:
        """Release resources held by the source."""
        return None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class StaticSource(DiscoverySource):
    """Fixed host list, typically loaded from configuration."""

    def __init__(self, hosts: Iterable[Any], name: str = SOURCE_STATIC):
        self.name = name
        self._hosts = list(hosts)

    async def fetch(self) -> list[HostRecord]:
        return coerce_hosts(self._hosts, self.name)


class LocalPeerSource(DiscoverySource):
    """Hosts found on the local peer network."""

    name = SOURCE_P2P_LOCAL

    def __init__(
        self,
        peer_client: PeerClient,
        capabilities: Optional[list[str]] = None
    ):
        self._peer_client = peer_client
        self._capabilities = capabilities

    async def fetch(self) -> list[HostRecord]:
        discover_local = getattr(self._peer_client, "discover_local", None)
        if discover_local is None:
            return []

        hosts = coerce_hosts(await discover_local(), self.name)

        if self._capabilities:
            wanted = set(self._capabilities)
            hosts = [h for h in hosts if wanted.intersection(h.supported_models)]

        return hosts


class GlobalPeerSource(DiscoverySource):
    """
    Hosts found on the global peer network.

    Falls back to the bootstrap peers when the global lookup fails.
    """

    name = SOURCE_P2P_GLOBAL

    def __init__(
        self,
        peer_client: PeerClient,
        max_nodes: Optional[int] = None
    ):
        self._peer_client = peer_client
        self._max_nodes = max_nodes

    async def fetch(self) -> list[HostRecord]:
        discover_global = getattr(self._peer_client, "discover_global", None)
        if discover_global is None:
            return []

        try:
            raw_hosts = await discover_global()
        except Exception as e:
            raw_hosts = await self._bootstrap_fallback(e)

        hosts = coerce_hosts(raw_hosts, self.name)
        if self._max_nodes is not None:
            hosts = hosts[:self._max_nodes]
        return hosts

    async def _bootstrap_fallback(self, error: Exception) -> list[Any]:
        """Return bootstrap peers, or re-raise the original error if there are none."""
        get_bootstrap_peers = getattr(self._peer_client, "get_bootstrap_peers", None)
        if get_bootstrap_peers is not None:
            try:
                peers = await get_bootstrap_peers()
            except Exception as fallback_error:
                logger.debug(
                    "bootstrap_fallback_failed",
                    error=str(fallback_error)
                )
                peers = None
            if peers:
                logger.info(
                    "global_discovery_bootstrap_fallback",
                    error=str(error),
                    peers=len(peers)
                )
                return peers
        raise error


class HttpRegistrySource(DiscoverySource):
    """
    Hosts listed by an HTTP discovery endpoint.

    The endpoint returns either a JSON list of hosts or {"hosts": [...]}.
    """

    name = SOURCE_HTTP

    def __init__(
        self,
        base_url: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        path: str = DEFAULT_HOSTS_PATH
    ):
        self.base_url = base_url.rstrip("/")
        self.path = path
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get the HTTP client, creating it on first use."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._client

    async def fetch(self) -> list[HostRecord]:
        url = f"{self.base_url}{self.path}"
        try:
            response = await self.client.get(url, timeout=self.timeout)
        except httpx.HTTPError as e:
            raise DiscoverySourceError(f"Registry request failed: {e}", self.name) from e

        if response.status_code >= 400:
            raise DiscoverySourceError(
                f"Registry returned HTTP {response.status_code}",
                self.name
            )

        try:
            data = response.json()
        except ValueError as e:
            raise DiscoverySourceError("Registry returned invalid JSON", self.name) from e

        if isinstance(data, dict):
            data = data.get("hosts", [])
        if not isinstance(data, list):
            raise DiscoverySourceError("Registry payload has no host list", self.name)

        return coerce_hosts(data, self.name)

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
