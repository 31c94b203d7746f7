"""
Tests for discovery sources.
"""

import httpx
import pytest
from unittest.mock import AsyncMock

from discovery.sources import (
    GlobalPeerSource,
    HttpRegistrySource,
    LocalPeerSource,
    SOURCE_HTTP,
    SOURCE_P2P_GLOBAL,
    SOURCE_P2P_LOCAL,
    StaticSource,
    coerce_hosts,
)
from shared.errors import DiscoverySourceError
from shared.models import HostRecord


def registry_client(handler) -> httpx.AsyncClient:
    """Create an httpx client served by a handler function."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestCoerceHosts:
    """Tests for raw payload conversion."""

    def test_dicts_and_records_tagged(self):
        hosts = coerce_hosts(
            [{"nodeAddress": "0x1"}, HostRecord(address="0x2", source="other")],
            "static"
        )

        assert [h.address for h in hosts] == ["0x1", "0x2"]
        assert all(h.source == "static" for h in hosts)

    def test_invalid_records_skipped(self):
        """Test that malformed entries are dropped instead of failing the batch."""
        hosts = coerce_hosts(
            [{"address": ""}, {"stake": 5}, "not-a-host", {"address": "0x3"}],
            "http"
        )

        assert [h.address for h in hosts] == ["0x3"]

    def test_none_is_empty(self):
        assert coerce_hosts(None, "http") == []


class TestStaticSource:
    """Tests for the static source."""

    @pytest.mark.asyncio
    async def test_fetch(self):
        source = StaticSource([{"address": "0xA", "region": "eu"}])

        hosts = await source.fetch()

        assert source.name == "static"
        assert hosts[0].address == "0xa"
        assert hosts[0].source == "static"


class TestPeerSources:
    """Tests for local and global peer sources."""

    @pytest.mark.asyncio
    async def test_local_capability_filter(self):
        """Test that local discovery keeps hosts serving a wanted model."""
        peer_client = AsyncMock()
        peer_client.discover_local.return_value = [
            {"address": "0x1", "supportedModels": ["llama"]},
            {"address": "0x2", "supportedModels": ["mistral"]},
        ]
        source = LocalPeerSource(peer_client, capabilities=["llama"])

        hosts = await source.fetch()

        assert source.name == SOURCE_P2P_LOCAL
        assert [h.address for h in hosts] == ["0x1"]

    @pytest.mark.asyncio
    async def test_local_missing_method(self):
        """Test that a peer client without local discovery yields no hosts."""
        source = LocalPeerSource(object())

        assert await source.fetch() == []

    @pytest.mark.asyncio
    async def test_global_max_nodes(self):
        peer_client = AsyncMock()
        peer_client.discover_global.return_value = [
            {"address": f"0x{i}"} for i in range(5)
        ]
        source = GlobalPeerSource(peer_client, max_nodes=2)

        hosts = await source.fetch()

        assert source.name == SOURCE_P2P_GLOBAL
        assert len(hosts) == 2

    @pytest.mark.asyncio
    async def test_global_bootstrap_fallback(self):
        """Test that bootstrap peers are used when global lookup fails."""
        peer_client = AsyncMock()
        peer_client.discover_global.side_effect = ConnectionError("dht down")
        peer_client.get_bootstrap_peers.return_value = [{"address": "0xboot"}]

        hosts = await GlobalPeerSource(peer_client).fetch()

        assert [h.address for h in hosts] == ["0xboot"]

    @pytest.mark.asyncio
    async def test_global_error_without_bootstrap(self):
        """Test that the lookup error propagates when there are no bootstrap peers."""
        peer_client = AsyncMock()
        peer_client.discover_global.side_effect = ConnectionError("dht down")
        peer_client.get_bootstrap_peers.return_value = []

        with pytest.raises(ConnectionError):
            await GlobalPeerSource(peer_client).fetch()


class TestHttpRegistrySource:
    """Tests for the HTTP registry source."""

    @pytest.mark.asyncio
    async def test_fetch_list(self):
        def handler(request):
            assert request.url.path == "/v1/hosts"
            return httpx.Response(200, json=[
                {"nodeAddress": "0x1", "apiUrl": "https://a.example"},
            ])

        async with registry_client(handler) as client:
            source = HttpRegistrySource("https://registry.example/", client=client)
            hosts = await source.fetch()

        assert source.name == SOURCE_HTTP
        assert hosts[0].address == "0x1"
        assert hosts[0].api_url == "https://a.example"
        assert hosts[0].source == SOURCE_HTTP

    @pytest.mark.asyncio
    async def test_fetch_wrapped_hosts(self):
        def handler(request):
            return httpx.Response(200, json={"hosts": [{"address": "0x2"}]})

        async with registry_client(handler) as client:
            hosts = await HttpRegistrySource("https://registry.example", client=client).fetch()

        assert [h.address for h in hosts] == ["0x2"]

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        def handler(request):
            return httpx.Response(503)

        async with registry_client(handler) as client:
            source = HttpRegistrySource("https://registry.example", client=client)
            with pytest.raises(DiscoverySourceError) as exc_info:
                await source.fetch()

        assert exc_info.value.source == SOURCE_HTTP
        assert "503" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        def handler(request):
            return httpx.Response(200, content=b"<html>")

        async with registry_client(handler) as client:
            with pytest.raises(DiscoverySourceError):
                await HttpRegistrySource("https://registry.example", client=client).fetch()

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with registry_client(handler) as client:
            with pytest.raises(DiscoverySourceError):
                await HttpRegistrySource("https://registry.example", client=client).fetch()

    @pytest.mark.asyncio
    async def test_shared_client_not_closed(self):
        """Test that aclose leaves a caller-provided client open."""
        client = registry_client(lambda request: httpx.Response(200, json=[]))
        source = HttpRegistrySource("https://registry.example", client=client)

        await source.aclose()

        assert not client.is_closed
        await client.aclose()
