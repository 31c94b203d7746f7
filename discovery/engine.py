"""
HostFinder Unified Discovery Engine

Polls every enabled discovery source concurrently, merges their results,
caches the merged set and tracks per-source health.
"""

import asyncio
import random
import time
from typing import Any, Callable, Iterable, Optional
import structlog

from shared.errors import DiscoverySourceError
from shared.models import (
    DiscoveryOptions,
    DiscoveryStats,
    HostRecord,
    SourceStats,
)
from .cache import DiscoveryCache, UNIFIED_CACHE_KEY, source_cache_key
from .ledger import PeerLedger
from .sources import DiscoverySource, coerce_hosts

logger = structlog.get_logger()

# Defaults
DEFAULT_CACHE_TTL = 60.0        # seconds
DEFAULT_SOURCE_TIMEOUT = 5.0    # seconds, per source fetch

SORT_OPTIONS = ("price", "reputation", "random")


class UnifiedDiscoveryEngine:
    """
    Best-effort, client-local view of the host fleet.

    A discovery round:
    1. Serves the unified cache entry if it is younger than the TTL
    2. Otherwise fetches every enabled source concurrently, each bounded
       by source_timeout; a failing source contributes zero hosts
    3. Merges by address (newer timestamp wins, then source priority)
    4. Caches the merged set, then drops blacklisted hosts and applies
       the caller's filters
    """

    def __init__(
        self,
        sources: Optional[Iterable[DiscoverySource]] = None,
        ledger: Optional[PeerLedger] = None,
        cache: Optional[DiscoveryCache] = None,
        cache_ttl: float = DEFAULT_CACHE_TTL,
        source_timeout: float = DEFAULT_SOURCE_TIMEOUT,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None
    ):
        if cache_ttl < 0:
            raise ValueError("cache_ttl must not be negative")
        if source_timeout <= 0:
            raise ValueError("source_timeout must be positive")

        self._clock = clock
        self._ledger = ledger or PeerLedger(clock=clock)
        self._cache = cache or DiscoveryCache(clock=clock)
        self._cache_ttl = cache_ttl
        self._source_timeout = source_timeout
        self._rng = rng or random.Random()

        self._sources: dict[str, DiscoverySource] = {}
        self._enabled: dict[str, bool] = {}
        self._priority: list[str] = []

        self._total_discoveries = 0
        self._cache_hits = 0
        self._cache_misses = 0
        self._source_stats: dict[str, SourceStats] = {}
        self._stats_lock = asyncio.Lock()

        for source in sources or []:
            self.register_source(source)

    # =========================================================================
    # Configuration
    # =========================================================================

    @property
    def ledger(self) -> PeerLedger:
        return self._ledger

    @property
    def cache(self) -> DiscoveryCache:
        return self._cache

    @property
    def cache_ttl(self) -> float:
        return self._cache_ttl

    @property
    def source_names(self) -> list[str]:
        """Registered source names in priority order."""
        return self._ordered_source_names()

    def register_source(self, source: DiscoverySource, enabled: bool = True) -> None:
        """Add a source; it is polled after the sources already registered."""
        if source.name in self._sources:
            logger.warning("discovery_source_replaced", source=source.name)
        self._sources[source.name] = source
        self._enabled[source.name] = enabled
        if source.name not in self._priority:
            self._priority.append(source.name)

    def set_discovery_priority(self, order: list[str]) -> None:
        """
        Set merge precedence among sources, highest first.

        Unknown names are ignored. Registered sources missing from order
        keep being polled and rank after the listed ones.
        """
        unknown = [name for name in order if name not in self._sources]
        if unknown:
            logger.warning("unknown_discovery_sources_ignored", sources=unknown)

        listed = []
        for name in order:
            if name in self._sources and name not in listed:
                listed.append(name)
        remaining = [name for name in self._priority if name not in listed]
        self._priority = listed + remaining

        logger.info("discovery_priority_set", priority=self._priority)

    def enable_discovery_source(self, name: str, enabled: bool) -> None:
        if name not in self._sources:
            raise KeyError(f"Unknown discovery source: {name}")
        self._enabled[name] = enabled
        logger.info("discovery_source_toggled", source=name, enabled=enabled)

    def is_source_enabled(self, name: str) -> bool:
        return self._enabled.get(name, False)

    def set_cache_ttl(self, ttl: float) -> None:
        """Set the unified cache TTL in seconds."""
        if ttl < 0:
            raise ValueError("Cache TTL must not be negative")
        self._cache_ttl = ttl

    async def clear_cache(self) -> None:
        await self._cache.clear()

    def get_discovery_stats(self) -> DiscoveryStats:
        """Snapshot of process-lifetime discovery counters."""
        lookups = self._cache_hits + self._cache_misses
        return DiscoveryStats(
            total_discoveries=self._total_discoveries,
            cache_hits=self._cache_hits,
            cache_misses=self._cache_misses,
            cache_hit_rate=self._cache_hits / lookups if lookups > 0 else 0.0,
            source_stats={
                name: stats.model_copy()
                for name, stats in self._source_stats.items()
            }
        )

    # =========================================================================
    # Discovery
    # =========================================================================

    async def discover_all_hosts(
        self,
        options: Optional[DiscoveryOptions] = None,
        **kwargs: Any
    ) -> list[HostRecord]:
        """
        Discover active hosts from all enabled sources.

        Args:
            options: Discovery options; keyword arguments build one if omitted

        Returns:
            Merged, deduplicated, non-blacklisted hosts matching the filters
        """
        if options is None:
            options = DiscoveryOptions(**kwargs)
        ttl = options.cache_ttl if options.cache_ttl is not None else self._cache_ttl

        if not options.force_refresh:
            cached = self._cache.get(UNIFIED_CACHE_KEY, ttl)
            if cached is not None:
                async with self._stats_lock:
                    self._cache_hits += 1
                logger.debug("discovery_cache_hit", host_count=len(cached))
                return self._finalize(cached, options)

        async with self._stats_lock:
            self._cache_misses += 1
            self._total_discoveries += 1

        names = [name for name in self._ordered_source_names() if self._enabled.get(name)]
        if not names:
            logger.warning("no_discovery_sources_enabled")

        results = await asyncio.gather(*(self._fetch_from_source(name) for name in names))

        merged = self._merge(results)
        await self._cache.set(UNIFIED_CACHE_KEY, merged)

        hosts = self._finalize(merged, options)
        logger.info(
            "discovery_completed",
            sources=len(names),
            merged=len(merged),
            returned=len(hosts)
        )
        return hosts

    async def discover_from_source(
        self,
        name: str,
        force_refresh: bool = False,
        cache_ttl: Optional[float] = None
    ) -> list[HostRecord]:
        """
        Discover hosts from a single source, with its own cache entry.

        Failures are absorbed and recorded like in a unified round.
        """
        if name not in self._sources:
            raise KeyError(f"Unknown discovery source: {name}")

        key = source_cache_key(name)
        ttl = cache_ttl if cache_ttl is not None else self._cache_ttl
        if not force_refresh:
            cached = self._cache.get(key, ttl)
            if cached is not None:
                return self._ledger.filter_blacklisted(cached)

        _, hosts = await self._fetch_from_source(name)
        hosts = [h for h in self._dedupe(hosts) if h.is_active]
        await self._cache.set(key, hosts)
        return self._ledger.filter_blacklisted(hosts)

    async def get_host(self, address: str) -> Optional[HostRecord]:
        """Look up a discovered host by address (cache-aware)."""
        address = address.strip().lower()
        for host in await self.discover_all_hosts():
            if host.address == address:
                return host
        return None

    async def find_hosts(
        self,
        model: Optional[str] = None,
        region: Optional[str] = None,
        max_price: Optional[int] = None,
        sort_by: Optional[str] = None
    ) -> list[HostRecord]:
        """
        Discover hosts and order them.

        Args:
            model: Required supported model
            region: Required region
            max_price: Raw stable price ceiling
            sort_by: "price" (cheapest first, unpriced last),
                     "reputation" (highest first) or "random"
        """
        if sort_by is not None and sort_by not in SORT_OPTIONS:
            raise ValueError(f"sort_by must be one of {SORT_OPTIONS}, got {sort_by!r}")

        hosts = await self.discover_all_hosts(
            model=model,
            region=region,
            max_price=max_price
        )

        if sort_by == "price":
            hosts.sort(key=lambda h: (
                h.min_price_per_token_stable == 0,
                h.min_price_per_token_stable
            ))
        elif sort_by == "reputation":
            hosts.sort(
                key=lambda h: self._ledger.get_peer_reputation(h.address).score,
                reverse=True
            )
        elif sort_by == "random":
            self._rng.shuffle(hosts)

        return hosts

    # =========================================================================
    # Internals
    # =========================================================================

    def _ordered_source_names(self) -> list[str]:
        return [name for name in self._priority if name in self._sources]

    async def _fetch_from_source(self, name: str) -> tuple[str, list[HostRecord]]:
        """Fetch one source, absorbing any failure into its stats."""
        source = self._sources[name]
        started = time.perf_counter()

        try:
            raw_hosts = await asyncio.wait_for(source.fetch(), timeout=self._source_timeout)
            if not isinstance(raw_hosts, (list, tuple)):
                raise DiscoverySourceError(
                    f"Source returned {type(raw_hosts).__name__}, expected a host list",
                    name
                )
            hosts = coerce_hosts(raw_hosts, name)
        except asyncio.TimeoutError:
            elapsed_ms = (time.perf_counter() - started) * 1000
            await self._record_source_stats(name, elapsed_ms, False, "timeout")
            logger.warning(
                "discovery_source_timeout",
                source=name,
                timeout=self._source_timeout
            )
            return name, []
        except Exception as e:
            elapsed_ms = (time.perf_counter() - started) * 1000
            await self._record_source_stats(name, elapsed_ms, False, str(e))
            logger.warning("discovery_source_failed", source=name, error=str(e))
            return name, []

        elapsed_ms = (time.perf_counter() - started) * 1000
        await self._record_source_stats(name, elapsed_ms, True)
        logger.debug(
            "discovery_source_succeeded",
            source=name,
            host_count=len(hosts),
            elapsed_ms=round(elapsed_ms, 2)
        )
        return name, hosts

    async def _record_source_stats(
        self,
        name: str,
        elapsed_ms: float,
        success: bool,
        error: Optional[str] = None
    ) -> None:
        async with self._stats_lock:
            stats = self._source_stats.setdefault(name, SourceStats())
            stats.attempts += 1
            if success:
                stats.successes += 1
                stats.last_success = self._clock()
            else:
                stats.failures += 1
                stats.last_failure = self._clock()
                stats.last_error = error
            # Running average over all attempts
            stats.average_time_ms = (
                stats.average_time_ms * (stats.attempts - 1) + elapsed_ms
            ) / stats.attempts

    def _merge(self, results: list[tuple[str, list[HostRecord]]]) -> list[HostRecord]:
        """
        Merge per-source results, given in priority order.

        A later (lower-priority) record replaces an existing one only if both
        carry timestamps and it is strictly newer.
        """
        merged: dict[str, HostRecord] = {}
        for _, hosts in results:
            for host in hosts:
                existing = merged.get(host.address)
                if existing is None:
                    merged[host.address] = host
                elif _is_newer(host, existing):
                    merged[host.address] = _merge_fields(winner=host, loser=existing)
                else:
                    merged[host.address] = _merge_fields(winner=existing, loser=host)

        ranks = {name: i for i, name in enumerate(self._ordered_source_names())}
        active = [h for h in merged.values() if h.is_active]
        return sorted(active, key=lambda h: ranks.get(h.source, len(ranks)))

    @staticmethod
    def _dedupe(hosts: list[HostRecord]) -> list[HostRecord]:
        unique: dict[str, HostRecord] = {}
        for host in hosts:
            existing = unique.get(host.address)
            if existing is None or _is_newer(host, existing):
                unique[host.address] = host
        return list(unique.values())

    def _finalize(
        self,
        hosts: list[HostRecord],
        options: DiscoveryOptions
    ) -> list[HostRecord]:
        return apply_filters(self._ledger.filter_blacklisted(hosts), options)


def _is_newer(candidate: HostRecord, existing: HostRecord) -> bool:
    if candidate.timestamp is None or existing.timestamp is None:
        return False
    return candidate.timestamp > existing.timestamp


def _merge_fields(winner: HostRecord, loser: HostRecord) -> HostRecord:
    """Combine two records for the same host; the winner's set fields take precedence."""
    data = loser.model_dump(exclude_unset=True)
    data.update(winner.model_dump(exclude_unset=True))
    data["source"] = winner.source
    return HostRecord.model_validate(data)


def apply_filters(hosts: list[HostRecord], options: DiscoveryOptions) -> list[HostRecord]:
    """Apply the AND-combined post-filters that are set in options."""
    filtered = list(hosts)
    if options.max_price is not None:
        filtered = [h for h in filtered if h.min_price_per_token_stable <= options.max_price]
    if options.model:
        filtered = [h for h in filtered if h.supports_model(options.model)]
    if options.region:
        filtered = [h for h in filtered if h.region == options.region]
    if options.min_latency is not None:
        filtered = [h for h in filtered if (h.latency_ms or 0) >= options.min_latency]
    if options.max_latency is not None:
        filtered = [
            h for h in filtered
            if h.latency_ms is not None and h.latency_ms <= options.max_latency
        ]
    return filtered
