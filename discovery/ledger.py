"""
HostFinder Peer Ledger

Tracks reputation, blacklist, connection quality and preferences per host.
"""

import asyncio
import time
from collections import deque
from typing import Callable, Iterable, Optional
import structlog

from shared.models import (
    BlacklistEntry,
    ConnectionMetrics,
    ConnectionQuality,
    ConnectionSample,
    HostRecord,
    PeerStanding,
    ReputationScore,
)

logger = structlog.get_logger()

# Reputation constants
DEFAULT_REPUTATION = 0.5

# Connection metrics
METRICS_HISTORY_SIZE = 100
DEFAULT_PEER_LATENCY_MS = 1000.0

# Quality buckets by average latency (upper bounds, exclusive)
QUALITY_THRESHOLDS_MS = (
    (100.0, ConnectionQuality.EXCELLENT),
    (300.0, ConnectionQuality.GOOD),
    (1000.0, ConnectionQuality.FAIR),
)

# Peer ranking weights
RANKING_WEIGHTS = {
    "reputation": 0.7,
    "latency": 0.3,
}


def _normalize(address: str) -> str:
    # Same form as HostRecord.address
    return address.strip().lower()


def classify_latency(average_latency_ms: float) -> ConnectionQuality:
    """Bucket an average latency into a connection quality."""
    for threshold, quality in QUALITY_THRESHOLDS_MS:
        if average_latency_ms < threshold:
            return quality
    return ConnectionQuality.POOR


class PeerLedger:
    """
    Per-host state that outlives a single discovery round.

    Holds:
    - Reputation: success ratio from explicit outcome reports, never decays
    - Blacklist: temporary or permanent exclusions, expired lazily on lookup
    - Connection metrics: last 100 samples per host
    - Preferred peers: caller-assigned priorities
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        history_size: int = METRICS_HISTORY_SIZE
    ):
        self._clock = clock
        self._history_size = history_size
        self._reputation: dict[str, ReputationScore] = {}
        self._blacklist: dict[str, BlacklistEntry] = {}
        self._metrics: dict[str, deque[ConnectionSample]] = {}
        self._preferred: dict[str, int] = {}

        self._reputation_lock = asyncio.Lock()
        self._blacklist_lock = asyncio.Lock()
        self._metrics_lock = asyncio.Lock()

    # =========================================================================
    # Reputation
    # =========================================================================

    async def update_peer_reputation(
        self,
        address: str,
        successful_requests: Optional[int] = None,
        failed_requests: Optional[int] = None,
        score: Optional[float] = None
    ) -> ReputationScore:
        """
        Update a host's reputation.

        Request counts are deltas added to the running totals, and the score
        is recomputed from those totals. A raw score overwrites the current
        one only when no counts are given.

        Args:
            address: Host address
            successful_requests: Successes to add
            failed_requests: Failures to add
            score: Pre-computed score in [0, 1]

        Returns:
            The updated reputation
        """
        if (successful_requests or 0) < 0 or (failed_requests or 0) < 0:
            raise ValueError("Request counts must not be negative")
        if score is not None and not 0.0 <= score <= 1.0:
            raise ValueError(f"Reputation score must be within [0, 1], got {score}")

        address = _normalize(address)
        async with self._reputation_lock:
            current = self._reputation.get(address) or ReputationScore()

            if successful_requests is not None or failed_requests is not None:
                successes = current.successful_requests + (successful_requests or 0)
                failures = current.failed_requests + (failed_requests or 0)
                total = successes + failures
                updated = ReputationScore(
                    score=successes / total if total > 0 else current.score,
                    successful_requests=successes,
                    failed_requests=failures
                )
            elif score is not None:
                updated = current.model_copy(update={"score": score})
            else:
                updated = current

            self._reputation[address] = updated

        logger.debug(
            "reputation_updated",
            address=address,
            old=current.score,
            new=updated.score,
            successes=updated.successful_requests,
            failures=updated.failed_requests
        )
        return updated

    async def record_success(self, address: str) -> ReputationScore:
        """Record one successful request against a host."""
        return await self.update_peer_reputation(address, successful_requests=1)

    async def record_failure(self, address: str) -> ReputationScore:
        """Record one failed request against a host."""
        return await self.update_peer_reputation(address, failed_requests=1)

    def get_peer_reputation(self, address: str) -> ReputationScore:
        """Get a host's reputation, defaulting to a neutral 0.5."""
        reputation = self._reputation.get(_normalize(address))
        if reputation is None:
            return ReputationScore(score=DEFAULT_REPUTATION)
        return reputation.model_copy()

    # =========================================================================
    # Blacklist
    # =========================================================================

    async def blacklist_peer(
        self,
        address: str,
        reason: str,
        duration_ms: Optional[float] = None
    ) -> BlacklistEntry:
        """
        Exclude a host from discovery.

        Args:
            address: Host address
            reason: Why the host was excluded
            duration_ms: Exclusion length, or None for permanent

        Returns:
            The stored entry
        """
        now = self._clock()
        until = now + duration_ms / 1000 if duration_ms is not None else None
        entry = BlacklistEntry(reason=reason, until=until, created_at=now)

        async with self._blacklist_lock:
            self._blacklist[_normalize(address)] = entry

        logger.info(
            "peer_blacklisted",
            address=_normalize(address),
            reason=reason,
            duration_ms=duration_ms
        )
        return entry

    async def unblacklist_peer(self, address: str) -> bool:
        """Remove a host from the blacklist. Returns True if it was listed."""
        async with self._blacklist_lock:
            removed = self._blacklist.pop(_normalize(address), None) is not None
        if removed:
            logger.info("peer_unblacklisted", address=_normalize(address))
        return removed

    def is_blacklisted(self, address: str) -> bool:
        """Check if a host is blacklisted, pruning an expired entry."""
        address = _normalize(address)
        entry = self._blacklist.get(address)
        if entry is None:
            return False

        if entry.is_expired(self._clock()):
            # Only prune the entry we inspected; a concurrent re-blacklist wins
            if self._blacklist.get(address) is entry:
                del self._blacklist[address]
            logger.debug("blacklist_entry_expired", address=address)
            return False

        return True

    def filter_blacklisted(self, hosts: Iterable[HostRecord]) -> list[HostRecord]:
        """Drop hosts that are currently blacklisted."""
        return [h for h in hosts if not self.is_blacklisted(h.address)]

    def get_blacklist(self) -> dict[str, BlacklistEntry]:
        """Get all active blacklist entries."""
        return {
            address: entry.model_copy()
            for address, entry in list(self._blacklist.items())
            if self.is_blacklisted(address)
        }

    # =========================================================================
    # Connection Metrics
    # =========================================================================

    async def record_connection_metrics(
        self,
        address: str,
        sample: ConnectionSample
    ) -> None:
        """Append a connection sample, keeping the last history_size samples."""
        if sample.timestamp is None:
            sample = sample.model_copy(update={"timestamp": self._clock()})

        async with self._metrics_lock:
            history = self._metrics.setdefault(
                _normalize(address),
                deque(maxlen=self._history_size)
            )
            history.append(sample)

    def get_connection_metrics(self, address: str) -> ConnectionMetrics:
        """
        Aggregate a host's connection history.

        Returns:
            Latest sample fields plus average latency and quality bucket
        """
        history = list(self._metrics.get(_normalize(address), ()))
        if not history:
            return ConnectionMetrics(quality=ConnectionQuality.FAIR)

        average_latency = sum(s.latency_ms or 0 for s in history) / len(history)
        latest = history[-1]

        return ConnectionMetrics(
            **latest.model_dump(),
            average_latency_ms=average_latency,
            sample_count=len(history),
            quality=classify_latency(average_latency)
        )

    # =========================================================================
    # Preferred Peers & Ranking
    # =========================================================================

    def add_preferred_peer(self, address: str, priority: int = 0) -> None:
        self._preferred[_normalize(address)] = priority

    def remove_preferred_peer(self, address: str) -> bool:
        return self._preferred.pop(_normalize(address), None) is not None

    def get_preferred_peers(self) -> list[str]:
        """Preferred host addresses, highest priority first."""
        return sorted(self._preferred, key=lambda a: self._preferred[a], reverse=True)

    def get_ranked_peers(self) -> list[PeerStanding]:
        """
        Rank every host the ledger knows by reputation and latency.

        score = 0.7 * reputation + 0.3 * min(1, 100 / average_latency_ms)
        Hosts without samples use a 1000ms latency.
        """
        addresses = set(self._reputation) | set(self._metrics)
        standings = []

        for address in addresses:
            reputation = self.get_peer_reputation(address).score
            metrics = self.get_connection_metrics(address)
            latency = metrics.average_latency_ms if metrics.sample_count else None
            effective_latency = latency if latency is not None else DEFAULT_PEER_LATENCY_MS
            latency_score = min(1.0, 100.0 / effective_latency) if effective_latency > 0 else 1.0

            standings.append(PeerStanding(
                address=address,
                reputation=reputation,
                average_latency_ms=latency,
                score=(
                    RANKING_WEIGHTS["reputation"] * reputation +
                    RANKING_WEIGHTS["latency"] * latency_score
                )
            ))

        return sorted(standings, key=lambda s: s.score, reverse=True)
