"""
HostFinder Host Selection

Scores hosts per selection mode and picks one by weighted random choice.
"""

import random
from dataclasses import dataclass
from typing import Optional, Protocol, Union
import structlog

from shared.errors import (
    HostProviderNotSetError,
    HostUnavailableError,
    PreferredHostRequiredError,
    UnsupportedModeError,
)
from shared.models import (
    HostRecord,
    HostSelectionMode,
    RankedHost,
    ScoreFactors,
)
from .ledger import PeerLedger
from .providers import HostInfoProvider

logger = structlog.get_logger()

# Price range for normalization, in PRICE_PRECISION units
# Min: 0.0001 USDC/token = 100, Max: 0.1 USDC/token = 100000
MIN_PRICE = 100
MAX_PRICE = 100000

# Stake cap for normalization (10,000 tokens with 18 decimals)
MAX_STAKE = 10000 * 10**18

# Used until live telemetry is available for a host
PLACEHOLDER_UPTIME = 0.95
PLACEHOLDER_LATENCY = 0.9

# Latency at or above this maps to a zero latency score
MAX_SCORED_LATENCY_MS = 1000.0

# Weighted random selection draws from this many top-ranked hosts
DEFAULT_RANK_LIMIT = 10


@dataclass(frozen=True)
class ModeWeights:
    stake: float
    price: float
    uptime: float
    latency: float

    @property
    def total(self) -> float:
        return self.stake + self.price + self.uptime + self.latency


# SPECIFIC bypasses scoring and has no entry
MODE_WEIGHTS: dict[HostSelectionMode, ModeWeights] = {
    HostSelectionMode.AUTO: ModeWeights(stake=0.35, price=0.30, uptime=0.20, latency=0.15),
    HostSelectionMode.CHEAPEST: ModeWeights(stake=0.15, price=0.70, uptime=0.10, latency=0.05),
    HostSelectionMode.RELIABLE: ModeWeights(stake=0.50, price=0.05, uptime=0.40, latency=0.05),
    HostSelectionMode.FASTEST: ModeWeights(stake=0.10, price=0.20, uptime=0.10, latency=0.60),
}


# =============================================================================
# Telemetry
# =============================================================================

class TelemetryProvider(Protocol):
    """Source of the uptime and latency factors, each in [0, 1]."""

    def uptime_score(self, host: HostRecord) -> float: ...

    def latency_score(self, host: HostRecord) -> float: ...


class PlaceholderTelemetry:
    """Fixed factors for use before any telemetry is collected."""

    def uptime_score(self, host: HostRecord) -> float:
        return PLACEHOLDER_UPTIME

    def latency_score(self, host: HostRecord) -> float:
        return PLACEHOLDER_LATENCY


class LedgerTelemetry:
    """
    Factors derived from the peer ledger.

    - Uptime: reputation success ratio, once any outcome has been reported
    - Latency: 1 - avg_latency / 1000ms, once any sample has been recorded
    Hosts without observations fall back to the placeholders.
    """

    def __init__(self, ledger: PeerLedger):
        self.ledger = ledger

    def uptime_score(self, host: HostRecord) -> float:
        reputation = self.ledger.get_peer_reputation(host.address)
        if reputation.total_requests == 0:
            return PLACEHOLDER_UPTIME
        return _clamp(reputation.score)

    def latency_score(self, host: HostRecord) -> float:
        metrics = self.ledger.get_connection_metrics(host.address)
        if metrics.sample_count == 0 or metrics.average_latency_ms is None:
            return PLACEHOLDER_LATENCY
        return _clamp(1 - min(metrics.average_latency_ms, MAX_SCORED_LATENCY_MS) / MAX_SCORED_LATENCY_MS)


# =============================================================================
# Normalization
# =============================================================================

def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def normalize_stake(stake: Optional[int]) -> float:
    """
    Normalize stake to [0, 1]; higher stake scores higher.

    Stake above MAX_STAKE adds nothing.
    """
    if stake is None or stake <= 0:
        return 0.0
    return min(stake, MAX_STAKE) / MAX_STAKE


def normalize_price(price: Optional[int]) -> float:
    """
    Normalize a raw price to [0, 1]; lower price scores higher.

    Zero or missing prices get the best score.
    """
    if price is None or price <= 0:
        return 1.0
    if price <= MIN_PRICE:
        return 1.0
    if price >= MAX_PRICE:
        return 0.0
    return _clamp((MAX_PRICE - price) / (MAX_PRICE - MIN_PRICE))


def coerce_mode(mode: Union[HostSelectionMode, str]) -> HostSelectionMode:
    """Convert a mode name to HostSelectionMode, raising ValueError if unknown."""
    if isinstance(mode, HostSelectionMode):
        return mode
    return HostSelectionMode(str(mode).lower())


# =============================================================================
# Selection Service
# =============================================================================

class HostSelectionService:
    """
    Chooses a host for a model.

    Scoring formula:
        score = w.stake * stake_score + w.price * price_score
              + w.uptime * uptime_score + w.latency * latency_score

    Weights depend on the mode (see MODE_WEIGHTS). SPECIFIC mode returns the
    preferred host directly; every other mode picks by weighted random over
    the top DEFAULT_RANK_LIMIT scored candidates.
    """

    def __init__(
        self,
        host_provider: Optional[HostInfoProvider] = None,
        telemetry: Optional[TelemetryProvider] = None,
        rng: Optional[random.Random] = None
    ):
        self._host_provider = host_provider
        self._telemetry = telemetry or PlaceholderTelemetry()
        self._rng = rng or random.Random()

    def set_host_provider(self, host_provider: HostInfoProvider) -> None:
        """Attach the provider used to look up candidate hosts."""
        self._host_provider = host_provider

    def set_telemetry(self, telemetry: TelemetryProvider) -> None:
        self._telemetry = telemetry

    @property
    def host_provider(self) -> HostInfoProvider:
        if self._host_provider is None:
            raise HostProviderNotSetError(
                "Host provider not set - call set_host_provider() first"
            )
        return self._host_provider

    def calculate_host_score(
        self,
        host: HostRecord,
        mode: Union[HostSelectionMode, str]
    ) -> float:
        """
        Calculate a host's score for a mode.

        Returns:
            Score between 0 and 1
        """
        mode = coerce_mode(mode)
        weights = MODE_WEIGHTS.get(mode)
        if weights is None:
            raise UnsupportedModeError(f"{mode.value} mode does not score hosts")

        factors = self.get_score_factors(host)
        return _clamp(
            weights.stake * factors.stake_score +
            weights.price * factors.price_score +
            weights.uptime * factors.uptime_score +
            weights.latency * factors.latency_score
        )

    def get_score_factors(self, host: HostRecord) -> ScoreFactors:
        """Get the normalized factors for a host."""
        return ScoreFactors(
            stake_score=normalize_stake(host.stake),
            price_score=normalize_price(host.min_price_per_token_stable),
            uptime_score=_clamp(self._telemetry.uptime_score(host)),
            latency_score=_clamp(self._telemetry.latency_score(host)),
        )

    def rank_hosts(
        self,
        hosts: list[HostRecord],
        mode: Union[HostSelectionMode, str]
    ) -> list[RankedHost]:
        """Score hosts and order them highest first, keeping input order for ties."""
        ranked = [
            RankedHost(
                host=host,
                score=self.calculate_host_score(host, mode),
                factors=self.get_score_factors(host)
            )
            for host in hosts
        ]
        return sorted(ranked, key=lambda rh: rh.score, reverse=True)

    async def get_ranked_hosts_for_model(
        self,
        model_id: str,
        mode: Union[HostSelectionMode, str],
        limit: int = DEFAULT_RANK_LIMIT
    ) -> list[RankedHost]:
        """
        Get the best-scoring hosts for a model.

        Args:
            model_id: Model identifier
            mode: Selection mode for scoring
            limit: Maximum hosts to return

        Returns:
            Ranked hosts, highest score first
        """
        if limit < 0:
            raise ValueError("limit must not be negative")
        mode = coerce_mode(mode)

        hosts = await self._candidates(model_id)
        return self.rank_hosts(hosts, mode)[:limit]

    async def select_host_for_model(
        self,
        model_id: str,
        mode: Union[HostSelectionMode, str] = HostSelectionMode.AUTO,
        preferred_address: Optional[str] = None
    ) -> Optional[HostRecord]:
        """
        Select a host for a model.

        Args:
            model_id: Model identifier
            mode: Selection mode
            preferred_address: Required for SPECIFIC mode

        Returns:
            Selected host, or None if no host serves the model

        Raises:
            HostProviderNotSetError: No provider attached
            PreferredHostRequiredError: SPECIFIC mode without preferred_address
            HostUnavailableError: Preferred host missing, inactive or lacking the model
        """
        mode = coerce_mode(mode)
        provider = self.host_provider

        if mode == HostSelectionMode.SPECIFIC:
            return await self._select_specific(provider, model_id, preferred_address)

        ranked = self.rank_hosts(await self._candidates(model_id), mode)[:DEFAULT_RANK_LIMIT]
        if not ranked:
            logger.warning("no_hosts_for_model", model_id=model_id, mode=mode.value)
            return None

        selected = self.weighted_random_select(ranked)
        logger.info(
            "host_selected",
            model_id=model_id,
            mode=mode.value,
            address=selected.address,
            candidates=len(ranked)
        )
        return selected

    def weighted_random_select(self, ranked_hosts: list[RankedHost]) -> HostRecord:
        """
        Pick a host with probability proportional to its score.

        Falls back to a uniform choice when every score is zero.
        """
        if not ranked_hosts:
            raise ValueError("Cannot select from an empty host list")

        total_score = sum(rh.score for rh in ranked_hosts)
        if total_score <= 0:
            return self._rng.choice(ranked_hosts).host

        remaining = self._rng.random() * total_score
        for rh in ranked_hosts:
            remaining -= rh.score
            if remaining <= 0:
                return rh.host

        # Floating point leftovers
        return ranked_hosts[-1].host

    async def _candidates(self, model_id: str) -> list[HostRecord]:
        hosts = await self.host_provider.find_hosts_for_model(model_id)
        return [h for h in hosts if h.is_active]

    async def _select_specific(
        self,
        provider: HostInfoProvider,
        model_id: str,
        preferred_address: Optional[str]
    ) -> HostRecord:
        if not preferred_address:
            raise PreferredHostRequiredError(
                "preferred_address required for SPECIFIC mode"
            )

        host = await provider.get_host_info(preferred_address)
        if host is None:
            raise HostUnavailableError(preferred_address, model_id, "host not found")
        if not host.is_active:
            raise HostUnavailableError(preferred_address, model_id, "host is inactive")
        if not await provider.host_supports_model(preferred_address, model_id):
            raise HostUnavailableError(
                preferred_address,
                model_id,
                "host does not support the model"
            )

        logger.info(
            "preferred_host_selected",
            model_id=model_id,
            address=host.address
        )
        return host
