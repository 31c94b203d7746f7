"""
HostFinder Pydantic Models

Shared data models for hosts, reputation, discovery statistics and selection.
"""

from enum import Enum
from typing import Any, Optional
from pydantic import AliasChoices, BaseModel, Field, field_validator


# Fixed-point scale applied to on-chain prices: true price = raw / PRICE_PRECISION
PRICE_PRECISION = 1000


# =============================================================================
# Host Models
# =============================================================================

class HostRecord(BaseModel):
    """
    Advertised state of one worker in the marketplace.

    Raw payloads from registries and peers use camelCase keys, so every field
    also validates from its camelCase alias.
    """
    address: str = Field(
        validation_alias=AliasChoices("address", "nodeAddress", "node_address", "id")
    )
    api_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("api_url", "apiUrl", "endpoint", "url")
    )
    peer_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("peer_id", "peerId")
    )
    source: Optional[str] = None  # Adapter that produced this record

    supported_models: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("supported_models", "supportedModels", "models")
    )
    hardware: dict[str, Any] = Field(default_factory=dict)

    # Economics (fixed-point integers)
    stake: int = Field(
        default=0,
        ge=0,
        validation_alias=AliasChoices("stake", "stakedAmount", "staked_amount")
    )
    min_price_per_token_native: int = Field(
        default=0,
        ge=0,
        validation_alias=AliasChoices("min_price_per_token_native", "minPricePerTokenNative")
    )
    min_price_per_token_stable: int = Field(
        default=0,
        ge=0,
        validation_alias=AliasChoices("min_price_per_token_stable", "minPricePerTokenStable")
    )

    is_active: bool = Field(
        default=True,
        validation_alias=AliasChoices("is_active", "isActive", "active")
    )
    region: Optional[str] = None
    latency_ms: Optional[float] = Field(
        default=None,
        validation_alias=AliasChoices("latency_ms", "latencyMs", "latency")
    )
    timestamp: Optional[float] = None  # Epoch seconds when the source observed it
    metadata: dict[str, Any] = Field(default_factory=dict)

    class Config:
        populate_by_name = True

    @field_validator("address", mode="before")
    @classmethod
    def normalize_address(cls, value: Any) -> str:
        if value is None:
            raise ValueError("address is required")
        address = str(value).strip().lower()
        if not address:
            raise ValueError("address must not be empty")
        return address

    @field_validator("supported_models", mode="before")
    @classmethod
    def default_models(cls, value: Any) -> Any:
        return [] if value is None else value

    def supports_model(self, model_id: str) -> bool:
        """Check whether this host lists the model among its supported models."""
        return model_id in self.supported_models

    @property
    def stable_price(self) -> float:
        """Stablecoin price per token in true units."""
        return self.min_price_per_token_stable / PRICE_PRECISION

    @property
    def native_price(self) -> float:
        """Native-token price per token in true units."""
        return self.min_price_per_token_native / PRICE_PRECISION


# =============================================================================
# Reputation Models
# =============================================================================

class ReputationScore(BaseModel):
    """Running success-ratio estimate of a host's reliability."""
    score: float = Field(default=0.5, ge=0.0, le=1.0)
    successful_requests: int = 0
    failed_requests: int = 0

    @property
    def total_requests(self) -> int:
        return self.successful_requests + self.failed_requests


class BlacklistEntry(BaseModel):
    """Exclusion of a host from discovery results."""
    reason: str
    until: Optional[float] = None  # Absolute epoch seconds, None = permanent
    created_at: float

    def is_expired(self, now: float) -> bool:
        return self.until is not None and now > self.until


class ConnectionQuality(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"


class ConnectionSample(BaseModel):
    """One connection measurement against a host."""
    latency_ms: Optional[float] = None
    bandwidth_mbps: Optional[float] = None
    packet_loss: Optional[float] = None
    timestamp: Optional[float] = None


class ConnectionMetrics(ConnectionSample):
    """Latest sample plus aggregates over the retained history."""
    average_latency_ms: Optional[float] = None
    sample_count: int = 0
    quality: ConnectionQuality = ConnectionQuality.FAIR


class PeerStanding(BaseModel):
    """Ledger-level ranking entry combining reputation and latency."""
    address: str
    reputation: float
    average_latency_ms: Optional[float] = None
    score: float


# =============================================================================
# Selection Models
# =============================================================================

class HostSelectionMode(str, Enum):
    AUTO = "auto"          # Balanced default
    CHEAPEST = "cheapest"  # Price dominates
    RELIABLE = "reliable"  # Stake and uptime dominate
    FASTEST = "fastest"    # Latency dominates
    SPECIFIC = "specific"  # Fixed preferred host, no scoring


class ScoreFactors(BaseModel):
    """Individual normalized factors, each in [0, 1]."""
    stake_score: float
    price_score: float
    uptime_score: float
    latency_score: float


class RankedHost(BaseModel):
    host: HostRecord
    score: float
    factors: ScoreFactors


# =============================================================================
# Discovery Models
# =============================================================================

class DiscoveryOptions(BaseModel):
    """Options for a unified discovery round. Filters apply only when set."""
    force_refresh: bool = False
    max_price: Optional[int] = None  # Raw stable price ceiling
    model: Optional[str] = None
    region: Optional[str] = None
    min_latency: Optional[float] = None
    max_latency: Optional[float] = None
    cache_ttl: Optional[float] = Field(default=None, ge=0)  # Seconds

    class Config:
        extra = "forbid"


class SourceStats(BaseModel):
    """Health counters for one discovery source."""
    attempts: int = 0
    successes: int = 0
    failures: int = 0
    average_time_ms: float = 0.0
    last_success: Optional[float] = None
    last_failure: Optional[float] = None
    last_error: Optional[str] = None


class DiscoveryStats(BaseModel):
    total_discoveries: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    cache_hit_rate: float = 0.0
    source_stats: dict[str, SourceStats] = Field(default_factory=dict)
