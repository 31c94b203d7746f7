"""
Tests for host selection.
"""

import random
import pytest
from collections import Counter
from typing import Optional

from discovery.ledger import PeerLedger
from discovery.selection import (
    DEFAULT_RANK_LIMIT,
    HostSelectionService,
    LedgerTelemetry,
    MAX_PRICE,
    MAX_STAKE,
    MIN_PRICE,
    MODE_WEIGHTS,
    PLACEHOLDER_LATENCY,
    PLACEHOLDER_UPTIME,
    normalize_price,
    normalize_stake,
)
from shared.errors import (
    HostProviderNotSetError,
    HostUnavailableError,
    PreferredHostRequiredError,
    UnsupportedModeError,
)
from shared.models import ConnectionSample, HostRecord, HostSelectionMode, RankedHost, ScoreFactors

MODEL = "llama-3-8b"


class FakeHostProvider:
    """In-memory HostInfoProvider."""

    def __init__(self, hosts: list[HostRecord]):
        self.hosts = {h.address: h for h in hosts}

    async def get_host_info(self, address: str) -> Optional[HostRecord]:
        return self.hosts.get(address.lower())

    async def find_hosts_for_model(self, model_id: str) -> list[HostRecord]:
        return [h for h in self.hosts.values() if h.supports_model(model_id)]

    async def host_supports_model(self, address: str, model_id: str) -> bool:
        host = self.hosts.get(address.lower())
        return host is not None and host.supports_model(model_id)


def make_host(address, stake=0, price=0, models=(MODEL,), active=True):
    return HostRecord(
        address=address,
        stake=stake,
        min_price_per_token_stable=price,
        supported_models=list(models),
        is_active=active
    )


@pytest.fixture
def service():
    """Create a selection service with a seeded random source."""
    return HostSelectionService(rng=random.Random(42))


class TestNormalization:
    """Tests for factor normalization."""

    def test_stake_bounds(self):
        assert normalize_stake(0) == 0.0
        assert normalize_stake(MAX_STAKE // 2) == pytest.approx(0.5)
        assert normalize_stake(MAX_STAKE * 3) == 1.0

    def test_price_bounds(self):
        assert normalize_price(0) == 1.0
        assert normalize_price(MIN_PRICE) == 1.0
        assert normalize_price(MAX_PRICE) == 0.0
        assert normalize_price(MAX_PRICE * 2) == 0.0
        assert normalize_price((MIN_PRICE + MAX_PRICE) // 2) == pytest.approx(0.5, abs=0.01)


class TestScoring:
    """Tests for host scoring."""

    def test_weights_sum_to_one(self):
        for mode, weights in MODE_WEIGHTS.items():
            assert weights.total == pytest.approx(1.0), mode

    def test_specific_has_no_weights(self, service):
        assert HostSelectionMode.SPECIFIC not in MODE_WEIGHTS
        with pytest.raises(UnsupportedModeError):
            service.calculate_host_score(make_host("0x1"), HostSelectionMode.SPECIFIC)

    @pytest.mark.parametrize("mode", list(MODE_WEIGHTS))
    def test_score_in_unit_interval(self, service, mode):
        for host in [
            make_host("0x1"),
            make_host("0x2", stake=MAX_STAKE * 5, price=1),
            make_host("0x3", stake=0, price=MAX_PRICE * 10),
        ]:
            assert 0.0 <= service.calculate_host_score(host, mode) <= 1.0

    def test_placeholder_factors(self, service):
        factors = service.get_score_factors(make_host("0x1"))

        assert factors.uptime_score == PLACEHOLDER_UPTIME
        assert factors.latency_score == PLACEHOLDER_LATENCY

    def test_score_formula(self, service):
        """Test the AUTO score against a hand computation."""
        host = make_host("0x1", stake=MAX_STAKE, price=MAX_PRICE)

        score = service.calculate_host_score(host, "auto")

        expected = 0.35 * 1.0 + 0.30 * 0.0 + 0.20 * PLACEHOLDER_UPTIME + 0.15 * PLACEHOLDER_LATENCY
        assert score == pytest.approx(expected)

    def test_more_stake_scores_higher(self, service):
        low = make_host("0x1", stake=MAX_STAKE // 10, price=1000)
        high = make_host("0x2", stake=MAX_STAKE // 2, price=1000)

        for mode in MODE_WEIGHTS:
            assert service.calculate_host_score(high, mode) > service.calculate_host_score(low, mode)

    def test_lower_price_scores_higher(self, service):
        cheap = make_host("0x1", stake=MAX_STAKE // 2, price=1000)
        pricey = make_host("0x2", stake=MAX_STAKE // 2, price=50000)

        for mode in MODE_WEIGHTS:
            assert service.calculate_host_score(cheap, mode) > service.calculate_host_score(pricey, mode)

    def test_cheapest_mode_favours_price(self, service):
        """Test that CHEAPEST puts a cheap host well ahead of a pricey one."""
        cheap = make_host("0x1", stake=MAX_STAKE // 10, price=MIN_PRICE)
        pricey = make_host("0x2", stake=MAX_STAKE // 10, price=MAX_PRICE)

        gap = (
            service.calculate_host_score(cheap, HostSelectionMode.CHEAPEST) -
            service.calculate_host_score(pricey, HostSelectionMode.CHEAPEST)
        )

        assert gap > 0.3

    def test_reliable_mode_favours_stake(self, service):
        """Test that RELIABLE prefers a high-stake host despite its price."""
        staked = make_host("0x1", stake=MAX_STAKE, price=MAX_PRICE // 2)
        cheap = make_host("0x2", stake=0, price=MIN_PRICE)

        assert (
            service.calculate_host_score(staked, HostSelectionMode.RELIABLE) >
            service.calculate_host_score(cheap, HostSelectionMode.RELIABLE)
        )

    def test_unknown_mode(self, service):
        with pytest.raises(ValueError):
            service.calculate_host_score(make_host("0x1"), "turbo")


class TestLedgerTelemetry:
    """Tests for ledger-backed telemetry."""

    @pytest.mark.asyncio
    async def test_observed_factors(self):
        ledger = PeerLedger()
        telemetry = LedgerTelemetry(ledger)
        host = make_host("0x1")

        await ledger.record_success("0x1")
        await ledger.record_failure("0x1")
        await ledger.record_connection_metrics("0x1", ConnectionSample(latency_ms=250))

        assert telemetry.uptime_score(host) == pytest.approx(0.5)
        assert telemetry.latency_score(host) == pytest.approx(0.75)

    def test_unobserved_uses_placeholders(self):
        telemetry = LedgerTelemetry(PeerLedger())
        host = make_host("0x1")

        assert telemetry.uptime_score(host) == PLACEHOLDER_UPTIME
        assert telemetry.latency_score(host) == PLACEHOLDER_LATENCY


class TestRanking:
    """Tests for ranked host lists."""

    @pytest.mark.asyncio
    async def test_ranked_descending_with_limit(self, service):
        hosts = [make_host(f"0x{i}", stake=MAX_STAKE * i // 10, price=1000) for i in range(1, 6)]
        service.set_host_provider(FakeHostProvider(hosts))

        ranked = await service.get_ranked_hosts_for_model(MODEL, HostSelectionMode.AUTO, limit=3)

        assert [rh.host.address for rh in ranked] == ["0x5", "0x4", "0x3"]
        assert ranked[0].score >= ranked[1].score >= ranked[2].score

    @pytest.mark.asyncio
    async def test_ties_keep_input_order(self, service):
        hosts = [make_host(f"0x{i}") for i in range(4)]
        service.set_host_provider(FakeHostProvider(hosts))

        ranked = await service.get_ranked_hosts_for_model(MODEL, "auto")

        assert [rh.host.address for rh in ranked] == ["0x0", "0x1", "0x2", "0x3"]

    @pytest.mark.asyncio
    async def test_inactive_and_unsupported_excluded(self, service):
        service.set_host_provider(FakeHostProvider([
            make_host("0x1"),
            make_host("0x2", active=False),
            make_host("0x3", models=("other",)),
        ]))

        ranked = await service.get_ranked_hosts_for_model(MODEL, "auto")

        assert [rh.host.address for rh in ranked] == ["0x1"]

    @pytest.mark.asyncio
    async def test_negative_limit(self, service):
        service.set_host_provider(FakeHostProvider([]))

        with pytest.raises(ValueError):
            await service.get_ranked_hosts_for_model(MODEL, "auto", limit=-1)


class TestSelection:
    """Tests for host selection."""

    @pytest.mark.asyncio
    async def test_provider_not_set(self, service):
        with pytest.raises(HostProviderNotSetError):
            await service.select_host_for_model(MODEL)

    @pytest.mark.asyncio
    async def test_no_hosts_returns_none(self, service):
        service.set_host_provider(FakeHostProvider([make_host("0x1", models=("other",))]))

        assert await service.select_host_for_model(MODEL) is None

    @pytest.mark.asyncio
    async def test_specific_requires_address(self, service):
        service.set_host_provider(FakeHostProvider([make_host("0x1")]))

        with pytest.raises(PreferredHostRequiredError):
            await service.select_host_for_model(MODEL, HostSelectionMode.SPECIFIC)

    @pytest.mark.asyncio
    async def test_specific_returns_preferred(self, service):
        service.set_host_provider(FakeHostProvider([
            make_host("0x1", stake=MAX_STAKE),
            make_host("0x2"),
        ]))

        selected = await service.select_host_for_model(MODEL, "specific", preferred_address="0x2")

        assert selected.address == "0x2"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("address,reason", [
        ("0xmissing", "not found"),
        ("0xinactive", "inactive"),
        ("0xother", "does not support"),
    ])
    async def test_specific_unavailable(self, service, address, reason):
        service.set_host_provider(FakeHostProvider([
            make_host("0xinactive", active=False),
            make_host("0xother", models=("other",)),
        ]))

        with pytest.raises(HostUnavailableError) as exc_info:
            await service.select_host_for_model(MODEL, "specific", preferred_address=address)

        assert exc_info.value.address == address
        assert exc_info.value.model_id == MODEL
        assert reason in exc_info.value.reason

    @pytest.mark.asyncio
    async def test_weighted_random_distribution(self, service):
        """Test that selection frequency follows score and every host gets picked."""
        service.set_host_provider(FakeHostProvider([
            make_host("0xstrong", stake=MAX_STAKE, price=MIN_PRICE),
            make_host("0xweak", stake=0, price=MAX_PRICE),
        ]))

        picks = Counter()
        for _ in range(1000):
            host = await service.select_host_for_model(MODEL, HostSelectionMode.AUTO)
            picks[host.address] += 1

        assert picks["0xstrong"] > picks["0xweak"] > 0

    @pytest.mark.asyncio
    async def test_selection_limited_to_top_ranked(self, service):
        """Test that only the top-ranked hosts are eligible in large fleets."""
        hosts = [
            make_host(f"0x{i:02d}", stake=MAX_STAKE * i // 20, price=1000)
            for i in range(1, DEFAULT_RANK_LIMIT + 6)
        ]
        service.set_host_provider(FakeHostProvider(hosts))
        eligible = {h.address for h in hosts[-DEFAULT_RANK_LIMIT:]}

        picks = set()
        for _ in range(500):
            host = await service.select_host_for_model(MODEL, HostSelectionMode.AUTO)
            picks.add(host.address)

        assert picks <= eligible
        assert len(picks) > 1

    def test_zero_scores_fall_back_to_uniform(self, service):
        ranked = [
            RankedHost(
                host=make_host(f"0x{i}"),
                score=0.0,
                factors=ScoreFactors(stake_score=0, price_score=0, uptime_score=0, latency_score=0)
            )
            for i in range(3)
        ]

        picks = {service.weighted_random_select(ranked).address for _ in range(200)}

        assert picks == {"0x0", "0x1", "0x2"}

    def test_empty_selection_rejected(self, service):
        with pytest.raises(ValueError):
            service.weighted_random_select([])
