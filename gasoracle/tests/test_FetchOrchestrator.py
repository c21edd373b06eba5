"""Unit tests for FetchOrchestrator."""

import asyncio
import time

import pytest

from gasoracle.src.FeeScheme import Dynamic, Legacy
from gasoracle.src.FetchOrchestrator import FetchOrchestrator
from gasoracle.src.fetchers.base import BaseFetcher, SourceError
from gasoracle.src.Reading import Reading
from gasoracle.src.SourceManager import SourceManager


class FakeSource(BaseFetcher):
    """In-memory source with configurable latency and failure."""

    name = "fake"

    def __init__(self, scheme=None, delay=0.0, error=None, networks=None):
        super().__init__(timeout=60.0)
        self.scheme = scheme or Legacy(gas_price=10)
        self.delay = delay
        self.error = error
        self.networks = networks
        self.calls = 0

    def supports_network(self, network: str) -> bool:
        return self.networks is None or network in self.networks

    async def fetch(self, network: str, deadline: float) -> Reading:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return Reading(source_id=self.name, scheme=self.scheme)


class StubbornSource(FakeSource):
    """Source that swallows the first two cancellations it receives."""

    async def fetch(self, network: str, deadline: float) -> Reading:
        self.calls += 1
        swallowed = 0
        while True:
            try:
                await asyncio.sleep(3600)
            except asyncio.CancelledError:
                swallowed += 1
                if swallowed > 2:
                    raise


class TestFetchOrchestratorInit:
    """Test FetchOrchestrator initialization."""

    def test_invalid_deadline(self) -> None:
        """Non-positive timeouts should raise ValueError."""
        with pytest.raises(ValueError, match="round_deadline must be positive"):
            FetchOrchestrator({}, round_deadline=0)

        with pytest.raises(ValueError, match="per_source_timeout must be positive"):
            FetchOrchestrator({}, per_source_timeout=-1)

    def test_sources_for_network(self) -> None:
        """Only sources supporting the network take part."""
        orchestrator = FetchOrchestrator({
            "a": FakeSource(networks={"mainnet"}),
            "b": FakeSource(networks={"polygon"}),
            "c": FakeSource(),
        })
        assert orchestrator.sources_for("mainnet") == ["a", "c"]


class TestFetchOrchestratorRound:
    """Test round behaviour."""

    @pytest.mark.asyncio
    async def test_collects_all_readings(self) -> None:
        """Every successful source contributes a reading."""
        orchestrator = FetchOrchestrator({
            "a": FakeSource(Legacy(gas_price=10)),
            "b": FakeSource(Dynamic(base_fee=15, priority_fee=2)),
        })
        result = await orchestrator.fetch_round("mainnet")

        assert result.has_data
        assert result.attempted == 2
        assert sorted(result.source_ids) == ["a", "b"]
        assert result.failures == {}

    @pytest.mark.asyncio
    async def test_completion_order(self) -> None:
        """Readings are ordered by completion time."""
        orchestrator = FetchOrchestrator({
            "slow": FakeSource(delay=0.15),
            "fast": FakeSource(delay=0.0),
            "medium": FakeSource(delay=0.05),
        })
        result = await orchestrator.fetch_round("mainnet")
        assert result.source_ids == ["fast", "medium", "slow"]

    @pytest.mark.asyncio
    async def test_source_id_taken_from_registry(self) -> None:
        """Readings are labelled with the registry name."""
        orchestrator = FetchOrchestrator({"node-eu": FakeSource()})
        result = await orchestrator.fetch_round("mainnet")
        assert result.readings[0].source_id == "node-eu"

    @pytest.mark.asyncio
    async def test_failures_are_recorded_not_raised(self) -> None:
        """A failing source never aborts the round."""
        orchestrator = FetchOrchestrator({
            "ok": FakeSource(),
            "broken": FakeSource(error=SourceError("HTTP 502")),
            "buggy": FakeSource(error=KeyError("price")),
        })
        result = await orchestrator.fetch_round("mainnet")

        assert result.source_ids == ["ok"]
        assert result.attempted == 3
        assert set(result.failures) == {"broken", "buggy"}
        assert "HTTP 502" in result.failures["broken"]

    @pytest.mark.asyncio
    async def test_no_data_outcome(self) -> None:
        """Zero successes is a distinct no-data outcome."""
        orchestrator = FetchOrchestrator({"a": FakeSource(error=SourceError("down"))})
        result = await orchestrator.fetch_round("mainnet")

        assert not result.has_data
        assert result.readings == []
        assert result.attempted == 1

    @pytest.mark.asyncio
    async def test_unknown_network(self) -> None:
        """A network no source supports yields an empty round."""
        orchestrator = FetchOrchestrator({"a": FakeSource(networks={"mainnet"})})
        result = await orchestrator.fetch_round("gnosis")

        assert not result.has_data
        assert result.attempted == 0


class TestFetchOrchestratorDeadline:
    """Test deadline enforcement."""

    @pytest.mark.asyncio
    async def test_hanging_source_does_not_delay_round(self) -> None:
        """A source that never answers is abandoned at the round deadline."""
        hanging = FakeSource(delay=3600)
        orchestrator = FetchOrchestrator(
            {"hanging": hanging, "fast": FakeSource()},
            round_deadline=0.2,
            per_source_timeout=10.0,
        )

        start = time.monotonic()
        result = await orchestrator.fetch_round("mainnet")
        elapsed = time.monotonic() - start

        assert elapsed < 0.5
        assert result.source_ids == ["fast"]
        assert "hanging" in result.failures

    @pytest.mark.asyncio
    async def test_source_ignoring_cancellation_is_abandoned(self) -> None:
        """Even a source that swallows cancellation cannot hold the round."""
        stubborn = StubbornSource()
        orchestrator = FetchOrchestrator(
            {"stubborn": stubborn, "fast": FakeSource()},
            round_deadline=0.2,
            per_source_timeout=0.1,
        )

        start = time.monotonic()
        result = await orchestrator.fetch_round("mainnet")
        elapsed = time.monotonic() - start

        assert elapsed < 0.5
        assert result.source_ids == ["fast"]
        assert result.failures["stubborn"] == "round deadline exceeded"

    @pytest.mark.asyncio
    async def test_per_source_timeout(self) -> None:
        """A tighter per-source timeout applies before the round deadline."""
        orchestrator = FetchOrchestrator(
            {"slow": FakeSource(delay=1.0), "fast": FakeSource()},
            round_deadline=2.0,
            per_source_timeout=0.1,
        )

        start = time.monotonic()
        result = await orchestrator.fetch_round("mainnet")

        assert time.monotonic() - start < 0.5
        assert result.failures["slow"] == "timeout"


class TestFetchOrchestratorHealth:
    """Test interaction with SourceManager."""

    @pytest.mark.asyncio
    async def test_failed_source_dispatched_next_round(self) -> None:
        """A source that failed is still fetched in every later round."""
        broken = FakeSource(error=SourceError("down"))
        manager = SourceManager(["ok", "broken"], unhealthy_after=1)
        orchestrator = FetchOrchestrator(
            {"ok": FakeSource(), "broken": broken}, source_manager=manager
        )

        await orchestrator.fetch_round("mainnet")
        broken.error = None
        result = await orchestrator.fetch_round("mainnet")

        assert broken.calls == 2
        assert result.attempted == 2
        assert result.failures == {}
        assert sorted(result.source_ids) == ["broken", "ok"]
        assert manager.get_source_status("ok").total_successes == 2
        assert manager.is_source_healthy("broken")

    @pytest.mark.asyncio
    async def test_failures_reported_to_manager(self) -> None:
        """Failure reasons end up in the health tracker."""
        manager = SourceManager(["broken"], unhealthy_after=2)
        orchestrator = FetchOrchestrator(
            {"broken": FakeSource(error=SourceError("HTTP 503"))}, source_manager=manager
        )

        await orchestrator.fetch_round("mainnet")
        await orchestrator.fetch_round("mainnet")

        status = manager.get_source_status("broken")
        assert status.consecutive_failures == 2
        assert status.last_error == "HTTP 503"
        assert manager.get_unhealthy_sources() == ["broken"]
