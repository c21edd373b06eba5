"""GasEstimator: Main entry point for gas fee estimates.

Sequence per call:
    - Fresh cache hit for (network, preference): return it
    - Otherwise join the in-flight round for that key, or start one
    - Round with data: aggregate, write to cache, return
    - Round without data: return the last cached estimate tagged STALE,
      or raise NoDataAvailable if nothing was ever cached

Only one round per key runs at a time. Concurrent callers await the same
task (shielded, so a caller giving up does not cancel the shared round), and
the task removes itself from the registry once its cache write has landed.

.. code-block:: python

    async with GasEstimator.from_sources(
        ["eth_node", "etherscan"],
        api_keys={"etherscan": "KEY"},
        source_options={"eth_node": {"rpc_url": "https://rpc.example"}},
    ) as estimator:
        estimate = await estimator.estimate("mainnet", SchemePreference.DYNAMIC)
        tx.update(estimate.to_tx_params())
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from typing import Any

from .EstimateCache import CacheKey, EstimateCache
from .EstimatorConfig import EstimatorConfig
from .FeeScheme import Legacy, SchemePreference, apply_preference, wei_to_gwei
from .fetchers import BaseFetcher, get_fetcher
from .FetchOrchestrator import FetchOrchestrator
from .GasAggregator import GasAggregator
from .Reading import Estimate, EstimateQuality
from .SourceManager import SourceManager, SourceStatus

logger = logging.getLogger(__name__)


class EngineError(Exception):
    """Base exception for errors surfaced to estimate() callers."""

    pass


class NoDataAvailable(EngineError):
    """No source answered and no estimate was ever cached for the network.

    :ivar network: Network that was requested.
    :ivar preference: Scheme preference that was requested.
    :ivar failures: Source names mapped to their failure reason.
    """

    def __init__(
        self,
        network: str,
        preference: SchemePreference,
        failures: dict[str, str] | None = None,
    ):
        self.network = network
        self.preference = preference
        self.failures = dict(failures or {})
        detail = f": {self.failures}" if self.failures else ""
        super().__init__(f"No gas data available for {network}{detail}")


class GasEstimator:
    """Cache, fetch, aggregate: the estimation engine facade.

    :ivar config: Engine configuration.
    :ivar fetchers: Dict mapping source names to source instances.
    :ivar source_manager: Health tracker shared by all rounds.
    :ivar orchestrator: Concurrent fetcher.
    :ivar aggregator: Consensus over readings.
    :ivar cache: Estimates per (network, preference).
    """

    def __init__(
        self,
        fetchers: dict[str, BaseFetcher],
        config: EstimatorConfig | None = None,
        cache: EstimateCache | None = None,
    ) -> None:
        """Initialize the engine.

        :param fetchers: Dict mapping source names to source instances.
        :param config: Engine configuration (default: EstimatorConfig()).
        :param cache: Cache to use (default: one built from config.cache_ttl).
        :raises ValueError: If no sources are given.
        """
        if not fetchers:
            raise ValueError("At least one gas price source must be specified")

        self.config = config or EstimatorConfig()
        self.fetchers = dict(fetchers)
        self.source_manager = SourceManager(
            list(self.fetchers),
            unhealthy_after=self.config.unhealthy_after,
        )
        self.orchestrator = FetchOrchestrator(
            self.fetchers,
            round_deadline=self.config.round_deadline,
            per_source_timeout=self.config.effective_source_timeout,
            source_manager=self.source_manager,
        )
        self.aggregator = GasAggregator(
            strategy=self.config.aggregation_strategy,
            quorum_fraction=self.config.quorum_fraction,
            max_deviation_percent=self.config.max_deviation_percent,
        )
        self.cache = cache if cache is not None else EstimateCache(ttl=self.config.cache_ttl)
        self._inflight: dict[CacheKey, asyncio.Task[Estimate]] = {}

        logger.info(
            f"GasEstimator initialized: sources={list(self.fetchers)}, "
            f"strategy={self.config.aggregation_strategy.value}, "
            f"quorum={self.config.quorum_fraction}, "
            f"round_deadline={self.config.round_deadline}s, "
            f"cache_ttl={self.config.cache_ttl}s"
        )

    @classmethod
    def from_sources(
        cls,
        sources: list[str],
        api_keys: dict[str, str] | None = None,
        source_options: dict[str, dict[str, Any]] | None = None,
        config: EstimatorConfig | None = None,
    ) -> GasEstimator:
        """Build an engine from registered source names.

        :param sources: Source names (see ``get_available_fetchers()``).
        :param api_keys: Dict mapping source names to API keys.
        :param source_options: Extra constructor arguments per source.
        :param config: Engine configuration.
        :returns: Configured GasEstimator.
        :raises ValueError: If a source name is unknown.
        """
        config = config or EstimatorConfig()
        api_keys = api_keys or {}
        source_options = source_options or {}

        fetchers: dict[str, BaseFetcher] = {}
        for source in sources:
            options = {
                "timeout": config.effective_source_timeout,
                "missing_field_policy": config.missing_field_policy,
            }
            options.update(source_options.get(source, {}))
            fetchers[source] = get_fetcher(source, api_key=api_keys.get(source), **options)
        return cls(fetchers, config=config)

    async def estimate(
        self,
        network: str,
        preference: SchemePreference = SchemePreference.EITHER,
    ) -> Estimate:
        """Get a gas fee estimate for a network.

        :param network: Network identifier (e.g., "mainnet").
        :param preference: Scheme the estimate should be expressed in.
        :returns: Estimate; check ``quality`` for FULL/DEGRADED/STALE.
        :raises NoDataAvailable: If no source answered and nothing is cached.
        """
        preference = SchemePreference(preference)
        key: CacheKey = (network, preference)

        cached = self.cache.get_fresh(key)
        if cached is not None:
            logger.debug(f"{network}/{preference.value}: cache hit")
            return cached

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.create_task(
                self._refresh(key), name=f"gas-round:{network}:{preference.value}"
            )
            task.add_done_callback(_consume_exception)
            self._inflight[key] = task
        else:
            logger.debug(f"{network}/{preference.value}: joining in-flight round")

        return await asyncio.shield(task)

    async def _refresh(self, key: CacheKey) -> Estimate:
        """Run one round for a key and update the cache."""
        network, preference = key
        try:
            fetch_round = await self.orchestrator.fetch_round(network)

            if not fetch_round.has_data:
                stale = self._stale_fallback(key)
                if stale is None:
                    logger.error(
                        f"{network}: no source answered and no cached estimate "
                        f"(failures={fetch_round.failures})"
                    )
                    raise NoDataAvailable(network, preference, fetch_round.failures)
                logger.warning(
                    f"{network}: no source answered, serving stale estimate "
                    f"from {stale.computed_at:.0f} (failures={fetch_round.failures})"
                )
                return stale

            estimate = self.aggregator.aggregate_round(fetch_round, preference)
            if not self.cache.put(key, estimate):
                logger.debug(f"{network}/{preference.value}: newer estimate already cached")

            logger.info(
                f"{network}: {_describe(estimate)} "
                f"[{estimate.quality.value}, {len(estimate.contributing_sources)}/"
                f"{estimate.attempted_sources} sources: "
                f"{', '.join(estimate.contributing_sources)}]"
            )
            return estimate
        finally:
            if self._inflight.get(key) is asyncio.current_task():
                del self._inflight[key]

    def _stale_fallback(self, key: CacheKey) -> Estimate | None:
        """Last cached estimate for the network, tagged STALE.

        Prefers the exact key; otherwise converts the newest estimate cached
        for the same network under another preference.
        """
        network, preference = key
        previous = self.cache.get_any(key)
        if previous is None:
            others = [
                e
                for e in (self.cache.get_any(k) for k in self.cache.keys() if k[0] == network)
                if e is not None
            ]
            if not others:
                return None
            newest = max(others, key=lambda e: e.computed_at)
            previous = dataclasses.replace(
                newest, scheme=apply_preference(newest.scheme, preference)
            )
        return dataclasses.replace(previous, quality=EstimateQuality.STALE)

    def invalidate(self, network: str | None = None) -> None:
        """Drop cached estimates for a network, or for all networks."""
        if network is None:
            self.cache.invalidate()
            return
        for key in self.cache.keys():
            if key[0] == network:
                self.cache.invalidate(key)

    def source_status(self) -> dict[str, SourceStatus]:
        """Health counters of every source."""
        return self.source_manager.get_all_status()

    @property
    def inflight_rounds(self) -> int:
        """Number of rounds currently running."""
        return len(self._inflight)

    async def close(self) -> None:
        """Cancel running rounds and close the shared HTTP client."""
        for task in list(self._inflight.values()):
            task.cancel()
        self._inflight.clear()
        await BaseFetcher.close_shared_client()

    async def __aenter__(self) -> GasEstimator:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()


def _consume_exception(task: asyncio.Task) -> None:
    # Mark the exception as retrieved even if every caller has gone away
    if not task.cancelled():
        task.exception()


def _describe(estimate: Estimate) -> str:
    scheme = estimate.scheme
    if isinstance(scheme, Legacy):
        return f"gas_price={wei_to_gwei(scheme.gas_price):f} gwei"
    return (
        f"base_fee={wei_to_gwei(scheme.base_fee):f} gwei, "
        f"priority_fee={wei_to_gwei(scheme.priority_fee):f} gwei"
    )
