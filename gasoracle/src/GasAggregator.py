"""GasAggregator: Consensus over the readings of one round.

Algorithm:
    1. Reconcile schemes: all Legacy or all Dynamic are kept as-is; a mixed
       set converts every Legacy reading to Dynamic (whole price as base fee,
       zero priority fee)
    2. Optionally drop outliers whose effective price deviates more than
       max_deviation_percent from the initial median
    3. Reduce each fee field independently with the configured strategy
    4. Mark the estimate FULL if the quorum fraction of attempted sources
       answered, DEGRADED otherwise
    5. Convert to the caller's preferred scheme

Median uses the lower median for even counts so the result is always a fee
some source actually reported, and is never rounded up. Mean floors.

.. code-block:: python

    >>> aggregator = GasAggregator(quorum_fraction=0.5)
    >>> readings = [
    ...     Reading("a", Legacy(gas_price=10)),
    ...     Reading("b", Legacy(gas_price=20)),
    ...     Reading("c", Dynamic(base_fee=15, priority_fee=2)),
    ... ]
    >>> aggregator.aggregate(readings, attempted=3).scheme
    Dynamic(base_fee=15, priority_fee=0)
"""

from __future__ import annotations

import enum
import logging
import time
from statistics import median_low
from typing import TYPE_CHECKING, Callable

from .FeeScheme import Dynamic, FeeScheme, Legacy, SchemePreference, apply_preference, to_dynamic
from .Reading import Estimate, EstimateQuality, Reading

if TYPE_CHECKING:
    from .FetchOrchestrator import FetchRound

logger = logging.getLogger(__name__)


class AggregationStrategy(str, enum.Enum):
    """How to reduce one fee field across sources.

    - MEDIAN: lower median, robust to a single outlier (default)
    - MEAN: floored arithmetic mean
    - MAX: highest reported value, always clears the network
    """

    MEDIAN = "median"
    MEAN = "mean"
    MAX = "max"


def _floor_mean(values: list[int]) -> int:
    return sum(values) // len(values)


_REDUCERS: dict[AggregationStrategy, Callable[[list[int]], int]] = {
    AggregationStrategy.MEDIAN: median_low,
    AggregationStrategy.MEAN: _floor_mean,
    AggregationStrategy.MAX: max,
}


class GasAggregator:
    """Combines readings from multiple sources into one Estimate.

    :ivar strategy: Reduction applied to every fee field.
    :ivar quorum_fraction: Share of attempted sources needed for FULL quality.
    :ivar max_deviation_percent: Outlier threshold, or None to keep everything.
    """

    def __init__(
        self,
        strategy: AggregationStrategy = AggregationStrategy.MEDIAN,
        quorum_fraction: float = 0.5,
        max_deviation_percent: float | None = None,
    ) -> None:
        """Initialize the aggregator.

        :param strategy: Reduction strategy (default: MEDIAN).
        :param quorum_fraction: Share of attempted sources (0.0..1.0) that must
            answer for FULL quality (default: 0.5). The comparison is
            inclusive, so with the default exactly half counts: 1 of 2 is
            FULL. Use a value just above 0.5 to require a strict majority.
        :param max_deviation_percent: Drop readings whose effective price
            deviates more than this from the median. None disables the check.
        :raises ValueError: If parameters are invalid.
        """
        if not 0.0 <= quorum_fraction <= 1.0:
            raise ValueError("quorum_fraction must be between 0.0 and 1.0")
        if max_deviation_percent is not None and max_deviation_percent <= 0:
            raise ValueError("max_deviation_percent must be positive if specified")

        self.strategy = AggregationStrategy(strategy)
        self.quorum_fraction = quorum_fraction
        self.max_deviation_percent = max_deviation_percent

    def aggregate(
        self,
        readings: list[Reading],
        *,
        attempted: int | None = None,
        network: str = "",
        preference: SchemePreference = SchemePreference.EITHER,
        computed_at: float | None = None,
    ) -> Estimate:
        """Aggregate readings into a single Estimate.

        :param readings: Readings in completion order (at least one).
        :param attempted: Number of sources attempted; defaults to the number
            of readings. Never taken lower than that.
        :param network: Network identifier recorded on the estimate.
        :param preference: Scheme the result should be expressed in.
        :param computed_at: Timestamp for the estimate (default: now).
        :returns: Estimate with FULL or DEGRADED quality.
        :raises ValueError: If readings is empty.
        """
        if not readings:
            raise ValueError("cannot aggregate an empty set of readings")

        attempted = max(attempted or 0, len(readings))
        schemes = self._reconcile([r.scheme for r in readings])

        kept = list(range(len(readings)))
        dropped: list[str] = []
        if self.max_deviation_percent is not None:
            kept, dropped_idx = self._filter_outliers(schemes)
            dropped = [readings[i].source_id for i in dropped_idx]
            if dropped:
                logger.info(
                    f"{network}: dropped outliers "
                    f"{[f'{readings[i].source_id}={schemes[i]}' for i in dropped_idx]}"
                )

        scheme = self._reduce([schemes[i] for i in kept])
        scheme = apply_preference(scheme, preference)

        successes = len(readings)
        quality = (
            EstimateQuality.FULL
            if successes / attempted >= self.quorum_fraction
            else EstimateQuality.DEGRADED
        )

        return Estimate(
            network=network,
            scheme=scheme,
            quality=quality,
            contributing_sources=tuple(readings[i].source_id for i in kept),
            attempted_sources=attempted,
            computed_at=time.time() if computed_at is None else computed_at,
            dropped_sources=tuple(dropped),
        )

    def aggregate_round(
        self,
        fetch_round: FetchRound,
        preference: SchemePreference = SchemePreference.EITHER,
    ) -> Estimate:
        """Aggregate the readings of a FetchRound.

        :param fetch_round: Round with at least one reading.
        :param preference: Scheme the result should be expressed in.
        :returns: Estimate for the round's network.
        :raises ValueError: If the round has no readings.
        """
        return self.aggregate(
            fetch_round.readings,
            attempted=fetch_round.attempted,
            network=fetch_round.network,
            preference=preference,
        )

    @staticmethod
    def _reconcile(schemes: list[FeeScheme]) -> list[FeeScheme]:
        """Bring all schemes to one variant, converting Legacy to Dynamic if mixed."""
        if all(isinstance(s, Legacy) for s in schemes):
            return schemes
        if all(isinstance(s, Dynamic) for s in schemes):
            return schemes
        return [to_dynamic(s) for s in schemes]

    def _filter_outliers(self, schemes: list[FeeScheme]) -> tuple[list[int], list[int]]:
        """Split indices into kept and dropped by deviation from the median."""
        assert self.max_deviation_percent is not None
        prices = [s.effective_gas_price for s in schemes]
        initial_median = median_low(prices)

        kept: list[int] = []
        dropped: list[int] = []
        for i, price in enumerate(prices):
            deviation = abs(price - initial_median) / initial_median * 100
            if deviation <= self.max_deviation_percent:
                kept.append(i)
            else:
                dropped.append(i)

        # The median itself is always kept, so kept is never empty
        return kept, dropped

    def _reduce(self, schemes: list[FeeScheme]) -> FeeScheme:
        reducer = _REDUCERS[self.strategy]
        if isinstance(schemes[0], Legacy):
            return Legacy(gas_price=reducer([s.gas_price for s in schemes]))
        return Dynamic(
            base_fee=reducer([s.base_fee for s in schemes]),
            priority_fee=reducer([s.priority_fee for s in schemes]),
        )
