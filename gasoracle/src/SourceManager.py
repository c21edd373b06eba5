"""SourceManager: Per-source health tracking.

Every registered source is fetched in every round; the manager only keeps
score. A source whose consecutive failures reach ``unhealthy_after`` is
reported as unhealthy until its next success, so operators can spot a dead
provider in ``GasEstimator.source_status()`` and in the logs.

.. code-block:: python

    >>> manager = SourceManager(["etherscan", "blocknative"], unhealthy_after=2)
    >>> manager.record_failure("blocknative", "HTTP 429: rate limited")
    1
    >>> manager.record_failure("blocknative", "HTTP 429: rate limited")
    2
    >>> manager.get_unhealthy_sources()
    ['blocknative']
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable


@dataclass
class SourceStatus:
    """Tracks the health of a single source.

    :ivar consecutive_failures: Number of consecutive failures.
    :ivar total_failures: Total failures since tracking began.
    :ivar total_successes: Total successes since tracking began.
    :ivar last_error: Reason for the most recent failure.
    :ivar last_success_at: Clock reading of the most recent success.
    :ivar last_failure_at: Clock reading of the most recent failure.
    """

    consecutive_failures: int = 0
    total_failures: int = 0
    total_successes: int = 0
    last_error: str | None = None
    last_success_at: float | None = None
    last_failure_at: float | None = None


class SourceManager:
    """Counts successes and failures per source.

    :ivar sources: Tracked source names.
    :ivar unhealthy_after: Consecutive failures after which a source is
        reported unhealthy.
    """

    DEFAULT_UNHEALTHY_AFTER = 3

    def __init__(
        self,
        sources: list[str],
        unhealthy_after: int = DEFAULT_UNHEALTHY_AFTER,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the source manager.

        :param sources: Source names to track.
        :param unhealthy_after: Consecutive failures before a source counts
            as unhealthy (default: 3).
        :param clock: Time source for the timestamps (default: ``time.time``).
        :raises ValueError: If unhealthy_after is less than 1.
        """
        if unhealthy_after < 1:
            raise ValueError("unhealthy_after must be at least 1")

        self.sources = list(sources)
        self.unhealthy_after = unhealthy_after
        self._clock = clock
        self._status: dict[str, SourceStatus] = {s: SourceStatus() for s in sources}

    def _get(self, source: str) -> SourceStatus:
        if source not in self._status:
            self.sources.append(source)
            self._status[source] = SourceStatus()
        return self._status[source]

    def record_failure(self, source: str, reason: str | None = None) -> int:
        """Record a failure for a source.

        :param source: Source name that failed.
        :param reason: Short description of the failure.
        :returns: Number of consecutive failures, including this one.
        """
        status = self._get(source)
        status.consecutive_failures += 1
        status.total_failures += 1
        status.last_error = reason
        status.last_failure_at = self._clock()
        return status.consecutive_failures

    def record_success(self, source: str) -> None:
        """Record a successful fetch, resetting the failure counter.

        :param source: Source name that succeeded.
        """
        status = self._get(source)
        status.consecutive_failures = 0
        status.total_successes += 1
        status.last_success_at = self._clock()

    def is_source_healthy(self, source: str) -> bool:
        """Check whether a source is below the failure threshold.

        Unknown sources are healthy: nothing has failed yet.
        """
        status = self._status.get(source)
        return status is None or status.consecutive_failures < self.unhealthy_after

    def get_unhealthy_sources(self) -> list[str]:
        """Tracked sources at or above the failure threshold, in tracking order."""
        return [s for s in self.sources if not self.is_source_healthy(s)]

    def get_source_status(self, source: str) -> SourceStatus | None:
        """Get the status of a specific source, or None if not tracked."""
        return self._status.get(source)

    def get_all_status(self) -> dict[str, SourceStatus]:
        """Get status of all sources."""
        return dict(self._status)
