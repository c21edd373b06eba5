"""FetchOrchestrator: Concurrent fan-out of one fetch round.

Every eligible source is fetched as its own asyncio task, all started at the
beginning of the round. Results are collected as they complete until the
round deadline; anything still running then is cancelled and abandoned.

Architecture:
    - Sources that do not support the network are not part of the round
    - Every supported source is dispatched in every round; health is only
      tracked, never used to skip a source
    - Each fetch gets min(round deadline, now + per_source_timeout)
    - Exceptions from a source are logged and recorded, never propagated
    - Readings are returned in completion order
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .Reading import Reading
from .SourceManager import SourceManager

if TYPE_CHECKING:
    from .fetchers import BaseFetcher

logger = logging.getLogger(__name__)


@dataclass
class FetchRound:
    """Outcome of one orchestration round.

    :ivar network: Network the round was for.
    :ivar readings: Successful readings, in completion order.
    :ivar attempted: Number of sources registered for the network.
    :ivar failures: Failed source names mapped to the failure reason.
    :ivar started_at: Unix timestamp when the round started.
    :ivar elapsed: Wall time the round took, in seconds.
    """

    network: str
    readings: list[Reading] = field(default_factory=list)
    attempted: int = 0
    failures: dict[str, str] = field(default_factory=dict)
    started_at: float = 0.0
    elapsed: float = 0.0

    @property
    def has_data(self) -> bool:
        """False for the "no data" outcome (no source answered)."""
        return len(self.readings) > 0

    @property
    def source_ids(self) -> list[str]:
        """Names of the sources that answered, in completion order."""
        return [r.source_id for r in self.readings]


@dataclass
class _Outcome:
    source: str
    reading: Reading | None = None
    error: str | None = None
    completed_at: float = 0.0


class FetchOrchestrator:
    """Fans out fetches to all sources concurrently under one deadline.

    :ivar fetchers: Dict mapping source names to source instances.
    :ivar round_deadline: Hard upper bound for a round, in seconds.
    :ivar per_source_timeout: Upper bound for a single source, in seconds.
    :ivar source_manager: Health tracker shared across rounds.
    """

    def __init__(
        self,
        fetchers: dict[str, BaseFetcher],
        round_deadline: float = 5.0,
        per_source_timeout: float = 3.0,
        source_manager: SourceManager | None = None,
    ) -> None:
        """Initialize the orchestrator.

        :param fetchers: Dict mapping source names to source instances.
        :param round_deadline: Round deadline in seconds (default: 5.0).
        :param per_source_timeout: Per-source timeout in seconds (default: 3.0).
        :param source_manager: Health tracker; a fresh one is created if None.
        :raises ValueError: If a timeout is not positive.
        """
        if round_deadline <= 0:
            raise ValueError("round_deadline must be positive")
        if per_source_timeout <= 0:
            raise ValueError("per_source_timeout must be positive")

        self.fetchers = fetchers
        self.round_deadline = round_deadline
        self.per_source_timeout = per_source_timeout
        self.source_manager = source_manager or SourceManager(list(fetchers))

    def sources_for(self, network: str) -> list[str]:
        """Names of the sources that support a network, in registration order."""
        supported: list[str] = []
        for source, fetcher in self.fetchers.items():
            try:
                if fetcher.supports_network(network):
                    supported.append(source)
            except Exception as exc:  # misbehaving source
                logger.warning(
                    f"[{source}] supports_network({network}) raised {exc}; "
                    "treating as unsupported"
                )
        return supported

    async def fetch_round(self, network: str) -> FetchRound:
        """Run one round for a network.

        Never takes longer than ``round_deadline``, whatever the sources do.

        :param network: Network identifier.
        :returns: FetchRound with readings in completion order.
        """
        started = time.monotonic()
        deadline = started + self.round_deadline
        result = FetchRound(network=network, started_at=time.time())

        registered = self.sources_for(network)
        result.attempted = len(registered)
        if not registered:
            logger.warning(f"No sources registered for network {network}")
            return result

        tasks: dict[asyncio.Task, str] = {}
        for source in registered:
            source_deadline = min(deadline, started + self.per_source_timeout)
            task = asyncio.create_task(
                self._fetch_one(source, network, source_deadline),
                name=f"gas-fetch:{network}:{source}",
            )
            tasks[task] = source

        outcomes: list[_Outcome] = []
        pending = set(tasks)
        try:
            while pending:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                done, pending = await asyncio.wait(
                    pending, timeout=remaining, return_when=asyncio.FIRST_COMPLETED
                )
                outcomes.extend(task.result() for task in done)
        except asyncio.CancelledError:
            for task in pending:
                task.cancel()
            raise

        for task in pending:
            source = tasks[task]
            logger.warning(f"[{source}] No answer within round deadline, abandoning")
            task.cancel()
            task.add_done_callback(_discard_result)
            outcomes.append(_Outcome(source=source, error="round deadline exceeded"))

        outcomes.sort(key=lambda o: (o.reading is None, o.completed_at))
        for outcome in outcomes:
            if outcome.reading is not None:
                result.readings.append(outcome.reading)
                self.source_manager.record_success(outcome.source)
            else:
                result.failures[outcome.source] = outcome.error or "unknown"
                failures = self.source_manager.record_failure(
                    outcome.source, outcome.error
                )
                if failures == self.source_manager.unhealthy_after:
                    logger.warning(
                        f"[{outcome.source}] Unhealthy after {failures} consecutive failures"
                    )

        result.elapsed = time.monotonic() - started
        logger.info(
            f"{network}: round finished in {result.elapsed:.3f}s, "
            f"{len(result.readings)}/{result.attempted} sources answered "
            f"{result.source_ids}"
        )
        return result

    async def _fetch_one(self, source: str, network: str, deadline: float) -> _Outcome:
        """Fetch a single source, converting every failure into an outcome.

        :param source: Registry name of the source.
        :param network: Network identifier.
        :param deadline: ``time.monotonic()`` instant this source must finish by.
        :returns: _Outcome with either a reading or an error description.
        """
        fetcher = self.fetchers[source]
        try:
            reading = await asyncio.wait_for(
                fetcher.fetch(network, deadline),
                timeout=max(deadline - time.monotonic(), 0.0),
            )
            if not isinstance(reading, Reading):
                raise TypeError(f"fetch() returned {type(reading).__name__}, not Reading")
            # Registry name wins over whatever the source calls itself
            if reading.source_id != source:
                reading = dataclasses.replace(reading, source_id=source)
        except asyncio.TimeoutError:
            logger.warning(f"[{source}] Timeout fetching {network}")
            return _Outcome(source=source, error="timeout", completed_at=time.monotonic())
        except Exception as e:
            logger.warning(f"[{source}] Error fetching {network}: {e}")
            return _Outcome(source=source, error=str(e) or type(e).__name__,
                            completed_at=time.monotonic())

        logger.debug(f"[{source}] {network}: {reading.scheme}")
        return _Outcome(source=source, reading=reading, completed_at=time.monotonic())


def _discard_result(task: asyncio.Task) -> None:
    # Retrieve the result of an abandoned task so asyncio does not log it
    if not task.cancelled():
        task.exception()
