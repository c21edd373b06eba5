"""EstimateCache: Short-lived memo of the last estimate per key.

Keys are (network, scheme preference). An entry is fresh for ``ttl`` seconds
after it was written; expired entries stay around so the engine can fall back
to them, tagged STALE, when a round produces no data.

Replacement is monotonic: a write is ignored if the current entry was
computed later than the incoming estimate, so a slow round finishing out of
order can never clobber a newer result.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

from .FeeScheme import SchemePreference
from .Reading import Estimate

logger = logging.getLogger(__name__)

CacheKey = tuple[str, SchemePreference]


@dataclass(frozen=True)
class CacheEntry:
    """One cached estimate.

    :ivar estimate: The cached Estimate.
    :ivar expires_at: Clock reading after which the entry is no longer fresh.
    """

    estimate: Estimate
    expires_at: float


class EstimateCache:
    """In-memory TTL cache of estimates.

    :ivar ttl: Freshness window in seconds.
    """

    DEFAULT_TTL = 12.0  # one Ethereum slot

    def __init__(
        self,
        ttl: float = DEFAULT_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the cache.

        :param ttl: Freshness window in seconds (default: 12).
        :param clock: Time source for expiry (default: ``time.monotonic``).
        :raises ValueError: If ttl is negative.
        """
        if ttl < 0:
            raise ValueError("ttl must be non-negative")
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[CacheKey, CacheEntry] = {}

    def get_fresh(self, key: CacheKey) -> Estimate | None:
        """Get the cached estimate if it has not expired.

        :param key: (network, preference) key.
        :returns: The estimate, or None if missing or expired.
        """
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            logger.debug(f"{key[0]}/{key[1].value}: cache entry expired")
            return None
        return entry.estimate

    def get_any(self, key: CacheKey) -> Estimate | None:
        """Get the cached estimate regardless of age."""
        entry = self._entries.get(key)
        return entry.estimate if entry else None

    def get_age(self, key: CacheKey) -> float | None:
        """Seconds since the cached estimate was computed, or None if empty."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        return time.time() - entry.estimate.computed_at

    def put(self, key: CacheKey, estimate: Estimate) -> bool:
        """Store an estimate with a fresh TTL.

        :param key: (network, preference) key.
        :param estimate: Estimate to store.
        :returns: False if a newer estimate was already cached and kept.
        """
        current = self._entries.get(key)
        if current is not None and current.estimate.computed_at > estimate.computed_at:
            logger.debug(
                f"{key[0]}/{key[1].value}: keeping newer cached estimate "
                f"({current.estimate.computed_at:.3f} > {estimate.computed_at:.3f})"
            )
            return False

        self._entries[key] = CacheEntry(
            estimate=estimate, expires_at=self._clock() + self.ttl
        )
        return True

    def invalidate(self, key: CacheKey | None = None) -> None:
        """Drop one entry, or every entry when key is None."""
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    def keys(self) -> list[CacheKey]:
        """Keys currently cached (fresh or not)."""
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
