"""EstimatorConfig: Tunables of the estimation engine.

Environment variables (all optional):
    ROUND_DEADLINE, PER_SOURCE_TIMEOUT, CACHE_TTL, QUORUM_FRACTION,
    AGGREGATION_STRATEGY, MAX_DEVIATION_PERCENT, MISSING_FIELD_POLICY,
    UNHEALTHY_AFTER
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping

from .fetchers.base import MissingFieldPolicy
from .GasAggregator import AggregationStrategy


@dataclass(frozen=True)
class EstimatorConfig:
    """Validated engine configuration.

    :ivar round_deadline: Hard upper bound for a fetch round, in seconds.
    :ivar per_source_timeout: Upper bound for one source, in seconds.
    :ivar cache_ttl: How long an estimate stays fresh, in seconds.
    :ivar quorum_fraction: Share of sources needed for FULL quality, inclusive
        (0.5 accepts exactly half).
    :ivar aggregation_strategy: MEDIAN, MEAN or MAX.
    :ivar max_deviation_percent: Outlier threshold, or None to disable.
    :ivar missing_field_policy: Handling of partial dynamic fee payloads.
    :ivar unhealthy_after: Consecutive failures before a source is reported
        unhealthy. Sources are fetched every round regardless.
    """

    round_deadline: float = 5.0
    per_source_timeout: float = 3.0
    cache_ttl: float = 12.0
    quorum_fraction: float = 0.5
    aggregation_strategy: AggregationStrategy = AggregationStrategy.MEDIAN
    max_deviation_percent: float | None = None
    missing_field_policy: MissingFieldPolicy = MissingFieldPolicy.LEGACY_FALLBACK
    unhealthy_after: int = 3

    def __post_init__(self) -> None:
        if self.round_deadline <= 0:
            raise ValueError("round_deadline must be positive")
        if self.per_source_timeout <= 0:
            raise ValueError("per_source_timeout must be positive")
        if self.cache_ttl < 0:
            raise ValueError("cache_ttl must be non-negative")
        if not 0.0 <= self.quorum_fraction <= 1.0:
            raise ValueError("quorum_fraction must be between 0.0 and 1.0")
        if self.max_deviation_percent is not None and self.max_deviation_percent <= 0:
            raise ValueError("max_deviation_percent must be positive if specified")
        if self.unhealthy_after < 1:
            raise ValueError("unhealthy_after must be at least 1")
        # Accept plain strings, e.g. from the environment or the CLI
        object.__setattr__(
            self, "aggregation_strategy", AggregationStrategy(self.aggregation_strategy)
        )
        object.__setattr__(
            self, "missing_field_policy", MissingFieldPolicy(self.missing_field_policy)
        )

    @property
    def effective_source_timeout(self) -> float:
        """Per-source timeout, never longer than the round deadline."""
        return min(self.per_source_timeout, self.round_deadline)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> EstimatorConfig:
        """Build a config from environment variables, using defaults for the rest.

        :param environ: Mapping to read (default: ``os.environ``).
        :returns: Validated config.
        :raises ValueError: If a variable holds an invalid value.
        """
        env = os.environ if environ is None else environ
        kwargs: dict[str, object] = {}

        for var, attr in (
            ("ROUND_DEADLINE", "round_deadline"),
            ("PER_SOURCE_TIMEOUT", "per_source_timeout"),
            ("CACHE_TTL", "cache_ttl"),
            ("QUORUM_FRACTION", "quorum_fraction"),
        ):
            if env.get(var):
                kwargs[attr] = float(env[var])

        if env.get("UNHEALTHY_AFTER"):
            kwargs["unhealthy_after"] = int(env["UNHEALTHY_AFTER"])

        # 0 disables outlier filtering, same as leaving it unset
        if env.get("MAX_DEVIATION_PERCENT"):
            deviation = float(env["MAX_DEVIATION_PERCENT"])
            kwargs["max_deviation_percent"] = deviation if deviation > 0 else None

        if env.get("AGGREGATION_STRATEGY"):
            kwargs["aggregation_strategy"] = env["AGGREGATION_STRATEGY"].lower()
        if env.get("MISSING_FIELD_POLICY"):
            kwargs["missing_field_policy"] = env["MISSING_FIELD_POLICY"].lower()

        return cls(**kwargs)
