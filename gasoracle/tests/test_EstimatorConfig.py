"""Unit tests for EstimatorConfig."""

import pytest

from gasoracle.src.EstimatorConfig import EstimatorConfig
from gasoracle.src.fetchers.base import MissingFieldPolicy
from gasoracle.src.GasAggregator import AggregationStrategy


class TestEstimatorConfigDefaults:
    """Test default values and validation."""

    def test_defaults(self) -> None:
        """Defaults match the documented behaviour."""
        config = EstimatorConfig()

        assert config.round_deadline == 5.0
        assert config.per_source_timeout == 3.0
        assert config.cache_ttl == 12.0
        assert config.quorum_fraction == 0.5
        assert config.aggregation_strategy is AggregationStrategy.MEDIAN
        assert config.max_deviation_percent is None
        assert config.missing_field_policy is MissingFieldPolicy.LEGACY_FALLBACK
        assert config.unhealthy_after == 3

    def test_string_enums_coerced(self) -> None:
        """Strategy and policy accept their string values."""
        config = EstimatorConfig(aggregation_strategy="mean", missing_field_policy="reject")

        assert config.aggregation_strategy is AggregationStrategy.MEAN
        assert config.missing_field_policy is MissingFieldPolicy.REJECT

    def test_effective_source_timeout(self) -> None:
        """A per-source timeout longer than the round is clamped."""
        assert EstimatorConfig(round_deadline=1.0).effective_source_timeout == 1.0
        assert EstimatorConfig(per_source_timeout=2.0).effective_source_timeout == 2.0

    @pytest.mark.parametrize(
        "kwargs, message",
        [
            ({"round_deadline": 0}, "round_deadline must be positive"),
            ({"per_source_timeout": -1}, "per_source_timeout must be positive"),
            ({"cache_ttl": -1}, "cache_ttl must be non-negative"),
            ({"quorum_fraction": 2}, "quorum_fraction must be between"),
            ({"max_deviation_percent": 0}, "max_deviation_percent must be positive"),
            ({"unhealthy_after": 0}, "unhealthy_after must be at least 1"),
        ],
    )
    def test_invalid_values(self, kwargs, message) -> None:
        """Out-of-range values raise ValueError."""
        with pytest.raises(ValueError, match=message):
            EstimatorConfig(**kwargs)

    def test_unknown_strategy(self) -> None:
        """Unknown enum strings raise ValueError."""
        with pytest.raises(ValueError):
            EstimatorConfig(aggregation_strategy="mode")

    def test_frozen(self) -> None:
        """Config is immutable once built."""
        config = EstimatorConfig()
        with pytest.raises(AttributeError):
            config.cache_ttl = 1.0


class TestEstimatorConfigFromEnv:
    """Test loading from environment variables."""

    def test_empty_environment(self) -> None:
        """No variables gives the defaults."""
        assert EstimatorConfig.from_env({}) == EstimatorConfig()

    def test_reads_variables(self) -> None:
        """Every documented variable is honoured."""
        config = EstimatorConfig.from_env({
            "ROUND_DEADLINE": "2.5",
            "PER_SOURCE_TIMEOUT": "1",
            "CACHE_TTL": "6",
            "QUORUM_FRACTION": "0.75",
            "AGGREGATION_STRATEGY": "MAX",
            "MAX_DEVIATION_PERCENT": "25",
            "MISSING_FIELD_POLICY": "Zero_Priority",
            "UNHEALTHY_AFTER": "5",
        })

        assert config.round_deadline == 2.5
        assert config.per_source_timeout == 1.0
        assert config.cache_ttl == 6.0
        assert config.quorum_fraction == 0.75
        assert config.aggregation_strategy is AggregationStrategy.MAX
        assert config.max_deviation_percent == 25.0
        assert config.missing_field_policy is MissingFieldPolicy.ZERO_PRIORITY
        assert config.unhealthy_after == 5

    def test_zero_deviation_disables_filter(self) -> None:
        """MAX_DEVIATION_PERCENT=0 means no outlier filtering."""
        config = EstimatorConfig.from_env({"MAX_DEVIATION_PERCENT": "0"})
        assert config.max_deviation_percent is None

    def test_empty_values_ignored(self) -> None:
        """Variables set to an empty string fall back to defaults."""
        config = EstimatorConfig.from_env({"CACHE_TTL": "", "AGGREGATION_STRATEGY": ""})
        assert config.cache_ttl == 12.0
        assert config.aggregation_strategy is AggregationStrategy.MEDIAN

    def test_invalid_number(self) -> None:
        """Unparseable numbers raise ValueError."""
        with pytest.raises(ValueError):
            EstimatorConfig.from_env({"ROUND_DEADLINE": "soon"})
