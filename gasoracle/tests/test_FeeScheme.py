"""Unit tests for FeeScheme and Reading."""

from decimal import Decimal

import pytest

from gasoracle.src.FeeScheme import (
    Dynamic,
    Legacy,
    SchemePreference,
    apply_preference,
    gwei_to_wei,
    to_dynamic,
    to_legacy,
    wei_to_gwei,
)
from gasoracle.src.Reading import Estimate, EstimateQuality, Reading


class TestFeeAmounts:
    """Test amount validation on fee variants."""

    def test_negative_amount_rejected(self) -> None:
        """Negative amounts should raise ValueError."""
        with pytest.raises(ValueError, match="gas_price must be non-negative"):
            Legacy(gas_price=-1)

        with pytest.raises(ValueError, match="priority_fee must be non-negative"):
            Dynamic(base_fee=10, priority_fee=-2)

    def test_float_amount_rejected(self) -> None:
        """Amounts must be integer wei."""
        with pytest.raises(TypeError, match="integer amount of wei"):
            Legacy(gas_price=1.5)

    def test_bool_amount_rejected(self) -> None:
        """bool is not a fee even though it is an int."""
        with pytest.raises(TypeError):
            Dynamic(base_fee=True, priority_fee=0)

    def test_zero_priority_fee_allowed(self) -> None:
        """A zero tip is a valid dynamic fee."""
        assert Dynamic(base_fee=10, priority_fee=0).priority_fee == 0


class TestConversions:
    """Test Legacy <-> Dynamic conversion."""

    def test_legacy_to_dynamic(self) -> None:
        """Whole legacy price becomes base fee with zero tip."""
        assert to_dynamic(Legacy(gas_price=20)) == Dynamic(base_fee=20, priority_fee=0)

    def test_dynamic_to_legacy(self) -> None:
        """Legacy price is base fee plus tip."""
        assert to_legacy(Dynamic(base_fee=15, priority_fee=2)) == Legacy(gas_price=17)

    def test_identity_conversions(self) -> None:
        """Converting to the same variant is a no-op."""
        legacy = Legacy(gas_price=5)
        dynamic = Dynamic(base_fee=5, priority_fee=1)
        assert to_legacy(legacy) is legacy
        assert to_dynamic(dynamic) is dynamic

    def test_apply_preference(self) -> None:
        """Preference picks the conversion, EITHER keeps the input."""
        dynamic = Dynamic(base_fee=15, priority_fee=2)
        assert apply_preference(dynamic, SchemePreference.LEGACY) == Legacy(gas_price=17)
        assert apply_preference(dynamic, SchemePreference.DYNAMIC) is dynamic
        assert apply_preference(dynamic, SchemePreference.EITHER) is dynamic


class TestFeeHelpers:
    """Test effective price, bump, cap and max fee helpers."""

    def test_effective_gas_price(self) -> None:
        """Effective price is the legacy price or base + tip."""
        assert Legacy(gas_price=42).effective_gas_price == 42
        assert Dynamic(base_fee=40, priority_fee=2).effective_gas_price == 42

    def test_bump_rounds_up(self) -> None:
        """Bumping rounds up to whole wei."""
        assert Legacy(gas_price=10).bump(1.125) == Legacy(gas_price=12)

    def test_bump_dynamic_keeps_base_fee(self) -> None:
        """Only the priority fee is bumped."""
        bumped = Dynamic(base_fee=100, priority_fee=10).bump(1.5)
        assert bumped == Dynamic(base_fee=100, priority_fee=15)

    def test_bump_invalid_factor(self) -> None:
        """Non-positive factor should raise ValueError."""
        with pytest.raises(ValueError, match="factor must be positive"):
            Legacy(gas_price=10).bump(0)

    def test_limit_cap_legacy(self) -> None:
        """Legacy price is clamped to the cap."""
        assert Legacy(gas_price=50).limit_cap(30) == Legacy(gas_price=30)
        assert Legacy(gas_price=20).limit_cap(30) == Legacy(gas_price=20)

    def test_limit_cap_dynamic(self) -> None:
        """Cap lowers the tip but never the base fee."""
        assert Dynamic(base_fee=20, priority_fee=15).limit_cap(30) == Dynamic(20, 10)
        assert Dynamic(base_fee=40, priority_fee=5).limit_cap(30) == Dynamic(40, 0)

    def test_max_fee(self) -> None:
        """maxFeePerGas leaves base fee headroom."""
        assert Dynamic(base_fee=10, priority_fee=2).max_fee() == 22
        assert Dynamic(base_fee=10, priority_fee=2).max_fee(3) == 32

        with pytest.raises(ValueError, match="base_fee_multiplier"):
            Dynamic(base_fee=10, priority_fee=2).max_fee(0)


class TestUnits:
    """Test gwei/wei conversion."""

    def test_gwei_to_wei(self) -> None:
        """Gwei floats and strings convert exactly."""
        assert gwei_to_wei(1) == 1_000_000_000
        assert gwei_to_wei(10.5) == 10_500_000_000
        assert gwei_to_wei("0.000000001") == 1

    def test_gwei_to_wei_truncates(self) -> None:
        """Fractions of a wei are dropped, never rounded up."""
        assert gwei_to_wei("0.0000000019") == 1

    def test_gwei_to_wei_invalid(self) -> None:
        """Non-numeric values should raise ValueError."""
        with pytest.raises(ValueError, match="Invalid gwei amount"):
            gwei_to_wei("fast")

        with pytest.raises(ValueError, match="Invalid gwei amount"):
            gwei_to_wei(float("nan"))

    def test_wei_to_gwei(self) -> None:
        """Wei converts back to a decimal gwei value."""
        assert wei_to_gwei(1_500_000_000) == Decimal("1.5")


class TestReading:
    """Test Reading validation."""

    def test_zero_primary_amount_rejected(self) -> None:
        """A zero fee is a broken reading, not a free network."""
        with pytest.raises(ValueError, match="primary fee amount must be positive"):
            Reading(source_id="a", scheme=Legacy(gas_price=0))

        with pytest.raises(ValueError, match="primary fee amount must be positive"):
            Reading(source_id="a", scheme=Dynamic(base_fee=0, priority_fee=5))

    def test_unknown_scheme_rejected(self) -> None:
        """Only Legacy and Dynamic are accepted."""
        with pytest.raises(TypeError, match="Unsupported fee scheme"):
            Reading(source_id="a", scheme=42)

    def test_defaults(self) -> None:
        """observed_at is set, confidence and imputed fields are empty."""
        reading = Reading(source_id="a", scheme=Legacy(gas_price=1))
        assert reading.observed_at > 0
        assert reading.confidence is None
        assert reading.imputed_fields == ()


class TestEstimate:
    """Test Estimate helpers."""

    def test_tx_params_legacy(self) -> None:
        """Legacy estimates produce gasPrice."""
        estimate = Estimate(
            network="mainnet",
            scheme=Legacy(gas_price=42),
            quality=EstimateQuality.FULL,
            contributing_sources=("a",),
            attempted_sources=1,
        )
        assert estimate.to_tx_params() == {"gasPrice": 42}
        assert estimate.effective_gas_price == 42
        assert estimate.is_fresh

    def test_tx_params_dynamic(self) -> None:
        """Dynamic estimates produce EIP-1559 fields."""
        estimate = Estimate(
            network="mainnet",
            scheme=Dynamic(base_fee=10, priority_fee=2),
            quality=EstimateQuality.STALE,
            contributing_sources=("a",),
            attempted_sources=1,
        )
        assert estimate.to_tx_params() == {"maxFeePerGas": 22, "maxPriorityFeePerGas": 2}
        assert not estimate.is_fresh
