"""FeeScheme: Tagged fee variants shared by readings and estimates.

A fee is either a flat legacy gas price or an EIP-1559 style base fee plus
priority fee. All amounts are integer wei so consensus and transaction
encoding never see floating point rounding.

Conversion between the two variants is explicit:
    - Legacy -> Dynamic: the whole gas price becomes the base fee, priority 0
    - Dynamic -> Legacy: gas price is base fee + priority fee

.. code-block:: python

    >>> to_dynamic(Legacy(gas_price=20))
    Dynamic(base_fee=20, priority_fee=0)
    >>> to_legacy(Dynamic(base_fee=15, priority_fee=2))
    Legacy(gas_price=17)
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from decimal import ROUND_CEILING, Decimal
from typing import Union

GWEI = 10**9


def _check_amount(name: str, value: int) -> None:
    # bool is an int subclass but never a fee
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be an integer amount of wei, got {value!r}")
    if value < 0:
        raise ValueError(f"{name} must be non-negative, got {value}")


def _scale_up(amount: int, factor: float) -> int:
    if factor <= 0:
        raise ValueError("factor must be positive")
    scaled = Decimal(amount) * Decimal(str(factor))
    return int(scaled.to_integral_value(rounding=ROUND_CEILING))


def gwei_to_wei(value: float | str | Decimal) -> int:
    """Convert a gwei amount (as reported by most gas APIs) to integer wei.

    Fractions of a wei are truncated, never rounded up.

    :param value: Amount in gwei as number or decimal string.
    :returns: Amount in wei.
    :raises ValueError: If the value is not a finite number.
    """
    try:
        amount = Decimal(str(value))
    except ArithmeticError as e:
        raise ValueError(f"Invalid gwei amount: {value!r}") from e
    if not amount.is_finite():
        raise ValueError(f"Invalid gwei amount: {value!r}")
    return int(amount * GWEI)


def wei_to_gwei(value: int) -> Decimal:
    """Convert integer wei to gwei for display."""
    return Decimal(value) / GWEI


@dataclass(frozen=True)
class Legacy:
    """Single flat gas price.

    :ivar gas_price: Price per unit of gas in wei.
    """

    gas_price: int

    def __post_init__(self) -> None:
        _check_amount("gas_price", self.gas_price)

    @property
    def primary_amount(self) -> int:
        """Amount that must be positive for the fee to be usable."""
        return self.gas_price

    @property
    def effective_gas_price(self) -> int:
        """Price per gas the sender ends up paying."""
        return self.gas_price

    def bump(self, factor: float) -> Legacy:
        """Scale the gas price by ``factor``, rounding up to whole wei."""
        return Legacy(gas_price=_scale_up(self.gas_price, factor))

    def limit_cap(self, cap: int) -> Legacy:
        """Clamp the gas price to ``cap``."""
        return Legacy(gas_price=min(self.gas_price, cap))


@dataclass(frozen=True)
class Dynamic:
    """Base fee plus priority fee (EIP-1559).

    :ivar base_fee: Network-set base fee per gas in wei.
    :ivar priority_fee: Sender-chosen tip per gas in wei.
    """

    base_fee: int
    priority_fee: int

    def __post_init__(self) -> None:
        _check_amount("base_fee", self.base_fee)
        _check_amount("priority_fee", self.priority_fee)

    @property
    def primary_amount(self) -> int:
        """Amount that must be positive for the fee to be usable."""
        return self.base_fee

    @property
    def effective_gas_price(self) -> int:
        """Price per gas paid if the base fee does not move."""
        return self.base_fee + self.priority_fee

    def max_fee(self, base_fee_multiplier: int = 2) -> int:
        """Return a ``maxFeePerGas`` with headroom for base fee increases.

        :param base_fee_multiplier: How many base fees to allow for (default 2,
            which survives six consecutive full blocks).
        :returns: ``base_fee * base_fee_multiplier + priority_fee``.
        """
        if base_fee_multiplier < 1:
            raise ValueError("base_fee_multiplier must be at least 1")
        return self.base_fee * base_fee_multiplier + self.priority_fee

    def bump(self, factor: float) -> Dynamic:
        """Scale the priority fee by ``factor``; the base fee is network-set."""
        return Dynamic(
            base_fee=self.base_fee,
            priority_fee=_scale_up(self.priority_fee, factor),
        )

    def limit_cap(self, cap: int) -> Dynamic:
        """Clamp the effective price to ``cap`` by lowering the priority fee.

        The base fee is never reduced, so the result can still exceed ``cap``
        when the base fee alone does.
        """
        return Dynamic(
            base_fee=self.base_fee,
            priority_fee=min(self.priority_fee, max(cap - self.base_fee, 0)),
        )


FeeScheme = Union[Legacy, Dynamic]


class SchemePreference(str, enum.Enum):
    """Fee scheme a caller wants the estimate expressed in."""

    LEGACY = "legacy"
    DYNAMIC = "dynamic"
    EITHER = "either"


def to_dynamic(scheme: FeeScheme) -> Dynamic:
    """Express a fee as base fee + priority fee.

    A legacy price is treated entirely as base fee with a zero priority fee.
    """
    if isinstance(scheme, Dynamic):
        return scheme
    return Dynamic(base_fee=scheme.gas_price, priority_fee=0)


def to_legacy(scheme: FeeScheme) -> Legacy:
    """Express a fee as a single gas price (base fee + priority fee)."""
    if isinstance(scheme, Legacy):
        return scheme
    return Legacy(gas_price=scheme.base_fee + scheme.priority_fee)


def apply_preference(scheme: FeeScheme, preference: SchemePreference) -> FeeScheme:
    """Convert ``scheme`` to the variant requested by ``preference``."""
    if preference is SchemePreference.LEGACY:
        return to_legacy(scheme)
    if preference is SchemePreference.DYNAMIC:
        return to_dynamic(scheme)
    return scheme
