"""Reading and Estimate: the values flowing into and out of the engine.

A Reading is one source's view of current fee conditions. An Estimate is
the engine's consensus over the readings of a single round.
"""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field

from .FeeScheme import Dynamic, FeeScheme, Legacy


@dataclass(frozen=True)
class Reading:
    """One provider's opinion of current fee conditions.

    :ivar source_id: Name of the originating source (e.g., "etherscan").
    :ivar scheme: Reported fee, Legacy or Dynamic.
    :ivar observed_at: Unix timestamp when the reading was produced.
    :ivar confidence: Provider-reported confidence tier, if any.
    :ivar imputed_fields: Fee fields filled in because the provider omitted them.
    :raises ValueError: If the primary amount is zero (see ``__post_init__``).
    """

    source_id: str
    scheme: FeeScheme
    observed_at: float = field(default_factory=time.time)
    confidence: float | None = None
    imputed_fields: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.scheme, (Legacy, Dynamic)):
            raise TypeError(f"Unsupported fee scheme: {self.scheme!r}")
        # A zero fee is a broken upstream, not a free network
        if self.scheme.primary_amount <= 0:
            raise ValueError(
                f"[{self.source_id}] primary fee amount must be positive, "
                f"got {self.scheme!r}"
            )


class EstimateQuality(str, enum.Enum):
    """How much trust to put in an Estimate.

    - FULL: at least the quorum fraction of sources answered this round
    - DEGRADED: fewer than quorum answered, but at least one did
    - STALE: no source answered; this is the last cached estimate
    """

    FULL = "full"
    DEGRADED = "degraded"
    STALE = "stale"


@dataclass(frozen=True)
class Estimate:
    """Consensus fee estimate for a network.

    :ivar network: Network identifier the estimate is for.
    :ivar scheme: Aggregated fee.
    :ivar quality: Full, Degraded or Stale.
    :ivar contributing_sources: Sources used, in the order they completed.
    :ivar attempted_sources: Number of sources registered for the round.
    :ivar computed_at: Unix timestamp of aggregation.
    :ivar dropped_sources: Sources excluded as outliers.
    """

    network: str
    scheme: FeeScheme
    quality: EstimateQuality
    contributing_sources: tuple[str, ...]
    attempted_sources: int
    computed_at: float = field(default_factory=time.time)
    dropped_sources: tuple[str, ...] = ()

    @property
    def effective_gas_price(self) -> int:
        """Price per gas in wei, whatever the scheme."""
        return self.scheme.effective_gas_price

    @property
    def is_fresh(self) -> bool:
        """True unless this estimate came from the stale fallback."""
        return self.quality is not EstimateQuality.STALE

    def to_tx_params(self, base_fee_multiplier: int = 2) -> dict[str, int]:
        """Fee fields for a web3 transaction dict.

        :param base_fee_multiplier: Base fee headroom for ``maxFeePerGas``.
        :returns: ``{"gasPrice": ...}`` for Legacy, or ``maxFeePerGas`` and
            ``maxPriorityFeePerGas`` for Dynamic.

        .. code-block:: python

            >>> tx = {"to": addr, "value": 1}
            >>> tx.update(estimate.to_tx_params())
        """
        if isinstance(self.scheme, Legacy):
            return {"gasPrice": self.scheme.gas_price}
        return {
            "maxFeePerGas": self.scheme.max_fee(base_fee_multiplier),
            "maxPriorityFeePerGas": self.scheme.priority_fee,
        }
