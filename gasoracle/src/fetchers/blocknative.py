"""Blocknative gas platform source.

Endpoint: https://api.blocknative.com/gasprices/blockprices?chainid={id}
Rate Limit: Depends on plan (API key required, sent as Authorization header)
Units: gwei floats

The first entry of ``blockPrices`` is the next block. Each of its
``estimatedPrices`` carries a confidence percentage (99, 95, 90, 80, 70)
with ``maxPriorityFeePerGas`` and a legacy ``price``.
"""

import logging

from ..FeeScheme import gwei_to_wei
from ..Reading import Reading
from .base import BaseFetcher, InvalidReadingError, SourceConfigError, register_fetcher

logger = logging.getLogger(__name__)


@register_fetcher
class BlocknativeFetcher(BaseFetcher):
    """Source backed by Blocknative's block price predictions.

    :ivar confidence: Confidence tier (percent) to report.
    """

    name = "blocknative"
    BASE_URL = "https://api.blocknative.com/gasprices/blockprices"
    SUPPORTED_NETWORKS = frozenset({"mainnet", "polygon", "base", "optimism", "arbitrum"})

    DEFAULT_CONFIDENCE = 90

    def __init__(
        self,
        api_key: str | None = None,
        confidence: int = DEFAULT_CONFIDENCE,
        **kwargs,
    ):
        """Initialize with the confidence tier to report.

        :param api_key: Blocknative API key.
        :param confidence: Confidence percentage to select (default: 90).
        """
        self.confidence = confidence
        super().__init__(api_key=api_key, **kwargs)

    async def fetch(self, network: str, deadline: float) -> Reading:
        """Fetch next-block fee prediction for a network.

        :param network: Network identifier.
        :param deadline: ``time.monotonic()`` deadline.
        :returns: Dynamic reading at the configured confidence.
        :raises SourceError: On request or parse failure.
        """
        if not self.has_api_key:
            raise SourceConfigError("[blocknative] API key required")

        response = await self._get(
            self.BASE_URL,
            params={"chainid": self.chain_id(network)},
            headers={"Authorization": self.api_key},
            timeout=self.time_left(deadline),
        )
        data = self._json(response)

        try:
            block = data["blockPrices"][0]
            estimates = block["estimatedPrices"]
        except (KeyError, IndexError, TypeError) as e:
            raise InvalidReadingError(
                f"[blocknative] No block prices for {network}: {e}"
            ) from e

        entry = self._select(estimates)
        if entry is None:
            raise InvalidReadingError(f"[blocknative] No estimated prices for {network}")

        try:
            base_fee = self._wei_or_none(block.get("baseFeePerGas"))
            priority_fee = self._wei_or_none(entry.get("maxPriorityFeePerGas"))
            gas_price = self._wei_or_none(entry.get("price"))
        except ValueError as e:
            raise InvalidReadingError(
                f"[blocknative] Failed to parse response for {network}: {e}"
            ) from e

        return self.build_reading(
            base_fee=base_fee,
            priority_fee=priority_fee,
            gas_price=gas_price,
            confidence=entry.get("confidence"),
        )

    def _select(self, estimates: list) -> dict | None:
        """Pick the estimate matching the configured confidence.

        Falls back to the closest confidence at or above the target, then to
        the highest available.
        """
        candidates = [e for e in estimates if isinstance(e, dict) and "confidence" in e]
        if not candidates:
            return None

        for entry in candidates:
            if entry["confidence"] == self.confidence:
                return entry

        above = [e for e in candidates if e["confidence"] >= self.confidence]
        if above:
            return min(above, key=lambda e: e["confidence"])
        return max(candidates, key=lambda e: e["confidence"])

    @staticmethod
    def _wei_or_none(value) -> int | None:
        if value is None:
            return None
        return gwei_to_wei(value)
