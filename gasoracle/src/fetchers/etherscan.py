"""Etherscan gas tracker source.

Endpoint: https://api.etherscan.io/v2/api?chainid={id}&module=gastracker&action=gasoracle
Rate Limit: 5 calls/sec (API key required)
Units: gwei decimal strings

Response ``result`` carries SafeGasPrice, ProposeGasPrice, FastGasPrice and,
on EIP-1559 chains, suggestBaseFee. The priority fee is the chosen tier minus
the suggested base fee.
"""

import logging

from ..FeeScheme import gwei_to_wei
from ..Reading import Reading
from .base import (
    BaseFetcher,
    InvalidReadingError,
    SourceConfigError,
    SourceError,
    register_fetcher,
)

logger = logging.getLogger(__name__)


@register_fetcher
class EtherscanFetcher(BaseFetcher):
    """Source backed by the Etherscan v2 multichain gas tracker.

    :ivar tier: Which suggested price to use ("safe", "propose" or "fast").
    """

    name = "etherscan"
    BASE_URL = "https://api.etherscan.io/v2/api"
    SUPPORTED_NETWORKS = frozenset(
        {"mainnet", "sepolia", "polygon", "bsc", "arbitrum", "optimism", "base", "gnosis"}
    )

    TIER_FIELDS = {
        "safe": "SafeGasPrice",
        "propose": "ProposeGasPrice",
        "fast": "FastGasPrice",
    }

    def __init__(self, api_key: str | None = None, tier: str = "propose", **kwargs):
        """Initialize with the price tier to report.

        :param api_key: Etherscan API key.
        :param tier: One of "safe", "propose", "fast" (default: "propose").
        :raises ValueError: If the tier is unknown.
        """
        if tier not in self.TIER_FIELDS:
            raise ValueError(
                f"Unknown etherscan tier '{tier}'. Available: {sorted(self.TIER_FIELDS)}"
            )
        self.tier = tier
        super().__init__(api_key=api_key, **kwargs)

    async def fetch(self, network: str, deadline: float) -> Reading:
        """Fetch the gas oracle suggestion for a network.

        :param network: Network identifier.
        :param deadline: ``time.monotonic()`` deadline.
        :returns: Dynamic reading when a base fee is suggested, else Legacy.
        :raises SourceError: On request or parse failure.
        """
        if not self.has_api_key:
            raise SourceConfigError("[etherscan] API key required")

        params = {
            "chainid": self.chain_id(network),
            "module": "gastracker",
            "action": "gasoracle",
            "apikey": self.api_key,
        }
        response = await self._get(
            self.BASE_URL, params=params, timeout=self.time_left(deadline)
        )
        data = self._json(response)

        if str(data.get("status")) != "1":
            raise SourceError(
                f"[etherscan] API error for {network}: {data.get('result') or data.get('message')}"
            )

        result = data.get("result")
        if not isinstance(result, dict):
            raise InvalidReadingError(f"[etherscan] No result for {network}: {data}")

        try:
            gas_price = gwei_to_wei(result[self.TIER_FIELDS[self.tier]])
            raw_base = result.get("suggestBaseFee")
            base_fee = gwei_to_wei(raw_base) if raw_base not in (None, "") else None
        except (KeyError, ValueError) as e:
            raise InvalidReadingError(
                f"[etherscan] Failed to parse response for {network}: {e}"
            ) from e

        if base_fee is None:
            return self.build_reading(gas_price=gas_price)

        return self.build_reading(
            base_fee=base_fee,
            priority_fee=max(gas_price - base_fee, 0),
            gas_price=gas_price,
        )
