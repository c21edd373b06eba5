"""Ethereum JSON-RPC node source.

Calls: eth_getBlockByNumber("pending"), eth_maxPriorityFeePerGas, eth_gasPrice
Rate Limit: Depends on node provider
Units: wei

Post-London chains report a pending base fee, giving a Dynamic reading.
Chains without a base fee fall back to a Legacy reading from eth_gasPrice.
"""

from __future__ import annotations

import asyncio
import logging

from web3 import AsyncWeb3
from web3.exceptions import Web3Exception

from ..Reading import Reading
from .base import (
    BaseFetcher,
    SourceConfigError,
    SourceError,
    SourceTimeoutError,
    register_fetcher,
)

logger = logging.getLogger(__name__)


@register_fetcher
class EthNodeFetcher(BaseFetcher):
    """Source that asks an Ethereum node directly via web3.

    :ivar rpc_url: HTTP JSON-RPC endpoint.
    :ivar network: Network the node serves, or None to accept any.
    """

    name = "eth_node"

    def __init__(
        self,
        api_key: str | None = None,
        rpc_url: str | None = None,
        network: str | None = None,
        w3: AsyncWeb3 | None = None,
        **kwargs,
    ):
        """Initialize the node source.

        :param api_key: Unused; accepted for registry compatibility.
        :param rpc_url: HTTP JSON-RPC endpoint of the node.
        :param network: Network the node serves (None accepts any).
        :param w3: Pre-built AsyncWeb3 instance (overrides rpc_url).
        """
        super().__init__(api_key=api_key, **kwargs)
        self.rpc_url = rpc_url
        self.network = network
        self._w3 = w3

    @property
    def w3(self) -> AsyncWeb3:
        """Lazily created AsyncWeb3 client.

        :raises SourceConfigError: If neither rpc_url nor w3 was given.
        """
        if self._w3 is None:
            if not self.rpc_url:
                raise SourceConfigError("[eth_node] rpc_url required")
            self._w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(self.rpc_url))
        return self._w3

    def supports_network(self, network: str) -> bool:
        """A node serves exactly one chain when ``network`` is configured."""
        return self.network is None or network == self.network

    async def fetch(self, network: str, deadline: float) -> Reading:
        """Read current fees from the node.

        :param network: Network identifier (must match the node's chain).
        :param deadline: ``time.monotonic()`` deadline.
        :returns: Dynamic reading, or Legacy on chains without a base fee.
        :raises SourceError: On RPC failure or timeout.
        """
        timeout = self.time_left(deadline)
        w3 = self.w3
        try:
            return await asyncio.wait_for(self._read(w3), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise SourceTimeoutError(f"[eth_node] RPC timeout after {timeout:.2f}s") from e
        except (Web3Exception, ValueError, OSError) as e:
            raise SourceError(f"[eth_node] RPC call failed: {e}") from e

    async def _read(self, w3: AsyncWeb3) -> Reading:
        block = await w3.eth.get_block("pending")
        base_fee = block.get("baseFeePerGas")

        if base_fee is None:
            logger.debug("[eth_node] No base fee in pending block, using eth_gasPrice")
            return self.build_reading(gas_price=int(await w3.eth.gas_price))

        try:
            priority_fee = int(await w3.eth.max_priority_fee)
        except (Web3Exception, ValueError) as e:
            logger.warning(f"[eth_node] eth_maxPriorityFeePerGas failed: {e}")
            return self.build_reading(
                base_fee=int(base_fee),
                gas_price=int(await w3.eth.gas_price),
            )

        return self.build_reading(base_fee=int(base_fee), priority_fee=priority_fee)
