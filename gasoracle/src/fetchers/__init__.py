"""Gas price sources.

This module provides a unified interface for reading current fee conditions
from node RPC endpoints and third-party gas APIs.

Usage:
    from gasoracle.src.fetchers import get_fetcher, get_available_fetchers

    # Get list of available sources
    available = get_available_fetchers()
    # ['blocknative', 'eth_node', 'etherscan', 'fallback']

    # Create a source and fetch with a deadline
    fetcher = get_fetcher("etherscan", api_key="your-api-key")
    reading = await fetcher.fetch("mainnet", time.monotonic() + 2.0)

    # Sources needing extra settings take them as keyword arguments
    node = get_fetcher("eth_node", rpc_url="https://rpc.example", network="mainnet")
"""

# Import base classes and utilities
from .base import (
    FETCHER_REGISTRY,
    NETWORK_CHAIN_IDS,
    BaseFetcher,
    InvalidReadingError,
    MissingFieldPolicy,
    SourceConfigError,
    SourceError,
    SourceHTTPError,
    SourceTimeoutError,
    get_available_fetchers,
    get_fetcher,
    register_fetcher,
)

# Import all source implementations to trigger registration
from .blocknative import BlocknativeFetcher
from .eth_node import EthNodeFetcher
from .etherscan import EtherscanFetcher
from .fallback import FallbackFetcher

__all__ = [
    # Base classes
    "BaseFetcher",
    "MissingFieldPolicy",
    "NETWORK_CHAIN_IDS",
    # Errors
    "SourceError",
    "SourceConfigError",
    "SourceHTTPError",
    "SourceTimeoutError",
    "InvalidReadingError",
    # Registry functions
    "register_fetcher",
    "get_fetcher",
    "get_available_fetchers",
    "FETCHER_REGISTRY",
    # Source implementations
    "BlocknativeFetcher",
    "EthNodeFetcher",
    "EtherscanFetcher",
    "FallbackFetcher",
]
