"""Base gas price source interface and shared HTTP client management.

All gas price sources inherit from BaseFetcher and implement the fetch()
method, returning a normalized Reading or raising SourceError. A shared
httpx.AsyncClient is used across all HTTP sources to avoid connection overhead.

Every fetch receives an absolute deadline on the ``time.monotonic()`` clock.
A source must never block past it: use :meth:`BaseFetcher.time_left` to size
the request timeout.

.. code-block:: python

    @register_fetcher
    class MyFetcher(BaseFetcher):
        name = "myfetcher"
        SUPPORTED_NETWORKS = frozenset({"mainnet"})

        async def fetch(self, network: str, deadline: float) -> Reading:
            response = await self._get(
                "https://api.example.com/gas", timeout=self.time_left(deadline)
            )
            data = response.json()
            return self.build_reading(
                base_fee=gwei_to_wei(data["base"]),
                priority_fee=gwei_to_wei(data["tip"]),
            )
"""

from __future__ import annotations

import enum
import logging
import time
from abc import ABC, abstractmethod
from typing import ClassVar

import httpx

from ..FeeScheme import Dynamic, FeeScheme, Legacy
from ..Reading import Reading

logger = logging.getLogger(__name__)

# Chain IDs of the networks known to the bundled sources.
NETWORK_CHAIN_IDS: dict[str, int] = {
    "mainnet": 1,
    "optimism": 10,
    "bsc": 56,
    "gnosis": 100,
    "polygon": 137,
    "base": 8453,
    "arbitrum": 42161,
    "sepolia": 11155111,
}


class SourceError(Exception):
    """Base exception for gas price source errors."""

    pass


class SourceConfigError(SourceError):
    """Raised when source configuration is invalid (e.g., missing API key)."""

    pass


class SourceHTTPError(SourceError):
    """Raised when HTTP request fails.

    :ivar status_code: HTTP status code from the failed request.
    """

    def __init__(self, status_code: int, message: str):
        """Initialize the HTTP error.

        :param status_code: HTTP status code.
        :param message: Error message from response.
        """
        self.status_code = status_code
        super().__init__(f"HTTP {status_code}: {message}")


class SourceTimeoutError(SourceError):
    """Raised when a source cannot answer before its deadline."""

    pass


class InvalidReadingError(SourceError):
    """Raised when a response is malformed or carries an unusable fee."""

    pass


class MissingFieldPolicy(str, enum.Enum):
    """What to do when a provider reports only half of a dynamic fee.

    - REJECT: fail the fetch
    - LEGACY_FALLBACK: use the provider's legacy gas price if it gave one
    - ZERO_PRIORITY: accept a base fee without priority fee as priority 0
    """

    REJECT = "reject"
    LEGACY_FALLBACK = "legacy_fallback"
    ZERO_PRIORITY = "zero_priority"


class BaseFetcher(ABC):
    """Abstract base class for gas price sources.

    Subclasses must implement:
        - name: Class variable identifying the source (e.g., "etherscan")
        - fetch(): Async method returning a Reading for a network

    :cvar name: Unique identifier for this source.
    :cvar DEFAULT_TIMEOUT: Default per-call timeout in seconds.
    :cvar SUPPORTED_NETWORKS: Networks served, or None for any network.
    :ivar api_key: Optional API key for authenticated endpoints.
    :ivar timeout: Per-call timeout in seconds.
    :ivar missing_field_policy: Handling of partial dynamic fee payloads.
    """

    # Class-level shared HTTP client
    _shared_client: ClassVar[httpx.AsyncClient | None] = None

    name: ClassVar[str] = ""

    DEFAULT_TIMEOUT = 3.0

    SUPPORTED_NETWORKS: ClassVar[frozenset[str] | None] = None

    def __init__(
        self,
        api_key: str | None = None,
        timeout: float | None = None,
        missing_field_policy: MissingFieldPolicy = MissingFieldPolicy.LEGACY_FALLBACK,
    ):
        """Initialize the source.

        :param api_key: Optional API key for authenticated endpoints.
        :param timeout: Per-call timeout in seconds (default: 3).
        :param missing_field_policy: Handling of partial dynamic fee payloads.
        """
        self.api_key = api_key
        self.timeout = timeout or self.DEFAULT_TIMEOUT
        self.missing_field_policy = MissingFieldPolicy(missing_field_policy)

    @property
    def has_api_key(self) -> bool:
        """Check if this source has an API key configured."""
        return self.api_key is not None and len(self.api_key) > 0

    @classmethod
    def get_shared_client(cls) -> httpx.AsyncClient:
        """Get or create the shared HTTP client.

        The client is stored on BaseFetcher so every source reuses the same
        connection pool.

        :returns: Shared httpx.AsyncClient instance.
        """
        if BaseFetcher._shared_client is None or BaseFetcher._shared_client.is_closed:
            BaseFetcher._shared_client = httpx.AsyncClient(
                timeout=httpx.Timeout(10.0, connect=5.0),
                limits=httpx.Limits(max_connections=50, max_keepalive_connections=20),
                follow_redirects=True,
            )
        return BaseFetcher._shared_client

    @classmethod
    async def close_shared_client(cls) -> None:
        """Close the shared HTTP client."""
        client = BaseFetcher._shared_client
        if client is not None and not client.is_closed:
            await client.aclose()
        BaseFetcher._shared_client = None

    @abstractmethod
    async def fetch(self, network: str, deadline: float) -> Reading:
        """Fetch the current fee reading for a network.

        :param network: Network identifier (e.g., "mainnet", "polygon").
        :param deadline: ``time.monotonic()`` instant the call must finish by.
        :returns: Normalized Reading.
        :raises SourceError: On network, parse or timeout failure.
        """
        pass

    def supports_network(self, network: str) -> bool:
        """Check if this source can serve the given network.

        :param network: Network identifier.
        :returns: True if the network is supported.
        """
        return self.SUPPORTED_NETWORKS is None or network in self.SUPPORTED_NETWORKS

    def time_left(self, deadline: float) -> float:
        """Seconds this call may still take.

        :param deadline: ``time.monotonic()`` instant of the deadline.
        :returns: ``min(self.timeout, deadline - now)``.
        :raises SourceTimeoutError: If the deadline has already passed.
        """
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise SourceTimeoutError(f"[{self.name}] deadline already passed")
        return min(self.timeout, remaining)

    def chain_id(self, network: str) -> int:
        """Resolve a network name to its chain ID.

        :raises SourceConfigError: If the network is unknown.
        """
        try:
            return NETWORK_CHAIN_IDS[network]
        except KeyError:
            raise SourceConfigError(f"[{self.name}] unknown network '{network}'") from None

    def build_reading(
        self,
        *,
        base_fee: int | None = None,
        priority_fee: int | None = None,
        gas_price: int | None = None,
        confidence: float | None = None,
    ) -> Reading:
        """Turn whatever fee fields a provider reported into a Reading.

        Both dynamic fields -> Dynamic; only a gas price -> Legacy. A payload
        with just one of base_fee/priority_fee is resolved by
        ``missing_field_policy``.

        :param base_fee: Base fee in wei, if reported.
        :param priority_fee: Priority fee in wei, if reported.
        :param gas_price: Legacy gas price in wei, if reported.
        :param confidence: Provider confidence tier, if reported.
        :returns: Validated Reading.
        :raises InvalidReadingError: If no usable fee can be built.
        """
        imputed: tuple[str, ...] = ()
        scheme: FeeScheme | None = None

        try:
            if base_fee is not None and priority_fee is not None:
                scheme = Dynamic(base_fee=base_fee, priority_fee=priority_fee)
            elif base_fee is None and priority_fee is None:
                if gas_price is not None:
                    scheme = Legacy(gas_price=gas_price)
            else:
                missing = "priority_fee" if priority_fee is None else "base_fee"
                scheme, imputed = self._resolve_partial(
                    missing, base_fee=base_fee, gas_price=gas_price
                )

            if scheme is None:
                raise InvalidReadingError(f"[{self.name}] response carried no fee")

            return Reading(
                source_id=self.name,
                scheme=scheme,
                confidence=confidence,
                imputed_fields=imputed,
            )
        except (TypeError, ValueError) as e:
            raise InvalidReadingError(f"[{self.name}] unusable fee: {e}") from e

    def _resolve_partial(
        self,
        missing: str,
        *,
        base_fee: int | None,
        gas_price: int | None,
    ) -> tuple[FeeScheme, tuple[str, ...]]:
        policy = self.missing_field_policy

        if policy is MissingFieldPolicy.REJECT:
            raise InvalidReadingError(f"[{self.name}] response is missing {missing}")

        if policy is MissingFieldPolicy.ZERO_PRIORITY and missing == "priority_fee":
            assert base_fee is not None
            logger.warning(
                f"[{self.name}] missing priority_fee, using 0 (policy={policy.value})"
            )
            return Dynamic(base_fee=base_fee, priority_fee=0), ("priority_fee",)

        if gas_price is not None:
            logger.warning(
                f"[{self.name}] missing {missing}, falling back to legacy gas price "
                f"(policy={policy.value})"
            )
            return Legacy(gas_price=gas_price), ()

        raise InvalidReadingError(
            f"[{self.name}] response is missing {missing} and has no legacy gas price"
        )

    async def _get(
        self,
        url: str,
        *,
        params: dict | None = None,
        headers: dict | None = None,
        timeout: float | None = None,
    ) -> httpx.Response:
        """Make an HTTP GET request using the shared client.

        :param url: Request URL.
        :param params: Optional query parameters.
        :param headers: Optional request headers.
        :param timeout: Request timeout (default: self.timeout).
        :returns: httpx.Response object.
        :raises SourceHTTPError: On non-2xx response.
        :raises SourceTimeoutError: On timeout.
        :raises SourceError: On other network errors.
        """
        client = self.get_shared_client()
        try:
            response = await client.get(
                url,
                params=params,
                headers=headers,
                timeout=timeout or self.timeout,
            )
        except httpx.TimeoutException as e:
            raise SourceTimeoutError(f"Request timeout: {e}") from e
        except httpx.RequestError as e:
            raise SourceError(f"Request failed: {e}") from e

        if not response.is_success:
            logger.debug(
                "HTTP GET %s failed with status %s: %s",
                url,
                response.status_code,
                response.text[:200],
            )
            raise SourceHTTPError(response.status_code, response.text[:200])
        return response

    async def _post(
        self,
        url: str,
        *,
        json: dict | None = None,
        headers: dict | None = None,
        timeout: float | None = None,
    ) -> httpx.Response:
        """Make an HTTP POST request using the shared client.

        :param url: Request URL.
        :param json: Optional JSON body.
        :param headers: Optional request headers.
        :param timeout: Request timeout (default: self.timeout).
        :returns: httpx.Response object.
        :raises SourceHTTPError: On non-2xx response.
        :raises SourceTimeoutError: On timeout.
        :raises SourceError: On other network errors.
        """
        client = self.get_shared_client()
        try:
            response = await client.post(
                url,
                json=json,
                headers=headers,
                timeout=timeout or self.timeout,
            )
        except httpx.TimeoutException as e:
            raise SourceTimeoutError(f"Request timeout: {e}") from e
        except httpx.RequestError as e:
            raise SourceError(f"Request failed: {e}") from e

        if not response.is_success:
            logger.debug(
                "HTTP POST %s failed with status %s: %s",
                url,
                response.status_code,
                response.text[:200],
            )
            raise SourceHTTPError(response.status_code, response.text[:200])
        return response

    def _json(self, response: httpx.Response) -> dict:
        """Decode a JSON object body.

        :raises InvalidReadingError: If the body is not a JSON object.
        """
        try:
            data = response.json()
        except ValueError as e:
            raise InvalidReadingError(f"[{self.name}] invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise InvalidReadingError(f"[{self.name}] unexpected payload: {data!r}")
        return data


# Registry of available sources (populated by subclass imports)
FETCHER_REGISTRY: dict[str, type[BaseFetcher]] = {}


def register_fetcher(cls: type[BaseFetcher]) -> type[BaseFetcher]:
    """Decorator to register a source class in the global registry.

    :param cls: Source class to register.
    :returns: The registered class (unchanged).
    :raises ValueError: If the source has no name defined.

    .. code-block:: python

        @register_fetcher
        class EtherscanFetcher(BaseFetcher):
            name = "etherscan"
            ...
    """
    if not cls.name:
        raise ValueError(f"Fetcher {cls.__name__} must define a 'name' class variable")
    FETCHER_REGISTRY[cls.name] = cls
    return cls


def get_fetcher(name: str, api_key: str | None = None, **options) -> BaseFetcher:
    """Get a source instance by name.

    :param name: Source name (e.g., "etherscan", "eth_node").
    :param api_key: Optional API key.
    :param options: Extra constructor arguments (e.g., ``rpc_url``, ``timeout``).
    :returns: Source instance.
    :raises ValueError: If the source name is unknown.
    """
    if name not in FETCHER_REGISTRY:
        available = ", ".join(sorted(FETCHER_REGISTRY.keys()))
        raise ValueError(f"Unknown fetcher '{name}'. Available: {available}")
    return FETCHER_REGISTRY[name](api_key=api_key, **options)


def get_available_fetchers() -> list[str]:
    """Get list of available source names.

    :returns: Sorted list of registered source names.
    """
    return sorted(FETCHER_REGISTRY.keys())
