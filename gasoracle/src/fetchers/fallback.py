"""Priority fallback source.

Wraps several sources and asks them one at a time, in priority order, until
one returns a reading. Useful to register a single logical source backed by
a preferred provider and a cheaper backup, so the backup only counts towards
quorum when the preferred provider is down.

Wrapped sources are given either as instances or as registry names:

.. code-block:: python

    fetcher = get_fetcher(
        "fallback",
        sources=["blocknative", "etherscan"],
        api_keys={"blocknative": "KEY1", "etherscan": "KEY2"},
    )
"""

import logging

from ..Reading import Reading
from .base import BaseFetcher, SourceConfigError, SourceError, get_fetcher, register_fetcher

logger = logging.getLogger(__name__)


@register_fetcher
class FallbackFetcher(BaseFetcher):
    """Source that tries wrapped sources in order until one succeeds.

    :ivar sources: Wrapped sources, highest priority first.
    """

    name = "fallback"

    def __init__(
        self,
        api_key: str | None = None,
        sources: list[BaseFetcher | str] | None = None,
        api_keys: dict[str, str] | None = None,
        source_options: dict[str, dict] | None = None,
        **kwargs,
    ):
        """Initialize with the wrapped sources.

        :param api_key: Unused; accepted for registry compatibility.
        :param sources: Sources to try, highest priority first, as instances
            or registry names.
        :param api_keys: API keys for sources given by name.
        :param source_options: Extra constructor arguments for sources given
            by name; timeout and missing-field policy default to this source's.
        :raises SourceConfigError: If no sources are given or a name is invalid.
        """
        if not sources:
            raise SourceConfigError("[fallback] at least one source required")
        super().__init__(api_key=api_key, **kwargs)
        self.sources = [
            self._build(s, api_keys or {}, source_options or {}) for s in sources
        ]

    def _build(
        self,
        source: BaseFetcher | str,
        api_keys: dict[str, str],
        source_options: dict[str, dict],
    ) -> BaseFetcher:
        if isinstance(source, BaseFetcher):
            return source
        if source == self.name:
            raise SourceConfigError("[fallback] cannot wrap itself")

        options = {
            "timeout": self.timeout,
            "missing_field_policy": self.missing_field_policy,
        }
        options.update(source_options.get(source, {}))
        try:
            return get_fetcher(source, api_key=api_keys.get(source), **options)
        except ValueError as e:
            raise SourceConfigError(f"[fallback] {e}") from e

    def supports_network(self, network: str) -> bool:
        return any(s.supports_network(network) for s in self.sources)

    async def fetch(self, network: str, deadline: float) -> Reading:
        """Return the first reading any wrapped source produces.

        :param network: Network identifier.
        :param deadline: ``time.monotonic()`` deadline shared by all attempts.
        :returns: Reading from the first successful source.
        :raises SourceError: If every wrapped source fails.
        """
        errors: list[str] = []
        for source in self.sources:
            if not source.supports_network(network):
                continue
            # Raises SourceTimeoutError once the shared deadline is spent
            self.time_left(deadline)
            try:
                reading = await source.fetch(network, deadline)
            except SourceError as e:
                logger.debug(f"[fallback] {source.name} failed: {e}")
                errors.append(f"{source.name}: {e}")
                continue
            if errors:
                logger.info(f"[fallback] Using {source.name} after {len(errors)} failure(s)")
            return reading

        raise SourceError(f"[fallback] all sources failed: {'; '.join(errors)}")
