#!/usr/bin/env python3
"""Gas Oracle.

Queries several gas price sources concurrently, reconciles legacy and
EIP-1559 readings and prints a single consensus fee estimate.

Configure via CLI arguments or environment variables (see --help).
"""

import argparse
import asyncio
import logging
import os
import sys

from .src.EstimatorConfig import EstimatorConfig
from .src.FeeScheme import Legacy, SchemePreference, wei_to_gwei
from .src.fetchers import NETWORK_CHAIN_IDS, get_available_fetchers
from .src.GasAggregator import AggregationStrategy
from .src.GasEstimator import GasEstimator, NoDataAvailable
from .src.Reading import Estimate

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def parse_api_keys(api_key_str: str | None) -> dict[str, str]:
    """Parse comma-separated API key string into a dictionary.

    Format: source1=key1,source2=key2
    Example: etherscan=abc123,blocknative=xyz789

    :param api_key_str: Comma-separated API key string.
    :returns: Dict mapping source names to API keys.
    """
    if not api_key_str:
        return {}

    api_keys = {}
    for item in api_key_str.split(","):
        item = item.strip()
        if "=" in item:
            source, key = item.split("=", 1)
            api_keys[source.strip().lower()] = key.strip()
    return api_keys


def parse_env_api_keys(environ: dict[str, str] | None = None) -> dict[str, str]:
    """Parse API keys from individual environment variables.

    Looks for: API_KEY_ETHERSCAN, API_KEY_BLOCKNATIVE, etc.

    :param environ: Mapping to read (default: os.environ).
    :returns: Dict mapping source names to API keys.
    """
    env = os.environ if environ is None else environ
    api_keys = {}
    prefixes = ["API_KEY_", "APIKEY_"]

    for key, value in env.items():
        for prefix in prefixes:
            if key.startswith(prefix) and value:
                source = key[len(prefix):].lower()
                api_keys[source] = value
                break

    return api_keys


def format_estimate(estimate: Estimate) -> str:
    """Render an estimate as human-readable lines."""
    lines = [f"Network:          {estimate.network}"]
    scheme = estimate.scheme
    if isinstance(scheme, Legacy):
        lines.append(f"Gas Price:        {wei_to_gwei(scheme.gas_price):f} gwei")
    else:
        lines.append(f"Base Fee:         {wei_to_gwei(scheme.base_fee):f} gwei")
        lines.append(f"Priority Fee:     {wei_to_gwei(scheme.priority_fee):f} gwei")
    lines.append(f"Quality:          {estimate.quality.value}")
    lines.append(
        f"Sources:          {', '.join(estimate.contributing_sources)} "
        f"({len(estimate.contributing_sources)}/{estimate.attempted_sources})"
    )
    if estimate.dropped_sources:
        lines.append(f"Dropped:          {', '.join(estimate.dropped_sources)}")
    lines.append(f"Tx Params:        {estimate.to_tx_params()}")
    return "\n".join(lines)


async def run(
    estimator: GasEstimator,
    network: str,
    preference: SchemePreference,
    watch: float | None,
) -> int:
    """Print one estimate, or keep printing every ``watch`` seconds.

    :returns: Process exit code.
    """
    async with estimator:
        while True:
            try:
                estimate = await estimator.estimate(network, preference)
            except NoDataAvailable as e:
                logger.error(str(e))
                if watch is None:
                    return 1
            else:
                print(format_estimate(estimate), flush=True)
                if watch is None:
                    return 0
            await asyncio.sleep(watch)


def main() -> None:
    """Main entry point for the Gas Oracle CLI."""
    available_sources = get_available_fetchers()

    parser = argparse.ArgumentParser(
        description="Gas Oracle: Multi-source gas fee estimation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Available gas price sources:
  {', '.join(available_sources)}

Examples:
  # Node-only estimate for mainnet
  python -m gasoracle.main --network mainnet --sources eth_node \\
      --rpc-url https://eth.example.org

  # Consensus of a node and two gas APIs, EIP-1559 fees
  python -m gasoracle.main --network mainnet \\
      --sources eth_node,etherscan,blocknative --preference dynamic \\
      --rpc-url https://eth.example.org \\
      --api-keys etherscan=your-key,blocknative=your-key

  # Blocknative with Etherscan as backup, counted as one source
  python -m gasoracle.main --sources eth_node,fallback \\
      --fallback-sources blocknative,etherscan \\
      --rpc-url https://eth.example.org \\
      --api-keys etherscan=your-key,blocknative=your-key

  # Refresh every 12 seconds
  python -m gasoracle.main --sources etherscan --watch 12

Environment variables (CLI args take precedence):
  NETWORK, SOURCES, FALLBACK_SOURCES, PREFERENCE, RPC_URL, ROUND_DEADLINE,
  PER_SOURCE_TIMEOUT, CACHE_TTL, QUORUM_FRACTION, AGGREGATION_STRATEGY,
  MAX_DEVIATION_PERCENT, MISSING_FIELD_POLICY, UNHEALTHY_AFTER,
  API_KEY_ETHERSCAN, API_KEY_BLOCKNATIVE, etc.
""",
    )

    try:
        env_config = EstimatorConfig.from_env()
    except ValueError as e:
        parser.error(f"Invalid environment configuration: {e}")

    parser.add_argument(
        "--network",
        type=str,
        help=f"Network to estimate for ({', '.join(NETWORK_CHAIN_IDS)})",
        default=os.environ.get("NETWORK") or "mainnet",
    )

    parser.add_argument(
        "--sources",
        type=str,
        help=f"Comma-separated gas price sources. Available: {', '.join(available_sources)}",
        default=os.environ.get("SOURCES") or "eth_node",
    )

    parser.add_argument(
        "--preference",
        type=str,
        choices=[p.value for p in SchemePreference],
        help="Fee scheme of the estimate (default: either)",
        default=os.environ.get("PREFERENCE") or SchemePreference.EITHER.value,
    )

    parser.add_argument(
        "--strategy",
        type=str,
        choices=[s.value for s in AggregationStrategy],
        help="Aggregation strategy (default: median)",
        default=env_config.aggregation_strategy.value,
    )

    parser.add_argument(
        "--quorum",
        type=float,
        help="Share of sources that must answer for full quality (default: 0.5)",
        default=env_config.quorum_fraction,
    )

    parser.add_argument(
        "--round-deadline",
        dest="round_deadline",
        type=float,
        help="Hard upper bound for one fetch round in seconds (default: 5.0)",
        default=env_config.round_deadline,
    )

    parser.add_argument(
        "--source-timeout",
        dest="source_timeout",
        type=float,
        help="Timeout for individual sources in seconds (default: 3.0)",
        default=env_config.per_source_timeout,
    )

    parser.add_argument(
        "--cache-ttl",
        dest="cache_ttl",
        type=float,
        help="Seconds an estimate stays fresh (default: 12.0)",
        default=env_config.cache_ttl,
    )

    parser.add_argument(
        "--max-deviation",
        dest="max_deviation",
        type=float,
        help="Drop sources deviating more than this percent from the median (0 to disable)",
        default=env_config.max_deviation_percent or 0.0,
    )

    parser.add_argument(
        "--rpc-url",
        dest="rpc_url",
        type=str,
        help="JSON-RPC endpoint for the eth_node source",
        default=os.environ.get("RPC_URL"),
    )

    parser.add_argument(
        "--fallback-sources",
        dest="fallback_sources",
        type=str,
        help="Comma-separated sources wrapped by the fallback source, highest priority first",
        default=os.environ.get("FALLBACK_SOURCES"),
    )

    parser.add_argument(
        "--api-keys",
        dest="api_keys",
        type=str,
        help="Comma-separated API keys (e.g., etherscan=abc,blocknative=xyz)",
        default=os.environ.get("API_KEYS"),
    )

    parser.add_argument(
        "--watch",
        type=float,
        help="Keep estimating every WATCH seconds",
        default=None,
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )

    args = parser.parse_args()

    # Configure logging level
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if args.watch is not None and args.watch <= 0:
        parser.error("--watch must be positive")

    sources = [s.strip().lower() for s in args.sources.split(",") if s.strip()]
    if not sources:
        parser.error("At least one source must be specified")

    invalid_sources = [s for s in sources if s not in available_sources]
    if invalid_sources:
        parser.error(
            f"Unknown sources: {invalid_sources}. "
            f"Available: {', '.join(available_sources)}"
        )

    fallback_sources = [
        s.strip().lower() for s in (args.fallback_sources or "").split(",") if s.strip()
    ]
    if "fallback" in sources:
        if not fallback_sources:
            parser.error("--fallback-sources (or FALLBACK_SOURCES) is required for the fallback source")
        invalid_fallback = [
            s for s in fallback_sources if s not in available_sources or s == "fallback"
        ]
        if invalid_fallback:
            parser.error(f"Invalid fallback sources: {invalid_fallback}")
    else:
        fallback_sources = []

    if "eth_node" in sources + fallback_sources and not args.rpc_url:
        parser.error("--rpc-url (or RPC_URL) is required for the eth_node source")

    try:
        config = EstimatorConfig(
            round_deadline=args.round_deadline,
            per_source_timeout=args.source_timeout,
            cache_ttl=args.cache_ttl,
            quorum_fraction=args.quorum,
            aggregation_strategy=args.strategy,
            max_deviation_percent=args.max_deviation if args.max_deviation > 0 else None,
            missing_field_policy=env_config.missing_field_policy,
            unhealthy_after=env_config.unhealthy_after,
        )
    except ValueError as e:
        parser.error(str(e))

    # Parse API keys (CLI + environment)
    api_keys = parse_env_api_keys()
    api_keys.update(parse_api_keys(args.api_keys))

    source_options = {}
    if args.rpc_url:
        source_options["eth_node"] = {"rpc_url": args.rpc_url, "network": args.network}
    if fallback_sources:
        source_options["fallback"] = {
            "sources": fallback_sources,
            "api_keys": api_keys,
            "source_options": dict(source_options),
        }

    # Log configuration
    logger.info("=" * 60)
    logger.info("Gas Oracle - Multi-Source Fee Estimation")
    logger.info("=" * 60)
    logger.info(f"Network:           {args.network}")
    logger.info(f"Sources:           {', '.join(sources)}")
    if fallback_sources:
        logger.info(f"Fallback Chain:    {' -> '.join(fallback_sources)}")
    logger.info(f"Preference:        {args.preference}")
    logger.info(f"Strategy:          {config.aggregation_strategy.value}")
    logger.info(f"Quorum:            {config.quorum_fraction}")
    logger.info(f"Round Deadline:    {config.round_deadline}s")
    logger.info(f"Source Timeout:    {config.per_source_timeout}s")
    logger.info(f"Cache TTL:         {config.cache_ttl}s")
    if api_keys:
        logger.info(f"API Keys:          {', '.join(api_keys.keys())}")
    logger.info("=" * 60)

    try:
        estimator = GasEstimator.from_sources(
            sources,
            api_keys=api_keys,
            source_options=source_options,
            config=config,
        )
        exit_code = asyncio.run(
            run(estimator, args.network, SchemePreference(args.preference), args.watch)
        )
    except KeyboardInterrupt:
        logger.info("Shutting down...")
        exit_code = 0
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        exit_code = 1

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
