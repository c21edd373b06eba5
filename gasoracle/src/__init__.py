"""
Gas Oracle - Multi-Source Gas Fee Estimation

This module estimates transaction fees from several independent sources:
- FeeScheme: Legacy and Dynamic (base + priority) fee variants
- Reading / Estimate: Values flowing into and out of the engine
- FetchOrchestrator: Concurrent fan-out under a single round deadline
- GasAggregator: Median/mean/max consensus with quorum-based quality
- EstimateCache: TTL cache with stale fallback support
- SourceManager: Per-source success and failure tracking
- GasEstimator: Engine facade with single-flight rounds per key
- fetchers: Modular gas price source implementations
"""

from .EstimateCache import CacheEntry, EstimateCache
from .EstimatorConfig import EstimatorConfig
from .FeeScheme import (
    Dynamic,
    FeeScheme,
    Legacy,
    SchemePreference,
    gwei_to_wei,
    to_dynamic,
    to_legacy,
    wei_to_gwei,
)
from .FetchOrchestrator import FetchOrchestrator, FetchRound
from .GasAggregator import AggregationStrategy, GasAggregator
from .GasEstimator import EngineError, GasEstimator, NoDataAvailable
from .Reading import Estimate, EstimateQuality, Reading
from .SourceManager import SourceManager, SourceStatus

__all__ = [
    "AggregationStrategy",
    "CacheEntry",
    "Dynamic",
    "EngineError",
    "Estimate",
    "EstimateCache",
    "EstimateQuality",
    "EstimatorConfig",
    "FeeScheme",
    "FetchOrchestrator",
    "FetchRound",
    "GasAggregator",
    "GasEstimator",
    "Legacy",
    "NoDataAvailable",
    "Reading",
    "SchemePreference",
    "SourceManager",
    "SourceStatus",
    "gwei_to_wei",
    "to_dynamic",
    "to_legacy",
    "wei_to_gwei",
]
