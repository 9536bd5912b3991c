"""Admin analytics core.

This module provides:
- Scoped dashboard aggregation (MetricsAggregator)
- Risk classification of users (RiskClassifier)
- Per-scope snapshot caching with single-flight recomputation (CacheLayer)
- Coalescing push of recomputed snapshots to live subscribers (UpdateBroadcaster)

Note: the routers are imported separately in main.py.
"""

from .aggregator import MetricsAggregator
from .broadcaster import BroadcastDeliveryError, Subscription, UpdateBroadcaster
from .cache import (
    CacheBackend,
    CacheBackendError,
    CacheEntry,
    CacheLayer,
    InMemoryCacheBackend,
    RedisCacheBackend,
)
from .models import GLOBAL_SCOPE_KEY, RiskLevel, Scope, affected_scopes
from .risk import RiskAssessment, RiskClassifier, RiskPolicy, UserRiskSignals
from .schemas import DashboardSnapshot
from .service import DashboardService, ScopeNotFoundError


__all__ = [
    "GLOBAL_SCOPE_KEY",
    "BroadcastDeliveryError",
    "CacheBackend",
    "CacheBackendError",
    "CacheEntry",
    "CacheLayer",
    "DashboardService",
    "DashboardSnapshot",
    "InMemoryCacheBackend",
    "MetricsAggregator",
    "RedisCacheBackend",
    "RiskAssessment",
    "RiskClassifier",
    "RiskLevel",
    "RiskPolicy",
    "Scope",
    "ScopeNotFoundError",
    "Subscription",
    "UpdateBroadcaster",
    "UserRiskSignals",
    "affected_scopes",
]
