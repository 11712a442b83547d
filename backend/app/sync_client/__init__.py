from .api import ApiError, PortfolioApiClient
from .oauth_reconciler import OAuthCallbackReconciler, OneShotLatch, ReconcileResult
from .portfolio_cache import JsonFileCacheStore, MemoryCacheStore, PortfolioCache

__all__ = [
    "ApiError",
    "PortfolioApiClient",
    "OAuthCallbackReconciler",
    "OneShotLatch",
    "ReconcileResult",
    "JsonFileCacheStore",
    "MemoryCacheStore",
    "PortfolioCache",
]
