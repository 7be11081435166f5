"""
devpulse Fetching Package

This package provides the resilience infrastructure shared by all
providers: caching, rate limiting, HTTP client management and the base
class of the fetch executors.

Components:
- constants: Common constants for timeouts, TTLs, quotas and health scoring
- cache_manager: TTL and LRU bounded cache with tags and a periodic sweep
- last_known_good: Newest good response per key for degraded fallbacks
- rate_limit_manager: Sliding window quotas and failure driven backoff
- http_client: HTTP client with unified timeout and rate-limit handling
- base_fetcher: Base class for all provider fetch executors
"""

from .constants import (
    EXTERNAL_API_TIMEOUT,
    DEFAULT_CALL_TIMEOUT_MS,
    DEFAULT_CACHE_TTL_MS,
    DEFAULT_RETRY_COUNT,
    PROVIDER_PRODUCTHUNT,
    PROVIDER_HACKERNEWS,
    PROVIDER_GITHUB,
    ALL_PROVIDERS
)

from .base_fetcher import BaseFetcher
from .cache_manager import CacheManager, CacheEntry
from .last_known_good import LastKnownGood
from .http_client import HttpClientManager
from .rate_limit_manager import RateLimitManager, ProviderConfig, DEFAULT_PROVIDER_CONFIGS

__all__ = [
    'EXTERNAL_API_TIMEOUT',
    'DEFAULT_CALL_TIMEOUT_MS',
    'DEFAULT_CACHE_TTL_MS',
    'DEFAULT_RETRY_COUNT',
    'PROVIDER_PRODUCTHUNT',
    'PROVIDER_HACKERNEWS',
    'PROVIDER_GITHUB',
    'ALL_PROVIDERS',
    'BaseFetcher',
    'CacheManager',
    'CacheEntry',
    'LastKnownGood',
    'HttpClientManager',
    'RateLimitManager',
    'ProviderConfig',
    'DEFAULT_PROVIDER_CONFIGS'
]
