"""
Orchestrator for resilient provider fetching.

This module composes the cache, the rate limiter and the fetch executors
into a single entry point. Every fetch runs the same pipeline:

1. Serve a fresh cache entry without reserving or recording quota
2. Reserve a slot with the rate limiter, fall back when denied
3. Call the executor with a timeout, retrying with a fixed delay
4. Fall back to the last known good response or seed data once retries
   are exhausted

Features:
- Explicitly injected infrastructure, no singletons
- Concurrent fan-out across providers on a thread pool
- Coalescing of identical in-flight fetches
- Read-only health reporting
- Graceful shutdown that cancels pending retry waits
"""
import json
import time
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, Future, TimeoutError as FutureTimeoutError
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from . import health as health_scoring
from .config import OrchestratorConfig
from .errors import CacheMiss, ConfigurationError, ProviderUnavailable, RateLimitExceeded
from .fetching.base_fetcher import BaseFetcher
from .fetching.cache_manager import CacheManager, monotonic_ms
from .fetching.last_known_good import LastKnownGood
from .fetching.rate_limit_manager import RateLimitManager
from .models import (
    BatchResult,
    FetchResult,
    HealthReport,
    RateLimitSnapshot,
    ResponseMetadata,
    SOURCE_LIVE,
    SOURCE_CACHE,
    SOURCE_STALE,
    SOURCE_SEED,
    SOURCE_NONE
)

logger = logging.getLogger(__name__)


def wall_clock_ms() -> int:
    return int(time.time() * 1000)


class Orchestrator:
    """
    Resilient fetching across all configured providers.

    Manages:
    - Cache lookups and stores per provider TTL
    - Rate limit reservations and outcome recording
    - Retries, timeouts and degraded fallbacks
    - Background threads for parallel provider calls
    - Monitoring and health reporting
    """

    def __init__(
        self,
        fetchers: Mapping[str, BaseFetcher],
        cache_manager: Optional[CacheManager] = None,
        rate_limit_manager: Optional[RateLimitManager] = None,
        last_known_good: Optional[LastKnownGood] = None,
        config: Optional[OrchestratorConfig] = None,
        clock: Callable[[], float] = monotonic_ms,
        wall_clock: Callable[[], int] = wall_clock_ms
    ):
        """
        Initialize the orchestrator.

        Args:
            fetchers: Dict mapping provider names to fetch executors
            cache_manager: Cache for fresh responses
            rate_limit_manager: Quota and backoff tracking
            last_known_good: Store of stale responses for fallbacks
            config: Pipeline switches, retry and pool settings
            clock: Monotonic milliseconds, used for latencies
            wall_clock: Epoch milliseconds, used for user facing timestamps

        Raises:
            ConfigurationError: If a provider has no rate limit configuration
        """
        self.fetchers: Dict[str, BaseFetcher] = dict(fetchers)
        self.cache_manager = cache_manager or CacheManager()
        self.rate_limit_manager = rate_limit_manager or RateLimitManager()
        self.last_known_good = last_known_good or LastKnownGood()
        self.config = config or OrchestratorConfig()
        self._clock = clock
        self._wall_clock = wall_clock

        for provider_id in self.fetchers:
            self.rate_limit_manager.get_config(provider_id)

        self._lock = threading.Lock()
        self._fanout_pool: Optional[ThreadPoolExecutor] = None
        self._call_pool: Optional[ThreadPoolExecutor] = None
        self._inflight: Dict[str, Future] = {}
        self._inflight_lock = threading.Lock()
        self._shutdown_event = threading.Event()
        self._shutdown = False

        logger.info("Initialized Orchestrator for providers: %s", ', '.join(self.fetchers))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self):
        """Start background maintenance, i.e. the periodic cache sweep."""
        if self._shutdown:
            raise RuntimeError("Orchestrator is shut down")
        if self.config.enable_caching and not self.cache_manager.is_sweeping():
            self.cache_manager.start_sweeper(self.config.sweep_interval_seconds)
        return self

    def shutdown(self):
        """Gracefully shutdown all infrastructure components."""
        if self._shutdown:
            return

        logger.info("Shutting down Orchestrator")
        self._shutdown = True
        # wakes up every fetch waiting between retries
        self._shutdown_event.set()

        self.cache_manager.stop_sweeper()

        with self._lock:
            fanout_pool, self._fanout_pool = self._fanout_pool, None
            call_pool, self._call_pool = self._call_pool, None
        if fanout_pool is not None:
            fanout_pool.shutdown(wait=True)
            logger.debug("Fan-out pool shut down")
        if call_pool is not None:
            # a hung provider call must not block shutdown
            call_pool.shutdown(wait=False, cancel_futures=True)
            logger.debug("Call pool shut down")

        clients = {id(f.http_client): f.http_client for f in self.fetchers.values()}
        for client in clients.values():
            client.close()

        logger.info("Orchestrator shutdown complete")

    def is_shut_down(self) -> bool:
        return self._shutdown

    def __enter__(self):
        return self.start()

    def __exit__(self, exc_type, exc, tb):
        self.shutdown()

    def _get_pool(self, attribute: str, prefix: str) -> ThreadPoolExecutor:
        with self._lock:
            if self._shutdown:
                raise RuntimeError("Orchestrator is shut down")
            pool = getattr(self, attribute)
            if pool is None:
                pool = ThreadPoolExecutor(
                    max_workers=self.config.max_workers,
                    thread_name_prefix=prefix
                )
                setattr(self, attribute, pool)
                logger.debug("Created thread pool %s with %d workers",
                             prefix, self.config.max_workers)
            return pool

    def update_config(self, **overrides):
        """
        Replace individual configuration options at runtime.

        Pool sizes only apply to pools created afterwards.
        """
        self.config = self.config.merged(overrides)
        logger.info("Orchestrator configuration updated: %s", overrides)

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    def _get_fetcher(self, provider: str) -> BaseFetcher:
        try:
            return self.fetchers[provider]
        except (KeyError, TypeError):
            raise ConfigurationError(f"Unknown provider: {provider!r}") from None

    @staticmethod
    def _normalize_params(params: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        if params is None:
            return {}
        if not isinstance(params, Mapping):
            raise ConfigurationError(
                f"Parameters must be a mapping, got {type(params).__name__}")
        if not all(isinstance(key, str) for key in params):
            raise ConfigurationError("Parameter names must be strings")
        return dict(params)

    @staticmethod
    def make_cache_key(fetcher: BaseFetcher, params: Mapping[str, Any]) -> str:
        """
        Build the cache key of a request.

        Raises:
            ConfigurationError: If the parameters cannot be serialized
        """
        try:
            serialized = json.dumps(params, sort_keys=True, separators=(',', ':'))
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Malformed parameters: {e}") from e
        return f"{fetcher.get_cache_prefix()}:{serialized}"

    def fetch(self, provider: str, params: Optional[Mapping[str, Any]] = None) -> FetchResult:
        """
        Fetch data for one provider.

        Identical requests in flight at the same time share one pipeline run.

        Args:
            provider: Provider name
            params: Filter parameters passed to the executor

        Returns:
            FetchResult, degraded when served from fallback data

        Raises:
            ConfigurationError: For an unknown provider or malformed parameters
            RateLimitExceeded: If denied and fallbacks are disabled
            ProviderUnavailable: If retries are exhausted and fallbacks are disabled
        """
        if self._shutdown:
            raise RuntimeError("Orchestrator is shut down")
        fetcher = self._get_fetcher(provider)
        params = fetcher.validate_params(self._normalize_params(params))
        key = self.make_cache_key(fetcher, params)

        with self._inflight_lock:
            future = self._inflight.get(key)
            owner = future is None
            if owner:
                future = Future()
                self._inflight[key] = future

        if not owner:
            logger.debug("[%s] Joining in-flight fetch for %s", provider, key)
            return future.result()

        try:
            result = self._run_pipeline(provider, fetcher, params, key)
        except BaseException as e:
            future.set_exception(e)
            raise
        else:
            future.set_result(result)
            return result
        finally:
            with self._inflight_lock:
                self._inflight.pop(key, None)

    def _run_pipeline(self, provider: str, fetcher: BaseFetcher,
                      params: Dict[str, Any], key: str) -> FetchResult:
        start = self._clock()

        if self.config.enable_caching:
            entry = self.cache_manager.get_entry(key)
            if entry is not None:
                # no acquire or record_call, the snapshot below is read-only
                logger.debug("[%s] Serving cached response", provider)
                return self._build_result(
                    provider, entry.value, start,
                    from_cache=True,
                    source=SOURCE_CACHE,
                    cache_age_ms=self.cache_manager.entry_age(entry)
                )

        retries = 0
        last_error: Optional[ProviderUnavailable] = None
        while True:
            ticket = None
            if self.config.enable_rate_limiting:
                decision = self.rate_limit_manager.acquire(provider)
                if not decision.allowed:
                    denied = RateLimitExceeded(provider, decision.retry_after_ms, decision.reason)
                    logger.warning("%s", denied)
                    # a retry stopped by the limiter ends the attempt on the last failure
                    return self._fallback(provider, fetcher, key, start, last_error or denied)
                ticket = decision.ticket

            call_start = self._clock()
            try:
                data = self._call_with_timeout(provider, fetcher, params)
            except ProviderUnavailable as e:
                latency = self._clock() - call_start
                if self.config.enable_rate_limiting:
                    self.rate_limit_manager.record_call(provider, False, latency, ticket=ticket)
                last_error = e
                if retries >= self.config.max_retries:
                    logger.error("[%s] Giving up after %d attempts: %s",
                                 provider, retries + 1, e.message)
                    return self._fallback(provider, fetcher, key, start, e)
                retries += 1
                logger.warning("[%s] Attempt %d failed, retrying in %.0fms: %s",
                               provider, retries, self.config.retry_delay_ms, e.message)
                if self._shutdown_event.wait(self.config.retry_delay_ms / 1000):
                    logger.info("[%s] Retry cancelled by shutdown", provider)
                    return self._fallback(provider, fetcher, key, start, e)
                continue

            latency = self._clock() - call_start
            if self.config.enable_rate_limiting:
                self.rate_limit_manager.record_call(provider, True, latency, ticket=ticket)
            if self.config.enable_caching:
                self.cache_manager.set(key, data, ttl=fetcher.cache_ttl_ms, tags=(provider,))
            self.last_known_good.remember(key, provider, data)
            logger.info("[%s] Fetched %d items in %.0fms", provider, len(data), latency)
            return self._build_result(provider, data, start, from_cache=False, source=SOURCE_LIVE)

    def _call_with_timeout(self, provider: str, fetcher: BaseFetcher,
                           params: Dict[str, Any]) -> List[Any]:
        """Run the executor on the call pool, bounded by call_timeout_ms."""
        timeout = self.config.call_timeout_ms / 1000
        future = self._get_pool('_call_pool', 'provider_').submit(fetcher.fetch, params)
        try:
            return future.result(timeout=timeout)
        except FutureTimeoutError as e:
            future.cancel()
            logger.warning("[%s] Call timed out after %.0fms",
                           provider, self.config.call_timeout_ms)
            raise ProviderUnavailable(
                provider, f"Timed out after {self.config.call_timeout_ms:.0f}ms", e) from e
        except (ProviderUnavailable, ConfigurationError):
            raise
        except Exception as e:
            logger.error("[%s] Executor raised unexpectedly: %s", provider, e, exc_info=True)
            raise ProviderUnavailable(provider, f"Executor error: {e}", e) from e

    def _fallback(self, provider: str, fetcher: BaseFetcher, key: str,
                  start: float, error: Exception) -> FetchResult:
        """
        Serve degraded data: last known good for the key, else the newest for
        the provider, else seed data.

        Raises:
            The given error when fallbacks are disabled
        """
        if not self.config.fallback_enabled:
            raise error

        try:
            data, age = self.last_known_good.lookup(key)
            source = SOURCE_STALE
        except CacheMiss:
            try:
                data, age = self.last_known_good.latest_for(provider)
                source = SOURCE_STALE
            except CacheMiss:
                data, age = fetcher.get_seed_data(), None
                source = SOURCE_SEED

        logger.warning("[%s] Serving degraded %s data: %s", provider, source, error)
        return self._build_result(
            provider, data, start,
            from_cache=False,
            degraded=True,
            source=source,
            cache_age_ms=age,
            error=str(error)
        )

    def _rate_limit_snapshot(self, provider: str) -> RateLimitSnapshot:
        """
        Quota snapshot attached to every result, cache hits included.

        This only reads the limiter: status() prunes expired window entries
        and may create empty provider state, but it never reserves a slot or
        records an outcome.
        """
        status = self.rate_limit_manager.status(provider)
        reset_in = status.reset_in_ms
        if status.calls_in_window == 0:
            reset_in = self.rate_limit_manager.get_config(provider).window_ms
        return RateLimitSnapshot(
            calls_remaining=status.calls_remaining,
            reset_time=int(self._wall_clock() + reset_in),
            is_throttled=status.is_throttled
        )

    def _build_result(self, provider: str, data: List[Any], start: float,
                      from_cache: bool, source: str, degraded: bool = False,
                      cache_age_ms: Optional[float] = None,
                      error: Optional[str] = None) -> FetchResult:
        return FetchResult(
            data=data,
            from_cache=from_cache,
            degraded=degraded,
            source=source,
            cache_age_ms=cache_age_ms,
            error=error,
            rate_limit_status=self._rate_limit_snapshot(provider),
            metadata=ResponseMetadata(
                timestamp_ms=self._wall_clock(),
                response_time_ms=self._clock() - start,
                provider=provider
            )
        )

    def fetch_all(
        self,
        providers: Optional[Iterable[str]] = None,
        params: Optional[Mapping[str, Any]] = None
    ) -> BatchResult:
        """
        Fetch several providers concurrently.

        Every provider always yields a result: an exception is turned into a
        degraded result with no data. Unknown providers and invalid
        parameters are rejected before any provider is called.

        Args:
            providers: Provider names, all configured providers if None
            params: Filter parameters passed to every provider

        Returns:
            BatchResult with per provider results and counters

        Example:
            batch = orchestrator.fetch_all(['hackernews', 'github'], {'limit': 10})
        """
        if self._shutdown:
            raise RuntimeError("Orchestrator is shut down")
        names = list(self.fetchers) if providers is None else list(providers)
        normalized = self._normalize_params(params)
        for name in names:
            self._get_fetcher(name).validate_params(normalized)

        pool = self._get_pool('_fanout_pool', 'fetch_all_')
        start = self._clock()
        futures = {name: pool.submit(self.fetch, name, params) for name in names}
        logger.debug("Submitted %d provider fetches", len(futures))

        results: Dict[str, FetchResult] = {}
        for name, future in futures.items():
            try:
                results[name] = future.result()
            except Exception as e:
                logger.warning("[%s] Fetch failed in batch: %s", name, e)
                results[name] = self._build_result(
                    name, [], start,
                    from_cache=False,
                    degraded=True,
                    source=SOURCE_NONE,
                    error=str(e)
                )

        total_time = self._clock() - start
        batch = BatchResult(
            per_provider=results,
            success_count=sum(1 for r in results.values() if r.source == SOURCE_LIVE),
            from_cache_count=sum(1 for r in results.values() if r.from_cache),
            error_count=sum(1 for r in results.values() if r.degraded),
            total_time_ms=total_time,
            timestamp_ms=self._wall_clock()
        )
        logger.info("Batch fetch completed: %d live, %d cached, %d degraded in %.0fms",
                    batch.success_count, batch.from_cache_count, batch.error_count, total_time)
        return batch

    def active_fetches(self) -> List[str]:
        """Cache keys of the fetches currently in flight."""
        with self._inflight_lock:
            return list(self._inflight)

    # ------------------------------------------------------------------
    # Monitoring and maintenance
    # ------------------------------------------------------------------

    def health(self, provider: Optional[str] = None) -> HealthReport:
        """
        Aggregate rate limiter and cache state into a health report.

        With a provider, the limiter state and the cache size and entry ages
        cover that provider only. Hits, misses and hit_rate are always
        counted across the whole cache, since a miss has no entry to carry
        a tag, so one provider's report can reflect other providers' misses.

        Args:
            provider: Restrict the report to one provider
        """
        if provider is not None:
            self._get_fetcher(provider)
            names = [provider]
        else:
            names = list(self.fetchers)

        statuses = {name: self.rate_limit_manager.status(name) for name in names}
        cache_stats = self.cache_manager.get_stats(tag=provider)
        status, score, per_provider, recommendations = health_scoring.evaluate(
            statuses, cache_stats)

        return HealthReport(
            status=status,
            score=score,
            per_provider=per_provider,
            cache={**cache_stats, 'last_known_good': self.last_known_good.get_info()},
            recommendations=recommendations,
            timestamp_ms=self._wall_clock()
        )

    def invalidate(self, tag: str) -> int:
        """Drop all cached responses with the given tag, e.g. a provider name."""
        removed = self.cache_manager.invalidate_by_tag(tag)
        logger.info("Invalidated %d cached responses tagged %s", removed, tag)
        return removed

    def clear_all(self):
        """Clear all cached data, stale fallbacks included."""
        self.cache_manager.clear()
        self.last_known_good.clear()
        logger.info("Cleared all cached data")

    def reset_rate_limits(self):
        """Reset all rate limits across all providers."""
        self.rate_limit_manager.clear_all()
        logger.info("Reset all rate limits")

    def get_global_stats(self) -> Dict[str, Any]:
        """Statistics across all infrastructure components."""
        clients = {id(f.http_client): f.http_client for f in self.fetchers.values()}
        return {
            'orchestrator': {
                'shutdown': self._shutdown,
                'active_fetches': len(self.active_fetches()),
                'timestamp': self._wall_clock()
            },
            'cache': self.cache_manager.get_stats(),
            'last_known_good': self.last_known_good.get_info(),
            'rate_limits': {
                name: status.to_dict()
                for name, status in self.rate_limit_manager.get_all_statuses().items()
            },
            'http': [client.get_stats() for client in clients.values()]
        }
