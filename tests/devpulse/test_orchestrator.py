"""
Tests for the Orchestrator.

These tests verify that the orchestrator:
1. Serves fresh cache entries without touching the rate limiter
2. Retries failures and falls back to stale or seed data
3. Raises only when fallbacks are disabled
4. Fans out concurrently and reports batch counters
5. Coalesces identical in-flight fetches
"""

import time
import threading
from unittest.mock import Mock, patch

import pytest
from devpulse.config import OrchestratorConfig
from devpulse.errors import ConfigurationError, ProviderUnavailable, RateLimitExceeded
from devpulse.fetching.base_fetcher import BaseFetcher
from devpulse.fetching.cache_manager import CacheManager
from devpulse.fetching.last_known_good import LastKnownGood
from devpulse.fetching.rate_limit_manager import RateLimitManager
from devpulse.orchestrator import Orchestrator
from devpulse.providers.github import GitHubFetcher
from devpulse.providers.hackernews import HackerNewsFetcher
from devpulse.providers.producthunt import ProductHuntFetcher

SEED = [{'seed': True}]


class FakeFetcher(BaseFetcher):
    """Fetch executor returning scripted outcomes."""

    cache_ttl_ms = 60000

    def __init__(self, provider_id, outcomes=None, delay=0.0):
        super().__init__(http_client=Mock())
        self.provider_id = provider_id
        self.outcomes = list(outcomes or [])
        self.delay = delay
        self.calls = 0
        self._lock = threading.Lock()

    def get_provider_id(self):
        return self.provider_id

    def get_raw_data_from_provider(self, params):
        with self._lock:
            self.calls += 1
            outcome = self.outcomes.pop(0) if self.outcomes else [{'live': self.calls}]
        if self.delay:
            time.sleep(self.delay)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def process_raw_data(self, raw_data, params):
        return raw_data

    def get_seed_data(self):
        return list(SEED)


def failure(provider='producthunt'):
    return ProviderUnavailable(provider, 'connection refused')


def make_orchestrator(fetchers, **options):
    options.setdefault('retry_delay_ms', 0)
    options.setdefault('call_timeout_ms', 2000)
    return Orchestrator(
        {fetcher.get_provider_id(): fetcher for fetcher in fetchers},
        cache_manager=CacheManager(),
        rate_limit_manager=RateLimitManager(),
        last_known_good=LastKnownGood(),
        config=OrchestratorConfig(**options)
    )


@pytest.fixture
def producthunt():
    return FakeFetcher('producthunt')


@pytest.fixture
def orchestrator(producthunt):
    orch = make_orchestrator([producthunt])
    yield orch
    orch.shutdown()


class TestFetch:
    """Single provider pipeline"""

    def test_live_then_cached(self, orchestrator, producthunt):
        first = orchestrator.fetch('producthunt', {'limit': 5})
        assert first.data == [{'live': 1}]
        assert first.from_cache is False
        assert first.degraded is False
        assert first.source == 'live'
        assert first.provider == 'producthunt'

        second = orchestrator.fetch('producthunt', {'limit': 5})
        assert second.data == [{'live': 1}]
        assert second.from_cache is True
        assert second.source == 'cache'
        assert second.cache_age_ms is not None
        assert producthunt.calls == 1
        # the cache hit did not consume quota
        assert orchestrator.rate_limit_manager.status('producthunt').calls_in_window == 1
        assert second.rate_limit_status.calls_remaining == 99

    def test_params_are_part_of_the_key(self, orchestrator, producthunt):
        orchestrator.fetch('producthunt', {'a': 1, 'b': 2})
        orchestrator.fetch('producthunt', {'b': 2, 'a': 1})
        orchestrator.fetch('producthunt', {'a': 2})
        assert producthunt.calls == 2

    def test_unknown_provider(self, orchestrator):
        with pytest.raises(ConfigurationError):
            orchestrator.fetch('saashub')

    @pytest.mark.parametrize('params', [['limit', 5], {'limit': object()}, {1: 'x'}])
    def test_malformed_params(self, orchestrator, params):
        with pytest.raises(ConfigurationError):
            orchestrator.fetch('producthunt', params)

    def test_throttled_serves_stale_data(self, orchestrator, producthunt):
        orchestrator.fetch('producthunt')
        orchestrator.cache_manager.clear()
        orchestrator.rate_limit_manager.throttle('producthunt', 60000, 'test')

        result = orchestrator.fetch('producthunt')

        assert result.degraded is True
        assert result.from_cache is False
        assert result.source == 'stale'
        assert result.data == [{'live': 1}]
        assert result.rate_limit_status.is_throttled is True
        assert producthunt.calls == 1

    def test_throttled_without_history_serves_seed(self, orchestrator):
        orchestrator.rate_limit_manager.throttle('producthunt', 60000)
        result = orchestrator.fetch('producthunt')

        assert result.degraded is True
        assert result.source == 'seed'
        assert result.data == SEED
        assert result.cache_age_ms is None

    def test_stale_data_from_other_params(self, orchestrator):
        orchestrator.fetch('producthunt', {'topic': 'AI'})
        orchestrator.rate_limit_manager.throttle('producthunt', 60000)

        result = orchestrator.fetch('producthunt', {'topic': 'Design'})
        assert result.source == 'stale'
        assert result.data == [{'live': 1}]

    def test_throttled_without_fallback_raises(self, producthunt):
        orch = make_orchestrator([producthunt], fallback_enabled=False)
        orch.rate_limit_manager.throttle('producthunt', 60000)

        with pytest.raises(RateLimitExceeded) as exc_info:
            orch.fetch('producthunt')
        assert exc_info.value.retry_after_ms > 0
        assert exc_info.value.provider == 'producthunt'

    def test_retries_until_success(self):
        fetcher = FakeFetcher('producthunt', [failure(), failure(), [{'ok': True}]])
        orch = make_orchestrator([fetcher], max_retries=3)

        result = orch.fetch('producthunt')

        assert result.data == [{'ok': True}]
        assert result.degraded is False
        assert fetcher.calls == 3
        assert orch.rate_limit_manager.status('producthunt').consecutive_failures == 0

    def test_exhausted_retries_fall_back(self):
        fetcher = FakeFetcher('hackernews', [failure('hackernews')] * 5)
        orch = make_orchestrator([fetcher], max_retries=2)

        result = orch.fetch('hackernews')

        assert fetcher.calls == 3
        assert result.degraded is True
        assert result.source == 'seed'
        assert 'connection refused' in result.error
        status = orch.rate_limit_manager.status('hackernews')
        assert status.consecutive_failures == 3
        assert status.is_throttled is True

    def test_exhausted_retries_without_fallback_raise(self):
        fetcher = FakeFetcher('github', [failure('github')] * 5)
        orch = make_orchestrator([fetcher], max_retries=1, fallback_enabled=False)

        with pytest.raises(ProviderUnavailable):
            orch.fetch('github')
        assert fetcher.calls == 2

    def test_throttle_stops_retries(self):
        """The third failure throttles, so a fourth attempt is never made"""
        fetcher = FakeFetcher('github', [failure('github')] * 10)
        orch = make_orchestrator([fetcher], max_retries=5, fallback_enabled=False)

        with pytest.raises(ProviderUnavailable):
            orch.fetch('github')
        assert fetcher.calls == 3

    def test_timeout_counts_as_failure(self):
        fetcher = FakeFetcher('github', delay=0.5)
        orch = make_orchestrator([fetcher], call_timeout_ms=50, max_retries=0)
        try:
            result = orch.fetch('github')
        finally:
            orch.shutdown()

        assert result.degraded is True
        assert 'Timed out' in result.error
        assert orch.rate_limit_manager.status('github').consecutive_failures == 1

    def test_unexpected_executor_error(self):
        fetcher = FakeFetcher('github')
        fetcher.fetch = Mock(side_effect=RuntimeError('bug'))
        orch = make_orchestrator([fetcher], max_retries=0)

        result = orch.fetch('github')
        assert result.degraded is True
        assert 'bug' in result.error

    def test_caching_disabled(self, producthunt):
        orch = make_orchestrator([producthunt], enable_caching=False)
        orch.fetch('producthunt')
        result = orch.fetch('producthunt')

        assert result.from_cache is False
        assert producthunt.calls == 2

    def test_rate_limiting_disabled(self, producthunt):
        orch = make_orchestrator([producthunt], enable_rate_limiting=False)
        orch.rate_limit_manager.throttle('producthunt', 60000)

        result = orch.fetch('producthunt')
        assert result.source == 'live'
        assert orch.rate_limit_manager.status('producthunt').calls_in_window == 0

    def test_coalesces_identical_fetches(self):
        fetcher = FakeFetcher('hackernews', delay=0.3)
        orch = make_orchestrator([fetcher])
        results = []

        def worker():
            results.append(orch.fetch('hackernews', {'limit': 10}))

        threads = [threading.Thread(target=worker) for _ in range(3)]
        threads[0].start()
        time.sleep(0.1)
        assert orch.active_fetches() == ['hackernews:{"limit":10}']
        for t in threads[1:]:
            t.start()
        for t in threads:
            t.join()

        assert fetcher.calls == 1
        assert len(results) == 3
        assert all(result.data == [{'live': 1}] for result in results)
        assert orch.active_fetches() == []

    def test_to_dict(self, orchestrator):
        payload = orchestrator.fetch('producthunt').to_dict()

        assert payload['fromCache'] is False
        assert payload['degraded'] is False
        assert set(payload['rateLimitStatus']) == {'callsRemaining', 'resetTime', 'isThrottled'}
        assert payload['metadata']['provider'] == 'producthunt'
        assert 'error' not in payload


class TestFetchAll:
    """Concurrent fan-out"""

    def test_mixed_outcomes(self):
        producthunt = FakeFetcher('producthunt', delay=0.3)
        hackernews = FakeFetcher('hackernews')
        github = FakeFetcher('github', [failure('github')], delay=0.3)
        orch = make_orchestrator([producthunt, hackernews, github], max_retries=0)
        orch.fetch('hackernews')

        batch = orch.fetch_all(params={})

        assert batch.per_provider['producthunt'].source == 'live'
        assert batch.per_provider['hackernews'].from_cache is True
        assert batch.per_provider['github'].degraded is True
        assert batch.success_count == 1
        assert batch.from_cache_count == 1
        assert batch.error_count == 1
        # about the slowest provider, not the sum
        assert 300 <= batch.total_time_ms < 550
        orch.shutdown()

    def test_errors_become_degraded_results(self):
        github = FakeFetcher('github', [failure('github')])
        orch = make_orchestrator([github], max_retries=0, fallback_enabled=False)

        batch = orch.fetch_all(['github'])

        result = batch.per_provider['github']
        assert result.degraded is True
        assert result.source == 'none'
        assert result.data == []
        assert 'connection refused' in result.error
        assert batch.error_count == 1
        orch.shutdown()

    def test_unknown_provider(self, orchestrator):
        with pytest.raises(ConfigurationError):
            orchestrator.fetch_all(['producthunt', 'saashub'])

    def test_to_dict(self, orchestrator):
        payload = orchestrator.fetch_all().to_dict()
        assert payload['successCount'] == 1
        assert set(payload['perProvider']) == {'producthunt'}


class TestHealthAndMaintenance:
    """Health reporting, invalidation and lifecycle"""

    def test_healthy_by_default(self):
        orch = make_orchestrator([FakeFetcher(name) for name in
                                  ('producthunt', 'hackernews', 'github')])
        report = orch.health()

        assert report.status == 'healthy'
        assert report.score == 100
        assert report.recommendations == []
        assert set(report.per_provider) == {'producthunt', 'hackernews', 'github'}

    def test_throttled_providers_lower_the_score(self):
        orch = make_orchestrator([FakeFetcher(name) for name in
                                  ('producthunt', 'hackernews', 'github')])
        orch.rate_limit_manager.throttle('producthunt', 60000)
        orch.rate_limit_manager.throttle('hackernews', 60000)

        report = orch.health()

        assert report.score == 65
        assert report.status == 'warning'
        assert any('Product Hunt API is throttled' in r for r in report.recommendations)

    def test_critical(self):
        orch = make_orchestrator([FakeFetcher(name) for name in
                                  ('producthunt', 'hackernews', 'github')])
        for name in ('producthunt', 'hackernews', 'github'):
            orch.rate_limit_manager.throttle(name, 60000)
        # misses only, hit rate 0
        orch.fetch('producthunt')

        report = orch.health()
        assert report.score == 15
        assert report.status == 'critical'
        assert report.recommendations[0].startswith('Critical')

    def test_single_provider(self, orchestrator):
        report = orchestrator.health('producthunt')
        assert list(report.per_provider) == ['producthunt']
        with pytest.raises(ConfigurationError):
            orchestrator.health('saashub')

    def test_health_does_not_change_state(self, orchestrator):
        orchestrator.health()
        assert orchestrator.cache_manager.get_stats()['requests'] == 0
        assert orchestrator.rate_limit_manager.status('producthunt').calls_in_window == 0

    def test_invalidate(self, orchestrator, producthunt):
        orchestrator.fetch('producthunt')
        assert orchestrator.invalidate('producthunt') == 1

        assert orchestrator.fetch('producthunt').source == 'live'
        assert producthunt.calls == 2

    def test_clear_all_forgets_stale_data(self, orchestrator):
        orchestrator.fetch('producthunt')
        orchestrator.clear_all()
        orchestrator.rate_limit_manager.throttle('producthunt', 60000)

        assert orchestrator.fetch('producthunt').source == 'seed'

    def test_reset_rate_limits(self, orchestrator):
        orchestrator.rate_limit_manager.throttle('producthunt', 60000)
        orchestrator.reset_rate_limits()
        assert orchestrator.fetch('producthunt').source == 'live'

    def test_update_config(self, orchestrator):
        orchestrator.update_config(maxRetries=1, fallback_enabled=False)
        assert orchestrator.config.max_retries == 1
        assert orchestrator.config.fallback_enabled is False

    def test_unconfigured_provider_rejected(self):
        with pytest.raises(ConfigurationError):
            make_orchestrator([FakeFetcher('saashub')])

    def test_context_manager_lifecycle(self, producthunt):
        orch = make_orchestrator([producthunt])
        with orch:
            assert orch.cache_manager.is_sweeping() is True
            orch.fetch('producthunt')

        assert orch.is_shut_down() is True
        assert orch.cache_manager.is_sweeping() is False
        producthunt.http_client.close.assert_called_once()
        with pytest.raises(RuntimeError):
            orch.fetch('producthunt')

    def test_shutdown_cancels_retry_wait(self):
        fetcher = FakeFetcher('github', [failure('github')] * 3)
        orch = make_orchestrator([fetcher], retry_delay_ms=60000, max_retries=3)
        results = []
        worker = threading.Thread(target=lambda: results.append(orch.fetch('github')))
        worker.start()
        time.sleep(0.2)

        started = time.monotonic()
        orch.shutdown()
        worker.join(timeout=5)

        assert time.monotonic() - started < 5
        assert results[0].degraded is True
        assert fetcher.calls == 1

    def test_global_stats(self, orchestrator):
        orchestrator.fetch('producthunt')
        stats = orchestrator.get_global_stats()
        assert stats['cache']['stores'] == 1
        assert stats['rate_limits']['producthunt']['calls_in_window'] == 1

    def test_single_provider_hit_rate_is_global(self):
        orch = make_orchestrator([FakeFetcher('producthunt'), FakeFetcher('github')])
        orch.fetch('producthunt')
        orch.fetch('producthunt')
        orch.fetch('github')

        report = orch.health('github')

        # one hit out of three lookups, counted across both providers
        assert report.cache['hit_rate'] == 33.33
        assert report.cache['size'] == 1
        orch.shutdown()

    def test_cache_hit_leaves_quota_alone(self, orchestrator):
        orchestrator.fetch('producthunt')
        limiter = orchestrator.rate_limit_manager

        with patch.object(limiter, 'acquire', wraps=limiter.acquire) as acquire, \
                patch.object(limiter, 'record_call', wraps=limiter.record_call) as record_call:
            result = orchestrator.fetch('producthunt')

        assert result.source == 'cache'
        acquire.assert_not_called()
        record_call.assert_not_called()
        assert limiter.status('producthunt').calls_in_window == 1


def real_fetchers():
    return [
        ProductHuntFetcher(Mock(), token='secret'),
        HackerNewsFetcher(Mock()),
        GitHubFetcher(Mock(), token='secret'),
    ]


class TestParameterValidation:
    """Invalid filter values are caller errors, not provider failures"""

    @pytest.mark.parametrize('provider', ['producthunt', 'hackernews', 'github'])
    @pytest.mark.parametrize('params', [
        {'limit': 'abc'},
        {'limit': None},
        {'limit': 0},
        {'limit': -5},
        {'limit': 2.5},
        {'limit': True},
    ])
    def test_invalid_limit(self, provider, params):
        fetchers = real_fetchers()
        orch = make_orchestrator(fetchers)

        with pytest.raises(ConfigurationError):
            orch.fetch(provider, params)

        status = orch.rate_limit_manager.status(provider)
        assert status.calls_in_window == 0
        assert status.consecutive_failures == 0
        assert status.is_throttled is False
        for fetcher in fetchers:
            fetcher.http_client.get_json.assert_not_called()
            fetcher.http_client.post_json.assert_not_called()
        assert orch.cache_manager.get_stats()['requests'] == 0
        orch.shutdown()

    @pytest.mark.parametrize('provider, params', [
        ('producthunt', {'min_votes': 'many'}),
        ('producthunt', {'topic': 42}),
        ('hackernews', {'min_score': -1}),
        ('hackernews', {'min_score': [10]}),
        ('github', {'min_stars': 'lots'}),
        ('github', {'language': 7}),
        ('github', {'language': ['python', None]}),
        ('github', {'query': {'q': 'cli'}}),
    ])
    def test_invalid_filters(self, provider, params):
        orch = make_orchestrator(real_fetchers())
        with pytest.raises(ConfigurationError):
            orch.fetch(provider, params)
        assert orch.rate_limit_manager.status(provider).consecutive_failures == 0
        orch.shutdown()

    def test_invalid_params_even_without_fallback_or_limiter(self):
        orch = make_orchestrator(real_fetchers(), enable_rate_limiting=False)
        with pytest.raises(ConfigurationError):
            orch.fetch('hackernews', {'limit': 'abc'})
        orch.shutdown()

    def test_fetch_all_rejects_invalid_params_up_front(self):
        fetchers = real_fetchers()
        orch = make_orchestrator(fetchers)

        with pytest.raises(ConfigurationError):
            orch.fetch_all(params={'limit': 0})

        for fetcher in fetchers:
            fetcher.http_client.get_json.assert_not_called()
            fetcher.http_client.post_json.assert_not_called()
        orch.shutdown()

    def test_numeric_strings_share_a_cache_key(self):
        hackernews = HackerNewsFetcher(Mock())
        hackernews.http_client.get_json.side_effect = lambda url, **kwargs: (
            [1] if url.endswith('topstories.json') else
            {'id': 1, 'type': 'story', 'title': 'Show HN', 'score': 5})
        orch = make_orchestrator([hackernews])

        first = orch.fetch('hackernews', {'limit': '1'})
        second = orch.fetch('hackernews', {'limit': 1})

        assert first.source == 'live'
        assert second.source == 'cache'
        orch.shutdown()


class TestHackerNewsListing:
    """Item lookups of one listing run in parallel"""

    def test_slow_items_fit_into_call_timeout(self):
        def get_json(url, provider_id, timeout=None):
            if url.endswith('topstories.json'):
                return list(range(1, 51))
            time.sleep(0.05)
            item_id = int(url.rsplit('/', 1)[-1].split('.')[0])
            return {'id': item_id, 'type': 'story', 'title': f'Story {item_id}', 'score': 1}

        client = Mock()
        client.get_json.side_effect = get_json
        orch = make_orchestrator([HackerNewsFetcher(client)], call_timeout_ms=1000)

        # fifty items at 50ms each would need 2.5s one after another
        result = orch.fetch('hackernews', {'limit': 50})

        assert result.source == 'live'
        assert result.degraded is False
        assert len(result.data) == 50
        assert orch.rate_limit_manager.status('hackernews').consecutive_failures == 0
        orch.shutdown()
