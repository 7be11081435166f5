"""Tests for health scoring"""

import pytest
from devpulse.fetching.rate_limit_manager import ProviderStatus
from devpulse import health


def make_status(provider, throttled=False, failures=0):
    return ProviderStatus(provider=provider, calls_in_window=0, max_calls=100,
                          is_throttled=throttled, consecutive_failures=failures,
                          reset_in_ms=0)


NO_REQUESTS = {'requests': 0, 'hit_rate': 0}


class TestHealthScoring:

    @pytest.mark.parametrize('score, expected', [
        (100, 'healthy'), (80, 'healthy'), (79, 'warning'), (60, 'warning'), (59, 'critical')])
    def test_status_for_score(self, score, expected):
        assert health.status_for_score(score) == expected

    def test_throttle_penalties(self):
        statuses = {
            'producthunt': make_status('producthunt', throttled=True),
            'hackernews': make_status('hackernews', throttled=True),
            'github': make_status('github', throttled=True),
            'custom': make_status('custom', throttled=True),
        }
        assert health.compute_score(statuses, NO_REQUESTS) == 100 - 20 - 15 - 10 - 10

    def test_failure_streak_penalty(self):
        statuses = {
            'github': make_status('github', failures=3),
            'hackernews': make_status('hackernews', failures=4),
        }
        assert health.compute_score(statuses, NO_REQUESTS) == 90

    @pytest.mark.parametrize('hit_rate, expected', [(80, 100), (49.99, 85), (29, 60)])
    def test_hit_rate_penalties(self, hit_rate, expected):
        assert health.compute_score({}, {'requests': 10, 'hit_rate': hit_rate}) == expected

    def test_unused_cache_is_not_penalized(self):
        assert health.compute_score({}, NO_REQUESTS) == 100

    def test_score_is_clamped(self):
        statuses = {f'p{i}': make_status(f'p{i}', throttled=True, failures=9) for i in range(10)}
        assert health.compute_score(statuses, {'requests': 1, 'hit_rate': 0}) == 0

    def test_recommendations(self):
        statuses = {
            'producthunt': make_status('producthunt', failures=5),
            'github': make_status('github', throttled=True),
        }
        status, score, per_provider, recommendations = health.evaluate(
            statuses, {'requests': 4, 'hit_rate': 40})

        assert score == 100 - 10 - 10 - 15
        assert status == 'warning'
        assert per_provider['github']['is_throttled'] is True
        assert recommendations == [
            'GitHub API is throttled - consider using cached data or reducing request frequency',
            'Low cache hit rate - consider optimizing cache keys or increasing TTL',
            'Product Hunt API has multiple consecutive failures - check API key and rate limits',
        ]
