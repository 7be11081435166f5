"""
Health scoring.

Turns rate limiter snapshots and cache statistics into a 0..100 score, a
status label and human readable recommendations. Purely a read-only view:
nothing computed here feeds back into fetching.
"""
import logging
from typing import Any, Dict, List, Mapping, Tuple

from .fetching.constants import (
    HEALTHY_SCORE,
    WARNING_SCORE,
    THROTTLE_PENALTIES,
    DEFAULT_THROTTLE_PENALTY,
    LOW_HIT_RATE,
    LOW_HIT_RATE_PENALTY,
    CRITICAL_HIT_RATE,
    CRITICAL_HIT_RATE_PENALTY,
    FAILURE_STREAK_THRESHOLD,
    FAILURE_STREAK_PENALTY,
    PROVIDER_PRODUCTHUNT,
    PROVIDER_HACKERNEWS,
    PROVIDER_GITHUB
)
from .fetching.rate_limit_manager import ProviderStatus

logger = logging.getLogger(__name__)

STATUS_HEALTHY = 'healthy'
STATUS_WARNING = 'warning'
STATUS_CRITICAL = 'critical'

DISPLAY_NAMES = {
    PROVIDER_PRODUCTHUNT: 'Product Hunt',
    PROVIDER_HACKERNEWS: 'Hacker News',
    PROVIDER_GITHUB: 'GitHub',
}

FAILURE_HINTS = {
    PROVIDER_PRODUCTHUNT: 'check API key and rate limits',
    PROVIDER_HACKERNEWS: 'check network connectivity',
    PROVIDER_GITHUB: 'check API key and rate limits',
}


def status_for_score(score: int) -> str:
    if score >= HEALTHY_SCORE:
        return STATUS_HEALTHY
    if score >= WARNING_SCORE:
        return STATUS_WARNING
    return STATUS_CRITICAL


def compute_score(statuses: Mapping[str, ProviderStatus], cache_stats: Mapping[str, Any]) -> int:
    """
    Derive the health score.

    Starts at 100 and subtracts a fixed penalty per throttled provider, per
    provider with more than three consecutive failures, and for a low cache
    hit rate. The hit rate only counts once the cache has served requests.
    The result is clamped to 0..100.
    """
    score = 100
    for provider_id, status in statuses.items():
        if status.is_throttled:
            score -= THROTTLE_PENALTIES.get(provider_id, DEFAULT_THROTTLE_PENALTY)
        if status.consecutive_failures > FAILURE_STREAK_THRESHOLD:
            score -= FAILURE_STREAK_PENALTY

    if cache_stats.get('requests', 0) > 0:
        hit_rate = cache_stats.get('hit_rate', 0)
        if hit_rate < LOW_HIT_RATE:
            score -= LOW_HIT_RATE_PENALTY
        if hit_rate < CRITICAL_HIT_RATE:
            score -= CRITICAL_HIT_RATE_PENALTY

    return max(0, min(100, score))


def build_recommendations(score: int, statuses: Mapping[str, ProviderStatus],
                          cache_stats: Mapping[str, Any]) -> List[str]:
    recommendations = []
    if score < WARNING_SCORE:
        recommendations.append('Critical: System health is poor - immediate attention required')

    for provider_id, status in statuses.items():
        if status.is_throttled:
            recommendations.append(
                f'{DISPLAY_NAMES.get(provider_id, provider_id)} API is throttled - '
                'consider using cached data or reducing request frequency')

    if cache_stats.get('requests', 0) > 0:
        if cache_stats.get('hit_rate', 0) < CRITICAL_HIT_RATE:
            recommendations.append(
                'Critical: Very low cache hit rate - cache may not be working properly')
        elif cache_stats.get('hit_rate', 0) < LOW_HIT_RATE:
            recommendations.append(
                'Low cache hit rate - consider optimizing cache keys or increasing TTL')

    for provider_id, status in statuses.items():
        if status.consecutive_failures > FAILURE_STREAK_THRESHOLD:
            recommendations.append(
                f'{DISPLAY_NAMES.get(provider_id, provider_id)} API has multiple consecutive '
                f'failures - {FAILURE_HINTS.get(provider_id, "check the provider")}')
    return recommendations


def evaluate(statuses: Mapping[str, ProviderStatus],
             cache_stats: Mapping[str, Any]) -> Tuple[str, int, Dict[str, Dict[str, Any]], List[str]]:
    """
    Evaluate limiter and cache state.

    Returns:
        Tuple of (status, score, per provider snapshots, recommendations)
    """
    score = compute_score(statuses, cache_stats)
    status = status_for_score(score)
    per_provider = {provider_id: s.to_dict() for provider_id, s in statuses.items()}
    recommendations = build_recommendations(score, statuses, cache_stats)
    logger.debug("Health evaluated: %s (%d)", status, score)
    return status, score, per_provider, recommendations
