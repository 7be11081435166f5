"""
Data model of devpulse.

Provider items form a tagged union: every item carries a ``kind`` naming
the provider domain it belongs to. Results handed to callers are plain
dataclasses with a ``to_dict()`` for the route layer.
"""
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional, Union

SOURCE_LIVE = 'live'
SOURCE_CACHE = 'cache'
SOURCE_STALE = 'stale'
SOURCE_SEED = 'seed'
SOURCE_NONE = 'none'


@dataclass
class LaunchPost:
    """A product launch from the launch board."""
    id: str
    name: str
    tagline: str
    description: str
    votes_count: int
    comments_count: int
    created_at: str
    thumbnail_url: str = ''
    user_name: str = ''
    user_username: str = ''
    topics: List[str] = field(default_factory=list)
    kind: str = field(default='launch', init=False)


@dataclass
class DiscussionPost:
    """A story from the discussion board."""
    id: int
    title: str
    score: int
    by: str
    time: int
    descendants: int = 0
    url: Optional[str] = None
    type: str = 'story'
    kind: str = field(default='discussion', init=False)


@dataclass
class RepositoryProject:
    """A repository from the code search, presented as a tool entry."""
    id: str
    name: str
    description: str
    website_url: str
    logo_url: str
    stars: int
    rating: float
    language: Optional[str] = None
    pricing: str = 'Open Source'
    category: str = 'Open Source Tools'
    features: List[str] = field(default_factory=list)
    kind: str = field(default='repository', init=False)


ProviderItem = Union[LaunchPost, DiscussionPost, RepositoryProject]


def item_to_dict(item: Any) -> Any:
    """Render a provider item (or anything else) as JSON friendly data."""
    if isinstance(item, (LaunchPost, DiscussionPost, RepositoryProject)):
        return asdict(item)
    return item


@dataclass
class RateLimitSnapshot:
    """Rate limit view attached to every fetch result."""
    calls_remaining: int
    reset_time: int
    is_throttled: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ResponseMetadata:
    timestamp_ms: int
    response_time_ms: float
    provider: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class FetchResult:
    """
    Outcome of one provider fetch. Transient, never persisted.

    ``degraded`` marks data served because a live call could not complete,
    ``source`` tells where the data came from (live, cache, stale, seed).
    """
    data: List[Any]
    from_cache: bool
    rate_limit_status: RateLimitSnapshot
    metadata: ResponseMetadata
    degraded: bool = False
    source: str = SOURCE_LIVE
    cache_age_ms: Optional[float] = None
    error: Optional[str] = None

    @property
    def provider(self) -> str:
        return self.metadata.provider

    def to_dict(self) -> Dict[str, Any]:
        result = {
            'data': [item_to_dict(item) for item in self.data],
            'fromCache': self.from_cache,
            'degraded': self.degraded,
            'source': self.source,
            'rateLimitStatus': {
                'callsRemaining': self.rate_limit_status.calls_remaining,
                'resetTime': self.rate_limit_status.reset_time,
                'isThrottled': self.rate_limit_status.is_throttled,
            },
            'metadata': {
                'timestampMs': self.metadata.timestamp_ms,
                'responseTimeMs': self.metadata.response_time_ms,
                'provider': self.metadata.provider,
            },
        }
        if self.cache_age_ms is not None:
            result['cacheAgeMs'] = self.cache_age_ms
        if self.error:
            result['error'] = self.error
        return result


@dataclass
class BatchResult:
    """Outcome of a concurrent fetch across providers."""
    per_provider: Dict[str, FetchResult]
    success_count: int
    error_count: int
    from_cache_count: int
    total_time_ms: float
    timestamp_ms: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'perProvider': {name: result.to_dict() for name, result in self.per_provider.items()},
            'successCount': self.success_count,
            'errorCount': self.error_count,
            'fromCacheCount': self.from_cache_count,
            'totalTimeMs': self.total_time_ms,
            'timestampMs': self.timestamp_ms,
        }


@dataclass
class HealthReport:
    """Read-only health aggregation. Never feeds back into behavior."""
    status: str
    score: int
    per_provider: Dict[str, Dict[str, Any]]
    cache: Dict[str, Any]
    recommendations: List[str]
    timestamp_ms: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status,
            'score': self.score,
            'perProvider': self.per_provider,
            'cache': self.cache,
            'recommendations': list(self.recommendations),
            'timestampMs': self.timestamp_ms,
        }
