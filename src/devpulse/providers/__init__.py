"""
Provider fetch executors and their factory.

Every executor shares one HTTP client, so request statistics and header
driven rate limits are tracked in one place.
"""
import logging
from typing import Dict, Optional

from .producthunt import ProductHuntFetcher
from .hackernews import HackerNewsFetcher
from .github import GitHubFetcher
from ..fetching.base_fetcher import BaseFetcher
from ..fetching.http_client import HttpClientManager
from ..fetching.constants import PROVIDER_PRODUCTHUNT, PROVIDER_HACKERNEWS, PROVIDER_GITHUB
from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

FETCHER_CLASSES = {
    PROVIDER_PRODUCTHUNT: ProductHuntFetcher,
    PROVIDER_HACKERNEWS: HackerNewsFetcher,
    PROVIDER_GITHUB: GitHubFetcher,
}

# keys of a providers.<name> config section that go to the executor
FETCHER_OPTIONS = {
    PROVIDER_PRODUCTHUNT: ('token', 'url', 'timeout'),
    PROVIDER_HACKERNEWS: ('base_url', 'timeout'),
    PROVIDER_GITHUB: ('token', 'url', 'timeout'),
}


def create_default_fetchers(
    config: Optional[dict] = None,
    http_client: Optional[HttpClientManager] = None
) -> Dict[str, BaseFetcher]:
    """
    Create the three provider executors.

    Args:
        config: The 'providers' section of the configuration, keyed by name
        http_client: Shared HTTP client

    Returns:
        Dict mapping provider names to executors

    Raises:
        ConfigurationError: If the section names an unknown provider
    """
    config = config or {}
    unknown = set(config) - set(FETCHER_CLASSES)
    if unknown:
        raise ConfigurationError(f"Unknown providers in configuration: {sorted(unknown)}")

    http_client = http_client or HttpClientManager()
    fetchers = {}
    for name, fetcher_class in FETCHER_CLASSES.items():
        section = config.get(name) or {}
        options = {key: section[key] for key in FETCHER_OPTIONS[name] if key in section}
        fetchers[name] = fetcher_class(http_client=http_client, **options)
        logger.debug("Created %s executor", name)
    return fetchers


__all__ = [
    'ProductHuntFetcher',
    'HackerNewsFetcher',
    'GitHubFetcher',
    'create_default_fetchers',
]
