"""
Hacker News discussion board fetch executor.

Reads the top story ids, then the individual items, keeping only stories.
Items are loaded in parallel on a small thread pool so that the whole
listing fits into a single executor call timeout.
"""
import time
import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import Any, Dict, List, Mapping, Optional

from ..fetching.base_fetcher import BaseFetcher
from ..fetching.constants import PROVIDER_HACKERNEWS, HACKERNEWS_CACHE_TTL_MS
from ..errors import ProviderUnavailable
from ..models import DiscussionPost
from .seed import seed_discussions

logger = logging.getLogger(__name__)

API_BASE = 'https://hacker-news.firebaseio.com/v0'
MAX_STORIES = 50
ITEM_WORKERS = 10
ITEM_TIMEOUT = 4.0  # seconds for all items of one listing


class HackerNewsFetcher(BaseFetcher):
    """Discussion board executor. The public API needs no credentials."""

    cache_ttl_ms = HACKERNEWS_CACHE_TTL_MS
    cache_prefix = 'hn'

    def __init__(self, http_client=None, base_url: str = API_BASE,
                 timeout: Optional[float] = None,
                 item_workers: int = ITEM_WORKERS,
                 item_timeout: float = ITEM_TIMEOUT):
        super().__init__(http_client, timeout)
        self.base_url = base_url.rstrip('/')
        self.item_workers = item_workers
        self.item_timeout = item_timeout

    def get_provider_id(self) -> str:
        return PROVIDER_HACKERNEWS

    def validate_params(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        validated = dict(params)
        for name, value in (('limit', self.int_param(params, 'limit', 1, MAX_STORIES)),
                            ('min_score', self.int_param(params, 'min_score'))):
            if value is not None:
                validated[name] = value
        return validated

    def _get_item(self, story_id) -> Any:
        timeout = self.item_timeout if self.timeout is None else min(self.timeout, self.item_timeout)
        return self.http_client.get_json(
            f'{self.base_url}/item/{story_id}.json',
            provider_id=PROVIDER_HACKERNEWS,
            timeout=timeout
        )

    def get_raw_data_from_provider(self, params: Mapping[str, Any]) -> Any:
        story_ids = self.http_client.get_json(
            f'{self.base_url}/topstories.json',
            provider_id=PROVIDER_HACKERNEWS,
            timeout=self.timeout
        )
        if not isinstance(story_ids, list) or not story_ids:
            raise ProviderUnavailable(PROVIDER_HACKERNEWS, 'No story ids returned')

        limit = params.get('limit', MAX_STORIES)
        pool = ThreadPoolExecutor(max_workers=self.item_workers,
                                  thread_name_prefix='hackernews_item_')
        futures = [(story_id, pool.submit(self._get_item, story_id))
                   for story_id in story_ids[:limit]]
        start_time = time.monotonic()
        items = []
        try:
            for story_id, future in futures:
                remaining = max(0.0, self.item_timeout - (time.monotonic() - start_time))
                try:
                    items.append(future.result(timeout=remaining))
                except FutureTimeoutError:
                    logger.debug("[%s] Item %s timed out", PROVIDER_HACKERNEWS, story_id)
                except ProviderUnavailable as e:
                    # a single missing item does not fail the whole listing
                    logger.debug("[%s] Skipping item %s: %s", PROVIDER_HACKERNEWS, story_id, e)
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        if not items:
            raise ProviderUnavailable(PROVIDER_HACKERNEWS, 'No stories could be loaded')
        logger.debug("[%s] Loaded %d of %d items", PROVIDER_HACKERNEWS, len(items), len(futures))
        return items

    def process_raw_data(self, raw_data: Any, params: Mapping[str, Any]) -> List[DiscussionPost]:
        min_score = params.get('min_score', 0)
        posts = []
        for item in raw_data:
            if not item or item.get('type') != 'story':
                continue
            post = DiscussionPost(
                id=int(item['id']),
                title=item.get('title') or '',
                url=item.get('url'),
                score=int(item.get('score') or 0),
                by=item.get('by') or '',
                time=int(item.get('time') or 0),
                descendants=int(item.get('descendants') or 0)
            )
            if post.score >= min_score:
                posts.append(post)
        return posts

    def get_seed_data(self) -> List[DiscussionPost]:
        return seed_discussions()
