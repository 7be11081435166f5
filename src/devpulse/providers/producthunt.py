"""
Product Hunt launch board fetch executor.

Queries the GraphQL API for the most voted posts and translates the
edge/node wire shape into LaunchPost items.
"""
import os
import logging
from typing import Any, Dict, List, Mapping, Optional

from ..fetching.base_fetcher import BaseFetcher
from ..fetching.constants import PROVIDER_PRODUCTHUNT, PRODUCTHUNT_CACHE_TTL_MS
from ..errors import ProviderUnavailable
from ..models import LaunchPost
from .seed import seed_launches

logger = logging.getLogger(__name__)

API_URL = 'https://api.producthunt.com/v2/api/graphql'
MAX_POSTS = 50
REDACTED = '[REDACTED]'

POSTS_QUERY = """
query($first: Int!) {
  posts(first: $first, order: VOTES) {
    edges {
      node {
        id
        name
        tagline
        description
        votesCount
        commentsCount
        createdAt
        thumbnail { url }
        user { name username }
        topics { edges { node { name } } }
      }
    }
  }
}
"""


class ProductHuntFetcher(BaseFetcher):
    """Launch board executor. Needs an API token."""

    cache_ttl_ms = PRODUCTHUNT_CACHE_TTL_MS
    cache_prefix = 'ph'

    def __init__(self, http_client=None, token: Optional[str] = None,
                 url: str = API_URL, timeout: Optional[float] = None):
        super().__init__(http_client, timeout)
        self.token = token or os.environ.get('PRODUCTHUNT_TOKEN', '')
        self.url = url

    def get_provider_id(self) -> str:
        return PROVIDER_PRODUCTHUNT

    def validate_params(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        validated = dict(params)
        for name, value in (('limit', self.int_param(params, 'limit', 1, MAX_POSTS)),
                            ('min_votes', self.int_param(params, 'min_votes')),
                            ('topic', self.str_param(params, 'topic'))):
            if value is not None:
                validated[name] = value
        return validated

    def get_raw_data_from_provider(self, params: Mapping[str, Any]) -> Any:
        if not self.token:
            raise ProviderUnavailable(PROVIDER_PRODUCTHUNT, 'No API token configured')
        first = params.get('limit', MAX_POSTS)
        payload = self.http_client.post_json(
            self.url,
            provider_id=PROVIDER_PRODUCTHUNT,
            timeout=self.timeout,
            json={'query': POSTS_QUERY, 'variables': {'first': first}},
            headers={
                'Accept': 'application/json',
                'Authorization': f'Bearer {self.token}',
            }
        )
        if payload.get('errors'):
            raise ProviderUnavailable(PROVIDER_PRODUCTHUNT, f"API errors: {payload['errors']}")
        return payload

    def process_raw_data(self, raw_data: Any, params: Mapping[str, Any]) -> List[LaunchPost]:
        edges = ((raw_data.get('data') or {}).get('posts') or {}).get('edges') or []
        min_votes = params.get('min_votes', 0)
        topic = params.get('topic')

        posts = []
        for edge in edges:
            node = edge['node']
            user = node.get('user') or {}
            topics = [
                topic_edge['node']['name']
                for topic_edge in ((node.get('topics') or {}).get('edges') or [])
            ]
            post = LaunchPost(
                id=str(node['id']),
                name=node['name'],
                tagline=node.get('tagline') or '',
                description=node.get('description') or '',
                votes_count=int(node.get('votesCount') or 0),
                comments_count=int(node.get('commentsCount') or 0),
                created_at=node.get('createdAt') or '',
                thumbnail_url=(node.get('thumbnail') or {}).get('url') or '',
                user_name=_unredact(user.get('name'), 'Anonymous User'),
                user_username=_unredact(user.get('username'), 'anonymous'),
                topics=topics
            )
            if post.votes_count < min_votes:
                continue
            if topic and topic not in post.topics:
                continue
            posts.append(post)
        logger.debug("[%s] Translated %d of %d posts", PROVIDER_PRODUCTHUNT, len(posts), len(edges))
        return posts

    def get_seed_data(self) -> List[LaunchPost]:
        return seed_launches()


def _unredact(value: Optional[str], replacement: str) -> str:
    if not value or value == REDACTED:
        return replacement
    return value
