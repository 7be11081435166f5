"""
GitHub repository search fetch executor.

Searches popular repositories and presents them as tool entries.
"""
import os
import logging
from typing import Any, Dict, List, Mapping, Optional

from ..fetching.base_fetcher import BaseFetcher
from ..fetching.constants import PROVIDER_GITHUB, GITHUB_CACHE_TTL_MS
from ..errors import ProviderUnavailable
from ..models import RepositoryProject
from .seed import seed_repositories

logger = logging.getLogger(__name__)

API_URL = 'https://api.github.com/search/repositories'
DEFAULT_QUERY = 'stars:>1000'
DEFAULT_LANGUAGES = ('javascript', 'typescript', 'python')
MAX_PER_PAGE = 100


class GitHubFetcher(BaseFetcher):
    """Repository search executor. A token is optional and raises the quota."""

    cache_ttl_ms = GITHUB_CACHE_TTL_MS
    cache_prefix = 'gh'

    def __init__(self, http_client=None, token: Optional[str] = None,
                 url: str = API_URL, timeout: Optional[float] = None):
        super().__init__(http_client, timeout)
        self.token = token or os.environ.get('GITHUB_TOKEN', '')
        self.url = url

    def get_provider_id(self) -> str:
        return PROVIDER_GITHUB

    def validate_params(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        validated = dict(params)
        for name, value in (('limit', self.int_param(params, 'limit', 1, MAX_PER_PAGE)),
                            ('min_stars', self.int_param(params, 'min_stars')),
                            ('query', self.str_param(params, 'query'))):
            if value is not None:
                validated[name] = value
        languages = params.get('language')
        if languages is not None and not isinstance(languages, str):
            if not isinstance(languages, (list, tuple)) or \
                    not all(isinstance(language, str) for language in languages):
                raise self._invalid('language', 'a string or a list of strings', languages)
            validated['language'] = list(languages)
        return validated

    @staticmethod
    def build_query(params: Mapping[str, Any]) -> str:
        """Translate filter parameters into a search query string."""
        terms = []
        if params.get('query'):
            terms.append(str(params['query']))
        terms.append(f"stars:>{int(params['min_stars'])}" if 'min_stars' in params else DEFAULT_QUERY)
        languages = params.get('language') or DEFAULT_LANGUAGES
        if isinstance(languages, str):
            languages = [languages]
        terms.extend(f'language:{language}' for language in languages)
        return ' '.join(terms)

    def get_raw_data_from_provider(self, params: Mapping[str, Any]) -> Any:
        headers = {'Accept': 'application/vnd.github+json'}
        if self.token:
            headers['Authorization'] = f'Bearer {self.token}'
        payload = self.http_client.get_json(
            self.url,
            provider_id=PROVIDER_GITHUB,
            timeout=self.timeout,
            params={
                'q': self.build_query(params),
                'sort': 'stars',
                'order': 'desc',
                'per_page': params.get('limit', 60),
            },
            headers=headers
        )
        if not payload.get('items'):
            raise ProviderUnavailable(PROVIDER_GITHUB, 'No repositories returned')
        return payload

    def process_raw_data(self, raw_data: Any, params: Mapping[str, Any]) -> List[RepositoryProject]:
        projects = []
        for repo in raw_data['items']:
            stars = int(repo.get('stargazers_count') or 0)
            projects.append(RepositoryProject(
                id=str(repo['id']),
                name=repo['name'],
                description=repo.get('description') or 'No description available',
                website_url=repo.get('html_url') or '',
                logo_url=(repo.get('owner') or {}).get('avatar_url') or '',
                stars=stars,
                rating=round(min(5.0, stars / 1000 * 0.5 + 3), 2),
                language=repo.get('language'),
                features=list(repo.get('topics') or [])
            ))
        return projects

    def get_seed_data(self) -> List[RepositoryProject]:
        return seed_repositories()
