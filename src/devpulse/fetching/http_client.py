"""
HTTP client manager with unified timeout and rate-limit handling.

This module provides a centralized HTTP client that handles common patterns
like timeouts, JSON decoding, provider rate limit detection and request
statistics for all fetch executors.
"""

import time
import threading
import requests
from typing import Optional, Dict, Any
import logging

from .constants import (
    EXTERNAL_API_TIMEOUT,
    RATE_LIMIT_STATUS_CODES
)
from .rate_limit_manager import RateLimitManager
from ..errors import ProviderUnavailable

logger = logging.getLogger(__name__)


class HttpClientManager:
    """
    Centralized HTTP client with unified patterns for all providers.

    Features:
    - Per-request timeouts
    - Rate limit detection, forwarded to the rate limit manager
    - Failures converted to ProviderUnavailable
    - Request logging and metrics
    """

    def __init__(
        self,
        rate_limit_manager: Optional[RateLimitManager] = None,
        session: Optional[requests.Session] = None,
        user_agent: str = 'devpulse'
    ):
        self.session = session or requests.Session()
        self.session.headers.setdefault('User-Agent', user_agent)
        self.rate_limit_manager = rate_limit_manager
        self._stats_lock = threading.Lock()
        self._stats = {
            'requests_made': 0,
            'requests_failed': 0,
            'rate_limits_hit': 0
        }

    def _count(self, name: str):
        with self._stats_lock:
            self._stats[name] += 1

    def request_json(
        self,
        method: str,
        url: str,
        provider_id: str,
        timeout: Optional[float] = None,
        **kwargs
    ) -> Any:
        """
        Make a request and decode the JSON body.

        Args:
            method: HTTP method ('GET', 'POST')
            url: URL to request
            provider_id: Unique identifier for the provider
            timeout: Timeout in seconds (EXTERNAL_API_TIMEOUT if None)
            **kwargs: Additional arguments for requests.Session.request()

        Returns:
            Decoded JSON payload

        Raises:
            ProviderUnavailable: If the request fails, is rate limited or
                the body is not valid JSON
        """
        if timeout is None:
            timeout = EXTERNAL_API_TIMEOUT

        start_time = time.monotonic()
        try:
            logger.debug("[%s] Making %s request to %s (timeout: %ss)",
                         provider_id, method, url, timeout)
            response = self.session.request(method, url, timeout=timeout, **kwargs)
            duration = time.monotonic() - start_time
            logger.debug("[%s] Request completed in %.2fs (status: %s)",
                         provider_id, duration, response.status_code)

            if response.status_code in RATE_LIMIT_STATUS_CODES:
                self._count('rate_limits_hit')
                if self.rate_limit_manager is not None:
                    self.rate_limit_manager.set_rate_limit_from_response(provider_id, response)
                raise ProviderUnavailable(
                    provider_id, f"Rate limit exceeded (HTTP {response.status_code})")

            response.raise_for_status()
            payload = response.json()
            self._count('requests_made')
            return payload

        except requests.exceptions.RequestException as e:
            duration = time.monotonic() - start_time
            self._count('requests_failed')
            logger.error("[%s] Request failed after %.2fs: %s", provider_id, duration, e)
            raise ProviderUnavailable(provider_id, f"Request failed: {e}", e) from e
        except ValueError as e:
            self._count('requests_failed')
            logger.error("[%s] Invalid JSON in response: %s", provider_id, e)
            raise ProviderUnavailable(provider_id, f"Invalid JSON response: {e}", e) from e

    def get_json(self, url: str, provider_id: str, timeout: Optional[float] = None, **kwargs) -> Any:
        """Make GET request and decode the JSON body."""
        return self.request_json('GET', url, provider_id, timeout=timeout, **kwargs)

    def post_json(self, url: str, provider_id: str, timeout: Optional[float] = None, **kwargs) -> Any:
        """Make POST request and decode the JSON body."""
        return self.request_json('POST', url, provider_id, timeout=timeout, **kwargs)

    def get_stats(self) -> Dict[str, Any]:
        """Get HTTP client statistics."""
        with self._stats_lock:
            stats = dict(self._stats)
        total_requests = stats['requests_made'] + stats['requests_failed']
        success_rate = (stats['requests_made'] / total_requests * 100) if total_requests > 0 else 0
        return {**stats, 'success_rate': success_rate}

    def reset_stats(self):
        """Reset HTTP client statistics."""
        with self._stats_lock:
            self._stats = {
                'requests_made': 0,
                'requests_failed': 0,
                'rate_limits_hit': 0
            }

    def close(self):
        """Close the underlying session."""
        self.session.close()
