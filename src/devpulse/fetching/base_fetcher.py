"""
Base fetcher class for all provider fetch executors.

A fetch executor performs the actual network call for one provider and
translates the provider's wire payload into devpulse domain items. Caching,
quotas, retries and fallbacks are the orchestrator's job, not the fetcher's.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional
import logging

from .constants import DEFAULT_CACHE_TTL_MS
from .http_client import HttpClientManager
from ..errors import ConfigurationError, ProviderUnavailable

logger = logging.getLogger(__name__)


class BaseFetcher(ABC):
    """
    Base class for all provider fetch executors.

    Subclasses need to implement:
    - get_provider_id(): Unique provider identifier
    - get_raw_data_from_provider(): Fetch data from API
    - process_raw_data(): Convert raw data to domain items
    - get_seed_data(): Static last-resort dataset

    Subclasses may override validate_params() to convert and range check
    their filter parameters before any cache or quota work happens.

    Subclasses may override the class attributes cache_ttl_ms (how long a
    response is served from cache) and cache_prefix (cache key prefix).
    """

    cache_ttl_ms: float = DEFAULT_CACHE_TTL_MS
    cache_prefix: Optional[str] = None

    def __init__(self, http_client: Optional[HttpClientManager] = None,
                 timeout: Optional[float] = None):
        """
        Initialize base fetcher.

        Args:
            http_client: Shared HTTP client instance
            timeout: Per request timeout in seconds
        """
        self.http_client = http_client or HttpClientManager()
        self.timeout = timeout

    @abstractmethod
    def get_provider_id(self) -> str:
        """Return unique identifier for this provider."""

    @abstractmethod
    def get_raw_data_from_provider(self, params: Mapping[str, Any]) -> Any:
        """Fetch raw data from the provider's API."""

    @abstractmethod
    def process_raw_data(self, raw_data: Any, params: Mapping[str, Any]) -> List[Any]:
        """Process raw data into domain items."""

    @abstractmethod
    def get_seed_data(self) -> List[Any]:
        """Static dataset served when neither live nor cached data exists."""

    def get_cache_prefix(self) -> str:
        return self.cache_prefix or self.get_provider_id()

    def validate_params(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Check filter parameters and return them in canonical form.

        Raises:
            ConfigurationError: If a parameter has an invalid value
        """
        return dict(params)

    def _invalid(self, name: str, requirement: str, value: Any) -> ConfigurationError:
        return ConfigurationError(
            f"[{self.get_provider_id()}] Parameter {name!r} must be {requirement}, got {value!r}")

    def int_param(self, params: Mapping[str, Any], name: str, minimum: int = 0,
                  maximum: Optional[int] = None) -> Optional[int]:
        """
        Convert an optional integer parameter, None when absent.

        Values below minimum are rejected, values above maximum are capped.
        """
        if name not in params:
            return None
        value = params[name]
        if isinstance(value, bool):
            raise self._invalid(name, 'an integer', value)
        try:
            number = int(value)
        except (TypeError, ValueError):
            raise self._invalid(name, 'an integer', value) from None
        if isinstance(value, float) and number != value:
            raise self._invalid(name, 'an integer', value)
        if number < minimum:
            raise self._invalid(name, f'at least {minimum}', value)
        if maximum is not None:
            number = min(number, maximum)
        return number

    def str_param(self, params: Mapping[str, Any], name: str) -> Optional[str]:
        """Check an optional string parameter, None when absent."""
        if name not in params:
            return None
        value = params[name]
        if not isinstance(value, str):
            raise self._invalid(name, 'a string', value)
        return value

    def fetch(self, params: Mapping[str, Any]) -> List[Any]:
        """
        Fetch and translate data with unified error handling.

        Returns:
            Domain items for the given filter parameters

        Raises:
            ConfigurationError: If the parameters are invalid
            ProviderUnavailable: If the fetch or the translation fails
        """
        provider_id = self.get_provider_id()
        params = self.validate_params(params)
        try:
            raw_data = self.get_raw_data_from_provider(params)
        except (ProviderUnavailable, ConfigurationError):
            raise
        except (ConnectionError, TimeoutError) as e:
            logger.error("[%s] Network error during fetch: %s", provider_id, e)
            raise ProviderUnavailable(provider_id, f"Network error: {e}", e) from e
        except Exception as e:
            logger.error("[%s] Unexpected error during fetch: %s", provider_id, e, exc_info=True)
            raise ProviderUnavailable(provider_id, f"Fetch failed: {e}", e) from e

        try:
            return self.process_raw_data(raw_data, params)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.error("[%s] Invalid raw data format: %s", provider_id, e)
            raise ProviderUnavailable(provider_id, f"Invalid raw data format: {e}", e) from e

    def __repr__(self):
        return f"{type(self).__name__}({self.get_provider_id()!r})"
