"""
Orchestrator configuration.

Every flag independently switches one step of the fetch pipeline. Values
can be read from the snake_case keys of the YAML configuration or from the
camelCase names used by the route layer.
"""
from dataclasses import dataclass, fields
from typing import Any, Mapping

from .errors import ConfigurationError
from .fetching.constants import (
    DEFAULT_RETRY_COUNT,
    DEFAULT_RETRY_DELAY_MS,
    DEFAULT_CALL_TIMEOUT_MS,
    DEFAULT_MAX_WORKERS,
    DEFAULT_SWEEP_INTERVAL_SECONDS
)

CAMEL_CASE_KEYS = {
    'enableCaching': 'enable_caching',
    'enableRateLimiting': 'enable_rate_limiting',
    'fallbackEnabled': 'fallback_enabled',
    'maxRetries': 'max_retries',
    'retryDelayMs': 'retry_delay_ms',
    'callTimeoutMs': 'call_timeout_ms',
    'maxWorkers': 'max_workers',
    'sweepIntervalSeconds': 'sweep_interval_seconds',
}


@dataclass
class OrchestratorConfig:
    enable_caching: bool = True
    enable_rate_limiting: bool = True
    fallback_enabled: bool = True
    max_retries: int = DEFAULT_RETRY_COUNT
    retry_delay_ms: float = DEFAULT_RETRY_DELAY_MS
    call_timeout_ms: float = DEFAULT_CALL_TIMEOUT_MS
    max_workers: int = DEFAULT_MAX_WORKERS
    sweep_interval_seconds: int = DEFAULT_SWEEP_INTERVAL_SECONDS

    def __post_init__(self):
        if self.max_retries < 0:
            raise ConfigurationError('max_retries must not be negative')
        if self.retry_delay_ms < 0:
            raise ConfigurationError('retry_delay_ms must not be negative')
        if self.call_timeout_ms <= 0:
            raise ConfigurationError('call_timeout_ms must be positive')
        if self.max_workers < 1:
            raise ConfigurationError('max_workers must be at least 1')
        if self.sweep_interval_seconds < 1:
            raise ConfigurationError('sweep_interval_seconds must be at least 1')

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'OrchestratorConfig':
        """
        Build a config from a mapping.

        Raises:
            ConfigurationError: For unknown keys or invalid values
        """
        known = {f.name for f in fields(cls)}
        values = {}
        for key, value in (data or {}).items():
            name = CAMEL_CASE_KEYS.get(key, key)
            if name not in known:
                raise ConfigurationError(f'Unknown orchestrator option: {key!r}')
            values[name] = value
        try:
            return cls(**values)
        except TypeError as e:
            raise ConfigurationError(f'Invalid orchestrator options: {e}') from e

    def merged(self, overrides: Mapping[str, Any]) -> 'OrchestratorConfig':
        """Copy of this config with the given options replaced."""
        current = {f.name: getattr(self, f.name) for f in fields(self)}
        current.update({CAMEL_CASE_KEYS.get(k, k): v for k, v in overrides.items()})
        return type(self).from_dict(current)
