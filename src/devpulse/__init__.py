from .__pkginfo__ import __version__

from .errors import (
    DevPulseError,
    RateLimitExceeded,
    ProviderUnavailable,
    CacheMiss,
    ConfigurationError
)
from .config import OrchestratorConfig
from .models import FetchResult, BatchResult, HealthReport
from .orchestrator import Orchestrator
from .scheduler import SchedulerThread

__all__ = [
    '__version__',
    'DevPulseError',
    'RateLimitExceeded',
    'ProviderUnavailable',
    'CacheMiss',
    'ConfigurationError',
    'OrchestratorConfig',
    'FetchResult',
    'BatchResult',
    'HealthReport',
    'Orchestrator',
    'SchedulerThread',
]
