import logging
import sys
import os
from logging.handlers import RotatingFileHandler

import yaml

from .config import OrchestratorConfig
from .errors import ConfigurationError
from .fetching.cache_manager import CacheManager
from .fetching.constants import DEFAULT_CACHE_MAX_SIZE, DEFAULT_CACHE_TTL_MS, \
    DEFAULT_LAST_KNOWN_GOOD_SIZE
from .fetching.http_client import HttpClientManager
from .fetching.last_known_good import LastKnownGood
from .fetching.rate_limit_manager import RateLimitManager, ProviderConfig, \
    DEFAULT_PROVIDER_CONFIGS
from .orchestrator import Orchestrator
from .providers import create_default_fetchers, FETCHER_OPTIONS

LOGLEVEL_MAPPING = {
    'debug': logging.DEBUG,
    'info': logging.INFO,
    'warning': logging.WARNING,
    'error': logging.ERROR
}
QUOTA_KEYS = ('max_calls_per_window', 'window_ms', 'base_retry_delay_ms',
              'backoff_multiplier', 'max_backoff_ms')


def setup_logging(level=logging.INFO, logfile=None, max_logfile_size_kb=200):
    """Configure root logger with consistent formatting.

    Args:
        level (int): Log level to set for the root logger.
        logfile (str): If specified, log to this file as well as the console.
        max_logfile_size_kb (int): Size at which the logfile is rotated.

    Returns:
        logging.Logger: Root logger
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Clear existing handlers to avoid duplicates
    root_logger.handlers = []

    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s [%(name)s] %(message)s",
        "%Y-%m-%d %H:%M:%S"
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if logfile:
        logdir = os.path.dirname(logfile)
        if logdir and not os.path.exists(logdir):
            os.makedirs(logdir)
        file_handler = RotatingFileHandler(
            logfile, maxBytes=max_logfile_size_kb * 1024, backupCount=2)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    return root_logger


def load_config(configfile: str) -> dict:
    """ Load the configuration file and check for validity.

    Args:
        configfile (str): Path to the config file

    Returns:
        dict: The loaded configuration

    Raises:
        ConfigurationError: If the config file is not found, is no valid
            YAML or has sections of the wrong type
    """
    if not os.path.isfile(configfile):
        raise ConfigurationError(f'Configfile {configfile} not found')

    with open(configfile, 'r', encoding='UTF-8') as f:
        config_str = f.read()

    try:
        config = yaml.safe_load(config_str) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f'Configfile {configfile} is no valid YAML: {e}') from e

    if not isinstance(config, dict):
        raise ConfigurationError(f'Configfile {configfile} must contain a mapping')

    for section in ('orchestrator', 'cache', 'providers'):
        if not isinstance(config.get(section) or {}, dict):
            raise ConfigurationError(f'Section {section!r} must be a mapping')

    if config.get('loglevel', 'info') not in LOGLEVEL_MAPPING:
        raise ConfigurationError(f"Unknown loglevel {config['loglevel']!r}")

    return config


def build_rate_limit_manager(providers_config: dict) -> RateLimitManager:
    """Default quotas with the overrides of the providers section applied."""
    configs = dict(DEFAULT_PROVIDER_CONFIGS)
    for name, section in providers_config.items():
        overrides = {key: value for key, value in (section or {}).items() if key in QUOTA_KEYS}
        if name not in configs and not overrides:
            continue
        configs[name] = ProviderConfig.from_dict(overrides, base=configs.get(name))
    return RateLimitManager(configs)


def build_orchestrator(config: dict) -> Orchestrator:
    """
    Wire up the whole stack from a loaded configuration.

    Raises:
        ConfigurationError: For unknown providers or invalid options
    """
    providers_config = config.get('providers') or {}
    for name, section in providers_config.items():
        allowed = set(QUOTA_KEYS) | set(FETCHER_OPTIONS.get(name, ()))
        unknown = set(section or {}) - allowed
        if unknown:
            raise ConfigurationError(f'Unknown options for provider {name!r}: {sorted(unknown)}')

    cache_config = config.get('cache') or {}
    rate_limit_manager = build_rate_limit_manager(providers_config)
    http_client = HttpClientManager(rate_limit_manager=rate_limit_manager)
    fetchers = create_default_fetchers(providers_config, http_client)

    return Orchestrator(
        fetchers,
        cache_manager=CacheManager(
            max_size=cache_config.get('max_size', DEFAULT_CACHE_MAX_SIZE),
            default_ttl_ms=cache_config.get('default_ttl_ms', DEFAULT_CACHE_TTL_MS)
        ),
        rate_limit_manager=rate_limit_manager,
        last_known_good=LastKnownGood(
            cache_config.get('last_known_good_size', DEFAULT_LAST_KNOWN_GOOD_SIZE)),
        config=OrchestratorConfig.from_dict(config.get('orchestrator') or {})
    )
