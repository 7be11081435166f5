"""
Rate limit manager for tracking and enforcing provider quotas.

This module provides centralized rate limit management across all providers:
a sliding window quota per provider plus a failure driven backoff that
throttles a provider after repeated consecutive failures. Header based
limits reported by the provider itself are supported as well.
"""

import time
import datetime
import threading
import logging
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List, Callable

from .constants import (
    RATE_LIMIT_HEADERS,
    HOUR_MS,
    MINUTE_MS,
    FAILURES_BEFORE_THROTTLE,
    PROVIDER_PRODUCTHUNT,
    PROVIDER_HACKERNEWS,
    PROVIDER_GITHUB
)
from ..errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderConfig:
    """Quota and backoff settings of one provider."""
    max_calls_per_window: int
    window_ms: float = HOUR_MS
    base_retry_delay_ms: float = MINUTE_MS
    backoff_multiplier: float = 2.0
    max_backoff_ms: float = 30 * MINUTE_MS

    def __post_init__(self):
        if self.max_calls_per_window < 1:
            raise ConfigurationError('max_calls_per_window must be at least 1')
        if self.window_ms <= 0:
            raise ConfigurationError('window_ms must be positive')
        if self.backoff_multiplier < 1:
            raise ConfigurationError('backoff_multiplier must be at least 1')
        if self.max_backoff_ms < self.base_retry_delay_ms:
            raise ConfigurationError('max_backoff_ms must not be below base_retry_delay_ms')

    @classmethod
    def from_dict(cls, data: dict, base: Optional['ProviderConfig'] = None) -> 'ProviderConfig':
        """Build a config from a config file section, filling gaps from base."""
        values = {}
        if base is not None:
            values = {
                'max_calls_per_window': base.max_calls_per_window,
                'window_ms': base.window_ms,
                'base_retry_delay_ms': base.base_retry_delay_ms,
                'backoff_multiplier': base.backoff_multiplier,
                'max_backoff_ms': base.max_backoff_ms,
            }
        for name in ('max_calls_per_window', 'window_ms', 'base_retry_delay_ms',
                     'backoff_multiplier', 'max_backoff_ms'):
            if name in data:
                values[name] = data[name]
        if 'max_calls_per_window' not in values:
            raise ConfigurationError('max_calls_per_window is required')
        try:
            return cls(**values)
        except TypeError as e:
            raise ConfigurationError(f'Invalid provider quota settings: {e}') from e

    def backoff_for(self, consecutive_failures: int) -> float:
        """Throttle duration after the given number of consecutive failures."""
        exponent = max(0, consecutive_failures - FAILURES_BEFORE_THROTTLE)
        return min(self.base_retry_delay_ms * (self.backoff_multiplier ** exponent),
                   self.max_backoff_ms)


DEFAULT_PROVIDER_CONFIGS: Dict[str, ProviderConfig] = {
    PROVIDER_PRODUCTHUNT: ProviderConfig(
        max_calls_per_window=100,
        window_ms=HOUR_MS,
        base_retry_delay_ms=5 * MINUTE_MS,
        backoff_multiplier=2,
        max_backoff_ms=30 * MINUTE_MS
    ),
    PROVIDER_HACKERNEWS: ProviderConfig(
        max_calls_per_window=1000,
        window_ms=HOUR_MS,
        base_retry_delay_ms=1 * MINUTE_MS,
        backoff_multiplier=1.5,
        max_backoff_ms=10 * MINUTE_MS
    ),
    PROVIDER_GITHUB: ProviderConfig(
        max_calls_per_window=5000,
        window_ms=HOUR_MS,
        base_retry_delay_ms=1 * MINUTE_MS,
        backoff_multiplier=1.2,
        max_backoff_ms=5 * MINUTE_MS
    ),
}


# pylint: disable=too-few-public-methods
@dataclass(eq=False)
class CallRecord:
    """One call inside the rate window. pending until its outcome is recorded."""
    timestamp: float
    success: bool = False
    latency_ms: float = 0.0
    pending: bool = True


@dataclass
class ProviderState:
    """Mutable per-provider limiter state."""
    window: List[CallRecord] = field(default_factory=list)
    consecutive_failures: int = 0
    throttled_until: Optional[float] = None
    throttle_reason: str = ''
    last_success_at: Optional[float] = None


@dataclass
class RateLimitDecision:
    """Outcome of a quota check."""
    allowed: bool
    retry_after_ms: Optional[float] = None
    reason: Optional[str] = None
    ticket: Optional[CallRecord] = None


@dataclass
class ProviderStatus:
    """Read-only snapshot of a provider's limiter state."""
    provider: str
    calls_in_window: int
    max_calls: int
    is_throttled: bool
    consecutive_failures: int
    reset_in_ms: float
    throttled_until: Optional[float] = None
    retry_after_ms: Optional[float] = None
    last_success_at: Optional[float] = None
    average_latency_ms: Optional[float] = None

    @property
    def calls_remaining(self) -> int:
        return max(0, self.max_calls - self.calls_in_window)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'provider': self.provider,
            'calls_in_window': self.calls_in_window,
            'max_calls': self.max_calls,
            'calls_remaining': self.calls_remaining,
            'is_throttled': self.is_throttled,
            'throttled_until': self.throttled_until,
            'retry_after_ms': self.retry_after_ms,
            'consecutive_failures': self.consecutive_failures,
            'last_success_at': self.last_success_at,
            'reset_in_ms': self.reset_in_ms,
            'average_latency_ms': self.average_latency_ms,
        }


class RateLimitManager:
    """
    Centralized rate limit management for all API providers.

    Features:
    - Provider-specific sliding window quotas
    - Exponential backoff after consecutive failures
    - Support for rate limit headers sent by providers
    - Atomic check-and-reserve per provider, one lock per provider
    """

    def __init__(
        self,
        configs: Optional[Dict[str, ProviderConfig]] = None,
        clock: Optional[Callable[[], float]] = None
    ):
        self._configs: Dict[str, ProviderConfig] = dict(
            DEFAULT_PROVIDER_CONFIGS if configs is None else configs)
        self._clock = clock or (lambda: time.monotonic() * 1000)
        self._states: Dict[str, ProviderState] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._global_lock = threading.Lock()

    @property
    def providers(self) -> List[str]:
        return list(self._configs)

    def get_config(self, provider_id: str) -> ProviderConfig:
        try:
            return self._configs[provider_id]
        except KeyError:
            raise ConfigurationError(f'Unknown provider: {provider_id!r}') from None

    def configure(self, provider_id: str, config: ProviderConfig):
        """Set or replace the quota configuration of a provider."""
        with self._global_lock:
            self._configs[provider_id] = config
        logger.info("Configured rate limit for %s: %d calls / %.0fs",
                    provider_id, config.max_calls_per_window, config.window_ms / 1000)

    def _get_lock(self, provider_id: str) -> threading.Lock:
        """Get or create the lock for the given provider."""
        with self._global_lock:
            if provider_id not in self._locks:
                self._locks[provider_id] = threading.Lock()
            return self._locks[provider_id]

    def _get_state(self, provider_id: str) -> ProviderState:
        """Get or create state. Caller holds the provider lock."""
        state = self._states.get(provider_id)
        if state is None:
            state = ProviderState()
            self._states[provider_id] = state
        return state

    @staticmethod
    def _prune(state: ProviderState, config: ProviderConfig, now: float):
        window_start = now - config.window_ms
        state.window = [record for record in state.window if record.timestamp > window_start]

    @staticmethod
    def _throttle_remaining(state: ProviderState, now: float) -> float:
        if state.throttled_until is None:
            return 0
        return max(0, state.throttled_until - now)

    def _check(self, provider_id: str, state: ProviderState,
               config: ProviderConfig, now: float) -> RateLimitDecision:
        """Quota check. Caller holds the provider lock and has pruned."""
        remaining = self._throttle_remaining(state, now)
        if remaining > 0:
            return RateLimitDecision(
                allowed=False,
                retry_after_ms=remaining,
                reason=state.throttle_reason or 'Currently throttled due to repeated failures'
            )
        if state.throttled_until is not None:
            # deadline passed, back to Open
            state.throttled_until = None
            state.throttle_reason = ''
            logger.info("[%s] Throttle expired", provider_id)

        if len(state.window) >= config.max_calls_per_window:
            oldest = min(record.timestamp for record in state.window)
            retry_after = oldest + config.window_ms - now
            return RateLimitDecision(
                allowed=False,
                retry_after_ms=max(retry_after, config.base_retry_delay_ms),
                reason=(f'Rate limit exceeded: {len(state.window)}/'
                        f'{config.max_calls_per_window} calls in window')
            )
        return RateLimitDecision(allowed=True)

    def can_call(self, provider_id: str) -> RateLimitDecision:
        """
        Check if a call to the provider is allowed right now.

        Does not reserve a slot, use acquire() before actually calling.

        Args:
            provider_id: Unique identifier for the provider

        Returns:
            RateLimitDecision with retry_after_ms and reason when denied
        """
        config = self.get_config(provider_id)
        with self._get_lock(provider_id):
            now = self._clock()
            state = self._get_state(provider_id)
            self._prune(state, config, now)
            return self._check(provider_id, state, config, now)

    def acquire(self, provider_id: str) -> RateLimitDecision:
        """
        Check the quota and, when allowed, reserve one slot in the window.

        The reservation is made under the provider lock, so concurrent callers
        competing for the last slot cannot both be admitted. Pass the returned
        ticket to record_call() once the outcome is known.
        """
        config = self.get_config(provider_id)
        with self._get_lock(provider_id):
            now = self._clock()
            state = self._get_state(provider_id)
            self._prune(state, config, now)
            decision = self._check(provider_id, state, config, now)
            if decision.allowed:
                decision.ticket = CallRecord(timestamp=now)
                state.window.append(decision.ticket)
            else:
                logger.debug("[%s] Call denied: %s", provider_id, decision.reason)
            return decision

    def record_call(self, provider_id: str, success: bool, latency_ms: float,
                    ticket: Optional[CallRecord] = None):
        """
        Record the outcome of a provider call.

        Success resets the failure streak and clears any throttle at once.
        The third consecutive failure, and every one after it, throttles
        the provider with exponential backoff.

        Args:
            provider_id: Unique identifier for the provider
            success: Whether the call succeeded
            latency_ms: Duration of the call
            ticket: Reservation returned by acquire(), if any
        """
        config = self.get_config(provider_id)
        with self._get_lock(provider_id):
            now = self._clock()
            state = self._get_state(provider_id)
            if ticket is not None:
                # a ticket already pruned from the window stays out of it
                record = ticket
            else:
                record = CallRecord(timestamp=now)
                state.window.append(record)
            record.success = success
            record.latency_ms = latency_ms
            record.pending = False

            if success:
                if state.throttled_until is not None:
                    logger.info("[%s] Successful call, throttle cleared", provider_id)
                state.consecutive_failures = 0
                state.last_success_at = now
                state.throttled_until = None
                state.throttle_reason = ''
                return

            state.consecutive_failures += 1
            if state.consecutive_failures >= FAILURES_BEFORE_THROTTLE:
                backoff = config.backoff_for(state.consecutive_failures)
                state.throttled_until = now + backoff
                state.throttle_reason = (f'Throttled after {state.consecutive_failures} '
                                         f'consecutive failures')
                logger.warning(
                    "[%s] Throttled for %.0fms due to %d consecutive failures",
                    provider_id, backoff, state.consecutive_failures
                )

    def throttle(self, provider_id: str, retry_after_ms: float, reason: str = ''):
        """
        Manually throttle a provider, e.g. when it reported a rate limit itself.

        Args:
            provider_id: Unique identifier for the provider
            retry_after_ms: Milliseconds to wait before retrying
            reason: Explanation returned with denied checks
        """
        self.get_config(provider_id)
        with self._get_lock(provider_id):
            now = self._clock()
            state = self._get_state(provider_id)
            until = now + max(0, retry_after_ms)
            if state.throttled_until is None or until > state.throttled_until:
                state.throttled_until = until
                state.throttle_reason = reason or 'Provider reported a rate limit'
        logger.warning("[%s] Throttled for %.0fms: %s", provider_id, retry_after_ms,
                       reason or 'manual')

    # pylint: disable=too-many-branches
    def set_rate_limit_from_response(self, provider_id: str, response) -> Optional[float]:
        """
        Parse rate limit information from HTTP response headers and throttle.

        Args:
            provider_id: Unique identifier for the provider
            response: HTTP response object with headers

        Returns:
            Milliseconds the provider is throttled for, None if no usable header
        """
        if not hasattr(response, 'headers'):
            return None

        headers = response.headers
        retry_after = None

        if 'X-Ratelimit-Retry-At' in headers:
            try:
                retry_at = datetime.datetime.fromisoformat(headers['X-Ratelimit-Retry-At'])
                if retry_at.tzinfo is None:
                    retry_at = retry_at.astimezone()
                retry_after = (retry_at - datetime.datetime.now().astimezone()).total_seconds()
            except (ValueError, TypeError) as e:
                logger.warning("Failed to parse X-Ratelimit-Retry-At header: %s", e)

        elif 'Retry-After' in headers:
            retry_after_str = headers['Retry-After']
            try:
                # Retry-After can be in seconds or HTTP date
                if retry_after_str.isdigit():
                    retry_after = float(retry_after_str)
                else:
                    retry_at = datetime.datetime.strptime(
                        retry_after_str, '%a, %d %b %Y %H:%M:%S %Z'
                    ).replace(tzinfo=datetime.timezone.utc)
                    retry_after = (
                        retry_at - datetime.datetime.now(datetime.timezone.utc)
                    ).total_seconds()
            except (ValueError, TypeError) as e:
                logger.warning("Failed to parse Retry-After header: %s", e)

        else:
            for header_name in RATE_LIMIT_HEADERS:
                if header_name not in headers:
                    continue
                try:
                    reset_time_str = headers[header_name]
                    if reset_time_str.isdigit():
                        retry_after = int(reset_time_str) - time.time()
                    else:
                        reset_datetime = datetime.datetime.fromisoformat(reset_time_str)
                        if reset_datetime.tzinfo is None:
                            reset_datetime = reset_datetime.astimezone()
                        retry_after = (
                            reset_datetime - datetime.datetime.now().astimezone()
                        ).total_seconds()
                    if retry_after > 0:
                        break
                except (ValueError, TypeError) as e:
                    logger.debug("Failed to parse %s header: %s", header_name, e)

        if retry_after is None or retry_after <= 0:
            return None

        retry_after_ms = retry_after * 1000
        self.throttle(provider_id, retry_after_ms,
                      f'Provider asked to retry after {retry_after:.0f}s')
        return retry_after_ms

    def status(self, provider_id: str) -> ProviderStatus:
        """
        Read-only snapshot for health reporting.

        Prunes the window but does not otherwise change state.
        """
        config = self.get_config(provider_id)
        with self._get_lock(provider_id):
            now = self._clock()
            state = self._get_state(provider_id)
            self._prune(state, config, now)
            remaining = self._throttle_remaining(state, now)
            latencies = [r.latency_ms for r in state.window if not r.pending]
            if state.window:
                oldest = min(record.timestamp for record in state.window)
                reset_in = max(0, oldest + config.window_ms - now)
            else:
                reset_in = 0
            return ProviderStatus(
                provider=provider_id,
                calls_in_window=len(state.window),
                max_calls=config.max_calls_per_window,
                is_throttled=remaining > 0,
                throttled_until=state.throttled_until if remaining > 0 else None,
                retry_after_ms=remaining if remaining > 0 else None,
                consecutive_failures=state.consecutive_failures,
                last_success_at=state.last_success_at,
                reset_in_ms=reset_in,
                average_latency_ms=(sum(latencies) / len(latencies)) if latencies else None
            )

    def get_all_statuses(self) -> Dict[str, ProviderStatus]:
        """Status of every configured provider."""
        return {provider_id: self.status(provider_id) for provider_id in self.providers}

    def recommendations(self) -> Dict[str, str]:
        """Short per-provider summary for dashboards."""
        result = {}
        for provider_id, status in self.get_all_statuses().items():
            if status.is_throttled:
                result[provider_id] = (f'Throttled for another '
                                       f'{status.retry_after_ms / 1000:.0f}s')
            else:
                result[provider_id] = f'{status.calls_in_window}/{status.max_calls} calls used'
        return result

    def reset(self, provider_id: str):
        """Forget all state of a provider."""
        with self._get_lock(provider_id):
            self._states.pop(provider_id, None)
        logger.info("Rate limit state reset for provider: %s", provider_id)

    def clear_all(self):
        """Forget the state of all providers."""
        for provider_id in list(self._states):
            self.reset(provider_id)
        logger.info("All rate limits cleared")
