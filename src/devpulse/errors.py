"""
Custom exceptions for the devpulse core.

These exceptions separate transient provider trouble, which the orchestrator
recovers from with cached or seed data, from caller misuse, which always
surfaces immediately.
"""
from typing import Optional


class DevPulseError(Exception):
    """Base class for all devpulse errors."""


class RateLimitExceeded(DevPulseError):
    """
    Raised when a provider's quota is used up or the provider is throttled.

    Attributes:
        provider: Name of the provider
        retry_after_ms: Milliseconds until a call may be attempted again
        reason: Human readable explanation from the rate limiter
    """

    def __init__(self, provider: str, retry_after_ms: float, reason: str = ''):
        super().__init__(reason or f'Rate limit exceeded for {provider}')
        self.provider = provider
        self.retry_after_ms = retry_after_ms
        self.reason = reason

    def __str__(self):
        return (f"[{self.provider}] Rate limit exceeded: {self.reason} "
                f"(retry after {self.retry_after_ms:.0f}ms)")


class ProviderUnavailable(DevPulseError):
    """
    Raised when a provider could not deliver data: network error, timeout,
    non-success HTTP status or an unusable payload.
    """

    def __init__(self, provider: str, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.provider = provider
        self.message = message
        self.cause = cause

    def __str__(self):
        return f"[{self.provider}] {self.message}"


class CacheMiss(DevPulseError):
    """Internal signal: no usable cache entry exists. Never surfaced to callers."""


class ConfigurationError(DevPulseError):
    """Raised for unknown providers, malformed parameters or invalid config."""
