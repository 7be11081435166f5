"""
Constants for the devpulse fetching infrastructure.

Time values are milliseconds unless the name says otherwise.

Cache Strategy Overview:
- Cache TTL: how long a provider response is served without a network call
- Last-known-good: the newest response per cache key, kept past its TTL
  for degraded fallbacks
- Sweep interval: how often expired entries are dropped independent of access
"""

# Provider names
PROVIDER_PRODUCTHUNT = "producthunt"   # launch board
PROVIDER_HACKERNEWS = "hackernews"     # discussion board
PROVIDER_GITHUB = "github"             # repository search

ALL_PROVIDERS = (PROVIDER_PRODUCTHUNT, PROVIDER_HACKERNEWS, PROVIDER_GITHUB)

# Timeout constants
EXTERNAL_API_TIMEOUT = 10          # seconds, single HTTP request
DEFAULT_CALL_TIMEOUT_MS = 10000    # whole fetch executor call

# Cache TTL constants
DEFAULT_CACHE_TTL_MS = 5 * 60 * 1000
PRODUCTHUNT_CACHE_TTL_MS = 5 * 60 * 1000
HACKERNEWS_CACHE_TTL_MS = 2 * 60 * 1000
GITHUB_CACHE_TTL_MS = 10 * 60 * 1000

DEFAULT_CACHE_MAX_SIZE = 1000
DEFAULT_LAST_KNOWN_GOOD_SIZE = 256
DEFAULT_SWEEP_INTERVAL_SECONDS = 60

# Rate limiting and retry constants
HOUR_MS = 60 * 60 * 1000
MINUTE_MS = 60 * 1000
FAILURES_BEFORE_THROTTLE = 3
DEFAULT_RETRY_COUNT = 3
DEFAULT_RETRY_DELAY_MS = 1000

# Parallel fetching constants
DEFAULT_MAX_WORKERS = 6

# HTTP status codes for rate limiting
RATE_LIMIT_STATUS_CODES = [429, 503]

# Common headers for rate limit detection
RATE_LIMIT_HEADERS = [
    'X-Ratelimit-Retry-At',
    'Retry-After',
    'X-RateLimit-Reset',
    'RateLimit-Reset',
    'X-Rate-Limit-Reset'
]

# Health scoring
HEALTHY_SCORE = 80
WARNING_SCORE = 60
THROTTLE_PENALTIES = {
    PROVIDER_PRODUCTHUNT: 20,
    PROVIDER_HACKERNEWS: 15,
    PROVIDER_GITHUB: 10,
}
DEFAULT_THROTTLE_PENALTY = 10
LOW_HIT_RATE = 50
LOW_HIT_RATE_PENALTY = 15
CRITICAL_HIT_RATE = 30
CRITICAL_HIT_RATE_PENALTY = 25
FAILURE_STREAK_THRESHOLD = 3
FAILURE_STREAK_PENALTY = 10
