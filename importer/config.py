"""
Importer app level configurations

Values in ``settings.IMPORTER`` override the defaults below.
"""

from typing import Any

from django.conf import settings

DEFAULTS = {
    "API_BASE_URL": "http://localhost:8000/api",
    "ITEMS_PER_PAGE": 10,
    "REQUEST_TIMEOUT": 30,
    "RATE_LIMIT_TIERS": [(20, 10), (400, 60), (10000, 24 * 60 * 60)],
    "RATE_LIMIT_STORE": "importer.ratelimit.stores.RedisRateLimitStore",
    "RATE_LIMIT_CACHE": "rate_limit",
    "RATE_LIMIT_KEY_PREFIX": "rate_limit:",
    # Used when a 429 response carries no usable Retry-After header
    "DEFAULT_RETRY_AFTER": 60,
    "MAX_RATE_LIMIT_RETRIES": 5,
    "RETRY_BACKOFF": [30, 60, 120, 240],
    "MAX_ATTEMPTS": 5,
    # Must be longer than the largest RETRY_BACKOFF value
    "PERMANENT_FAILURE_GRACE": 5 * 60,
    # Delay before an item is queued again while the rate limit store is down
    "STORE_UNAVAILABLE_RETRY_DELAY": 30,
    "FINALIZE_INITIAL_DELAY": 30,
    "FINALIZE_POLL_DELAY": 10,
}


def importer_setting(key: str) -> Any:
    """
    Return the configured value for ``key``, falling back to ``DEFAULTS``.

    Raises:
        KeyError: If ``key`` is neither configured nor a known default.
    """
    overrides = getattr(settings, "IMPORTER", {})
    if key in overrides:
        return overrides[key]
    return DEFAULTS[key]
