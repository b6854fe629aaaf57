"""
Rate limit coordination shared by every importer worker

See ``importer.ratelimit.coordinator`` for how workers agree on cooldowns.
"""

from importer.config import importer_setting

from .coordinator import (
    CooldownCause,
    CooldownEvent,
    CooldownObserver,
    GlobalSleepCoordinator,
)
from .gate import RequestGate, parse_retry_after
from .stores import (
    LocMemRateLimitStore,
    RateLimitStore,
    RedisRateLimitStore,
    get_rate_limit_store,
)
from .tiers import TierPolicy, tiers_from_setting

__all__ = [
    "CooldownCause",
    "CooldownEvent",
    "CooldownObserver",
    "GlobalSleepCoordinator",
    "LocMemRateLimitStore",
    "RateLimitStore",
    "RedisRateLimitStore",
    "RequestGate",
    "TierPolicy",
    "get_rate_limit_store",
    "parse_retry_after",
    "request_gate_for_run",
    "tiers_from_setting",
]


def request_gate_for_run(run_pk, session=None):
    """
    Build the RequestGate used by tasks working on an import run, crediting
    cooldowns to that run's metrics
    """
    from importer.metrics import MetricsAggregator

    coordinator = GlobalSleepCoordinator(
        get_rate_limit_store(),
        tiers_from_setting(importer_setting("RATE_LIMIT_TIERS")),
        observer=MetricsAggregator(run_pk),
    )
    return RequestGate(coordinator, session=session)
