from dataclasses import dataclass
from typing import Iterable

from django.core.exceptions import ImproperlyConfigured


@dataclass(frozen=True, order=True)
class TierPolicy:
    """
    One rate constraint: at most ``max_requests`` in ``window_seconds``.
    Several tiers apply at the same time.
    """

    max_requests: int
    window_seconds: int

    def __post_init__(self):
        if self.max_requests < 1 or self.window_seconds < 1:
            raise ImproperlyConfigured(
                "Rate limit tiers need a positive request count and window, "
                f"got {self.max_requests} requests per {self.window_seconds}s"
            )

    @property
    def key(self) -> str:
        return f"limit:{self.max_requests}:{self.window_seconds}"

    def is_breached(self, count) -> bool:
        return count is not None and count >= self.max_requests


def tiers_from_setting(value: Iterable) -> tuple[TierPolicy, ...]:
    """
    Build the tier set from ``(max_requests, window_seconds)`` pairs.
    Duplicate pairs collapse into one tier.
    """
    tiers = []
    for entry in value:
        if isinstance(entry, TierPolicy):
            tier = entry
        else:
            try:
                max_requests, window_seconds = entry
            except (TypeError, ValueError) as exc:
                raise ImproperlyConfigured(
                    "Each rate limit tier must be a (max_requests, window_seconds) "
                    f"pair, got {entry!r}"
                ) from exc
            tier = TierPolicy(int(max_requests), int(window_seconds))
        if tier not in tiers:
            tiers.append(tier)
    if not tiers:
        raise ImproperlyConfigured("At least one rate limit tier is required")
    return tuple(tiers)
