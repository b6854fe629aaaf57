"""
Global sleep coordination for workers sharing one remote API quota

Before every outbound request a worker asks the coordinator whether it may
proceed. Workers agree on the cooldown only through the shared store, and the
store decides which single worker is credited for each cooldown:

* the worker whose ``try_acquire_cooldown`` succeeds records the sleep count
  and the full duration
* a worker that pushes an existing cooldown further records only the seconds
  it added
* every other worker waits without recording anything

A 429 counts as a hit only for the worker that acquires the cooldown. A 429
which extends or waits on a cooldown already in force records no hit, so the
hit count is the number of server-imposed cooldowns rather than the number of
429 responses.

Sleep is recorded after the wait finishes and cooldown ends are rounded up to
whole seconds, so recorded sleep time never runs ahead of elapsed time.
"""

import enum
import math
import time
from dataclasses import dataclass
from logging import getLogger
from typing import Iterable, Optional

from bulkimport.logging import StructuredLogger

from .tiers import TierPolicy

logger = getLogger(__name__)
structured_logger = StructuredLogger.get_logger(__name__)


class CooldownCause(enum.Enum):
    #: A configured tier would have been exceeded by the next request
    THROTTLED = "throttled"
    #: The server answered 429
    SERVER = "server"


@dataclass(frozen=True)
class CooldownEvent:
    """
    What one worker did about one cooldown
    """

    cause: CooldownCause
    requested_seconds: int
    cooldown_until: Optional[int]
    #: This worker set the cooldown and owns the sleep it describes
    acquired: bool
    #: Seconds this worker added to a cooldown set by someone else
    extended_seconds: int = 0
    waited_seconds: float = 0.0

    @property
    def attributed_seconds(self) -> int:
        if self.acquired:
            return self.requested_seconds
        return self.extended_seconds


class CooldownObserver:
    """
    Receives every ``CooldownEvent`` once the worker has finished waiting
    """

    def cooldown_observed(self, event: CooldownEvent) -> None:
        pass


class GlobalSleepCoordinator:
    def __init__(
        self,
        store,
        tiers: Iterable[TierPolicy],
        observer: Optional[CooldownObserver] = None,
        clock=time.time,
        sleep=time.sleep,
    ):
        self.store = store
        self.tiers = tuple(tiers)
        self.observer = observer or CooldownObserver()
        self.clock = clock
        self.sleep = sleep

    def acquire(self) -> list[CooldownEvent]:
        """
        Block until a request may be sent, then count it against every tier.

        Returns the cooldown events this worker took part in while waiting.
        """
        events = []
        while True:
            self.wait_for_cooldown()

            duration = self.breached_window()
            if duration:
                events.append(self.coordinate(duration, CooldownCause.THROTTLED))
                continue

            for tier in self.tiers:
                self.store.increment_with_ttl(tier.key, tier.window_seconds)
            return events

    def handle_rate_limited(self, retry_after) -> CooldownEvent:
        """
        Coordinate the cooldown requested by a 429 response. The caller
        retries its request once this returns.
        """
        return self.coordinate(
            max(1, int(math.ceil(retry_after))), CooldownCause.SERVER
        )

    def wait_for_cooldown(self) -> float:
        """
        Sleep while a cooldown set by any worker is in force. Nothing is
        recorded because whoever set the cooldown already was credited.
        """
        waited = 0.0
        while True:
            remaining = self.remaining_cooldown()
            if remaining <= 0:
                return waited
            logger.debug("Waiting %.1fs for the shared cooldown", remaining)
            self.sleep(remaining)
            waited += remaining

    def remaining_cooldown(self) -> float:
        cooldown_until = self.store.get_cooldown_until()
        if cooldown_until is None:
            return 0.0
        return max(0.0, cooldown_until - self.clock())

    def breached_window(self) -> int:
        """
        Return the window of the longest breached tier, or 0 if none is
        """
        longest = 0
        for tier in self.tiers:
            if tier.is_breached(self.store.get(tier.key)):
                longest = max(longest, tier.window_seconds)
        return longest

    def coordinate(self, duration: int, cause: CooldownCause) -> CooldownEvent:
        while True:
            now = self.clock()
            cooldown_until = int(math.ceil(now)) + duration
            ttl = cooldown_until - now

            if self.store.try_acquire_cooldown(cooldown_until, ttl):
                event = self._sleep_until(
                    cause, duration, cooldown_until, acquired=True
                )
                break

            extended = self.store.extend_cooldown(cooldown_until, ttl)
            current_until = self.store.get_cooldown_until()
            if extended or current_until is not None:
                event = self._sleep_until(
                    cause,
                    duration,
                    current_until,
                    acquired=False,
                    extended_seconds=extended,
                )
                break
            # The cooldown expired between the failed acquire and the extend,
            # so there is nothing to wait on: compete for a new one

        self.observer.cooldown_observed(event)
        return event

    def _sleep_until(self, cause, duration, cooldown_until, **kwargs):
        waited = 0.0
        if cooldown_until is not None:
            waited = max(0.0, cooldown_until - self.clock())
            if waited:
                self.sleep(waited)

        event = CooldownEvent(
            cause=cause,
            requested_seconds=duration,
            cooldown_until=cooldown_until,
            waited_seconds=waited,
            **kwargs,
        )
        if event.acquired:
            structured_logger.info(
                "Started the shared cooldown.",
                event_code="rate_limit_cooldown_acquired",
                cooldown=event,
            )
        elif event.extended_seconds:
            structured_logger.info(
                "Extended the shared cooldown.",
                event_code="rate_limit_cooldown_extended",
                cooldown=event,
            )
        return event
