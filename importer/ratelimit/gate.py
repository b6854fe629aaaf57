import math
import time
from email.utils import parsedate_to_datetime
from logging import getLogger

import requests
from requests.exceptions import RequestException

from importer.config import importer_setting
from importer.exceptions import RateLimitExceeded, TransientApiError

logger = getLogger(__name__)

TOO_MANY_REQUESTS = 429


def parse_retry_after(value, default, now=None):
    """
    Convert a Retry-After header (delta-seconds or an HTTP-date) into whole
    seconds to wait. Fractional seconds are rounded up. Missing or
    unparseable values give ``default``.
    """
    if value is None or str(value).strip() == "":
        return default

    value = str(value).strip()
    try:
        seconds = float(value)
    except ValueError:
        pass
    else:
        if math.isfinite(seconds) and seconds >= 0:
            return max(1, int(math.ceil(seconds)))
        logger.warning("Ignoring unparseable Retry-After header %r", value)
        return default

    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        logger.warning("Ignoring unparseable Retry-After header %r", value)
        return default
    if retry_at is None:
        return default

    if now is None:
        now = time.time()
    return max(1, int(math.ceil(retry_at.timestamp() - now)))


class RequestGate:
    """
    Sends every request to the remote API through a GlobalSleepCoordinator

    Before sending, the coordinator may hold the worker until the shared
    cooldown and all rate limit tiers allow the request. A 429 response
    re-enters the coordinator with the server's Retry-After hint and the
    request is sent again, up to ``max_rate_limit_retries`` times.
    """

    def __init__(
        self,
        coordinator,
        session=None,
        timeout=None,
        max_rate_limit_retries=None,
        default_retry_after=None,
    ):
        self.coordinator = coordinator
        if session is None:
            session = requests.Session()
            session.headers["Accept"] = "application/json"
        self.session = session
        if timeout is None:
            timeout = importer_setting("REQUEST_TIMEOUT")
        self.timeout = timeout
        if max_rate_limit_retries is None:
            max_rate_limit_retries = importer_setting("MAX_RATE_LIMIT_RETRIES")
        self.max_rate_limit_retries = max_rate_limit_retries
        if default_retry_after is None:
            default_retry_after = importer_setting("DEFAULT_RETRY_AFTER")
        self.default_retry_after = default_retry_after

    def get(self, url, **kwargs):
        return self.send("GET", url, **kwargs)

    def send(self, method, url, **kwargs):
        """
        Returns the first response which is not a 429. Other error statuses
        are returned for the caller to judge.

        Raises:
            RateLimitExceeded: The server kept answering 429.
            TransientApiError: The request could not be sent.
            StoreUnavailable: Rate limits could not be checked.
        """
        kwargs.setdefault("timeout", self.timeout)
        rate_limited = 0

        while True:
            self.coordinator.acquire()

            try:
                response = self.session.request(method, url, **kwargs)
            except RequestException as exc:
                raise TransientApiError(
                    f"Unable to {method} {url}: {exc}"
                ) from exc

            self._log_quota(url, response)

            if response.status_code != TOO_MANY_REQUESTS:
                return response

            retry_after = parse_retry_after(
                response.headers.get("Retry-After"), self.default_retry_after
            )
            if rate_limited >= self.max_rate_limit_retries:
                raise RateLimitExceeded(
                    f"{method} {url} was still rate limited after "
                    f"{rate_limited} coordinated retries",
                    retry_after=retry_after,
                )
            rate_limited += 1

            logger.warning(
                "%s %s was rate limited by the server; cooling down for %ss "
                "(retry %s of %s)",
                method,
                url,
                retry_after,
                rate_limited,
                self.max_rate_limit_retries,
            )
            self.coordinator.handle_rate_limited(retry_after)

    def _log_quota(self, url, response):
        remaining = response.headers.get("X-RateLimit-Remaining")
        if remaining is not None:
            logger.debug(
                "Quota after %s: %s of %s remaining",
                url,
                remaining,
                response.headers.get("X-RateLimit-Limit", "?"),
            )
