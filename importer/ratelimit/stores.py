"""
Shared state used to coordinate rate limiting across worker processes

Every operation is a single round trip to the backing store. Anything that
reads and then writes is done inside the store (a Lua script on Redis, a lock
in the local memory store) because the exactly-once sleep attribution depends
on it.
"""

import math
import threading
import time
from functools import wraps
from logging import getLogger

from django.utils.module_loading import import_string
from django_redis import get_redis_connection
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from importer.config import importer_setting
from importer.exceptions import StoreUnavailable

logger = getLogger(__name__)

COOLDOWN_KEY = "cooldown_until"


def ttl_seconds(ttl):
    """
    Whole seconds a key must live so it never expires before ``ttl`` has passed
    """
    return max(1, int(math.ceil(ttl)))


class RateLimitStore:
    """
    Atomic primitives over the keyspace shared by every worker
    """

    def __init__(self, key_prefix=None):
        if key_prefix is None:
            key_prefix = importer_setting("RATE_LIMIT_KEY_PREFIX")
        self.key_prefix = key_prefix

    def make_key(self, key):
        return f"{self.key_prefix}{key}"

    def increment_with_ttl(self, key, ttl):
        """
        Increment the counter at ``key`` and return the new value. The TTL is
        only applied when this call creates the key.
        """
        raise NotImplementedError(
            "subclasses of RateLimitStore must provide an increment_with_ttl() method"
        )

    def get(self, key):
        """
        Return the integer stored at ``key`` or ``None``
        """
        raise NotImplementedError(
            "subclasses of RateLimitStore must provide a get() method"
        )

    def get_cooldown_until(self):
        """
        Return the UNIX timestamp at which the global cooldown ends, or
        ``None`` if no cooldown is set
        """
        return self.get(COOLDOWN_KEY)

    def try_acquire_cooldown(self, timestamp, ttl):
        """
        Set the cooldown to end at ``timestamp`` unless one is already set.
        Only the single caller which sets it gets ``True``.
        """
        raise NotImplementedError(
            "subclasses of RateLimitStore must provide a try_acquire_cooldown() method"
        )

    def extend_cooldown(self, timestamp, ttl):
        """
        Move an existing cooldown's end to ``timestamp`` if that is later and
        return the number of seconds added. Returns 0 if the cooldown already
        covers ``timestamp`` or if there is no cooldown to extend.
        """
        raise NotImplementedError(
            "subclasses of RateLimitStore must provide an extend_cooldown() method"
        )

    def clear(self):
        """
        Remove every key owned by this store
        """
        raise NotImplementedError(
            "subclasses of RateLimitStore must provide a clear() method"
        )


INCREMENT_WITH_TTL_SCRIPT = """
local count = redis.call('INCR', KEYS[1])
if count == 1 then
    redis.call('EXPIRE', KEYS[1], ARGV[1])
end
return count
"""

EXTEND_COOLDOWN_SCRIPT = """
local current = redis.call('GET', KEYS[1])
if not current then
    return 0
end
current = tonumber(current)
local target = tonumber(ARGV[1])
if target <= current then
    return 0
end
redis.call('SET', KEYS[1], ARGV[1], 'EX', ARGV[2])
return target - current
"""


def _fail_closed(method):
    """
    Turn connection problems with Redis into StoreUnavailable
    """

    @wraps(method)
    def inner(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except (RedisConnectionError, RedisTimeoutError) as exc:
            logger.exception(
                "Rate limit store %s is unavailable during %s",
                self.alias,
                method.__name__,
            )
            raise StoreUnavailable(
                f"Rate limit store {self.alias!r} is unavailable: {exc}"
            ) from exc

    return inner


class RedisRateLimitStore(RateLimitStore):
    """
    Production store using the Redis connection behind a django-redis cache
    alias
    """

    def __init__(self, alias=None, key_prefix=None, connection=None):
        super().__init__(key_prefix=key_prefix)
        self.alias = alias or importer_setting("RATE_LIMIT_CACHE")
        self._connection = connection
        self._increment_script = None
        self._extend_script = None

    @property
    def connection(self):
        if self._connection is None:
            self._connection = get_redis_connection(self.alias)
        return self._connection

    @property
    def increment_script(self):
        # register_script does not talk to the server; the script is sent
        # with EVALSHA on first use
        if self._increment_script is None:
            self._increment_script = self.connection.register_script(
                INCREMENT_WITH_TTL_SCRIPT
            )
        return self._increment_script

    @property
    def extend_script(self):
        if self._extend_script is None:
            self._extend_script = self.connection.register_script(
                EXTEND_COOLDOWN_SCRIPT
            )
        return self._extend_script

    @_fail_closed
    def increment_with_ttl(self, key, ttl):
        return int(
            self.increment_script(keys=[self.make_key(key)], args=[ttl_seconds(ttl)])
        )

    @_fail_closed
    def get(self, key):
        value = self.connection.get(self.make_key(key))
        if value is None:
            return None
        return int(value)

    @_fail_closed
    def try_acquire_cooldown(self, timestamp, ttl):
        return bool(
            self.connection.set(
                self.make_key(COOLDOWN_KEY),
                int(timestamp),
                nx=True,
                ex=ttl_seconds(ttl),
            )
        )

    @_fail_closed
    def extend_cooldown(self, timestamp, ttl):
        return int(
            self.extend_script(
                keys=[self.make_key(COOLDOWN_KEY)],
                args=[int(timestamp), ttl_seconds(ttl)],
            )
        )

    @_fail_closed
    def clear(self):
        keys = list(self.connection.scan_iter(match=f"{self.key_prefix}*"))
        if keys:
            self.connection.delete(*keys)


# Process-wide state shared by every LocMemRateLimitStore with the same name,
# the same way Django's local memory cache shares data per LOCATION
_stores = {}
_locks = {}
_registry_lock = threading.Lock()


class LocMemRateLimitStore(RateLimitStore):
    """
    Store for a single process, used for development and tests

    Workers in other processes cannot see this state, so it only coordinates
    threads inside one process.
    """

    alias = "locmem"

    def __init__(self, name="", key_prefix=None, clock=time.time):
        super().__init__(key_prefix=key_prefix)
        self.name = name
        self.clock = clock
        with _registry_lock:
            self._data = _stores.setdefault(name, {})
            self._lock = _locks.setdefault(name, threading.Lock())

    def _live_value(self, full_key, now):
        entry = self._data.get(full_key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= now:
            del self._data[full_key]
            return None
        return value

    def increment_with_ttl(self, key, ttl):
        full_key = self.make_key(key)
        with self._lock:
            now = self.clock()
            value = self._live_value(full_key, now)
            if value is None:
                self._data[full_key] = (1, now + ttl_seconds(ttl))
                return 1
            expires_at = self._data[full_key][1]
            self._data[full_key] = (value + 1, expires_at)
            return value + 1

    def get(self, key):
        with self._lock:
            return self._live_value(self.make_key(key), self.clock())

    def try_acquire_cooldown(self, timestamp, ttl):
        full_key = self.make_key(COOLDOWN_KEY)
        with self._lock:
            now = self.clock()
            if self._live_value(full_key, now) is not None:
                return False
            self._data[full_key] = (int(timestamp), now + ttl_seconds(ttl))
            return True

    def extend_cooldown(self, timestamp, ttl):
        full_key = self.make_key(COOLDOWN_KEY)
        with self._lock:
            now = self.clock()
            current = self._live_value(full_key, now)
            if current is None or int(timestamp) <= current:
                return 0
            self._data[full_key] = (int(timestamp), now + ttl_seconds(ttl))
            return int(timestamp) - current

    def clear(self):
        with self._lock:
            for key in [k for k in self._data if k.startswith(self.key_prefix)]:
                del self._data[key]


def get_rate_limit_store(**kwargs):
    """
    Instantiate the store class named by ``IMPORTER["RATE_LIMIT_STORE"]``
    """
    store_class = import_string(importer_setting("RATE_LIMIT_STORE"))
    return store_class(**kwargs)
