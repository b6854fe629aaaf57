import threading
from itertools import count

from importer.models import ImportRun, ItemTask
from importer.ratelimit import GlobalSleepCoordinator, LocMemRateLimitStore

_store_names = count()


class FakeClock:
    """
    Stand-in for time.time and time.sleep

    Sleeping moves the clock to the sleeper's deadline, so code that waits on
    a deadline reaches it immediately. Sleeps that overlap behave like real
    concurrent ones: the clock ends at the latest deadline, not the sum.

    Callables in ``during_sleep`` run, one per call, while a sleep is in
    progress, which is how tests make another worker act mid-cooldown. With
    ``auto_advance=False`` the clock only moves through ``advance``.
    """

    def __init__(self, start=1_000_000.0, auto_advance=True):
        self.now = start
        self.auto_advance = auto_advance
        self.sleeps = []
        self.during_sleep = []
        self._lock = threading.Lock()

    def time(self):
        with self._lock:
            return self.now

    def sleep(self, seconds):
        with self._lock:
            self.sleeps.append(seconds)
            deadline = self.now + seconds
            callback = self.during_sleep.pop(0) if self.during_sleep else None
        if callback is not None:
            callback()
        if self.auto_advance:
            with self._lock:
                self.now = max(self.now, deadline)

    def advance(self, seconds):
        with self._lock:
            self.now += seconds


def create_store(clock, **kwargs):
    # Every test gets its own keyspace in the process-wide local memory store
    return LocMemRateLimitStore(
        name="test-%d" % next(_store_names), clock=clock.time, **kwargs
    )


def create_coordinator(store, tiers, clock, observer=None):
    return GlobalSleepCoordinator(
        store, tiers, observer=observer, clock=clock.time, sleep=clock.sleep
    )


def create_import_run(*, source_url="http://api.example.com/api", **kwargs):
    import_run = ImportRun(source_url=source_url, **kwargs)
    import_run.save()
    return import_run


def create_item_task(*, run=None, external_id="1", **kwargs):
    if run is None:
        run = create_import_run()
    kwargs.setdefault("url", f"{run.source_url}/items/{external_id}")
    item_task = ItemTask(run=run, external_id=external_id, **kwargs)
    item_task.save()
    return item_task
