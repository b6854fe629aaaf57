"""
Design
======

The importer loads every item exposed by a paginated, rate-limited remote API
using many Celery workers at once.

General goals:

* All run and item state is stored in the database and visible for reporting
* Rate-limit coordination happens only through the shared store (Redis); no
  worker trusts its own memory about whether the API is cooling down
* Metrics are only changed with atomic database increments, so any number of
  workers may report at the same time

The import process works like this:

1. ``start_import_run`` creates an ImportRun and queues discovery.
2. The discovery task pages through the list endpoint, creating one ItemTask
   per remote item and incrementing the run's item count, then queues an item
   task for each ItemTask and schedules the completion check.
3. Each item task fetches the item's detail endpoint. Every request passes
   through the RequestGate, which asks the GlobalSleepCoordinator whether the
   shared cooldown or any configured tier requires a wait. The single worker
   that sets a cooldown is credited with the sleep; workers that merely wait
   on it record nothing, and a worker that pushes the cooldown further is
   credited only with the seconds it added.
4. A server 429 goes through the same cooldown procedure and is credited as a
   rate limit hit.
5. Failed item tasks are rescheduled with an increasing backoff until the
   attempt budget runs out.
6. The completion check polls until every item is either imported or has sat
   in the failed state for longer than the grace window, then ends the run.
"""
