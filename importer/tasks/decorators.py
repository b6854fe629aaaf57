from functools import wraps
from logging import getLogger

from django.db.models import Q

from importer.exceptions import PermanentTaskFailure, StoreUnavailable
from importer.metrics import MetricsAggregator
from importer.models import ItemTask
from importer.retry import RetryScheduler

logger = getLogger(__name__)


def update_item_status(f):
    """
    Decorator which moves an ItemTask through its states around the wrapped
    function

    Assumes that all wrapped functions get the Celery task self value as the
    first parameter and the ItemTask as the second.

    * completed items, and items that already used their attempt budget, are
      skipped
    * on success the item is completed and the run's imported count goes up
      exactly once
    * on failure the RetryScheduler records it and, if attempts remain, the
      item is rescheduled after the backoff and the exception is re-raised;
      once no attempts remain PermanentTaskFailure is raised instead
    * StoreUnavailable is re-raised untouched: the item stays processing and
      the broker redelivers it
    """

    @wraps(f)
    def inner(self, item_task, *args, **kwargs):
        # Another process may have finished this item in the meantime
        guard_qs = ItemTask.objects.filter(pk=item_task.pk).filter(
            Q(status=ItemTask.Status.COMPLETED)
            | Q(failure_kind=ItemTask.FailureKind.RETRIES)
        )
        if guard_qs.exists():
            logger.warning(
                "Item task %s was already completed or has no attempts left "
                "and will not be repeated",
                item_task,
                extra={"data": {"object": item_task, "args": args, "kwargs": kwargs}},
            )
            return

        scheduler = RetryScheduler()
        scheduler.mark_processing(item_task, task_id=self.request.id)
        try:
            result = f(self, item_task, *args, **kwargs)
        except StoreUnavailable:
            logger.error(
                "Aborting item task %s because rate limits cannot be checked",
                item_task,
            )
            raise
        except Exception as exc:
            delay = scheduler.record_failure(item_task, exc)
            if delay is not None:
                # Imported here because the task module uses this decorator
                from .items import reschedule_item_task

                retry_result = reschedule_item_task(item_task.pk, delay)
                item_task.task_id = retry_result.id
                item_task.save(update_fields=["task_id", "modified"])
            else:
                logger.info("Retrying item task %s was not possible", item_task)
                raise PermanentTaskFailure(
                    f"{item_task} failed {item_task.attempts} times"
                ) from exc
            raise

        if scheduler.mark_completed(item_task):
            MetricsAggregator(item_task.run_id).record_item_imported()
        return result

    return inner
