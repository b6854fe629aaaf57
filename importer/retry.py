"""
Item task state machine

    pending -> processing -> completed
                          -> failed (transient, retried after a backoff)
                          -> failed (retries exhausted, terminal)

The scheduler only decides timing; the Celery tasks do the dispatching.

Whether an item is permanently failed for completion purposes is derived from
its status and the age of its last failure, not from the attempt count: a
failed item whose last failure is older than the grace window has had every
scheduled retry come due without succeeding.
"""

from datetime import timedelta
from logging import getLogger

from django.core.exceptions import ImproperlyConfigured
from django.utils import timezone

from importer.config import importer_setting
from importer.models import ItemTask

logger = getLogger(__name__)

FAILURE_REASON_MAX_LENGTH = 2000


class RetryScheduler:
    def __init__(self, backoff=None, max_attempts=None, grace_window=None):
        if backoff is None:
            backoff = importer_setting("RETRY_BACKOFF")
        if max_attempts is None:
            max_attempts = importer_setting("MAX_ATTEMPTS")
        if grace_window is None:
            grace_window = importer_setting("PERMANENT_FAILURE_GRACE")

        self.backoff = tuple(int(delay) for delay in backoff)
        self.max_attempts = int(max_attempts)
        self.grace_window = int(grace_window)

        if not self.backoff or any(delay < 0 for delay in self.backoff):
            raise ImproperlyConfigured(
                "RETRY_BACKOFF must be a non-empty sequence of non-negative delays"
            )
        if self.max_attempts < 1:
            raise ImproperlyConfigured("MAX_ATTEMPTS must be at least 1")
        if self.grace_window <= max(self.backoff):
            raise ImproperlyConfigured(
                f"PERMANENT_FAILURE_GRACE ({self.grace_window}s) must be longer "
                f"than the longest retry backoff ({max(self.backoff)}s)"
            )

    def backoff_for(self, attempts):
        """
        Delay before the retry following failure number ``attempts``
        """
        index = min(max(attempts, 1), len(self.backoff)) - 1
        return self.backoff[index]

    def mark_processing(self, item_task, task_id=None):
        item_task.status = ItemTask.Status.PROCESSING
        item_task.last_started = timezone.now()
        item_task.task_id = task_id
        item_task.save(
            update_fields=["status", "last_started", "task_id", "modified"]
        )

    def mark_completed(self, item_task):
        """
        Returns ``True`` only for the call which completed the item, so a
        redelivered task cannot count the same item twice
        """
        completed = timezone.now()
        updated = (
            ItemTask.objects.filter(pk=item_task.pk)
            .exclude(status=ItemTask.Status.COMPLETED)
            .update(
                status=ItemTask.Status.COMPLETED,
                completed=completed,
                failure_kind="",
                modified=completed,
            )
        )
        item_task.status = ItemTask.Status.COMPLETED
        item_task.completed = completed
        item_task.failure_kind = ""
        return bool(updated)

    def record_failure(self, item_task, exc, now=None):
        """
        Record a failed attempt.

        Returns the number of seconds to wait before retrying, or ``None`` if
        the attempt budget is used up and the item will not run again.
        """
        if now is None:
            now = timezone.now()

        item_task.status = ItemTask.Status.FAILED
        item_task.attempts += 1
        item_task.last_failed_at = now
        item_task.failure_reason = str(exc)[:FAILURE_REASON_MAX_LENGTH]
        item_task.update_failure_history()

        if item_task.attempts >= self.max_attempts:
            item_task.failure_kind = ItemTask.FailureKind.RETRIES
            item_task.save()
            logger.warning(
                "Item task %s has reached the maximum number of attempts %s "
                "and will not be repeated",
                item_task,
                self.max_attempts,
            )
            return None

        item_task.failure_kind = ItemTask.FailureKind.TRANSIENT
        item_task.save()
        delay = self.backoff_for(item_task.attempts)
        logger.info(
            "Item task %s failed on attempt %s and will be retried in %ss: %s",
            item_task,
            item_task.attempts,
            delay,
            item_task.failure_reason,
        )
        return delay

    def permanent_failure_cutoff(self, now=None):
        if now is None:
            now = timezone.now()
        return now - timedelta(seconds=self.grace_window)

    def is_permanently_failed(self, item_task, now=None):
        return (
            item_task.status == ItemTask.Status.FAILED
            and item_task.last_failed_at is not None
            and item_task.last_failed_at <= self.permanent_failure_cutoff(now)
        )

    def permanently_failed(self, queryset, now=None):
        return queryset.filter(
            status=ItemTask.Status.FAILED,
            last_failed_at__isnull=False,
            last_failed_at__lte=self.permanent_failure_cutoff(now),
        )
