"""
See the module-level docstring for implementation details
"""

from logging import getLogger

from django.core.serializers.json import DjangoJSONEncoder
from django.db import models
from django.utils import timezone

logger = getLogger(__name__)


class ImportRun(models.Model):
    """
    One execution of a bulk import and its progress metrics

    The counters are shared by every worker processing the run and are only
    ever changed through ``importer.metrics.MetricsAggregator``.
    """

    class Status(models.TextChoices):
        RUNNING = "running"
        COMPLETED = "completed"
        COMPLETED_WITH_FAILURES = "completed_with_failures"

    created = models.DateTimeField(auto_now_add=True)
    modified = models.DateTimeField(auto_now=True)

    created_by = models.ForeignKey("auth.User", null=True, on_delete=models.SET_NULL)

    source_url = models.URLField(verbose_name="Base URL of the remote API")

    status = models.CharField(
        max_length=30, choices=Status.choices, default=Status.RUNNING
    )

    started_at = models.DateTimeField(default=timezone.now)
    ended_at = models.DateTimeField(
        help_text="Time when the run was finalized", null=True, blank=True
    )

    items_count = models.PositiveIntegerField(default=0)
    items_imported_count = models.PositiveIntegerField(default=0)
    items_failed_count = models.PositiveIntegerField(
        default=0,
        help_text="Permanently failed items, recorded when the run ended",
    )

    rate_limit_hits_count = models.PositiveIntegerField(
        default=0, help_text="429 responses which caused a cooldown"
    )
    rate_limit_sleeps_count = models.PositiveIntegerField(
        default=0, help_text="Cooldowns started by a worker for this run"
    )
    total_sleep_seconds = models.PositiveIntegerField(default=0)

    finalize_attempts = models.PositiveIntegerField(default=0)
    last_finalize_attempt_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ("-started_at",)

    def __str__(self):
        return "ImportRun(pk=%s, source_url=%s, status=%s)" % (
            self.pk,
            self.source_url,
            self.status,
        )

    @property
    def is_ended(self):
        return self.ended_at is not None

    def elapsed_seconds(self, now=None):
        end = self.ended_at or now or timezone.now()
        return max(0.0, (end - self.started_at).total_seconds())

    def active_seconds(self, now=None):
        """
        Time spent importing rather than sleeping on a cooldown
        """
        return max(0.0, self.elapsed_seconds(now) - self.total_sleep_seconds)

    @property
    def efficiency(self):
        """
        Share of cooldowns which were predicted locally rather than forced by
        a 429, or ``None`` if there were none of either
        """
        total = self.rate_limit_sleeps_count + self.rate_limit_hits_count
        if not total:
            return None
        return self.rate_limit_sleeps_count / total

    @property
    def progress_percentage(self):
        if not self.items_count:
            return 0.0
        return round(self.items_imported_count / self.items_count * 100, 2)


class ItemTask(models.Model):
    """
    Record of the task status for each item being imported
    """

    class Status(models.TextChoices):
        PENDING = "pending"
        PROCESSING = "processing"
        COMPLETED = "completed"
        FAILED = "failed"

    class FailureKind(models.TextChoices):
        TRANSIENT = "Transient"
        RETRIES = "Retries"

    created = models.DateTimeField(auto_now_add=True)
    modified = models.DateTimeField(auto_now=True)

    run = models.ForeignKey(
        ImportRun, on_delete=models.CASCADE, related_name="item_tasks"
    )

    external_id = models.CharField(max_length=100)
    name = models.CharField(max_length=255, blank=True, default="")
    url = models.URLField(help_text="Detail endpoint for the remote item")

    payload = models.JSONField(
        help_text="Detail data returned by the remote API",
        encoder=DjangoJSONEncoder,
        null=True,
        blank=True,
    )

    status = models.CharField(
        max_length=20, choices=Status.choices, default=Status.PENDING
    )

    attempts = models.PositiveIntegerField(
        help_text="Number of failed attempts so far", default=0
    )

    last_started = models.DateTimeField(
        help_text="Last time when a worker started processing this item",
        null=True,
        blank=True,
    )
    completed = models.DateTimeField(
        help_text="Time when the item was imported without error",
        null=True,
        blank=True,
    )
    last_failed_at = models.DateTimeField(
        help_text="Time of the most recent failure", null=True, blank=True
    )

    failure_reason = models.TextField(
        help_text="Error from the most recent failure", blank=True, default=""
    )
    failure_kind = models.CharField(
        max_length=20, blank=True, default="", choices=FailureKind.choices
    )
    failure_history = models.JSONField(
        help_text="Information about previous failures of the task, if any",
        encoder=DjangoJSONEncoder,
        default=list,
    )

    task_id = models.UUIDField(
        help_text="UUID of the last Celery task to process this record",
        null=True,
        blank=True,
    )

    class Meta:
        unique_together = (("run", "external_id"),)
        indexes = [
            models.Index(
                fields=["run", "status", "last_failed_at"],
                name="importer_itemtask_failed_idx",
            )
        ]

    def __str__(self):
        return "ItemTask(run=%s, external_id=%s, status=%s)" % (
            self.run_id,
            self.external_id,
            self.status,
        )

    def update_failure_history(self):
        self.failure_history.append(
            {
                "failed": self.last_failed_at,
                "failure_reason": self.failure_reason,
                "attempt": self.attempts,
            }
        )
