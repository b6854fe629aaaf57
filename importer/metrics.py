"""
Progress and rate limit metrics for import runs

Many workers update the same ImportRun row at once, so every change is a
single ``UPDATE ... SET field = field + n`` and never a read-modify-write in
Python. Updates only apply while the run has not ended, which keeps an ended
run's numbers fixed.
"""

from logging import getLogger

from django.db.models import F
from django.utils import timezone

from importer.models import ImportRun
from importer.ratelimit.coordinator import CooldownCause, CooldownObserver

logger = getLogger(__name__)


class MetricsAggregator(CooldownObserver):
    def __init__(self, run_pk):
        self.run_pk = run_pk

    def _increment(self, **amounts):
        amounts = {field: n for field, n in amounts.items() if n}
        if not amounts:
            return 0
        updated = ImportRun.objects.filter(
            pk=self.run_pk, ended_at__isnull=True
        ).update(**{field: F(field) + n for field, n in amounts.items()})
        if not updated:
            logger.info(
                "Not recording %s for import run %s because it has ended",
                amounts,
                self.run_pk,
            )
        return updated

    def record_items_discovered(self, count):
        return self._increment(items_count=count)

    def record_item_imported(self):
        return self._increment(items_imported_count=1)

    def record_hit(self):
        return self._increment(rate_limit_hits_count=1)

    def record_sleep(self, seconds, count=1):
        return self._increment(
            rate_limit_sleeps_count=count, total_sleep_seconds=seconds
        )

    def record_finalize_attempt(self):
        return ImportRun.objects.filter(pk=self.run_pk).update(
            finalize_attempts=F("finalize_attempts") + 1,
            last_finalize_attempt_at=timezone.now(),
        )

    def cooldown_observed(self, event):
        if event.acquired:
            self.record_sleep(event.requested_seconds)
            if event.cause is CooldownCause.SERVER:
                self.record_hit()
        elif event.extended_seconds:
            self.record_sleep(event.extended_seconds, count=0)


def run_report(run, now=None):
    """
    The values polled by dashboards and the status endpoint
    """
    if now is None:
        now = timezone.now()
    return {
        "id": run.pk,
        "status": run.status,
        "source_url": run.source_url,
        "items_count": run.items_count,
        "items_imported_count": run.items_imported_count,
        "items_failed_count": run.items_failed_count,
        "rate_limit_hits_count": run.rate_limit_hits_count,
        "rate_limit_sleeps_count": run.rate_limit_sleeps_count,
        "total_sleep_seconds": run.total_sleep_seconds,
        "started_at": run.started_at,
        "ended_at": run.ended_at,
        "elapsed_seconds": round(run.elapsed_seconds(now), 1),
        "active_seconds": round(run.active_seconds(now), 1),
        "efficiency": run.efficiency,
        "progress_percentage": run.progress_percentage,
        "finalize_attempts": run.finalize_attempts,
    }
