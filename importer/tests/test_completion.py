from datetime import timedelta

from django.test import TestCase
from django.utils import timezone

from importer.completion import CompletionDetector, CompletionOutcome
from importer.metrics import MetricsAggregator
from importer.models import ImportRun, ItemTask
from importer.retry import RetryScheduler

from .utils import create_import_run, create_item_task


class CompletionDetectorTests(TestCase):
    def setUp(self):
        self.detector = CompletionDetector()
        self.now = timezone.now()

    def create_run(self, items_count, **kwargs):
        run = create_import_run(items_count=items_count, **kwargs)
        for i in range(items_count):
            create_item_task(run=run, external_id=str(i))
        return run

    def complete(self, run, external_ids):
        ItemTask.objects.filter(run=run, external_id__in=external_ids).update(
            status=ItemTask.Status.COMPLETED, completed=self.now
        )
        ImportRun.objects.filter(pk=run.pk).update(
            items_imported_count=len(external_ids)
        )

    def test_missing_run(self):
        with self.assertLogs("importer.completion", level="WARNING"):
            result = self.detector.check(999999)
        self.assertEqual(result.outcome, CompletionOutcome.MISSING)
        self.assertFalse(result.should_poll_again)

    def test_waiting(self):
        run = self.create_run(3)
        self.complete(run, ["0", "1"])

        result = self.detector.check(run.pk, now=self.now)

        self.assertEqual(result.outcome, CompletionOutcome.WAITING)
        self.assertTrue(result.should_poll_again)
        self.assertEqual(result.imported_count, 2)
        run.refresh_from_db()
        self.assertIsNone(run.ended_at)
        self.assertEqual(run.status, ImportRun.Status.RUNNING)
        self.assertEqual(run.finalize_attempts, 1)
        self.assertIsNotNone(run.last_finalize_attempt_at)

    def test_all_items_imported(self):
        run = self.create_run(2)
        self.complete(run, ["0", "1"])

        result = self.detector.check(run.pk, now=self.now)

        self.assertEqual(result.outcome, CompletionOutcome.COMPLETED)
        self.assertEqual(result.permanently_failed_count, 0)
        run.refresh_from_db()
        self.assertEqual(run.ended_at, self.now)
        self.assertEqual(run.status, ImportRun.Status.COMPLETED)
        self.assertEqual(run.items_failed_count, 0)

    def test_empty_run_completes(self):
        run = create_import_run()

        result = self.detector.check(run.pk, now=self.now)

        self.assertEqual(result.outcome, CompletionOutcome.COMPLETED)
        run.refresh_from_db()
        self.assertTrue(run.is_ended)

    def test_recently_failed_item_keeps_the_run_open(self):
        run = self.create_run(2)
        self.complete(run, ["0"])
        ItemTask.objects.filter(run=run, external_id="1").update(
            status=ItemTask.Status.FAILED,
            attempts=5,
            failure_kind=ItemTask.FailureKind.RETRIES,
            last_failed_at=self.now - timedelta(seconds=60),
        )

        result = self.detector.check(run.pk, now=self.now)

        self.assertEqual(result.outcome, CompletionOutcome.WAITING)
        self.assertEqual(result.permanently_failed_count, 0)

    def test_item_exhausting_its_retries_ends_the_run_with_failures(self):
        run = self.create_run(3)
        self.complete(run, ["0", "1"])
        failing = ItemTask.objects.get(run=run, external_id="2")
        scheduler = RetryScheduler()

        # Five failures separated by the backoff delays
        failed_at = self.now
        for _ in range(5):
            delay = scheduler.record_failure(
                failing, Exception("502 Bad Gateway"), now=failed_at
            )
            if delay is not None:
                failed_at += timedelta(seconds=delay)
        last_failure = failed_at

        result = self.detector.check(run.pk, now=last_failure)
        self.assertEqual(result.outcome, CompletionOutcome.WAITING)

        finished = last_failure + timedelta(seconds=scheduler.grace_window)
        with self.assertLogs("structlog.importer.completion", level="WARNING"):
            result = self.detector.check(run.pk, now=finished)

        self.assertEqual(result.outcome, CompletionOutcome.COMPLETED_WITH_FAILURES)
        self.assertEqual(result.permanently_failed_count, 1)
        self.assertEqual(result.imported_count, 2)
        run.refresh_from_db()
        self.assertEqual(run.status, ImportRun.Status.COMPLETED_WITH_FAILURES)
        self.assertEqual(run.items_failed_count, 1)
        self.assertEqual(run.ended_at, finished)
        self.assertEqual(run.finalize_attempts, 2)

    def test_check_after_end_is_a_no_op(self):
        run = self.create_run(1)
        self.complete(run, ["0"])
        self.detector.check(run.pk, now=self.now)

        later = self.now + timedelta(hours=1)
        result = self.detector.check(run.pk, now=later)

        self.assertEqual(result.outcome, CompletionOutcome.ALREADY_ENDED)
        self.assertFalse(result.should_poll_again)
        run.refresh_from_db()
        self.assertEqual(run.ended_at, self.now)
        self.assertEqual(run.status, ImportRun.Status.COMPLETED)
        self.assertEqual(run.finalize_attempts, 2)

    def test_counter_lagging_the_rows_still_completes(self):
        run = self.create_run(2)
        ItemTask.objects.filter(run=run).update(status=ItemTask.Status.COMPLETED)

        result = self.detector.check(run.pk, now=self.now)

        self.assertEqual(result.outcome, CompletionOutcome.COMPLETED)
        self.assertEqual(result.imported_count, 2)

    def test_ended_run_ignores_late_metrics(self):
        run = self.create_run(1)
        self.complete(run, ["0"])
        self.detector.check(run.pk, now=self.now)

        with self.assertLogs("importer.metrics", level="INFO"):
            self.assertEqual(MetricsAggregator(run.pk).record_sleep(10), 0)
        run.refresh_from_db()
        self.assertEqual(run.total_sleep_seconds, 0)
